"""Guardrail thresholds and their relaxed variants."""

from __future__ import annotations

import math
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field

from core import SectionKind


class Band(BaseModel):
    """Inclusive numeric range."""

    min: float
    max: float

    def contains(self, value: float) -> bool:
        return self.min <= value <= self.max

    def widened(self, *, factor: float = 0.0, slack: float = 0.0) -> "Band":
        low = self.min * (1.0 - factor) - slack
        high = self.max * (1.0 + factor) + slack
        return Band(min=max(0.0, math.floor(low)), max=math.ceil(high))

    def __str__(self) -> str:
        return f"{self.min:g}-{self.max:g}"


class SectionPolicy(BaseModel):
    paragraphs: Optional[Band] = None
    items: Optional[Band] = None
    words: Optional[Band] = None
    item_words: Optional[Band] = None


class RelaxationFactors(BaseModel):
    """How far a relaxed recovery pass widens the guardrails."""

    word_widen: float = 0.25
    count_slack: int = 1
    grounding_min_overlap: float = 0.20
    cadence_slack: float = 3.0


DEFAULT_ACTION_VERBS: FrozenSet[str] = frozenset(
    {
        "use", "apply", "click", "select", "choose", "check", "copy", "paste", "enter",
        "join", "start", "verify", "review", "visit", "navigate", "open", "go", "follow",
        "access", "confirm", "complete", "view", "find", "locate", "add", "enable",
        "accept", "claim", "redeem", "activate", "save", "get", "sign", "create", "log",
        "read", "compare", "explore", "pick", "keep", "learn", "track", "set",
    }
)

DEFAULT_CERTAINTY_PHRASES: List[str] = [
    "guaranteed",
    "guarantee",
    "always",
    "never",
    "best price",
    "lowest price",
    "cheapest",
    "100%",
    "best deal",
]

DEFAULT_SECONDARY_TEMPLATES: List[str] = [
    "save on {name}",
    "{name} discount",
    "current offer",
    "special offer",
    "voucher code",
]

DEFAULT_BOILERPLATE: FrozenSet[str] = frozenset(
    {
        "promo", "code", "codes", "discount", "discounts", "offer", "offers", "save", "savings",
        "coupon", "coupons", "voucher", "vouchers", "special", "deal", "deals", "checkout",
        "confirm", "price", "pricing", "terms", "conditions", "apply", "applies", "eligible",
    }
)

DEFAULT_STOPWORDS: FrozenSet[str] = frozenset(
    {
        "the", "and", "for", "you", "your", "with", "this", "that", "are", "can", "will", "from",
        "any", "all", "its", "our", "not", "but", "has", "have", "was", "were", "been", "into",
        "out", "who", "what", "when", "where", "how", "why", "which", "they", "them", "their",
        "there", "here", "then", "than", "also", "each", "more", "most", "some", "such", "may",
        "might", "should", "would", "could", "about", "after", "before", "over", "under", "per",
        "via", "while", "just", "only", "other", "these", "those", "does", "did", "get", "use",
        "one", "two", "three", "page", "plan", "plans", "member", "members", "access",
    }
)


def _default_sections() -> Dict[SectionKind, SectionPolicy]:
    return {
        SectionKind.ABOUT: SectionPolicy(paragraphs=Band(min=2, max=3), words=Band(min=120, max=180)),
        SectionKind.DETAILS: SectionPolicy(items=Band(min=3, max=5), words=Band(min=100, max=150)),
        SectionKind.REDEEM: SectionPolicy(items=Band(min=3, max=5), item_words=Band(min=10, max=20)),
        SectionKind.TERMS: SectionPolicy(items=Band(min=3, max=5), words=Band(min=80, max=120)),
        SectionKind.FAQ: SectionPolicy(items=Band(min=4, max=6), item_words=Band(min=40, max=70)),
    }


class ValidationPolicy(BaseModel):
    """Every tunable used by the validation engine."""

    sections: Dict[SectionKind, SectionPolicy] = Field(default_factory=_default_sections)

    primary_suffix: str = "promo code"
    secondary_templates: List[str] = Field(default_factory=lambda: list(DEFAULT_SECONDARY_TEMPLATES))
    secondary_cap: int = 2

    grounding_min_overlap: float = 0.30
    grounding_min_tokens: int = 8
    boilerplate_terms: FrozenSet[str] = DEFAULT_BOILERPLATE
    stopwords: FrozenSet[str] = DEFAULT_STOPWORDS
    platform_name: str = "Whop"
    platform_host: str = "whop.com"

    emphasis_cap: int = 3
    certainty_phrases: List[str] = Field(default_factory=lambda: list(DEFAULT_CERTAINTY_PHRASES))

    min_sentences: int = 3
    sentence_mean: Band = Field(default_factory=lambda: Band(min=13, max=22))
    sentence_stdev: Band = Field(default_factory=lambda: Band(min=4, max=12))
    action_verbs: FrozenSet[str] = DEFAULT_ACTION_VERBS
    imperative_sections: FrozenSet[SectionKind] = frozenset({SectionKind.DETAILS, SectionKind.REDEEM})
    faq_opener_threshold: int = 4
    faq_min_openers: int = 3

    ensure_closing_cta: bool = True
    relaxed_mode: bool = False

    def section(self, kind: SectionKind) -> SectionPolicy:
        return self.sections.get(kind) or SectionPolicy()

    def relaxed(self, factors: Optional[RelaxationFactors] = None) -> "ValidationPolicy":
        """Copy with wider structural/word/cadence bands and a lower grounding bar."""
        factors = factors or RelaxationFactors()
        sections: Dict[SectionKind, SectionPolicy] = {}
        for kind, spec in self.sections.items():
            sections[kind] = SectionPolicy(
                paragraphs=spec.paragraphs.widened(slack=factors.count_slack) if spec.paragraphs else None,
                items=spec.items.widened(slack=factors.count_slack) if spec.items else None,
                words=spec.words.widened(factor=factors.word_widen) if spec.words else None,
                item_words=spec.item_words.widened(factor=factors.word_widen) if spec.item_words else None,
            )
        return self.model_copy(
            update={
                "sections": sections,
                "grounding_min_overlap": min(self.grounding_min_overlap, factors.grounding_min_overlap),
                "sentence_mean": self.sentence_mean.widened(slack=factors.cadence_slack),
                "sentence_stdev": Band(
                    min=max(0.0, self.sentence_stdev.min - factors.cadence_slack),
                    max=self.sentence_stdev.max + factors.cadence_slack,
                ),
                "relaxed_mode": True,
            }
        )

    @classmethod
    def from_settings(cls, settings) -> "ValidationPolicy":
        """Build from ``config.ValidationSettings``."""
        return cls(
            primary_suffix=settings.primary_suffix,
            grounding_min_overlap=settings.grounding_min_overlap,
            platform_name=settings.platform_name,
            platform_host=settings.platform_host,
            ensure_closing_cta=settings.ensure_closing_cta,
        )


def relaxation_from_settings(settings) -> RelaxationFactors:
    return RelaxationFactors(
        word_widen=settings.relax_word_widen,
        count_slack=settings.relax_count_slack,
        grounding_min_overlap=settings.relax_grounding_overlap,
        cadence_slack=settings.relax_cadence_slack,
    )
