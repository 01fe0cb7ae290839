"""Guardrail rule functions, keyed by section kind where behaviour differs."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, List, Optional

from core import FaqEntry, PRIMARY_SECTION, RuleOutcome, SectionKind

from .keywords import KeywordSet, has_synonym_chain
from .policy import Band, ValidationPolicy
from .text import list_items, mean_stdev, paragraphs, sentence_lengths, strip_tags, tokens, word_count


@dataclass
class SectionInput:
    """One generated section after sanitization."""

    kind: SectionKind
    raw: str
    html: str
    entries: List[FaqEntry] = field(default_factory=list)

    @property
    def full_text(self) -> str:
        if self.kind == SectionKind.FAQ:
            return " ".join(f"<p>{e.question}</p>{e.answer_html}" for e in self.entries)
        return self.html


@dataclass
class RuleContext:
    policy: ValidationPolicy
    keywords: KeywordSet
    evidence_tokens: FrozenSet[str]
    evidence_text: str
    evidence_host: str
    name_tokens: FrozenSet[str]


Rule = Callable[[SectionInput, RuleContext], List[RuleOutcome]]

_LIST_CONTAINER_RE = re.compile(r"<(?:ul|ol)>")
_EMPHASIS_RE = re.compile(r"<(?:strong|em)>")
_ANCHOR_RE = re.compile(r"<\s*a\b", re.IGNORECASE)
_BARE_URL_RE = re.compile(r"(?:https?://|www\.)\S+", re.IGNORECASE)
_VERIFIED_RE = re.compile(r"\bverif(?:ied|ication|y)\b", re.IGNORECASE)
_MISNESTING_RES = [
    re.compile(r"<(?:ul|ol)>\s*<p>"),
    re.compile(r"<p>(?:(?!</p>).)*?<(?:ul|ol|li)>", re.DOTALL),
    re.compile(r"</p>\s*</(?:ul|ol)>"),
]


def _outcome(rule_id: str, kind: Optional[SectionKind], passed: bool, detail: str = "") -> RuleOutcome:
    return RuleOutcome(rule_id=rule_id, section=kind, passed=passed, detail=detail)


def _band(rule_id: str, kind: SectionKind, value: float, band: Optional[Band], what: str) -> List[RuleOutcome]:
    if band is None:
        return []
    return [_outcome(rule_id, kind, band.contains(value), f"{what} {value:g} (allowed {band})")]


def _normalized(text: str) -> str:
    return " ".join(tokens(text))


# structure


def _structure_about(section: SectionInput, ctx: RuleContext) -> List[RuleOutcome]:
    spec = ctx.policy.section(section.kind)
    return [
        *_band("structure.paragraphs", section.kind, len(paragraphs(section.html)), spec.paragraphs, "paragraphs"),
        *_band("structure.words", section.kind, word_count(section.html), spec.words, "words"),
    ]


def _structure_bullets(section: SectionInput, ctx: RuleContext) -> List[RuleOutcome]:
    spec = ctx.policy.section(section.kind)
    has_list = bool(_LIST_CONTAINER_RE.search(section.html))
    return [
        _outcome("structure.list", section.kind, has_list, "" if has_list else "content must be a list"),
        *_band("structure.items", section.kind, len(list_items(section.html)), spec.items, "items"),
        *_band("structure.words", section.kind, word_count(section.html), spec.words, "words"),
    ]


def _structure_steps(section: SectionInput, ctx: RuleContext) -> List[RuleOutcome]:
    spec = ctx.policy.section(section.kind)
    ordered = "<ol>" in section.html and "<ul>" not in section.html
    steps = list_items(section.html)
    outcomes = [
        _outcome("structure.ordered_list", section.kind, ordered, "" if ordered else "steps must use one <ol>"),
        *_band("structure.items", section.kind, len(steps), spec.items, "steps"),
    ]
    if spec.item_words is not None:
        bad = [f"#{i + 1}={word_count(step)}" for i, step in enumerate(steps) if not spec.item_words.contains(word_count(step))]
        outcomes.append(
            _outcome(
                "structure.item_words",
                section.kind,
                not bad,
                f"step words outside {spec.item_words}: {', '.join(bad)}" if bad else "",
            )
        )
    return outcomes


def _structure_faq(section: SectionInput, ctx: RuleContext) -> List[RuleOutcome]:
    spec = ctx.policy.section(section.kind)
    outcomes = list(_band("structure.items", section.kind, len(section.entries), spec.items, "entries"))
    empty = [str(i + 1) for i, entry in enumerate(section.entries) if not entry.question or not strip_tags(entry.answer_html)]
    outcomes.append(
        _outcome("structure.entries", section.kind, not empty, f"empty entries: {', '.join(empty)}" if empty else "")
    )
    if spec.item_words is not None:
        bad = [
            f"#{i + 1}={word_count(entry.answer_html)}"
            for i, entry in enumerate(section.entries)
            if not spec.item_words.contains(word_count(entry.answer_html))
        ]
        outcomes.append(
            _outcome(
                "structure.item_words",
                section.kind,
                not bad,
                f"answer words outside {spec.item_words}: {', '.join(bad)}" if bad else "",
            )
        )
    return outcomes


STRUCTURE_RULES: Dict[SectionKind, Rule] = {
    SectionKind.ABOUT: _structure_about,
    SectionKind.DETAILS: _structure_bullets,
    SectionKind.REDEEM: _structure_steps,
    SectionKind.TERMS: _structure_bullets,
    SectionKind.FAQ: _structure_faq,
}


# keywords


def keyword_rules(section: SectionInput, ctx: RuleContext) -> List[RuleOutcome]:
    kw: KeywordSet = ctx.keywords
    text = section.full_text
    total = kw.primary_count(text)
    outcomes: List[RuleOutcome] = []
    if section.kind == PRIMARY_SECTION:
        outcomes.append(
            _outcome("keywords.primary_cap", section.kind, total <= 1, f"'{kw.primary_phrase}' x{total} (max 1)")
        )
        paras = paragraphs(section.html)
        first = paras[0] if paras else section.html
        in_first = kw.primary_count(first)
        outcomes.append(
            _outcome(
                "keywords.primary_placement",
                section.kind,
                in_first == 1,
                f"'{kw.primary_phrase}' x{in_first} in first paragraph (need exactly 1)",
            )
        )
    else:
        outcomes.append(
            _outcome(
                "keywords.primary_outside",
                section.kind,
                total == 0,
                f"'{kw.primary_phrase}' x{total} (allowed only in {PRIMARY_SECTION.value})",
            )
        )
    secondary = kw.secondary_count(text)
    cap = ctx.policy.secondary_cap
    outcomes.append(
        _outcome("keywords.secondary_cap", section.kind, secondary <= cap, f"secondary terms x{secondary} (max {cap})")
    )
    return outcomes


# grounding


def _content_tokens(text: str, ctx: RuleContext) -> List[str]:
    skip = ctx.policy.boilerplate_terms | ctx.policy.stopwords | ctx.name_tokens
    return [t for t in tokens(text) if len(t) >= 3 and not t.isdigit() and t not in skip]


def grounding_rules(section: SectionInput, ctx: RuleContext) -> List[RuleOutcome]:
    policy = ctx.policy
    text = section.html if section.kind != SectionKind.FAQ else " ".join(e.answer_html for e in section.entries)
    content = _content_tokens(text, ctx)
    outcomes: List[RuleOutcome] = []
    if len(content) < policy.grounding_min_tokens:
        outcomes.append(_outcome("grounding.overlap", section.kind, True, f"only {len(content)} content tokens"))
    else:
        hits = sum(1 for t in content if t in ctx.evidence_tokens)
        ratio = hits / len(content)
        outcomes.append(
            _outcome(
                "grounding.overlap",
                section.kind,
                ratio >= policy.grounding_min_overlap,
                f"evidence overlap {ratio:.2f} (min {policy.grounding_min_overlap:.2f})",
            )
        )

    full = strip_tags(section.full_text)
    platform = str(policy.platform_name or "").strip()
    if platform:
        mentions = re.search(rf"(?<![a-z0-9]){re.escape(platform)}(?![a-z0-9])", full, re.IGNORECASE)
        host_ok = bool(ctx.evidence_host) and (
            ctx.evidence_host == policy.platform_host or ctx.evidence_host.endswith("." + policy.platform_host)
        )
        outcomes.append(
            _outcome(
                "grounding.platform",
                section.kind,
                not mentions or host_ok,
                f"mentions {platform} but evidence host is {ctx.evidence_host or 'unknown'}" if mentions and not host_ok else "",
            )
        )

    claims = _VERIFIED_RE.search(full)
    supported = "verified" in ctx.evidence_text or "verification" in ctx.evidence_text
    outcomes.append(
        _outcome(
            "grounding.verified_claim",
            section.kind,
            not claims or supported,
            "verification claim without evidence" if claims and not supported else "",
        )
    )
    return outcomes


# anti-spam


def spam_rules(section: SectionInput, ctx: RuleContext) -> List[RuleOutcome]:
    policy = ctx.policy
    plain = strip_tags(section.full_text)
    lowered = plain.lower()
    outcomes: List[RuleOutcome] = []

    linked = bool(_ANCHOR_RE.search(section.raw) or _BARE_URL_RE.search(plain))
    outcomes.append(_outcome("spam.links", section.kind, not linked, "hyperlinks are not allowed" if linked else ""))

    emphasis = len(_EMPHASIS_RE.findall(section.full_text))
    outcomes.append(
        _outcome(
            "spam.emphasis", section.kind, emphasis <= policy.emphasis_cap, f"emphasis tags x{emphasis} (max {policy.emphasis_cap})"
        )
    )

    banned = [
        phrase
        for phrase in policy.certainty_phrases
        if re.search(rf"(?<![a-z0-9]){re.escape(phrase.lower())}(?![a-z0-9])", lowered)
    ]
    outcomes.append(
        _outcome("spam.certainty", section.kind, not banned, f"banned phrases: {', '.join(banned)}" if banned else "")
    )

    if section.kind == SectionKind.FAQ:
        keys = [_normalized(e.question) for e in section.entries]
    else:
        keys = [_normalized(li) for li in list_items(section.html)]
    dupes = sorted({k for k in keys if k and keys.count(k) > 1})
    outcomes.append(
        _outcome("spam.duplicates", section.kind, not dupes, f"duplicated: {'; '.join(dupes)}" if dupes else "")
    )

    chained = has_synonym_chain(section.full_text)
    outcomes.append(
        _outcome("spam.synonym_chain", section.kind, not chained, "back-to-back synonyms" if chained else "")
    )

    misnested = any(pattern.search(section.full_text) for pattern in _MISNESTING_RES)
    outcomes.append(
        _outcome("spam.nesting", section.kind, not misnested, "list/paragraph misnesting" if misnested else "")
    )
    return outcomes


# style


def _style_cadence(section: SectionInput, ctx: RuleContext) -> List[RuleOutcome]:
    policy = ctx.policy
    lengths = sentence_lengths(section.html)
    mean, stdev = mean_stdev(lengths)
    passed = (
        len(lengths) >= policy.min_sentences
        and policy.sentence_mean.contains(mean)
        and policy.sentence_stdev.contains(stdev)
    )
    detail = (
        f"{len(lengths)} sentences (min {policy.min_sentences}), mean {mean:.1f} (allowed {policy.sentence_mean}), "
        f"stdev {stdev:.1f} (allowed {policy.sentence_stdev})"
    )
    return [_outcome("style.cadence", section.kind, passed, detail)]


def _style_imperative(section: SectionInput, ctx: RuleContext) -> List[RuleOutcome]:
    if section.kind not in ctx.policy.imperative_sections:
        return []
    offenders = []
    for index, item in enumerate(list_items(section.html)):
        words = tokens(item)
        if not words or words[0] not in ctx.policy.action_verbs:
            offenders.append(f"#{index + 1}:{words[0] if words else ''}")
    return [
        _outcome(
            "style.imperative",
            section.kind,
            not offenders,
            f"items must open with an action verb: {', '.join(offenders)}" if offenders else "",
        )
    ]


def _style_faq(section: SectionInput, ctx: RuleContext) -> List[RuleOutcome]:
    policy = ctx.policy
    if len(section.entries) < policy.faq_opener_threshold:
        return []
    openers = {tokens(entry.question)[0] for entry in section.entries if tokens(entry.question)}
    return [
        _outcome(
            "style.faq_openers",
            section.kind,
            len(openers) >= policy.faq_min_openers,
            f"{len(openers)} distinct question openers (min {policy.faq_min_openers})",
        )
    ]


STYLE_RULES: Dict[SectionKind, Rule] = {
    SectionKind.ABOUT: _style_cadence,
    SectionKind.DETAILS: _style_imperative,
    SectionKind.REDEEM: _style_imperative,
    SectionKind.TERMS: _style_imperative,
    SectionKind.FAQ: _style_faq,
}

COMMON_RULES: List[Rule] = [keyword_rules, grounding_rules, spam_rules]
