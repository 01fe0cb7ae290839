"""Canonical data contracts for the catalog copy pipeline."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _now() -> float:
    return time.time()


class ItemStatus(str, Enum):
    """Checkpoint lifecycle state of a work item."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    DONE = "done"
    REJECTED = "rejected"


class Tier(str, Enum):
    """Generation quality/cost tier."""

    PRIMARY = "primary"
    ESCALATED = "escalated"


class ErrorCode(str, Enum):
    """Bucketed terminal error codes."""

    EVIDENCE_UNAVAILABLE = "EvidenceUnavailable"
    NETWORK_FAILURE = "NetworkFailure"
    THIN_EVIDENCE = "ThinEvidence"
    BLOCKED_EVIDENCE = "BlockedEvidence"
    BAD_CONTENT_TYPE = "BadContentType"
    GENERATION_FAILURE = "GenerationFailure"
    GUARDRAIL_FAILURE = "GuardrailFailure"
    ORIGINALITY_FAILURE = "OriginalityFailure"
    BUDGET_EXCEEDED = "BudgetExceeded"
    ABANDONED = "Abandoned"


class SectionKind(str, Enum):
    """Closed set of generated content sections."""

    ABOUT = "about"
    DETAILS = "details"
    REDEEM = "redeem"
    TERMS = "terms"
    FAQ = "faq"


class SectionShape(str, Enum):
    TEXT = "text"
    ENTRIES = "entries"


class SectionSpec(BaseModel):
    """Static description of one section kind."""

    model_config = ConfigDict(frozen=True)

    kind: SectionKind
    wire_key: str
    shape: SectionShape
    list_tag: Optional[str] = None


SECTION_SPECS: Dict[SectionKind, SectionSpec] = {
    SectionKind.ABOUT: SectionSpec(kind=SectionKind.ABOUT, wire_key="aboutcontent", shape=SectionShape.TEXT),
    SectionKind.DETAILS: SectionSpec(
        kind=SectionKind.DETAILS, wire_key="promodetailscontent", shape=SectionShape.TEXT, list_tag="ul"
    ),
    SectionKind.REDEEM: SectionSpec(
        kind=SectionKind.REDEEM, wire_key="howtoredeemcontent", shape=SectionShape.TEXT, list_tag="ol"
    ),
    SectionKind.TERMS: SectionSpec(
        kind=SectionKind.TERMS, wire_key="termscontent", shape=SectionShape.TEXT, list_tag="ul"
    ),
    SectionKind.FAQ: SectionSpec(kind=SectionKind.FAQ, wire_key="faqcontent", shape=SectionShape.ENTRIES),
}

PRIMARY_SECTION = SectionKind.ABOUT

_WIRE_TO_KIND = {spec.wire_key: kind for kind, spec in SECTION_SPECS.items()}


def section_from_wire(key: str) -> Optional[SectionKind]:
    """Map a wire key (``aboutcontent``, ``aboutContent``, ``about``) to a section kind."""
    value = str(key or "").strip().lower()
    if value in _WIRE_TO_KIND:
        return _WIRE_TO_KIND[value]
    try:
        return SectionKind(value)
    except ValueError:
        return None


def is_populated(value: Any) -> bool:
    """True when an existing section value carries content."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, dict)):
        return len(value) > 0
    return True


class FaqEntry(BaseModel):
    """One question/answer pair."""

    model_config = ConfigDict(populate_by_name=True)

    question: str
    answer_html: str = Field(alias="answerHtml")

    def to_wire(self) -> Dict[str, str]:
        return {"question": self.question, "answerHtml": self.answer_html}


class WorkItem(BaseModel):
    """Catalog item descriptor fed to the pipeline."""

    id: str
    display_name: str
    source_url: str = ""
    existing_fields: Dict[SectionKind, Any] = Field(default_factory=dict)
    status: ItemStatus = ItemStatus.PENDING

    @field_validator("id", "display_name", mode="before")
    @classmethod
    def _non_empty_text(cls, value: Any) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("value is required")
        return text

    @field_validator("source_url", mode="before")
    @classmethod
    def _url_text(cls, value: Any) -> str:
        return str(value or "").strip()

    def populated_fields(self) -> List[SectionKind]:
        return [kind for kind in SectionKind if is_populated(self.existing_fields.get(kind))]

    def missing_fields(self) -> List[SectionKind]:
        populated = set(self.populated_fields())
        return [kind for kind in SectionKind if kind not in populated]


class EvidenceFlags(BaseModel):
    """Validity flags attached to an evidence record."""

    model_config = ConfigDict(frozen=True)

    thin: bool = False
    cookie_walled: bool = False
    captcha_blocked: bool = False
    bad_content_type: bool = False

    @property
    def viable(self) -> bool:
        return not (self.thin or self.cookie_walled or self.captcha_blocked or self.bad_content_type)


class EvidenceRecord(BaseModel):
    """Extracted source material for one URL. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    source_url: str
    final_url: str = ""
    fetched_at: float = Field(default_factory=_now)
    content_hash: str = ""
    title: str = ""
    block_count: int = 0
    blocks: List[str] = Field(default_factory=list)
    text_sample: str = ""
    char_count: int = 0
    faq_pairs: List[Dict[str, str]] = Field(default_factory=list)
    price_tokens: List[str] = Field(default_factory=list)
    content_type: str = ""
    status_code: int = 0
    flags: EvidenceFlags = Field(default_factory=EvidenceFlags)

    @property
    def evidence_ref(self) -> str:
        return self.content_hash

    @property
    def host(self) -> str:
        try:
            host = urlparse(self.final_url or self.source_url).hostname or ""
        except ValueError:
            return ""
        return host.lower()


class Usage(BaseModel):
    """Token usage and cost of one or more generation calls."""

    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0

    def merged(self, other: "Usage") -> "Usage":
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cost=self.cost + other.cost,
        )


class RuleOutcome(BaseModel):
    """Result of one guardrail check."""

    rule_id: str
    section: Optional[SectionKind] = None
    passed: bool
    detail: str = ""

    @property
    def label(self) -> str:
        return f"{self.rule_id}[{self.section.value}]" if self.section else self.rule_id


class RepairInstruction(BaseModel):
    """Targeted fix request carried by a repair generation."""

    failures: List[RuleOutcome] = Field(default_factory=list)
    previous: Dict[str, Any] = Field(default_factory=dict)


class GenerationRequest(BaseModel):
    """Input to the generation service."""

    item_id: str
    display_name: str
    missing_fields: List[SectionKind]
    evidence: EvidenceRecord
    tier: Tier = Tier.PRIMARY
    repair: Optional[RepairInstruction] = None

    @property
    def evidence_ref(self) -> str:
        return self.evidence.content_hash


class GenerationResult(BaseModel):
    """Candidate content as returned by the generation service (unsanitized)."""

    sections: Dict[SectionKind, Any] = Field(default_factory=dict)
    tier_used: Tier = Tier.PRIMARY
    usage: Usage = Field(default_factory=Usage)
    model: str = ""
    raw_text: str = ""

    def to_wire(self) -> Dict[str, Any]:
        return {SECTION_SPECS[kind].wire_key: _wire_value(value) for kind, value in self.sections.items()}


def _wire_value(value: Any) -> Any:
    if isinstance(value, list):
        return [entry.to_wire() if isinstance(entry, FaqEntry) else entry for entry in value]
    return value


class ValidationVerdict(BaseModel):
    """Ordered outcomes of every guardrail plus the sanitized, merged content."""

    outcomes: List[RuleOutcome] = Field(default_factory=list)
    content: Dict[SectionKind, Any] = Field(default_factory=dict)
    preserved: List[SectionKind] = Field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(outcome.passed for outcome in self.outcomes)

    @property
    def failures(self) -> List[RuleOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.passed]

    @property
    def failed_rule_ids(self) -> List[str]:
        return [outcome.label for outcome in self.failures]


class Fingerprint(BaseModel):
    """Shingle signature of an accepted primary section."""

    item_id: str
    shingles: List[str] = Field(default_factory=list)
    ts: float = Field(default_factory=_now)


class CheckpointEntry(BaseModel):
    """Durable per-item state."""

    item_id: str
    state: ItemStatus = ItemStatus.PENDING
    lease_expiry: Optional[float] = None
    retry_count: int = 0
    last_error_code: Optional[ErrorCode] = None
    record_ref: Optional[str] = None
    updated_at: float = Field(default_factory=_now)


class RejectRecord(BaseModel):
    """Append-only rejection entry."""

    item_id: str
    error_code: ErrorCode
    message: str = ""
    ts: float = Field(default_factory=_now)
    source_url: str = ""
    failed_rules: List[str] = Field(default_factory=list)


class AcceptedMeta(BaseModel):
    source_url: str = ""
    final_url: str = ""
    evidence_hash: str = ""
    tier_used: Tier = Tier.PRIMARY
    attempts: int = 1
    cost: float = 0.0
    preserved: List[SectionKind] = Field(default_factory=list)


class AcceptedRecord(BaseModel):
    """One accepted item as written to the accepted-results log."""

    item_id: str
    sections: Dict[SectionKind, Any] = Field(default_factory=dict)
    meta: AcceptedMeta = Field(default_factory=AcceptedMeta)
    ts: float = Field(default_factory=_now)

    def to_wire(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"id": self.item_id}
        for kind in SectionKind:
            if kind in self.sections:
                payload[SECTION_SPECS[kind].wire_key] = _wire_value(self.sections[kind])
        payload["__meta"] = self.meta.model_dump(mode="json")
        payload["ts"] = self.ts
        return payload


class BudgetLedger(BaseModel):
    """Snapshot of cumulative spend."""

    input_units: int = 0
    output_units: int = 0
    cost_so_far: float = 0.0
    cap: float = 0.0
    calls: int = 0
    items_done: int = 0
    items_planned: int = 0
    aborted: bool = False


class ItemOutcomeStatus(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    SKIPPED = "skipped"
    INTERRUPTED = "interrupted"
    BUDGET_EXCEEDED = "budget_exceeded"
    PREVIEWED = "previewed"


class ItemOutcome(BaseModel):
    """What happened to one item in one run."""

    item_id: str
    status: ItemOutcomeStatus
    error_code: Optional[ErrorCode] = None
    message: str = ""
    attempts: int = 0
    tier_used: Optional[Tier] = None
    cost: float = 0.0


class RunSummary(BaseModel):
    """Run-level totals."""

    planned: int = 0
    accepted: int = 0
    rejected: int = 0
    skipped: int = 0
    interrupted: int = 0
    previewed: int = 0
    reclaimed: int = 0
    budget_exceeded: bool = False
    stopped_by_signal: bool = False
    rejects_by_code: Dict[str, int] = Field(default_factory=dict)
    ledger: BudgetLedger = Field(default_factory=BudgetLedger)
    started_at: float = Field(default_factory=_now)
    finished_at: Optional[float] = None
