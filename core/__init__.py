"""Core contracts and shared types for the copy pipeline."""

from .contracts import (
    PRIMARY_SECTION,
    SECTION_SPECS,
    AcceptedMeta,
    AcceptedRecord,
    BudgetLedger,
    CheckpointEntry,
    ErrorCode,
    EvidenceFlags,
    EvidenceRecord,
    FaqEntry,
    Fingerprint,
    GenerationRequest,
    GenerationResult,
    ItemOutcome,
    ItemOutcomeStatus,
    ItemStatus,
    RejectRecord,
    RepairInstruction,
    RuleOutcome,
    RunSummary,
    SectionKind,
    SectionShape,
    SectionSpec,
    Tier,
    Usage,
    ValidationVerdict,
    WorkItem,
    is_populated,
    section_from_wire,
)

__all__ = [
    "PRIMARY_SECTION",
    "SECTION_SPECS",
    "AcceptedMeta",
    "AcceptedRecord",
    "BudgetLedger",
    "CheckpointEntry",
    "ErrorCode",
    "EvidenceFlags",
    "EvidenceRecord",
    "FaqEntry",
    "Fingerprint",
    "GenerationRequest",
    "GenerationResult",
    "ItemOutcome",
    "ItemOutcomeStatus",
    "ItemStatus",
    "RejectRecord",
    "RepairInstruction",
    "RuleOutcome",
    "RunSummary",
    "SectionKind",
    "SectionShape",
    "SectionSpec",
    "Tier",
    "Usage",
    "ValidationVerdict",
    "WorkItem",
    "is_populated",
    "section_from_wire",
]
