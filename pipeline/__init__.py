"""Per-item processing: repair loop, originality, budget and recovery."""

from .budget import BudgetTracker
from .item_pipeline import ItemPipeline
from .originality import OriginalityGuard, OriginalityReport
from .repair import (
    AttemptOutcome,
    RepairAction,
    RepairController,
    RepairPhase,
    RepairResult,
    RepairState,
    transition,
)
from .retry_classifier import (
    BucketReport,
    ProbeReport,
    RecoveryPlan,
    RetryClassifier,
    classify_message,
)

__all__ = [
    "BudgetTracker",
    "ItemPipeline",
    "OriginalityGuard",
    "OriginalityReport",
    "AttemptOutcome",
    "RepairAction",
    "RepairController",
    "RepairPhase",
    "RepairResult",
    "RepairState",
    "transition",
    "BucketReport",
    "ProbeReport",
    "RecoveryPlan",
    "RetryClassifier",
    "classify_message",
]
