"""
Utils Module
"""
from .logger import setup_logger, get_logger
from .exceptions import (
    PipelineError,
    ConfigurationError,
    StorageError,
    CheckpointError,
    LockHeldError,
    EvidenceError,
    EvidenceUnavailable,
    NetworkFailure,
    ThinEvidence,
    BlockedEvidence,
    BadContentType,
    GenerationError,
    BudgetExceeded,
    RunInterrupted,
)

__all__ = [
    "setup_logger",
    "get_logger",
    "PipelineError",
    "ConfigurationError",
    "StorageError",
    "CheckpointError",
    "LockHeldError",
    "EvidenceError",
    "EvidenceUnavailable",
    "NetworkFailure",
    "ThinEvidence",
    "BlockedEvidence",
    "BadContentType",
    "GenerationError",
    "BudgetExceeded",
    "RunInterrupted",
]
