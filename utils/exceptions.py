"""
Custom Exceptions
"""
from typing import Any, Optional


class PipelineError(Exception):
    """Base error for the copy pipeline"""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(PipelineError):
    """Invalid or missing configuration"""
    pass


class StorageError(PipelineError):
    """Durable storage failure"""
    pass


class CheckpointError(StorageError):
    """Illegal checkpoint transition or unreadable checkpoint"""

    def __init__(self, message: str, item_id: str = None, **kwargs):
        super().__init__(message, kwargs)
        self.item_id = item_id


class LockHeldError(StorageError):
    """Another run holds the output lock"""

    def __init__(self, message: str, holder_pid: Optional[int] = None, **kwargs):
        super().__init__(message, kwargs)
        self.holder_pid = holder_pid


class EvidenceError(PipelineError):
    """Evidence could not be used; carries a bucketed error code"""

    code: str = "EvidenceUnavailable"

    def __init__(self, message: str, url: str = None, record: Any = None, **kwargs):
        super().__init__(message, kwargs)
        self.url = url
        self.record = record


class EvidenceUnavailable(EvidenceError):
    """Malformed/blocked URL or non-2xx response"""
    code = "EvidenceUnavailable"


class NetworkFailure(EvidenceError):
    """Transport errors persisted through every retry"""
    code = "NetworkFailure"


class ThinEvidence(EvidenceError):
    """Too little extractable content"""
    code = "ThinEvidence"


class BlockedEvidence(EvidenceError):
    """Cookie wall or CAPTCHA"""
    code = "BlockedEvidence"


class BadContentType(EvidenceError):
    """Response is not text/HTML"""
    code = "BadContentType"


class GenerationError(PipelineError):
    """Text-generation call failed"""

    code = "GenerationFailure"

    def __init__(
        self,
        message: str,
        provider: str = None,
        rate_limited: bool = False,
        **kwargs,
    ):
        super().__init__(message, kwargs)
        self.provider = provider
        self.rate_limited = rate_limited


class BudgetExceeded(PipelineError):
    """Spend (actual or projected) crossed the cap"""

    code = "BudgetExceeded"

    def __init__(self, message: str, cost_so_far: float = 0.0, cap: float = 0.0, **kwargs):
        super().__init__(message, {"cost_so_far": round(cost_so_far, 6), "cap": cap, **kwargs})
        self.cost_so_far = cost_so_far
        self.cap = cap


class RunInterrupted(PipelineError):
    """Cooperative stop requested while an item was in flight"""
    pass
