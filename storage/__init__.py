"""
Storage Module
Durable state: checkpoint, append-only logs, evidence cache.
"""
from .append_log import AppendOnlyLog
from .atomic import atomic_write_bytes, atomic_write_json, atomic_write_text, read_json
from .cache import EvidenceCache
from .checkpoint import CheckpointStore
from .result_logs import AcceptedLog, RejectLog, record_ref_for

__all__ = [
    "AppendOnlyLog",
    "atomic_write_bytes",
    "atomic_write_json",
    "atomic_write_text",
    "read_json",
    "EvidenceCache",
    "CheckpointStore",
    "AcceptedLog",
    "RejectLog",
    "record_ref_for",
]
