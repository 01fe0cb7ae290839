"""Run orchestration: worker pool, run lock and service wiring."""

from .queue import ItemQueue
from .run_lock import RunLock, pid_alive
from .runtime import RunPaths, build_checkpoint, build_classifier, build_fetcher, build_policy, build_pool
from .worker_pool import WorkerPool

__all__ = [
    "ItemQueue",
    "RunLock",
    "pid_alive",
    "RunPaths",
    "build_checkpoint",
    "build_classifier",
    "build_fetcher",
    "build_policy",
    "build_pool",
    "WorkerPool",
]
