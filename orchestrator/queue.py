"""In-memory FIFO of work items with dedup by item id."""

from __future__ import annotations

from collections import deque
from threading import Lock
from typing import Deque, Iterable, Optional, Set

from core import WorkItem


class ItemQueue:
    """Shared queue the workers drain; an id is queued at most once at a time."""

    def __init__(self, items: Iterable[WorkItem] = ()) -> None:
        self._queue: Deque[WorkItem] = deque()
        self._enqueued: Set[str] = set()
        self._lock = Lock()
        for item in items:
            self.enqueue(item)

    def enqueue(self, item: WorkItem) -> bool:
        """Queue item once. Returns True when newly enqueued."""
        with self._lock:
            if item.id in self._enqueued:
                return False
            self._queue.append(item)
            self._enqueued.add(item.id)
            return True

    def dequeue(self) -> Optional[WorkItem]:
        """Pop next item, or None when empty."""
        with self._lock:
            if not self._queue:
                return None
            item = self._queue.popleft()
            self._enqueued.discard(item.id)
            return item

    def drain(self) -> int:
        """Drop everything still queued; returns how many were dropped."""
        with self._lock:
            dropped = len(self._queue)
            self._queue.clear()
            self._enqueued.clear()
            return dropped

    def size(self) -> int:
        with self._lock:
            return len(self._queue)
