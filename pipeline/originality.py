"""Cross-item originality window over accepted primary sections."""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Callable, Deque, FrozenSet, List, Optional, Tuple

from core import Fingerprint
from storage import AppendOnlyLog
from validation.text import jaccard, shingles


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OriginalityReport:
    passed: bool
    similarity: float = 0.0
    closest_item_id: Optional[str] = None

    def describe(self, threshold: float) -> str:
        return (
            f"similarity {self.similarity:.2f} with {self.closest_item_id} "
            f"(limit {threshold:.2f}); rewrite with different structure and phrasing"
        )


class OriginalityGuard:
    """
    Rolling window of fingerprints with a persisted log.

    ``check`` compares against a snapshot taken under the lock; ``admit`` does the
    comparison, the window append and the log append as one serialized step so two
    workers can never both admit near-duplicates.
    """

    def __init__(
        self,
        log_path: Path,
        *,
        window_size: int = 1000,
        reload_tail: int = 2000,
        rotate_ceiling: int = 250_000,
        threshold: float = 0.40,
        shingle_size: int = 3,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.log = AppendOnlyLog(log_path)
        self.window_size = max(1, int(window_size))
        self.reload_tail = max(self.window_size, int(reload_tail))
        self.rotate_ceiling = max(self.reload_tail, int(rotate_ceiling))
        self.threshold = float(threshold)
        self.shingle_size = int(shingle_size)
        self._clock = clock
        self._lock = Lock()
        self._window: Deque[Tuple[str, FrozenSet[str]]] = deque(maxlen=self.window_size)
        self._log_lines = 0

    @classmethod
    def from_settings(cls, log_path: Path, settings) -> "OriginalityGuard":
        return cls(
            log_path,
            window_size=settings.window_size,
            reload_tail=settings.reload_tail,
            rotate_ceiling=settings.rotate_ceiling,
            threshold=settings.threshold,
            shingle_size=settings.shingle_size,
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._window)

    def reload(self) -> int:
        """Rebuild the window from the persisted log tail; returns entries loaded."""
        records = self.log.tail(self.reload_tail)
        loaded = 0
        with self._lock:
            self._window.clear()
            for raw in records:
                try:
                    fingerprint = Fingerprint.model_validate(raw)
                except ValueError:
                    continue
                self._window.append((fingerprint.item_id, frozenset(fingerprint.shingles)))
                loaded += 1
            self._log_lines = self.log.line_count()
        logger.info("Originality window reloaded: %d fingerprints", min(loaded, self.window_size))
        return loaded

    def fingerprint(self, item_id: str, text: str) -> Fingerprint:
        return Fingerprint(item_id=item_id, shingles=sorted(shingles(text, self.shingle_size)), ts=self._clock())

    def _compare(
        self, item_id: str, candidate: FrozenSet[str], window: List[Tuple[str, FrozenSet[str]]]
    ) -> OriginalityReport:
        best, closest = 0.0, None
        for other_id, other in window:
            if other_id == item_id:
                continue
            score = jaccard(set(candidate), set(other))
            if score > best:
                best, closest = score, other_id
        return OriginalityReport(passed=best < self.threshold, similarity=best, closest_item_id=closest)

    def check(self, item_id: str, text: str) -> OriginalityReport:
        candidate = frozenset(shingles(text, self.shingle_size))
        with self._lock:
            snapshot = list(self._window)
        return self._compare(item_id, candidate, snapshot)

    def admit(self, item_id: str, text: str) -> OriginalityReport:
        """Check and, when original enough, record the fingerprint."""
        fingerprint = self.fingerprint(item_id, text)
        candidate = frozenset(fingerprint.shingles)
        with self._lock:
            report = self._compare(item_id, candidate, list(self._window))
            if not report.passed:
                return report
            self.log.append(fingerprint.model_dump(mode="json"))
            self._window.append((item_id, candidate))
            self._log_lines += 1
            if self._log_lines > self.rotate_ceiling:
                self._log_lines = self.log.compact(self.reload_tail)
        return report
