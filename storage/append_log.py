"""Generic append-only JSONL log with atomic compaction."""

from __future__ import annotations

import json
import logging
import os
from collections import deque
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterator, List

from .atomic import atomic_write_bytes


logger = logging.getLogger(__name__)


class AppendOnlyLog:
    """
    One JSON object per line.

    Each append is a single ``os.write`` on an ``O_APPEND`` descriptor followed by
    fsync, so concurrent appenders never interleave and a crash can at worst leave
    one torn trailing line. Readers skip lines that do not parse.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()

    def append(self, record: Dict[str, Any]) -> None:
        line = json.dumps(record, ensure_ascii=False, default=str) + "\n"
        payload = line.encode("utf-8")
        with self._lock:
            self._repair_torn_tail()
            fd = os.open(str(self.path), os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
            try:
                os.write(fd, payload)
                os.fsync(fd)
            finally:
                os.close(fd)

    def _repair_torn_tail(self) -> None:
        # A torn last line (no newline) would swallow the next record.
        try:
            size = self.path.stat().st_size
        except FileNotFoundError:
            return
        if size == 0:
            return
        with self.path.open("rb") as fh:
            fh.seek(size - 1)
            last = fh.read(1)
        if last != b"\n":
            fd = os.open(str(self.path), os.O_WRONLY | os.O_APPEND)
            try:
                os.write(fd, b"\n")
            finally:
                os.close(fd)

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        return self.read()

    def read(self) -> Iterator[Dict[str, Any]]:
        if not self.path.exists():
            return
        with self.path.open("r", encoding="utf-8") as fh:
            for lineno, line in enumerate(fh, start=1):
                text = line.strip()
                if not text:
                    continue
                try:
                    record = json.loads(text)
                except json.JSONDecodeError:
                    logger.warning("Skipping unreadable line %d in %s", lineno, self.path.name)
                    continue
                if isinstance(record, dict):
                    yield record

    def tail(self, count: int) -> List[Dict[str, Any]]:
        if count <= 0:
            return []
        return list(deque(self.read(), maxlen=count))

    def line_count(self) -> int:
        if not self.path.exists():
            return 0
        with self.path.open("rb") as fh:
            return sum(1 for _ in fh)

    def compact(self, keep_last: int) -> int:
        """Atomically replace the log with its last ``keep_last`` records; returns kept count."""
        with self._lock:
            kept = self.tail(keep_last)
            body = "".join(json.dumps(record, ensure_ascii=False, default=str) + "\n" for record in kept)
            atomic_write_bytes(self.path, body.encode("utf-8"))
        logger.info("Compacted %s to %d records", self.path.name, len(kept))
        return len(kept)
