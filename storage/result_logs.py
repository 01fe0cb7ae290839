"""Accepted-results and reject logs."""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from threading import Lock
from typing import Dict, Iterator, List, Optional, Set

from core import AcceptedRecord, ErrorCode, RejectRecord

from .append_log import AppendOnlyLog


logger = logging.getLogger(__name__)


def ref_for_wire(payload: Dict) -> str:
    body = json.dumps(payload, sort_keys=True, ensure_ascii=False, default=str)
    return "sha256:" + hashlib.sha256(body.encode("utf-8")).hexdigest()[:16]


def record_ref_for(record: AcceptedRecord) -> str:
    """Stable reference stored in the checkpoint for an accepted record."""
    return ref_for_wire(record.to_wire())


class AcceptedLog:
    """Write-once log: at most one record per item id."""

    def __init__(self, path: Path) -> None:
        self._log = AppendOnlyLog(path)
        self._lock = Lock()
        self._ids: Optional[Set[str]] = None

    @property
    def path(self) -> Path:
        return self._log.path

    def _load_ids(self) -> Set[str]:
        if self._ids is None:
            self._ids = {str(row.get("id")) for row in self._log.read() if row.get("id")}
        return self._ids

    def ids(self) -> Set[str]:
        with self._lock:
            return set(self._load_ids())

    def contains(self, item_id: str) -> bool:
        with self._lock:
            return item_id in self._load_ids()

    def append_once(self, record: AcceptedRecord) -> bool:
        """Append unless the item already has a record. Returns True when written."""
        with self._lock:
            ids = self._load_ids()
            if record.item_id in ids:
                logger.warning("Accepted record for %s already present; not rewriting", record.item_id)
                return False
            self._log.append(record.to_wire())
            ids.add(record.item_id)
            return True

    def records(self) -> Iterator[Dict]:
        return self._log.read()

    def refs(self) -> Dict[str, str]:
        """item id -> record ref for every record on disk (first record wins)."""
        refs: Dict[str, str] = {}
        for row in self._log.read():
            item_id = str(row.get("id") or "")
            if item_id and item_id not in refs:
                refs[item_id] = ref_for_wire(row)
        return refs


class RejectLog:
    """Append-only log of terminal rejections."""

    def __init__(self, path: Path) -> None:
        self._log = AppendOnlyLog(path)

    @property
    def path(self) -> Path:
        return self._log.path

    def append(self, record: RejectRecord) -> None:
        self._log.append(record.model_dump(mode="json"))

    def records(self) -> Iterator[RejectRecord]:
        for row in self._log.read():
            try:
                yield RejectRecord.model_validate(row)
            except ValueError:
                logger.warning("Skipping malformed reject row: %s", row)

    def latest_by_item(self) -> Dict[str, RejectRecord]:
        latest: Dict[str, RejectRecord] = {}
        for record in self.records():
            current = latest.get(record.item_id)
            if current is None or record.ts >= current.ts:
                latest[record.item_id] = record
        return latest

    def ids_with_code(self, code: ErrorCode) -> List[str]:
        return sorted(item_id for item_id, rec in self.latest_by_item().items() if rec.error_code == code)
