"""Durable per-item checkpoint state with leases."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from threading import Lock
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from core import CheckpointEntry, ErrorCode, ItemStatus
from utils.exceptions import CheckpointError

from .atomic import atomic_write_json, read_json


logger = logging.getLogger(__name__)

CHECKPOINT_VERSION = 1


class CheckpointStore:
    """
    ``item_id -> CheckpointEntry`` persisted as one JSON document.

    Every mutation rewrites the document atomically (temp file, fsync, rename), so a
    crash leaves either the previous or the new state on disk, never a mix. Items
    absent from the document are implicitly Pending.
    """

    def __init__(
        self,
        path: Path,
        *,
        lease_timeout: float = 30 * 60,
        retry_ceiling: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.path = Path(path)
        self.lease_timeout = float(lease_timeout)
        self.retry_ceiling = retry_ceiling
        self._clock = clock
        self._lock = Lock()
        self._entries: Dict[str, CheckpointEntry] = self._load()

    def _load(self) -> Dict[str, CheckpointEntry]:
        try:
            data = read_json(self.path, default=None)
        except json.JSONDecodeError as exc:
            raise CheckpointError(f"Checkpoint file is unreadable: {self.path}", error=str(exc)) from exc
        if not data:
            return {}
        raw_entries = data.get("entries", {}) if isinstance(data, dict) else {}
        entries: Dict[str, CheckpointEntry] = {}
        for item_id, raw in raw_entries.items():
            entries[item_id] = CheckpointEntry.model_validate({**raw, "item_id": item_id})
        return entries

    def _persist(self) -> None:
        payload = {
            "version": CHECKPOINT_VERSION,
            "saved_at": self._clock(),
            "entries": {
                item_id: entry.model_dump(mode="json", exclude={"item_id"})
                for item_id, entry in self._entries.items()
            },
        }
        atomic_write_json(self.path, payload)

    def _entry(self, item_id: str) -> CheckpointEntry:
        return self._entries.get(item_id) or CheckpointEntry(item_id=item_id, updated_at=self._clock())

    def _lease_expired(self, entry: CheckpointEntry, now: float) -> bool:
        return entry.lease_expiry is None or entry.lease_expiry <= now

    def _exhausted(self, entry: CheckpointEntry) -> bool:
        return (
            self.retry_ceiling is not None
            and entry.state == ItemStatus.REJECTED
            and entry.last_error_code != ErrorCode.ABANDONED
            and entry.retry_count >= self.retry_ceiling
        )

    # reads

    def get(self, item_id: str) -> Optional[CheckpointEntry]:
        with self._lock:
            entry = self._entries.get(item_id)
            return entry.model_copy(deep=True) if entry else None

    def state_of(self, item_id: str) -> ItemStatus:
        with self._lock:
            entry = self._entries.get(item_id)
            return entry.state if entry else ItemStatus.PENDING

    def entries(self) -> List[CheckpointEntry]:
        with self._lock:
            return [entry.model_copy(deep=True) for entry in self._entries.values()]

    def exhausted(self, item_id: str) -> bool:
        """Rejected, not yet parked, and out of retries."""
        with self._lock:
            entry = self._entries.get(item_id)
            return entry is not None and self._exhausted(entry)

    def ids_in_state(self, state: ItemStatus) -> List[str]:
        with self._lock:
            return sorted(item_id for item_id, entry in self._entries.items() if entry.state == state)

    def counts(self) -> Dict[str, int]:
        with self._lock:
            counts = {state.value: 0 for state in ItemStatus}
            for entry in self._entries.values():
                counts[entry.state.value] += 1
            return counts

    def should_process(self, item_id: str, *, override: bool = False) -> bool:
        """Done is terminal; Rejected and live leases need the override flag."""
        with self._lock:
            entry = self._entries.get(item_id)
            if entry is None or entry.state == ItemStatus.PENDING:
                return True
            if entry.state == ItemStatus.DONE:
                return False
            if entry.state == ItemStatus.REJECTED:
                return override and entry.last_error_code != ErrorCode.ABANDONED and not self._exhausted(entry)
            return override or self._lease_expired(entry, self._clock())

    # transitions

    def mark_in_flight(self, item_id: str, *, override: bool = False) -> CheckpointEntry:
        with self._lock:
            now = self._clock()
            entry = self._entry(item_id)
            if entry.state == ItemStatus.DONE:
                raise CheckpointError("Item already done", item_id=item_id)
            if entry.state == ItemStatus.REJECTED:
                if not override:
                    raise CheckpointError("Item was rejected; override required", item_id=item_id)
                if entry.last_error_code == ErrorCode.ABANDONED:
                    raise CheckpointError("Item is abandoned", item_id=item_id)
                if self._exhausted(entry):
                    raise CheckpointError(
                        "Retry ceiling reached", item_id=item_id, retry_count=entry.retry_count
                    )
                entry.retry_count += 1
            elif entry.state == ItemStatus.IN_FLIGHT and not override and not self._lease_expired(entry, now):
                raise CheckpointError("Item lease is held", item_id=item_id, lease_expiry=entry.lease_expiry)
            entry.state = ItemStatus.IN_FLIGHT
            entry.lease_expiry = now + self.lease_timeout
            entry.updated_at = now
            self._entries[item_id] = entry
            self._persist()
            return entry.model_copy(deep=True)

    def renew_lease(self, item_id: str) -> None:
        with self._lock:
            entry = self._entries.get(item_id)
            if entry is None or entry.state != ItemStatus.IN_FLIGHT:
                raise CheckpointError("No lease to renew", item_id=item_id)
            now = self._clock()
            entry.lease_expiry = now + self.lease_timeout
            entry.updated_at = now
            self._persist()

    def release(self, item_id: str) -> None:
        """Return an in-flight item to Pending without recording an outcome."""
        with self._lock:
            entry = self._entries.get(item_id)
            if entry is None or entry.state != ItemStatus.IN_FLIGHT:
                return
            entry.state = ItemStatus.PENDING
            entry.lease_expiry = None
            entry.updated_at = self._clock()
            self._persist()

    def mark_done(self, item_id: str, record_ref: str) -> None:
        with self._lock:
            entry = self._entries.get(item_id)
            if entry is None or entry.state != ItemStatus.IN_FLIGHT:
                raise CheckpointError("Only in-flight items can be marked done", item_id=item_id)
            entry.state = ItemStatus.DONE
            entry.lease_expiry = None
            entry.record_ref = record_ref
            entry.last_error_code = None
            entry.updated_at = self._clock()
            self._persist()

    def mark_rejected(self, item_id: str, error_code: ErrorCode) -> None:
        with self._lock:
            entry = self._entries.get(item_id)
            if entry is None or entry.state != ItemStatus.IN_FLIGHT:
                raise CheckpointError("Only in-flight items can be rejected", item_id=item_id)
            entry.state = ItemStatus.REJECTED
            entry.lease_expiry = None
            entry.last_error_code = ErrorCode(error_code)
            entry.updated_at = self._clock()
            self._persist()

    def park(self, item_ids: Iterable[str]) -> List[str]:
        """Permanently park rejected items as Abandoned."""
        parked: List[str] = []
        with self._lock:
            now = self._clock()
            for item_id in item_ids:
                entry = self._entries.get(item_id)
                if entry is None or entry.state != ItemStatus.REJECTED:
                    continue
                if entry.last_error_code == ErrorCode.ABANDONED:
                    continue
                entry.last_error_code = ErrorCode.ABANDONED
                entry.updated_at = now
                parked.append(item_id)
            if parked:
                self._persist()
        return parked

    # recovery

    def reclaim_expired(self) -> List[str]:
        """Return expired in-flight leases to Pending."""
        reclaimed: List[str] = []
        with self._lock:
            now = self._clock()
            for item_id, entry in self._entries.items():
                if entry.state == ItemStatus.IN_FLIGHT and self._lease_expired(entry, now):
                    entry.state = ItemStatus.PENDING
                    entry.lease_expiry = None
                    entry.updated_at = now
                    reclaimed.append(item_id)
            if reclaimed:
                self._persist()
        if reclaimed:
            logger.info("Reclaimed %d expired leases", len(reclaimed))
        return reclaimed

    def reconcile(self, accepted_refs: Dict[str, str]) -> Tuple[List[str], List[str]]:
        """
        Align with the accepted log after a crash.

        Args:
            accepted_refs: item id -> record ref for every record in the accepted log

        Returns:
            (promoted, demoted): items marked Done because a record exists, and Done
            items without a record returned to Pending
        """
        promoted: List[str] = []
        demoted: List[str] = []
        with self._lock:
            now = self._clock()
            for item_id, ref in accepted_refs.items():
                entry = self._entry(item_id)
                if entry.state != ItemStatus.DONE:
                    entry.state = ItemStatus.DONE
                    entry.lease_expiry = None
                    entry.last_error_code = None
                    entry.record_ref = ref
                    entry.updated_at = now
                    self._entries[item_id] = entry
                    promoted.append(item_id)
            for item_id, entry in self._entries.items():
                if entry.state == ItemStatus.DONE and item_id not in accepted_refs:
                    entry.state = ItemStatus.PENDING
                    entry.record_ref = None
                    entry.updated_at = now
                    demoted.append(item_id)
            if promoted or demoted:
                self._persist()
        if promoted or demoted:
            logger.warning("Checkpoint reconciled: %d promoted, %d demoted", len(promoted), len(demoted))
        return promoted, demoted

    def check_invariants(self, accepted_ids: Iterable[str]) -> List[str]:
        """Return human-readable violations (empty when consistent)."""
        accepted = set(accepted_ids)
        problems: List[str] = []
        with self._lock:
            done = {item_id for item_id, entry in self._entries.items() if entry.state == ItemStatus.DONE}
        for item_id in sorted(done - accepted):
            problems.append(f"{item_id}: done without accepted record")
        for item_id in sorted(accepted - done):
            problems.append(f"{item_id}: accepted record but not done")
        return problems
