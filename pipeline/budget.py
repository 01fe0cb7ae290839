"""Run-wide spend accounting with a hard cap."""

from __future__ import annotations

import logging
from pathlib import Path
from threading import Lock
from typing import Optional

from core import BudgetLedger, Usage
from storage import atomic_write_json
from utils.exceptions import BudgetExceeded


logger = logging.getLogger(__name__)


class BudgetTracker:
    """
    Shared ledger of tokens and cost.

    ``admit`` is called before every generation call and reserves that call's
    estimated cost; ``record`` settles the reservation against the actual usage
    (``release`` drops it when the call never completed). Admission counts both
    recorded spend and the reservations of calls still in flight, so concurrent
    workers cannot all slip under the cap at once. Before any call has completed
    the estimate is ``seed_call_cost``; afterwards it is the observed average.

    The run aborts once actual spend, or the spend projected over all planned items,
    exceeds the cap. A cap of 0 disables enforcement but still keeps the ledger.
    """

    def __init__(
        self,
        cap: float = 0.0,
        *,
        min_items_for_projection: int = 5,
        seed_call_cost: float = 0.0,
    ) -> None:
        self.cap = max(0.0, float(cap))
        self.min_items = max(1, int(min_items_for_projection))
        self.seed_call_cost = max(0.0, float(seed_call_cost))
        self._lock = Lock()
        self._ledger = BudgetLedger(cap=self.cap)
        self._reserved = 0.0
        self._reported = False

    @classmethod
    def from_settings(cls, settings, *, seed_call_cost: float = 0.0) -> "BudgetTracker":
        return cls(
            settings.cap_usd,
            min_items_for_projection=settings.min_items_for_projection,
            seed_call_cost=seed_call_cost,
        )

    @property
    def enabled(self) -> bool:
        return self.cap > 0

    @property
    def aborted(self) -> bool:
        with self._lock:
            return self._ledger.aborted

    @property
    def reserved(self) -> float:
        with self._lock:
            return self._reserved

    def plan(self, total_items: int) -> None:
        with self._lock:
            self._ledger.items_planned = max(0, int(total_items))

    def _estimate_next_call(self) -> float:
        if self._ledger.calls == 0:
            return self.seed_call_cost
        return self._ledger.cost_so_far / self._ledger.calls

    def _projected(self) -> Optional[float]:
        ledger = self._ledger
        if ledger.items_done == 0 or ledger.items_planned == 0:
            return None
        return ledger.cost_so_far / max(ledger.items_done, self.min_items) * ledger.items_planned

    def _exceeded(self) -> BudgetExceeded:
        return BudgetExceeded(
            f"Budget cap ${self.cap:.2f} reached (spent ${self._ledger.cost_so_far:.4f})",
            cost_so_far=self._ledger.cost_so_far,
            cap=self.cap,
        )

    def _abort(self, reason: str) -> None:
        if not self._ledger.aborted:
            self._ledger.aborted = True
            logger.warning("Budget abort: %s", reason)

    def _check_locked(self) -> None:
        if not self.enabled or self._ledger.aborted:
            return
        if self._ledger.cost_so_far > self.cap:
            self._abort(f"spent ${self._ledger.cost_so_far:.4f} > cap ${self.cap:.2f}")
            return
        projected = self._projected()
        if projected is not None and projected > self.cap:
            self._abort(f"projected ${projected:.4f} over {self._ledger.items_planned} items > cap ${self.cap:.2f}")

    def admit(self) -> float:
        """
        Reserve the next call's estimated cost and return the reservation.

        Raises ``BudgetExceeded`` when the run is aborted or when recorded spend plus
        in-flight reservations plus this estimate would cross the cap.
        """
        if not self.enabled:
            return 0.0
        with self._lock:
            estimate = self._estimate_next_call()
            committed = self._ledger.cost_so_far + self._reserved
            if not self._ledger.aborted and committed + estimate > self.cap:
                self._abort(
                    f"next call (~${estimate:.4f}) on top of ${committed:.4f} committed would cross the cap"
                )
            if self._ledger.aborted:
                raise self._exceeded()
            self._reserved += estimate
            return estimate

    def release(self, reservation: float) -> None:
        """Drop a reservation whose call produced no usage."""
        with self._lock:
            self._reserved = max(0.0, self._reserved - reservation)

    def record(self, usage: Usage, reservation: float = 0.0) -> None:
        with self._lock:
            self._reserved = max(0.0, self._reserved - reservation)
            self._ledger.input_units += usage.input_tokens
            self._ledger.output_units += usage.output_tokens
            self._ledger.cost_so_far += usage.cost
            self._ledger.calls += 1
            self._check_locked()

    def item_completed(self) -> None:
        with self._lock:
            self._ledger.items_done += 1
            self._check_locked()

    def projected_total(self) -> Optional[float]:
        with self._lock:
            return self._projected()

    def claim_report(self) -> bool:
        """True exactly once after an abort, so the run reports it a single time."""
        with self._lock:
            if not self._ledger.aborted or self._reported:
                return False
            self._reported = True
            return True

    def snapshot(self) -> BudgetLedger:
        with self._lock:
            return self._ledger.model_copy()

    def export(self, path: Path) -> None:
        ledger = self.snapshot()
        payload = ledger.model_dump(mode="json")
        payload["projected_total"] = self.projected_total()
        atomic_write_json(Path(path), payload, indent=2)
