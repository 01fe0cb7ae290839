from __future__ import annotations

import json
from pathlib import Path

import pytest

from core import Usage
from pipeline import BudgetTracker
from utils.exceptions import BudgetExceeded


def _spend(tracker: BudgetTracker, cost: float) -> None:
    reservation = tracker.admit()
    tracker.record(Usage(input_tokens=1000, output_tokens=500, cost=cost), reservation)


def test_zero_cap_disables_enforcement_but_keeps_ledger() -> None:
    tracker = BudgetTracker(0)
    for _ in range(5):
        _spend(tracker, 10.0)
    ledger = tracker.snapshot()
    assert not tracker.enabled
    assert ledger.cost_so_far == pytest.approx(50.0)
    assert ledger.calls == 5
    assert ledger.input_units == 5000
    assert not ledger.aborted


def test_admit_refuses_call_that_would_cross_cap() -> None:
    tracker = BudgetTracker(1.0)
    _spend(tracker, 0.4)
    _spend(tracker, 0.4)
    with pytest.raises(BudgetExceeded) as info:
        tracker.admit()
    assert info.value.cap == 1.0
    assert tracker.snapshot().cost_so_far == pytest.approx(0.8)
    assert tracker.aborted


def test_concurrent_admits_count_reservations() -> None:
    tracker = BudgetTracker(0.005, seed_call_cost=0.002)
    first = tracker.admit()
    second = tracker.admit()
    assert first == second == pytest.approx(0.002)
    assert tracker.reserved == pytest.approx(0.004)
    # 0.004 reserved + 0.002 estimate > 0.005
    with pytest.raises(BudgetExceeded):
        tracker.admit()
    assert tracker.snapshot().cost_so_far == 0


def test_record_settles_reservation_at_actual_cost() -> None:
    tracker = BudgetTracker(1.0, seed_call_cost=0.5)
    reservation = tracker.admit()
    tracker.record(Usage(input_tokens=10, output_tokens=10, cost=0.1), reservation)
    assert tracker.reserved == 0
    assert tracker.snapshot().cost_so_far == pytest.approx(0.1)
    # later estimates follow the observed average, not the seed
    assert tracker.admit() == pytest.approx(0.1)


def test_release_drops_reservation_of_failed_call() -> None:
    tracker = BudgetTracker(0.005, seed_call_cost=0.002)
    failed = tracker.admit()
    tracker.admit()
    tracker.release(failed)
    assert tracker.reserved == pytest.approx(0.002)
    assert tracker.admit() == pytest.approx(0.002)
    assert not tracker.aborted


def test_disabled_cap_reserves_nothing() -> None:
    tracker = BudgetTracker(0, seed_call_cost=5.0)
    assert tracker.admit() == 0.0
    assert tracker.reserved == 0


def test_projection_waits_for_min_items() -> None:
    tracker = BudgetTracker(1.0, min_items_for_projection=5)
    tracker.plan(100)
    _spend(tracker, 0.01)
    tracker.item_completed()
    # 0.01 / max(1, 5) * 100 = 0.2
    assert tracker.projected_total() == pytest.approx(0.2)
    assert not tracker.aborted


def test_projection_over_cap_aborts() -> None:
    tracker = BudgetTracker(1.0, min_items_for_projection=2)
    tracker.plan(100)
    _spend(tracker, 0.05)
    assert not tracker.aborted
    tracker.item_completed()
    # 0.05 / max(1, 2) * 100 = 2.5
    assert tracker.aborted
    with pytest.raises(BudgetExceeded):
        tracker.admit()


def test_no_projection_before_any_item_finishes() -> None:
    tracker = BudgetTracker(1.0)
    tracker.plan(1000)
    _spend(tracker, 0.1)
    assert tracker.projected_total() is None
    assert not tracker.aborted


def test_claim_report_is_true_once() -> None:
    tracker = BudgetTracker(0.1)
    assert tracker.claim_report() is False
    _spend(tracker, 0.2)
    assert tracker.aborted
    assert tracker.claim_report() is True
    assert tracker.claim_report() is False


def test_export_writes_ledger_and_projection(tmp_path: Path) -> None:
    tracker = BudgetTracker(5.0)
    tracker.plan(10)
    _spend(tracker, 0.5)
    tracker.item_completed()
    tracker.export(tmp_path / "usage.json")

    payload = json.loads((tmp_path / "usage.json").read_text(encoding="utf-8"))
    assert payload["cost_so_far"] == pytest.approx(0.5)
    assert payload["cap"] == 5.0
    assert payload["items_done"] == 1
    assert payload["projected_total"] == pytest.approx(1.0)
