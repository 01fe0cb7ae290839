from __future__ import annotations

import json
from pathlib import Path

import pytest

from core import ErrorCode, ItemStatus
from storage import CheckpointStore
from utils.exceptions import CheckpointError


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _store(tmp_path: Path, clock: FakeClock, lease: float = 60.0) -> CheckpointStore:
    return CheckpointStore(tmp_path / "checkpoint.json", lease_timeout=lease, clock=clock)


def test_unknown_items_are_pending_and_processable(tmp_path: Path) -> None:
    store = _store(tmp_path, FakeClock())
    assert store.state_of("a") == ItemStatus.PENDING
    assert store.should_process("a") is True
    assert store.get("a") is None


def test_done_is_terminal_even_with_override(tmp_path: Path) -> None:
    store = _store(tmp_path, FakeClock())
    store.mark_in_flight("a")
    store.mark_done("a", "sha256:abc")

    assert store.should_process("a") is False
    assert store.should_process("a", override=True) is False
    with pytest.raises(CheckpointError):
        store.mark_in_flight("a", override=True)


def test_rejected_needs_override_and_counts_retries(tmp_path: Path) -> None:
    store = _store(tmp_path, FakeClock())
    store.mark_in_flight("a")
    store.mark_rejected("a", ErrorCode.GUARDRAIL_FAILURE)

    assert store.should_process("a") is False
    assert store.should_process("a", override=True) is True
    with pytest.raises(CheckpointError):
        store.mark_in_flight("a")

    entry = store.mark_in_flight("a", override=True)
    assert entry.retry_count == 1
    assert entry.state == ItemStatus.IN_FLIGHT


def test_live_lease_blocks_second_claim_until_expiry(tmp_path: Path) -> None:
    clock = FakeClock()
    store = _store(tmp_path, clock, lease=60.0)
    store.mark_in_flight("a")

    assert store.should_process("a") is False
    with pytest.raises(CheckpointError):
        store.mark_in_flight("a")

    clock.now += 61
    assert store.should_process("a") is True
    assert store.reclaim_expired() == ["a"]
    assert store.state_of("a") == ItemStatus.PENDING


def test_renew_lease_extends_expiry(tmp_path: Path) -> None:
    clock = FakeClock()
    store = _store(tmp_path, clock, lease=60.0)
    store.mark_in_flight("a")

    clock.now += 50
    store.renew_lease("a")
    clock.now += 50
    assert store.should_process("a") is False
    assert store.reclaim_expired() == []

    with pytest.raises(CheckpointError):
        store.renew_lease("missing")


def test_release_returns_item_to_pending(tmp_path: Path) -> None:
    store = _store(tmp_path, FakeClock())
    store.mark_in_flight("a")
    store.release("a")
    entry = store.get("a")
    assert entry is not None
    assert entry.state == ItemStatus.PENDING
    assert entry.lease_expiry is None


def test_only_in_flight_items_can_finish(tmp_path: Path) -> None:
    store = _store(tmp_path, FakeClock())
    with pytest.raises(CheckpointError):
        store.mark_done("a", "ref")
    with pytest.raises(CheckpointError):
        store.mark_rejected("a", ErrorCode.THIN_EVIDENCE)


def test_state_survives_reopen(tmp_path: Path) -> None:
    clock = FakeClock()
    store = _store(tmp_path, clock)
    store.mark_in_flight("a")
    store.mark_done("a", "sha256:1")
    store.mark_in_flight("b")
    store.mark_rejected("b", ErrorCode.THIN_EVIDENCE)

    reopened = _store(tmp_path, clock)
    assert reopened.state_of("a") == ItemStatus.DONE
    assert reopened.get("a").record_ref == "sha256:1"
    assert reopened.get("b").last_error_code == ErrorCode.THIN_EVIDENCE
    assert reopened.counts()["done"] == 1
    assert reopened.counts()["rejected"] == 1

    payload = json.loads((tmp_path / "checkpoint.json").read_text(encoding="utf-8"))
    assert set(payload["entries"]) == {"a", "b"}
    assert not list(tmp_path.glob(".checkpoint.json.*.tmp"))


def test_unreadable_checkpoint_raises(tmp_path: Path) -> None:
    (tmp_path / "checkpoint.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(CheckpointError):
        _store(tmp_path, FakeClock())


def test_reconcile_promotes_and_demotes(tmp_path: Path) -> None:
    store = _store(tmp_path, FakeClock())
    # crash after the accepted-log append but before mark_done
    store.mark_in_flight("crashed")
    # done without a record (log lost)
    store.mark_in_flight("orphan")
    store.mark_done("orphan", "sha256:gone")

    promoted, demoted = store.reconcile({"crashed": "sha256:kept"})

    assert promoted == ["crashed"]
    assert demoted == ["orphan"]
    assert store.get("crashed").record_ref == "sha256:kept"
    assert store.state_of("orphan") == ItemStatus.PENDING
    assert store.check_invariants({"crashed"}) == []


def test_park_marks_rejected_items_abandoned(tmp_path: Path) -> None:
    store = _store(tmp_path, FakeClock())
    store.mark_in_flight("a")
    store.mark_rejected("a", ErrorCode.GUARDRAIL_FAILURE)
    store.mark_in_flight("b")

    assert store.park(["a", "b", "missing"]) == ["a"]
    assert store.get("a").last_error_code == ErrorCode.ABANDONED
    assert store.should_process("a", override=True) is False
    assert store.park(["a"]) == []


def test_check_invariants_reports_both_directions(tmp_path: Path) -> None:
    store = _store(tmp_path, FakeClock())
    store.mark_in_flight("a")
    store.mark_done("a", "ref")

    problems = store.check_invariants({"b"})
    assert "a: done without accepted record" in problems
    assert "b: accepted record but not done" in problems


def test_retry_ceiling_blocks_further_claims(tmp_path: Path) -> None:
    store = CheckpointStore(tmp_path / "checkpoint.json", retry_ceiling=2, clock=FakeClock())
    store.mark_in_flight("a")
    store.mark_rejected("a", ErrorCode.GUARDRAIL_FAILURE)
    for _ in range(2):
        assert not store.exhausted("a")
        store.mark_in_flight("a", override=True)
        store.mark_rejected("a", ErrorCode.GUARDRAIL_FAILURE)

    assert store.get("a").retry_count == 2
    assert store.exhausted("a")
    assert store.should_process("a", override=True) is False
    with pytest.raises(CheckpointError):
        store.mark_in_flight("a", override=True)

    store.park(["a"])
    assert not store.exhausted("a")
