from __future__ import annotations

from pathlib import Path

from config import OriginalitySettings
from factories import build_payload
from pipeline import OriginalityGuard


def _about(seed: str) -> str:
    return build_payload(seed=seed)["aboutcontent"]


def test_near_duplicate_is_refused_and_not_recorded(tmp_path: Path) -> None:
    guard = OriginalityGuard(tmp_path / "fp.jsonl", threshold=0.4)
    assert guard.admit("a", _about("one")).passed

    report = guard.admit("b", _about("one"))
    assert not report.passed
    assert report.closest_item_id == "a"
    assert report.similarity == 1.0
    assert len(guard) == 1
    assert guard.log.line_count() == 1


def test_distinct_copy_is_admitted(tmp_path: Path) -> None:
    guard = OriginalityGuard(tmp_path / "fp.jsonl", threshold=0.4)
    guard.admit("a", _about("one"))
    report = guard.admit("b", _about("two"))
    assert report.passed
    assert report.similarity < 0.1
    assert len(guard) == 2


def test_own_fingerprint_is_ignored(tmp_path: Path) -> None:
    guard = OriginalityGuard(tmp_path / "fp.jsonl")
    guard.admit("a", _about("one"))
    assert guard.check("a", _about("one")).passed


def test_window_is_bounded(tmp_path: Path) -> None:
    guard = OriginalityGuard(tmp_path / "fp.jsonl", window_size=2, reload_tail=2)
    for index in range(3):
        guard.admit(f"item-{index}", _about(f"seed-{index}"))
    assert len(guard) == 2
    # item-0 fell out of the window, so its copy is admitted again
    assert guard.check("other", _about("seed-0")).passed


def test_reload_rebuilds_window_from_log(tmp_path: Path) -> None:
    path = tmp_path / "fp.jsonl"
    first = OriginalityGuard(path)
    first.admit("a", _about("one"))
    first.admit("b", _about("two"))

    restarted = OriginalityGuard(path)
    assert len(restarted) == 0
    assert restarted.reload() == 2
    assert len(restarted) == 2
    assert not restarted.check("c", _about("two")).passed


def test_log_is_compacted_past_ceiling(tmp_path: Path) -> None:
    guard = OriginalityGuard(tmp_path / "fp.jsonl", window_size=2, reload_tail=2, rotate_ceiling=3)
    for index in range(4):
        guard.admit(f"item-{index}", _about(f"seed-{index}"))
    assert guard.log.line_count() == 2
    assert [row["item_id"] for row in guard.log.read()] == ["item-2", "item-3"]


def test_from_settings(tmp_path: Path) -> None:
    settings = OriginalitySettings(window_size=10, reload_tail=20, threshold=0.5, shingle_size=4)
    guard = OriginalityGuard.from_settings(tmp_path / "fp.jsonl", settings)
    assert guard.window_size == 10
    assert guard.reload_tail == 20
    assert guard.threshold == 0.5
    assert guard.shingle_size == 4
