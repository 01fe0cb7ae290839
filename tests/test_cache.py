from __future__ import annotations

from pathlib import Path

from factories import build_evidence
from storage import EvidenceCache


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_put_then_get_returns_same_record(tmp_path: Path) -> None:
    cache = EvidenceCache(tmp_path / "cache", ttl=3600, clock=FakeClock())
    record = build_evidence()
    cache.put(record.source_url, record)

    cached = cache.get(record.source_url)
    assert cached == record
    assert cache.size() == 1


def test_expired_entries_are_dropped(tmp_path: Path) -> None:
    clock = FakeClock()
    cache = EvidenceCache(tmp_path / "cache", ttl=60, clock=clock)
    record = build_evidence()
    cache.put(record.source_url, record)

    clock.now += 61
    assert cache.get(record.source_url) is None
    assert cache.size() == 0


def test_new_version_replaces_old_file(tmp_path: Path) -> None:
    cache = EvidenceCache(tmp_path / "cache", ttl=None, clock=FakeClock())
    old = build_evidence(content_hash="a" * 64)
    new = build_evidence(content_hash="b" * 64)
    cache.put(old.source_url, old)
    cache.put(new.source_url, new)

    assert cache.get(new.source_url).content_hash == "b" * 64
    record_files = [p for p in (tmp_path / "cache").glob("*.json") if p.name != "_meta.json"]
    assert len(record_files) == 1


def test_metadata_survives_reopen(tmp_path: Path) -> None:
    clock = FakeClock()
    record = build_evidence()
    EvidenceCache(tmp_path / "cache", ttl=3600, clock=clock).put(record.source_url, record)

    reopened = EvidenceCache(tmp_path / "cache", ttl=3600, clock=clock)
    assert reopened.get(record.source_url) == record
