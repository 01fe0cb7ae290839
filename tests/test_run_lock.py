from __future__ import annotations

import json
import os
import socket
import time
from pathlib import Path

import pytest

from orchestrator.run_lock import RunLock, pid_alive
from utils.exceptions import LockHeldError


def _write_holder(path: Path, pid: int, heartbeat: float, host: str = None) -> None:
    body = {"pid": pid, "host": host or socket.gethostname(), "created_at": heartbeat, "heartbeat": heartbeat}
    path.write_text(json.dumps(body), encoding="utf-8")


def test_acquire_and_release(tmp_path: Path) -> None:
    lock = RunLock(tmp_path / "out" / ".run.lock")
    lock.acquire()
    assert lock.held
    assert lock.read_holder()["pid"] == os.getpid()
    lock.release()
    assert not lock.held
    assert not lock.path.exists()


def test_live_holder_blocks(tmp_path: Path) -> None:
    path = tmp_path / ".run.lock"
    _write_holder(path, os.getpid(), time.time())
    with pytest.raises(LockHeldError) as info:
        RunLock(path).acquire()
    assert info.value.holder_pid == os.getpid()
    assert path.exists()


def test_dead_pid_is_taken_over(tmp_path: Path) -> None:
    path = tmp_path / ".run.lock"
    _write_holder(path, 0, time.time())
    lock = RunLock(path)
    lock.acquire()
    assert lock.read_holder()["pid"] == os.getpid()


def test_live_local_holder_blocks_despite_old_heartbeat(tmp_path: Path) -> None:
    path = tmp_path / ".run.lock"
    _write_holder(path, os.getpid(), time.time() - 3600)
    with pytest.raises(LockHeldError):
        RunLock(path, stale_after=600).acquire()
    assert json.loads(path.read_text(encoding="utf-8"))["pid"] == os.getpid()


def test_old_heartbeat_from_another_host_is_taken_over(tmp_path: Path) -> None:
    path = tmp_path / ".run.lock"
    _write_holder(path, os.getpid(), time.time() - 3600, host="other-box")
    lock = RunLock(path, stale_after=600)
    lock.acquire()
    assert lock.held
    assert lock.read_holder()["host"] == socket.gethostname()


def test_fresh_heartbeat_from_another_host_blocks(tmp_path: Path) -> None:
    path = tmp_path / ".run.lock"
    _write_holder(path, 424242, time.time(), host="other-box")
    with pytest.raises(LockHeldError):
        RunLock(path, stale_after=600).acquire()


def test_heartbeat_leaves_a_new_holder_alone(tmp_path: Path) -> None:
    path = tmp_path / ".run.lock"
    lock = RunLock(path)
    lock.acquire()
    # another host took the lock over while this run stalled
    _write_holder(path, 4242, 1.0, host="other-box")

    lock.heartbeat()
    assert not lock.held
    assert json.loads(path.read_text(encoding="utf-8"))["heartbeat"] == 1.0


def test_release_leaves_a_new_holder_alone(tmp_path: Path) -> None:
    path = tmp_path / ".run.lock"
    lock = RunLock(path)
    lock.acquire()
    _write_holder(path, 4242, 1.0, host="other-box")

    lock.release()
    assert not lock.held
    assert json.loads(path.read_text(encoding="utf-8"))["host"] == "other-box"


def test_unreadable_lock_is_stale(tmp_path: Path) -> None:
    path = tmp_path / ".run.lock"
    path.write_text("garbage", encoding="utf-8")
    with RunLock(path) as lock:
        assert lock.held
    assert not path.exists()


def test_heartbeat_updates_timestamp(tmp_path: Path) -> None:
    now = [1000.0]
    lock = RunLock(tmp_path / ".run.lock", clock=lambda: now[0])
    lock.acquire()
    now[0] = 1500.0
    lock.heartbeat()
    holder = lock.read_holder()
    assert holder["heartbeat"] == 1500.0
    assert holder["created_at"] == 1000.0


def test_pid_alive() -> None:
    assert pid_alive(os.getpid())
    assert not pid_alive(0)
