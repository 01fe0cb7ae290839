"""Advisory lock file guarding one output directory."""

from __future__ import annotations

import json
import logging
import os
import socket
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from storage import atomic_write_json
from utils.exceptions import LockHeldError


logger = logging.getLogger(__name__)


def pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class RunLock:
    """
    ``O_EXCL`` lock file recording the holder's pid.

    On the holder's own host the pid decides: a live pid always holds the lock and a
    dead one leaves it stale. A lock written on another host is stale once its
    heartbeat is older than ``stale_after`` seconds. Stale locks are taken over.
    ``heartbeat`` and ``release`` only touch the file while it still names this
    process.
    """

    def __init__(
        self,
        path: Path,
        *,
        stale_after: float = 600.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.path = Path(path)
        self.stale_after = float(stale_after)
        self._clock = clock
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def _payload(self) -> bytes:
        now = self._clock()
        body = {"pid": os.getpid(), "host": socket.gethostname(), "created_at": now, "heartbeat": now}
        return json.dumps(body).encode("utf-8")

    def read_holder(self) -> Optional[Dict[str, Any]]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError):
            return {}
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _holder_pid(holder: Dict[str, Any]) -> int:
        try:
            return int(holder.get("pid", 0))
        except (TypeError, ValueError):
            return 0

    @staticmethod
    def _same_host(holder: Dict[str, Any]) -> bool:
        host = holder.get("host")
        return not host or host == socket.gethostname()

    def is_stale(self, holder: Optional[Dict[str, Any]]) -> bool:
        if holder is None:
            return True
        if self._same_host(holder):
            return not pid_alive(self._holder_pid(holder))
        beat = holder.get("heartbeat") or holder.get("created_at") or 0
        try:
            return self._clock() - float(beat) > self.stale_after
        except (TypeError, ValueError):
            return True

    def _create(self) -> bool:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(str(self.path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        try:
            os.write(fd, self._payload())
            os.fsync(fd)
        finally:
            os.close(fd)
        return True

    def acquire(self) -> None:
        if self._create():
            self._held = True
            return
        holder = self.read_holder()
        if not self.is_stale(holder):
            pid = (holder or {}).get("pid")
            raise LockHeldError(f"Output directory is locked by pid {pid}", holder_pid=pid, path=str(self.path))
        logger.warning("Taking over stale run lock %s (holder: %s)", self.path, holder)
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        if not self._create():
            raise LockHeldError("Lost the race for a stale run lock", path=str(self.path))
        self._held = True

    def _still_owned(self, holder: Optional[Dict[str, Any]]) -> bool:
        if holder and self._holder_pid(holder) == os.getpid() and self._same_host(holder):
            return True
        logger.warning("Run lock %s is no longer ours (holder: %s)", self.path, holder)
        self._held = False
        return False

    def heartbeat(self) -> None:
        if not self._held:
            return
        holder = self.read_holder()
        if not self._still_owned(holder):
            return
        holder["heartbeat"] = self._clock()
        atomic_write_json(self.path, holder)

    def release(self) -> None:
        if not self._held:
            return
        if not self._still_owned(self.read_holder()):
            return
        self._held = False
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()
