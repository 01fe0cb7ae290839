"""
Cache
Disk cache for evidence records, keyed by URL and content hash.
"""
from datetime import datetime, timedelta
from pathlib import Path
from threading import Lock
from typing import Callable, Dict, Optional
import hashlib
import json
import logging

from core import EvidenceRecord

from .atomic import atomic_write_json, atomic_write_text, read_json


logger = logging.getLogger(__name__)


class EvidenceCache:
    """
    Disk-backed evidence cache.

    Each record lives in ``<url-key>-<hash prefix>.json``; ``_meta.json`` maps the
    URL key to the current content hash and expiry. Reads are lock-free apart from
    the short metadata lookup; writes to the same URL key are serialized.
    """

    def __init__(
        self,
        cache_dir: str = "./data/content/cache",
        ttl: Optional[int] = 7 * 24 * 3600,
        clock: Callable[[], float] = None,
    ):
        """
        Args:
            cache_dir: cache directory
            ttl: default time-to-live in seconds, None = never expires
            clock: epoch-seconds provider (tests)
        """
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.ttl = ttl
        self._clock = clock or (lambda: datetime.now().timestamp())
        self.meta_file = self.cache_dir / "_meta.json"
        self._meta_lock = Lock()
        self._key_locks: Dict[str, Lock] = {}
        self._load_meta()

    @staticmethod
    def make_key(url: str) -> str:
        return hashlib.md5(str(url or "").encode("utf-8")).hexdigest()

    def _load_meta(self) -> None:
        try:
            self._meta = read_json(self.meta_file, default={}) or {}
        except json.JSONDecodeError:
            logger.warning("Cache metadata unreadable, starting empty: %s", self.meta_file)
            self._meta = {}

    def _save_meta(self) -> None:
        atomic_write_json(self.meta_file, self._meta)

    def _key_lock(self, key: str) -> Lock:
        with self._meta_lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = Lock()
                self._key_locks[key] = lock
            return lock

    def _is_expired(self, meta: Dict) -> bool:
        expires_at = meta.get("expires_at")
        if expires_at is None:
            return False
        return self._clock() > float(expires_at)

    def get(self, url: str) -> Optional[EvidenceRecord]:
        """Return the cached record for ``url`` when present and fresh."""
        key = self.make_key(url)
        with self._meta_lock:
            meta = dict(self._meta.get(key) or {})
        if not meta:
            return None
        if self._is_expired(meta):
            self.delete(url)
            return None

        path = self.cache_dir / str(meta.get("file") or "")
        if not path.is_file():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                record = EvidenceRecord.model_validate(json.load(f))
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load cached evidence {key}: {e}")
            return None
        if record.content_hash != meta.get("content_hash"):
            return None
        return record

    def put(self, url: str, record: EvidenceRecord, ttl: Optional[int] = None) -> None:
        """Store ``record`` under ``url``; the previous version for the URL is removed."""
        key = self.make_key(url)
        ttl = ttl or self.ttl
        filename = f"{key}-{record.content_hash[:12]}.json"
        with self._key_lock(key):
            atomic_write_text(self.cache_dir / filename, record.model_dump_json())
            now = self._clock()
            expires_at = (datetime.fromtimestamp(now) + timedelta(seconds=ttl)).timestamp() if ttl else None
            with self._meta_lock:
                previous = (self._meta.get(key) or {}).get("file")
                self._meta[key] = {
                    "url": url,
                    "file": filename,
                    "content_hash": record.content_hash,
                    "created_at": now,
                    "expires_at": expires_at,
                }
                self._save_meta()
            if previous and previous != filename:
                (self.cache_dir / previous).unlink(missing_ok=True)

    def delete(self, url: str) -> None:
        key = self.make_key(url)
        with self._key_lock(key):
            with self._meta_lock:
                meta = self._meta.pop(key, None)
                self._save_meta()
            if meta and meta.get("file"):
                (self.cache_dir / meta["file"]).unlink(missing_ok=True)

    def size(self) -> int:
        with self._meta_lock:
            return len(self._meta)
