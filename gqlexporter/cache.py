"""File-backed cache of rendered scrape output."""
from typing import Mapping, Optional, Sequence
import hashlib
import json
import logging
import os
import tempfile
import threading
import time
from contextlib import contextmanager

logger = logging.getLogger(__name__)

CACHE_EXTENSION = ".prom"


class ReadWriteLock:
    """Many concurrent readers or a single writer."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        # Writers waiting for the lock go ahead of new readers
        self._waiting_writers = 0

    @contextmanager
    def read(self):
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self):
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class ResponseCache:
    """
    Stores the rendered exposition output per (endpoint, queries, variables).

    Each entry is one file whose modification time decides freshness; there
    is no explicit invalidation. Missing or unreadable entries count as
    expired so a broken cache falls back to querying the upstream.
    """

    def __init__(self, directory: str, expiration_s: float):
        self.directory = directory
        self.expiration_s = expiration_s
        # One lock for the whole cache, not per key
        self._lock = ReadWriteLock()

    @property
    def enabled(self) -> bool:
        return self.expiration_s > 0

    def ensure_directory(self):
        """Create the cache directory if it is missing."""
        os.makedirs(self.directory, exist_ok=True)

    @staticmethod
    def key_for(endpoint: str, queries: Sequence[str], variables: Optional[Mapping[str, str]] = None) -> str:
        """Derive the cache key from the endpoint and raw query templates."""
        material = json.dumps(
            {
                "endpoint": endpoint,
                "queries": list(queries),
                "variables": sorted((variables or {}).items()),
            },
            sort_keys=True,
        )
        return hashlib.sha256(material.encode("utf-8")).hexdigest()

    def path_for(self, key: str) -> str:
        return os.path.join(self.directory, key + CACHE_EXTENSION)

    def _read(self, key: str) -> Optional[bytes]:
        try:
            with open(self.path_for(key), "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Failed to read cache entry {key}: {e}")
            return None

    def _is_expired(self, key: str, now: Optional[float] = None) -> bool:
        try:
            mtime = os.stat(self.path_for(key)).st_mtime
        except OSError:
            return True
        now = time.time() if now is None else now
        return now >= mtime + self.expiration_s

    def read(self, key: str) -> Optional[bytes]:
        """Return the stored bytes, or None if there is no readable entry."""
        with self._lock.read():
            return self._read(key)

    def is_expired(self, key: str, now: Optional[float] = None) -> bool:
        with self._lock.read():
            return self._is_expired(key, now)

    def get_fresh(self, key: str, now: Optional[float] = None) -> Optional[bytes]:
        """Return the entry only if it exists and has not expired."""
        if not self.enabled:
            return None
        with self._lock.read():
            if self._is_expired(key, now):
                return None
            return self._read(key)

    def write(self, key: str, data: bytes) -> bool:
        """Replace the entry atomically. Returns False if the write failed."""
        if not self.enabled:
            return False

        with self._lock.write():
            tmp_path = None
            try:
                fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=CACHE_EXTENSION)
                os.fchmod(fd, 0o644)
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                os.replace(tmp_path, self.path_for(key))
                tmp_path = None
                return True
            except OSError as e:
                logger.warning(f"Failed to write cache entry {key}: {e}")
                return False
            finally:
                if tmp_path is not None and os.path.exists(tmp_path):
                    os.remove(tmp_path)
