"""
Polycache - Files Cache Backend

On-disk adapter built on diskcache (SQLite index + files, no daemon process).

Declares no capability interfaces: values go through the envelope engine, and
the TTL passed to ``write_raw`` is used only as a purge hint so abandoned
entries are eventually reclaimed. This is the default local backup for
network backends.
"""

from __future__ import annotations

import logging
import sqlite3
import tempfile
from pathlib import Path
from typing import Any

from diskcache import Cache as DiskCache
from diskcache import Timeout as DiskTimeout

from ...errors import CacheConnectionError
from ..interface import BackendAdapter
from ..result import guarded

logger = logging.getLogger(__name__)

DEFAULT_DIRECTORY = Path(tempfile.gettempdir()) / "polycache"


class FilesBackend(BackendAdapter):
    """
    Disk-backed cache with raw set/get/delete only.

    Args:
        directory: Cache directory (default: ``<tmp>/polycache``)
        namespace: Cache key namespace/prefix
        timeout: SQLite lock timeout in seconds
    """

    name = "files"
    connection_errors = (CacheConnectionError, DiskTimeout, sqlite3.OperationalError, OSError)

    def __init__(
        self,
        directory: str | Path | None = None,
        namespace: str = "polycache",
        timeout: float = 60.0,
    ) -> None:
        self.directory = Path(directory) if directory else DEFAULT_DIRECTORY
        self.namespace = namespace
        self.timeout = timeout
        self._cache: DiskCache | None = None
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._deletes = 0

        self._open()
        logger.info(
            "Files cache backend initialized",
            extra={"directory": str(self.directory), "namespace": namespace},
        )

    def _open(self) -> DiskCache:
        if self._cache is None:
            self.directory.mkdir(parents=True, exist_ok=True)
            self._cache = DiskCache(str(self.directory), timeout=self.timeout)
        return self._cache

    def _make_key(self, key: str) -> str:
        """Create namespaced cache key."""
        return f"{self.namespace}:{key}"

    # ------------ Core Interface ------------

    @guarded
    def read_raw(self, key: str) -> bytes | None:
        value = self._open().get(self._make_key(key), default=None)
        if value is None:
            self._misses += 1
            return None
        self._hits += 1
        return value

    @guarded
    def write_raw(self, key: str, data: bytes, ttl: int | None = None) -> bool:
        expire = ttl if ttl is not None and ttl > 0 else None
        stored = self._open().set(self._make_key(key), data, expire=expire)
        if stored:
            self._sets += 1
        return bool(stored)

    @guarded
    def delete_raw(self, key: str) -> bool:
        deleted = self._open().delete(self._make_key(key))
        if deleted:
            self._deletes += 1
        return bool(deleted)

    @guarded
    def exists(self, key: str) -> bool:
        # diskcache.Cache.__contains__ checks existence + purge-hint expiry
        return self._make_key(key) in self._open()

    def health_check(self) -> bool:
        try:
            cache = self._open()
            cache.get(self._make_key("__health__"), default=None)
            return self.directory.is_dir()
        except Exception as e:
            logger.warning(
                f"Files cache health check failed: {e}",
                extra={"directory": str(self.directory), "error": str(e)},
            )
            return False

    @guarded
    def clear(self) -> bool:
        cache = self._open()
        prefix = f"{self.namespace}:"
        removed = 0
        for stored_key in list(cache.iterkeys()):
            if isinstance(stored_key, str) and stored_key.startswith(prefix):
                removed += int(bool(cache.delete(stored_key)))
        self._deletes += removed
        logger.info(f"Cleared {removed} entries from files cache namespace '{self.namespace}'")
        return True

    def get_stats(self) -> dict[str, Any]:
        total_requests = self._hits + self._misses
        stats: dict[str, Any] = {
            "backend": "files",
            "directory": str(self.directory),
            "namespace": self.namespace,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total_requests * 100, 2) if total_requests else 0.0,
            "sets": self._sets,
            "deletes": self._deletes,
        }
        try:
            stats["volume_bytes"] = self._open().volume()
        except Exception as e:
            logger.warning(f"Failed to read files cache volume: {e}", extra={"error": str(e)})
        return stats

    def close(self) -> None:
        if self._cache is not None:
            try:
                self._cache.close()
                logger.info(f"Closed files cache backend at '{self.directory}'")
            except Exception as e:
                logger.error(
                    f"Error closing files cache: {e}",
                    extra={"directory": str(self.directory), "error": str(e)},
                    exc_info=True,
                )
            finally:
                self._cache = None
