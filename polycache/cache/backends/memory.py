"""
Polycache - Memory Cache Backend

In-process adapter with LRU eviction and native per-key TTL.
Thread-safe and suitable for single-process deployments or as a local backup.
"""

import logging
import math
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from ...errors import CacheOperationError
from ..interface import AtomicAdd, AtomicIncrement, AtomicMulti, BackendAdapter, NativeTtl
from ..result import guarded

logger = logging.getLogger(__name__)


class MemoryBackend(BackendAdapter, NativeTtl, AtomicAdd, AtomicIncrement, AtomicMulti):
    """
    In-memory cache backend with LRU eviction.

    Features:
    - LRU eviction when max_size is reached
    - Native per-key TTL
    - Atomic add/increment/multi-key writes (all under one lock)
    - O(1) get/set/delete operations
    """

    name = "memory"

    def __init__(
        self,
        max_size: int = 1000,
        namespace: str = "polycache",
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize memory cache backend.

        Args:
            max_size: Maximum number of entries (LRU eviction when exceeded)
            namespace: Cache key namespace/prefix
            clock: Time source in seconds (injectable for tests)
        """
        self.max_size = max_size
        self.namespace = namespace
        self._clock = clock

        # Cache storage: key -> (payload, expiry_time)
        self._cache: OrderedDict[str, tuple[bytes, float | None]] = OrderedDict()

        # Stats
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._deletes = 0
        self._evictions = 0

        self._lock = threading.RLock()

    def _make_key(self, key: str) -> str:
        """Create namespaced cache key."""
        return f"{self.namespace}:{key}"

    def _expiry(self, ttl: int | None) -> float | None:
        return self._clock() + ttl if ttl is not None and ttl > 0 else None

    def _live(self, cache_key: str) -> tuple[bytes, float | None] | None:
        """Return the live item for ``cache_key``, purging it if expired. Caller holds the lock."""
        item = self._cache.get(cache_key)
        if item is None:
            return None
        _, expiry = item
        if expiry is not None and self._clock() >= expiry:
            del self._cache[cache_key]
            return None
        return item

    def _store(self, cache_key: str, data: bytes, expiry: float | None) -> None:
        """Insert with LRU eviction. Caller holds the lock."""
        if cache_key not in self._cache and len(self._cache) >= self.max_size:
            evicted_key, _ = self._cache.popitem(last=False)
            self._evictions += 1
            logger.debug(f"Evicted key from memory cache: {evicted_key}")
        self._cache[cache_key] = (data, expiry)
        self._cache.move_to_end(cache_key)
        self._sets += 1

    # ------------ Core Interface ------------

    @guarded
    def read_raw(self, key: str) -> bytes | None:
        with self._lock:
            cache_key = self._make_key(key)
            item = self._live(cache_key)
            if item is None:
                self._misses += 1
                return None
            self._cache.move_to_end(cache_key)
            self._hits += 1
            return item[0]

    @guarded
    def write_raw(self, key: str, data: bytes, ttl: int | None = None) -> bool:
        with self._lock:
            self._store(self._make_key(key), data, self._expiry(ttl))
            return True

    @guarded
    def delete_raw(self, key: str) -> bool:
        with self._lock:
            cache_key = self._make_key(key)
            if self._live(cache_key) is None:
                return False
            del self._cache[cache_key]
            self._deletes += 1
            return True

    @guarded
    def exists(self, key: str) -> bool:
        with self._lock:
            return self._live(self._make_key(key)) is not None

    def health_check(self) -> bool:
        return True

    @guarded
    def clear(self) -> bool:
        with self._lock:
            size = len(self._cache)
            self._cache.clear()
            logger.info(f"Cleared {size} entries from memory cache namespace '{self.namespace}'")
            return True

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            total_requests = self._hits + self._misses
            hit_rate = (self._hits / total_requests * 100) if total_requests > 0 else 0.0

            return {
                "backend": "memory",
                "size": len(self._cache),
                "max_size": self.max_size,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(hit_rate, 2),
                "sets": self._sets,
                "deletes": self._deletes,
                "evictions": self._evictions,
                "namespace": self.namespace,
            }

    def close(self) -> None:
        # Data lives in-process; nothing to release
        logger.debug(f"Memory cache backend closed for namespace '{self.namespace}'")

    # ------------ NativeTtl ------------

    @guarded
    def native_ttl(self, key: str) -> int | None:
        with self._lock:
            item = self._live(self._make_key(key))
            if item is None:
                return None
            _, expiry = item
            if expiry is None:
                return -1
            return max(1, math.ceil(expiry - self._clock()))

    @guarded
    def expire_raw(self, key: str, ttl: int) -> bool:
        with self._lock:
            cache_key = self._make_key(key)
            item = self._live(cache_key)
            if item is None:
                return False
            if ttl <= 0:
                del self._cache[cache_key]
                return True
            self._cache[cache_key] = (item[0], self._expiry(ttl))
            return True

    @guarded
    def persist_raw(self, key: str) -> bool:
        with self._lock:
            cache_key = self._make_key(key)
            item = self._live(cache_key)
            if item is None:
                return False
            self._cache[cache_key] = (item[0], None)
            return True

    # ------------ AtomicAdd ------------

    @guarded
    def write_raw_if_absent(self, key: str, data: bytes, ttl: int | None = None) -> bool:
        with self._lock:
            cache_key = self._make_key(key)
            if self._live(cache_key) is not None:
                return False
            self._store(cache_key, data, self._expiry(ttl))
            return True

    # ------------ AtomicIncrement ------------

    def _add(self, key: str, step: int | float, parse: Callable[[bytes], int | float]) -> int | float:
        with self._lock:
            cache_key = self._make_key(key)
            item = self._live(cache_key)
            current: int | float = 0
            expiry = None
            if item is not None:
                data, expiry = item
                try:
                    current = parse(data)
                except ValueError as e:
                    raise CacheOperationError(
                        f"Value of key '{key}' is not numeric",
                        details={"key": key, "namespace": self.namespace},
                    ) from e
            new_value = current + step
            if isinstance(new_value, float) and not math.isfinite(new_value):
                raise CacheOperationError(
                    f"Incrementing key '{key}' overflows to {new_value}",
                    details={"key": key, "namespace": self.namespace},
                )
            self._store(cache_key, repr(new_value).encode("ascii"), expiry)
            return new_value

    @guarded
    def increment(self, key: str, step: int) -> int:
        return int(self._add(key, step, int))

    @guarded
    def increment_float(self, key: str, step: float) -> float:
        return float(self._add(key, step, float))

    # ------------ AtomicMulti ------------

    @guarded
    def multi_get(self, keys: Sequence[str]) -> dict[str, bytes]:
        with self._lock:
            result: dict[str, bytes] = {}
            for key in keys:
                cache_key = self._make_key(key)
                item = self._live(cache_key)
                if item is None:
                    self._misses += 1
                    continue
                self._cache.move_to_end(cache_key)
                self._hits += 1
                result[key] = item[0]
            return result

    @guarded
    def multi_set(self, items: Mapping[str, bytes], ttl: int | None = None) -> bool:
        with self._lock:
            expiry = self._expiry(ttl)
            for key, data in items.items():
                self._store(self._make_key(key), data, expiry)
            return True

    @guarded
    def multi_set_if_absent(self, items: Mapping[str, bytes], ttl: int | None = None) -> bool:
        with self._lock:
            if any(self._live(self._make_key(key)) is not None for key in items):
                return False
            expiry = self._expiry(ttl)
            for key, data in items.items():
                self._store(self._make_key(key), data, expiry)
            return True
