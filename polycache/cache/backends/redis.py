"""
Polycache - Redis Cache Backend

Redis adapter with:
- Native per-key TTL (SET EX / TTL / EXPIRE / PERSIST)
- Atomic add (SET NX), INCRBY and INCRBYFLOAT
- Atomic multi-key writes (MULTI/EXEC pipeline, Lua script for set-if-absent)
- Namespace prefixing for safe multi-tenant usage

Requires: redis>=5.0

Example:
    backend = RedisBackend(redis_url="redis://localhost:6379/0", namespace="polycache")
    backend.write_raw("greeting", b'"hello"', ttl=60)
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from ...errors import CacheConnectionError, CacheOperationError

try:
    from redis import Redis
    from redis.backoff import NoBackoff
    from redis.exceptions import ConnectionError as RedisConnectionError
    from redis.exceptions import ResponseError
    from redis.exceptions import TimeoutError as RedisTimeoutError
    from redis.retry import Retry
except ImportError as e:  # pragma: no cover
    raise ImportError(
        "Redis client is required but not installed. "
        "Install with: pip install 'redis>=5.0.0' or add 'redis' to your dependencies."
    ) from e

from ..interface import AtomicAdd, AtomicIncrement, AtomicMulti, BackendAdapter, NativeTtl
from ..result import guarded

logger = logging.getLogger(__name__)

# KEYS: namespaced keys; ARGV[1]: ttl seconds (0 = none); ARGV[2..]: payloads
_MSETNX_SCRIPT = """
for i = 1, #KEYS do
  if redis.call('EXISTS', KEYS[i]) == 1 then
    return 0
  end
end
local ttl = tonumber(ARGV[1])
for i = 1, #KEYS do
  if ttl > 0 then
    redis.call('SET', KEYS[i], ARGV[i + 1], 'EX', ttl)
  else
    redis.call('SET', KEYS[i], ARGV[i + 1])
  end
end
return 1
"""


class RedisBackend(BackendAdapter, NativeTtl, AtomicAdd, AtomicIncrement, AtomicMulti):
    """
    Redis cache backend.

    Notes:
    - Keys are prefixed with the configured namespace to avoid collisions.
    - Payloads are stored as given (bytes); numeric payloads are plain decimal
      text so INCRBY/INCRBYFLOAT work on them.
    - The client connects lazily, on first command.
    """

    name = "redis"
    connection_errors = (CacheConnectionError, RedisConnectionError, RedisTimeoutError)

    def __init__(
        self,
        redis_url: str | None = None,
        host: str = "127.0.0.1",
        port: int = 6379,
        password: str | None = None,
        database: int = 0,
        namespace: str = "polycache",
        max_connections: int = 10,
        socket_timeout: float = 5,
    ) -> None:
        """
        Initialize Redis cache backend.

        Args:
            redis_url: Connection URL, e.g. redis://localhost:6379/0 or rediss:// for TLS.
                Takes precedence over host/port/password/database.
            host: Server host
            port: Server port
            password: AUTH password
            database: Database index
            namespace: Prefix for all keys
            max_connections: Connection pool size
            socket_timeout: Socket connect/read timeout in seconds
        """
        self.namespace = namespace.strip() or "polycache"
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._deletes = 0

        # Reconnects are driven by fail-over, not by the client
        no_retry = Retry(NoBackoff(), 0)
        if redis_url:
            self._client = Redis.from_url(
                url=redis_url,
                max_connections=max_connections,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_timeout,
                retry=no_retry,
            )
            self._location = redis_url
        else:
            self._client = Redis(
                host=host,
                port=port,
                password=password or None,
                db=database,
                max_connections=max_connections,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_timeout,
                retry=no_retry,
            )
            self._location = f"redis://{host}:{port}/{database}"

        self._msetnx = self._client.register_script(_MSETNX_SCRIPT)

    # ------------ Helpers ------------

    def _make_key(self, key: str) -> str:
        """Create namespaced key."""
        return f"{self.namespace}:{key}"

    @staticmethod
    def _ex(ttl: int | None) -> int | None:
        return int(ttl) if ttl is not None and ttl > 0 else None

    # ------------ Core Interface ------------

    @guarded
    def read_raw(self, key: str) -> bytes | None:
        data = self._client.get(self._make_key(key))
        if data is None:
            self._misses += 1
            return None
        self._hits += 1
        return data

    @guarded
    def write_raw(self, key: str, data: bytes, ttl: int | None = None) -> bool:
        # redis-py returns True or 'OK' depending on decode_responses
        stored = bool(self._client.set(self._make_key(key), data, ex=self._ex(ttl)))
        if stored:
            self._sets += 1
        return stored

    @guarded
    def delete_raw(self, key: str) -> bool:
        deleted = int(self._client.delete(self._make_key(key)))
        self._deletes += deleted
        return deleted > 0

    @guarded
    def exists(self, key: str) -> bool:
        return bool(self._client.exists(self._make_key(key)))

    def health_check(self) -> bool:
        try:
            return bool(self._client.ping())
        except Exception as e:
            logger.warning(
                f"Redis health check failed: {e}",
                extra={"location": self._location, "error": str(e)},
            )
            return False

    @guarded
    def clear(self) -> bool:
        """
        Clear all entries under the namespace.

        Implementation: SCAN match "<namespace>:*" and DEL in batches.
        """
        pattern = f"{self.namespace}:*"
        cursor = 0
        total_deleted = 0
        batch_size = 1000

        while True:
            cursor, keys = self._client.scan(cursor=cursor, match=pattern, count=batch_size)
            if keys:
                total_deleted += self._client.delete(*keys)
            if cursor == 0:
                break

        self._deletes += total_deleted
        logger.info(f"Cleared {total_deleted} keys from namespace '{self.namespace}'")
        return True

    def get_stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = {
            "backend": "redis",
            "location": self._location,
            "namespace": self.namespace,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": 0.0,
            "sets": self._sets,
            "deletes": self._deletes,
            "connected": False,
        }

        total_requests = self._hits + self._misses
        stats["hit_rate"] = round((self._hits / total_requests) * 100, 2) if total_requests else 0.0

        try:
            stats["connected"] = bool(self._client.ping())
            info = self._client.info(section="server")
            stats["redis_version"] = info.get("redis_version")
            stats["redis_mode"] = info.get("redis_mode")
        except Exception as e:
            # If INFO is restricted or fails, keep minimal stats
            logger.warning(f"Failed to get Redis INFO (restricted or unavailable): {e}", extra={"error": str(e)})

        return stats

    def close(self) -> None:
        try:
            self._client.close()
            logger.info(f"Closed Redis cache backend for namespace '{self.namespace}'")
        except Exception as e:
            logger.error(
                f"Error closing Redis client: {e}", extra={"namespace": self.namespace, "error": str(e)}, exc_info=True
            )
        finally:
            try:
                self._client.connection_pool.disconnect()
            except Exception as e:
                logger.warning(f"Error disconnecting Redis connection pool: {e}", extra={"error": str(e)})

    # ------------ NativeTtl ------------

    @guarded
    def native_ttl(self, key: str) -> int | None:
        ttl = int(self._client.ttl(self._make_key(key)))
        if ttl == -2:
            return None
        return ttl

    @guarded
    def expire_raw(self, key: str, ttl: int) -> bool:
        ns_key = self._make_key(key)
        if ttl <= 0:
            return int(self._client.delete(ns_key)) > 0
        return bool(self._client.expire(ns_key, int(ttl)))

    @guarded
    def persist_raw(self, key: str) -> bool:
        ns_key = self._make_key(key)
        if not self._client.exists(ns_key):
            return False
        # PERSIST returns 0 when the key had no TTL; that still counts as success
        self._client.persist(ns_key)
        return True

    # ------------ AtomicAdd ------------

    @guarded
    def write_raw_if_absent(self, key: str, data: bytes, ttl: int | None = None) -> bool:
        stored = bool(self._client.set(self._make_key(key), data, ex=self._ex(ttl), nx=True))
        if stored:
            self._sets += 1
        return stored

    # ------------ AtomicIncrement ------------

    @guarded
    def increment(self, key: str, step: int) -> int:
        try:
            return int(self._client.incrby(self._make_key(key), step))
        except ResponseError as e:
            raise CacheOperationError(
                f"INCRBY rejected for key '{key}': {e}",
                details={"key": key, "namespace": self.namespace},
            ) from e

    @guarded
    def increment_float(self, key: str, step: float) -> float:
        try:
            return float(self._client.incrbyfloat(self._make_key(key), step))
        except ResponseError as e:
            raise CacheOperationError(
                f"INCRBYFLOAT rejected for key '{key}': {e}",
                details={"key": key, "namespace": self.namespace},
            ) from e

    # ------------ AtomicMulti ------------

    @guarded
    def multi_get(self, keys: Sequence[str]) -> dict[str, bytes]:
        if not keys:
            return {}
        values = self._client.mget([self._make_key(k) for k in keys])
        result: dict[str, bytes] = {}
        # mget preserves order
        for key, raw in zip(keys, values, strict=False):
            if raw is None:
                self._misses += 1
                continue
            self._hits += 1
            result[key] = raw
        return result

    @guarded
    def multi_set(self, items: Mapping[str, bytes], ttl: int | None = None) -> bool:
        if not items:
            return True
        ex = self._ex(ttl)
        pipe = self._client.pipeline(transaction=True)
        for key, data in items.items():
            pipe.set(self._make_key(key), data, ex=ex)
        results = pipe.execute()
        success = all(bool(r) for r in results)
        if success:
            self._sets += len(items)
        return success

    @guarded
    def multi_set_if_absent(self, items: Mapping[str, bytes], ttl: int | None = None) -> bool:
        if not items:
            return True
        keys = [self._make_key(k) for k in items]
        stored = int(self._msetnx(keys=keys, args=[self._ex(ttl) or 0, *items.values()])) == 1
        if stored:
            self._sets += len(items)
        return stored
