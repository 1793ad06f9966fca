"""
Polycache - Cache Driver

Public facade for one configured driver. Every call goes through the
fail-over orchestrator, then the expiry engine, batch emulator or lock, and
returns a plain value: failures come back as the operation's sentinel
(``False``, ``-2``, ``(False, True)``, ``{key: False}`` or ``[]``), never as
an exception.

``get`` returns ``False`` both for a miss and for a stored ``False``; use
``has`` to tell them apart.

Example:
    driver = CacheDriver("local", MemoryBackend())
    driver.set("user:1", {"name": "Ada"}, ttl=300)
    driver.get("user:1")  # {'name': 'Ada'}

    with driver.locked("report") as acquired:
        if acquired:
            rebuild_report()
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from .batch import BatchEmulator
from .expiry import DEFAULT_DELAY_EXPIRE_TIME, TTL_ABSENT, select_engine
from .failover import (
    DEFAULT_MAX_RECONNECT_ATTEMPTS,
    DEFAULT_RECONNECT_COOLDOWN,
    FailoverOrchestrator,
    Operation,
)
from .interface import BackendAdapter
from .locking import DEFAULT_LOCK_TTL, AdvisoryLock
from .result import Result

logger = logging.getLogger(__name__)

MISS = False
EXPIRED_MISS = (False, True)


class CacheDriver:
    """
    One configured cache driver (DriverHandle).

    Args:
        name: Driver name (used for fail-over routing and logs)
        adapter: Backend adapter
        delay_expire_time: Default grace window of delayed-expiry writes, in seconds
        max_reconnect_attempts: Health checks per round while disconnected
        reconnect_cooldown: Seconds before a new round of health checks (0 = never)
        backup_resolver: Returns the backup driver, resolved lazily on fail-over
        clock: Time source in seconds (injectable for tests)
    """

    def __init__(
        self,
        name: str,
        adapter: BackendAdapter,
        *,
        delay_expire_time: float = DEFAULT_DELAY_EXPIRE_TIME,
        max_reconnect_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS,
        reconnect_cooldown: float = DEFAULT_RECONNECT_COOLDOWN,
        backup_resolver: Callable[[], CacheDriver | None] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self.adapter = adapter
        self.engine = select_engine(adapter, delay_expire_time, clock)
        self.batch = BatchEmulator(self.engine)
        self.advisory_lock = AdvisoryLock(self.engine)
        self.failover = FailoverOrchestrator(
            self,
            adapter,
            backup_resolver=backup_resolver,
            max_attempts=max_reconnect_attempts,
            reconnect_cooldown=reconnect_cooldown,
            clock=clock,
        )
        logger.debug(
            f"Cache driver '{name}' ready on {adapter.name} using {type(self.engine).__name__}",
            extra={"driver": name, "backend": adapter.name, "capabilities": adapter.capabilities()},
        )

    def __repr__(self) -> str:
        return f"CacheDriver(name={self.name!r}, backend={self.adapter.name!r})"

    def _run(self, operation: Operation) -> Result:
        return self.failover.execute(operation)

    def is_connected(self) -> bool:
        return self.failover.health.connected

    # ------------ Writes ------------

    def set(self, key: str, value: Any, ttl: float = -1) -> bool:
        """
        Store ``value``.

        Args:
            ttl: Seconds to live. 0 never expires; negative keeps the deadline
                of an existing live entry (never expires if there is none).
        """
        return bool(self._run(lambda d: d.engine.set(key, value, ttl)).unwrap_or(False))

    def setnx(self, key: str, value: Any, ttl: float = -1) -> bool:
        """Store ``value`` only if ``key`` is absent or expired. ttl <= 0 never expires."""
        return bool(self._run(lambda d: d.engine.setnx(key, value, ttl)).unwrap_or(False))

    def set_de(self, key: str, value: Any, ttl: float, delay: float | None = None) -> bool:
        """
        Store with delayed expiry: reported expired after ``ttl`` seconds, still
        served by ``get``/``get_de`` for ``delay`` more seconds.

        ``delay`` defaults to the driver's ``delay_expire_time``.
        """
        return bool(self._run(lambda d: d.engine.set_de(key, value, ttl, delay)).unwrap_or(False))

    def delete(self, key: str) -> bool:
        """Remove ``key``. Removing an absent key succeeds."""
        return bool(self._run(lambda d: d.engine.delete(key)).unwrap_or(False))

    del_ = delete

    # ------------ Reads ------------

    def get(self, key: str) -> Any:
        """Value of a live key, or False."""
        return self._run(lambda d: d.engine.get(key)).unwrap_or(MISS)

    def get_twice(self, key: str) -> tuple[Any, bool]:
        """
        Anti-stampede read returning ``(value, is_expired)``.

        Expired values are still returned, flagged, until they are twice as
        old as their TTL. Pair with ``lock`` so one caller refreshes while the
        others serve the stale value.
        """
        return tuple(self._run(lambda d: d.engine.get_twice(key)).unwrap_or(EXPIRED_MISS))  # type: ignore[return-value]

    def get_de(self, key: str) -> tuple[Any, bool]:
        """``(value, is_expired)`` for delayed-expiry entries; flagged from the soft deadline on."""
        return tuple(self._run(lambda d: d.engine.get_de(key)).unwrap_or(EXPIRED_MISS))  # type: ignore[return-value]

    def has(self, key: str) -> bool:
        return bool(self._run(lambda d: d.engine.has(key)).unwrap_or(False))

    def has_de(self, key: str) -> bool:
        return bool(self._run(lambda d: d.engine.has_de(key)).unwrap_or(False))

    def ttl(self, key: str) -> int:
        """Seconds left: -2 absent or expired, -1 never expires."""
        return int(self._run(lambda d: d.engine.ttl(key)).unwrap_or(TTL_ABSENT))

    def ttl_de(self, key: str) -> int:
        """Seconds left until the soft deadline of a delayed-expiry entry."""
        return int(self._run(lambda d: d.engine.ttl_de(key)).unwrap_or(TTL_ABSENT))

    # ------------ Expiry changes ------------

    def expire(self, key: str, ttl: float) -> bool:
        """New deadline ``ttl`` seconds from now (ttl <= 0 persists). False if the key is not live."""
        return bool(self._run(lambda d: d.engine.expire(key, ttl)).unwrap_or(False))

    def expire_de(self, key: str, ttl: float, delay: float | None = None) -> bool:
        return bool(self._run(lambda d: d.engine.expire_de(key, ttl, delay)).unwrap_or(False))

    def expire_at(self, key: str, timestamp: float) -> bool:
        """Expire at a Unix timestamp. A timestamp in the past deletes the key now."""
        return bool(self._run(lambda d: d.engine.expire_at(key, timestamp)).unwrap_or(False))

    def expire_at_de(self, key: str, timestamp: float, delay: float | None = None) -> bool:
        return bool(self._run(lambda d: d.engine.expire_at_de(key, timestamp, delay)).unwrap_or(False))

    def persist(self, key: str) -> bool:
        return bool(self._run(lambda d: d.engine.persist(key)).unwrap_or(False))

    # ------------ Locks ------------

    def lock(self, key: str, ttl: float = DEFAULT_LOCK_TTL) -> bool:
        """Take the advisory lock on ``key`` for ``ttl`` seconds. True if acquired."""
        return bool(self._run(lambda d: d.advisory_lock.lock(key, ttl)).unwrap_or(False))

    def is_lock(self, key: str) -> bool:
        return bool(self._run(lambda d: d.advisory_lock.is_lock(key)).unwrap_or(False))

    def unlock(self, key: str) -> bool:
        return bool(self._run(lambda d: d.advisory_lock.unlock(key)).unwrap_or(False))

    @contextmanager
    def locked(self, key: str, ttl: float = DEFAULT_LOCK_TTL) -> Iterator[bool]:
        """
        Hold the advisory lock on ``key`` for the ``with`` block.

        Yields whether this caller acquired the lock; only an acquired lock
        is released on exit.
        """
        acquired = self.lock(key, ttl)
        try:
            yield acquired
        finally:
            if acquired:
                self.unlock(key)

    # ------------ Numeric ------------

    def incr(self, key: str, step: int = 1) -> int | bool:
        """Add an integer ``step``; absent keys count as 0. False on non-integer values."""
        return self._run(lambda d: d.engine.incr(key, step)).unwrap_or(False)

    def decr(self, key: str, step: int = 1) -> int | bool:
        return self._run(lambda d: d.engine.decr(key, step)).unwrap_or(False)

    def incr_by_float(self, key: str, step: float) -> float | bool:
        return self._run(lambda d: d.engine.incr_by_float(key, step)).unwrap_or(False)

    # ------------ Batch ------------

    def m_set(self, sets: Mapping[str, Any], ttl: float = -1) -> bool:
        """Store several keys; on failure the keys already written are rolled back (best effort)."""
        return bool(self._run(lambda d: d.batch.m_set(sets, ttl)).unwrap_or(False))

    def m_set_nx(self, sets: Mapping[str, Any], ttl: float = -1) -> bool:
        """Store several keys only if none of them is live."""
        return bool(self._run(lambda d: d.batch.m_set_nx(sets, ttl)).unwrap_or(False))

    def m_get(self, keys: Iterable[str]) -> dict[str, Any]:
        """``{key: value}`` for every key, with False for misses."""
        keys = list(keys)
        return self._run(lambda d: d.batch.m_get(keys)).unwrap_or(dict.fromkeys(keys, False))

    def m_has(self, keys: Iterable[str]) -> list[str]:
        """The live keys among ``keys``, in input order."""
        keys = list(keys)
        return self._run(lambda d: d.batch.m_has(keys)).unwrap_or([])

    def m_del(self, keys: Iterable[str]) -> bool:
        keys = list(keys)
        return bool(self._run(lambda d: d.batch.m_del(keys)).unwrap_or(False))

    # ------------ Management ------------

    def clear(self) -> bool:
        """Remove every key in the driver's namespace."""
        return bool(self._run(lambda d: d.adapter.clear()).unwrap_or(False))

    def get_stats(self) -> dict[str, Any]:
        stats = self.adapter.get_stats()
        stats.update(
            {
                "driver": self.name,
                "connected": self.is_connected(),
                "reconnect_attempts": self.failover.health.attempts,
                "capabilities": self.adapter.capabilities(),
            }
        )
        return stats

    def close(self) -> None:
        self.adapter.close()
