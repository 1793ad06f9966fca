"""
Polycache - Fail-over Orchestrator

Tracks the health of one driver's primary adapter and routes operations to
the configured backup driver while the primary is unreachable.

State machine:
    CONNECTED --(connection failure during a call)--> DISCONNECTED(0)
    DISCONNECTED(n) --(health check ok)--> CONNECTED
    DISCONNECTED(n) --(health check fails)--> DISCONNECTED(n + 1)

Health checks run before an operation only while ``attempts < max_attempts``. Once
the budget is spent the primary is skipped until ``reconnect_cooldown``
seconds have passed, then a new round of health checks starts (a cooldown of 0 keeps
the primary abandoned for the process lifetime). With ``max_attempts`` of 0 the
cooldown starts as soon as the connection is lost.

Operations are callables that take a driver and return a Result, so the same
logical call can be re-issued on the backup driver unchanged.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from ..errors import ErrorCode
from .interface import BackendAdapter
from .result import Result

if TYPE_CHECKING:
    from .driver import CacheDriver

logger = logging.getLogger(__name__)

DEFAULT_MAX_RECONNECT_ATTEMPTS = 3
DEFAULT_RECONNECT_COOLDOWN = 60.0

Operation = Callable[["CacheDriver"], Result]


class HealthState(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


@dataclass
class ConnectionHealth:
    """Health of a primary adapter: CONNECTED or DISCONNECTED(attempts)."""

    state: HealthState = HealthState.CONNECTED
    attempts: int = 0
    exhausted_at: float | None = None

    @property
    def connected(self) -> bool:
        return self.state is HealthState.CONNECTED

    def mark_connected(self) -> None:
        self.state = HealthState.CONNECTED
        self.attempts = 0
        self.exhausted_at = None

    def mark_disconnected(self) -> None:
        self.state = HealthState.DISCONNECTED
        self.attempts = 0
        self.exhausted_at = None


class FailoverOrchestrator:
    """
    Runs operations for one driver, failing over to its backup.

    Args:
        owner: Driver whose primary adapter is guarded
        adapter: The primary adapter (checked with ``health_check``)
        backup_resolver: Returns the backup driver, or None if there is none
        max_attempts: Health checks per round before the primary is skipped
        reconnect_cooldown: Seconds before a new round of health checks (0 = never)
        clock: Time source in seconds
    """

    def __init__(
        self,
        owner: CacheDriver,
        adapter: BackendAdapter,
        backup_resolver: Callable[[], CacheDriver | None] | None = None,
        max_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS,
        reconnect_cooldown: float = DEFAULT_RECONNECT_COOLDOWN,
        clock: Callable[[], float] = time.time,
    ):
        self.owner = owner
        self.adapter = adapter
        self.backup_resolver = backup_resolver
        self.max_attempts = max_attempts
        self.reconnect_cooldown = reconnect_cooldown
        self.health = ConnectionHealth()
        self._clock = clock

    def is_usable(self) -> bool:
        """Whether the primary should be tried now. Health-checks it if disconnected."""
        health = self.health
        if health.connected:
            return True

        if health.attempts >= self.max_attempts:
            if not self.reconnect_cooldown or health.exhausted_at is None:
                return False
            if self._clock() - health.exhausted_at < self.reconnect_cooldown:
                return False
            logger.info(
                f"Reconnect cooldown elapsed for cache driver '{self.owner.name}', checking again",
                extra={"driver": self.owner.name},
            )
            health.attempts = 0
            health.exhausted_at = None

        if self.adapter.health_check():
            health.mark_connected()
            logger.info(f"Cache driver '{self.owner.name}' reconnected", extra={"driver": self.owner.name})
            return True

        health.attempts += 1
        logger.debug(
            f"Health check {health.attempts}/{self.max_attempts} failed for cache driver '{self.owner.name}'",
            extra={"driver": self.owner.name, "attempts": health.attempts},
        )
        if health.attempts >= self.max_attempts:
            health.exhausted_at = self._clock()
            logger.warning(
                f"Cache driver '{self.owner.name}' still unreachable after {health.attempts} health check(s)",
                extra={"driver": self.owner.name, "attempts": health.attempts},
            )
        return False

    def execute(self, operation: Operation, visited: frozenset[str] = frozenset()) -> Result:
        """
        Run ``operation`` on the owner, or on the backup chain if the owner is down.

        ``visited`` holds the names of drivers already tried for this call and
        stops fail-over cycles.
        """
        visited = visited | {self.owner.name}

        if self.is_usable():
            result = operation(self.owner)
            if not result.is_connection_failure:
                return result
            self.health.mark_disconnected()
            if self.max_attempts <= 0:
                # No health checks allowed: the cooldown starts now
                self.health.exhausted_at = self._clock()
            logger.warning(
                f"Cache driver '{self.owner.name}' lost its connection, failing over",
                extra={"driver": self.owner.name, "error": result.error},
            )

        return self._reissue(operation, visited)

    def _reissue(self, operation: Operation, visited: frozenset[str]) -> Result:
        backup = self.backup_resolver() if self.backup_resolver else None
        if backup is None:
            return Result.failure(
                ErrorCode.FALLBACK_UNAVAILABLE,
                f"Cache driver '{self.owner.name}' is unreachable and has no backup",
            )
        if backup.name in visited:
            logger.warning(
                f"Fail-over cycle detected at cache driver '{backup.name}'",
                extra={"driver": self.owner.name, "backup": backup.name},
            )
            return Result.failure(
                ErrorCode.FALLBACK_UNAVAILABLE,
                f"Backup '{backup.name}' of cache driver '{self.owner.name}' was already tried",
            )
        logger.debug(
            f"Routing operation from cache driver '{self.owner.name}' to backup '{backup.name}'",
            extra={"driver": self.owner.name, "backup": backup.name},
        )
        return backup.failover.execute(operation, visited)
