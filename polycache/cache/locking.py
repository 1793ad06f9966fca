"""
Polycache - Advisory Lock

Lock tokens live under ``<key>_lock`` and are written with set-if-absent plus
a TTL, so a lock is held until it expires or is released. The lock never
blocks writers of the guarded key; it only lets cooperating refreshers agree
that one of them recomputes an expired value.

Where the adapter has no atomic add the set-if-absent is emulated and two
callers can both win a race. Treat the lock as stampede reduction, not as a
mutex.
"""

from .codec import lock_key
from .expiry import ExpiryEngine
from .result import Result

DEFAULT_LOCK_TTL = 60


class AdvisoryLock:
    """Lock operations on top of an expiry engine."""

    def __init__(self, engine: ExpiryEngine):
        self.engine = engine

    def lock(self, key: str, ttl: float = DEFAULT_LOCK_TTL) -> Result:
        """Result with True if the lock on ``key`` was acquired."""
        return self.engine.setnx(lock_key(key), 1, ttl)

    def is_lock(self, key: str) -> Result:
        return self.engine.has(lock_key(key))

    def unlock(self, key: str) -> Result:
        return self.engine.delete(lock_key(key))
