"""
Polycache - Test Helpers

Fake clock and misbehaving backends shared by the test suite.
"""

from typing import Any

from polycache.cache.backends.files import FilesBackend
from polycache.cache.backends.memory import MemoryBackend
from polycache.cache.result import Result
from polycache.errors import CacheConnectionError, CacheOperationError, ErrorCode


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FlakyBackend(MemoryBackend):
    """Memory backend that can be switched off to simulate an unreachable server."""

    name = "flaky"

    def __init__(self, *args: Any, **kwargs: Any):
        self.down = False
        self.health_checks = 0
        super().__init__(*args, **kwargs)

    def _check(self) -> None:
        if self.down:
            raise CacheConnectionError(self.name, details={"reason": "simulated outage"})

    def _live(self, cache_key: str) -> Any:
        self._check()
        return super()._live(cache_key)

    def _store(self, cache_key: str, data: bytes, expiry: float | None) -> None:
        self._check()
        super()._store(cache_key, data, expiry)

    def health_check(self) -> bool:
        self.health_checks += 1
        return not self.down


class RefusingDeletes:
    """Mixin failing ``delete_raw`` for the keys in ``refuse_deletes``."""

    refuse_deletes: set[str]

    def delete_raw(self, key: str) -> Result:
        if key in self.refuse_deletes:
            return Result.failure(ErrorCode.OPERATION_FAILURE, f"Delete of '{key}' refused")
        return super().delete_raw(key)  # type: ignore[misc]


class RefusingBackend(RefusingDeletes, MemoryBackend):
    """
    Memory backend that rejects some writes and deletes.

    Writes to ``refuse_keys`` always fail; once ``writes_left`` reaches 0 every
    write fails.
    """

    def __init__(self, *args: Any, refuse_keys: tuple[str, ...] = (), **kwargs: Any):
        self.refuse_keys = set(refuse_keys)
        self.refuse_deletes = set()
        self.writes_left: int | None = None
        super().__init__(*args, **kwargs)

    def _store(self, cache_key: str, data: bytes, expiry: float | None) -> None:
        key = cache_key.split(":", 1)[1]
        if key in self.refuse_keys or self.writes_left == 0:
            raise CacheOperationError(f"Write to '{key}' refused")
        if self.writes_left is not None:
            self.writes_left -= 1
        super()._store(cache_key, data, expiry)


class RefusingFilesBackend(RefusingDeletes, FilesBackend):
    """Files backend whose deletes can be refused."""

    def __init__(self, *args: Any, **kwargs: Any):
        self.refuse_deletes = set()
        super().__init__(*args, **kwargs)
