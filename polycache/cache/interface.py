"""
Polycache - Backend Adapter Interface

Defines the minimal surface every cache backend must implement, plus the
optional capability interfaces a backend can declare. The core picks the fast
path with ``isinstance`` checks against these capabilities and falls back to
the emulated path otherwise.

Every method returns a Result (see result.py). Implementations decorate their
methods with ``@guarded`` so backend exceptions never escape.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any

from ..errors import CacheConnectionError
from .result import Result


class BackendAdapter(ABC):
    """
    Abstract base class for cache backends.

    Keys passed in are logical keys; adapters apply their own namespace.
    Values are opaque bytes produced by the codec.
    """

    name: str = "backend"

    # Exception types that mean "backend unreachable" for this adapter
    connection_errors: tuple[type[BaseException], ...] = (CacheConnectionError,)

    @abstractmethod
    def read_raw(self, key: str) -> Result:
        """
        Read the raw payload stored under ``key``.

        Returns:
            Result with the bytes, or with None when the key is absent
        """

    @abstractmethod
    def write_raw(self, key: str, data: bytes, ttl: int | None = None) -> Result:
        """
        Store ``data`` under ``key``.

        Args:
            key: Cache key
            data: Encoded payload
            ttl: Physical time-to-live in seconds (None = keep forever). Adapters
                without native TTL may use it as a purge hint only.

        Returns:
            Result with True if stored
        """

    @abstractmethod
    def delete_raw(self, key: str) -> Result:
        """
        Delete ``key``.

        Returns:
            Result with True if something was removed, False if it was absent
        """

    @abstractmethod
    def exists(self, key: str) -> Result:
        """
        Result with True if ``key`` is physically present.

        Diagnostic only: the core derives presence from markers and envelopes,
        so a logically expired key can still exist here.
        """

    @abstractmethod
    def health_check(self) -> bool:
        """Lightweight reachability check (ping/stat). Must not raise."""

    @abstractmethod
    def clear(self) -> Result:
        """Remove every key in this adapter's namespace."""

    @abstractmethod
    def get_stats(self) -> dict[str, Any]:
        """Backend statistics (hits, misses, size, ...)."""

    @abstractmethod
    def close(self) -> None:
        """Release connections and file handles."""

    def capabilities(self) -> list[str]:
        """Names of the capability interfaces this adapter implements."""
        return [cap.__name__ for cap in (NativeTtl, AtomicAdd, AtomicIncrement, AtomicMulti) if isinstance(self, cap)]


class NativeTtl(ABC):
    """Backend attaches TTLs to keys itself and can report them."""

    @abstractmethod
    def native_ttl(self, key: str) -> Result:
        """
        Remaining physical lifetime of ``key``.

        Part of the adapter contract, not used for logical expiry: ``ttl`` and
        ``get`` read the expiry marker instead.

        Returns:
            Result with seconds remaining, -1 for no expiry, or None if absent
        """

    @abstractmethod
    def expire_raw(self, key: str, ttl: int) -> Result:
        """Set the physical TTL of an existing key. Result with False if absent."""

    @abstractmethod
    def persist_raw(self, key: str) -> Result:
        """Remove the physical TTL of an existing key. Result with False if absent."""


class AtomicAdd(ABC):
    """Backend has an atomic set-if-absent primitive."""

    @abstractmethod
    def write_raw_if_absent(self, key: str, data: bytes, ttl: int | None = None) -> Result:
        """Result with True if written, False if the key already existed."""


class AtomicIncrement(ABC):
    """Backend increments numeric payloads atomically."""

    @abstractmethod
    def increment(self, key: str, step: int) -> Result:
        """
        Add ``step`` to the integer stored under ``key`` (absent counts as 0).

        Returns:
            Result with the new value; operation failure if the payload is not
            an integer
        """

    @abstractmethod
    def increment_float(self, key: str, step: float) -> Result:
        """Float variant of ``increment``."""


class AtomicMulti(ABC):
    """Backend reads and writes several keys in one atomic step."""

    @abstractmethod
    def multi_get(self, keys: Sequence[str]) -> Result:
        """Result with a dict of key -> bytes for the keys that exist."""

    @abstractmethod
    def multi_set(self, items: Mapping[str, bytes], ttl: int | None = None) -> Result:
        """Write all items (same physical TTL) or none."""

    @abstractmethod
    def multi_set_if_absent(self, items: Mapping[str, bytes], ttl: int | None = None) -> Result:
        """Write all items only if none of the keys exists. Result with True if written."""
