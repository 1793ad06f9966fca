"""
Polycache - Expiry State Machine

Decides whether a key is alive, soft-expired or hard-expired, and computes
the expiry metadata written by set/expire/persist.

Two engines implement the single-key operations with identical observable
behavior:

- EnvelopeExpiry: for adapters without native TTL. Every value is stored as a
  CacheEntry envelope and expiry is evaluated here. A purge hint (twice the
  TTL, or TTL + delay for delayed-expiry entries) is handed to the adapter so
  stores that can purge old data eventually do.
- MarkerExpiry: for adapters with native TTL. The value is stored encoded
  (numbers as plain decimal text) with a physical TTL longer than the logical
  one, and the logical expiry lives in a TimeMarker under ``<key>_time``.

Engine methods never raise for backend problems; they return Results. A miss
is a successful Result holding ``False``.
"""

from __future__ import annotations

import logging
import math
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from enum import Enum
from typing import Any

from ..errors import CodecError, ErrorCode
from .codec import (
    NEVER_EXPIRES,
    CacheEntry,
    TimeMarker,
    decode_entry,
    decode_marker,
    decode_value,
    encode_entry,
    encode_marker,
    encode_value,
    is_numeric,
    time_key,
)
from .interface import AtomicAdd, AtomicIncrement, AtomicMulti, BackendAdapter, NativeTtl
from .result import Result

logger = logging.getLogger(__name__)

DEFAULT_DELAY_EXPIRE_TIME = 1800

TTL_ABSENT = -2
TTL_PERSISTENT = -1

# Stored value + its logical expiry, as read from the store
Loaded = tuple[Any, TimeMarker]


class EntryState(str, Enum):
    ABSENT = "absent"
    ALIVE = "alive"
    SOFT_EXPIRED = "soft_expired"
    HARD_EXPIRED = "hard_expired"


LIVE_STATES = (EntryState.ALIVE, EntryState.SOFT_EXPIRED)


def classify(marker: TimeMarker | None, now: float) -> EntryState:
    """State of an entry at ``now``. ``None`` means nothing is stored."""
    if marker is None:
        return EntryState.ABSENT
    if marker.never_expires:
        return EntryState.ALIVE
    if now >= marker.expire_time:
        return EntryState.HARD_EXPIRED
    if marker.delay_time is not None and now >= marker.soft_deadline:
        return EntryState.SOFT_EXPIRED
    return EntryState.ALIVE


def remaining_seconds(deadline: float, now: float) -> int:
    """Whole seconds left until ``deadline`` (rounded up), or -2 once it has passed."""
    if now >= deadline:
        return TTL_ABSENT
    return math.ceil(deadline - now)


def physical_ttl(marker: TimeMarker, now: float) -> int | None:
    """
    Physical lifetime to request from the store for an entry with ``marker``.

    Plain entries are kept for twice their remaining logical lifetime so the
    stale value stays readable by ``get_twice``; delayed-expiry entries are
    kept until their hard deadline.
    """
    if marker.never_expires:
        return None
    remaining = marker.expire_time - now
    if marker.delay_time is None:
        remaining *= 2
    return max(1, math.ceil(remaining))


class ExpiryEngine(ABC):
    """
    Single-key operations on top of one adapter.

    Subclasses provide the storage layout (``load``/``store``/``remove`` and
    friends); everything else is shared.
    """

    def __init__(
        self,
        adapter: BackendAdapter,
        delay_expire_time: float = DEFAULT_DELAY_EXPIRE_TIME,
        clock: Callable[[], float] = time.time,
    ):
        self.adapter = adapter
        self.delay_expire_time = delay_expire_time
        self._clock = clock

    def now(self) -> float:
        return self._clock()

    # ------------ Storage layout ------------

    @abstractmethod
    def load(self, key: str) -> Result:
        """Result with ``(value, marker)`` or None if nothing decodable is stored."""

    @abstractmethod
    def store(self, key: str, value: Any, marker: TimeMarker, now: float) -> Result:
        """Write ``value`` with logical expiry ``marker``."""

    @abstractmethod
    def store_if_absent(self, key: str, value: Any, marker: TimeMarker, now: float) -> Result:
        """Write only if the adapter holds nothing under ``key`` (AtomicAdd adapters only)."""

    @abstractmethod
    def remove(self, key: str) -> Result:
        """Delete ``key`` and anything stored alongside it. Absent keys succeed."""

    @abstractmethod
    def retime(self, key: str, value: Any, marker: TimeMarker, now: float) -> Result:
        """Replace the logical expiry of a live key, keeping its value."""

    @abstractmethod
    def prepare_writes(self, sets: Mapping[str, Any], marker: TimeMarker, now: float) -> tuple[dict[str, bytes], int | None]:
        """
        Raw items and physical TTL for writing ``sets`` in one AtomicMulti call.

        Raises:
            CodecError: If a value cannot be encoded
        """

    @abstractmethod
    def fetch_many(self, keys: list[str], now: float) -> Result:
        """Result with ``{key: (value, marker)}`` for the stored keys, in one round trip."""

    def past_retention(self, marker: TimeMarker, now: float) -> bool:
        """True once stale data should no longer be served by ``get_twice``."""
        return False

    # ------------ Helpers ------------

    def resolve_delay(self, delay: float | None) -> float:
        if delay is None or delay < 0:
            return self.delay_expire_time
        return delay

    @staticmethod
    def fresh_marker(ttl: float, now: float) -> TimeMarker:
        """Marker for a plain write: ttl > 0 expires, anything else never does."""
        if ttl > 0:
            return TimeMarker(expire_time=now + ttl)
        return TimeMarker(expire_time=NEVER_EXPIRES)

    def delayed_marker(self, ttl: float, delay: float | None, now: float) -> TimeMarker:
        if ttl <= 0:
            return TimeMarker(expire_time=NEVER_EXPIRES)
        grace = self.resolve_delay(delay)
        return TimeMarker(expire_time=now + ttl + grace, delay_time=grace)

    def _state(self, key: str, now: float) -> tuple[Result, Loaded | None, EntryState]:
        loaded = self.load(key)
        if not loaded.ok:
            return loaded, None, EntryState.ABSENT
        entry = loaded.value
        return loaded, entry, classify(entry[1] if entry else None, now)

    def reclaim(self, key: str, now: float) -> Result:
        """
        Make ``key`` writable by set-if-absent.

        Returns a Result with True if the key is free (absent, or hard-expired
        and now removed), False if it is still live.
        """
        loaded, _, state = self._state(key, now)
        if not loaded.ok:
            return loaded
        if state in LIVE_STATES:
            return Result.success(False)
        removed = self.remove(key)
        if not removed.ok:
            return removed
        return Result.success(True)

    # ------------ Writes ------------

    def set(self, key: str, value: Any, ttl: float = -1) -> Result:
        now = self.now()
        if ttl < 0:
            # Keep the deadline of a live entry; otherwise never expire
            loaded, entry, state = self._state(key, now)
            if not loaded.ok:
                return loaded
            marker = entry[1] if entry and state in LIVE_STATES else TimeMarker(expire_time=NEVER_EXPIRES)
            marker = TimeMarker(expire_time=marker.expire_time, delay_time=marker.delay_time)
        else:
            marker = self.fresh_marker(ttl, now)
        return self.store(key, value, marker, now)

    def setnx(self, key: str, value: Any, ttl: float = -1) -> Result:
        now = self.now()
        free = self.reclaim(key, now)
        if not free.ok or not free.value:
            return free
        marker = self.fresh_marker(ttl, now)
        if isinstance(self.adapter, AtomicAdd):
            return self.store_if_absent(key, value, marker, now)
        # Read-then-write: not safe against concurrent writers
        return self.store(key, value, marker, now)

    def set_de(self, key: str, value: Any, ttl: float, delay: float | None = None) -> Result:
        now = self.now()
        return self.store(key, value, self.delayed_marker(ttl, delay, now), now)

    def delete(self, key: str) -> Result:
        removed = self.remove(key)
        if not removed.ok:
            return removed
        return Result.success(True)

    # ------------ Reads ------------

    def get(self, key: str) -> Result:
        now = self.now()
        loaded, entry, state = self._state(key, now)
        if not loaded.ok:
            return loaded
        if state in LIVE_STATES:
            return Result.success(entry[0])
        if state is EntryState.HARD_EXPIRED:
            removed = self.remove(key)
            if not removed.ok:
                return removed
        return Result.success(False)

    def get_twice(self, key: str) -> Result:
        """Result with ``(value, is_expired)``; stale values are served until retention ends."""
        now = self.now()
        loaded, entry, state = self._state(key, now)
        if not loaded.ok:
            return loaded
        if state is EntryState.ABSENT:
            return Result.success((False, True))
        value, marker = entry
        if state is EntryState.HARD_EXPIRED:
            if self.past_retention(marker, now):
                removed = self.remove(key)
                if not removed.ok:
                    return removed
                return Result.success((False, True))
            return Result.success((value, True))
        return Result.success((value, False))

    def get_de(self, key: str) -> Result:
        """Result with ``(value, is_expired)``; expired from the soft deadline on."""
        now = self.now()
        loaded, entry, state = self._state(key, now)
        if not loaded.ok:
            return loaded
        if state is EntryState.ABSENT:
            return Result.success((False, True))
        if state is EntryState.HARD_EXPIRED:
            removed = self.remove(key)
            if not removed.ok:
                return removed
            return Result.success((False, True))
        return Result.success((entry[0], state is EntryState.SOFT_EXPIRED))

    def has(self, key: str) -> Result:
        loaded, _, state = self._state(key, self.now())
        if not loaded.ok:
            return loaded
        return Result.success(state in LIVE_STATES)

    def has_de(self, key: str) -> Result:
        loaded, _, state = self._state(key, self.now())
        if not loaded.ok:
            return loaded
        return Result.success(state is EntryState.ALIVE)

    def ttl(self, key: str) -> Result:
        now = self.now()
        loaded, entry, state = self._state(key, now)
        if not loaded.ok:
            return loaded
        if state not in LIVE_STATES:
            return Result.success(TTL_ABSENT)
        marker = entry[1]
        if marker.never_expires:
            return Result.success(TTL_PERSISTENT)
        return Result.success(remaining_seconds(marker.expire_time, now))

    def ttl_de(self, key: str) -> Result:
        now = self.now()
        loaded, entry, state = self._state(key, now)
        if not loaded.ok:
            return loaded
        if state not in LIVE_STATES:
            return Result.success(TTL_ABSENT)
        marker = entry[1]
        if marker.never_expires:
            return Result.success(TTL_PERSISTENT)
        return Result.success(remaining_seconds(marker.soft_deadline, now))

    # ------------ Expiry changes ------------

    def _change_expiry(self, key: str, make_marker: Callable[[float], TimeMarker]) -> Result:
        now = self.now()
        loaded, entry, state = self._state(key, now)
        if not loaded.ok:
            return loaded
        if state not in LIVE_STATES:
            # Never resurrect an expired key
            return Result.success(False)
        return self.retime(key, entry[0], make_marker(now), now)

    def expire(self, key: str, ttl: float) -> Result:
        return self._change_expiry(key, lambda now: self.fresh_marker(ttl, now))

    def expire_de(self, key: str, ttl: float, delay: float | None = None) -> Result:
        return self._change_expiry(key, lambda now: self.delayed_marker(ttl, delay, now))

    def persist(self, key: str) -> Result:
        return self._change_expiry(key, lambda now: TimeMarker(expire_time=NEVER_EXPIRES))

    def _expire_now(self, key: str) -> Result:
        loaded, _, state = self._state(key, self.now())
        if not loaded.ok:
            return loaded
        if state not in LIVE_STATES:
            return Result.success(False)
        return self.delete(key)

    def expire_at(self, key: str, timestamp: float) -> Result:
        now = self.now()
        if timestamp <= now:
            return self._expire_now(key)
        return self.expire(key, timestamp - now)

    def expire_at_de(self, key: str, timestamp: float, delay: float | None = None) -> Result:
        now = self.now()
        if timestamp <= now:
            return self._expire_now(key)
        return self.expire_de(key, timestamp - now, delay)

    # ------------ Numeric ------------

    def _add_emulated(self, key: str, step: int | float, floating: bool) -> Result:
        # Read-modify-write: not safe against concurrent writers
        now = self.now()
        loaded, entry, state = self._state(key, now)
        if not loaded.ok:
            return loaded
        if state in LIVE_STATES:
            current, marker = entry
            if not is_numeric(current) or (not floating and not isinstance(current, int)):
                logger.debug(f"Refusing to increment non-numeric value of key '{key}'")
                return Result.failure(ErrorCode.OPERATION_FAILURE, f"Value of key '{key}' is not numeric")
        else:
            current, marker = 0, TimeMarker(expire_time=NEVER_EXPIRES)
        new_value = float(current + step) if floating else current + step
        stored = self.store(key, new_value, marker, now)
        if not stored.ok:
            return stored
        if not stored.value:
            return Result.failure(ErrorCode.OPERATION_FAILURE, f"Failed to store new value of key '{key}'")
        return Result.success(new_value)

    def _add_native(self, key: str, step: int | float, floating: bool) -> Result:
        return self._add_emulated(key, step, floating)

    def incr(self, key: str, step: int = 1) -> Result:
        if not isinstance(step, int) or isinstance(step, bool):
            return Result.failure(ErrorCode.OPERATION_FAILURE, f"Step must be an integer, got {type(step).__name__}")
        return self._add_native(key, step, floating=False)

    def decr(self, key: str, step: int = 1) -> Result:
        if not isinstance(step, int) or isinstance(step, bool):
            return Result.failure(ErrorCode.OPERATION_FAILURE, f"Step must be an integer, got {type(step).__name__}")
        return self._add_native(key, -step, floating=False)

    def incr_by_float(self, key: str, step: float) -> Result:
        if not is_numeric(step) or not math.isfinite(step):
            return Result.failure(ErrorCode.OPERATION_FAILURE, f"Step must be a finite number, got {step!r}")
        return self._add_native(key, float(step), floating=True)

    # ------------ Batch helpers ------------

    def get_many(self, keys: Iterable[str]) -> Result:
        """
        Result with ``{key: value | False}`` for every requested key.

        Uses one AtomicMulti round trip when the adapter has it; hard-expired
        keys found along the way are deleted.
        """
        unique = list(dict.fromkeys(keys))
        now = self.now()
        if isinstance(self.adapter, AtomicMulti):
            fetched = self.fetch_many(unique, now)
            if not fetched.ok:
                return fetched
            values: dict[str, Any] = {}
            for key in unique:
                entry = fetched.value.get(key)
                state = classify(entry[1] if entry else None, now)
                if state in LIVE_STATES:
                    values[key] = entry[0]
                    continue
                if state is EntryState.HARD_EXPIRED:
                    self.remove(key)
                values[key] = False
            return Result.success(values)

        values = {}
        for key in unique:
            got = self.get(key)
            if got.is_connection_failure:
                return got
            values[key] = got.unwrap_or(False)
        return Result.success(values)


class EnvelopeExpiry(ExpiryEngine):
    """Expiry evaluated in-process from CacheEntry envelopes."""

    def _entry(self, value: Any, marker: TimeMarker, now: float) -> CacheEntry:
        return CacheEntry(
            value=value,
            write_time=now,
            expire_time=marker.expire_time,
            delay_time=marker.delay_time,
        )

    def _encode(self, key: str, value: Any, marker: TimeMarker, now: float) -> bytes | Result:
        try:
            return encode_entry(self._entry(value, marker, now))
        except CodecError as e:
            logger.warning(f"Cannot store value of key '{key}': {e}", extra={"key": key, "error": str(e)})
            return Result.failure(ErrorCode.OPERATION_FAILURE, str(e))

    def load(self, key: str) -> Result:
        raw = self.adapter.read_raw(key)
        if not raw.ok:
            return raw
        entry = decode_entry(raw.value)
        return Result.success((entry.value, entry) if entry else None)

    def store(self, key: str, value: Any, marker: TimeMarker, now: float) -> Result:
        data = self._encode(key, value, marker, now)
        if isinstance(data, Result):
            return data
        return self.adapter.write_raw(key, data, physical_ttl(marker, now))

    def store_if_absent(self, key: str, value: Any, marker: TimeMarker, now: float) -> Result:
        data = self._encode(key, value, marker, now)
        if isinstance(data, Result):
            return data
        return self.adapter.write_raw_if_absent(key, data, physical_ttl(marker, now))

    def remove(self, key: str) -> Result:
        return self.adapter.delete_raw(key)

    def retime(self, key: str, value: Any, marker: TimeMarker, now: float) -> Result:
        return self.store(key, value, marker, now)

    def prepare_writes(self, sets: Mapping[str, Any], marker: TimeMarker, now: float) -> tuple[dict[str, bytes], int | None]:
        items = {key: encode_entry(self._entry(value, marker, now)) for key, value in sets.items()}
        return items, physical_ttl(marker, now)

    def fetch_many(self, keys: list[str], now: float) -> Result:
        fetched = self.adapter.multi_get(keys)
        if not fetched.ok:
            return fetched
        entries = {}
        for key, raw in fetched.value.items():
            entry = decode_entry(raw)
            if entry is not None:
                entries[key] = (entry.value, entry)
        return Result.success(entries)

    def past_retention(self, marker: TimeMarker, now: float) -> bool:
        if not isinstance(marker, CacheEntry) or marker.never_expires:
            return False
        if marker.delay_time is not None:
            return now >= marker.expire_time
        # Plain entries are dropped once twice as old as their TTL
        return now >= marker.write_time + 2 * (marker.expire_time - marker.write_time)


class MarkerExpiry(ExpiryEngine):
    """Expiry tracked in ``<key>_time`` markers next to natively-expiring data keys."""

    def __init__(
        self,
        adapter: BackendAdapter,
        delay_expire_time: float = DEFAULT_DELAY_EXPIRE_TIME,
        clock: Callable[[], float] = time.time,
    ):
        if not isinstance(adapter, NativeTtl):
            raise TypeError(f"MarkerExpiry requires a NativeTtl adapter, got {type(adapter).__name__}")
        super().__init__(adapter, delay_expire_time, clock)

    @staticmethod
    def _decode(key: str, raw: Any) -> Result:
        try:
            return Result.success(decode_value(raw))
        except CodecError as e:
            logger.warning(f"Stored value of key '{key}' is not decodable: {e}", extra={"key": key})
            return Result.failure(ErrorCode.CODEC_FAILURE, str(e))

    def _marker(self, key: str) -> Result:
        raw = self.adapter.read_raw(time_key(key))
        if not raw.ok:
            return raw
        return Result.success(decode_marker(raw.value) or TimeMarker(expire_time=NEVER_EXPIRES))

    def _write_marker(self, key: str, marker: TimeMarker, ttl: int | None) -> Result:
        if marker.never_expires:
            # No marker means never expires
            return self.adapter.delete_raw(time_key(key))
        return self.adapter.write_raw(time_key(key), encode_marker(marker), ttl)

    def load(self, key: str) -> Result:
        raw = self.adapter.read_raw(key)
        if not raw.ok or raw.value is None:
            return Result.success(None) if raw.ok else raw
        value = self._decode(key, raw.value)
        if not value.ok:
            return value
        marker = self._marker(key)
        if not marker.ok:
            return marker
        return Result.success((value.value, marker.value))

    def store(self, key: str, value: Any, marker: TimeMarker, now: float) -> Result:
        try:
            data = encode_value(value)
        except CodecError as e:
            logger.warning(f"Cannot store value of key '{key}': {e}", extra={"key": key, "error": str(e)})
            return Result.failure(ErrorCode.OPERATION_FAILURE, str(e))
        ttl = physical_ttl(marker, now)
        # Marker first: a marker without data reads as absent
        marked = self._write_marker(key, marker, ttl)
        if not marked.ok:
            return marked
        return self.adapter.write_raw(key, data, ttl)

    def store_if_absent(self, key: str, value: Any, marker: TimeMarker, now: float) -> Result:
        try:
            data = encode_value(value)
        except CodecError as e:
            logger.warning(f"Cannot store value of key '{key}': {e}", extra={"key": key, "error": str(e)})
            return Result.failure(ErrorCode.OPERATION_FAILURE, str(e))
        ttl = physical_ttl(marker, now)
        added = self.adapter.write_raw_if_absent(key, data, ttl)
        if not added.ok or not added.value:
            return added
        marked = self._write_marker(key, marker, ttl)
        if not marked.ok:
            return marked
        return Result.success(True)

    def remove(self, key: str) -> Result:
        unmarked = self.adapter.delete_raw(time_key(key))
        if not unmarked.ok:
            return unmarked
        return self.adapter.delete_raw(key)

    def retime(self, key: str, value: Any, marker: TimeMarker, now: float) -> Result:
        ttl = physical_ttl(marker, now)
        if ttl is None:
            changed = self.adapter.persist_raw(key)
        else:
            changed = self.adapter.expire_raw(key, ttl)
        if not changed.ok or not changed.value:
            return changed
        marked = self._write_marker(key, marker, ttl)
        if not marked.ok:
            return marked
        return Result.success(True)

    def prepare_writes(self, sets: Mapping[str, Any], marker: TimeMarker, now: float) -> tuple[dict[str, bytes], int | None]:
        items: dict[str, bytes] = {}
        # Never-expiring batches carry explicit markers so stale ones are overwritten atomically
        marker_data = encode_marker(marker)
        for key, value in sets.items():
            items[key] = encode_value(value)
            items[time_key(key)] = marker_data
        return items, physical_ttl(marker, now)

    def fetch_many(self, keys: list[str], now: float) -> Result:
        raw_keys = [k for key in keys for k in (key, time_key(key))]
        fetched = self.adapter.multi_get(raw_keys)
        if not fetched.ok:
            return fetched
        entries = {}
        for key in keys:
            raw = fetched.value.get(key)
            if raw is None:
                continue
            value = self._decode(key, raw)
            if not value.ok:
                continue
            marker = decode_marker(fetched.value.get(time_key(key))) or TimeMarker(expire_time=NEVER_EXPIRES)
            entries[key] = (value.value, marker)
        return Result.success(entries)

    def _add_native(self, key: str, step: int | float, floating: bool) -> Result:
        if not isinstance(self.adapter, AtomicIncrement):
            return self._add_emulated(key, step, floating)
        # Drop a hard-expired value so it counts as 0
        marker = self._marker(key)
        if not marker.ok:
            return marker
        if classify(marker.value, self.now()) is EntryState.HARD_EXPIRED:
            removed = self.remove(key)
            if not removed.ok:
                return removed
        if floating:
            return self.adapter.increment_float(key, step)
        return self.adapter.increment(key, step)


def select_engine(
    adapter: BackendAdapter,
    delay_expire_time: float = DEFAULT_DELAY_EXPIRE_TIME,
    clock: Callable[[], float] = time.time,
) -> ExpiryEngine:
    """Pick the engine matching the adapter's capabilities."""
    if isinstance(adapter, NativeTtl):
        return MarkerExpiry(adapter, delay_expire_time, clock)
    return EnvelopeExpiry(adapter, delay_expire_time, clock)
