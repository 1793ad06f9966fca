"""
Polycache - Batch Emulator

Multi-key operations. Adapters declaring AtomicMulti get a single round trip;
everything else is written key by key with best-effort rollback:

- m_set captures each key's live value and deadline before overwriting it and,
  on the first failure, restores what it captured (or deletes keys that did
  not exist).
- m_set_nx deletes only the keys it created itself.

Rollback is not guaranteed. A compensating write that fails is logged and
skipped, and the batch still reports failure. Batches are not isolated from
concurrent single-key writers.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from ..errors import CodecError, ErrorCode, RollbackError
from .expiry import LIVE_STATES, ExpiryEngine, Loaded, classify
from .interface import AtomicMulti
from .result import Result

logger = logging.getLogger(__name__)


class BatchEmulator:
    """m_set / m_set_nx / m_get / m_has / m_del on top of an expiry engine."""

    def __init__(self, engine: ExpiryEngine):
        self.engine = engine

    @property
    def atomic(self) -> bool:
        return isinstance(self.engine.adapter, AtomicMulti)

    # ------------ Writes ------------

    def m_set(self, sets: Mapping[str, Any], ttl: float = -1) -> Result:
        if not sets:
            return Result.success(True)
        # ttl < 0 keeps each key's own deadline, which one multi-write cannot express
        if ttl >= 0 and self.atomic:
            return self._atomic_write(sets, ttl, if_absent=False)
        return self._emulated_set(sets, ttl)

    def m_set_nx(self, sets: Mapping[str, Any], ttl: float = -1) -> Result:
        if not sets:
            return Result.success(True)
        if self.atomic:
            now = self.engine.now()
            for key in sets:
                free = self.engine.reclaim(key, now)
                if not free.ok or not free.value:
                    return free
            return self._atomic_write(sets, ttl, if_absent=True)
        return self._emulated_set_nx(sets, ttl)

    def _atomic_write(self, sets: Mapping[str, Any], ttl: float, if_absent: bool) -> Result:
        now = self.engine.now()
        try:
            items, physical = self.engine.prepare_writes(sets, self.engine.fresh_marker(ttl, now), now)
        except CodecError as e:
            logger.warning(f"Cannot encode batch of {len(sets)} keys: {e}", extra={"error": str(e)})
            return Result.failure(ErrorCode.OPERATION_FAILURE, str(e))
        adapter = self.engine.adapter
        if if_absent:
            return adapter.multi_set_if_absent(items, physical)
        return adapter.multi_set(items, physical)

    def _emulated_set(self, sets: Mapping[str, Any], ttl: float) -> Result:
        written: list[tuple[str, Loaded | None]] = []
        for key, value in sets.items():
            previous = self.engine.load(key)
            if not previous.ok:
                self._restore(written)
                return previous
            entry = previous.value
            if entry is not None and classify(entry[1], self.engine.now()) not in LIVE_STATES:
                entry = None
            # Recorded before writing: a failed write may have been partial
            written.append((key, entry))
            result = self.engine.set(key, value, ttl)
            if not result.ok or not result.value:
                logger.warning(
                    f"Batch set failed at key '{key}', rolling back {len(written)} key(s)",
                    extra={"key": key, "error": result.error},
                )
                self._restore(written)
                return result if not result.ok else Result.success(False)
        return Result.success(True)

    def _emulated_set_nx(self, sets: Mapping[str, Any], ttl: float) -> Result:
        created: list[str] = []
        for key, value in sets.items():
            result = self.engine.setnx(key, value, ttl)
            if not result.ok or not result.value:
                logger.info(
                    f"Batch setnx stopped at key '{key}', removing {len(created)} created key(s)",
                    extra={"key": key, "error": result.error},
                )
                self._discard(created)
                return result if not result.ok else Result.success(False)
            created.append(key)
        return Result.success(True)

    # ------------ Rollback ------------

    def _restore(self, written: list[tuple[str, Loaded | None]]) -> None:
        now = self.engine.now()
        for key, entry in reversed(written):
            if entry is None:
                result = self.engine.remove(key)
            else:
                value, marker = entry
                result = self.engine.store(key, value, marker, now)
            if not result.ok:
                self._log_rollback_failure(key, result)

    def _discard(self, created: list[str]) -> None:
        for key in reversed(created):
            result = self.engine.remove(key)
            if not result.ok:
                self._log_rollback_failure(key, result)

    @staticmethod
    def _log_rollback_failure(key: str, result: Result) -> None:
        error = RollbackError(key, details={"error_code": result.error_code, "error": result.error})
        logger.warning(f"{error}: {result.error}", extra={"key": key, "error_code": str(result.error_code)})

    # ------------ Reads and deletes ------------

    def m_get(self, keys: Iterable[str]) -> Result:
        return self.engine.get_many(keys)

    def m_has(self, keys: Iterable[str]) -> Result:
        present: list[str] = []
        for key in dict.fromkeys(keys):
            result = self.engine.has(key)
            if result.is_connection_failure:
                return result
            if result.ok and result.value:
                present.append(key)
        return Result.success(present)

    def m_del(self, keys: Iterable[str]) -> Result:
        all_deleted = True
        connection_failure: Result | None = None
        # Every key is attempted, even after a failure
        for key in dict.fromkeys(keys):
            result = self.engine.delete(key)
            if not result.ok:
                all_deleted = False
                if result.is_connection_failure and connection_failure is None:
                    connection_failure = result
        if connection_failure is not None:
            return connection_failure
        return Result.success(all_deleted)
