"""
Polycache - Batch Operation Tests

Covers the single-round-trip path (memory, AtomicMulti) and the emulated
key-by-key path (files), including rollback after a failed write.
"""

import logging
from collections.abc import Generator
from pathlib import Path

import pytest

from polycache.cache.driver import CacheDriver
from tests.helpers import FakeClock, RefusingBackend, RefusingFilesBackend


class TestBatchWrites:
    def test_m_set_and_m_get(self, driver: CacheDriver) -> None:
        assert driver.m_set({"x": 1, "y": "two", "z": [3]}) is True
        assert driver.m_get(["x", "y", "z", "missing"]) == {"x": 1, "y": "two", "z": [3], "missing": False}

    def test_m_set_with_ttl(self, driver: CacheDriver, clock: FakeClock) -> None:
        assert driver.m_set({"x": 1, "y": 2}, ttl=5) is True
        assert driver.ttl("x") == 5
        assert driver.ttl("y") == 5

        clock.advance(5)
        assert driver.m_get(["x", "y"]) == {"x": False, "y": False}

    def test_m_set_zero_ttl_overwrites_deadline(self, driver: CacheDriver, clock: FakeClock) -> None:
        driver.set("x", 1, ttl=5)
        assert driver.m_set({"x": 2}, ttl=0) is True
        clock.advance(100)
        assert driver.get("x") == 2
        assert driver.ttl("x") == -1

    def test_m_set_negative_ttl_keeps_each_deadline(self, driver: CacheDriver) -> None:
        driver.set("x", 1, ttl=10)
        driver.set("y", 1, ttl=20)
        assert driver.m_set({"x": 2, "y": 2, "z": 2}) is True
        assert driver.ttl("x") == 10
        assert driver.ttl("y") == 20
        assert driver.ttl("z") == -1

    def test_empty_batches_succeed(self, driver: CacheDriver) -> None:
        assert driver.m_set({}) is True
        assert driver.m_set_nx({}) is True
        assert driver.m_get([]) == {}

    def test_m_set_nx_all_absent(self, driver: CacheDriver) -> None:
        assert driver.m_set_nx({"a": 1, "b": 2}, ttl=10) is True
        assert driver.m_get(["a", "b"]) == {"a": 1, "b": 2}
        assert driver.ttl("a") == 10

    def test_m_set_nx_rolls_back_when_one_key_exists(self, driver: CacheDriver) -> None:
        driver.set("b", 0)
        assert driver.m_set_nx({"a": 1, "b": 2}) is False
        assert driver.has("a") is False
        assert driver.get("b") == 0

    def test_m_set_nx_keeps_keys_it_did_not_create(self, driver: CacheDriver) -> None:
        driver.set("c", "mine")
        assert driver.m_set_nx({"a": 1, "b": 2, "c": 3}) is False
        assert driver.m_has(["a", "b", "c"]) == ["c"]
        assert driver.get("c") == "mine"

    def test_m_set_nx_reuses_hard_expired_keys(self, driver: CacheDriver, clock: FakeClock) -> None:
        driver.set("a", "old", ttl=1)
        clock.advance(1)
        assert driver.m_set_nx({"a": "new", "b": "new"}) is True
        assert driver.get("a") == "new"
        assert driver.ttl("a") == -1

    def test_unencodable_batch_fails(self, driver: CacheDriver) -> None:
        assert driver.m_set({"ok": 1, "bad": object()}, ttl=10) is False
        assert driver.has("bad") is False


class TestBatchReads:
    def test_m_get_collapses_duplicates(self, driver: CacheDriver) -> None:
        driver.set("x", 1)
        assert driver.m_get(["x", "x"]) == {"x": 1}

    def test_m_get_removes_hard_expired(self, driver: CacheDriver, clock: FakeClock) -> None:
        driver.set("x", 1, ttl=2)
        clock.advance(2)
        assert driver.m_get(["x"]) == {"x": False}
        assert driver.adapter.exists("x").value is False

    def test_m_has_preserves_input_order(self, driver: CacheDriver) -> None:
        driver.m_set({"x": 1, "y": 2})
        assert driver.m_has(["y", "missing", "x", "y"]) == ["y", "x"]

    def test_m_has_counts_soft_expired_as_present(self, driver: CacheDriver, clock: FakeClock) -> None:
        driver.set_de("x", 1, 1, delay=10)
        clock.advance(2)
        assert driver.m_has(["x"]) == ["x"]

    def test_m_del(self, driver: CacheDriver) -> None:
        driver.m_set({"x": 1, "y": 2})
        assert driver.m_del(["x", "missing"]) is True
        assert driver.has("x") is False
        assert driver.get("y") == 2


class TestEmulatedRollback:
    """m_set with a negative TTL always takes the key-by-key path."""

    @pytest.fixture
    def backend(self, clock: FakeClock) -> RefusingBackend:
        return RefusingBackend(namespace="test", clock=clock, refuse_keys=("boom",))

    @pytest.fixture
    def cache(self, backend: RefusingBackend, clock: FakeClock) -> CacheDriver:
        return CacheDriver("refusing", backend, clock=clock)

    def test_failed_m_set_restores_previous_values(self, cache: CacheDriver) -> None:
        cache.set("a", "old", ttl=50)

        assert cache.m_set({"a": "new", "boom": 1, "c": 3}) is False

        assert cache.get("a") == "old"
        assert cache.ttl("a") == 50
        assert cache.has("boom") is False
        # Keys after the failure are never written
        assert cache.has("c") is False

    def test_failed_m_set_removes_new_keys(self, cache: CacheDriver) -> None:
        assert cache.m_set({"fresh": 1, "boom": 2}) is False
        assert cache.has("fresh") is False

    def test_failed_rollback_is_logged_and_skipped(
        self, cache: CacheDriver, backend: RefusingBackend, caplog: pytest.LogCaptureFixture
    ) -> None:
        cache.set("a", "old", ttl=50)
        backend.refuse_keys.clear()
        # Marker and value of "a" go through, then every write fails
        backend.writes_left = 2

        with caplog.at_level(logging.WARNING, logger="polycache"):
            assert cache.m_set({"a": "new", "b": 1}) is False

        assert "Rollback failed for key: a" in caplog.text


class TestRefusedDeletes:
    @pytest.fixture
    def memory_cache(self, clock: FakeClock) -> CacheDriver:
        return CacheDriver("refusing", RefusingBackend(namespace="test", clock=clock), clock=clock)

    @pytest.fixture
    def files_cache(self, tmp_path: Path, clock: FakeClock) -> Generator[CacheDriver, None, None]:
        backend = RefusingFilesBackend(directory=tmp_path / "cache", namespace="test")
        cache = CacheDriver("refusing", backend, clock=clock)
        yield cache
        cache.close()

    def test_m_del_continues_after_failed_key(self, memory_cache: CacheDriver) -> None:
        memory_cache.m_set({"a": 1, "b": 2})
        memory_cache.adapter.refuse_deletes.add("a")

        assert memory_cache.m_del(["a", "b"]) is False

        assert memory_cache.has("b") is False
        assert memory_cache.get("a") == 1

    def test_m_set_nx_failed_discard_is_logged_and_skipped(
        self, files_cache: CacheDriver, caplog: pytest.LogCaptureFixture
    ) -> None:
        files_cache.set("b", 0)
        files_cache.adapter.refuse_deletes.add("a")

        with caplog.at_level(logging.WARNING, logger="polycache"):
            assert files_cache.m_set_nx({"a": 1, "b": 2}) is False

        assert "Rollback failed for key: a" in caplog.text
        # The created key could not be removed
        assert files_cache.get("a") == 1
        assert files_cache.get("b") == 0
