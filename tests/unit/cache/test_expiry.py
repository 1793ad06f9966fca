"""
Polycache - Expiry State Machine Tests

Every test runs against a native-TTL driver (memory, marker engine) and an
envelope-only driver (files), which must behave identically.
"""

from typing import Any

import pytest

from polycache.cache.backends.memory import MemoryBackend
from polycache.cache.codec import TimeMarker
from polycache.cache.driver import CacheDriver
from polycache.cache.expiry import (
    EntryState,
    EnvelopeExpiry,
    MarkerExpiry,
    classify,
    physical_ttl,
    remaining_seconds,
    select_engine,
)
from tests.helpers import FakeClock


class TestClassification:
    def test_absent(self) -> None:
        assert classify(None, 100.0) is EntryState.ABSENT

    def test_never_expires(self) -> None:
        assert classify(TimeMarker(expire_time=-1), 10**12) is EntryState.ALIVE
        assert classify(TimeMarker(expire_time=0), 10**12) is EntryState.ALIVE

    def test_hard_deadline(self) -> None:
        marker = TimeMarker(expire_time=110.0)
        assert classify(marker, 109.9) is EntryState.ALIVE
        assert classify(marker, 110.0) is EntryState.HARD_EXPIRED

    def test_soft_deadline(self) -> None:
        marker = TimeMarker(expire_time=130.0, delay_time=20.0)
        assert classify(marker, 105.0) is EntryState.ALIVE
        assert classify(marker, 110.0) is EntryState.SOFT_EXPIRED
        assert classify(marker, 130.0) is EntryState.HARD_EXPIRED

    def test_remaining_seconds_rounds_up(self) -> None:
        assert remaining_seconds(110.0, 100.0) == 10
        assert remaining_seconds(110.0, 109.2) == 1
        assert remaining_seconds(110.0, 110.0) == -2

    def test_physical_ttl(self) -> None:
        # Plain entries are kept twice as long as their logical TTL
        assert physical_ttl(TimeMarker(expire_time=110.0), 100.0) == 20
        # Delayed entries are kept until their hard deadline
        assert physical_ttl(TimeMarker(expire_time=130.0, delay_time=20.0), 100.0) == 30
        assert physical_ttl(TimeMarker(expire_time=-1), 100.0) is None

    def test_engine_selection(self, memory_backend: MemoryBackend, files_backend: Any) -> None:
        assert isinstance(select_engine(memory_backend), MarkerExpiry)
        assert isinstance(select_engine(files_backend), EnvelopeExpiry)

    def test_marker_engine_requires_native_ttl(self, files_backend: Any) -> None:
        with pytest.raises(TypeError):
            MarkerExpiry(files_backend)


class TestSetAndTtl:
    def test_ttl_counts_down_then_reports_absent(self, driver: CacheDriver, clock: FakeClock) -> None:
        assert driver.set("k", "v", ttl=10) is True
        assert 0 < driver.ttl("k") <= 10

        clock.advance(9.5)
        assert driver.ttl("k") == 1
        assert driver.get("k") == "v"

        clock.advance(0.5)
        assert driver.ttl("k") == -2
        assert driver.get("k") is False

    def test_expired_key_can_remain_physically_stored(self, driver: CacheDriver, clock: FakeClock) -> None:
        driver.set("k", "v", ttl=10)
        clock.advance(10)

        assert driver.has("k") is False
        assert driver.ttl("k") == -2
        # Kept for get_twice; the adapter view is not the logical one
        assert driver.adapter.exists("k").value is True

    def test_default_set_never_expires(self, driver: CacheDriver, clock: FakeClock) -> None:
        driver.set("k", "v")
        for _ in range(5):
            assert driver.get("k") == "v"
        clock.advance(10**6)
        assert driver.ttl("k") == -1
        assert driver.get("k") == "v"

    def test_zero_ttl_never_expires(self, driver: CacheDriver, clock: FakeClock) -> None:
        driver.set("k", "v", ttl=10)
        driver.set("k", "v", ttl=0)
        clock.advance(10**6)
        assert driver.ttl("k") == -1

    def test_negative_ttl_preserves_existing_deadline(self, driver: CacheDriver, clock: FakeClock) -> None:
        driver.set("k", "v1", ttl=10)
        clock.advance(4)

        assert driver.set("k", "v2") is True
        assert driver.get("k") == "v2"
        assert driver.ttl("k") == 6

        clock.advance(6)
        assert driver.get("k") is False

        # Nothing live to preserve: never expires
        driver.set("k", "v3")
        assert driver.ttl("k") == -1

    def test_negative_ttl_preserves_delay(self, driver: CacheDriver, clock: FakeClock) -> None:
        driver.set_de("k", "v", 10, delay=5)
        clock.advance(2)
        driver.set("k", "v2", ttl=-1)
        assert driver.ttl_de("k") == 8
        assert driver.ttl("k") == 13

    def test_stores_various_types(self, driver: CacheDriver, sample_cache_data: dict[str, Any]) -> None:
        for key, value in sample_cache_data.items():
            assert driver.set(key, value) is True
        for key, value in sample_cache_data.items():
            assert driver.get(key) == value

    def test_stored_false_is_distinguished_by_has(self, driver: CacheDriver) -> None:
        driver.set("flag", False)
        assert driver.get("flag") is False
        assert driver.has("flag") is True
        assert driver.has("missing") is False

    def test_unserializable_value_fails_without_raising(self, driver: CacheDriver) -> None:
        assert driver.set("bad", object()) is False
        assert driver.has("bad") is False


class TestReads:
    def test_get_deletes_hard_expired_key(self, driver: CacheDriver, clock: FakeClock) -> None:
        driver.set("k", "v", ttl=10)
        clock.advance(10)
        assert driver.get("k") is False
        assert driver.adapter.exists("k").value is False
        assert driver.get_twice("k") == (False, True)

    def test_get_twice_serves_stale_value_until_twice_the_ttl(self, driver: CacheDriver, clock: FakeClock) -> None:
        driver.set("k", "v", ttl=10)
        assert driver.get_twice("k") == ("v", False)

        clock.advance(15)
        assert driver.get_twice("k") == ("v", True)

        clock.advance(5)
        assert driver.get_twice("k") == (False, True)

    def test_get_twice_on_absent_key(self, driver: CacheDriver) -> None:
        assert driver.get_twice("missing") == (False, True)

    def test_delete(self, driver: CacheDriver) -> None:
        driver.set("k", "v", ttl=10)
        assert driver.delete("k") is True
        assert driver.has("k") is False
        assert driver.ttl("k") == -2
        # Deleting an absent key succeeds
        assert driver.del_("k") is True


class TestDelayedExpiry:
    def test_soft_then_hard_deadline(self, driver: CacheDriver, clock: FakeClock) -> None:
        assert driver.set_de("k", "v", 1, delay=2) is True
        assert driver.get_de("k") == ("v", False)
        assert driver.has_de("k") is True

        clock.advance(1)
        # Still served, now flagged expired
        assert driver.get_de("k") == ("v", True)
        assert driver.ttl_de("k") == -2
        assert driver.ttl("k") == 2
        assert driver.has_de("k") is False
        assert driver.has("k") is True
        assert driver.get("k") == "v"

        clock.advance(2)
        assert driver.get_de("k") == (False, True)
        assert driver.has("k") is False

    def test_default_delay(self, driver: CacheDriver) -> None:
        driver.set_de("k", "v", 10)
        assert driver.ttl_de("k") == 10
        assert driver.ttl("k") == 40

        driver.set_de("k", "v", 10, delay=-5)
        assert driver.ttl("k") == 40

    def test_non_positive_ttl_never_expires(self, driver: CacheDriver, clock: FakeClock) -> None:
        driver.set_de("k", "v", 0)
        clock.advance(10**6)
        assert driver.ttl("k") == -1
        assert driver.ttl_de("k") == -1
        assert driver.get_de("k") == ("v", False)

    def test_plain_entry_through_delayed_api(self, driver: CacheDriver, clock: FakeClock) -> None:
        driver.set("k", "v", ttl=5)
        assert driver.get_de("k") == ("v", False)
        assert driver.ttl_de("k") == 5
        clock.advance(5)
        assert driver.get_de("k") == (False, True)


class TestSetIfAbsent:
    def test_second_setnx_fails_and_keeps_value(self, driver: CacheDriver) -> None:
        assert driver.setnx("k", "first") is True
        assert driver.setnx("k", "second") is False
        assert driver.get("k") == "first"

    def test_setnx_replaces_hard_expired_key(self, driver: CacheDriver, clock: FakeClock) -> None:
        driver.setnx("k", "old", ttl=5)
        clock.advance(5)
        assert driver.setnx("k", "new") is True
        assert driver.get("k") == "new"
        assert driver.ttl("k") == -1

    def test_setnx_never_overwrites_soft_expired_key(self, driver: CacheDriver, clock: FakeClock) -> None:
        driver.set_de("k", "v", 1, delay=10)
        clock.advance(2)
        assert driver.setnx("k", "w") is False
        assert driver.get_de("k") == ("v", True)


class TestExpiryChanges:
    def test_expire(self, driver: CacheDriver) -> None:
        driver.set("k", "v")
        assert driver.expire("k", 5) is True
        assert driver.ttl("k") == 5
        assert driver.get("k") == "v"

    def test_expire_missing_key(self, driver: CacheDriver) -> None:
        assert driver.expire("missing", 5) is False

    def test_expire_does_not_resurrect(self, driver: CacheDriver, clock: FakeClock) -> None:
        driver.set("k", "v", ttl=1)
        clock.advance(1)
        assert driver.expire("k", 10) is False
        assert driver.persist("k") is False
        assert driver.get("k") is False

    def test_expire_non_positive_persists(self, driver: CacheDriver, clock: FakeClock) -> None:
        driver.set("k", "v", ttl=5)
        assert driver.expire("k", 0) is True
        clock.advance(100)
        assert driver.ttl("k") == -1

    def test_expire_de(self, driver: CacheDriver) -> None:
        driver.set("k", "v")
        assert driver.expire_de("k", 10, delay=5) is True
        assert driver.ttl_de("k") == 10
        assert driver.ttl("k") == 15

    def test_expire_at(self, driver: CacheDriver, clock: FakeClock) -> None:
        driver.set("k", "v")
        assert driver.expire_at("k", clock.now + 20) is True
        assert driver.ttl("k") == 20

    def test_expire_at_past_deletes(self, driver: CacheDriver, clock: FakeClock) -> None:
        driver.set("k", "v")
        assert driver.expire_at("k", clock.now - 1) is True
        assert driver.has("k") is False
        assert driver.expire_at("k", clock.now - 1) is False

    def test_expire_at_de(self, driver: CacheDriver, clock: FakeClock) -> None:
        driver.set("k", "v")
        assert driver.expire_at_de("k", clock.now + 10, delay=5) is True
        assert driver.ttl_de("k") == 10
        assert driver.ttl("k") == 15

    def test_persist(self, driver: CacheDriver, clock: FakeClock) -> None:
        driver.set("k", "v", ttl=5)
        assert driver.persist("k") is True
        clock.advance(100)
        assert driver.get("k") == "v"
        assert driver.ttl("k") == -1
        assert driver.persist("missing") is False


class TestNumeric:
    def test_incr_and_decr(self, driver: CacheDriver) -> None:
        assert driver.incr("c") == 1
        assert driver.incr("c", 5) == 6
        assert driver.decr("c", 2) == 4
        assert driver.decr("c") == 3
        assert driver.get("c") == 3

    def test_incr_by_float(self, driver: CacheDriver) -> None:
        driver.set("c", 4)
        assert driver.incr_by_float("c", 0.5) == 4.5
        assert driver.get("c") == 4.5

        result = driver.incr_by_float("f", 2)
        assert result == 2.0
        assert isinstance(result, float)

    def test_incr_rejects_float_value(self, driver: CacheDriver) -> None:
        driver.set("c", 1.5)
        assert driver.incr("c") is False
        assert driver.get("c") == 1.5

    def test_incr_rejects_non_numeric_value(self, driver: CacheDriver) -> None:
        driver.set("name", "alice")
        assert driver.incr("name") is False
        assert driver.decr("name") is False
        assert driver.incr_by_float("name", 1.0) is False
        assert driver.get("name") == "alice"

    @pytest.mark.parametrize("step", [1.5, True, "1", None])
    def test_incr_rejects_non_integer_step(self, driver: CacheDriver, step: Any) -> None:
        driver.set("c", 1)
        assert driver.incr("c", step) is False
        assert driver.get("c") == 1

    def test_incr_by_float_rejects_non_numeric_step(self, driver: CacheDriver) -> None:
        assert driver.incr_by_float("c", "0.5") is False  # type: ignore[arg-type]
        assert driver.incr_by_float("c", float("inf")) is False

    def test_incr_keeps_deadline(self, driver: CacheDriver) -> None:
        driver.set("c", 1, ttl=10)
        assert driver.incr("c") == 2
        assert driver.ttl("c") == 10

    def test_incr_after_expiry_starts_from_zero(self, driver: CacheDriver, clock: FakeClock) -> None:
        driver.set("c", 5, ttl=1)
        clock.advance(1)
        assert driver.incr("c") == 1
        assert driver.ttl("c") == -1

    def test_incr_by_float_overflow_keeps_value(self, driver: CacheDriver) -> None:
        driver.set("big", 1e308)
        assert driver.incr_by_float("big", 1e308) is False
        assert driver.get("big") == 1e308
        assert driver.has("big") is True
