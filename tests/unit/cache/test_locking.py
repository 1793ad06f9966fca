"""
Polycache - Advisory Lock Tests
"""

from polycache.cache.driver import CacheDriver
from tests.helpers import FakeClock


class TestAdvisoryLock:
    def test_second_lock_fails_until_ttl_elapses(self, driver: CacheDriver, clock: FakeClock) -> None:
        assert driver.lock("job") is True
        assert driver.lock("job") is False
        assert driver.is_lock("job") is True

        clock.advance(60)
        assert driver.is_lock("job") is False
        assert driver.lock("job") is True

    def test_custom_ttl(self, driver: CacheDriver, clock: FakeClock) -> None:
        driver.lock("job", ttl=5)
        clock.advance(4)
        assert driver.is_lock("job") is True
        clock.advance(1)
        assert driver.lock("job") is True

    def test_unlock(self, driver: CacheDriver) -> None:
        driver.lock("job")
        assert driver.unlock("job") is True
        assert driver.is_lock("job") is False
        assert driver.lock("job") is True

        # Unlocking a free lock succeeds
        driver.unlock("job")
        assert driver.unlock("job") is True

    def test_lock_is_independent_of_guarded_key(self, driver: CacheDriver) -> None:
        driver.set("report", "v1")
        assert driver.lock("report") is True
        # Writers are never blocked by the lock
        assert driver.set("report", "v2") is True
        assert driver.get("report") == "v2"
        assert driver.has("report_lock") is True

    def test_locked_context_releases_on_exit(self, driver: CacheDriver) -> None:
        with driver.locked("rebuild") as acquired:
            assert acquired is True
            assert driver.is_lock("rebuild") is True

            with driver.locked("rebuild") as second:
                assert second is False
            # A caller that did not acquire must not release
            assert driver.is_lock("rebuild") is True

        assert driver.is_lock("rebuild") is False

    def test_locked_context_releases_on_error(self, driver: CacheDriver) -> None:
        try:
            with driver.locked("rebuild"):
                raise RuntimeError("refresh failed")
        except RuntimeError:
            pass
        assert driver.is_lock("rebuild") is False

    def test_stampede_refresh_pattern(self, driver: CacheDriver, clock: FakeClock) -> None:
        driver.set("report", "old", ttl=10)
        clock.advance(12)

        value, expired = driver.get_twice("report")
        assert (value, expired) == ("old", True)

        # First caller refreshes, the second serves the stale value
        assert driver.lock("report") is True
        assert driver.lock("report") is False
        driver.set("report", "new", ttl=10)
        driver.unlock("report")

        assert driver.get_twice("report") == ("new", False)
