"""
Polycache - Test Configuration and Shared Fixtures

Provides pytest configuration and shared fixtures for unit and integration tests.
"""

import os
import socket
from collections.abc import Generator
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import pytest

from polycache.cache.backends.memory import MemoryBackend
from polycache.cache.driver import CacheDriver
from polycache.cache.interface import BackendAdapter
from tests.helpers import FakeClock

os.environ["LOG_LEVEL"] = "DEBUG"

TEST_REDIS_URL = os.environ.get("TEST_REDIS_URL", "redis://localhost:6379/15")


# Redis availability checker
def is_redis_available() -> bool:
    """Check if Redis server is available for testing."""
    parsed = urlparse(TEST_REDIS_URL)
    try:
        with socket.create_connection((parsed.hostname or "localhost", parsed.port or 6379), timeout=1):
            return True
    except OSError:
        return False


# Skip marker for Redis tests
redis_available = pytest.mark.skipif(not is_redis_available(), reason="Redis server not available")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_backend(clock: FakeClock) -> MemoryBackend:
    return MemoryBackend(max_size=100, namespace="test", clock=clock)


@pytest.fixture
def files_backend(tmp_path: Path) -> Generator[BackendAdapter, None, None]:
    from polycache.cache.backends.files import FilesBackend

    backend = FilesBackend(directory=tmp_path / "cache", namespace="test")
    yield backend
    backend.close()


@pytest.fixture(params=["memory", "files"])
def driver(request: pytest.FixtureRequest, clock: FakeClock, tmp_path: Path) -> Generator[CacheDriver, None, None]:
    """A driver over each local backend: native TTL (memory) and envelope-only (files)."""
    if request.param == "memory":
        adapter: BackendAdapter = MemoryBackend(max_size=100, namespace="test", clock=clock)
    else:
        from polycache.cache.backends.files import FilesBackend

        adapter = FilesBackend(directory=tmp_path / "cache", namespace="test")
    cache = CacheDriver(request.param, adapter, delay_expire_time=30, clock=clock)
    yield cache
    cache.close()


@pytest.fixture
def test_redis_url() -> str:
    """Get Redis URL for testing (database 15 for isolation)."""
    return TEST_REDIS_URL


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove Polycache-related environment variables."""
    for var in (
        "POLYCACHE_DEFAULT_DRIVER",
        "POLYCACHE_FALLBACK",
        "POLYCACHE_NAMESPACE",
        "POLYCACHE_DELAY_EXPIRE_TIME",
        "POLYCACHE_MAX_RECONNECT_ATTEMPTS",
        "POLYCACHE_RECONNECT_COOLDOWN",
        "MEMORY_CACHE_MAX_SIZE",
        "FILES_CACHE_PATH",
        "REDIS_URL",
        "REDIS_SERVERS",
        "REDIS_PASSWORD",
        "REDIS_DATABASE",
        "REDIS_TIMEOUT",
        "LOG_FILE",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def sample_cache_data() -> dict[str, Any]:
    """Sample data for cache testing."""
    return {
        "simple_string": "hello",
        "simple_int": 42,
        "simple_float": 3.14,
        "simple_bool": True,
        "simple_none": None,
        "list": [1, 2, 3, "four"],
        "dict": {"nested": "value", "count": 10},
        "unicode": "héllo wörld",
    }
