"""
Polycache - Cache Registry

Canonical factory for cache drivers. The registry is an explicit object:
construct one at startup from a PolycacheConfig and hand it to the code that
needs caches.

Key points:
- Flyweight: one driver per distinct (backend type, configuration), since
  connecting to a backend is expensive
- Drivers are created lazily on first ``get``
- Backup drivers are resolved by name on first fail-over, so drivers can name
  each other without construction cycles
- Optional backends (redis, files) are imported lazily; a missing client
  library is a ConfigurationError at construction time

Examples:
    from polycache.cache import CacheRegistry
    from polycache.config import load_config

    registry = CacheRegistry(load_config())
    cache = registry.get()            # default driver
    local = registry.get("files")     # bare backend names get defaults

    # Or build a driver from an explicit DriverConfig (e.g., for tests)
    from polycache.config import DriverConfig
    mem = registry.create("memory", DriverConfig(max_size=10, fallback=False), name="test")
"""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Callable

from pydantic import ValidationError

from ..config import CacheBackend, DriverConfig, PolycacheConfig
from ..errors import ConfigurationError, DependencyError
from .backends.memory import (
    MemoryBackend,  # Import memory eagerly (always available)
)
from .driver import CacheDriver
from .interface import BackendAdapter

logger = logging.getLogger(__name__)


def config_hash(config: DriverConfig) -> str:
    """Stable digest of a driver configuration (flyweight key)."""
    return hashlib.sha1(config.model_dump_json().encode("utf-8")).hexdigest()


def _create_memory_backend(config: DriverConfig, clock: Callable[[], float]) -> BackendAdapter:
    """Internal helper to construct a memory cache backend."""
    return MemoryBackend(
        max_size=config.max_size,
        namespace=config.namespace,
        clock=clock,
    )


def _create_files_backend(config: DriverConfig, clock: Callable[[], float]) -> BackendAdapter:
    """Internal helper to construct a files cache backend with lazy import."""
    try:
        from .backends.files import FilesBackend
    except ImportError as e:
        raise DependencyError("diskcache", feature="files cache backend", install_hint="pip install diskcache") from e

    return FilesBackend(
        directory=config.path,
        namespace=config.namespace,
        timeout=config.timeout,
    )


def _create_redis_backend(config: DriverConfig, clock: Callable[[], float]) -> BackendAdapter:
    """Internal helper to construct a redis cache backend with lazy import."""
    # Lazy import to avoid hard dependency when memory backend is used
    try:
        from .backends.redis import RedisBackend
    except ImportError as e:
        raise DependencyError("redis>=5.0.0", feature="redis cache backend", install_hint="pip install 'redis>=5.0.0'") from e

    if config.url:
        return RedisBackend(redis_url=config.url, namespace=config.namespace, socket_timeout=config.timeout)

    server = config.servers[0]
    if len(config.servers) > 1:
        logger.warning(
            f"Redis driver uses a single server; ignoring {len(config.servers) - 1} extra server(s)",
            extra={"host": server.host, "port": server.port},
        )
    return RedisBackend(
        host=server.host,
        port=server.port,
        password=config.password,
        database=config.database,
        namespace=config.namespace,
        socket_timeout=config.timeout,
    )


_BUILDERS: dict[str, Callable[[DriverConfig, Callable[[], float]], BackendAdapter]] = {
    CacheBackend.MEMORY.value: _create_memory_backend,
    CacheBackend.FILES.value: _create_files_backend,
    CacheBackend.REDIS.value: _create_redis_backend,
}


class CacheRegistry:
    """
    Registry of cache drivers.

    Args:
        config: Root configuration (defaults to a memory-only configuration)
        clock: Time source handed to drivers and in-process backends
    """

    def __init__(self, config: PolycacheConfig | None = None, clock: Callable[[], float] = time.time):
        self.config = config or PolycacheConfig()
        self._clock = clock
        self._instances: dict[tuple[str, str], CacheDriver] = {}
        self._named: dict[str, CacheDriver] = {}

    def get(self, name: str | None = None) -> CacheDriver:
        """
        Get the driver configured under ``name`` (the default driver if omitted).

        Created on first access.

        Raises:
            ConfigurationError: If the name is unknown or the driver cannot be built
        """
        name = name or self.config.default_driver
        if name in self._named:
            return self._named[name]

        try:
            driver_config = self.config.driver_config(name)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid configuration for cache driver '{name}'",
                details={"cache_name": name, "validation_errors": e.errors()},
            ) from e
        if driver_config is None:
            raise ConfigurationError(
                f"Unknown cache driver: {name}",
                details={"cache_name": name, "configured": sorted(self.config.drivers)},
            )

        logger.debug(f"Cache driver '{name}' not found, creating new instance")
        return self.create(driver_config.type, driver_config, name=name)

    def create(
        self,
        driver_type: str | CacheBackend,
        config: DriverConfig | None = None,
        name: str | None = None,
    ) -> CacheDriver:
        """
        Create (or reuse) a driver for a backend type and configuration.

        Args:
            driver_type: Backend type ("memory", "files", "redis")
            config: Driver configuration (defaults for the type if not provided)
            name: Name to register the driver under

        Returns:
            Configured cache driver

        Raises:
            ConfigurationError: If the type is unknown, the configuration is
                invalid or a client library is missing
        """
        backend = driver_type.value if isinstance(driver_type, CacheBackend) else str(driver_type)
        if backend not in _BUILDERS:
            raise ConfigurationError(
                f"Unknown cache backend: {backend}",
                details={"backend": backend, "supported": sorted(_BUILDERS)},
            )

        try:
            if config is None:
                config = DriverConfig(type=backend)
            elif config.type != backend:
                config = DriverConfig(**{**config.model_dump(), "type": backend})
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid configuration for cache backend '{backend}'",
                details={"backend": backend, "validation_errors": e.errors()},
            ) from e

        key = (backend, config_hash(config))
        if key in self._instances:
            driver = self._instances[key]
            logger.debug(f"Returning existing cache driver: {driver.name}")
            if name:
                self._named.setdefault(name, driver)
            return driver

        driver_name = name or f"{backend}-{key[1][:8]}"
        logger.info(
            f"Creating cache driver '{driver_name}' with backend: {backend}",
            extra={"cache_name": driver_name, "backend": backend},
        )

        try:
            adapter = _BUILDERS[backend](config, self._clock)
        except DependencyError as e:
            logger.error(
                f"Cache backend '{backend}' selected but its client library is not installed",
                extra={"backend": backend, "error": str(e)},
            )
            raise ConfigurationError(str(e), details={**e.details, "backend": backend}) from e
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(
                f"Unexpected error creating cache driver '{driver_name}': {e}",
                extra={"cache_name": driver_name, "backend": backend, "error": str(e)},
                exc_info=True,
            )
            raise ConfigurationError(
                f"Failed to create cache driver '{driver_name}': {e}",
                details={"cache_name": driver_name, "backend": backend, "error": str(e)},
            ) from e

        driver = CacheDriver(
            driver_name,
            adapter,
            delay_expire_time=config.delay_expire_time,
            max_reconnect_attempts=config.max_reconnect_attempts,
            reconnect_cooldown=config.reconnect_cooldown,
            backup_resolver=self._backup_resolver(driver_name, config),
            clock=self._clock,
        )

        self._instances[key] = driver
        if name:
            self._named[name] = driver

        logger.info(
            f"Cache driver '{driver_name}' created successfully",
            extra={"cache_name": driver_name, "backend": backend, "capabilities": adapter.capabilities()},
        )
        return driver

    def _backup_resolver(self, name: str, config: DriverConfig) -> Callable[[], CacheDriver | None]:
        def resolve() -> CacheDriver | None:
            backup_name = self.config.backup_for(name, config)
            if backup_name is None:
                return None
            try:
                return self.get(backup_name)
            except ConfigurationError as e:
                logger.error(
                    f"Backup '{backup_name}' of cache driver '{name}' is unavailable: {e}",
                    extra={"cache_name": name, "backup": backup_name, "error": str(e)},
                )
                return None

        return resolve

    def list_instances(self) -> list[str]:
        """
        List the names of all created drivers.

        Returns:
            List of driver names
        """
        return [driver.name for driver in self._instances.values()]

    def close_all(self) -> None:
        """
        Close all drivers and release resources.

        Should be called during graceful shutdown.
        """
        if not self._instances:
            logger.debug("No cache drivers to close")
            return

        logger.info(f"Closing {len(self._instances)} cache driver(s)...")

        for driver in list(self._instances.values()):
            try:
                driver.close()
                logger.info(f"Closed cache driver: {driver.name}")
            except Exception as e:
                logger.error(
                    f"Error closing cache driver '{driver.name}': {e}",
                    extra={"cache_name": driver.name, "error": str(e)},
                    exc_info=True,
                )

        self.reset()
        logger.info("All cache drivers closed")

    def reset(self) -> None:
        """
        Drop all driver references without closing them.

        Used for testing and hot-reload scenarios; use close_all() for
        proper cleanup.
        """
        count = len(self._instances)
        self._instances.clear()
        self._named.clear()
        logger.debug(f"Reset cache registry, cleared {count} driver reference(s)")
