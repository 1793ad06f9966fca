"""
Cache Usage Example

Demonstrates how to use the cache drivers in Polycache.

This example shows:
- Building drivers from configuration
- Plain, delayed-expiry and anti-stampede reads
- Counters and batches
- Fail-over to a local backup when Redis is unreachable
"""

import logging
import tempfile
import time

from polycache import CacheRegistry, DriverConfig, PolycacheConfig, configure_logging

# Configure logging
logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


def example_basic_usage(registry: CacheRegistry) -> None:
    """Example: Plain reads and writes."""
    logger.info("=" * 60)
    logger.info("Example 1: Basic Usage")
    logger.info("=" * 60)

    cache = registry.get()
    cache.set("user:1", {"name": "Ada", "roles": ["admin"]}, ttl=300)
    logger.info(f"user:1 -> {cache.get('user:1')} (ttl {cache.ttl('user:1')}s)")

    # get() cannot tell a miss from a stored False
    cache.set("feature:beta", False)
    logger.info(f"feature:beta stored: {cache.has('feature:beta')}, missing stored: {cache.has('missing')}")


def example_stampede_protection(registry: CacheRegistry) -> None:
    """Example: One caller refreshes an expired value while the others serve it stale."""
    logger.info("\n" + "=" * 60)
    logger.info("Example 2: Anti-stampede Reads")
    logger.info("=" * 60)

    cache = registry.get()
    cache.set("report", "report v1", ttl=1)
    time.sleep(1.1)

    value, expired = cache.get_twice("report")
    logger.info(f"get_twice -> {value!r}, expired={expired}")

    if expired:
        with cache.locked("report", ttl=10) as acquired:
            if acquired:
                cache.set("report", "report v2", ttl=60)
                logger.info("This caller rebuilt the report")
            else:
                logger.info(f"Another caller is rebuilding; serving {value!r}")

    logger.info(f"report -> {cache.get('report')!r}")


def example_delayed_expiry(registry: CacheRegistry) -> None:
    """Example: Soft deadline with a grace window."""
    logger.info("\n" + "=" * 60)
    logger.info("Example 3: Delayed Expiry")
    logger.info("=" * 60)

    cache = registry.get()
    cache.set_de("prices", {"eur": 1.08}, 1, delay=30)
    time.sleep(1.1)

    value, expired = cache.get_de("prices")
    logger.info(f"get_de -> {value}, expired={expired}, hard deadline in {cache.ttl('prices')}s")


def example_counters_and_batches(registry: CacheRegistry) -> None:
    """Example: Counters and multi-key operations."""
    logger.info("\n" + "=" * 60)
    logger.info("Example 4: Counters and Batches")
    logger.info("=" * 60)

    cache = registry.get()
    cache.incr("hits")
    cache.incr("hits", 4)
    logger.info(f"hits -> {cache.get('hits')}")

    cache.m_set({"a": 1, "b": 2}, ttl=60)
    logger.info(f"m_get -> {cache.m_get(['a', 'b', 'c'])}")

    # Fails as a whole because "a" already exists
    created = cache.m_set_nx({"c": 3, "a": 10})
    logger.info(f"m_set_nx -> {created}, c present: {cache.has('c')}")


def example_failover(backup_dir: str) -> None:
    """Example: Redis unreachable, calls land on the files backup."""
    logger.info("\n" + "=" * 60)
    logger.info("Example 5: Fail-over")
    logger.info("=" * 60)

    config = PolycacheConfig(
        default_driver="redis",
        fallback="local",
        drivers={
            # Nothing listens on port 1
            "redis": DriverConfig(type="redis", servers=["127.0.0.1:1"], timeout=0.5),
            "local": DriverConfig(type="files", path=backup_dir),
        },
    )
    registry = CacheRegistry(config)
    try:
        cache = registry.get()
        cache.set("session:42", {"user": 1})
        logger.info(f"session:42 -> {cache.get('session:42')} (connected: {cache.is_connected()})")
        logger.info(f"Backup holds: {registry.get('local').get('session:42')}")
    finally:
        registry.close_all()


def main() -> None:
    """Run all examples."""
    # Library logs follow LOG_LEVEL and LOG_FILE
    configure_logging()
    logger.info("Polycache Examples")
    logger.info("=" * 60)

    registry = CacheRegistry(PolycacheConfig(fallback=False))
    try:
        example_basic_usage(registry)
        example_stampede_protection(registry)
        example_delayed_expiry(registry)
        example_counters_and_batches(registry)
    finally:
        registry.close_all()

    with tempfile.TemporaryDirectory() as backup_dir:
        example_failover(backup_dir)

    logger.info("\n" + "=" * 60)
    logger.info("Examples completed")
    logger.info("=" * 60)


if __name__ == "__main__":
    main()
