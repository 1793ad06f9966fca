"""
Polycache - Cross-Backend Cache Layer

One get/set/delete/ttl/lock/batch contract over memory, file and network
stores, with emulated expiry, anti-stampede reads, best-effort batch
rollback and automatic fail-over to a backup store.
"""

__version__ = "1.0.0"

# Export main components for external use
from .cache import CacheDriver, CacheRegistry
from .config import DriverConfig, PolycacheConfig, load_config
from .logging_setup import configure_logging, setup_logging

__all__ = [
    "CacheDriver",
    "CacheRegistry",
    "DriverConfig",
    "PolycacheConfig",
    "configure_logging",
    "load_config",
    "setup_logging",
]
