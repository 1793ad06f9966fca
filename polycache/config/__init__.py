"""
Polycache - Configuration Module

Provides typed configuration loading and validation.
"""

from .loader import get_config, load_config, reload_config
from .schemas import (
    CacheBackend,
    DriverConfig,
    LogLevel,
    PolycacheConfig,
    ServerConfig,
)

__all__ = [
    # Loader functions
    "load_config",
    "get_config",
    "reload_config",
    # Main config
    "PolycacheConfig",
    # Enums
    "CacheBackend",
    "LogLevel",
    # Config sections
    "DriverConfig",
    "ServerConfig",
]
