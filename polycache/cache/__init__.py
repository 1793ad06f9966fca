"""
Polycache - Cache Module

One cache contract over backends with different native capabilities.

Canonical exports:
- factory.py: CacheRegistry, the single source of cache drivers
- driver.py: CacheDriver, the public operation surface
- interface.py: Adapter contract and capability interfaces
- backends/: Adapter implementations (memory eagerly, files and redis lazily)

Usage:
    from polycache.cache import CacheRegistry

    registry = CacheRegistry()
    cache = registry.get()
    cache.set("key", "value", ttl=3600)
    value = cache.get("key")
"""

from .driver import CacheDriver
from .expiry import EntryState
from .factory import CacheRegistry
from .interface import AtomicAdd, AtomicIncrement, AtomicMulti, BackendAdapter, NativeTtl
from .result import Result

__all__ = [
    # Registry (canonical)
    "CacheRegistry",
    # Public surface
    "CacheDriver",
    "EntryState",
    # Adapter contract
    "BackendAdapter",
    "NativeTtl",
    "AtomicAdd",
    "AtomicIncrement",
    "AtomicMulti",
    "Result",
]
