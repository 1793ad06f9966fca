"""
Polycache - Cache Backends

Exports available cache backend implementations.

Files and Redis backends are lazy-loaded via factory.py so their client
libraries are only needed when configured.
"""

from .memory import MemoryBackend

__all__ = [
    "MemoryBackend",
]
