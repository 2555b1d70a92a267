"""
Cache Infrastructure for StudyIQ

Backends implement the async CacheBackend interface:
- MemoryCacheBackend: process-local TTL map with LRU eviction
- RedisCacheBackend: shared cache for multi-process deployments
"""

from .base import CacheBackend, CacheResult
from .entry import CacheEntry
from .key_builder import KeyBuilder
from .memory import MemoryCacheBackend

__all__ = [
    'CacheBackend',
    'CacheResult',
    'CacheEntry',
    'KeyBuilder',
    'MemoryCacheBackend',
]
