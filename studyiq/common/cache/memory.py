"""
In-process cache backend.

An insertion-ordered dict doubles as the LRU list: reads move an entry to the
end and eviction pops from the front. Expired entries are dropped lazily when
read, or in bulk by ``cleanup_expired``.
"""

import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional

from studyiq.common.logger import app_logger

from .base import CacheBackend, CacheResult
from .entry import CacheEntry

logger = app_logger.getChild("cache.memory")


class MemoryCacheBackend(CacheBackend):
    """
    Process-local TTL cache with LRU eviction.

    Each process keeps its own copy, so several workers recompute snapshots
    independently. Use the Redis backend to share them.
    """

    def __init__(
        self,
        max_size: int = 10000,
        name: str = "memory",
        time_func: Callable[[], float] = time.time
    ):
        """
        Args:
            max_size: Entry count at which the least recently read entry is evicted
            name: Backend name used in results and stats
            time_func: Epoch-seconds source, injectable for tests
        """
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self._max_size = max_size
        self._name = name
        self._now = time_func

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    @property
    def name(self) -> str:
        return self._name

    def _live_entry(self, key: str, now: float) -> Optional[CacheEntry]:
        """Entry under ``key`` unless absent or expired; expired ones are dropped."""
        entry = self._entries.get(key)
        if entry is not None and entry.is_expired(now):
            del self._entries[key]
            self._expirations += 1
            return None
        return entry

    async def get(self, key: str) -> CacheResult:
        with self._lock:
            now = self._now()
            entry = self._live_entry(key, now)
            if entry is None:
                self._misses += 1
                return CacheResult.missed(self.name, "Key not found or expired")

            entry.touch(now)
            self._entries.move_to_end(key)
            self._hits += 1
            return CacheResult.found(entry.value, self.name, ttl=entry.remaining(now))

    async def set(self, key: str, value: Any, ttl: int = 0) -> CacheResult:
        with self._lock:
            if key not in self._entries:
                while len(self._entries) >= self._max_size:
                    self._entries.popitem(last=False)
                    self._evictions += 1

            self._entries[key] = CacheEntry(value, self._now(), ttl=ttl)
            self._entries.move_to_end(key)
            return CacheResult.stored(value, self.name, ttl=ttl)

    async def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    async def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    async def has(self, key: str) -> bool:
        with self._lock:
            return self._live_entry(key, self._now()) is not None

    async def clear(self) -> bool:
        with self._lock:
            self._entries.clear()
            return True

    async def get_stats(self) -> Dict[str, Any]:
        """
        Counters plus a breakdown of the entries currently held.

        Entries past their TTL but not yet swept are counted as expired,
        not active.
        """
        with self._lock:
            now = self._now()
            entries = list(self._entries.values())
            expired = sum(1 for entry in entries if entry.is_expired(now))
            lookups = self._hits + self._misses

            return {
                'backend': self.name,
                'total_entries': len(entries),
                'active_entries': len(entries) - expired,
                'expired_entries': expired,
                'estimated_size_bytes': sum(entry.size_estimate for entry in entries),
                'oldest_entry_age_seconds': max((entry.age(now) for entry in entries), default=0.0),
                'max_size': self._max_size,
                'hits': self._hits,
                'misses': self._misses,
                'hit_rate': self._hits / lookups if lookups else 0.0,
                'evictions': self._evictions,
                'expirations': self._expirations,
            }

    def cleanup_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""
        with self._lock:
            now = self._now()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
            self._expirations += len(expired)
        if expired:
            logger.debug(f"Swept {len(expired)} expired entries from {self.name}")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
