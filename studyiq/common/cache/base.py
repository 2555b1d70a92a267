"""
Cache interface.

Backends are keyed by plain strings and store JSON-compatible values. Every
read and write reports through a CacheResult instead of raising, so callers
can treat a broken backend exactly like a cold one.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class CacheResult:
    """
    Outcome of a cache read or write.

    Attributes:
        success: Whether the backend completed the operation
        value: Value read or written
        hit: True only for a read that found a live entry
        ttl: Remaining lifetime in seconds, None when the entry never expires
        source: Name of the backend that answered
        error: Why a read missed or a write failed
    """
    success: bool
    value: Any = None
    hit: bool = False
    ttl: Optional[float] = None
    source: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def found(cls, value: Any, source: str, ttl: Optional[float] = None) -> 'CacheResult':
        return cls(success=True, value=value, hit=True, ttl=ttl, source=source)

    @classmethod
    def stored(cls, value: Any, source: str, ttl: int = 0) -> 'CacheResult':
        return cls(success=True, value=value, ttl=ttl or None, source=source)

    @classmethod
    def missed(cls, source: str, reason: str) -> 'CacheResult':
        return cls(success=False, source=source, error=reason)


class CacheBackend(ABC):
    """
    Abstract key/value store with per-entry TTL.

    A TTL of 0 means the entry never expires.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name, reported in results and stats."""

    @abstractmethod
    async def get(self, key: str) -> CacheResult:
        """Read ``key``; a miss has ``hit=False`` and the reason in ``error``."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int = 0) -> CacheResult:
        """
        Store ``value`` under ``key``.

        Args:
            key: Cache key
            value: JSON-compatible value
            ttl: Lifetime in seconds (0 means no expiration)
        """

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove ``key``; True if something was removed."""

    @abstractmethod
    async def delete_prefix(self, prefix: str) -> int:
        """Remove every key starting with ``prefix`` and return how many went."""

    @abstractmethod
    async def has(self, key: str) -> bool:
        ...

    @abstractmethod
    async def clear(self) -> bool:
        ...

    @abstractmethod
    async def get_stats(self) -> Dict[str, Any]:
        """Hit/miss counters and entry counts."""
