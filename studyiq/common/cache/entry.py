"""
Entries held by the memory cache backend.
"""

from typing import Any, Optional


class CacheEntry:
    """
    A cached value stamped with the epoch times that govern it.

    Times are passed in by the owning backend, which reads them from its
    injected clock; the entry itself never looks at the wall clock.

    Attributes:
        value: The cached value
        created_at: Epoch seconds at insertion
        expires_at: Epoch seconds of expiry, or None to live forever
        hits: Number of reads served by this entry
        last_read_at: Epoch seconds of the latest read
        size_estimate: Length of the value's text form, for stats only
    """

    __slots__ = ('value', 'created_at', 'expires_at', 'hits', 'last_read_at', 'size_estimate')

    def __init__(self, value: Any, now: float, ttl: Optional[float] = None):
        self.value = value
        self.created_at = now
        self.expires_at = now + ttl if ttl else None
        self.hits = 0
        self.last_read_at = now
        self.size_estimate = len(str(value)) if value is not None else 0

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def remaining(self, now: float) -> Optional[float]:
        """Seconds left before expiry, None for entries without a TTL."""
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - now)

    def touch(self, now: float) -> None:
        self.hits += 1
        self.last_read_at = now

    def age(self, now: float) -> float:
        return now - self.created_at
