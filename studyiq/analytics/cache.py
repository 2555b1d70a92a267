"""
Analytics cache.

Holds per-user performance snapshots for a bounded time so that repeated
generations do not rescan the attempt history. Any backend failure is logged
and treated as a miss; the cache never breaks the operation using it.
"""

from typing import Any, Dict, Optional

from studyiq.common.cache import CacheBackend, KeyBuilder, MemoryCacheBackend
from studyiq.common.logger import app_logger
from studyiq.domain.model import PerformanceSnapshot

logger = app_logger.getChild("analytics.cache")

CACHE_NAMESPACE = "analytics"
SNAPSHOT_ENTITY = "performance"
DEFAULT_TTL_SECONDS = 30 * 60


class AnalyticsCache:
    """
    TTL cache of PerformanceSnapshot objects keyed by user id.

    Snapshots are stored as plain dicts so that any backend, including a
    shared Redis instance, can hold them.
    """

    def __init__(self, backend: Optional[CacheBackend] = None, ttl_seconds: int = DEFAULT_TTL_SECONDS,
                 enabled: bool = True):
        self._backend = backend or MemoryCacheBackend(name="analytics")
        self._ttl = ttl_seconds
        self._enabled = enabled

    @staticmethod
    def key_for(user_id: str) -> str:
        return KeyBuilder.entity_key(SNAPSHOT_ENTITY, user_id, namespace=CACHE_NAMESPACE)

    async def get(self, user_id: str) -> Optional[PerformanceSnapshot]:
        if not self._enabled:
            return None
        try:
            result = await self._backend.get(self.key_for(user_id))
            if not result.hit or result.value is None:
                return None
            return PerformanceSnapshot.from_dict(result.value)
        except Exception as e:
            logger.warning(f"Analytics cache read failed for user {user_id}: {e}")
            return None

    async def set(self, user_id: str, snapshot: PerformanceSnapshot) -> None:
        if not self._enabled:
            return
        try:
            result = await self._backend.set(self.key_for(user_id), snapshot.to_dict(), ttl=self._ttl)
            if not result.success:
                logger.warning(f"Analytics cache write rejected for user {user_id}: {result.error}")
        except Exception as e:
            logger.warning(f"Analytics cache write failed for user {user_id}: {e}")

    async def invalidate(self, user_id: str) -> None:
        try:
            await self._backend.delete(self.key_for(user_id))
            logger.debug(f"Invalidated analytics snapshot for user {user_id}")
        except Exception as e:
            logger.warning(f"Analytics cache invalidation failed for user {user_id}: {e}")

    async def invalidate_all(self, user_id: str) -> int:
        """
        Remove every analytics entry of a user, including derived sub-keys.

        Returns:
            Number of entries removed (0 if the backend failed)
        """
        try:
            removed = int(await self._backend.delete(self.key_for(user_id)))
            removed += await self._backend.delete_prefix(
                KeyBuilder.entity_prefix(SNAPSHOT_ENTITY, user_id, namespace=CACHE_NAMESPACE)
            )
            return removed
        except Exception as e:
            logger.warning(f"Analytics cache bulk invalidation failed for user {user_id}: {e}")
            return 0

    async def get_stats(self) -> Dict[str, Any]:
        try:
            stats = await self._backend.get_stats()
        except Exception as e:
            logger.warning(f"Analytics cache stats unavailable: {e}")
            return {"backend": self._backend.name, "error": str(e)}
        stats["ttl_seconds"] = self._ttl
        stats["enabled"] = self._enabled
        return stats
