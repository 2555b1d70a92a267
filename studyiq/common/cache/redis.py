"""
Redis cache backend.

Shares analytics snapshots between worker processes. Values are stored as
JSON under ``key_prefix``. A Redis outage is logged and surfaces as misses or
failed writes, never as an exception.
"""

import json
from typing import Any, Dict, Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from studyiq.common.logger import app_logger

from .base import CacheBackend, CacheResult

logger = app_logger.getChild("cache.redis")


class RedisCacheBackend(CacheBackend):
    """Cache backend over a ``redis.asyncio`` client."""

    def __init__(
        self,
        redis_client: Optional[aioredis.Redis] = None,
        url: str = "redis://localhost:6379/0",
        key_prefix: str = "studyiq:",
        name: str = "redis"
    ):
        """
        Args:
            redis_client: Existing client; one is created from ``url`` otherwise
            url: Connection URL
            key_prefix: Prepended to every key this backend touches
            name: Backend name used in results and stats
        """
        self._redis = redis_client or aioredis.from_url(url, decode_responses=False)
        self._prefix = key_prefix
        self._name = name
        self._hits = 0
        self._misses = 0

    @property
    def name(self) -> str:
        return self._name

    def qualify(self, key: str) -> str:
        """Key as stored in Redis."""
        return f"{self._prefix}{key}"

    async def _scan(self, pattern: str):
        async for redis_key in self._redis.scan_iter(match=pattern):
            yield redis_key

    async def get(self, key: str) -> CacheResult:
        redis_key = self.qualify(key)
        try:
            pipe = self._redis.pipeline()
            pipe.get(redis_key)
            pipe.ttl(redis_key)
            raw, ttl = await pipe.execute()
        except RedisError as e:
            logger.error(f"Redis get failed for {redis_key}: {e}")
            return CacheResult.missed(self.name, str(e))

        if raw is None:
            self._misses += 1
            return CacheResult.missed(self.name, "Key not found")

        try:
            value = json.loads(raw.decode('utf-8'))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Discarding undecodable value at {redis_key}: {e}")
            self._misses += 1
            return CacheResult.missed(self.name, "Deserialization failed")

        self._hits += 1
        # TTL is -1 for persistent keys
        return CacheResult.found(value, self.name, ttl=ttl if ttl and ttl > 0 else None)

    async def set(self, key: str, value: Any, ttl: int = 0) -> CacheResult:
        redis_key = self.qualify(key)
        try:
            payload = json.dumps(value, default=str).encode('utf-8')
            if ttl > 0:
                await self._redis.setex(redis_key, ttl, payload)
            else:
                await self._redis.set(redis_key, payload)
        except (RedisError, TypeError, ValueError) as e:
            logger.error(f"Redis set failed for {redis_key}: {e}")
            return CacheResult(success=False, source=self.name, error=str(e))
        return CacheResult.stored(value, self.name, ttl=ttl)

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._redis.delete(self.qualify(key)))
        except RedisError as e:
            logger.error(f"Redis delete failed for {key}: {e}")
            return False

    async def delete_prefix(self, prefix: str) -> int:
        """Delete keys under ``prefix`` with SCAN rather than KEYS."""
        deleted = 0
        try:
            async for redis_key in self._scan(f"{self.qualify(prefix)}*"):
                deleted += await self._redis.delete(redis_key)
        except RedisError as e:
            logger.error(f"Redis prefix delete failed for {prefix}: {e}")
        return deleted

    async def has(self, key: str) -> bool:
        try:
            return bool(await self._redis.exists(self.qualify(key)))
        except RedisError as e:
            logger.error(f"Redis exists failed for {key}: {e}")
            return False

    async def clear(self) -> bool:
        return await self.delete_prefix("") >= 0

    async def get_stats(self) -> Dict[str, Any]:
        lookups = self._hits + self._misses
        stats = {
            'backend': self.name,
            'hits': self._hits,
            'misses': self._misses,
            'hit_rate': self._hits / lookups if lookups else 0.0,
        }
        try:
            count = 0
            async for _ in self._scan(f"{self._prefix}*"):
                count += 1
        except RedisError as e:
            logger.error(f"Redis stats scan failed: {e}")
            stats['error'] = str(e)
        else:
            # Redis drops expired keys itself, so every key seen is active
            stats['total_entries'] = count
            stats['active_entries'] = count
        return stats

    async def close(self) -> None:
        await self._redis.aclose()
