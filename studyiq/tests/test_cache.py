import asyncio
import json
import unittest
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from studyiq.common.cache import CacheEntry, KeyBuilder, MemoryCacheBackend
from studyiq.common.cache.redis import RedisCacheBackend


class FakeTime:
    """Adjustable time source."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


class TestCacheEntry(unittest.TestCase):
    """Test the CacheEntry class."""

    def test_ttl_and_expiry(self):
        entry = CacheEntry({"a": 1}, now=1000.0, ttl=10)
        self.assertEqual(entry.expires_at, 1010.0)
        self.assertFalse(entry.is_expired(1009.9))
        self.assertEqual(entry.remaining(1000.0), 10.0)

        self.assertTrue(entry.is_expired(1010.0))
        self.assertEqual(entry.remaining(1020.0), 0.0)

    def test_no_expiry(self):
        entry = CacheEntry("value", now=1000.0)
        self.assertIsNone(entry.expires_at)
        self.assertFalse(entry.is_expired(10 ** 12))
        self.assertIsNone(entry.remaining(10 ** 12))

    def test_touch(self):
        entry = CacheEntry("value", now=1000.0)
        entry.touch(1005.0)
        self.assertEqual(entry.hits, 1)
        self.assertEqual(entry.last_read_at, 1005.0)
        self.assertEqual(entry.age(1005.0), 5.0)
        self.assertEqual(entry.size_estimate, 5)


class TestKeyBuilder(unittest.TestCase):

    def test_entity_key(self):
        self.assertEqual(
            KeyBuilder.entity_key("performance", "u1", namespace="analytics"),
            "analytics:performance:u1"
        )
        self.assertEqual(
            KeyBuilder.entity_key("performance", 7, subresource="categories"),
            "performance:7:categories"
        )

    def test_entity_prefix_covers_subresources(self):
        prefix = KeyBuilder.entity_prefix("performance", "u1", namespace="analytics")
        key = KeyBuilder.entity_key("performance", "u1", subresource="trend", namespace="analytics")
        self.assertTrue(key.startswith(prefix))
        self.assertFalse(KeyBuilder.entity_key("performance", "u10", namespace="analytics").startswith(prefix))

    def test_none_parts(self):
        self.assertEqual(KeyBuilder.build("x", None), "x:null")
        self.assertEqual(KeyBuilder.build("x", 3, namespace="ns"), "ns:x:3")


class TestMemoryCacheBackend(unittest.TestCase):
    """Test the MemoryCacheBackend class."""

    def setUp(self):
        self.clock = FakeTime()
        self.cache = MemoryCacheBackend(max_size=3, time_func=self.clock)
        self.loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self.loop)

    def tearDown(self):
        self.loop.close()

    def run_async(self, coro):
        return self.loop.run_until_complete(coro)

    def test_get_set(self):
        self.run_async(self.cache.set("k", {"v": 1}))
        result = self.run_async(self.cache.get("k"))
        self.assertTrue(result.hit)
        self.assertEqual(result.value, {"v": 1})

        missing = self.run_async(self.cache.get("other"))
        self.assertFalse(missing.hit)

    def test_ttl_expiry(self):
        self.run_async(self.cache.set("k", "v", ttl=30))
        self.clock.now += 29
        self.assertTrue(self.run_async(self.cache.has("k")))
        self.clock.now += 1
        self.assertFalse(self.run_async(self.cache.get("k")).hit)

    def test_lru_eviction(self):
        for key in ("a", "b", "c"):
            self.run_async(self.cache.set(key, key))
        self.run_async(self.cache.get("a"))
        self.run_async(self.cache.set("d", "d"))

        self.assertFalse(self.run_async(self.cache.has("b")))
        self.assertTrue(self.run_async(self.cache.has("a")))
        self.assertEqual(self.run_async(self.cache.get_stats())["evictions"], 1)

    def test_delete_prefix(self):
        self.run_async(self.cache.set("analytics:performance:u1", 1))
        self.run_async(self.cache.set("analytics:performance:u1:trend", 2))
        self.run_async(self.cache.set("analytics:performance:u2", 3))

        removed = self.run_async(self.cache.delete_prefix("analytics:performance:u1"))
        self.assertEqual(removed, 2)
        self.assertEqual(len(self.cache), 1)

    def test_stats_and_cleanup(self):
        self.run_async(self.cache.set("short", "x", ttl=5))
        self.run_async(self.cache.set("long", "y", ttl=100))
        self.run_async(self.cache.get("long"))
        self.run_async(self.cache.get("missing"))
        self.clock.now += 10

        stats = self.run_async(self.cache.get_stats())
        self.assertEqual(stats["total_entries"], 2)
        self.assertEqual(stats["active_entries"], 1)
        self.assertEqual(stats["expired_entries"], 1)
        self.assertEqual(stats["hit_rate"], 0.5)
        self.assertEqual(stats["oldest_entry_age_seconds"], 10.0)
        self.assertGreater(stats["estimated_size_bytes"], 0)

        self.assertEqual(self.cache.cleanup_expired(), 1)
        self.assertEqual(len(self.cache), 1)


async def _scan(keys):
    for key in keys:
        yield key


def make_redis_client():
    client = MagicMock()
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[None, -2])
    client.pipeline.return_value = pipe
    client.setex = AsyncMock(return_value=True)
    client.set = AsyncMock(return_value=True)
    client.delete = AsyncMock(return_value=1)
    client.exists = AsyncMock(return_value=1)
    client.aclose = AsyncMock()
    return client, pipe


@pytest.mark.asyncio
async def test_redis_set_uses_setex_with_prefix():
    client, _ = make_redis_client()
    backend = RedisCacheBackend(redis_client=client, key_prefix="studyiq:")

    result = await backend.set("analytics:performance:u1", {"rate": 0.5}, ttl=1800)

    assert result.success
    key, ttl, payload = client.setex.call_args[0]
    assert key == "studyiq:analytics:performance:u1"
    assert ttl == 1800
    assert json.loads(payload) == {"rate": 0.5}


@pytest.mark.asyncio
async def test_redis_get_hit_and_miss():
    client, pipe = make_redis_client()
    backend = RedisCacheBackend(redis_client=client)

    pipe.execute.return_value = [json.dumps({"rate": 0.5}).encode(), 120]
    hit = await backend.get("k")
    assert hit.hit and hit.value == {"rate": 0.5} and hit.ttl == 120

    pipe.execute.return_value = [None, -2]
    miss = await backend.get("k")
    assert not miss.hit

    stats_client_keys = ["studyiq:k"]
    client.scan_iter = MagicMock(side_effect=lambda match: _scan(stats_client_keys))
    stats = await backend.get_stats()
    assert stats["hits"] == 1 and stats["misses"] == 1
    assert stats["total_entries"] == 1


@pytest.mark.asyncio
async def test_redis_errors_degrade_to_misses():
    client, pipe = make_redis_client()
    pipe.execute.side_effect = RedisConnectionError("down")
    client.delete.side_effect = RedisConnectionError("down")
    backend = RedisCacheBackend(redis_client=client)

    result = await backend.get("k")
    assert not result.success and not result.hit
    assert await backend.delete("k") is False


@pytest.mark.asyncio
async def test_redis_delete_prefix_scans():
    client, _ = make_redis_client()
    client.scan_iter = MagicMock(side_effect=lambda match: _scan(["studyiq:a:1", "studyiq:a:2"]))
    backend = RedisCacheBackend(redis_client=client)

    assert await backend.delete_prefix("a:") == 2
    client.scan_iter.assert_called_once_with(match="studyiq:a:*")
    await backend.close()
    client.aclose.assert_awaited_once()
