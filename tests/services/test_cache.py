from __future__ import annotations

import asyncio

from certvault.services.cache import CacheService, InMemoryCacheService, RedisCacheService


class _FakeRedis:
    """Records the calls RedisCacheService makes."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self.data[key] = value
        self.ttls[key] = ttl

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self.data.pop(key, None)


def test_in_memory_cache_round_trip() -> None:
    cache = InMemoryCacheService()
    assert asyncio.run(cache.get("code:ABC")) is None
    asyncio.run(cache.set("code:ABC", '{"valid": true}', 60))
    assert asyncio.run(cache.get("code:ABC")) == '{"valid": true}'
    asyncio.run(cache.delete("code:ABC", "hash:0x00"))
    assert asyncio.run(cache.get("code:ABC")) is None


def test_in_memory_cache_clear() -> None:
    cache = InMemoryCacheService()
    asyncio.run(cache.set("a", "1", 60))
    cache.clear()
    assert asyncio.run(cache.get("a")) is None


def test_redis_cache_prefixes_keys_and_sets_ttl() -> None:
    redis = _FakeRedis()
    cache = RedisCacheService(redis)
    asyncio.run(cache.set("code:ABC", "view", 300))
    assert redis.data == {"certvault:cache:code:ABC": "view"}
    assert redis.ttls["certvault:cache:code:ABC"] == 300
    assert asyncio.run(cache.get("code:ABC")) == "view"

    asyncio.run(cache.delete("code:ABC"))
    assert redis.data == {}
    # No keys, no round trip.
    asyncio.run(cache.delete())


def test_implementations_satisfy_protocol() -> None:
    assert isinstance(InMemoryCacheService(), CacheService)
    assert isinstance(RedisCacheService(_FakeRedis()), CacheService)
