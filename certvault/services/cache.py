"""Read-through cache for public verification lookups.

Flow:  lookup -> cache hit  -> return
       lookup -> cache miss -> repository -> populate cache -> return

Entries carry a TTL and are also deleted explicitly whenever a
certificate's public view changes (issue, revoke, anchor), so a revoked
certificate stops verifying immediately on this instance and within one
TTL everywhere else.

Only the public representation is ever cached; it never contains the
record's encryption key.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class CacheService(Protocol):
    async def get(self, key: str) -> str | None:
        """Fetch a cached value.  Returns None on cache miss."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, *keys: str) -> None:
        """Explicitly invalidate cached entries."""
        ...


class InMemoryCacheService:
    """In-process cache for tests and single-instance dev.  No TTL enforcement."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._store[key] = value

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()


class RedisCacheService:
    """Redis-backed cache shared across API instances."""

    _PREFIX = "certvault:cache:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def get(self, key: str) -> str | None:
        return await self._redis.get(f"{self._PREFIX}{key}")

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._redis.setex(f"{self._PREFIX}{key}", ttl_seconds, value)

    async def delete(self, *keys: str) -> None:
        if keys:
            await self._redis.delete(*(f"{self._PREFIX}{k}" for k in keys))
