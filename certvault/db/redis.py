"""Redis connection management.

When REDIS_URL is configured the verification cache is shared across API
instances through one connection pool; when it is None (local dev, tests)
the in-memory cache is used and no Redis server is needed.
"""

from __future__ import annotations

import logging

import redis.asyncio as aioredis

from certvault.core.config import Settings

logger = logging.getLogger(__name__)


def create_redis(settings: Settings) -> aioredis.Redis | None:  # type: ignore[type-arg]
    if not settings.redis_url:
        logger.info("No REDIS_URL configured; verification cache is in-memory")
        return None
    return aioredis.from_url(
        settings.redis_url,
        decode_responses=True,  # str instead of bytes
        max_connections=20,
    )


async def check_redis(client: aioredis.Redis) -> bool:  # type: ignore[type-arg]
    """Ping once at startup.  A failure is logged; the app still starts."""
    try:
        await client.ping()  # type: ignore[misc]  # redis stubs mistype async ping as bool
    except Exception:
        logger.exception("Redis connection failed on startup")
        return False
    logger.info("Redis connected")
    return True
