"""
Redis connection setup using redis-py async client.

Provides a shared redis instance used for per-load auto-match locks.
"""

import redis.asyncio as aioredis

from freightmatch.config import settings

redis = aioredis.from_url(
    settings.REDIS_URL,
    decode_responses=True,
    ssl=settings.REDIS_SSL,
)


async def get_redis() -> aioredis.Redis:
    """Return the shared Redis client."""
    return redis
