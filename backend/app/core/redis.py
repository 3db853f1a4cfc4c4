"""Redis connection configuration.

The shared client backs the delivery cache (manifests, playlists, processing
status, rendition metadata).
"""

import redis.asyncio as redis

from app.core.config import settings

redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)


async def get_redis() -> redis.Redis:
    """Get Redis client instance."""
    return redis_client


async def close_redis() -> None:
    """Close the shared Redis connection pool."""
    await redis_client.aclose()
