"""Delivery cache for video metadata, manifests and processing status.

Every cache-backed read goes through ``VideoCache.read_through`` so that
metadata, manifests and status share the same miss/write-back and
invalidation behavior.
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Iterable, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from app.core.metrics import CACHE_LOOKUPS_TOTAL
from app.core.redis import redis_client
from app.modules.transcoding.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


# TTLs in seconds
METADATA_TTL = 3600
RENDITIONS_TTL = 1800
MANIFEST_TTL = 900
PLAYLIST_TTL = 60
PROCESSING_TTL = 300


class CacheBackend(ABC):
    """Key/value store with per-key TTL."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int) -> None:
        pass

    @abstractmethod
    async def delete(self, *keys: str) -> None:
        pass


class RedisCacheBackend(CacheBackend):
    """Cache backend over the shared async Redis client.

    Client errors surface as ``ExternalServiceError``.
    """

    def __init__(self, client: Optional[redis.Redis] = None):
        self.client = client or redis_client

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.client.get(key)
        except RedisError as e:
            raise ExternalServiceError(f"Cache read failed for {key}: {e}") from e

    async def set(self, key: str, value: str, ttl: int) -> None:
        try:
            await self.client.setex(key, ttl, value)
        except RedisError as e:
            raise ExternalServiceError(f"Cache write failed for {key}: {e}") from e

    async def delete(self, *keys: str) -> None:
        if not keys:
            return
        try:
            await self.client.delete(*keys)
        except RedisError as e:
            raise ExternalServiceError(f"Cache delete failed: {e}") from e


class InMemoryCacheBackend(CacheBackend):
    """Process-local TTL dictionary."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        self._entries[key] = (value, self._clock() + ttl)

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._entries.pop(key, None)

    def keys(self) -> list[str]:
        """Live keys, for inspection."""
        now = self._clock()
        return [key for key, (_, expires_at) in self._entries.items() if now < expires_at]


class VideoCache:
    """Key namespace, serialization and TTLs for per-video cache entries."""

    def __init__(self, backend: CacheBackend):
        self.backend = backend

    # Keys

    @staticmethod
    def metadata_key(video_id) -> str:
        return f"video:metadata:{video_id}"

    @staticmethod
    def renditions_key(video_id) -> str:
        return f"video:renditions:{video_id}"

    @staticmethod
    def manifest_key(video_id) -> str:
        return f"video:manifest:{video_id}"

    @staticmethod
    def playlist_key(video_id, quality: str) -> str:
        return f"video:playlist:{video_id}:{quality}"

    @staticmethod
    def processing_key(video_id) -> str:
        return f"video:processing:{video_id}"

    @staticmethod
    def _namespace(key: str) -> str:
        parts = key.split(":")
        return parts[1] if len(parts) > 2 else "other"

    # Primitives

    async def get_json(self, key: str) -> Optional[Any]:
        raw = await self.backend.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Dropping undecodable cache entry %s", key)
            await self.backend.delete(key)
            return None

    async def set_json(self, key: str, value: Any, ttl: int) -> None:
        await self.backend.set(key, json.dumps(value, default=str), ttl)

    async def read_through(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        ttl: int,
    ) -> Any:
        """Return the cached value for ``key`` or load, store and return it.

        Loader exceptions propagate and nothing is written. A loader result
        of ``None`` is returned but not cached.
        """
        namespace = self._namespace(key)
        cached = await self.get_json(key)
        if cached is not None:
            CACHE_LOOKUPS_TOTAL.labels(namespace=namespace, result="hit").inc()
            return cached

        CACHE_LOOKUPS_TOTAL.labels(namespace=namespace, result="miss").inc()
        value = await loader()
        if value is not None:
            await self.set_json(key, value, ttl)
        return value

    # Processing status

    async def cache_processing_status(
        self,
        video_id,
        status: str,
        progress: int,
        message: str,
        error: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> dict:
        """Write a status entry and return what was written."""
        entry = {
            "video_id": str(video_id),
            "status": status,
            "progress": progress,
            "message": message,
            "error": error,
            "job_id": job_id,
        }
        await self.set_json(self.processing_key(video_id), entry, PROCESSING_TTL)
        return entry

    async def get_processing_status(self, video_id) -> Optional[dict]:
        return await self.get_json(self.processing_key(video_id))

    # Invalidation

    async def invalidate_video(self, video_id, qualities: Iterable[str] = ()) -> None:
        """Remove every cached entry for a video, including quality playlists."""
        keys = [
            self.metadata_key(video_id),
            self.renditions_key(video_id),
            self.manifest_key(video_id),
            self.processing_key(video_id),
        ]
        keys.extend(self.playlist_key(video_id, quality) for quality in sorted(set(qualities)))
        await self.backend.delete(*keys)
        logger.debug("Invalidated %d cache keys for video %s", len(keys), video_id)
