"""Core module for configuration and shared infrastructure."""

from app.core.config import settings
from app.core.database import Base, async_session_maker, get_db
from app.core.redis import get_redis, redis_client

__all__ = [
    "settings",
    "Base",
    "async_session_maker",
    "get_db",
    "get_redis",
    "redis_client",
]
