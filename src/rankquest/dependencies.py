"""Shared FastAPI dependencies."""

from collections.abc import AsyncGenerator

from redis.asyncio import Redis

from rankquest.database import get_session as _get_session
from rankquest.redis_client import get_redis_or_none as _get_redis

get_db = _get_session


async def get_redis_dep() -> AsyncGenerator[Redis | None, None]:
    """Yield the Redis client (or None when caching is disabled) as a FastAPI dependency."""
    yield _get_redis()
