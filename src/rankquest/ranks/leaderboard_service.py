"""Leaderboard listing with a short-lived Redis read-through cache.

The cache only serves listings. It is never consulted for a write
decision, and any Redis failure falls back to the database.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from redis.asyncio import Redis
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rankquest.config import get_settings
from rankquest.db.models import User
from rankquest.errors import ValidationFailed
from rankquest.ranks.rank_table import compute_level, displayed_rank, xp_to_next_base_rank

logger = logging.getLogger(__name__)

CACHE_PREFIX = "leaderboard:"


def build_cache_key(page: int, limit: int) -> str:
    return f"{CACHE_PREFIX}page:{page}:limit:{limit}"


def _validate_paging(page: int, limit: int) -> None:
    sizes = get_settings().leaderboard_page_sizes
    if limit not in sizes:
        raise ValidationFailed(f"Invalid limit. Must be one of: {', '.join(str(s) for s in sizes)}")
    if page < 1:
        raise ValidationFailed("Page must be >= 1")


async def _read_cache(redis: Redis | None, key: str) -> dict[str, Any] | None:
    if redis is None:
        return None
    try:
        cached = await redis.get(key)
    except Exception:
        logger.warning("Leaderboard cache read failed", exc_info=True)
        return None
    return json.loads(cached) if cached else None


async def _write_cache(redis: Redis | None, key: str, payload: dict[str, Any]) -> None:
    if redis is None:
        return
    try:
        await redis.set(key, json.dumps(payload), ex=get_settings().leaderboard_cache_ttl_seconds)
    except Exception:
        logger.warning("Leaderboard cache write failed", exc_info=True)


async def build_leaderboard(db: AsyncSession, page: int, limit: int) -> dict[str, Any]:
    """Query one leaderboard page plus population stats straight from the store."""
    stats_row = (
        await db.execute(
            select(
                func.count(User.id),
                func.coalesce(func.avg(User.total_xp), 0),
                func.coalesce(func.max(User.total_xp), 0),
            ).where(User.status == "active")
        )
    ).one()
    total_users = int(stats_row[0])

    result = await db.execute(
        select(User)
        .where(User.status == "active", User.leaderboard_position.is_not(None))
        .order_by(User.leaderboard_position, User.id)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    entries = [
        {
            "position": u.leaderboard_position,
            "user_id": u.id,
            "name": u.name,
            "image": u.image,
            "total_xp": u.total_xp,
            "level": compute_level(u.total_xp),
            "competitive_rank": displayed_rank(u.current_rank),
            "base_rank": u.base_rank,
            "xp_to_next_rank": xp_to_next_base_rank(u.total_xp),
        }
        for u in result.scalars()
    ]

    return {
        "entries": entries,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total_users,
            "total_pages": (total_users + limit - 1) // limit,
        },
        "stats": {
            "total_users": total_users,
            "average_xp": round(float(stats_row[1]), 1),
            "top_xp": int(stats_row[2]),
        },
        "generated_at": datetime.now(timezone.utc).isoformat(),
    }


async def get_leaderboard(db: AsyncSession, redis: Redis | None, page: int = 1, limit: int = 10) -> dict[str, Any]:
    """Leaderboard page, served from cache when fresh."""
    _validate_paging(page, limit)
    key = build_cache_key(page, limit)

    cached = await _read_cache(redis, key)
    if cached is not None:
        return cached

    payload = await build_leaderboard(db, page, limit)
    await _write_cache(redis, key, payload)
    return payload


async def invalidate_leaderboard_cache(redis: Redis | None) -> int:
    """Drop every cached leaderboard page. Returns number of keys deleted."""
    if redis is None:
        return 0
    try:
        keys = [key async for key in redis.scan_iter(match=f"{CACHE_PREFIX}*")]
        if not keys:
            return 0
        deleted: int = await redis.delete(*keys)
    except Exception:
        logger.warning("Leaderboard cache invalidation failed", exc_info=True)
        return 0
    logger.info("Invalidated %d leaderboard cache keys", deleted)
    return deleted
