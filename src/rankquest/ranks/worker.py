"""Rank recalculation arq worker.

Runs a full recalculation pass at the top of every hour and on demand
(enqueue ``recalculate_ranks``). Start with:

    arq rankquest.ranks.worker.RankWorkerSettings
"""

from __future__ import annotations

import logging

import redis.asyncio as aioredis
from arq import cron
from arq.connections import RedisSettings

from rankquest.config import get_settings
from rankquest.database import close_db, get_session_factory, init_db
from rankquest.ranks.calculator import recalculate_all
from rankquest.ranks.leaderboard_service import invalidate_leaderboard_cache

logger = logging.getLogger(__name__)


async def recalculate_ranks(ctx: dict) -> dict:  # type: ignore[type-arg]
    """Recompute every active user's position and competitive rank."""
    factory = get_session_factory()
    async with factory() as db:
        outcome = await recalculate_all(db)
    deleted = await invalidate_leaderboard_cache(ctx.get("cache_redis"))

    logger.info(
        "Rank recalculation: %d users, %d promotions, %d demotions, %d errors, %d cache keys dropped",
        outcome.total_users,
        outcome.promotions,
        outcome.demotions,
        len(outcome.errors),
        deleted,
    )
    return {
        "total_users": outcome.total_users,
        "promotions": outcome.promotions,
        "demotions": outcome.demotions,
        "maintained": outcome.maintained,
        "errors": len(outcome.errors),
        "duration_ms": outcome.duration_ms,
    }


async def rank_worker_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize DB and cache connections on worker startup."""
    settings = get_settings()
    await init_db(settings.database_url)
    ctx["cache_redis"] = (
        aioredis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
        if settings.redis_url
        else None
    )
    logger.info("Rank worker started")


async def rank_worker_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    cache_redis = ctx.get("cache_redis")
    if cache_redis:
        await cache_redis.aclose()
    await close_db()
    logger.info("Rank worker shut down")


class RankWorkerSettings:
    """arq worker settings for rank recalculation."""

    functions = [recalculate_ranks]
    cron_jobs = [
        cron(recalculate_ranks, minute=0, run_at_startup=False, unique=True),
    ]
    on_startup = rank_worker_startup
    on_shutdown = rank_worker_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().arq_redis_url)
    max_jobs = 1
    job_timeout = get_settings().rank_recalc_job_timeout_seconds
