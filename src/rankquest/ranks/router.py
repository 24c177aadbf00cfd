"""Rank and leaderboard API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from rankquest.auth.dependencies import get_current_user, require_admin
from rankquest.db.models import User
from rankquest.dependencies import get_db, get_redis_dep
from rankquest.ranks.calculator import (
    get_rank_progress,
    get_rank_statistics,
    get_user_rank,
    get_users_by_rank,
    recalculate_all,
)
from rankquest.ranks.leaderboard_service import get_leaderboard, invalidate_leaderboard_cache
from rankquest.ranks.rank_table import RANKS
from rankquest.ranks.schemas import (
    CacheInvalidationResponse,
    LeaderboardResponse,
    RankChangeResponse,
    RankHolderResponse,
    RankHoldersResponse,
    RankProgressResponse,
    RankStatisticsResponse,
    RankTierResponse,
    RecalculationResponse,
    UserRankResponse,
)

router = APIRouter(prefix="/api/v1", tags=["Ranks"])


# ── Public endpoints ──


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def leaderboard(
    page: int = Query(default=1),
    limit: int = Query(default=10),
    db: AsyncSession = Depends(get_db),
    redis: Redis | None = Depends(get_redis_dep),
) -> dict:
    """Paged leaderboard ordered by competitive position."""
    return await get_leaderboard(db, redis, page=page, limit=limit)


@router.get("/ranks", response_model=list[RankTierResponse])
async def list_ranks() -> list[dict]:
    """The full rank ladder, lowest tier first."""
    return RANKS


@router.get("/ranks/statistics", response_model=RankStatisticsResponse)
async def rank_statistics(db: AsyncSession = Depends(get_db)) -> dict:
    return await get_rank_statistics(db)


# ── Authenticated endpoints ──


@router.get("/ranks/me", response_model=UserRankResponse)
async def my_rank(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    """Rank card for the current user."""
    return await get_user_rank(db, user.id)


@router.get("/ranks/me/progress", response_model=RankProgressResponse)
async def my_rank_progress(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    """Distance to the next competitive and base tiers."""
    return await get_rank_progress(db, user.id)


@router.get("/ranks/{rank}/users", response_model=RankHoldersResponse)
async def rank_holders(
    rank: str,
    limit: int = Query(default=50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> RankHoldersResponse:
    users = await get_users_by_rank(db, rank, limit=limit)
    return RankHoldersResponse(
        rank=rank,
        users=[
            RankHolderResponse(
                user_id=u.id,
                name=u.name,
                position=u.leaderboard_position,
                total_xp=u.total_xp,
            )
            for u in users
        ],
    )


# ── Admin endpoints ──


@router.post("/ranks/recalculate", response_model=RecalculationResponse)
async def recalculate_ranks(
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis: Redis | None = Depends(get_redis_dep),
) -> RecalculationResponse:
    """Run a full rank recalculation pass now."""
    outcome = await recalculate_all(db)
    await invalidate_leaderboard_cache(redis)
    return RecalculationResponse(
        total_users=outcome.total_users,
        promotions=outcome.promotions,
        demotions=outcome.demotions,
        maintained=outcome.maintained,
        achievements_awarded=outcome.achievements_awarded,
        duration_ms=outcome.duration_ms,
        changes=[
            RankChangeResponse(
                user_id=c.user_id,
                old_rank=c.old_rank,
                new_rank=c.new_rank,
                change_kind=c.change_kind,
                position=c.position,
            )
            for c in outcome.changes
        ],
        errors=outcome.errors,
    )


@router.post("/leaderboard/cache/invalidate", response_model=CacheInvalidationResponse)
async def invalidate_cache(
    _admin: User = Depends(require_admin),
    redis: Redis | None = Depends(get_redis_dep),
) -> CacheInvalidationResponse:
    return CacheInvalidationResponse(keys_deleted=await invalidate_leaderboard_cache(redis))
