"""Population-wide rank recalculation and rank read models.

Recalculation always recomputes positions from the full ordered population
(total XP desc, account age asc), so re-running it is safe: a second pass
with no intervening XP change writes nothing.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rankquest.achievements.achievement_service import (
    AchievementCheckResult,
    check_and_award_achievements,
    get_rank_achievement_ordinals,
)
from rankquest.auth.service import require_user
from rankquest.db.models import User
from rankquest.errors import NotFound
from rankquest.ranks.rank_table import (
    LOWEST_RANK,
    RANK_CODES,
    compare_ranks,
    competitive_rank_for_position,
    displayed_rank,
    get_next_rank,
    get_rank_info,
    is_valid_rank,
    rank_ordinal,
    xp_to_next_base_rank,
)

logger = logging.getLogger(__name__)

RANK_HISTORY_LIMIT = 50


@dataclass
class RankChange:
    user_id: int
    old_rank: str
    new_rank: str
    change_kind: str  # promotion | demotion
    position: int


@dataclass
class RecalculationResult:
    changes: list[RankChange] = field(default_factory=list)
    maintained: int = 0
    total_users: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    achievements_awarded: int = 0
    duration_ms: int = 0

    @property
    def promotions(self) -> int:
        return sum(1 for c in self.changes if c.change_kind == "promotion")

    @property
    def demotions(self) -> int:
        return sum(1 for c in self.changes if c.change_kind == "demotion")


def classify_change(old_rank: str, new_rank: str) -> str:
    """promotion, demotion or maintained. Unknown stored ranks count as the lowest tier."""
    old = old_rank if is_valid_rank(old_rank) else LOWEST_RANK
    diff = compare_ranks(new_rank, old)
    if diff > 0:
        return "promotion"
    if diff < 0:
        return "demotion"
    return "maintained"


def _apply_rank(user: User, position: int, new_rank: str, now: datetime) -> bool:
    """Write the recomputed rank fields onto a user. Returns True if anything changed."""
    changed = False
    if user.leaderboard_position != position:
        user.leaderboard_position = position
        changed = True

    if user.current_rank != new_rank:
        user.current_rank = new_rank
        user.rank_achieved_at = now
        entry = {
            "rank": new_rank,
            "position": position,
            "total_xp": user.total_xp,
            "timestamp": now.isoformat(),
        }
        user.rank_history = [*(user.rank_history or []), entry][-RANK_HISTORY_LIMIT:]
        changed = True

    # Ratchet: highest_rank_ever never moves down
    if not is_valid_rank(user.highest_rank_ever) or rank_ordinal(new_rank) > rank_ordinal(user.highest_rank_ever):
        user.highest_rank_ever = new_rank
        changed = True

    return changed


def _crossed_registered_tier(old_rank: str, new_rank: str, targets: set[int]) -> bool:
    old = rank_ordinal(old_rank) if is_valid_rank(old_rank) else -1
    new = rank_ordinal(new_rank)
    return any(old < target <= new for target in targets)


async def recalculate_all(db: AsyncSession, now: datetime | None = None) -> RecalculationResult:
    """Recompute positions and competitive ranks for every active user.

    Per-user write failures are logged, collected in ``errors`` and skipped.
    Users that crossed into a tier with a registered rank achievement are
    then checked with the ``rank_promotion`` trigger.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    started = time.monotonic()

    result = await db.execute(
        select(User)
        .where(User.status == "active")
        .order_by(User.total_xp.desc(), User.created_at.asc(), User.id.asc())
        .execution_options(populate_existing=True)
    )
    users = list(result.scalars())
    outcome = RecalculationResult(total_users=len(users))
    if not users:
        return outcome

    rank_targets = await get_rank_achievement_ordinals(db)
    crossed: list[int] = []

    for index, user in enumerate(users):
        position = index + 1
        user_id = user.id
        try:
            async with db.begin_nested():
                old_rank = user.current_rank
                new_rank = competitive_rank_for_position(position, len(users))
                kind = classify_change(old_rank, new_rank)
                if _apply_rank(user, position, new_rank, now):
                    await db.flush()
        except Exception as exc:
            logger.warning("Rank update failed for user %d", user_id, exc_info=True)
            outcome.errors.append({"user_id": user_id, "error": str(exc)})
            continue

        if kind == "maintained":
            outcome.maintained += 1
            continue
        outcome.changes.append(RankChange(user_id, old_rank, new_rank, kind, position))
        if kind == "promotion" and _crossed_registered_tier(old_rank, new_rank, rank_targets):
            crossed.append(user_id)

    await db.commit()

    for user_id in crossed:
        try:
            awarded = await check_and_award_achievements(db, user_id, "rank_promotion", now=now)
        except Exception as exc:
            await db.rollback()
            logger.warning("Rank achievement check failed for user %d", user_id, exc_info=True)
            outcome.errors.append({"user_id": user_id, "error": str(exc)})
            continue
        outcome.achievements_awarded += len(awarded.new_achievements)

    outcome.duration_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        "Rank recalculation: %d users, %d promotions, %d demotions, %d errors in %dms",
        outcome.total_users,
        outcome.promotions,
        outcome.demotions,
        len(outcome.errors),
        outcome.duration_ms,
    )
    return outcome


async def initialize_new_user_rank(db: AsyncSession, user_id: int, now: datetime | None = None) -> User:
    """Put a freshly registered user on the lowest tier. Commits."""
    if now is None:
        now = datetime.now(timezone.utc)
    user = await require_user(db, user_id)
    user.current_rank = LOWEST_RANK
    user.highest_rank_ever = LOWEST_RANK
    user.leaderboard_position = None
    user.rank_achieved_at = now
    user.rank_history = [
        {"rank": LOWEST_RANK, "position": None, "total_xp": user.total_xp, "timestamp": now.isoformat()}
    ]
    await db.commit()
    return user


async def verify_rank_achievements(
    db: AsyncSession, user_id: int, now: datetime | None = None
) -> AchievementCheckResult:
    """Award any rank achievement the user already qualifies for."""
    return await check_and_award_achievements(db, user_id, "rank_promotion", now=now)


async def count_active_users(db: AsyncSession) -> int:
    result = await db.execute(select(func.count(User.id)).where(User.status == "active"))
    return result.scalar_one()


async def get_user_rank(db: AsyncSession, user_id: int) -> dict[str, Any]:
    """Rank card: position, both rank tracks, XP and level."""
    user = await require_user(db, user_id)
    total_users = await count_active_users(db)
    competitive = displayed_rank(user.current_rank)
    base = user.base_rank
    return {
        "user_id": user.id,
        "position": user.leaderboard_position,
        "total_users": total_users,
        "competitive_rank": competitive,
        "competitive_rank_name": get_rank_info(competitive)["name"],
        "base_rank": base,
        "base_rank_name": get_rank_info(base)["name"],
        "highest_rank_ever": user.highest_rank_ever,
        "total_xp": user.total_xp,
        "level": user.level,
        "xp_to_next_rank": xp_to_next_base_rank(user.total_xp),
        "rank_achieved_at": user.rank_achieved_at,
    }


async def get_rank_progress(db: AsyncSession, user_id: int) -> dict[str, Any]:
    """Distance to the next tier on both tracks."""
    user = await require_user(db, user_id)
    competitive = displayed_rank(user.current_rank)

    user_ahead = None
    if user.leaderboard_position and user.leaderboard_position > 1:
        result = await db.execute(
            select(User).where(
                User.status == "active",
                User.leaderboard_position == user.leaderboard_position - 1,
            )
        )
        user_ahead = result.scalars().first()

    base = user.base_rank
    next_base = get_next_rank(base)
    base_floor = get_rank_info(base)["min_xp"]
    if next_base is None:
        base_percentage = 100.0
    else:
        span = get_rank_info(next_base)["min_xp"] - base_floor
        base_percentage = round((user.total_xp - base_floor) / span * 100, 1)

    return {
        "user_id": user.id,
        "position": user.leaderboard_position,
        "competitive_rank": competitive,
        "next_competitive_rank": get_next_rank(competitive),
        "user_ahead": {
            "user_id": user_ahead.id,
            "name": user_ahead.name,
            "total_xp": user_ahead.total_xp,
            "position": user_ahead.leaderboard_position,
        } if user_ahead else None,
        "xp_needed": max(0, user_ahead.total_xp - user.total_xp) if user_ahead else 0,
        "base_rank": base,
        "next_base_rank": next_base,
        "xp_to_next_rank": xp_to_next_base_rank(user.total_xp),
        "base_progress_percentage": base_percentage,
    }


async def get_rank_statistics(db: AsyncSession) -> dict[str, Any]:
    """Number of active users holding each competitive rank."""
    result = await db.execute(
        select(User.current_rank, func.count(User.id))
        .where(User.status == "active")
        .group_by(User.current_rank)
    )
    distribution = {code: 0 for code in RANK_CODES}
    for code, count in result:
        distribution[displayed_rank(code)] += count
    return {"total_users": sum(distribution.values()), "distribution": distribution}


async def get_users_by_rank(db: AsyncSession, rank: str, limit: int = 50) -> list[User]:
    """Active users currently holding ``rank``, best position first."""
    if not is_valid_rank(rank):
        raise NotFound(f"Unknown rank: {rank}")
    result = await db.execute(
        select(User)
        .where(User.status == "active", User.current_rank == rank)
        .order_by(User.leaderboard_position.asc().nulls_last(), User.id)
        .limit(limit)
    )
    return list(result.scalars())
