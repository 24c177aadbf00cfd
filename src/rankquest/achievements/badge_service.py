"""Badge awarding for lesson and quiz completion.

Awards are best-effort batches: each badge is inserted in its own savepoint,
so one failed write is reported in ``errors`` without blocking the other
badges of the same call. Duplicates are absorbed by
UNIQUE(user_id, badge_id).

Badge awarding never re-invokes achievement checking; the caller runs
``check_and_award_achievements(..., "badge_earned")`` when ``awarded`` is
non-empty.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rankquest.db.models import Badge, UserBadge
from rankquest.db.upsert import insert_ignore
from rankquest.ranks.xp_service import grant_xp

logger = logging.getLogger(__name__)

MASTERY_TIERS: tuple[str, ...] = ("bronze", "silver", "gold", "perfect")
RARITIES: tuple[str, ...] = ("common", "rare", "epic", "legendary")


@dataclass
class BadgeAwardResult:
    awarded: list[Badge] = field(default_factory=list)
    xp_awarded: int = 0
    already_earned: list[int] = field(default_factory=list)
    blocked: list[int] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)


def mastery_tier_for_percentage(percentage: float) -> str | None:
    """Accuracy-only tier, used when the caller did not supply one."""
    if percentage >= 100:
        return "perfect"
    if percentage >= 90:
        return "gold"
    if percentage >= 80:
        return "silver"
    if percentage >= 70:
        return "bronze"
    return None


def mastery_meets(achieved: str | None, required: str | None) -> bool:
    """True if the achieved tier is at or above the badge's required tier."""
    if achieved is None or achieved.lower() not in MASTERY_TIERS:
        return False
    if required is None:
        return True
    if required.lower() not in MASTERY_TIERS:
        logger.warning("Unknown required mastery tier: %s", required)
        return False
    return MASTERY_TIERS.index(achieved.lower()) >= MASTERY_TIERS.index(required.lower())


async def get_earned_badge_ids(db: AsyncSession, user_id: int) -> set[int]:
    result = await db.execute(select(UserBadge.badge_id).where(UserBadge.user_id == user_id))
    return set(result.scalars())


async def has_badge(db: AsyncSession, user_id: int, badge_id: int) -> bool:
    """Check if user already has a specific badge."""
    return badge_id in await get_earned_badge_ids(db, user_id)


async def _award_candidates(
    db: AsyncSession,
    user_id: int,
    candidates: list[Badge],
    now: datetime,
) -> BadgeAwardResult:
    """Insert every candidate whose prerequisites are met.

    Re-scans after each successful award so prerequisite chains within
    the same batch unlock together.
    """
    outcome = BadgeAwardResult()
    earned = await get_earned_badge_ids(db, user_id)

    pending: list[Badge] = []
    for badge in candidates:
        if badge.id in earned:
            outcome.already_earned.append(badge.id)
        else:
            pending.append(badge)

    progressed = True
    while pending and progressed:
        progressed = False
        for badge in list(pending):
            if not all(prereq in earned for prereq in (badge.prerequisites or [])):
                continue
            pending.remove(badge)
            progressed = True
            try:
                async with db.begin_nested():
                    inserted = await insert_ignore(
                        db,
                        UserBadge,
                        {"user_id": user_id, "badge_id": badge.id, "earned_at": now},
                        index_elements=["user_id", "badge_id"],
                    )
                    if inserted is not None:
                        await grant_xp(
                            db,
                            user_id,
                            badge.xp_value,
                            source="badge",
                            source_id=str(badge.id),
                            idempotency_key=f"badge:{badge.id}:{user_id}",
                            now=now,
                        )
            except SQLAlchemyError as exc:
                logger.warning("Failed to award badge %d to user %d", badge.id, user_id, exc_info=True)
                outcome.errors.append({"badge_id": badge.id, "error": str(exc)})
                continue

            earned.add(badge.id)
            if inserted is None:
                outcome.already_earned.append(badge.id)
            else:
                outcome.awarded.append(badge)
                outcome.xp_awarded += badge.xp_value

    outcome.blocked = [b.id for b in pending]
    return outcome


async def award_badges_for_lesson_completion(
    db: AsyncSession,
    user_id: int,
    lesson_id: str | int,
    module_id: str | int | None = None,
    module_completed: bool = False,
    now: datetime | None = None,
) -> BadgeAwardResult:
    """Award lesson badges, plus module badges when the module is now complete. Commits."""
    if now is None:
        now = datetime.now(timezone.utc)

    conditions = [and_(Badge.trigger_type == "lesson_complete", Badge.trigger_value == str(lesson_id))]
    if module_completed and module_id is not None:
        conditions.append(and_(Badge.trigger_type == "module_complete", Badge.trigger_value == str(module_id)))

    result = await db.execute(
        select(Badge).where(Badge.is_active.is_(True), or_(*conditions)).order_by(Badge.sort_order, Badge.id)
    )
    outcome = await _award_candidates(db, user_id, list(result.scalars()), now)
    await db.commit()
    _log_outcome(user_id, f"lesson {lesson_id}", outcome)
    return outcome


async def award_badges_for_quiz_completion(
    db: AsyncSession,
    user_id: int,
    quiz_id: str | int,
    percentage: float,
    mastery_tier: str | None = None,
    module_id: str | int | None = None,
    module_quizzes_mastered: bool = False,
    now: datetime | None = None,
) -> BadgeAwardResult:
    """Award quiz mastery badges the attempt's tier qualifies for. Commits.

    ``parent_quiz_mastery`` badges for the module are considered when the
    caller reports every quiz of the module mastered.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    tier = mastery_tier or mastery_tier_for_percentage(percentage)

    conditions = [and_(Badge.trigger_type == "quiz_mastery", Badge.trigger_value == str(quiz_id))]
    if module_quizzes_mastered and module_id is not None:
        conditions.append(
            and_(Badge.trigger_type == "parent_quiz_mastery", Badge.trigger_value == str(module_id))
        )

    result = await db.execute(
        select(Badge).where(Badge.is_active.is_(True), or_(*conditions)).order_by(Badge.sort_order, Badge.id)
    )
    candidates = [b for b in result.scalars() if mastery_meets(tier, b.mastery_level)]
    outcome = await _award_candidates(db, user_id, candidates, now)
    await db.commit()
    _log_outcome(user_id, f"quiz {quiz_id} ({tier})", outcome)
    return outcome


def _log_outcome(user_id: int, source: str, outcome: BadgeAwardResult) -> None:
    if outcome.awarded:
        logger.info(
            "User %d earned %d badge(s) from %s (+%d XP)",
            user_id,
            len(outcome.awarded),
            source,
            outcome.xp_awarded,
        )
    if outcome.errors:
        logger.error("User %d: %d badge award(s) failed for %s", user_id, len(outcome.errors), source)


async def get_user_badges(db: AsyncSession, user_id: int) -> list[UserBadge]:
    result = await db.execute(
        select(UserBadge).where(UserBadge.user_id == user_id).order_by(UserBadge.earned_at.desc())
    )
    return list(result.scalars())


async def get_user_badge_stats(db: AsyncSession, user_id: int) -> dict[str, Any]:
    """Earned/available totals with a per-rarity breakdown of earned badges."""
    total_available = (
        await db.execute(select(func.count(Badge.id)).where(Badge.is_active.is_(True)))
    ).scalar_one()

    rarity_result = await db.execute(
        select(Badge.rarity, func.count(UserBadge.id))
        .join(UserBadge, UserBadge.badge_id == Badge.id)
        .where(UserBadge.user_id == user_id)
        .group_by(Badge.rarity)
    )
    by_rarity = {rarity: 0 for rarity in RARITIES}
    for rarity, count in rarity_result:
        by_rarity[rarity] = by_rarity.get(rarity, 0) + count

    total_earned = sum(by_rarity.values())
    return {
        "total_earned": total_earned,
        "total_available": total_available,
        "completion_percentage": round(total_earned / total_available * 100, 1) if total_available else 0.0,
        "by_rarity": by_rarity,
    }
