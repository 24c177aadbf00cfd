"""Explicit progression pipeline for completion events.

Each stage returns its own result and the pipeline decides whether the
next stage runs:

    XP grant / weekly update
      -> badge awards
      -> achievement check ("badge_earned" / "quest_completed")
      -> rank achievements when the XP-derived base rank crossed a tier
      -> rank recalculation (only when XP changed)
      -> rank achievements (inside recalculation, "rank_promotion")

Nothing recurses. Every stage is idempotent, so replaying an event is safe.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from redis.asyncio import Redis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rankquest.achievements.achievement_service import (
    AchievementCheckResult,
    check_and_award_achievements,
    verify_achievements,
)
from rankquest.achievements.badge_service import (
    BadgeAwardResult,
    award_badges_for_lesson_completion,
    award_badges_for_quiz_completion,
)
from rankquest.config import get_settings
from rankquest.db.models import User
from rankquest.quests.weekly_service import (
    QuestCompletionResult,
    RewardClaimResult,
    claim_weekly_reward,
    record_quest_completion,
)
from rankquest.ranks.calculator import RecalculationResult, recalculate_all
from rankquest.ranks.leaderboard_service import invalidate_leaderboard_cache
from rankquest.ranks.rank_table import base_rank_for_xp, compare_ranks
from rankquest.ranks.xp_service import grant_xp

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    xp_granted: int = 0
    badges: BadgeAwardResult | None = None
    achievements: AchievementCheckResult = field(default_factory=AchievementCheckResult)
    recalculation: RecalculationResult | None = None
    quest: QuestCompletionResult | None = None
    reward: RewardClaimResult | None = None
    base_rank_before: str | None = None


async def _current_base_rank(db: AsyncSession, user_id: int) -> str:
    result = await db.execute(select(User.total_xp).where(User.id == user_id))
    return base_rank_for_xp(result.scalar_one_or_none() or 0)


async def _start(db: AsyncSession, user_id: int) -> PipelineResult:
    """Fresh result, remembering the XP-derived rank before any stage runs."""
    return PipelineResult(base_rank_before=await _current_base_rank(db, user_id))


def quiz_xp(percentage: float) -> int:
    """Base quiz XP plus a score-proportional bonus."""
    settings = get_settings()
    bonus = int(max(0.0, min(percentage, 100.0)) / 100 * settings.quiz_bonus_xp)
    return settings.quiz_base_xp + bonus


async def _finish(
    db: AsyncSession,
    redis: Redis | None,
    outcome: PipelineResult,
    user_id: int,
    now: datetime,
) -> PipelineResult:
    """Run the shared tail: milestone achievements after badges, recalculation after XP."""
    if outcome.badges is not None and outcome.badges.awarded:
        milestone = await check_and_award_achievements(db, user_id, "badge_earned", now=now)
        outcome.achievements.merge(milestone)

    # Crossing a base-rank tier unlocks rank achievements even when the
    # leaderboard percentile, and so the competitive rank, stays put
    if outcome.base_rank_before is not None:
        base_after = await _current_base_rank(db, user_id)
        if compare_ranks(base_after, outcome.base_rank_before) > 0:
            promoted = await check_and_award_achievements(db, user_id, "rank_promotion", now=now)
            outcome.achievements.merge(promoted)

    if outcome.xp_granted or outcome.achievements.xp_awarded or (outcome.badges and outcome.badges.xp_awarded):
        outcome.recalculation = await recalculate_all(db, now=now)
        await invalidate_leaderboard_cache(redis)
        logger.debug(
            "Recalculated ranks after progress by user %d (%d changes)",
            user_id,
            len(outcome.recalculation.changes),
        )
    return outcome


async def on_lesson_completed(
    db: AsyncSession,
    redis: Redis | None,
    user_id: int,
    lesson_id: str,
    module_id: str | None = None,
    module_completed: bool = False,
    now: datetime | None = None,
) -> PipelineResult:
    """Lesson XP (once per lesson), lesson/module badges, then the shared tail."""
    if now is None:
        now = datetime.now(timezone.utc)
    outcome = await _start(db, user_id)

    amount = get_settings().lesson_xp
    if await grant_xp(db, user_id, amount, "lesson", lesson_id, f"lesson:{lesson_id}:{user_id}", now=now):
        outcome.xp_granted = amount
    await db.commit()

    outcome.badges = await award_badges_for_lesson_completion(
        db, user_id, lesson_id, module_id=module_id, module_completed=module_completed, now=now
    )
    return await _finish(db, redis, outcome, user_id, now)


async def on_quiz_completed(
    db: AsyncSession,
    redis: Redis | None,
    user_id: int,
    quiz_id: str,
    percentage: float,
    mastery_tier: str | None = None,
    module_id: str | None = None,
    module_quizzes_mastered: bool = False,
    now: datetime | None = None,
) -> PipelineResult:
    """Quiz XP (once per quiz), mastery badges, then the shared tail."""
    if now is None:
        now = datetime.now(timezone.utc)
    outcome = await _start(db, user_id)

    amount = quiz_xp(percentage)
    if await grant_xp(db, user_id, amount, "quiz", quiz_id, f"quiz:{quiz_id}:{user_id}", now=now):
        outcome.xp_granted = amount
    await db.commit()

    outcome.badges = await award_badges_for_quiz_completion(
        db,
        user_id,
        quiz_id,
        percentage,
        mastery_tier=mastery_tier,
        module_id=module_id,
        module_quizzes_mastered=module_quizzes_mastered,
        now=now,
    )
    return await _finish(db, redis, outcome, user_id, now)


async def on_quest_completed(
    db: AsyncSession,
    redis: Redis | None,
    user_id: int,
    day: str,
    now: datetime | None = None,
) -> PipelineResult:
    """Weekly state update, quest achievements, then the shared tail."""
    if now is None:
        now = datetime.now(timezone.utc)
    outcome = await _start(db, user_id)

    outcome.quest = await record_quest_completion(db, user_id, day, now=now)
    if outcome.quest.recorded:
        outcome.achievements.merge(await check_and_award_achievements(db, user_id, "quest_completed", now=now))
    return await _finish(db, redis, outcome, user_id, now)


async def on_weekly_reward_claimed(
    db: AsyncSession,
    redis: Redis | None,
    user_id: int,
    now: datetime | None = None,
) -> PipelineResult:
    """Reward chest claim, then the shared tail."""
    if now is None:
        now = datetime.now(timezone.utc)
    outcome = await _start(db, user_id)

    outcome.reward = await claim_weekly_reward(db, user_id, now=now)
    outcome.xp_granted = outcome.reward.reward_xp
    return await _finish(db, redis, outcome, user_id, now)


async def on_achievement_check(
    db: AsyncSession,
    redis: Redis | None,
    user_id: int,
    trigger_type: str,
    context: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> PipelineResult:
    """Explicit achievement check for a client action, then the shared tail."""
    if now is None:
        now = datetime.now(timezone.utc)
    outcome = await _start(db, user_id)
    outcome.achievements.merge(
        await check_and_award_achievements(db, user_id, trigger_type, context=context, now=now)
    )
    return await _finish(db, redis, outcome, user_id, now)


async def on_achievements_verified(
    db: AsyncSession,
    redis: Redis | None,
    user_id: int,
    now: datetime | None = None,
) -> PipelineResult:
    """Full re-sync over every trigger, then the shared tail."""
    if now is None:
        now = datetime.now(timezone.utc)
    outcome = await _start(db, user_id)
    outcome.achievements.merge(await verify_achievements(db, user_id, now=now))
    return await _finish(db, redis, outcome, user_id, now)
