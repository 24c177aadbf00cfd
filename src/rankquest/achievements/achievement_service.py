"""Trigger-based achievement unlocking.

Each trigger maps to one achievement type. Criteria are evaluated against
the user's current state, and unlocking relies on the
UNIQUE(user_id, achievement_id) constraint: a concurrent second insert is a
no-op, never an error, and never grants XP twice.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rankquest.auth.service import require_user
from rankquest.db.models import Achievement, Badge, User, UserAchievement, UserBadge, WeeklyQuestProgress
from rankquest.db.upsert import insert_ignore
from rankquest.errors import ValidationFailed
from rankquest.ranks.rank_table import is_valid_rank, rank_ordinal
from rankquest.ranks.xp_service import grant_xp

logger = logging.getLogger(__name__)

TRIGGER_ACHIEVEMENT_TYPES: dict[str, str] = {
    "profile_update": "profile",
    "rank_promotion": "rank",
    "badge_earned": "badge_milestone",
    "quest_completed": "quest",
}

# Badge categories used by badge_count criteria, by badge trigger type
BADGE_TYPE_TRIGGERS: dict[str, tuple[str, ...]] = {
    "learning": ("lesson_complete", "module_complete"),
    "quiz": ("quiz_mastery", "parent_quiz_mastery"),
}

PROFILE_FIELDS = ("name", "image")


@dataclass
class AchievementCheckResult:
    new_achievements: list[Achievement] = field(default_factory=list)
    xp_awarded: int = 0

    def merge(self, other: AchievementCheckResult) -> None:
        self.new_achievements.extend(other.new_achievements)
        self.xp_awarded += other.xp_awarded


class CriteriaContext:
    """Lazily loaded facts about one user, shared by every criterion in a check."""

    def __init__(self, db: AsyncSession, user: User, context: dict[str, Any] | None = None) -> None:
        self.db = db
        self.user = user
        self.context = context or {}
        self._earned_by_trigger: dict[str, int] | None = None
        self._catalog_by_trigger: dict[str, int] | None = None
        self._total_quests: int | None = None

    async def earned_badges(self, badge_type: str) -> int:
        if self._earned_by_trigger is None:
            result = await self.db.execute(
                select(Badge.trigger_type, func.count(UserBadge.id))
                .join(UserBadge, UserBadge.badge_id == Badge.id)
                .where(UserBadge.user_id == self.user.id)
                .group_by(Badge.trigger_type)
            )
            self._earned_by_trigger = {row[0]: row[1] for row in result}
        return _count_for_type(self._earned_by_trigger, badge_type)

    async def catalog_badges(self, badge_type: str) -> int:
        if self._catalog_by_trigger is None:
            result = await self.db.execute(
                select(Badge.trigger_type, func.count(Badge.id))
                .where(Badge.is_active.is_(True))
                .group_by(Badge.trigger_type)
            )
            self._catalog_by_trigger = {row[0]: row[1] for row in result}
        return _count_for_type(self._catalog_by_trigger, badge_type)

    async def total_quests(self) -> int:
        if self._total_quests is None:
            result = await self.db.execute(
                select(func.coalesce(func.sum(WeeklyQuestProgress.total_quests_completed), 0))
                .where(WeeklyQuestProgress.user_id == self.user.id)
            )
            self._total_quests = int(result.scalar_one())
        return self._total_quests

    def rank_ordinal(self) -> int:
        """Best of the competitive rank, the ratchet and the XP-derived base rank."""
        ordinals = [rank_ordinal(self.user.base_rank)]
        for code in (self.user.current_rank, self.user.highest_rank_ever):
            if is_valid_rank(code):
                ordinals.append(rank_ordinal(code))
        return max(ordinals)


def _count_for_type(counts: dict[str, int], badge_type: str) -> int:
    if badge_type == "all":
        return sum(counts.values())
    triggers = BADGE_TYPE_TRIGGERS.get(badge_type, (badge_type,))
    return sum(counts.get(t, 0) for t in triggers)


async def evaluate_progress(achievement: Achievement, ctx: CriteriaContext) -> tuple[int, int]:
    """Return (current, target) for an achievement's criteria.

    A target of 0 means the criteria cannot currently be met (unknown
    criteria, bad data, or an "all" target over an empty catalog).
    """
    data = achievement.criteria_data or {}
    criteria = achievement.criteria_type

    if criteria == "rank_achieved":
        target_rank = data.get("rank")
        if not target_rank or not is_valid_rank(target_rank):
            logger.warning("Achievement %s has invalid target rank %r", achievement.code, target_rank)
            return 0, 0
        return ctx.rank_ordinal(), rank_ordinal(target_rank)

    if criteria == "badge_count":
        badge_type = data.get("badge_type", "all")
        target_count = data.get("target_count", achievement.criteria_value)
        earned = await ctx.earned_badges(badge_type)
        if target_count == "all":
            # Dynamic denominator: follows the current catalog size
            return earned, await ctx.catalog_badges(badge_type)
        return earned, int(target_count or 0)

    if criteria == "profile_field":
        field_name = data.get("field")
        if field_name not in PROFILE_FIELDS:
            logger.warning("Achievement %s has invalid profile field %r", achievement.code, field_name)
            return 0, 0
        value = getattr(ctx.user, field_name)
        return (1 if value else 0), 1

    if criteria == "quests_completed":
        return await ctx.total_quests(), achievement.criteria_value

    if criteria == "streak_weeks":
        return max(ctx.user.longest_streak, ctx.user.current_streak), achievement.criteria_value

    logger.warning("Unknown criteria type %r on achievement %s", criteria, achievement.code)
    return 0, 0


def _relevant_to_context(achievement: Achievement, context: dict[str, Any]) -> bool:
    """Profile achievements only react to the fields the update touched."""
    updated = context.get("updated_fields")
    if achievement.criteria_type != "profile_field" or not updated:
        return True
    return (achievement.criteria_data or {}).get("field") in updated


async def get_earned_achievement_ids(db: AsyncSession, user_id: int) -> set[int]:
    result = await db.execute(
        select(UserAchievement.achievement_id).where(UserAchievement.user_id == user_id)
    )
    return set(result.scalars())


async def get_rank_achievement_ordinals(db: AsyncSession) -> set[int]:
    """Target rank ordinals that have an active rank achievement registered."""
    result = await db.execute(
        select(Achievement).where(
            Achievement.is_active.is_(True),
            Achievement.type == "rank",
            Achievement.criteria_type == "rank_achieved",
        )
    )
    ordinals: set[int] = set()
    for ach in result.scalars():
        target = (ach.criteria_data or {}).get("rank")
        if target and is_valid_rank(target):
            ordinals.add(rank_ordinal(target))
    return ordinals


async def check_and_award_achievements(
    db: AsyncSession,
    user_id: int,
    trigger_type: str,
    context: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> AchievementCheckResult:
    """Evaluate and unlock the achievements a trigger is relevant to.

    Commits. Safe to call concurrently for the same user: the unique
    constraint decides which caller unlocks, the others skip silently.
    """
    achievement_type = TRIGGER_ACHIEVEMENT_TYPES.get(trigger_type)
    if achievement_type is None:
        raise ValidationFailed(
            f"Invalid action type: {trigger_type}. "
            f"Must be one of: {', '.join(TRIGGER_ACHIEVEMENT_TYPES)}"
        )
    if now is None:
        now = datetime.now(timezone.utc)
    context = context or {}

    user = await require_user(db, user_id)
    result = await db.execute(
        select(Achievement)
        .where(Achievement.is_active.is_(True), Achievement.type == achievement_type)
        .order_by(Achievement.sort_order, Achievement.id)
    )
    candidates = list(result.scalars())
    earned = await get_earned_achievement_ids(db, user_id)
    ctx = CriteriaContext(db, user, context)

    outcome = AchievementCheckResult()
    for achievement in candidates:
        if achievement.id in earned or not _relevant_to_context(achievement, context):
            continue
        current, target = await evaluate_progress(achievement, ctx)
        if target <= 0 or current < target:
            continue

        inserted = await insert_ignore(
            db,
            UserAchievement,
            {
                "user_id": user_id,
                "achievement_id": achievement.id,
                "earned_at": now,
                "xp_awarded": achievement.xp_reward,
                "notification_seen": False,
            },
            index_elements=["user_id", "achievement_id"],
        )
        if inserted is None:
            continue  # Unlocked by a concurrent trigger

        await grant_xp(
            db,
            user_id,
            achievement.xp_reward,
            source="achievement",
            source_id=achievement.code,
            idempotency_key=f"achievement:{achievement.id}:{user_id}",
            now=now,
        )
        outcome.new_achievements.append(achievement)
        outcome.xp_awarded += achievement.xp_reward

    await db.commit()
    if outcome.new_achievements:
        logger.info(
            "User %d unlocked %d achievement(s) via %s (+%d XP)",
            user_id,
            len(outcome.new_achievements),
            trigger_type,
            outcome.xp_awarded,
        )
    return outcome


async def verify_achievements(
    db: AsyncSession,
    user_id: int,
    now: datetime | None = None,
) -> AchievementCheckResult:
    """Pull-based re-sync: re-run every trigger to catch up on missed events."""
    combined = AchievementCheckResult()
    for trigger_type in TRIGGER_ACHIEVEMENT_TYPES:
        combined.merge(await check_and_award_achievements(db, user_id, trigger_type, now=now))
    return combined


async def list_achievements_with_progress(db: AsyncSession, user_id: int) -> list[dict[str, Any]]:
    """Every active achievement with unlock state and progress toward it."""
    user = await require_user(db, user_id)
    result = await db.execute(
        select(Achievement)
        .where(Achievement.is_active.is_(True))
        .order_by(Achievement.category, Achievement.sort_order, Achievement.id)
    )
    achievements = list(result.scalars())

    earned_result = await db.execute(select(UserAchievement).where(UserAchievement.user_id == user_id))
    earned = {ua.achievement_id: ua for ua in earned_result.scalars()}
    ctx = CriteriaContext(db, user)

    items = []
    for ach in achievements:
        current, target = await evaluate_progress(ach, ctx)
        unlocked = earned.get(ach.id)
        if unlocked is not None:
            percentage = 100.0
        elif target > 0:
            percentage = min(100.0, round(current / target * 100, 1))
        else:
            percentage = 0.0
        items.append({
            "id": ach.id,
            "code": ach.code,
            "name": ach.name,
            "description": ach.description,
            "type": ach.type,
            "category": ach.category,
            "xp_reward": ach.xp_reward,
            "unlocked": unlocked is not None,
            "earned_at": unlocked.earned_at if unlocked else None,
            "progress": {"current": current, "target": target, "percentage": percentage},
        })
    return items


async def get_unseen_achievements(db: AsyncSession, user_id: int) -> list[UserAchievement]:
    result = await db.execute(
        select(UserAchievement)
        .where(
            UserAchievement.user_id == user_id,
            UserAchievement.notification_seen.is_(False),
        )
        .order_by(UserAchievement.earned_at)
    )
    return list(result.scalars().unique())


async def mark_achievements_seen(db: AsyncSession, user_id: int, achievement_ids: list[int]) -> int:
    """Mark unlocked achievements as seen. Returns number of rows updated."""
    if not achievement_ids:
        return 0
    result = await db.execute(
        update(UserAchievement)
        .where(
            UserAchievement.user_id == user_id,
            UserAchievement.achievement_id.in_(achievement_ids),
            UserAchievement.notification_seen.is_(False),
        )
        .values(notification_seen=True)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount
