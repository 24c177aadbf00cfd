"""Weekly quest state machine: completion, reward chest, rollover and streaks.

State progression per (user, week):
    not_started -> active (1-4 days) -> complete (5 days) -> claimed
A partially completed week may also be claimed at a lower reward tier.
Past weeks are never modified once a new week has started.

Every counter change is a conditional UPDATE guarded on the value it
expects to change, so duplicate or concurrent submissions cannot
double-count.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rankquest.auth.service import require_user
from rankquest.config import get_settings
from rankquest.db.models import WEEKDAY_TAGS, User, WeeklyQuestProgress
from rankquest.db.upsert import insert_ignore
from rankquest.errors import Conflict, Forbidden, InternalError, ValidationFailed
from rankquest.quests.access import check_quest_access, evaluate_quest_access, get_unlocked_days, validate_quest_day
from rankquest.quests.week_utils import as_utc, get_week_start, is_weekend, weekday_tag
from rankquest.ranks.xp_service import grant_xp

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: dict[str, list[str]] = {
    "not_started": ["active"],
    "active": ["active", "complete", "claimed"],
    "complete": ["claimed"],
    "claimed": [],
}


def validate_transition(current_state: str, target_state: str) -> None:
    """Validate a weekly state transition. Raises ValueError if invalid."""
    valid = VALID_TRANSITIONS.get(current_state, [])
    if target_state not in valid:
        raise ValueError(
            f"Invalid transition: {current_state} -> {target_state}. "
            f"Valid transitions: {valid}"
        )


def week_state(progress: WeeklyQuestProgress | None) -> str:
    """Current state of a weekly progress row."""
    if progress is None or progress.total_quests_completed == 0:
        return "not_started"
    if progress.reward_claimed:
        return "claimed"
    if progress.total_quests_completed >= len(WEEKDAY_TAGS):
        return "complete"
    return "active"


def get_reward_tier(days_completed: int) -> int:
    """Reward chest XP for a number of completed days (0 below the first tier)."""
    tiers = get_settings().weekly_reward_tiers
    return tiers.get(min(days_completed, len(WEEKDAY_TAGS)), 0)


@dataclass
class QuestCompletionResult:
    day: str
    recorded: bool
    state: str
    progress: WeeklyQuestProgress


@dataclass
class RewardClaimResult:
    week_start: date
    days_completed: int
    reward_xp: int
    claimed_at: datetime


# ---------------------------------------------------------------------------
# Rollover / streaks
# ---------------------------------------------------------------------------


async def _get_week_row(db: AsyncSession, user_id: int, week_start: date) -> WeeklyQuestProgress | None:
    result = await db.execute(
        select(WeeklyQuestProgress)
        .where(
            WeeklyQuestProgress.user_id == user_id,
            WeeklyQuestProgress.week_start_date == week_start,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def week_was_kept(db: AsyncSession, user_id: int, week_start: date) -> bool:
    """True if every weekday of the week was completed or recovered with a duty pass."""
    progress = await _get_week_row(db, user_id, week_start)
    covered = set(progress.completed_days) if progress else set()
    covered |= await get_unlocked_days(db, user_id, week_start)
    return all(day in covered for day in WEEKDAY_TAGS)


async def evaluate_streak(db: AsyncSession, user: User, new_week_start: date) -> tuple[int, int]:
    """Streak values to store when moving ``user`` into ``new_week_start``.

    A kept previous week extends the streak; a broken week, or a gap of
    more than one week, resets it to 0. longest_streak never decreases.
    """
    previous = user.weekly_quest_start_date
    current = user.current_streak
    if previous is None or previous >= new_week_start:
        return current, user.longest_streak

    if new_week_start - previous == timedelta(weeks=1) and await week_was_kept(db, user.id, previous):
        current += 1
    else:
        current = 0
    return current, max(user.longest_streak, current)


async def ensure_current_week(db: AsyncSession, user: User, now: datetime | None = None) -> WeeklyQuestProgress:
    """Roll the user into the current quest week if needed and return its progress row.

    The rollover UPDATE is conditional on the previously stored week start,
    so when two requests race only one of them evaluates the streak.
    Does not commit.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    week_start = get_week_start(now, user.timezone)
    previous = user.weekly_quest_start_date

    if previous != week_start:
        streak, longest = await evaluate_streak(db, user, week_start)
        guard = (
            User.weekly_quest_start_date.is_(None)
            if previous is None
            else User.weekly_quest_start_date == previous
        )
        result = await db.execute(
            update(User)
            .where(User.id == user.id, guard)
            .values(weekly_quest_start_date=week_start, current_streak=streak, longest_streak=longest)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            logger.info(
                "User %d rolled into week %s (streak %d -> %d)",
                user.id,
                week_start,
                user.current_streak,
                streak,
            )
        await db.refresh(user)

    progress = await _get_week_row(db, user.id, week_start)
    if progress is None:
        await insert_ignore(
            db,
            WeeklyQuestProgress,
            {
                "user_id": user.id,
                "week_start_date": week_start,
                "total_quests_completed": 0,
                "reward_claimed": False,
                "reward_xp": 0,
                "created_at": as_utc(now),
            },
            index_elements=["user_id", "week_start_date"],
        )
        progress = await _get_week_row(db, user.id, week_start)
    if progress is None:
        raise InternalError("Weekly progress row missing after insert")
    return progress


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


async def record_quest_completion(
    db: AsyncSession,
    user_id: int,
    day: str,
    now: datetime | None = None,
) -> QuestCompletionResult:
    """Mark ``day`` completed for the current week. Duplicate submissions are no-ops.

    Raises Forbidden when the access rules deny the day. Commits.
    """
    day = validate_quest_day(day)
    if now is None:
        now = datetime.now(timezone.utc)

    user = await require_user(db, user_id)
    progress = await ensure_current_week(db, user, now)
    decision = await check_quest_access(db, user, day, now)
    if not decision.allowed:
        await db.commit()
        raise Forbidden(decision.reason)

    before = week_state(progress)
    column = getattr(WeeklyQuestProgress, f"{day}_completed")
    result = await db.execute(
        update(WeeklyQuestProgress)
        .where(WeeklyQuestProgress.id == progress.id, column.is_(False))
        .values({
            f"{day}_completed": True,
            "total_quests_completed": WeeklyQuestProgress.total_quests_completed + 1,
        })
        .execution_options(synchronize_session=False)
    )
    recorded = result.rowcount == 1
    await db.commit()
    await db.refresh(progress)

    after = week_state(progress)
    if recorded:
        validate_transition(before, after)
        logger.info("User %d completed %s quest (%d/5)", user_id, day, progress.total_quests_completed)
    return QuestCompletionResult(day=day, recorded=recorded, state=after, progress=progress)


async def claim_weekly_reward(
    db: AsyncSession,
    user_id: int,
    now: datetime | None = None,
) -> RewardClaimResult:
    """Claim the reward chest for the current week (Saturday/Sunday only). Commits.

    Raises ValidationFailed on a weekday, Conflict when already claimed or
    when too few quests were completed.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    user = await require_user(db, user_id)

    if not is_weekend(weekday_tag(now, user.timezone)):
        raise ValidationFailed("Weekly rewards can only be claimed on Saturday or Sunday")

    progress = await ensure_current_week(db, user, now)
    state = week_state(progress)
    days = progress.total_quests_completed
    minimum = max(1, get_settings().weekly_reward_min_quests)

    if state == "claimed":
        await db.commit()
        raise Conflict("Weekly reward already claimed this week")
    if days < minimum:
        await db.commit()
        raise Conflict(f"Complete at least {minimum} quest(s) this week to claim a reward")
    validate_transition(state, "claimed")

    reward = get_reward_tier(days)
    claimed_at = as_utc(now)
    result = await db.execute(
        update(WeeklyQuestProgress)
        .where(
            WeeklyQuestProgress.id == progress.id,
            WeeklyQuestProgress.reward_claimed.is_(False),
            WeeklyQuestProgress.total_quests_completed == days,
        )
        .values(reward_claimed=True, reward_xp=reward, claimed_at=claimed_at)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise Conflict("Weekly reward already claimed this week")

    await grant_xp(
        db,
        user_id,
        reward,
        source="weekly_reward",
        source_id=progress.week_start_date.isoformat(),
        idempotency_key=f"weekly_reward:{user_id}:{progress.week_start_date.isoformat()}",
        now=claimed_at,
    )
    await db.commit()
    logger.info("User %d claimed weekly reward: %d days, %d XP", user_id, days, reward)
    return RewardClaimResult(
        week_start=progress.week_start_date,
        days_completed=days,
        reward_xp=reward,
        claimed_at=claimed_at,
    )


# ---------------------------------------------------------------------------
# Read model
# ---------------------------------------------------------------------------


async def get_weekly_status(db: AsyncSession, user_id: int, now: datetime | None = None) -> dict[str, Any]:
    """Current week summary. Performs the rollover if this is the first request of the week."""
    if now is None:
        now = datetime.now(timezone.utc)
    user = await require_user(db, user_id)
    progress = await ensure_current_week(db, user, now)
    await db.commit()

    today = weekday_tag(now, user.timezone)
    completed = progress.completed_days
    unlocked = await get_unlocked_days(db, user.id, progress.week_start_date)
    state = week_state(progress)
    days = progress.total_quests_completed
    minimum = max(1, get_settings().weekly_reward_min_quests)

    return {
        "week_start": progress.week_start_date,
        "today": today,
        "state": state,
        "completed_days": completed,
        "total_quests_completed": days,
        "unlocked_days": sorted(unlocked, key=WEEKDAY_TAGS.index),
        "reward_claimed": progress.reward_claimed,
        "reward_xp": progress.reward_xp,
        "reward_preview": get_reward_tier(days),
        "can_claim_reward": is_weekend(today) and state != "claimed" and days >= minimum,
        "current_streak": user.current_streak,
        "longest_streak": user.longest_streak,
        "duty_passes": user.duty_passes,
        "days": [
            {"day": day, **asdict(evaluate_quest_access(day, today, completed, unlocked))}
            for day in WEEKDAY_TAGS
        ],
    }
