"""Quest access decisions.

``evaluate_quest_access`` is a pure function over already-loaded facts.
``check_quest_access`` loads those facts for a user and never writes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rankquest.db.models import DutyPassUnlock, User, WeeklyQuestProgress
from rankquest.errors import ValidationFailed
from rankquest.quests.week_utils import QUEST_DAYS, day_index, get_week_start, is_weekend, weekday_tag


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    code: str
    reason: str


def evaluate_quest_access(
    requested_day: str,
    today: str,
    completed_days: set[str] | list[str],
    unlocked_days: set[str] | list[str],
) -> AccessDecision:
    """Decide whether ``requested_day``'s quest may be opened or answered today.

    Rules, first match wins:
    1. weekends: nothing is available
    2. completed quests can always be replayed
    3. today's quest is open
    4. future weekdays are not yet available
    5. past weekdays need a duty pass unlock for this week
    """
    if is_weekend(today):
        return AccessDecision(False, "weekend", "Quests are unavailable on weekends")
    if requested_day in completed_days:
        return AccessDecision(True, "completed_replay", "Quest already completed; replay allowed")
    if requested_day == today:
        return AccessDecision(True, "today", "Today's quest is available")
    if day_index(requested_day) > day_index(today):
        return AccessDecision(False, "not_yet_available", f"The {requested_day} quest is not yet available")
    if requested_day in unlocked_days:
        return AccessDecision(True, "duty_pass", "Unlocked with a Duty Pass")
    return AccessDecision(False, "missed", f"You missed the {requested_day} quest. Use a Duty Pass to unlock it")


def validate_quest_day(day: str) -> str:
    """Normalize a weekday tag, raising ValidationFailed for anything else."""
    tag = day.strip().lower()
    if tag not in QUEST_DAYS:
        raise ValidationFailed(f"Invalid quest day: {day}. Must be one of: {', '.join(QUEST_DAYS)}")
    return tag


async def get_unlocked_days(db: AsyncSession, user_id: int, week_start: date) -> set[str]:
    result = await db.execute(
        select(DutyPassUnlock.quest_day).where(
            DutyPassUnlock.user_id == user_id,
            DutyPassUnlock.week_start_date == week_start,
        )
    )
    return set(result.scalars())


async def check_quest_access(
    db: AsyncSession,
    user: User,
    requested_day: str,
    now: datetime | None = None,
) -> AccessDecision:
    """Load the user's week facts and evaluate access to ``requested_day``."""
    day = validate_quest_day(requested_day)
    if now is None:
        now = datetime.now(timezone.utc)
    week_start = get_week_start(now, user.timezone)

    result = await db.execute(
        select(WeeklyQuestProgress).where(
            WeeklyQuestProgress.user_id == user.id,
            WeeklyQuestProgress.week_start_date == week_start,
        )
    )
    progress = result.scalar_one_or_none()
    completed = set(progress.completed_days) if progress else set()
    unlocked = await get_unlocked_days(db, user.id, week_start)

    return evaluate_quest_access(day, weekday_tag(now, user.timezone), completed, unlocked)
