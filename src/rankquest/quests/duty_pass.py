"""Duty passes: a weekly Sunday claim, spent to unlock one missed quest day.

The pass counter and the DutyPassUnlock rows move together: one
decrement for one new unlock row, inside a single transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rankquest.auth.service import require_user
from rankquest.db.models import DutyPassUnlock, User
from rankquest.db.upsert import insert_ignore
from rankquest.errors import Conflict, ValidationFailed
from rankquest.quests.access import validate_quest_day
from rankquest.quests.week_utils import as_utc, day_index, get_week_start_instant, is_weekend, weekday_tag
from rankquest.quests.weekly_service import ensure_current_week

logger = logging.getLogger(__name__)


def _claimed_this_week(user: User, now: datetime) -> bool:
    if user.last_duty_pass_claim is None:
        return False
    return as_utc(user.last_duty_pass_claim) >= get_week_start_instant(now, user.timezone)


async def claim_duty_pass(db: AsyncSession, user_id: int, now: datetime | None = None) -> int:
    """Claim this week's duty pass (Sundays only). Returns the new pass count. Commits."""
    if now is None:
        now = datetime.now(timezone.utc)
    user = await require_user(db, user_id)

    if weekday_tag(now, user.timezone) != "sunday":
        raise ValidationFailed("Duty passes can only be claimed on Sunday")

    week_start = get_week_start_instant(now, user.timezone)
    result = await db.execute(
        update(User)
        .where(
            User.id == user_id,
            or_(User.last_duty_pass_claim.is_(None), User.last_duty_pass_claim < week_start),
        )
        .values(duty_passes=User.duty_passes + 1, last_duty_pass_claim=as_utc(now))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise Conflict("Duty pass already claimed this week")

    await db.commit()
    await db.refresh(user)
    logger.info("User %d claimed a duty pass (now %d)", user_id, user.duty_passes)
    return user.duty_passes


async def use_duty_pass(
    db: AsyncSession,
    user_id: int,
    day: str,
    now: datetime | None = None,
) -> DutyPassUnlock:
    """Spend one duty pass to unlock a missed weekday of the current week. Commits.

    Raises ValidationFailed for a malformed day or on weekends, Conflict
    when the day is not actually missed, already unlocked, or no passes remain.
    """
    day = validate_quest_day(day)
    if now is None:
        now = datetime.now(timezone.utc)
    user = await require_user(db, user_id)

    today = weekday_tag(now, user.timezone)
    if is_weekend(today):
        raise ValidationFailed("Duty passes cannot be used on weekends")
    if day_index(day) >= day_index(today):
        raise Conflict(f"The {day} quest is not missed")

    progress = await ensure_current_week(db, user, now)
    if day in progress.completed_days:
        await db.commit()
        raise Conflict(f"The {day} quest is already completed")

    existing = await db.execute(
        select(DutyPassUnlock.id).where(
            DutyPassUnlock.user_id == user_id,
            DutyPassUnlock.week_start_date == progress.week_start_date,
            DutyPassUnlock.quest_day == day,
        )
    )
    if existing.scalar_one_or_none() is not None:
        await db.commit()
        raise Conflict(f"The {day} quest is already unlocked")

    result = await db.execute(
        update(User)
        .where(User.id == user_id, User.duty_passes > 0)
        .values(duty_passes=User.duty_passes - 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise Conflict("No duty passes available")

    unlock_id = await insert_ignore(
        db,
        DutyPassUnlock,
        {
            "user_id": user_id,
            "week_start_date": progress.week_start_date,
            "quest_day": day,
            "unlocked_at": as_utc(now),
        },
        index_elements=["user_id", "week_start_date", "quest_day"],
    )
    if unlock_id is None:
        # Lost a race with a concurrent spend for the same day
        await db.rollback()
        raise Conflict(f"The {day} quest is already unlocked")

    await db.commit()
    unlock = await db.get(DutyPassUnlock, unlock_id)
    logger.info("User %d used a duty pass on %s", user_id, day)
    return unlock  # type: ignore[return-value]


async def get_duty_pass_status(db: AsyncSession, user_id: int, now: datetime | None = None) -> dict[str, Any]:
    """Pass count, claim availability and this week's unlocks."""
    if now is None:
        now = datetime.now(timezone.utc)
    user = await require_user(db, user_id)
    progress = await ensure_current_week(db, user, now)
    await db.commit()

    result = await db.execute(
        select(DutyPassUnlock)
        .where(
            DutyPassUnlock.user_id == user_id,
            DutyPassUnlock.week_start_date == progress.week_start_date,
        )
        .order_by(DutyPassUnlock.unlocked_at)
    )
    claimed = _claimed_this_week(user, now)
    return {
        "duty_passes": user.duty_passes,
        "can_claim": weekday_tag(now, user.timezone) == "sunday" and not claimed,
        "claimed_this_week": claimed,
        "last_claim": user.last_duty_pass_claim,
        "unlocks": [{"day": u.quest_day, "unlocked_at": u.unlocked_at} for u in result.scalars()],
    }
