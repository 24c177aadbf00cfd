"""Timezone-aware quest week boundaries.

A quest week starts Monday 00:00 in the user's own timezone. "Today" and
"this week" are always functions of (instant, timezone), never of the
server's local clock.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from rankquest.config import get_settings

DAY_TAGS: tuple[str, ...] = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)
QUEST_DAYS: tuple[str, ...] = DAY_TAGS[:5]


def resolve_timezone(tz_name: str | None) -> ZoneInfo:
    """ZoneInfo for a user's timezone, falling back to the configured default."""
    default = get_settings().default_timezone
    try:
        return ZoneInfo(tz_name or default)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo(default)


def as_utc(dt: datetime) -> datetime:
    """Normalize a stored timestamp to an aware UTC datetime.

    SQLite hands back naive datetimes; everything the engine writes is UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def user_now(tz_name: str | None, now: datetime | None = None) -> datetime:
    """Current instant expressed in the user's timezone."""
    if now is None:
        now = datetime.now(timezone.utc)
    return as_utc(now).astimezone(resolve_timezone(tz_name))


def get_week_start(now: datetime, tz_name: str | None) -> date:
    """Monday (local date) of the quest week containing ``now``."""
    local = user_now(tz_name, now)
    d = local.date()
    return d - timedelta(days=d.weekday())


def get_week_start_instant(now: datetime, tz_name: str | None) -> datetime:
    """Monday 00:00 local time of the current quest week, as an aware UTC datetime."""
    monday = get_week_start(now, tz_name)
    local_midnight = datetime.combine(monday, time.min, tzinfo=resolve_timezone(tz_name))
    return local_midnight.astimezone(timezone.utc)


def weekday_tag(now: datetime, tz_name: str | None) -> str:
    """Day tag ('monday'..'sunday') of ``now`` in the user's timezone."""
    return DAY_TAGS[user_now(tz_name, now).weekday()]


def day_index(tag: str) -> int:
    """0 for monday .. 6 for sunday. Raises ValueError for unknown tags."""
    return DAY_TAGS.index(tag)


def is_weekend(tag: str) -> bool:
    return tag in ("saturday", "sunday")


def is_quest_day(tag: str) -> bool:
    return tag in QUEST_DAYS
