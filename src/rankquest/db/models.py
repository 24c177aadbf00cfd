"""ORM models for the progression engine.

Uniqueness constraints on the award tables are the idempotency guarantee:
(user_id, achievement_id), (user_id, badge_id), (user_id, week_start_date)
and (user_id, week_start_date, quest_day) are each created at most once.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    false,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rankquest.db.base import Base, BigIntPK
from rankquest.ranks.rank_table import base_rank_for_xp, compute_level

WEEKDAY_TAGS: tuple[str, ...] = ("monday", "tuesday", "wednesday", "thursday", "friday")


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """A learner. Progression fields are written only by the engine."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    email: Mapped[str | None] = mapped_column(String(320), unique=True, nullable=True)
    name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    image: Mapped[str | None] = mapped_column(Text, nullable=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="user", server_default="user")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active", server_default="active")
    timezone: Mapped[str] = mapped_column(
        String(64), nullable=False, default="Asia/Manila", server_default="Asia/Manila"
    )

    # --- Rank ---
    total_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    current_rank: Mapped[str] = mapped_column(String(16), nullable=False, default="Cadet", server_default="Cadet")
    highest_rank_ever: Mapped[str] = mapped_column(
        String(16), nullable=False, default="Cadet", server_default="Cadet"
    )
    leaderboard_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rank_achieved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rank_history: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    # --- Streaks / weekly quests ---
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    duty_passes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_duty_pass_claim: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    weekly_quest_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    @property
    def level(self) -> int:
        return compute_level(self.total_xp)

    @property
    def base_rank(self) -> str:
        return base_rank_for_xp(self.total_xp)


class XPEvent(Base):
    """Append-only XP grant log. idempotency_key makes each grant happen once."""

    __tablename__ = "xp_events"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    source_id: Mapped[str] = mapped_column(String(128), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(256), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Achievements
# ---------------------------------------------------------------------------


class Achievement(Base):
    """Achievement definition (reference data, managed by administration)."""

    __tablename__ = "achievements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    criteria_type: Mapped[str] = mapped_column(String(32), nullable=False)
    criteria_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    criteria_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="general")
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class UserAchievement(Base):
    """Achievements earned by users. UNIQUE(user_id, achievement_id) prevents duplicates."""

    __tablename__ = "user_achievements"
    __table_args__ = (
        UniqueConstraint("user_id", "achievement_id", name="user_achievements_user_id_achievement_id_key"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    achievement_id: Mapped[int] = mapped_column(Integer, ForeignKey("achievements.id"), nullable=False)
    earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    xp_awarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    notification_seen: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )

    achievement: Mapped[Achievement] = relationship("Achievement", lazy="joined")


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------


class Badge(Base):
    """Badge definition (reference data)."""

    __tablename__ = "badges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="learning")
    trigger_type: Mapped[str] = mapped_column(String(32), nullable=False)
    trigger_value: Mapped[str | None] = mapped_column(String(128), nullable=True)
    rarity: Mapped[str] = mapped_column(String(16), nullable=False, default="common")
    xp_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    mastery_level: Mapped[str | None] = mapped_column(String(16), nullable=True)
    prerequisites: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=list)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class UserBadge(Base):
    """Badges earned by users. UNIQUE(user_id, badge_id) prevents duplicates."""

    __tablename__ = "user_badges"
    __table_args__ = (
        UniqueConstraint("user_id", "badge_id", name="user_badges_user_id_badge_id_key"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    badge_id: Mapped[int] = mapped_column(Integer, ForeignKey("badges.id"), nullable=False)
    earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    badge: Mapped[Badge] = relationship("Badge", lazy="joined")


# ---------------------------------------------------------------------------
# Weekly quests
# ---------------------------------------------------------------------------


class WeeklyQuestProgress(Base):
    """One row per user per quest week. Rows for past weeks are history."""

    __tablename__ = "weekly_quest_progress"
    __table_args__ = (
        UniqueConstraint("user_id", "week_start_date", name="weekly_quest_progress_user_id_week_start_key"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    week_start_date: Mapped[date] = mapped_column(Date, nullable=False)
    monday_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    tuesday_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    wednesday_completed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    thursday_completed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    friday_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    total_quests_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    reward_claimed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    reward_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    @property
    def completed_days(self) -> list[str]:
        """Completed weekday tags in Monday-Friday order."""
        return [day for day in WEEKDAY_TAGS if getattr(self, f"{day}_completed")]


class DutyPassUnlock(Base):
    """Audit record of a spent duty pass. Its existence grants access to a missed day."""

    __tablename__ = "duty_pass_unlocks"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "week_start_date", "quest_day", name="duty_pass_unlocks_user_week_day_key"
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    week_start_date: Mapped[date] = mapped_column(Date, nullable=False)
    quest_day: Mapped[str] = mapped_column(String(16), nullable=False)
    unlocked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
