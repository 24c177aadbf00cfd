"""Pydantic request/response models for achievement and badge endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


# --- Achievements ---


class AchievementProgress(BaseModel):
    current: int
    target: int
    percentage: float


class AchievementResponse(BaseModel):
    id: int
    code: str
    name: str
    description: str
    type: str
    category: str
    xp_reward: int
    unlocked: bool
    earned_at: datetime | None = None
    progress: AchievementProgress


class AchievementListResponse(BaseModel):
    achievements: list[AchievementResponse]
    total: int
    unlocked: int


class UnlockedAchievement(BaseModel):
    id: int
    code: str
    name: str
    xp_reward: int


class AchievementCheckRequest(BaseModel):
    action_type: str
    context: dict[str, Any] = Field(default_factory=dict)


class AchievementCheckResponse(BaseModel):
    new_achievements: list[UnlockedAchievement]
    xp_awarded: int


class UnseenAchievement(BaseModel):
    achievement_id: int
    code: str
    name: str
    xp_awarded: int
    earned_at: datetime


class UnseenAchievementsResponse(BaseModel):
    achievements: list[UnseenAchievement]


class MarkSeenRequest(BaseModel):
    achievement_ids: list[int]


class MarkSeenResponse(BaseModel):
    updated: int


# --- Badges ---


class EarnedBadgeResponse(BaseModel):
    badge_id: int
    name: str
    category: str
    rarity: str
    xp_value: int
    earned_at: datetime


class UserBadgesResponse(BaseModel):
    earned: list[EarnedBadgeResponse]
    total_earned: int


class BadgeStatsResponse(BaseModel):
    total_earned: int
    total_available: int
    completion_percentage: float
    by_rarity: dict[str, int]


class AwardedBadge(BaseModel):
    badge_id: int
    name: str
    rarity: str
    xp_value: int


# --- Completion events ---


class LessonCompleteRequest(BaseModel):
    module_id: str | None = None
    module_completed: bool = False


class QuizCompleteRequest(BaseModel):
    percentage: float = Field(ge=0, le=100)
    mastery_tier: str | None = None
    module_id: str | None = None
    module_quizzes_mastered: bool = False


class ProgressEventResponse(BaseModel):
    xp_granted: int
    badges_awarded: list[AwardedBadge]
    badge_errors: list[dict]
    new_achievements: list[UnlockedAchievement]
    achievement_xp: int
    rank_changes: int
