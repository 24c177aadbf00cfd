"""Pydantic request/response models for weekly quest and duty pass endpoints."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel


class QuestAccessResponse(BaseModel):
    day: str
    allowed: bool
    code: str
    reason: str


class QuestSubmitRequest(BaseModel):
    correct: bool


class QuestSubmitResponse(BaseModel):
    day: str
    correct: bool
    recorded: bool
    state: str
    completed_days: list[str]
    total_quests_completed: int
    new_achievements: list[str] = []


class WeeklyStatusResponse(BaseModel):
    week_start: date
    today: str
    state: str
    completed_days: list[str]
    total_quests_completed: int
    unlocked_days: list[str]
    reward_claimed: bool
    reward_xp: int
    reward_preview: int
    can_claim_reward: bool
    current_streak: int
    longest_streak: int
    duty_passes: int
    days: list[QuestAccessResponse]


class RewardClaimResponse(BaseModel):
    week_start: date
    days_completed: int
    reward_xp: int
    claimed_at: datetime


class DutyPassUnlockResponse(BaseModel):
    day: str
    unlocked_at: datetime


class DutyPassStatusResponse(BaseModel):
    duty_passes: int
    can_claim: bool
    claimed_this_week: bool
    last_claim: datetime | None
    unlocks: list[DutyPassUnlockResponse]


class DutyPassClaimResponse(BaseModel):
    duty_passes: int


class DutyPassUseRequest(BaseModel):
    day: str


class DutyPassUseResponse(BaseModel):
    day: str
    unlocked_at: datetime
    duty_passes: int
