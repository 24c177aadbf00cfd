"""Pydantic response models for rank and leaderboard endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


# --- Rank ---


class RankTierResponse(BaseModel):
    code: str
    name: str
    short_name: str
    category: str
    order: int
    min_xp: int


class UserRankResponse(BaseModel):
    user_id: int
    position: int | None
    total_users: int
    competitive_rank: str
    competitive_rank_name: str
    base_rank: str
    base_rank_name: str
    highest_rank_ever: str
    total_xp: int
    level: int
    xp_to_next_rank: int | None
    rank_achieved_at: datetime | None = None


class UserAheadResponse(BaseModel):
    user_id: int
    name: str | None
    total_xp: int
    position: int | None


class RankProgressResponse(BaseModel):
    user_id: int
    position: int | None
    competitive_rank: str
    next_competitive_rank: str | None
    user_ahead: UserAheadResponse | None
    xp_needed: int
    base_rank: str
    next_base_rank: str | None
    xp_to_next_rank: int | None
    base_progress_percentage: float


class RankStatisticsResponse(BaseModel):
    total_users: int
    distribution: dict[str, int]


class RankHolderResponse(BaseModel):
    user_id: int
    name: str | None
    position: int | None
    total_xp: int


class RankHoldersResponse(BaseModel):
    rank: str
    users: list[RankHolderResponse]


# --- Recalculation ---


class RankChangeResponse(BaseModel):
    user_id: int
    old_rank: str
    new_rank: str
    change_kind: str
    position: int


class RecalculationResponse(BaseModel):
    total_users: int
    promotions: int
    demotions: int
    maintained: int
    achievements_awarded: int
    duration_ms: int
    changes: list[RankChangeResponse]
    errors: list[dict]


# --- Leaderboard ---


class LeaderboardEntry(BaseModel):
    position: int
    user_id: int
    name: str | None
    image: str | None
    total_xp: int
    level: int
    competitive_rank: str
    base_rank: str
    xp_to_next_rank: int | None = None


class LeaderboardPagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class LeaderboardStats(BaseModel):
    total_users: int
    average_xp: float
    top_xp: int


class LeaderboardResponse(BaseModel):
    entries: list[LeaderboardEntry]
    pagination: LeaderboardPagination
    stats: LeaderboardStats
    generated_at: datetime


class CacheInvalidationResponse(BaseModel):
    keys_deleted: int
