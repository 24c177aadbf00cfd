"""Achievement, badge and learning-progress API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from rankquest.achievements.achievement_service import (
    get_unseen_achievements,
    list_achievements_with_progress,
    mark_achievements_seen,
)
from rankquest.achievements.badge_service import get_user_badge_stats, get_user_badges
from rankquest.achievements.schemas import (
    AchievementCheckRequest,
    AchievementCheckResponse,
    AchievementListResponse,
    AchievementResponse,
    AwardedBadge,
    BadgeStatsResponse,
    EarnedBadgeResponse,
    LessonCompleteRequest,
    MarkSeenRequest,
    MarkSeenResponse,
    ProgressEventResponse,
    QuizCompleteRequest,
    UnlockedAchievement,
    UnseenAchievement,
    UnseenAchievementsResponse,
    UserBadgesResponse,
)
from rankquest.auth.dependencies import get_current_user
from rankquest.db.models import Achievement, User
from rankquest.dependencies import get_db, get_redis_dep
from rankquest.pipeline import (
    PipelineResult,
    on_achievement_check,
    on_achievements_verified,
    on_lesson_completed,
    on_quiz_completed,
)

router = APIRouter(prefix="/api/v1", tags=["Achievements"])


def _unlocked(achievements: list[Achievement]) -> list[UnlockedAchievement]:
    return [
        UnlockedAchievement(id=a.id, code=a.code, name=a.name, xp_reward=a.xp_reward)
        for a in achievements
    ]


def _progress_response(outcome: PipelineResult) -> ProgressEventResponse:
    badges = outcome.badges
    return ProgressEventResponse(
        xp_granted=outcome.xp_granted,
        badges_awarded=[
            AwardedBadge(badge_id=b.id, name=b.name, rarity=b.rarity, xp_value=b.xp_value)
            for b in (badges.awarded if badges else [])
        ],
        badge_errors=badges.errors if badges else [],
        new_achievements=_unlocked(outcome.achievements.new_achievements),
        achievement_xp=outcome.achievements.xp_awarded,
        rank_changes=len(outcome.recalculation.changes) if outcome.recalculation else 0,
    )


# ── Achievements ──


@router.get("/achievements", response_model=AchievementListResponse)
async def list_achievements(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> AchievementListResponse:
    """All active achievements with unlock state and progress."""
    items = await list_achievements_with_progress(db, user.id)
    return AchievementListResponse(
        achievements=[AchievementResponse(**item) for item in items],
        total=len(items),
        unlocked=sum(1 for item in items if item["unlocked"]),
    )


@router.get("/achievements/unseen", response_model=UnseenAchievementsResponse)
async def unseen_achievements(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> UnseenAchievementsResponse:
    rows = await get_unseen_achievements(db, user.id)
    return UnseenAchievementsResponse(
        achievements=[
            UnseenAchievement(
                achievement_id=ua.achievement_id,
                code=ua.achievement.code,
                name=ua.achievement.name,
                xp_awarded=ua.xp_awarded,
                earned_at=ua.earned_at,
            )
            for ua in rows
        ],
    )


@router.post("/achievements/seen", response_model=MarkSeenResponse)
async def mark_seen(
    body: MarkSeenRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> MarkSeenResponse:
    return MarkSeenResponse(updated=await mark_achievements_seen(db, user.id, body.achievement_ids))


@router.post("/achievements/check", response_model=AchievementCheckResponse)
async def check_achievements(
    body: AchievementCheckRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis: Redis | None = Depends(get_redis_dep),
) -> AchievementCheckResponse:
    """Evaluate the achievements relevant to an action the client just performed."""
    outcome = await on_achievement_check(db, redis, user.id, body.action_type, context=body.context)
    return AchievementCheckResponse(
        new_achievements=_unlocked(outcome.achievements.new_achievements),
        xp_awarded=outcome.achievements.xp_awarded,
    )


@router.post("/achievements/verify", response_model=AchievementCheckResponse)
async def verify(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis: Redis | None = Depends(get_redis_dep),
) -> AchievementCheckResponse:
    """Re-run every trigger to catch up on achievements missed by earlier events."""
    outcome = await on_achievements_verified(db, redis, user.id)
    return AchievementCheckResponse(
        new_achievements=_unlocked(outcome.achievements.new_achievements),
        xp_awarded=outcome.achievements.xp_awarded,
    )


# ── Badges ──


@router.get("/badges/me", response_model=UserBadgesResponse)
async def my_badges(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> UserBadgesResponse:
    rows = await get_user_badges(db, user.id)
    earned = [
        EarnedBadgeResponse(
            badge_id=ub.badge_id,
            name=ub.badge.name,
            category=ub.badge.category,
            rarity=ub.badge.rarity,
            xp_value=ub.badge.xp_value,
            earned_at=ub.earned_at,
        )
        for ub in rows
    ]
    return UserBadgesResponse(earned=earned, total_earned=len(earned))


@router.get("/badges/me/stats", response_model=BadgeStatsResponse)
async def my_badge_stats(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return await get_user_badge_stats(db, user.id)


# ── Learning progress ──


@router.post("/progress/lessons/{lesson_id}/complete", response_model=ProgressEventResponse)
async def complete_lesson(
    lesson_id: str,
    body: LessonCompleteRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis: Redis | None = Depends(get_redis_dep),
) -> ProgressEventResponse:
    """Record a lesson completion: XP, badges, achievements and rank refresh."""
    outcome = await on_lesson_completed(
        db,
        redis,
        user.id,
        lesson_id,
        module_id=body.module_id,
        module_completed=body.module_completed,
    )
    return _progress_response(outcome)


@router.post("/progress/quizzes/{quiz_id}/complete", response_model=ProgressEventResponse)
async def complete_quiz(
    quiz_id: str,
    body: QuizCompleteRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis: Redis | None = Depends(get_redis_dep),
) -> ProgressEventResponse:
    """Record a quiz attempt: XP, mastery badges, achievements and rank refresh."""
    outcome = await on_quiz_completed(
        db,
        redis,
        user.id,
        quiz_id,
        body.percentage,
        mastery_tier=body.mastery_tier,
        module_id=body.module_id,
        module_quizzes_mastered=body.module_quizzes_mastered,
    )
    return _progress_response(outcome)
