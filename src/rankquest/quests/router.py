"""Weekly quest and duty pass API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from rankquest.auth.dependencies import get_current_user
from rankquest.db.models import User
from rankquest.dependencies import get_db, get_redis_dep
from rankquest.errors import Forbidden
from rankquest.pipeline import on_quest_completed, on_weekly_reward_claimed
from rankquest.quests.access import check_quest_access
from rankquest.quests.duty_pass import claim_duty_pass, get_duty_pass_status, use_duty_pass
from rankquest.quests.schemas import (
    DutyPassClaimResponse,
    DutyPassStatusResponse,
    DutyPassUseRequest,
    DutyPassUseResponse,
    QuestAccessResponse,
    QuestSubmitRequest,
    QuestSubmitResponse,
    RewardClaimResponse,
    WeeklyStatusResponse,
)
from rankquest.quests.weekly_service import get_weekly_status

router = APIRouter(prefix="/api/v1", tags=["Quests"])


# ── Weekly quests ──
# Static paths are declared before /quests/{day} so they are not captured by it.


@router.get("/quests/week", response_model=WeeklyStatusResponse)
async def weekly_status(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    """Current quest week: completed days, unlocks, reward and streak."""
    return await get_weekly_status(db, user.id)


@router.post("/quests/reward/claim", response_model=RewardClaimResponse)
async def claim_reward(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis: Redis | None = Depends(get_redis_dep),
) -> RewardClaimResponse:
    """Open the weekly reward chest (weekends only, once per week)."""
    outcome = await on_weekly_reward_claimed(db, redis, user.id)
    reward = outcome.reward
    return RewardClaimResponse(
        week_start=reward.week_start,
        days_completed=reward.days_completed,
        reward_xp=reward.reward_xp,
        claimed_at=reward.claimed_at,
    )


@router.get("/quests/{day}", response_model=QuestAccessResponse)
async def quest_access(
    day: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> QuestAccessResponse:
    """Whether the quest for ``day`` can be opened right now, and why."""
    decision = await check_quest_access(db, user, day)
    return QuestAccessResponse(
        day=day.strip().lower(),
        allowed=decision.allowed,
        code=decision.code,
        reason=decision.reason,
    )


@router.post("/quests/{day}/submit", response_model=QuestSubmitResponse)
async def submit_quest(
    day: str,
    body: QuestSubmitRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis: Redis | None = Depends(get_redis_dep),
) -> QuestSubmitResponse:
    """Submit an answer. Only a correct answer completes the day."""
    if not body.correct:
        decision = await check_quest_access(db, user, day)
        if not decision.allowed:
            raise Forbidden(decision.reason)
        status = await get_weekly_status(db, user.id)
        return QuestSubmitResponse(
            day=day.strip().lower(),
            correct=False,
            recorded=False,
            state=status["state"],
            completed_days=status["completed_days"],
            total_quests_completed=status["total_quests_completed"],
        )

    outcome = await on_quest_completed(db, redis, user.id, day)
    quest = outcome.quest
    return QuestSubmitResponse(
        day=quest.day,
        correct=True,
        recorded=quest.recorded,
        state=quest.state,
        completed_days=quest.progress.completed_days,
        total_quests_completed=quest.progress.total_quests_completed,
        new_achievements=[a.code for a in outcome.achievements.new_achievements],
    )


# ── Duty passes ──


@router.get("/duty-pass", response_model=DutyPassStatusResponse)
async def duty_pass_status(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return await get_duty_pass_status(db, user.id)


@router.post("/duty-pass/claim", response_model=DutyPassClaimResponse)
async def claim_pass(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> DutyPassClaimResponse:
    """Claim this week's duty pass (Sundays only)."""
    return DutyPassClaimResponse(duty_passes=await claim_duty_pass(db, user.id))


@router.post("/duty-pass/use", response_model=DutyPassUseResponse)
async def use_pass(
    body: DutyPassUseRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> DutyPassUseResponse:
    """Spend one duty pass to unlock a missed weekday quest."""
    unlock = await use_duty_pass(db, user.id, body.day)
    await db.refresh(user)
    return DutyPassUseResponse(day=unlock.quest_day, unlocked_at=unlock.unlocked_at, duty_passes=user.duty_passes)
