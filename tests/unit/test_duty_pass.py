"""Duty passes: Sunday claims and spending on missed days."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from rankquest.db.models import DutyPassUnlock
from rankquest.errors import Conflict, ValidationFailed
from rankquest.quests.access import check_quest_access
from rankquest.quests.duty_pass import claim_duty_pass, get_duty_pass_status, use_duty_pass
from rankquest.quests.weekly_service import record_quest_completion
from tests.conftest import at


async def _unlock_count(db) -> int:
    return (await db.execute(select(func.count(DutyPassUnlock.id)))).scalar_one()


class TestClaimDutyPass:
    @pytest.mark.asyncio
    async def test_sunday_claim(self, db_session, make_user):
        user = await make_user()
        assert await claim_duty_pass(db_session, user.id, now=at("sunday")) == 1

    @pytest.mark.asyncio
    async def test_second_claim_same_week_rejected(self, db_session, make_user):
        user = await make_user()
        await claim_duty_pass(db_session, user.id, now=at("sunday", hour=9))

        with pytest.raises(Conflict, match="already claimed this week"):
            await claim_duty_pass(db_session, user.id, now=at("sunday", hour=20))
        await db_session.refresh(user)
        assert user.duty_passes == 1

    @pytest.mark.asyncio
    async def test_next_sunday_claims_again(self, db_session, make_user):
        user = await make_user()
        await claim_duty_pass(db_session, user.id, now=at("sunday"))
        assert await claim_duty_pass(db_session, user.id, now=at("sunday", weeks=1)) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("day", ["monday", "wednesday", "saturday"])
    async def test_non_sunday_rejected(self, db_session, make_user, day):
        user = await make_user()
        with pytest.raises(ValidationFailed, match="only be claimed on Sunday"):
            await claim_duty_pass(db_session, user.id, now=at(day))


class TestUseDutyPass:
    @pytest.mark.asyncio
    async def test_spend_unlocks_missed_day(self, db_session, make_user):
        user = await make_user(duty_passes=2)

        unlock = await use_duty_pass(db_session, user.id, "wednesday", now=at("thursday"))
        await db_session.refresh(user)

        assert unlock.quest_day == "wednesday"
        assert user.duty_passes == 1
        assert await _unlock_count(db_session) == 1
        decision = await check_quest_access(db_session, user, "wednesday", at("thursday"))
        assert decision.allowed is True
        assert decision.code == "duty_pass"

    @pytest.mark.asyncio
    async def test_second_spend_same_day_rejected(self, db_session, make_user):
        user = await make_user(duty_passes=2)
        await use_duty_pass(db_session, user.id, "wednesday", now=at("thursday"))

        with pytest.raises(Conflict, match="already unlocked"):
            await use_duty_pass(db_session, user.id, "wednesday", now=at("thursday", hour=18))
        await db_session.refresh(user)

        assert user.duty_passes == 1
        assert await _unlock_count(db_session) == 1

    @pytest.mark.asyncio
    async def test_no_passes_left(self, db_session, make_user):
        user = await make_user(duty_passes=0)
        with pytest.raises(Conflict, match="No duty passes available"):
            await use_duty_pass(db_session, user.id, "monday", now=at("tuesday"))
        assert await _unlock_count(db_session) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("day", ["thursday", "friday"])
    async def test_today_or_future_not_missed(self, db_session, make_user, day):
        user = await make_user(duty_passes=1)
        with pytest.raises(Conflict, match="not missed"):
            await use_duty_pass(db_session, user.id, day, now=at("thursday"))

    @pytest.mark.asyncio
    async def test_completed_day_rejected(self, db_session, make_user):
        user = await make_user(duty_passes=1)
        await record_quest_completion(db_session, user.id, "monday", now=at("monday"))

        with pytest.raises(Conflict, match="already completed"):
            await use_duty_pass(db_session, user.id, "monday", now=at("wednesday"))
        await db_session.refresh(user)
        assert user.duty_passes == 1

    @pytest.mark.asyncio
    async def test_weekend_rejected(self, db_session, make_user):
        user = await make_user(duty_passes=1)
        with pytest.raises(ValidationFailed, match="weekends"):
            await use_duty_pass(db_session, user.id, "friday", now=at("saturday"))

    @pytest.mark.asyncio
    async def test_invalid_day_rejected(self, db_session, make_user):
        user = await make_user(duty_passes=1)
        with pytest.raises(ValidationFailed, match="Invalid quest day"):
            await use_duty_pass(db_session, user.id, "someday", now=at("thursday"))

    @pytest.mark.asyncio
    async def test_unlocked_day_then_completed(self, db_session, make_user):
        user = await make_user(duty_passes=1)
        await use_duty_pass(db_session, user.id, "monday", now=at("wednesday"))

        result = await record_quest_completion(db_session, user.id, "monday", now=at("wednesday", hour=13))
        assert result.recorded is True
        assert result.progress.completed_days == ["monday"]


class TestDutyPassStatus:
    @pytest.mark.asyncio
    async def test_status_before_and_after_claim(self, db_session, make_user):
        user = await make_user()

        before = await get_duty_pass_status(db_session, user.id, now=at("sunday"))
        assert before["can_claim"] is True
        assert before["claimed_this_week"] is False

        await claim_duty_pass(db_session, user.id, now=at("sunday"))
        after = await get_duty_pass_status(db_session, user.id, now=at("sunday", hour=13))
        assert after["duty_passes"] == 1
        assert after["can_claim"] is False
        assert after["claimed_this_week"] is True

    @pytest.mark.asyncio
    async def test_status_lists_unlocks(self, db_session, make_user):
        user = await make_user(duty_passes=1)
        await use_duty_pass(db_session, user.id, "tuesday", now=at("thursday"))

        status = await get_duty_pass_status(db_session, user.id, now=at("thursday"))
        assert [u["day"] for u in status["unlocks"]] == ["tuesday"]
        assert status["can_claim"] is False
