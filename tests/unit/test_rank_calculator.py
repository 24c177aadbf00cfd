"""Rank recalculation: positions, competitive ranks, ratchet and idempotency."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from rankquest.db.models import UserAchievement
from rankquest.errors import NotFound
from rankquest.ranks import calculator
from rankquest.ranks.calculator import (
    RANK_HISTORY_LIMIT,
    classify_change,
    get_rank_progress,
    get_rank_statistics,
    get_user_rank,
    get_users_by_rank,
    initialize_new_user_rank,
    recalculate_all,
)

NOW = datetime(2026, 10, 19, 4, 0, tzinfo=timezone.utc)


class TestClassifyChange:
    def test_promotion(self):
        assert classify_change("Pat", "PCOL") == "promotion"

    def test_demotion(self):
        assert classify_change("PCOL", "Pat") == "demotion"

    def test_maintained(self):
        assert classify_change("PLT", "PLT") == "maintained"

    def test_unknown_stored_rank_counts_as_lowest(self):
        assert classify_change("Recruit", "Pat") == "promotion"
        assert classify_change("Recruit", "Cadet") == "maintained"


class TestRecalculateAll:
    """Population-wide pass."""

    @pytest.mark.asyncio
    async def test_equal_xp_split_by_registration_order(self, db_session, make_user):
        """Two users tied on XP: the earlier registration takes position 1."""
        first = await make_user(total_xp=500)
        second = await make_user(total_xp=500)
        for _ in range(98):
            await make_user(total_xp=0)

        await recalculate_all(db_session, now=NOW)
        await db_session.refresh(first)
        await db_session.refresh(second)

        assert first.leaderboard_position == 1
        assert first.current_rank == "PGEN"
        assert second.leaderboard_position == 2
        assert second.current_rank == "PBGEN"
        assert first.base_rank == second.base_rank == "PSSg"

    @pytest.mark.asyncio
    async def test_single_user_is_top_rank(self, db_session, make_user):
        user = await make_user(total_xp=0)
        outcome = await recalculate_all(db_session, now=NOW)
        await db_session.refresh(user)

        assert outcome.total_users == 1
        assert user.leaderboard_position == 1
        assert user.current_rank == "PGEN"
        assert user.highest_rank_ever == "PGEN"

    @pytest.mark.asyncio
    async def test_empty_population(self, db_session):
        outcome = await recalculate_all(db_session, now=NOW)
        assert outcome.total_users == 0
        assert outcome.changes == []

    @pytest.mark.asyncio
    async def test_inactive_users_excluded(self, db_session, make_user):
        active = await make_user(total_xp=10)
        suspended = await make_user(total_xp=9999, status="suspended")

        outcome = await recalculate_all(db_session, now=NOW)
        await db_session.refresh(active)
        await db_session.refresh(suspended)

        assert outcome.total_users == 1
        assert active.leaderboard_position == 1
        assert suspended.leaderboard_position is None

    @pytest.mark.asyncio
    async def test_second_pass_changes_nothing(self, db_session, make_user):
        users = [await make_user(total_xp=xp) for xp in (900, 400, 100, 0)]
        first = await recalculate_all(db_session, now=NOW)
        assert first.promotions > 0

        snapshot = []
        for u in users:
            await db_session.refresh(u)
            snapshot.append((u.leaderboard_position, u.current_rank, len(u.rank_history)))

        second = await recalculate_all(db_session, now=NOW)
        assert second.changes == []
        assert second.maintained == 4
        for u, before in zip(users, snapshot):
            await db_session.refresh(u)
            assert (u.leaderboard_position, u.current_rank, len(u.rank_history)) == before

    @pytest.mark.asyncio
    async def test_demotion_keeps_highest_rank(self, db_session, make_user):
        """Overtaken users drop in competitive rank, the ratchet stays."""
        leader = await make_user(total_xp=1000)
        await make_user(total_xp=10)
        await recalculate_all(db_session, now=NOW)
        await db_session.refresh(leader)
        assert leader.current_rank == "PGEN"

        await make_user(total_xp=5000)
        outcome = await recalculate_all(db_session, now=NOW)
        await db_session.refresh(leader)

        assert leader.leaderboard_position == 2
        assert leader.current_rank != "PGEN"
        assert leader.highest_rank_ever == "PGEN"
        assert any(c.user_id == leader.id and c.change_kind == "demotion" for c in outcome.changes)

    @pytest.mark.asyncio
    async def test_rank_history_appended_and_bounded(self, db_session, make_user):
        history = [{"rank": "Cadet", "position": None, "total_xp": 0, "timestamp": "t"}] * RANK_HISTORY_LIMIT
        user = await make_user(total_xp=50, rank_history=history)

        await recalculate_all(db_session, now=NOW)
        await db_session.refresh(user)

        assert len(user.rank_history) == RANK_HISTORY_LIMIT
        assert user.rank_history[-1]["rank"] == "PGEN"
        assert user.rank_history[-1]["position"] == 1
        assert user.rank_achieved_at is not None

    @pytest.mark.asyncio
    async def test_rank_achievement_awarded_on_promotion(self, db_session, make_user, make_achievement):
        ach = await make_achievement(
            code="rank_pgen",
            type="rank",
            criteria_type="rank_achieved",
            criteria_data={"rank": "PGEN"},
            xp_reward=100,
        )
        user = await make_user(total_xp=0)

        outcome = await recalculate_all(db_session, now=NOW)
        await db_session.refresh(user)

        assert outcome.achievements_awarded == 1
        assert user.total_xp == 100
        rows = (await db_session.execute(select(UserAchievement).where(UserAchievement.user_id == user.id))).scalars().all()
        assert [r.achievement_id for r in rows] == [ach.id]

        # Re-running never awards twice
        again = await recalculate_all(db_session, now=NOW)
        assert again.achievements_awarded == 0


class TestRecalculationFailures:
    @pytest.mark.asyncio
    async def test_failing_user_is_skipped(self, db_session, make_user, monkeypatch):
        first = await make_user(total_xp=300)
        broken = await make_user(total_xp=200)
        third = await make_user(total_xp=100)
        real_apply = calculator._apply_rank

        def flaky_apply(user, position, new_rank, now):
            if user.id == broken.id:
                raise OperationalError("UPDATE users", {}, Exception("deadlock detected"))
            return real_apply(user, position, new_rank, now)

        monkeypatch.setattr(calculator, "_apply_rank", flaky_apply)

        outcome = await recalculate_all(db_session, now=NOW)
        for user in (first, broken, third):
            await db_session.refresh(user)

        assert [e["user_id"] for e in outcome.errors] == [broken.id]
        assert first.leaderboard_position == 1
        assert broken.leaderboard_position is None
        assert third.leaderboard_position == 3
        assert outcome.total_users == 3


class TestInitializeNewUser:
    @pytest.mark.asyncio
    async def test_starts_on_lowest_tier(self, db_session, make_user):
        user = await make_user(current_rank="PLT", highest_rank_ever="PLT")
        user = await initialize_new_user_rank(db_session, user.id, now=NOW)

        assert user.current_rank == "Cadet"
        assert user.highest_rank_ever == "Cadet"
        assert user.leaderboard_position is None
        assert user.rank_history[0]["rank"] == "Cadet"


class TestReadModels:
    @pytest.mark.asyncio
    async def test_user_rank_card(self, db_session, make_user):
        top = await make_user(total_xp=1250)
        await make_user(total_xp=100)
        await recalculate_all(db_session, now=NOW)

        card = await get_user_rank(db_session, top.id)
        assert card["position"] == 1
        assert card["total_users"] == 2
        assert card["competitive_rank"] == "PGEN"
        assert card["competitive_rank_name"] == "Police General"
        assert card["base_rank"] == "PSMS"
        assert card["level"] == 13
        assert card["xp_to_next_rank"] == 1700 - 1250

    @pytest.mark.asyncio
    async def test_unknown_user_raises(self, db_session):
        with pytest.raises(NotFound):
            await get_user_rank(db_session, 999)

    @pytest.mark.asyncio
    async def test_progress_names_user_ahead(self, db_session, make_user):
        leader = await make_user(total_xp=800)
        chaser = await make_user(total_xp=650)
        await recalculate_all(db_session, now=NOW)

        progress = await get_rank_progress(db_session, chaser.id)
        assert progress["user_ahead"]["user_id"] == leader.id
        assert progress["xp_needed"] == 150
        assert progress["base_rank"] == "PSSg"
        assert progress["next_base_rank"] == "PMSg"
        assert progress["base_progress_percentage"] == 50.0

    @pytest.mark.asyncio
    async def test_leader_has_no_user_ahead(self, db_session, make_user):
        leader = await make_user(total_xp=800)
        await recalculate_all(db_session, now=NOW)

        progress = await get_rank_progress(db_session, leader.id)
        assert progress["user_ahead"] is None
        assert progress["xp_needed"] == 0

    @pytest.mark.asyncio
    async def test_statistics_zero_filled(self, db_session, make_user):
        await make_user(total_xp=10)
        await make_user(total_xp=5)
        await recalculate_all(db_session, now=NOW)

        stats = await get_rank_statistics(db_session)
        assert stats["total_users"] == 2
        assert stats["distribution"]["PGEN"] == 1
        assert stats["distribution"]["Cadet"] == 1
        assert stats["distribution"]["PLT"] == 0
        assert len(stats["distribution"]) == 17

    @pytest.mark.asyncio
    async def test_users_by_rank(self, db_session, make_user):
        top = await make_user(total_xp=10)
        await make_user(total_xp=5)
        await recalculate_all(db_session, now=NOW)

        holders = await get_users_by_rank(db_session, "PGEN")
        assert [u.id for u in holders] == [top.id]

    @pytest.mark.asyncio
    async def test_users_by_unknown_rank(self, db_session):
        with pytest.raises(NotFound):
            await get_users_by_rank(db_session, "NOPE")
