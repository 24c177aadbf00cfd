"""Achievement checks: trigger routing, criteria, idempotency, seen state."""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest
from sqlalchemy import func, select

from rankquest.achievements import achievement_service
from rankquest.achievements.achievement_service import (
    check_and_award_achievements,
    get_unseen_achievements,
    list_achievements_with_progress,
    mark_achievements_seen,
    verify_achievements,
)
from rankquest.achievements.badge_service import (
    award_badges_for_lesson_completion,
    award_badges_for_quiz_completion,
)
from rankquest.achievements.seed import ACHIEVEMENT_SEED_DATA, seed_achievements
from rankquest.db.models import Achievement, UserAchievement, WeeklyQuestProgress
from rankquest.db.upsert import insert_ignore
from rankquest.errors import ValidationFailed


class TestTriggerRouting:
    @pytest.mark.asyncio
    async def test_unknown_trigger_rejected(self, db_session, make_user):
        user = await make_user()
        with pytest.raises(ValidationFailed, match="Invalid action type"):
            await check_and_award_achievements(db_session, user.id, "lesson_viewed")

    @pytest.mark.asyncio
    async def test_only_matching_type_evaluated(self, db_session, make_user, make_achievement):
        user = await make_user(image="https://cdn.example.com/me.png")
        await make_achievement(
            code="photo", type="profile", criteria_type="profile_field", criteria_data={"field": "image"}
        )

        outcome = await check_and_award_achievements(db_session, user.id, "quest_completed")
        assert outcome.new_achievements == []


class TestProfileAchievements:
    @pytest.mark.asyncio
    async def test_profile_field_unlocks(self, db_session, make_user, make_achievement):
        user = await make_user(image="https://cdn.example.com/me.png")
        await make_achievement(
            code="photo",
            type="profile",
            criteria_type="profile_field",
            criteria_data={"field": "image"},
            xp_reward=25,
        )

        outcome = await check_and_award_achievements(
            db_session, user.id, "profile_update", context={"updated_fields": ["image"]}
        )
        await db_session.refresh(user)

        assert [a.code for a in outcome.new_achievements] == ["photo"]
        assert outcome.xp_awarded == 25
        assert user.total_xp == 25

    @pytest.mark.asyncio
    async def test_unrelated_field_update_skips(self, db_session, make_user, make_achievement):
        user = await make_user(image="https://cdn.example.com/me.png")
        await make_achievement(
            code="photo", type="profile", criteria_type="profile_field", criteria_data={"field": "image"}
        )

        outcome = await check_and_award_achievements(
            db_session, user.id, "profile_update", context={"updated_fields": ["name"]}
        )
        assert outcome.new_achievements == []

    @pytest.mark.asyncio
    async def test_empty_field_does_not_unlock(self, db_session, make_user, make_achievement):
        user = await make_user(image=None)
        await make_achievement(
            code="photo", type="profile", criteria_type="profile_field", criteria_data={"field": "image"}
        )

        outcome = await check_and_award_achievements(db_session, user.id, "profile_update")
        assert outcome.new_achievements == []


class TestIdempotency:
    @pytest.mark.asyncio
    async def test_never_awarded_twice(self, db_session, make_user, make_achievement):
        user = await make_user(image="x.png")
        await make_achievement(
            code="photo",
            type="profile",
            criteria_type="profile_field",
            criteria_data={"field": "image"},
            xp_reward=25,
        )

        first = await check_and_award_achievements(db_session, user.id, "profile_update")
        second = await check_and_award_achievements(db_session, user.id, "profile_update")
        await db_session.refresh(user)

        assert len(first.new_achievements) == 1
        assert second.new_achievements == []
        assert user.total_xp == 25
        count = (await db_session.execute(select(func.count(UserAchievement.id)))).scalar_one()
        assert count == 1

    @pytest.mark.asyncio
    async def test_concurrent_unlock_is_a_no_op(self, db_session, make_user, make_achievement, monkeypatch):
        """Another request unlocks the achievement after this check read the earned set."""
        user = await make_user(image="x.png")
        photo = await make_achievement(
            code="photo",
            type="profile",
            criteria_type="profile_field",
            criteria_data={"field": "image"},
            xp_reward=25,
        )
        real_earned = achievement_service.get_earned_achievement_ids

        async def earned_then_unlocked_elsewhere(db, user_id):
            earned = await real_earned(db, user_id)
            await insert_ignore(
                db,
                UserAchievement,
                {
                    "user_id": user_id,
                    "achievement_id": photo.id,
                    "earned_at": datetime(2026, 10, 19, tzinfo=timezone.utc),
                    "xp_awarded": 0,
                    "notification_seen": False,
                },
                index_elements=["user_id", "achievement_id"],
            )
            return earned

        monkeypatch.setattr(achievement_service, "get_earned_achievement_ids", earned_then_unlocked_elsewhere)

        outcome = await check_and_award_achievements(db_session, user.id, "profile_update")
        await db_session.refresh(user)

        assert outcome.new_achievements == []
        assert outcome.xp_awarded == 0
        assert user.total_xp == 0
        count = (await db_session.execute(select(func.count(UserAchievement.id)))).scalar_one()
        assert count == 1


class TestBadgeMilestones:
    @pytest.mark.asyncio
    async def test_literal_target(self, db_session, make_user, make_badge, make_achievement):
        user = await make_user()
        await make_badge(trigger_value="L1")
        await make_badge(trigger_value="L2")
        await make_achievement(
            code="two_badges",
            type="badge_milestone",
            criteria_type="badge_count",
            criteria_data={"badge_type": "learning", "target_count": 2},
        )

        await award_badges_for_lesson_completion(db_session, user.id, "L1")
        one = await check_and_award_achievements(db_session, user.id, "badge_earned")
        assert one.new_achievements == []

        await award_badges_for_lesson_completion(db_session, user.id, "L2")
        two = await check_and_award_achievements(db_session, user.id, "badge_earned")
        assert [a.code for a in two.new_achievements] == ["two_badges"]

    @pytest.mark.asyncio
    async def test_all_target_follows_catalog(self, db_session, make_user, make_badge, make_achievement):
        user = await make_user()
        await make_badge(trigger_type="quiz_mastery", trigger_value="Q1", mastery_level="bronze")
        await make_badge(trigger_type="quiz_mastery", trigger_value="Q2", mastery_level="bronze")
        await make_achievement(
            code="all_quizzes",
            type="badge_milestone",
            criteria_type="badge_count",
            criteria_data={"badge_type": "quiz", "target_count": "all"},
        )

        await award_badges_for_quiz_completion(db_session, user.id, "Q1", 80)
        progress = {a["code"]: a["progress"] for a in await list_achievements_with_progress(db_session, user.id)}
        assert progress["all_quizzes"] == {"current": 1, "target": 2, "percentage": 50.0}

        await award_badges_for_quiz_completion(db_session, user.id, "Q2", 80)
        outcome = await check_and_award_achievements(db_session, user.id, "badge_earned")
        assert [a.code for a in outcome.new_achievements] == ["all_quizzes"]

    @pytest.mark.asyncio
    async def test_all_target_with_empty_catalog_never_unlocks(self, db_session, make_user, make_achievement):
        user = await make_user()
        await make_achievement(
            code="all_quizzes",
            type="badge_milestone",
            criteria_type="badge_count",
            criteria_data={"badge_type": "quiz", "target_count": "all"},
        )

        outcome = await check_and_award_achievements(db_session, user.id, "badge_earned")
        assert outcome.new_achievements == []


class TestRankAndQuestCriteria:
    @pytest.mark.asyncio
    async def test_rank_reached_through_base_rank(self, db_session, make_user, make_achievement):
        """XP alone can satisfy a rank achievement before any recalculation."""
        user = await make_user(total_xp=500)
        await make_achievement(
            code="rank_pssg", type="rank", criteria_type="rank_achieved", criteria_data={"rank": "PSSg"}
        )

        outcome = await check_and_award_achievements(db_session, user.id, "rank_promotion")
        assert [a.code for a in outcome.new_achievements] == ["rank_pssg"]

    @pytest.mark.asyncio
    async def test_invalid_target_rank_never_unlocks(self, db_session, make_user, make_achievement):
        user = await make_user(total_xp=50000)
        await make_achievement(
            code="bogus", type="rank", criteria_type="rank_achieved", criteria_data={"rank": "ADMIRAL"}
        )

        outcome = await check_and_award_achievements(db_session, user.id, "rank_promotion")
        assert outcome.new_achievements == []

    @pytest.mark.asyncio
    async def test_quests_completed_sums_weeks(self, db_session, make_user, make_achievement):
        user = await make_user()
        await make_achievement(code="quests_5", type="quest", criteria_type="quests_completed", criteria_value=5)
        db_session.add_all([
            WeeklyQuestProgress(user_id=user.id, week_start_date=date(2026, 10, 5), total_quests_completed=3),
            WeeklyQuestProgress(user_id=user.id, week_start_date=date(2026, 10, 12), total_quests_completed=2),
        ])
        await db_session.commit()

        outcome = await check_and_award_achievements(db_session, user.id, "quest_completed")
        assert [a.code for a in outcome.new_achievements] == ["quests_5"]

    @pytest.mark.asyncio
    async def test_streak_uses_longest(self, db_session, make_user, make_achievement):
        user = await make_user(current_streak=0, longest_streak=4)
        await make_achievement(code="streak_4", type="quest", criteria_type="streak_weeks", criteria_value=4)

        outcome = await check_and_award_achievements(db_session, user.id, "quest_completed")
        assert [a.code for a in outcome.new_achievements] == ["streak_4"]


class TestVerifyAndSeen:
    @pytest.mark.asyncio
    async def test_verify_runs_every_trigger(self, db_session, make_user, make_achievement):
        user = await make_user(total_xp=500, image="x.png")
        await make_achievement(
            code="rank_pssg", type="rank", criteria_type="rank_achieved", criteria_data={"rank": "PSSg"}
        )
        await make_achievement(
            code="photo", type="profile", criteria_type="profile_field", criteria_data={"field": "image"}
        )

        outcome = await verify_achievements(db_session, user.id)
        assert {a.code for a in outcome.new_achievements} == {"rank_pssg", "photo"}

    @pytest.mark.asyncio
    async def test_unseen_then_marked_seen(self, db_session, make_user, make_achievement):
        user = await make_user(image="x.png")
        ach = await make_achievement(
            code="photo", type="profile", criteria_type="profile_field", criteria_data={"field": "image"}
        )
        await check_and_award_achievements(db_session, user.id, "profile_update")

        unseen = await get_unseen_achievements(db_session, user.id)
        assert [ua.achievement_id for ua in unseen] == [ach.id]

        assert await mark_achievements_seen(db_session, user.id, [ach.id]) == 1
        assert await get_unseen_achievements(db_session, user.id) == []
        assert await mark_achievements_seen(db_session, user.id, [ach.id]) == 0


class TestSeed:
    @pytest.mark.asyncio
    async def test_seed_is_idempotent(self, db_session):
        assert await seed_achievements(db_session) == len(ACHIEVEMENT_SEED_DATA)
        assert await seed_achievements(db_session) == 0

        count = (await db_session.execute(select(func.count(Achievement.id)))).scalar_one()
        assert count == len(ACHIEVEMENT_SEED_DATA)
