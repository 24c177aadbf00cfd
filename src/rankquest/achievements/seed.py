"""Achievement seed data: one achievement per rank tier plus quest and badge milestones."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from rankquest.db.models import Achievement
from rankquest.db.upsert import insert_ignore
from rankquest.ranks.rank_table import RANKS

logger = logging.getLogger(__name__)

# Rank achievements start above the entry tier
RANK_ACHIEVEMENTS: list[dict] = [
    {
        "code": f"rank_{rank['code'].lower()}",
        "name": rank["name"],
        "description": f"Reach the rank of {rank['name']}",
        "type": "rank",
        "criteria_type": "rank_achieved",
        "criteria_value": rank["order"],
        "criteria_data": {"rank": rank["code"]},
        "category": "rank",
        "sort_order": rank["order"],
        "xp_reward": 25 * rank["order"],
    }
    for rank in RANKS[1:]
]

ACHIEVEMENT_SEED_DATA: list[dict] = [
    *RANK_ACHIEVEMENTS,
    # Profile
    {
        "code": "profile_photo",
        "name": "Face of the Force",
        "description": "Upload a profile photo",
        "type": "profile",
        "criteria_type": "profile_field",
        "criteria_value": 1,
        "criteria_data": {"field": "image"},
        "category": "profile",
        "sort_order": 1,
        "xp_reward": 25,
    },
    # Badge milestones
    {
        "code": "first_badge",
        "name": "First Ribbon",
        "description": "Earn your first badge",
        "type": "badge_milestone",
        "criteria_type": "badge_count",
        "criteria_value": 1,
        "criteria_data": {"badge_type": "all", "target_count": 1},
        "category": "badges",
        "sort_order": 1,
        "xp_reward": 50,
    },
    {
        "code": "learning_badges_10",
        "name": "Scholar",
        "description": "Earn 10 learning badges",
        "type": "badge_milestone",
        "criteria_type": "badge_count",
        "criteria_value": 10,
        "criteria_data": {"badge_type": "learning", "target_count": 10},
        "category": "badges",
        "sort_order": 2,
        "xp_reward": 150,
    },
    {
        "code": "quiz_badges_all",
        "name": "Quiz Master",
        "description": "Earn every quiz mastery badge",
        "type": "badge_milestone",
        "criteria_type": "badge_count",
        "criteria_value": 0,
        "criteria_data": {"badge_type": "quiz", "target_count": "all"},
        "category": "badges",
        "sort_order": 3,
        "xp_reward": 500,
    },
    # Quests
    {
        "code": "first_quest",
        "name": "Reporting for Duty",
        "description": "Complete your first daily quest",
        "type": "quest",
        "criteria_type": "quests_completed",
        "criteria_value": 1,
        "criteria_data": {},
        "category": "quests",
        "sort_order": 1,
        "xp_reward": 25,
    },
    {
        "code": "quests_25",
        "name": "Seasoned Recruit",
        "description": "Complete 25 daily quests",
        "type": "quest",
        "criteria_type": "quests_completed",
        "criteria_value": 25,
        "criteria_data": {},
        "category": "quests",
        "sort_order": 2,
        "xp_reward": 100,
    },
    {
        "code": "streak_4",
        "name": "Month of Service",
        "description": "Keep a four-week quest streak",
        "type": "quest",
        "criteria_type": "streak_weeks",
        "criteria_value": 4,
        "criteria_data": {},
        "category": "quests",
        "sort_order": 3,
        "xp_reward": 200,
    },
]


async def seed_achievements(db: AsyncSession) -> int:
    """Insert missing achievement definitions. Existing codes are left untouched."""
    seeded = 0
    for data in ACHIEVEMENT_SEED_DATA:
        inserted = await insert_ignore(db, Achievement, {**data, "is_active": True}, index_elements=["code"])
        if inserted is not None:
            seeded += 1
    await db.commit()
    logger.info("Seeded %d achievement definitions", seeded)
    return seeded
