"""Progression tables.

Creates users, xp_events, achievements, user_achievements, badges,
user_badges, weekly_quest_progress and duty_pass_unlocks.

Revision ID: 001_progression_tables
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_progression_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id BIGSERIAL PRIMARY KEY,
            email VARCHAR(320) UNIQUE,
            name VARCHAR(128),
            image TEXT,
            role VARCHAR(16) NOT NULL DEFAULT 'user',
            status VARCHAR(16) NOT NULL DEFAULT 'active',
            timezone VARCHAR(64) NOT NULL DEFAULT 'Asia/Manila',
            total_xp INTEGER NOT NULL DEFAULT 0,
            current_rank VARCHAR(16) NOT NULL DEFAULT 'Cadet',
            highest_rank_ever VARCHAR(16) NOT NULL DEFAULT 'Cadet',
            leaderboard_position INTEGER,
            rank_achieved_at TIMESTAMPTZ,
            rank_history JSON NOT NULL DEFAULT '[]',
            current_streak INTEGER NOT NULL DEFAULT 0,
            longest_streak INTEGER NOT NULL DEFAULT 0,
            duty_passes INTEGER NOT NULL DEFAULT 0,
            last_duty_pass_claim TIMESTAMPTZ,
            weekly_quest_start_date DATE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_users_ranking
        ON users(total_xp DESC, created_at ASC, id ASC)
        WHERE status = 'active'
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_users_position
        ON users(leaderboard_position)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_users_current_rank
        ON users(current_rank)
    """)

    # --- XP Events ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS xp_events (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            amount INTEGER NOT NULL,
            source VARCHAR(32) NOT NULL,
            source_id VARCHAR(128) NOT NULL,
            idempotency_key VARCHAR(256) UNIQUE NOT NULL,
            created_at TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_xp_events_user_time
        ON xp_events(user_id, created_at DESC)
    """)

    # --- Achievements ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS achievements (
            id SERIAL PRIMARY KEY,
            code VARCHAR(64) UNIQUE NOT NULL,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            type VARCHAR(32) NOT NULL,
            criteria_type VARCHAR(32) NOT NULL,
            criteria_value INTEGER NOT NULL DEFAULT 0,
            criteria_data JSON NOT NULL DEFAULT '{}',
            category VARCHAR(32) NOT NULL DEFAULT 'general',
            sort_order INTEGER NOT NULL DEFAULT 0,
            xp_reward INTEGER NOT NULL DEFAULT 0,
            is_active BOOLEAN NOT NULL DEFAULT true
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_achievements_type
        ON achievements(type)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS user_achievements (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            achievement_id INTEGER NOT NULL REFERENCES achievements(id),
            earned_at TIMESTAMPTZ NOT NULL,
            xp_awarded INTEGER NOT NULL DEFAULT 0,
            notification_seen BOOLEAN NOT NULL DEFAULT false,
            CONSTRAINT user_achievements_user_id_achievement_id_key UNIQUE (user_id, achievement_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_user_achievements_unseen
        ON user_achievements(user_id) WHERE notification_seen = false
    """)

    # --- Badges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS badges (
            id SERIAL PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            category VARCHAR(32) NOT NULL DEFAULT 'learning',
            trigger_type VARCHAR(32) NOT NULL,
            trigger_value VARCHAR(128),
            rarity VARCHAR(16) NOT NULL DEFAULT 'common',
            xp_value INTEGER NOT NULL DEFAULT 0,
            mastery_level VARCHAR(16),
            prerequisites JSON NOT NULL DEFAULT '[]',
            sort_order INTEGER NOT NULL DEFAULT 0,
            is_active BOOLEAN NOT NULL DEFAULT true
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_badges_trigger
        ON badges(trigger_type, trigger_value)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS user_badges (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            badge_id INTEGER NOT NULL REFERENCES badges(id),
            earned_at TIMESTAMPTZ NOT NULL,
            CONSTRAINT user_badges_user_id_badge_id_key UNIQUE (user_id, badge_id)
        )
    """)

    # --- Weekly Quests ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS weekly_quest_progress (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            week_start_date DATE NOT NULL,
            monday_completed BOOLEAN NOT NULL DEFAULT false,
            tuesday_completed BOOLEAN NOT NULL DEFAULT false,
            wednesday_completed BOOLEAN NOT NULL DEFAULT false,
            thursday_completed BOOLEAN NOT NULL DEFAULT false,
            friday_completed BOOLEAN NOT NULL DEFAULT false,
            total_quests_completed INTEGER NOT NULL DEFAULT 0,
            reward_claimed BOOLEAN NOT NULL DEFAULT false,
            reward_xp INTEGER NOT NULL DEFAULT 0,
            claimed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT weekly_quest_progress_user_id_week_start_key UNIQUE (user_id, week_start_date),
            CHECK (total_quests_completed BETWEEN 0 AND 5)
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS duty_pass_unlocks (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            week_start_date DATE NOT NULL,
            quest_day VARCHAR(16) NOT NULL,
            unlocked_at TIMESTAMPTZ NOT NULL,
            CONSTRAINT duty_pass_unlocks_user_week_day_key UNIQUE (user_id, week_start_date, quest_day)
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS duty_pass_unlocks CASCADE")
    op.execute("DROP TABLE IF EXISTS weekly_quest_progress CASCADE")
    op.execute("DROP TABLE IF EXISTS user_badges CASCADE")
    op.execute("DROP TABLE IF EXISTS badges CASCADE")
    op.execute("DROP TABLE IF EXISTS user_achievements CASCADE")
    op.execute("DROP TABLE IF EXISTS achievements CASCADE")
    op.execute("DROP TABLE IF EXISTS xp_events CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
