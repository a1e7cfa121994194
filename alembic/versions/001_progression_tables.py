"""Progression tables.

Creates the engine-owned tables (user_points, xp_transactions, badges,
user_badges, missions, mission_progress, check_ins). The collaborator
tables it reads (establishments, reviews, photo_uploads, review_votes,
user_follows) are created only if the directory service has not already.

Revision ID: 001_progression_tables
Revises: None
Create Date: 2026-10-18
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_progression_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Collaborator sources ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS establishments (
            id VARCHAR(64) PRIMARY KEY,
            name VARCHAR(200) NOT NULL,
            zone VARCHAR(64) NOT NULL,
            latitude DOUBLE PRECISION,
            longitude DOUBLE PRECISION
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS reviews (
            id VARCHAR(64) PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            establishment_id VARCHAR(64),
            content TEXT NOT NULL DEFAULT '',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_reviews_user_created
        ON reviews(user_id, created_at)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS photo_uploads (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            photo_url VARCHAR(500) NOT NULL,
            entity_type VARCHAR(32) NOT NULL,
            entity_id VARCHAR(64),
            uploaded_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_photo_uploads_user_uploaded
        ON photo_uploads(user_id, uploaded_at)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS review_votes (
            id BIGSERIAL PRIMARY KEY,
            review_id VARCHAR(64) NOT NULL REFERENCES reviews(id) ON DELETE CASCADE,
            user_id VARCHAR(64) NOT NULL,
            vote_type VARCHAR(20) NOT NULL DEFAULT 'helpful',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT review_votes_review_id_user_id_key UNIQUE (review_id, user_id)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_follows (
            id BIGSERIAL PRIMARY KEY,
            follower_id VARCHAR(64) NOT NULL,
            following_id VARCHAR(64) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT user_follows_follower_following_key UNIQUE (follower_id, following_id),
            CONSTRAINT user_follows_no_self_follow CHECK (follower_id <> following_id)
        )
    """)

    # --- Points & ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_points (
            user_id VARCHAR(64) PRIMARY KEY,
            total_xp BIGINT NOT NULL DEFAULT 0,
            monthly_xp BIGINT NOT NULL DEFAULT 0,
            current_level INTEGER NOT NULL DEFAULT 1,
            current_streak_days INTEGER NOT NULL DEFAULT 0,
            longest_streak_days INTEGER NOT NULL DEFAULT 0,
            last_activity_date DATE,
            last_monthly_reset TIMESTAMPTZ,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT user_points_total_xp_check CHECK (total_xp >= 0),
            CONSTRAINT user_points_monthly_xp_check CHECK (monthly_xp >= 0),
            CONSTRAINT user_points_level_check CHECK (current_level >= 1)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_user_points_total_xp ON user_points(total_xp)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_user_points_monthly_xp ON user_points(monthly_xp)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS xp_transactions (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            amount INTEGER NOT NULL,
            source VARCHAR(50) NOT NULL,
            related_entity_type VARCHAR(50),
            related_entity_id VARCHAR(64),
            metadata JSONB,
            idempotency_key VARCHAR(256) UNIQUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT xp_transactions_amount_check CHECK (amount > 0)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_xp_transactions_user_created
        ON xp_transactions(user_id, created_at)
    """)

    # --- Badges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS badges (
            id SERIAL PRIMARY KEY,
            slug VARCHAR(64) UNIQUE NOT NULL,
            name VARCHAR(100) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            category VARCHAR(32) NOT NULL,
            rarity VARCHAR(16) NOT NULL DEFAULT 'common',
            requirement_type VARCHAR(50) NOT NULL,
            requirement_value INTEGER NOT NULL,
            requirement_metadata JSONB NOT NULL DEFAULT '{}',
            xp_reward INTEGER NOT NULL DEFAULT 0,
            is_hidden BOOLEAN NOT NULL DEFAULT false,
            is_active BOOLEAN NOT NULL DEFAULT true,
            sort_order INTEGER NOT NULL DEFAULT 999
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_badges (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            badge_id INTEGER NOT NULL REFERENCES badges(id) ON DELETE CASCADE,
            awarded_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT user_badges_user_id_badge_id_key UNIQUE (user_id, badge_id)
        )
    """)

    # --- Missions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS missions (
            id SERIAL PRIMARY KEY,
            slug VARCHAR(64) UNIQUE NOT NULL,
            name VARCHAR(150) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            type VARCHAR(20) NOT NULL,
            requirement_type VARCHAR(50) NOT NULL,
            target INTEGER NOT NULL DEFAULT 1,
            requirements JSONB NOT NULL DEFAULT '{}',
            reward_xp INTEGER NOT NULL DEFAULT 0,
            reward_badge_id INTEGER REFERENCES badges(id),
            next_mission_id INTEGER REFERENCES missions(id),
            starts_at TIMESTAMPTZ,
            ends_at TIMESTAMPTZ,
            is_active BOOLEAN NOT NULL DEFAULT true,
            sort_order INTEGER NOT NULL DEFAULT 999,
            CONSTRAINT missions_target_check CHECK (target >= 1),
            CONSTRAINT missions_reward_xp_check CHECK (reward_xp >= 0)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_missions_requirement_active
        ON missions(requirement_type, is_active)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS mission_progress (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            mission_id INTEGER NOT NULL REFERENCES missions(id) ON DELETE CASCADE,
            period_key VARCHAR(16) NOT NULL,
            period_start TIMESTAMPTZ,
            progress_counter INTEGER NOT NULL DEFAULT 0,
            target INTEGER NOT NULL,
            completed_at TIMESTAMPTZ,
            expired_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT mission_progress_user_mission_period_key UNIQUE (user_id, mission_id, period_key),
            CONSTRAINT mission_progress_counter_check CHECK (progress_counter >= 0),
            CONSTRAINT mission_progress_counter_target_check CHECK (progress_counter <= target)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_mission_progress_mission_period
        ON mission_progress(mission_id, period_key)
    """)

    # --- Check-ins ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS check_ins (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            establishment_id VARCHAR(64) NOT NULL REFERENCES establishments(id) ON DELETE CASCADE,
            zone VARCHAR(64) NOT NULL,
            latitude DOUBLE PRECISION NOT NULL,
            longitude DOUBLE PRECISION NOT NULL,
            distance_meters DOUBLE PRECISION,
            verified BOOLEAN NOT NULL DEFAULT false,
            dedupe_bucket BIGINT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT check_ins_user_establishment_bucket_key UNIQUE (user_id, establishment_id, dedupe_bucket)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_check_ins_user_created
        ON check_ins(user_id, created_at)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS check_ins CASCADE")
    op.execute("DROP TABLE IF EXISTS mission_progress CASCADE")
    op.execute("DROP TABLE IF EXISTS missions CASCADE")
    op.execute("DROP TABLE IF EXISTS user_badges CASCADE")
    op.execute("DROP TABLE IF EXISTS badges CASCADE")
    op.execute("DROP TABLE IF EXISTS xp_transactions CASCADE")
    op.execute("DROP TABLE IF EXISTS user_points CASCADE")
