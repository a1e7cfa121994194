"""Rewards tables.

Creates feature_unlocks (the reward catalog) and user_unlocks (rewards a
user holds).

Revision ID: 002_rewards
Revises: 001_progression_tables
Create Date: 2026-10-18
"""

from collections.abc import Sequence

from alembic import op

revision: str = "002_rewards"
down_revision: str | None = "001_progression_tables"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE IF NOT EXISTS feature_unlocks (
            id SERIAL PRIMARY KEY,
            name VARCHAR(100) UNIQUE NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            unlock_type VARCHAR(20) NOT NULL
                CONSTRAINT feature_unlocks_unlock_type_check
                CHECK (unlock_type IN ('level', 'xp', 'badge', 'achievement')),
            unlock_value INTEGER,
            unlock_badge_id INTEGER REFERENCES badges(id) ON DELETE SET NULL,
            category VARCHAR(20) NOT NULL DEFAULT 'feature'
                CONSTRAINT feature_unlocks_category_check
                CHECK (category IN ('feature', 'cosmetic', 'title')),
            icon VARCHAR(50),
            sort_order INTEGER NOT NULL DEFAULT 999,
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_feature_unlocks_type_value
        ON feature_unlocks(unlock_type, unlock_value)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_unlocks (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            unlock_id INTEGER NOT NULL REFERENCES feature_unlocks(id) ON DELETE CASCADE,
            unlocked_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            claimed BOOLEAN NOT NULL DEFAULT true,
            claimed_at TIMESTAMPTZ,
            CONSTRAINT user_unlocks_user_id_unlock_id_key UNIQUE (user_id, unlock_id)
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS user_unlocks CASCADE")
    op.execute("DROP TABLE IF EXISTS feature_unlocks CASCADE")
