"""ORM models for the progression engine.

Tables owned by the engine: user_points, xp_transactions, badges,
user_badges, missions, mission_progress, check_ins, feature_unlocks,
user_unlocks.

Tables owned by the directory/review collaborators and only read here:
establishments, reviews, photo_uploads, review_votes, user_follows.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from progression.db.base import Base

# BIGSERIAL on PostgreSQL, INTEGER PRIMARY KEY (rowid alias) on SQLite.
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Collaborator-owned sources
# ---------------------------------------------------------------------------


class Establishment(Base):
    """Venue directory row; only coordinates and zone matter here."""

    __tablename__ = "establishments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    zone: Mapped[str] = mapped_column(String(64), nullable=False)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)


class Review(Base):
    """Review (comment) left by a user on an establishment or profile."""

    __tablename__ = "reviews"
    __table_args__ = (Index("idx_reviews_user_created", "user_id", "created_at"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    establishment_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class PhotoUpload(Base):
    __tablename__ = "photo_uploads"
    __table_args__ = (Index("idx_photo_uploads_user_uploaded", "user_id", "uploaded_at"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    photo_url: Mapped[str] = mapped_column(String(500), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class ReviewVote(Base):
    """Helpful / not-helpful vote on a review, one per (review, voter)."""

    __tablename__ = "review_votes"
    __table_args__ = (UniqueConstraint("review_id", "user_id", name="review_votes_review_id_user_id_key"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    review_id: Mapped[str] = mapped_column(String(64), ForeignKey("reviews.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    vote_type: Mapped[str] = mapped_column(String(20), nullable=False, default="helpful")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class UserFollow(Base):
    __tablename__ = "user_follows"
    __table_args__ = (
        UniqueConstraint("follower_id", "following_id", name="user_follows_follower_following_key"),
        CheckConstraint("follower_id <> following_id", name="user_follows_no_self_follow"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    follower_id: Mapped[str] = mapped_column(String(64), nullable=False)
    following_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


# ---------------------------------------------------------------------------
# Points & ledger
# ---------------------------------------------------------------------------


class UserPoints(Base):
    """Materialized XP / level / streak summary, single row per user."""

    __tablename__ = "user_points"
    __table_args__ = (
        CheckConstraint("total_xp >= 0", name="user_points_total_xp_check"),
        CheckConstraint("monthly_xp >= 0", name="user_points_monthly_xp_check"),
        CheckConstraint("current_level >= 1", name="user_points_level_check"),
        Index("idx_user_points_total_xp", "total_xp"),
        Index("idx_user_points_monthly_xp", "monthly_xp"),
    )

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    total_xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    monthly_xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    current_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    current_streak_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    longest_streak_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_activity_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_monthly_reset: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )


class XPTransaction(Base):
    """Immutable XP audit log. The per-user sum equals user_points.total_xp."""

    __tablename__ = "xp_transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="xp_transactions_amount_check"),
        Index("idx_xp_transactions_user_created", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(50), nullable=False)
    related_entity_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    related_entity_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    tx_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONType, nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(256), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------


class Badge(Base):
    __tablename__ = "badges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    rarity: Mapped[str] = mapped_column(String(16), nullable=False, default="common")
    requirement_type: Mapped[str] = mapped_column(String(50), nullable=False)
    requirement_value: Mapped[int] = mapped_column(Integer, nullable=False)
    requirement_metadata: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_hidden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=999)


class UserBadge(Base):
    """Badges earned by users. UNIQUE(user_id, badge_id) prevents duplicates."""

    __tablename__ = "user_badges"
    __table_args__ = (UniqueConstraint("user_id", "badge_id", name="user_badges_user_id_badge_id_key"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    badge_id: Mapped[int] = mapped_column(Integer, ForeignKey("badges.id", ondelete="CASCADE"), nullable=False)
    awarded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


# ---------------------------------------------------------------------------
# Missions
# ---------------------------------------------------------------------------


class Mission(Base):
    __tablename__ = "missions"
    __table_args__ = (
        CheckConstraint("target >= 1", name="missions_target_check"),
        CheckConstraint("reward_xp >= 0", name="missions_reward_xp_check"),
        Index("idx_missions_requirement_active", "requirement_type", "is_active"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    requirement_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    requirements: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    reward_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reward_badge_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("badges.id"), nullable=True)
    next_mission_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("missions.id"), nullable=True)
    starts_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=999)


class MissionProgress(Base):
    """Per-user, per-mission, per-period counter.

    period_key is the local date for daily missions, the ISO week for weekly
    missions and "all" otherwise, so the unique key never contains NULL.
    """

    __tablename__ = "mission_progress"
    __table_args__ = (
        UniqueConstraint("user_id", "mission_id", "period_key", name="mission_progress_user_mission_period_key"),
        CheckConstraint("progress_counter >= 0", name="mission_progress_counter_check"),
        CheckConstraint("progress_counter <= target", name="mission_progress_counter_target_check"),
        Index("idx_mission_progress_mission_period", "mission_id", "period_key"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    mission_id: Mapped[int] = mapped_column(Integer, ForeignKey("missions.id", ondelete="CASCADE"), nullable=False)
    period_key: Mapped[str] = mapped_column(String(16), nullable=False)
    period_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    progress_counter: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    target: Mapped[int] = mapped_column(Integer, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Set by the reset jobs on unfinished rows of a finished period.
    expired_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


# ---------------------------------------------------------------------------
# Check-ins
# ---------------------------------------------------------------------------


class CheckIn(Base):
    """Geofenced visit. Repeats inside one dedupe window collapse to one row."""

    __tablename__ = "check_ins"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "establishment_id", "dedupe_bucket", name="check_ins_user_establishment_bucket_key"
        ),
        Index("idx_check_ins_user_created", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    establishment_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("establishments.id", ondelete="CASCADE"), nullable=False
    )
    zone: Mapped[str] = mapped_column(String(64), nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    distance_meters: Mapped[float | None] = mapped_column(Float, nullable=True)
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    dedupe_bucket: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


# ---------------------------------------------------------------------------
# Rewards
# ---------------------------------------------------------------------------


class FeatureUnlock(Base):
    """Reward unlocked by reaching a level, an XP total or a badge."""

    __tablename__ = "feature_unlocks"
    __table_args__ = (
        CheckConstraint(
            "unlock_type IN ('level', 'xp', 'badge', 'achievement')", name="feature_unlocks_unlock_type_check"
        ),
        CheckConstraint("category IN ('feature', 'cosmetic', 'title')", name="feature_unlocks_category_check"),
        Index("idx_feature_unlocks_type_value", "unlock_type", "unlock_value"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    unlock_type: Mapped[str] = mapped_column(String(20), nullable=False)
    unlock_value: Mapped[int | None] = mapped_column(Integer, nullable=True)
    unlock_badge_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("badges.id", ondelete="SET NULL"), nullable=True
    )
    category: Mapped[str] = mapped_column(String(20), nullable=False, default="feature")
    icon: Mapped[str | None] = mapped_column(String(50), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=999)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class UserUnlock(Base):
    """Rewards a user holds. UNIQUE(user_id, unlock_id) makes granting idempotent."""

    __tablename__ = "user_unlocks"
    __table_args__ = (UniqueConstraint("user_id", "unlock_id", name="user_unlocks_user_id_unlock_id_key"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    unlock_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("feature_unlocks.id", ondelete="CASCADE"), nullable=False
    )
    unlocked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    claimed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
