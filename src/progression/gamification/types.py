"""Closed vocabularies and result types shared by the gamification services."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import StrEnum

from progression.errors import ErrorKind


class XPSource(StrEnum):
    REVIEW_CREATED = "review_created"
    CHECK_IN = "check_in"
    PHOTO_UPLOADED = "photo_uploaded"
    HELPFUL_VOTE_RECEIVED = "helpful_vote_received"
    FOLLOW_RECEIVED = "follow_received"
    MISSION_COMPLETED = "mission_completed"
    BADGE_EARNED = "badge_earned"
    STREAK_BONUS = "streak_bonus"
    ADMIN_ADJUSTMENT = "admin_adjustment"


class EntityType(StrEnum):
    REVIEW = "review"
    ESTABLISHMENT = "establishment"
    EMPLOYEE = "employee"
    USER = "user"
    PHOTO = "photo"
    CHECK_IN = "check_in"
    MISSION = "mission"
    BADGE = "badge"


class MissionType(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    EVENT = "event"
    NARRATIVE = "narrative"


class RequirementKind(StrEnum):
    CHECK_IN = "check_in"
    CHECK_IN_ZONE = "check_in_zone"
    CHECK_IN_ALL_ZONES = "check_in_all_zones"
    VISIT_ZONES = "visit_zones"
    WRITE_REVIEWS = "write_reviews"
    WRITE_QUALITY_REVIEW = "write_quality_review"
    VOTE_HELPFUL = "vote_helpful"
    FOLLOW_USERS = "follow_users"
    GAIN_FOLLOWERS = "gain_followers"
    RECEIVE_HELPFUL_VOTES = "receive_helpful_votes"
    UPLOAD_PHOTOS = "upload_photos"


class ActionType(StrEnum):
    """Badge evaluation trigger."""

    REVIEW_CREATED = "review_created"
    CHECK_IN = "check_in"
    PHOTO_UPLOADED = "photo_uploaded"
    FOLLOWER_GAINED = "follower_gained"
    FOLLOW_GIVEN = "follow_given"
    HELPFUL_VOTE_RECEIVED = "helpful_vote_received"
    ACTIVITY = "activity"


class LeaderboardCategory(StrEnum):
    REVIEWERS = "reviewers"
    PHOTOGRAPHERS = "photographers"
    CHECKINS = "checkins"
    HELPFUL = "helpful"


class UnlockType(StrEnum):
    LEVEL = "level"
    XP = "xp"
    BADGE = "badge"
    ACHIEVEMENT = "achievement"


# Notification template keys (i18n keys rendered by the client).
LEVEL_UP_TEMPLATE = "gamification.levelUp"
BADGE_EARNED_TEMPLATE = "gamification.badgeEarned"
MISSION_COMPLETED_TEMPLATE = "gamification.missionCompleted"
REWARD_UNLOCKED_TEMPLATE = "gamification.rewardUnlocked"


@dataclass(frozen=True)
class XPGrant:
    """Post-award totals for one XP grant."""

    transaction_id: int
    user_id: str
    amount: int
    total_xp: int
    monthly_xp: int
    old_level: int
    new_level: int

    @property
    def leveled_up(self) -> bool:
        return self.new_level > self.old_level


@dataclass(frozen=True)
class StreakUpdate:
    current_streak_days: int
    longest_streak_days: int
    last_activity_date: date | None
    changed: bool


@dataclass
class TrackingOutcome:
    """Result of an ``on_*`` event operation. ``error`` is None on success."""

    error: ErrorKind | None = None
    completed_missions: list[int] = field(default_factory=list)
    awarded_badges: list[int] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None
