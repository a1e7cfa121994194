"""Pydantic response models for progression endpoints."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel


# --- Points ---


class PointsResponse(BaseModel):
    user_id: str
    total_xp: int
    monthly_xp: int
    level: int
    xp_into_level: int
    xp_for_level: int
    next_level: int
    xp_to_next_level: int
    current_streak_days: int = 0
    longest_streak_days: int = 0
    last_activity_date: date | None = None


class XPHistoryEntry(BaseModel):
    amount: int
    source: str
    related_entity_type: str | None = None
    related_entity_id: str | None = None
    description: str | None = None
    created_at: datetime | None = None


class XPHistoryResponse(BaseModel):
    entries: list[XPHistoryEntry]
    total: int
    page: int
    per_page: int


# --- Badges ---


class BadgeResponse(BaseModel):
    id: int
    slug: str
    name: str
    description: str
    category: str
    rarity: str
    requirement_type: str
    requirement_value: int
    xp_reward: int


class AllBadgesResponse(BaseModel):
    badges: list[BadgeResponse]


class EarnedBadgeResponse(BaseModel):
    badge: BadgeResponse
    awarded_at: datetime


class UserBadgesResponse(BaseModel):
    earned: list[EarnedBadgeResponse]
    total_earned: int


# --- Missions ---


class MissionProgressResponse(BaseModel):
    id: int
    slug: str
    name: str
    description: str
    type: str
    requirement_type: str
    target: int
    reward_xp: int
    period_key: str
    progress: int
    completed: bool
    completed_at: datetime | None = None
    locked: bool = False


class UserMissionsResponse(BaseModel):
    missions: list[MissionProgressResponse]


# --- Leaderboards ---


class LeaderboardEntryResponse(BaseModel):
    rank: int
    user_id: str
    score: int


class LeaderboardResponse(BaseModel):
    board: str
    entries: list[LeaderboardEntryResponse]


# --- Rewards ---


class RewardResponse(BaseModel):
    id: int
    name: str
    description: str
    unlock_type: str
    unlock_value: int | None = None
    category: str
    icon: str | None = None
    sort_order: int


class RewardCatalogResponse(BaseModel):
    rewards: list[RewardResponse]


class UserRewardResponse(RewardResponse):
    is_unlocked: bool
    unlocked_at: datetime | None = None
    claimed: bool


class UserRewardsResponse(BaseModel):
    rewards: list[UserRewardResponse]
    current_level: int
    total_xp: int


class ClaimRewardResponse(BaseModel):
    message: str
    reward: RewardResponse
