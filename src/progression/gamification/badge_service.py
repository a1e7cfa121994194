"""Badge award service with duplicate prevention and notification."""

from __future__ import annotations

import logging

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from progression.db.models import Badge, UserBadge
from progression.db.upsert import insert_for
from progression.errors import NotFoundError
from progression.gamification.notifications import NotificationOutbox
from progression.gamification.periods import utcnow
from progression.gamification.progress_repository import ActivityCounters
from progression.gamification.types import BADGE_EARNED_TEMPLATE, ActionType, EntityType, XPSource
from progression.gamification.xp_service import XPService

logger = logging.getLogger(__name__)

# Which requirement types an action can possibly satisfy.
ACTION_REQUIREMENTS: dict[str, tuple[str, ...]] = {
    ActionType.REVIEW_CREATED: ("review_count", "detailed_reviews"),
    ActionType.CHECK_IN: ("check_in_count", "unique_zones_visited", "unique_establishments_visited"),
    ActionType.PHOTO_UPLOADED: ("photo_count",),
    ActionType.FOLLOWER_GAINED: ("follower_count",),
    ActionType.FOLLOW_GIVEN: ("following_count",),
    ActionType.HELPFUL_VOTE_RECEIVED: ("helpful_votes_received",),
    ActionType.ACTIVITY: ("streak_days",),
}

DETAILED_REVIEW_MIN_LENGTH = 200


class BadgeService:
    def __init__(self, db: AsyncSession, xp: XPService, outbox: NotificationOutbox) -> None:
        self.db = db
        self.xp = xp
        self.outbox = outbox
        self.counters = ActivityCounters(db)

    async def get_badge(self, badge_id: int) -> Badge:
        badge = await self.db.get(Badge, badge_id)
        if badge is None:
            raise NotFoundError(f"Badge {badge_id} not found")
        return badge

    async def grant(self, user_id: str, badge_id: int) -> bool:
        """Award a badge to a user.

        Returns True if awarded, False if the user already had it.
        Handles:
        1. Insert into user_badges (ON CONFLICT DO NOTHING on the unique pair)
        2. Grant badge XP (idempotent via idempotency_key)
        3. Queue the badge-earned notification
        4. Unlock rewards tied to the badge
        """
        badge = await self.get_badge(badge_id)

        stmt = (
            insert_for(self.db, UserBadge)
            .values(user_id=user_id, badge_id=badge.id, awarded_at=utcnow())
            .on_conflict_do_nothing(index_elements=["user_id", "badge_id"])
            .returning(UserBadge.id)
        )
        if (await self.db.execute(stmt)).scalar_one_or_none() is None:
            return False

        if badge.xp_reward > 0:
            await self.xp.grant(
                user_id,
                badge.xp_reward,
                XPSource.BADGE_EARNED,
                entity_type=EntityType.BADGE,
                entity_id=str(badge.id),
                description=f'Earned badge: "{badge.name}"',
                idempotency_key=f"badge:{badge.id}:{user_id}",
            )

        self.outbox.queue(
            user_id,
            BADGE_EARNED_TEMPLATE,
            {
                "badgeId": badge.id,
                "badgeName": badge.name,
                "rarity": badge.rarity,
                "xpReward": badge.xp_reward,
            },
        )
        await self.xp.rewards.grant_for_badge(user_id, badge.id)
        logger.info("Badge %s awarded to user %s", badge.slug, user_id)
        return True

    async def evaluate(self, user_id: str, action: str) -> list[int]:
        """Award every active, unearned badge the action now satisfies.

        Returns the ids of newly awarded badges.
        """
        requirement_types = ACTION_REQUIREMENTS.get(action, ())
        if not requirement_types:
            return []

        result = await self.db.execute(
            select(Badge)
            .where(
                Badge.is_active.is_(True),
                Badge.requirement_type.in_(requirement_types),
                ~exists().where(UserBadge.user_id == user_id, UserBadge.badge_id == Badge.id),
            )
            .order_by(Badge.requirement_value, Badge.id)
        )
        candidates = list(result.scalars())

        awarded: list[int] = []
        values: dict[tuple[str, int | None], int | None] = {}
        for badge in candidates:
            min_length = (badge.requirement_metadata or {}).get("min_length")
            cache_key = (badge.requirement_type, min_length)
            if cache_key not in values:
                values[cache_key] = await self.requirement_value(user_id, badge)
            value = values[cache_key]
            if value is None or value < badge.requirement_value:
                continue
            if await self.grant(user_id, badge.id):
                awarded.append(badge.id)
        return awarded

    async def requirement_value(self, user_id: str, badge: Badge) -> int | None:
        """Current value of a badge's metric. None for unknown requirement types."""
        kind = badge.requirement_type
        meta = badge.requirement_metadata or {}
        if kind == "review_count":
            return await self.counters.reviews(user_id)
        if kind == "detailed_reviews":
            return await self.counters.reviews(user_id, min_length=meta.get("min_length", DETAILED_REVIEW_MIN_LENGTH))
        if kind == "check_in_count":
            return await self.counters.verified_check_ins(user_id)
        if kind == "unique_zones_visited":
            return await self.counters.distinct_zones(user_id)
        if kind == "unique_establishments_visited":
            return await self.counters.distinct_establishments(user_id)
        if kind == "photo_count":
            return await self.counters.photos(user_id)
        if kind == "follower_count":
            return await self.counters.followers(user_id)
        if kind == "following_count":
            return await self.counters.following(user_id)
        if kind == "helpful_votes_received":
            return await self.counters.helpful_votes_received(user_id)
        if kind == "streak_days":
            return await self.counters.longest_streak(user_id)
        logger.debug("Unknown badge requirement type %s (badge %s)", kind, badge.id)
        return None

    async def user_badges(self, user_id: str) -> list[tuple[UserBadge, Badge]]:
        result = await self.db.execute(
            select(UserBadge, Badge)
            .join(Badge, Badge.id == UserBadge.badge_id)
            .where(UserBadge.user_id == user_id)
            .order_by(UserBadge.awarded_at.desc(), UserBadge.id.desc())
        )
        return [(row.UserBadge, row.Badge) for row in result]
