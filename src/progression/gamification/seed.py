"""Badge, mission and reward catalog seed data.

Seeding is idempotent: rows are upserted on ``slug`` (rewards on ``name``)
so re-running picks up edited names, rewards and thresholds without
touching user progress.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from progression.db.models import Badge, FeatureUnlock, Mission
from progression.db.upsert import insert_for
from progression.gamification.periods import REFERENCE_TZ

logger = logging.getLogger(__name__)

BADGE_SEED_DATA: list[dict[str, Any]] = [
    # Exploration
    {
        "slug": "first_visit",
        "name": "First Visit",
        "description": "Check-in at your first establishment",
        "category": "exploration",
        "rarity": "common",
        "requirement_type": "check_in_count",
        "requirement_value": 1,
        "xp_reward": 10,
        "sort_order": 1,
    },
    {
        "slug": "zone_explorer",
        "name": "Zone Explorer",
        "description": "Visit establishments in 3 different zones",
        "category": "exploration",
        "rarity": "common",
        "requirement_type": "unique_zones_visited",
        "requirement_value": 3,
        "xp_reward": 25,
        "sort_order": 2,
    },
    {
        "slug": "zone_master",
        "name": "Zone Master",
        "description": "Visit all 9 zones",
        "category": "exploration",
        "rarity": "epic",
        "requirement_type": "unique_zones_visited",
        "requirement_value": 9,
        "xp_reward": 100,
        "sort_order": 3,
    },
    {
        "slug": "venue_hopper",
        "name": "Venue Hopper",
        "description": "Visit 25 different establishments",
        "category": "exploration",
        "rarity": "rare",
        "requirement_type": "unique_establishments_visited",
        "requirement_value": 25,
        "xp_reward": 50,
        "sort_order": 4,
    },
    {
        "slug": "explorer_elite",
        "name": "Explorer Elite",
        "description": "Visit 50 different establishments",
        "category": "exploration",
        "rarity": "epic",
        "requirement_type": "unique_establishments_visited",
        "requirement_value": 50,
        "xp_reward": 100,
        "sort_order": 5,
    },
    # Contribution
    {
        "slug": "first_review",
        "name": "First Review",
        "description": "Write your first review",
        "category": "contribution",
        "rarity": "common",
        "requirement_type": "review_count",
        "requirement_value": 1,
        "xp_reward": 10,
        "sort_order": 10,
    },
    {
        "slug": "critic_bronze",
        "name": "Critic Bronze",
        "description": "Write 10 reviews",
        "category": "contribution",
        "rarity": "common",
        "requirement_type": "review_count",
        "requirement_value": 10,
        "xp_reward": 25,
        "sort_order": 11,
    },
    {
        "slug": "critic_silver",
        "name": "Critic Silver",
        "description": "Write 50 reviews",
        "category": "contribution",
        "rarity": "rare",
        "requirement_type": "review_count",
        "requirement_value": 50,
        "xp_reward": 50,
        "sort_order": 12,
    },
    {
        "slug": "critic_gold",
        "name": "Critic Gold",
        "description": "Write 100 reviews",
        "category": "contribution",
        "rarity": "epic",
        "requirement_type": "review_count",
        "requirement_value": 100,
        "xp_reward": 100,
        "sort_order": 13,
    },
    {
        "slug": "photographer_bronze",
        "name": "Photographer Bronze",
        "description": "Upload 25 photos",
        "category": "contribution",
        "rarity": "common",
        "requirement_type": "photo_count",
        "requirement_value": 25,
        "xp_reward": 25,
        "sort_order": 14,
    },
    {
        "slug": "photographer_silver",
        "name": "Photographer Silver",
        "description": "Upload 100 photos",
        "category": "contribution",
        "rarity": "rare",
        "requirement_type": "photo_count",
        "requirement_value": 100,
        "xp_reward": 50,
        "sort_order": 15,
    },
    # Social
    {
        "slug": "social_butterfly",
        "name": "Social Butterfly",
        "description": "Get your first follower",
        "category": "social",
        "rarity": "common",
        "requirement_type": "follower_count",
        "requirement_value": 1,
        "xp_reward": 10,
        "sort_order": 20,
    },
    {
        "slug": "influencer_bronze",
        "name": "Influencer Bronze",
        "description": "Gain 10 followers",
        "category": "social",
        "rarity": "common",
        "requirement_type": "follower_count",
        "requirement_value": 10,
        "xp_reward": 25,
        "sort_order": 21,
    },
    {
        "slug": "helpful_bronze",
        "name": "Helpful Bronze",
        "description": 'Receive 50 "helpful" votes on your reviews',
        "category": "social",
        "rarity": "rare",
        "requirement_type": "helpful_votes_received",
        "requirement_value": 50,
        "xp_reward": 50,
        "sort_order": 22,
    },
    # Quality
    {
        "slug": "detailed_reviewer",
        "name": "Detailed Reviewer",
        "description": "Write 10 reviews with 200+ characters",
        "category": "quality",
        "rarity": "rare",
        "requirement_type": "detailed_reviews",
        "requirement_value": 10,
        "requirement_metadata": {"min_length": 200},
        "xp_reward": 50,
        "sort_order": 30,
    },
    # Temporal
    {
        "slug": "week_warrior",
        "name": "Week Warrior",
        "description": "Maintain a 7-day activity streak",
        "category": "temporal",
        "rarity": "common",
        "requirement_type": "streak_days",
        "requirement_value": 7,
        "xp_reward": 25,
        "sort_order": 40,
    },
    {
        "slug": "month_master",
        "name": "Month Master",
        "description": "Maintain a 30-day activity streak",
        "category": "temporal",
        "rarity": "rare",
        "requirement_type": "streak_days",
        "requirement_value": 30,
        "xp_reward": 100,
        "sort_order": 41,
    },
]


def _tour_step(step: int, zone: str, next_slug: str) -> dict[str, Any]:
    return {
        "slug": f"grand_tour_{step}",
        "name": f"Grand Tour: {zone}",
        "description": f"Visit 5 establishments in {zone} (Step {step}/7)",
        "type": "narrative",
        "requirement_type": "check_in_zone",
        "target": 5,
        "requirements": {"zone": zone, "quest_id": "grand_tour", "step": step},
        "reward_xp": 50,
        "next_slug": next_slug,
        "sort_order": 100 + step,
    }


_TOUR_ZONES = ["Soi 6", "Walking Street", "LK Metro", "Treetown", "Soi Buakhao", "Jomtien"]

MISSION_SEED_DATA: list[dict[str, Any]] = [
    # Daily
    {
        "slug": "daily_reviewer",
        "name": "Daily Reviewer",
        "description": "Write 1 review today",
        "type": "daily",
        "requirement_type": "write_reviews",
        "target": 1,
        "reward_xp": 20,
        "sort_order": 1,
    },
    {
        "slug": "photo_hunter",
        "name": "Photo Hunter",
        "description": "Upload 3 photos today",
        "type": "daily",
        "requirement_type": "upload_photos",
        "target": 3,
        "reward_xp": 25,
        "sort_order": 2,
    },
    {
        "slug": "explorer",
        "name": "Explorer",
        "description": "Visit 1 new establishment today",
        "type": "daily",
        "requirement_type": "check_in",
        "target": 1,
        "requirements": {"unique": True},
        "reward_xp": 15,
        "sort_order": 3,
    },
    {
        "slug": "social_networker",
        "name": "Social Networker",
        "description": "Follow 2 users today",
        "type": "daily",
        "requirement_type": "follow_users",
        "target": 2,
        "reward_xp": 10,
        "sort_order": 4,
    },
    {
        "slug": "helpful_member",
        "name": "Helpful Community Member",
        "description": 'Vote "helpful" on 5 reviews today',
        "type": "daily",
        "requirement_type": "vote_helpful",
        "target": 5,
        "reward_xp": 15,
        "sort_order": 5,
    },
    {
        "slug": "quality_reviewer",
        "name": "Quality Reviewer",
        "description": "Write 1 review with photo and 100+ characters today",
        "type": "daily",
        "requirement_type": "write_quality_review",
        "target": 1,
        "requirements": {"min_length": 100, "with_photo": True},
        "reward_xp": 35,
        "sort_order": 6,
    },
    # Weekly
    {
        "slug": "weekly_explorer",
        "name": "Weekly Explorer",
        "description": "Explore 3 different zones this week",
        "type": "weekly",
        "requirement_type": "visit_zones",
        "target": 3,
        "requirements": {"unique": True},
        "reward_xp": 100,
        "sort_order": 20,
    },
    {
        "slug": "weekly_contributor",
        "name": "Weekly Contributor",
        "description": "Write 5 reviews with photos this week",
        "type": "weekly",
        "requirement_type": "write_reviews",
        "target": 5,
        "requirements": {"with_photos": True},
        "reward_xp": 150,
        "sort_order": 21,
    },
    {
        "slug": "helpful_week",
        "name": "Helpful Week",
        "description": 'Receive 10 "helpful" votes this week',
        "type": "weekly",
        "requirement_type": "receive_helpful_votes",
        "target": 10,
        "reward_xp": 80,
        "sort_order": 22,
    },
    {
        "slug": "social_week",
        "name": "Social Week",
        "description": "Gain 5 new followers this week",
        "type": "weekly",
        "requirement_type": "gain_followers",
        "target": 5,
        "reward_xp": 120,
        "sort_order": 23,
    },
    {
        "slug": "zone_master_weekly",
        "name": "Zone Master Weekly",
        "description": "Check-in at 10 different establishments this week",
        "type": "weekly",
        "requirement_type": "check_in",
        "target": 10,
        "requirements": {"unique": True},
        "reward_xp": 200,
        "sort_order": 24,
    },
    {
        "slug": "photo_marathon",
        "name": "Photo Marathon",
        "description": "Upload 20 photos this week",
        "type": "weekly",
        "requirement_type": "upload_photos",
        "target": 20,
        "reward_xp": 100,
        "sort_order": 25,
    },
    # Narrative: Grand Tour
    *[
        _tour_step(i + 1, zone, f"grand_tour_{i + 2}")
        for i, zone in enumerate(_TOUR_ZONES)
    ],
    {
        "slug": "grand_tour_7",
        "name": "Grand Tour: Complete",
        "description": "Visit every zone (Step 7/7)",
        "type": "narrative",
        "requirement_type": "check_in_all_zones",
        "target": 9,
        "requirements": {"quest_id": "grand_tour", "step": 7},
        "reward_xp": 200,
        "reward_badge_slug": "zone_master",
        "sort_order": 107,
    },
    # Narrative: Reviewer Path
    {
        "slug": "reviewer_path_1",
        "name": "Reviewer Path: First Steps",
        "description": "Write your first 5 reviews (Step 1/5)",
        "type": "narrative",
        "requirement_type": "write_reviews",
        "target": 5,
        "requirements": {"quest_id": "reviewer_path", "step": 1},
        "reward_xp": 30,
        "next_slug": "reviewer_path_2",
        "sort_order": 201,
    },
    {
        "slug": "reviewer_path_2",
        "name": "Reviewer Path: Getting Better",
        "description": "Write 5 reviews with photos (Step 2/5)",
        "type": "narrative",
        "requirement_type": "write_reviews",
        "target": 5,
        "requirements": {"with_photos": True, "quest_id": "reviewer_path", "step": 2},
        "reward_xp": 60,
        "next_slug": "reviewer_path_3",
        "sort_order": 202,
    },
    {
        "slug": "reviewer_path_3",
        "name": "Reviewer Path: Quality Matters",
        "description": "Write 5 detailed reviews (200+ characters) (Step 3/5)",
        "type": "narrative",
        "requirement_type": "write_reviews",
        "target": 5,
        "requirements": {"min_length": 200, "quest_id": "reviewer_path", "step": 3},
        "reward_xp": 80,
        "next_slug": "reviewer_path_4",
        "sort_order": 203,
    },
    {
        "slug": "reviewer_path_4",
        "name": "Reviewer Path: Consistency",
        "description": "Write 25 total reviews (Step 4/5)",
        "type": "narrative",
        "requirement_type": "write_reviews",
        "target": 25,
        "requirements": {"quest_id": "reviewer_path", "step": 4},
        "reward_xp": 120,
        "next_slug": "reviewer_path_5",
        "sort_order": 204,
    },
    {
        "slug": "reviewer_path_5",
        "name": "Reviewer Path: Master Critic",
        "description": "Write 50 total reviews (Step 5/5)",
        "type": "narrative",
        "requirement_type": "write_reviews",
        "target": 50,
        "requirements": {"quest_id": "reviewer_path", "step": 5},
        "reward_xp": 250,
        "reward_badge_slug": "critic_silver",
        "sort_order": 205,
    },
    # Events (activated ahead of the date)
    {
        "slug": "songkran_2025",
        "name": "Songkran Celebration",
        "description": "Check-in at 10 establishments during Songkran Festival (April 13-15)",
        "type": "event",
        "requirement_type": "check_in",
        "target": 10,
        "requirements": {"event": "songkran"},
        "reward_xp": 300,
        "starts_at": datetime(2025, 4, 13, 0, 0, tzinfo=REFERENCE_TZ),
        "ends_at": datetime(2025, 4, 15, 23, 59, 59, tzinfo=REFERENCE_TZ),
        "is_active": False,
        "sort_order": 300,
    },
    {
        "slug": "halloween_2025",
        "name": "Halloween Night Out",
        "description": "Visit 5 establishments on Halloween night",
        "type": "event",
        "requirement_type": "check_in",
        "target": 5,
        "requirements": {"event": "halloween"},
        "reward_xp": 250,
        "starts_at": datetime(2025, 10, 31, 18, 0, tzinfo=REFERENCE_TZ),
        "ends_at": datetime(2025, 11, 1, 6, 0, tzinfo=REFERENCE_TZ),
        "is_active": False,
        "sort_order": 301,
    },
]


def _level_reward(
    name: str, description: str, level: int, category: str, icon: str, sort_order: int
) -> dict[str, Any]:
    return {
        "name": name,
        "description": description,
        "unlock_type": "level",
        "unlock_value": level,
        "category": category,
        "icon": icon,
        "sort_order": sort_order,
    }


# Level rewards; every entry is ``unlock_type="level"``.
REWARD_SEED_DATA: list[dict[str, Any]] = [
    _level_reward("photo_upload", "Upload photos to establishment profiles", 2, "feature", "camera", 10),
    _level_reward("create_review", "Write detailed reviews with photos", 2, "feature", "star", 11),
    _level_reward("custom_title", "Set a custom profile title", 3, "cosmetic", "tag", 20),
    _level_reward("custom_theme", "Unlock dark/light theme toggle", 3, "cosmetic", "palette", 21),
    _level_reward("gold_border", "Gold border on your profile", 4, "cosmetic", "sparkles", 30),
    _level_reward("priority_support", "Priority support queue", 4, "feature", "headset", 31),
    _level_reward("vip_badge_frame", "Exclusive VIP badge frame", 5, "cosmetic", "crown", 40),
    _level_reward("early_access", "Early access to new features", 5, "feature", "rocket", 41),
    _level_reward("elite_border", "Animated elite profile border", 6, "cosmetic", "gem", 50),
    _level_reward("custom_emoji", "Custom emoji reactions", 6, "cosmetic", "smile", 51),
    _level_reward("ambassador_title", "Exclusive Ambassador title", 7, "title", "medal", 60),
    _level_reward("ambassador_badge", "Permanent Ambassador badge", 7, "cosmetic", "trophy", 61),
    _level_reward("create_events", "Create community events", 7, "feature", "calendar", 62),
]


# Keys resolved to foreign keys after the upsert, not stored as columns.
_LINK_KEYS = ("next_slug", "reward_badge_slug")


async def seed_badges(db: AsyncSession) -> int:
    """Upsert badge definitions. Returns the number of rows written."""
    for badge_data in BADGE_SEED_DATA:
        values = {"requirement_metadata": {}, **badge_data}
        stmt = insert_for(db, Badge).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["slug"],
            set_={key: stmt.excluded[key] for key in values if key != "slug"},
        )
        await db.execute(stmt)

    await db.commit()
    logger.info("Seeded %d badge definitions", len(BADGE_SEED_DATA))
    return len(BADGE_SEED_DATA)


async def seed_missions(db: AsyncSession) -> int:
    """Upsert mission definitions, then link narrative chains and badge rewards by slug.

    Badges must be seeded first for ``reward_badge_slug`` to resolve.
    """
    for mission_data in MISSION_SEED_DATA:
        values = {"requirements": {}, **{k: v for k, v in mission_data.items() if k not in _LINK_KEYS}}
        stmt = insert_for(db, Mission).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["slug"],
            set_={key: stmt.excluded[key] for key in values if key != "slug"},
        )
        await db.execute(stmt)

    mission_ids = dict((await db.execute(select(Mission.slug, Mission.id))).tuples().all())
    badge_ids = dict((await db.execute(select(Badge.slug, Badge.id))).tuples().all())

    for mission_data in MISSION_SEED_DATA:
        next_slug = mission_data.get("next_slug")
        badge_slug = mission_data.get("reward_badge_slug")
        if next_slug is None and badge_slug is None:
            continue
        if badge_slug is not None and badge_slug not in badge_ids:
            logger.warning("Mission %s rewards unknown badge %s", mission_data["slug"], badge_slug)
        await db.execute(
            update(Mission)
            .where(Mission.slug == mission_data["slug"])
            .values(
                next_mission_id=mission_ids.get(next_slug) if next_slug else None,
                reward_badge_id=badge_ids.get(badge_slug) if badge_slug else None,
            )
        )

    await db.commit()
    logger.info("Seeded %d mission definitions", len(MISSION_SEED_DATA))
    return len(MISSION_SEED_DATA)


async def seed_rewards(db: AsyncSession) -> int:
    """Upsert reward definitions on ``name``. Returns the number of rows written."""
    for reward_data in REWARD_SEED_DATA:
        stmt = insert_for(db, FeatureUnlock).values(**reward_data)
        stmt = stmt.on_conflict_do_update(
            index_elements=["name"],
            set_={key: stmt.excluded[key] for key in reward_data if key != "name"},
        )
        await db.execute(stmt)

    await db.commit()
    logger.info("Seeded %d reward definitions", len(REWARD_SEED_DATA))
    return len(REWARD_SEED_DATA)


async def seed_catalog(db: AsyncSession) -> None:
    await seed_badges(db)
    await seed_missions(db)
    await seed_rewards(db)
