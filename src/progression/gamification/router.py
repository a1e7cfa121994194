"""Progression API: reads plus reward claims."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from progression.config import get_settings
from progression.database import get_session
from progression.db.models import Badge, FeatureUnlock
from progression.gamification.engine import ProgressionEngine
from progression.gamification.leaderboard_service import LeaderboardEntry
from progression.gamification.levels import level_progress
from progression.gamification.notifications import RedisNotificationDispatcher
from progression.gamification.schemas import (
    AllBadgesResponse,
    BadgeResponse,
    ClaimRewardResponse,
    EarnedBadgeResponse,
    LeaderboardEntryResponse,
    LeaderboardResponse,
    MissionProgressResponse,
    PointsResponse,
    RewardCatalogResponse,
    RewardResponse,
    UserBadgesResponse,
    UserMissionsResponse,
    UserRewardResponse,
    UserRewardsResponse,
    XPHistoryEntry,
    XPHistoryResponse,
)
from progression.redis_client import redis_or_none

router = APIRouter(prefix="/api/v1/progression", tags=["Progression"])


def get_engine(db: AsyncSession = Depends(get_session)) -> ProgressionEngine:  # noqa: B008
    """Read-only engine; no notifications are produced by these routes."""
    return ProgressionEngine(db, settings=get_settings())


def get_write_engine(db: AsyncSession = Depends(get_session)) -> ProgressionEngine:  # noqa: B008
    """Engine for routes that write; notifications go out over the shared Redis client."""
    settings = get_settings()
    dispatcher = RedisNotificationDispatcher(redis_or_none(), settings.notification_channel_prefix)
    return ProgressionEngine(db, dispatcher, settings)


def _badge(b: Badge) -> BadgeResponse:
    return BadgeResponse(
        id=b.id,
        slug=b.slug,
        name=b.name,
        description=b.description,
        category=b.category,
        rarity=b.rarity,
        requirement_type=b.requirement_type,
        requirement_value=b.requirement_value,
        xp_reward=b.xp_reward,
    )


def _board(name: str, entries: list[LeaderboardEntry]) -> LeaderboardResponse:
    return LeaderboardResponse(
        board=name,
        entries=[LeaderboardEntryResponse(rank=e.rank, user_id=e.user_id, score=e.score) for e in entries],
    )


def _limit(limit: int | None) -> int:
    return get_settings().leaderboard_default_limit if limit is None else limit


# ── Catalog ──


@router.get("/badges", response_model=AllBadgesResponse)
async def list_badges(db: AsyncSession = Depends(get_session)):  # noqa: B008
    """Visible, active badge definitions."""
    result = await db.execute(
        select(Badge)
        .where(Badge.is_active.is_(True), Badge.is_hidden.is_(False))
        .order_by(Badge.sort_order, Badge.id)
    )
    return AllBadgesResponse(badges=[_badge(b) for b in result.scalars()])


# ── Per-user ──


@router.get("/users/{user_id}/points", response_model=PointsResponse)
async def get_points(user_id: str, engine: ProgressionEngine = Depends(get_engine)):  # noqa: B008
    """XP, level and streak summary. Unknown users read as zero."""
    points = await engine.xp.get_points(user_id)
    total_xp = points.total_xp if points else 0
    info = level_progress(total_xp)
    return PointsResponse(
        user_id=user_id,
        total_xp=total_xp,
        monthly_xp=points.monthly_xp if points else 0,
        level=points.current_level if points else info["level"],
        xp_into_level=info["xp_into_level"],
        xp_for_level=info["xp_for_level"],
        next_level=info["next_level"],
        xp_to_next_level=info["xp_to_next_level"],
        current_streak_days=points.current_streak_days if points else 0,
        longest_streak_days=points.longest_streak_days if points else 0,
        last_activity_date=points.last_activity_date if points else None,
    )


@router.get("/users/{user_id}/xp/history", response_model=XPHistoryResponse)
async def get_xp_history(
    user_id: str,
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=100),
    engine: ProgressionEngine = Depends(get_engine),  # noqa: B008
):
    """XP ledger history (paginated, newest first)."""
    entries, total = await engine.ledger.history(user_id, limit=per_page, offset=(page - 1) * per_page)
    return XPHistoryResponse(
        entries=[
            XPHistoryEntry(
                amount=e.amount,
                source=e.source,
                related_entity_type=e.related_entity_type,
                related_entity_id=e.related_entity_id,
                description=(e.tx_metadata or {}).get("description"),
                created_at=e.created_at,
            )
            for e in entries
        ],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/users/{user_id}/badges", response_model=UserBadgesResponse)
async def get_user_badges(user_id: str, engine: ProgressionEngine = Depends(get_engine)):  # noqa: B008
    earned = await engine.badges.user_badges(user_id)
    return UserBadgesResponse(
        earned=[EarnedBadgeResponse(badge=_badge(b), awarded_at=ub.awarded_at) for ub, b in earned],
        total_earned=len(earned),
    )


@router.get("/users/{user_id}/missions", response_model=UserMissionsResponse)
async def get_user_missions(user_id: str, engine: ProgressionEngine = Depends(get_engine)):  # noqa: B008
    """Active missions with current-period progress."""
    statuses = await engine.missions.user_missions(user_id)
    return UserMissionsResponse(
        missions=[
            MissionProgressResponse(
                id=s.mission.id,
                slug=s.mission.slug,
                name=s.mission.name,
                description=s.mission.description,
                type=s.mission.type,
                requirement_type=s.mission.requirement_type,
                target=s.mission.target,
                reward_xp=s.mission.reward_xp,
                period_key=s.period_key,
                progress=s.progress_counter,
                completed=s.completed_at is not None,
                completed_at=s.completed_at,
                locked=s.locked,
            )
            for s in statuses
        ]
    )


# ── Leaderboards ──


@router.get("/leaderboards/global", response_model=LeaderboardResponse)
async def global_leaderboard(
    limit: int | None = Query(None),
    engine: ProgressionEngine = Depends(get_engine),  # noqa: B008
):
    return _board("global", await engine.leaderboards.global_top(_limit(limit)))


@router.get("/leaderboards/monthly", response_model=LeaderboardResponse)
async def monthly_leaderboard(
    limit: int | None = Query(None),
    engine: ProgressionEngine = Depends(get_engine),  # noqa: B008
):
    return _board("monthly", await engine.leaderboards.monthly_top(_limit(limit)))


@router.get("/leaderboards/weekly", response_model=LeaderboardResponse)
async def weekly_leaderboard(
    limit: int | None = Query(None),
    engine: ProgressionEngine = Depends(get_engine),  # noqa: B008
):
    """XP earned since Monday 00:00 reference time."""
    return _board("weekly", await engine.leaderboards.weekly_top(_limit(limit)))


@router.get("/leaderboards/zones/{zone}", response_model=LeaderboardResponse)
async def zone_leaderboard(
    zone: str,
    limit: int | None = Query(None),
    engine: ProgressionEngine = Depends(get_engine),  # noqa: B008
):
    return _board(f"zone:{zone}", await engine.leaderboards.zone_top(zone, _limit(limit)))


@router.get("/leaderboards/categories/{category}", response_model=LeaderboardResponse)
async def category_leaderboard(
    category: str,
    limit: int | None = Query(None),
    engine: ProgressionEngine = Depends(get_engine),  # noqa: B008
):
    return _board(category, await engine.leaderboards.category_top(category, _limit(limit)))


# ── Rewards ──


def _reward(u: FeatureUnlock) -> RewardResponse:
    return RewardResponse(
        id=u.id,
        name=u.name,
        description=u.description,
        unlock_type=u.unlock_type,
        unlock_value=u.unlock_value,
        category=u.category,
        icon=u.icon,
        sort_order=u.sort_order,
    )


@router.get("/rewards", response_model=RewardCatalogResponse)
async def list_rewards(engine: ProgressionEngine = Depends(get_engine)):  # noqa: B008
    return RewardCatalogResponse(rewards=[_reward(u) for u in await engine.rewards.catalog()])


@router.get("/users/{user_id}/rewards", response_model=UserRewardsResponse)
async def get_user_rewards(user_id: str, engine: ProgressionEngine = Depends(get_engine)):  # noqa: B008
    """Reward catalog with the user's unlock state."""
    statuses = await engine.rewards.user_rewards(user_id)
    points = await engine.xp.get_points(user_id)
    return UserRewardsResponse(
        rewards=[
            UserRewardResponse(
                **_reward(s.unlock).model_dump(),
                is_unlocked=s.is_unlocked,
                unlocked_at=s.unlocked_at,
                claimed=s.claimed,
            )
            for s in statuses
        ],
        current_level=points.current_level if points else 1,
        total_xp=points.total_xp if points else 0,
    )


@router.post("/users/{user_id}/rewards/{unlock_id}/claim", response_model=ClaimRewardResponse)
async def claim_reward(
    user_id: str,
    unlock_id: int,
    engine: ProgressionEngine = Depends(get_write_engine),  # noqa: B008
):
    unlock = await engine.rewards.claim(user_id, unlock_id)
    return ClaimRewardResponse(message="Reward claimed successfully", reward=_reward(unlock))
