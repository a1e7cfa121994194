"""Mission tracking: event-driven progress, completion and quest chaining.

Each ``on_*`` operation is one unit of work: progress every matching
mission, record streak activity, evaluate badges, commit, then flush the
notification outbox. Each mission runs in its own savepoint, so a failure
in one mission is logged and skipped without losing the others.

Counters are recomputed from the activity tables and written with
``set_absolute``; only plain (non-unique) check-in missions use a blind
increment. Completion is decided by ``try_complete`` so that exactly one
concurrent caller pays out the reward.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from progression.config import Settings
from progression.db.models import Mission
from progression.errors import ConflictError, ErrorKind, InternalError, ProgressionError, ValidationError
from progression.gamification.badge_service import BadgeService
from progression.gamification.notifications import NotificationOutbox
from progression.gamification.periods import local_today, period_for, utcnow
from progression.gamification.progress_repository import ActivityCounters, ProgressRepository, Window
from progression.gamification.streak_service import StreakService
from progression.gamification.types import (
    MISSION_COMPLETED_TEMPLATE,
    ActionType,
    EntityType,
    MissionType,
    RequirementKind,
    TrackingOutcome,
    XPSource,
)
from progression.gamification.xp_service import XPService

logger = logging.getLogger(__name__)

CHECK_IN_KINDS = (
    RequirementKind.CHECK_IN,
    RequirementKind.CHECK_IN_ZONE,
    RequirementKind.CHECK_IN_ALL_ZONES,
    RequirementKind.VISIT_ZONES,
)
REVIEW_KINDS = (RequirementKind.WRITE_REVIEWS, RequirementKind.WRITE_QUALITY_REVIEW)

QUALITY_REVIEW_MIN_LENGTH = 100
VOTE_TYPES = ("helpful", "not_helpful")


@dataclass(frozen=True)
class MissionStatus:
    """A mission as seen by one user in the current period."""

    mission: Mission
    period_key: str
    progress_counter: int
    completed_at: datetime | None
    locked: bool


class MissionService:
    def __init__(
        self,
        db: AsyncSession,
        xp: XPService,
        badges: BadgeService,
        streaks: StreakService,
        outbox: NotificationOutbox,
        settings: Settings,
    ) -> None:
        self.db = db
        self.xp = xp
        self.badges = badges
        self.streaks = streaks
        self.outbox = outbox
        self.settings = settings
        self.repo = ProgressRepository(db)
        self.counters = ActivityCounters(db)

    # ------------------------------------------------------------------
    # Event operations
    # ------------------------------------------------------------------

    async def on_check_in(
        self,
        user_id: str,
        establishment_id: str,
        zone: str,
        verified: bool,
        now: datetime | None = None,
    ) -> TrackingOutcome:
        """Only verified check-ins count toward missions, streaks and badges."""
        now = now or utcnow()

        async def work(outcome: TrackingOutcome) -> None:
            _require_user(user_id)
            if not verified:
                logger.debug("Check-in %s/%s not verified, skipping missions", user_id, establishment_id)
                return
            await self._progress(outcome, user_id, CHECK_IN_KINDS, now, zone=zone)
            await self._after_activity(outcome, user_id, now, ActionType.CHECK_IN)

        return await self._run("check_in", user_id, work)

    async def on_review_created(self, user_id: str, review_id: str, now: datetime | None = None) -> TrackingOutcome:
        now = now or utcnow()

        async def work(outcome: TrackingOutcome) -> None:
            _require_user(user_id)
            await self.xp.grant(
                user_id,
                self.settings.review_xp_reward,
                XPSource.REVIEW_CREATED,
                entity_type=EntityType.REVIEW,
                entity_id=review_id,
                description="Review posted",
                idempotency_key=f"review:{review_id}",
            )
            await self._progress(outcome, user_id, REVIEW_KINDS, now)
            await self._after_activity(outcome, user_id, now, ActionType.REVIEW_CREATED)

        return await self._run("review_created", user_id, work)

    async def on_vote_cast(
        self, user_id: str, review_id: str, vote_type: str, now: datetime | None = None
    ) -> TrackingOutcome:
        """Track the voter's side. Only helpful votes count."""
        now = now or utcnow()

        async def work(outcome: TrackingOutcome) -> None:
            _require_user(user_id)
            if vote_type not in VOTE_TYPES:
                raise ValidationError(f"Unknown vote type: {vote_type!r}")
            if vote_type != "helpful":
                return
            await self._progress(outcome, user_id, (RequirementKind.VOTE_HELPFUL,), now)
            await self._after_activity(outcome, user_id, now)

        return await self._run("vote_cast", user_id, work)

    async def on_follow_action(
        self, follower_id: str, following_id: str, now: datetime | None = None
    ) -> TrackingOutcome:
        """Progress both sides: follow_users for the follower, gain_followers for the followed."""
        now = now or utcnow()

        async def work(outcome: TrackingOutcome) -> None:
            _require_user(follower_id)
            _require_user(following_id)
            if follower_id == following_id:
                raise ValidationError("Users cannot follow themselves")
            await self._progress(outcome, follower_id, (RequirementKind.FOLLOW_USERS,), now)
            await self._after_activity(outcome, follower_id, now, ActionType.FOLLOW_GIVEN)
            await self._progress(outcome, following_id, (RequirementKind.GAIN_FOLLOWERS,), now)
            outcome.awarded_badges.extend(await self.badges.evaluate(following_id, ActionType.FOLLOWER_GAINED))

        return await self._run("follow", follower_id, work)

    async def on_helpful_vote_received(
        self, user_id: str, review_id: str, voter_id: str, now: datetime | None = None
    ) -> TrackingOutcome:
        """Track the review author's side of a helpful vote."""
        now = now or utcnow()

        async def work(outcome: TrackingOutcome) -> None:
            _require_user(user_id)
            _require_user(voter_id)
            await self.xp.grant(
                user_id,
                self.settings.helpful_vote_xp_reward,
                XPSource.HELPFUL_VOTE_RECEIVED,
                entity_type=EntityType.REVIEW,
                entity_id=review_id,
                description="Your review was marked helpful",
                idempotency_key=f"helpful_vote:{review_id}:{voter_id}",
            )
            await self._progress(outcome, user_id, (RequirementKind.RECEIVE_HELPFUL_VOTES,), now)
            outcome.awarded_badges.extend(await self.badges.evaluate(user_id, ActionType.HELPFUL_VOTE_RECEIVED))

        return await self._run("helpful_vote_received", user_id, work)

    async def on_photo_uploaded(self, user_id: str, photo_id: str, now: datetime | None = None) -> TrackingOutcome:
        """Photos also feed review missions that require a photo."""
        now = now or utcnow()

        async def work(outcome: TrackingOutcome) -> None:
            _require_user(user_id)
            kinds = (RequirementKind.UPLOAD_PHOTOS, *REVIEW_KINDS)
            await self._progress(outcome, user_id, kinds, now)
            await self._after_activity(outcome, user_id, now, ActionType.PHOTO_UPLOADED)

        return await self._run("photo_uploaded", user_id, work)

    # ------------------------------------------------------------------
    # Scheduled resets
    # ------------------------------------------------------------------

    async def reset_daily_missions(self, now: datetime | None = None) -> int:
        return await self._reset(MissionType.DAILY, now or utcnow())

    async def reset_weekly_missions(self, now: datetime | None = None) -> int:
        return await self._reset(MissionType.WEEKLY, now or utcnow())

    async def _reset(self, mission_type: str, now: datetime) -> int:
        """Close unfinished rows of past periods; rows stay as history.

        With ``mission_history_retention_days`` set, rows whose period
        started before the retention cutoff are deleted.
        """
        current_key, _ = period_for(mission_type, now)
        retention = self.settings.mission_history_retention_days
        pruned = 0
        try:
            rolled = await self.repo.expire_periods(mission_type, current_key, now)
            if retention is not None:
                pruned = await self.repo.prune_history(mission_type, now - timedelta(days=retention))
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("%s mission reset failed", mission_type, exc_info=True)
            raise InternalError(f"{mission_type} mission reset failed") from exc
        logger.info("%s missions rolled over to %s: %d expired, %d pruned", mission_type, current_key, rolled, pruned)
        return rolled

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    async def user_missions(self, user_id: str, now: datetime | None = None) -> list[MissionStatus]:
        """Active missions with the user's progress for the current period."""
        now = now or utcnow()
        missions = await self.active_missions(None, now)
        locked = await self._locked_ids(user_id, await self._chained_ids(missions))

        statuses = []
        for mission in missions:
            period_key, _ = period_for(mission.type, now)
            progress = await self.repo.get(user_id, mission.id, period_key)
            statuses.append(
                MissionStatus(
                    mission=mission,
                    period_key=period_key,
                    progress_counter=progress.progress_counter if progress else 0,
                    completed_at=progress.completed_at if progress else None,
                    locked=mission.id in locked,
                )
            )
        return statuses

    async def active_missions(self, kinds: Iterable[str] | None, now: datetime) -> list[Mission]:
        """Active missions of the given requirement kinds, inside their event window."""
        stmt = select(Mission).where(
            Mission.is_active.is_(True),
            or_(Mission.starts_at.is_(None), Mission.starts_at <= now),
            or_(Mission.ends_at.is_(None), Mission.ends_at > now),
        )
        if kinds is not None:
            stmt = stmt.where(Mission.requirement_type.in_(list(kinds)))
        result = await self.db.execute(stmt.order_by(Mission.sort_order, Mission.id))
        return list(result.scalars())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run(
        self,
        event: str,
        user_id: str,
        work: Callable[[TrackingOutcome], Awaitable[None]],
    ) -> TrackingOutcome:
        """Commit the unit of work and flush notifications, or roll both back."""
        outcome = TrackingOutcome()
        try:
            await work(outcome)
            await self.db.commit()
        except ConflictError:
            await self.db.rollback()
            self.outbox.discard()
            logger.debug("%s for user %s was a duplicate, nothing to do", event, user_id)
            return TrackingOutcome()
        except ProgressionError as exc:
            await self.db.rollback()
            self.outbox.discard()
            logger.warning("%s tracking rejected for user %s: %s", event, user_id, exc.message)
            return TrackingOutcome(error=exc.kind)
        except SQLAlchemyError:
            await self.db.rollback()
            self.outbox.discard()
            logger.error("%s tracking failed for user %s", event, user_id, exc_info=True)
            return TrackingOutcome(error=ErrorKind.INTERNAL)

        await self.outbox.flush()
        if outcome.completed_missions or outcome.awarded_badges:
            logger.info(
                "%s for user %s: completed missions %s, badges %s",
                event, user_id, outcome.completed_missions, outcome.awarded_badges,
            )
        return outcome

    async def _after_activity(
        self, outcome: TrackingOutcome, user_id: str, now: datetime, action: str | None = None
    ) -> None:
        """Streak bookkeeping plus badge evaluation for the acting user."""
        await self.streaks.record_activity(user_id, local_today(now))
        if action is not None:
            outcome.awarded_badges.extend(await self.badges.evaluate(user_id, action))
        outcome.awarded_badges.extend(await self.badges.evaluate(user_id, ActionType.ACTIVITY))

    async def _progress(
        self,
        outcome: TrackingOutcome,
        user_id: str,
        kinds: Iterable[str],
        now: datetime,
        zone: str | None = None,
    ) -> None:
        missions = await self.active_missions(kinds, now)
        chained = await self._chained_ids(missions)
        locked = await self._locked_ids(user_id, chained)

        for mission in missions:
            if mission.id in locked:
                continue
            if mission.requirement_type == RequirementKind.CHECK_IN_ZONE and mission.requirements.get("zone") != zone:
                continue

            mark = self.outbox.mark()
            try:
                async with self.db.begin_nested():
                    completed, badge_ids = await self._advance(user_id, mission, now, mission.id in chained)
            except (SQLAlchemyError, ProgressionError):
                self.outbox.rollback_to(mark)
                logger.warning("Mission %s progress failed for user %s", mission.id, user_id, exc_info=True)
                continue

            if completed:
                outcome.completed_missions.append(mission.id)
                outcome.awarded_badges.extend(badge_ids)

    async def _chained_ids(self, missions: list[Mission]) -> set[int]:
        """Narrative steps that some other mission points to as its next step."""
        candidate_ids = [m.id for m in missions if m.type == MissionType.NARRATIVE]
        if not candidate_ids:
            return set()
        result = await self.db.execute(
            select(Mission.next_mission_id).where(Mission.next_mission_id.in_(candidate_ids))
        )
        return set(result.scalars())

    async def _locked_ids(self, user_id: str, chained: set[int]) -> set[int]:
        """Chained steps the user has not unlocked yet (no progress row)."""
        return chained - await self.repo.unlocked_mission_ids(user_id, list(chained))

    async def _advance(
        self, user_id: str, mission: Mission, now: datetime, chained: bool
    ) -> tuple[bool, list[int]]:
        period_key, period_start = period_for(mission.type, now)
        since = await self._count_since(user_id, mission, period_key, period_start, chained)
        value = await self._measure(user_id, mission, since)

        if value is None:
            snapshot = await self.repo.increment(user_id, mission, period_key, period_start, 1)
        else:
            snapshot = await self.repo.set_absolute(user_id, mission, period_key, period_start, value)

        if snapshot is None or not snapshot.reached_target:
            return False, []
        return await self._complete(user_id, mission, snapshot.id, period_key, now)

    async def _count_since(
        self,
        user_id: str,
        mission: Mission,
        period_key: str,
        period_start: datetime | None,
        chained: bool,
    ) -> Window | None:
        """Start of the window a mission's counter covers.

        Daily and weekly missions count their own period, event missions
        their event window. A chained quest step counts only activity
        strictly after its unlock; any other narrative mission counts all history.
        """
        if period_start is not None:
            return Window(period_start)
        if mission.type == MissionType.EVENT:
            return Window(mission.starts_at) if mission.starts_at is not None else None
        if not chained:
            return None
        progress = await self.repo.get(user_id, mission.id, period_key)
        return Window(progress.created_at, exclusive=True) if progress is not None else None

    async def _measure(self, user_id: str, mission: Mission, since: Window | None) -> int | None:
        """Authoritative counter for a mission. None means a plain increment."""
        kind = mission.requirement_type
        params = mission.requirements or {}
        if kind == RequirementKind.CHECK_IN:
            if params.get("unique"):
                return await self.counters.distinct_establishments(user_id, since)
            return None
        if kind == RequirementKind.CHECK_IN_ZONE:
            return await self.counters.verified_check_ins(user_id, since, zone=params.get("zone"))
        if kind == RequirementKind.CHECK_IN_ALL_ZONES:
            return await self.counters.distinct_zones(user_id)
        if kind == RequirementKind.VISIT_ZONES:
            return await self.counters.distinct_zones(user_id, since)
        if kind == RequirementKind.WRITE_REVIEWS:
            return await self.counters.reviews(
                user_id, since, min_length=params.get("min_length"), with_photo=bool(params.get("with_photos"))
            )
        if kind == RequirementKind.WRITE_QUALITY_REVIEW:
            return await self.counters.reviews(
                user_id,
                since,
                min_length=params.get("min_length", QUALITY_REVIEW_MIN_LENGTH),
                with_photo=params.get("with_photo", True),
            )
        if kind == RequirementKind.VOTE_HELPFUL:
            return await self.counters.helpful_votes_cast(user_id, since)
        if kind == RequirementKind.FOLLOW_USERS:
            return await self.counters.following(user_id, since)
        if kind == RequirementKind.GAIN_FOLLOWERS:
            return await self.counters.followers(user_id, since)
        if kind == RequirementKind.RECEIVE_HELPFUL_VOTES:
            return await self.counters.helpful_votes_received(user_id, since)
        if kind == RequirementKind.UPLOAD_PHOTOS:
            return await self.counters.photos(user_id, since)
        raise ValidationError(f"Unknown mission requirement type: {kind!r}")

    async def _complete(
        self, user_id: str, mission: Mission, progress_id: int, period_key: str, now: datetime
    ) -> tuple[bool, list[int]]:
        """Pay out a mission once: XP, optional badge, next quest step."""
        if not await self.repo.try_complete(progress_id, now):
            return False, []

        if mission.reward_xp > 0:
            await self.xp.grant(
                user_id,
                mission.reward_xp,
                XPSource.MISSION_COMPLETED,
                entity_type=EntityType.MISSION,
                entity_id=str(mission.id),
                description=f'Mission completed: "{mission.name}"',
                idempotency_key=f"mission:{mission.id}:{user_id}:{period_key}",
            )

        badge_ids: list[int] = []
        if mission.reward_badge_id is not None and await self.badges.grant(user_id, mission.reward_badge_id):
            badge_ids.append(mission.reward_badge_id)

        if mission.next_mission_id is not None:
            await self._unlock(user_id, mission.next_mission_id, now)

        self.outbox.queue(
            user_id,
            MISSION_COMPLETED_TEMPLATE,
            {"missionId": mission.id, "missionName": mission.name, "xpReward": mission.reward_xp},
        )
        logger.info("Mission %s completed by user %s (%s)", mission.slug, user_id, period_key)
        return True, badge_ids

    async def _unlock(self, user_id: str, mission_id: int, now: datetime) -> None:
        next_mission = await self.db.get(Mission, mission_id)
        if next_mission is None or not next_mission.is_active:
            logger.warning("Next quest step %s missing or inactive", mission_id)
            return
        period_key, period_start = period_for(next_mission.type, now)
        await self.repo.ensure(user_id, next_mission, period_key, period_start, now=now)


def _require_user(user_id: str) -> None:
    if not isinstance(user_id, str) or not user_id:
        raise ValidationError("user_id is required")
