"""Composition root: wires every service onto one session and one outbox."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from progression.config import Settings, get_settings
from progression.gamification.badge_service import BadgeService
from progression.gamification.checkin_service import CheckInService
from progression.gamification.leaderboard_service import LeaderboardService
from progression.gamification.ledger import LedgerStore
from progression.gamification.mission_service import MissionService
from progression.gamification.notifications import NotificationDispatcher, NotificationOutbox, NullDispatcher
from progression.gamification.streak_service import StreakService
from progression.gamification.xp_service import XPService


class ProgressionEngine:
    """All progression services bound to a single unit of work.

    Build one per request or per consumed event; the session and the
    outbox must not be shared between concurrent callers.
    """

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: NotificationDispatcher | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self.outbox = NotificationOutbox(dispatcher or NullDispatcher())
        self.ledger = LedgerStore(db)
        self.xp = XPService(db, self.outbox, self.settings.award_retry_backoff_seconds)
        self.rewards = self.xp.rewards
        self.streaks = StreakService(db)
        self.badges = BadgeService(db, self.xp, self.outbox)
        self.missions = MissionService(db, self.xp, self.badges, self.streaks, self.outbox, self.settings)
        self.checkins = CheckInService(db, self.missions, self.xp, self.settings)
        self.leaderboards = LeaderboardService(db, self.settings.leaderboard_max_limit)
