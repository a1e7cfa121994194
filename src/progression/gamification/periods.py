"""Reference clock: period boundaries in the engine's fixed timezone.

Day, week and month boundaries are evaluated in Asia/Bangkok (UTC+7)
regardless of the server's locale. Instants are stored in UTC.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from progression.gamification.types import MissionType

REFERENCE_TZ = ZoneInfo("Asia/Bangkok")

NON_PERIODIC_KEY = "all"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_local(dt: datetime) -> datetime:
    """Convert an aware datetime (naive is taken as UTC) to reference time."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(REFERENCE_TZ)


def local_today(now: datetime | None = None) -> date:
    """Calendar date in the reference timezone."""
    return to_local(now or utcnow()).date()


def get_week_iso(d: date) -> str:
    """ISO week string e.g. '2026-W42'. Uses %G-W%V (ISO year + ISO week)."""
    return d.strftime("%G-W%V")


def get_monday(d: date) -> date:
    """Monday of the ISO week containing d."""
    return d - timedelta(days=d.weekday())


def start_of_day(now: datetime) -> datetime:
    """UTC instant of today's local midnight."""
    local = datetime.combine(local_today(now), time.min, tzinfo=REFERENCE_TZ)
    return local.astimezone(timezone.utc)


def start_of_week(now: datetime) -> datetime:
    """UTC instant of this week's local Monday 00:00."""
    local = datetime.combine(get_monday(local_today(now)), time.min, tzinfo=REFERENCE_TZ)
    return local.astimezone(timezone.utc)


def start_of_month(now: datetime) -> datetime:
    """UTC instant of the 1st of this local month, 00:00."""
    local = datetime.combine(local_today(now).replace(day=1), time.min, tzinfo=REFERENCE_TZ)
    return local.astimezone(timezone.utc)


def period_for(mission_type: str, now: datetime) -> tuple[str, datetime | None]:
    """Return ``(period_key, period_start)`` for a mission type at ``now``.

    Daily missions key on the local date, weekly missions on the ISO week
    of the local date. Event and narrative missions have a single period.
    """
    if mission_type == MissionType.DAILY:
        return local_today(now).isoformat(), start_of_day(now)
    if mission_type == MissionType.WEEKLY:
        return get_week_iso(local_today(now)), start_of_week(now)
    return NON_PERIODIC_KEY, None
