"""Liveness, readiness and version endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from progression.config import get_settings
from progression.database import get_session
from progression.db.models import Badge, Mission
from progression.redis_client import get_redis

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> dict[str, object]:
    """Database, catalog and Redis checks.

    An empty catalog means startup seeding did not run, so no mission or
    badge can ever be earned; that counts as degraded.
    """
    checks: dict[str, object] = {}

    try:
        active_missions = (
            await db.execute(select(func.count(Mission.id)).where(Mission.is_active.is_(True)))
        ).scalar_one()
        badges = (await db.execute(select(func.count(Badge.id)).where(Badge.is_active.is_(True)))).scalar_one()
        checks["database"] = "ok"
        checks["catalog"] = "ok" if active_missions and badges else "empty"
    except Exception as exc:
        checks["database"] = f"error: {exc}"

    # Without Redis, trigger events and notifications stall but reads still work.
    try:
        await get_redis().ping()
        checks["redis"] = "ok"
    except Exception as exc:
        checks["redis"] = f"error: {exc}"

    all_ok = all(v == "ok" for v in checks.values())
    return {"status": "ready" if all_ok else "degraded", "checks": checks}


@router.get("/version")
async def version() -> dict[str, str]:
    settings = get_settings()
    return {
        "service": "progression-engine",
        "version": settings.app_version,
        "environment": settings.environment,
    }
