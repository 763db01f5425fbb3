"""Liveness and readiness checks."""

from pathlib import Path

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from taskdesk.config import get_settings
from taskdesk.db.session import get_db_session

router = APIRouter()
settings = get_settings()


def _uploads_status() -> str:
    uploads = Path(settings.uploads_dir)
    if not uploads.exists():
        # Created on first upload
        return "healthy"
    if not uploads.is_dir():
        return "unhealthy: not a directory"
    return "healthy"


@router.get("/health")
async def health_check() -> dict[str, str]:
    """Liveness: the process is up."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }


@router.get("/health/ready")
async def readiness_check(
    db: AsyncSession = Depends(get_db_session),
) -> dict[str, str | dict[str, str]]:
    """Readiness: the database answers and the uploads path is usable."""
    checks: dict[str, str] = {"uploads": _uploads_status()}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "healthy"
    except SQLAlchemyError as e:
        checks["database"] = f"unhealthy: {e}"

    healthy = all(value == "healthy" for value in checks.values())
    return {
        "status": "healthy" if healthy else "unhealthy",
        "version": settings.app_version,
        "checks": checks,
    }
