"""Health check endpoints."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import text

from rx_caller import __version__
from rx_caller.dependencies import DatabaseDep, SettingsDep
from rx_caller.core.logging import get_logger

log = get_logger(__name__)

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    version: str
    environment: str
    checks: dict[str, Any]


@router.get("/health", response_model=HealthResponse)
async def health_check(db: DatabaseDep, settings: SettingsDep) -> HealthResponse:
    """Perform health check.

    Components checked:
    - API: Always ok if reachable
    - Database: Connectivity test via SELECT 1
    - Voice provider: Which gateway is configured
    """
    checks: dict[str, Any] = {
        "api": "ok",
        "database": await _check_database(db),
        "voice_provider": settings.voice.provider,
    }

    status = "healthy" if checks["database"] == "ok" else "unhealthy"

    return HealthResponse(
        status=status,
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=__version__,
        environment=settings.environment,
        checks=checks,
    )


@router.get("/live")
async def liveness_check() -> dict[str, str]:
    """Check if the service is alive."""
    return {"status": "alive"}


async def _check_database(db) -> str | dict[str, Any]:
    """Check database connectivity.

    Returns:
        "ok" if connected, error details otherwise
    """
    try:
        result = await db.execute(text("SELECT 1"))
        result.fetchone()
        return "ok"
    except Exception as e:
        log.warning("Database health check failed", error=str(e))
        return {
            "status": "error",
            "message": str(e),
        }
