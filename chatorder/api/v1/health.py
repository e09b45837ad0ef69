"""Health check endpoints."""

from typing import Any

from fastapi import APIRouter
from sqlalchemy import text

from chatorder.core.config import settings
from chatorder.core.deps import DBSession, RedisClient

router = APIRouter(tags=["health"])


def _integration_status() -> dict[str, str]:
    """Which outside services have credentials. Informational only."""

    def state(configured: bool) -> str:
        return "configured" if configured else "not configured"

    return {
        "oracle": state(bool(settings.openai_api_key)),
        "qpay": state(bool(settings.qpay_username and settings.qpay_invoice_code)),
        "google_sheets": state(
            bool(settings.google_service_account_email and settings.google_private_key)
        ),
    }


@router.get("/health")
async def health_check(db: DBSession, redis: RedisClient) -> dict[str, Any]:
    """Database and Redis must answer; Redis carries the Celery broker,
    conversation locks and dashboard events, so the service is unhealthy
    without it.
    """
    checks: dict[str, str] = {}
    healthy = True

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "healthy"
    except Exception as e:
        healthy = False
        checks["database"] = f"unhealthy: {e}"

    try:
        await redis.ping()
        checks["redis"] = "healthy"
    except Exception as e:
        healthy = False
        checks["redis"] = f"unhealthy: {e}"

    return {
        "status": "healthy" if healthy else "unhealthy",
        "version": settings.version,
        "environment": settings.environment,
        "checks": checks,
        "integrations": _integration_status(),
    }


@router.get("/health/live")
async def liveness_check() -> dict[str, str]:
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_check(db: DBSession) -> dict[str, str]:
    """Ready once the database answers."""
    await db.execute(text("SELECT 1"))
    return {"status": "ready"}
