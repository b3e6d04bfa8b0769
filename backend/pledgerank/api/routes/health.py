"""Load balancer probes."""

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from pledgerank.db.base import ping_database
from pledgerank.db.redis import get_redis

logger = structlog.get_logger(__name__)

router = APIRouter()

SERVICE_NAME = "pledgerank"


async def _check_redis() -> None:
    await get_redis().ping()


_READINESS_CHECKS = {
    "database": ping_database,
    "redis": _check_redis,
}


@router.get("/health")
async def health_check(request: Request):
    """Liveness. Flips to 503 after SIGTERM so traffic drains before shutdown."""
    if getattr(request.app.state, "shutting_down", False):
        return JSONResponse(status_code=503, content={"status": "shutting_down", "service": SERVICE_NAME})
    return {"status": "healthy", "service": SERVICE_NAME}


@router.get("/ready")
async def readiness_check(request: Request):
    """Readiness: the database and Redis must both answer.

    Also reports how many live-update subscribers this instance holds.
    """
    checks = {}
    for name, check in _READINESS_CHECKS.items():
        try:
            await check()
            checks[name] = True
        except Exception as exc:
            logger.error("readiness_check_failed", check=name, error=str(exc), error_type=type(exc).__name__)
            checks[name] = False

    notifier = getattr(request.app.state, "notifier", None)
    ready = all(checks.values())
    return JSONResponse(
        status_code=200 if ready else 503,
        content={
            "status": "ready" if ready else "degraded",
            "checks": checks,
            "subscribers": notifier.bus.subscriber_count() if notifier is not None else 0,
        },
    )
