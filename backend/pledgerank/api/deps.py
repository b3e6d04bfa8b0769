"""FastAPI dependencies shared by the route modules."""

from fastapi import Depends, Request

from pledgerank.db.base import get_session_factory
from pledgerank.db.redis import get_redis
from pledgerank.services.contribution_service import ContributionService
from pledgerank.services.notifier import Notifier, UpdateBus


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def get_update_bus(notifier: Notifier = Depends(get_notifier)) -> UpdateBus:
    return notifier.bus


def get_contribution_service(
    request: Request,
    redis=Depends(get_redis),
    notifier: Notifier = Depends(get_notifier),
) -> ContributionService:
    """Per-request service over the app-wide session factory, Redis pool and notifier."""
    return ContributionService(
        session_factory=get_session_factory(),
        redis=redis,
        verifier=request.app.state.proof_verifier,
        notifier=notifier,
    )
