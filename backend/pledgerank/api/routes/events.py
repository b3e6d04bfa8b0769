"""Event API routes: registration, public totals, achievements."""

from decimal import Decimal

from fastapi import APIRouter, Depends, Query

from pledgerank.api.deps import get_contribution_service
from pledgerank.core.auth import DonorIdentity, require_admin
from pledgerank.db.models.achievement import Achievement
from pledgerank.domain.timewindow import as_utc
from pledgerank.schemas.events import (
    AchievementResponse,
    EvaluateResponse,
    EventCreateRequest,
    EventResponse,
    EventTotalsResponse,
)
from pledgerank.services.contribution_service import ContributionService

router = APIRouter()


def _achievement_response(achievement: Achievement) -> AchievementResponse:
    return AchievementResponse(
        achievement_id=str(achievement.id),
        event_id=achievement.event_id,
        trigger_type=achievement.trigger_type,
        trigger_value=achievement.trigger_value,
        title=achievement.title,
        is_unlocked=achievement.is_unlocked,
        unlocked_at=as_utc(achievement.unlocked_at),
    )


@router.post("", response_model=EventResponse, status_code=201)
async def create_event(
    request: EventCreateRequest,
    admin: DonorIdentity = Depends(require_admin),
    service: ContributionService = Depends(get_contribution_service),
):
    """Register a campaign. Milestones are fixed from here on."""
    event = await service.aggregation.register_event(
        event_id=request.event_id,
        target_amount=request.target_amount,
        milestones=request.milestones,
        deadline=request.deadline,
    )
    return EventResponse(
        event_id=event.id,
        target_amount=event.target_amount,
        milestones=[Decimal(m) for m in event.milestones],
        deadline=as_utc(event.deadline),
        created_at=as_utc(event.created_at),
    )


@router.get("/{event_id}/totals", response_model=EventTotalsResponse)
async def get_event_totals(
    event_id: str,
    service: ContributionService = Depends(get_contribution_service),
):
    """Public totals. Independent of which commitments have been revealed."""
    totals = await service.aggregation.get_event_totals(event_id)
    return EventTotalsResponse(
        event_id=totals.event_id,
        current_amount=totals.current_amount,
        unique_donor_count=totals.unique_donor_count,
        commitment_count=totals.commitment_count,
        progress_percentage=float(totals.progress_percentage),
    )


@router.get("/{event_id}/achievements", response_model=list[AchievementResponse])
async def list_event_achievements(
    event_id: str,
    unlocked_only: bool = Query(False, alias="unlockedOnly"),
    service: ContributionService = Depends(get_contribution_service),
):
    achievements = await service.achievements.list_achievements(event_id, unlocked_only=unlocked_only)
    return [_achievement_response(a) for a in achievements]


@router.post("/{event_id}/achievements/evaluate", response_model=EvaluateResponse)
async def evaluate_event_achievements(
    event_id: str,
    admin: DonorIdentity = Depends(require_admin),
    service: ContributionService = Depends(get_contribution_service),
):
    """Re-run achievement evaluation, e.g. to pick up time-based triggers."""
    unlocked = await service.evaluate_achievements(event_id)
    return EvaluateResponse(unlocked=[_achievement_response(a) for a in unlocked])
