"""Ranking API routes."""

from fastapi import APIRouter, Depends, Query

from pledgerank.api.deps import get_contribution_service
from pledgerank.core.auth import DonorIdentity, require_auth
from pledgerank.core.exceptions import AuthorizationError
from pledgerank.domain.ranking import PrivacyMode, RankingScope
from pledgerank.domain.timewindow import Timeframe
from pledgerank.schemas.rankings import RankingEntryResponse, UserRankResponse
from pledgerank.services.contribution_service import ContributionService

router = APIRouter()


@router.get("", response_model=list[RankingEntryResponse])
async def get_rankings(
    event_id: str | None = Query(None, alias="eventId"),
    timeframe: Timeframe = Query(Timeframe.ALL),
    privacy_mode: PrivacyMode = Query(PrivacyMode.PARTIAL, alias="privacyMode"),
    service: ContributionService = Depends(get_contribution_service),
):
    """Public leaderboard for an event, or platform-wide when eventId is omitted.

    One row per donor. Amounts and names appear only where the donor's
    preference allows.
    """
    entries = await service.rankings.compute_ranking(RankingScope(event_id), timeframe, privacy_mode)
    masked = await service.disclosure.mask_ranking(entries, privacy_mode)
    return [
        RankingEntryResponse(
            rank=m.rank,
            scope_key=m.scope_key,
            commitment_count=m.commitment_count,
            revealed_count=m.revealed_count,
            first_commitment_hash=m.first_commitment_hash,
            donor_display=m.donor_display,
            amount_display=m.amount_display,
        )
        for m in masked
    ]


@router.get("/user-rank", response_model=UserRankResponse)
async def get_user_rank(
    event_id: str | None = Query(None, alias="eventId"),
    donor_ref: str | None = Query(None, alias="donorRef"),
    timeframe: Timeframe = Query(Timeframe.ALL),
    privacy_mode: PrivacyMode = Query(PrivacyMode.PARTIAL, alias="privacyMode"),
    donor: DonorIdentity = Depends(require_auth),
    service: ContributionService = Depends(get_contribution_service),
):
    """Rank of a donor. Donors may only look themselves up; admins anyone."""
    target = donor_ref or donor.donor_ref
    if target != donor.donor_ref and not donor.is_admin:
        raise AuthorizationError("Donors may only query their own rank")

    scope = RankingScope(event_id)
    rank = await service.rankings.get_user_rank(scope, target, timeframe, privacy_mode)
    return UserRankResponse(rank=rank, scope_key=scope.scope_key)
