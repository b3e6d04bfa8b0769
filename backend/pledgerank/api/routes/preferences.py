"""Privacy preference API routes."""

from fastapi import APIRouter, Depends

from pledgerank.api.deps import get_contribution_service
from pledgerank.core.auth import DonorIdentity, require_auth
from pledgerank.domain.disclosure import privacy_score
from pledgerank.schemas.preferences import PreferenceRequest, PreferenceResponse
from pledgerank.services.contribution_service import ContributionService

router = APIRouter()


@router.put("", response_model=PreferenceResponse)
async def set_preferences(
    request: PreferenceRequest,
    donor: DonorIdentity = Depends(require_auth),
    service: ContributionService = Depends(get_contribution_service),
):
    """Replace the caller's disclosure preference. Applies to future renders only."""
    policy, score = await service.disclosure.set_preference(
        donor.donor_ref,
        reveal_amount=request.reveal_amount,
        reveal_name=request.reveal_name,
        custom_display_name=request.custom_display_name,
    )
    return PreferenceResponse(
        reveal_amount=policy.reveal_amount,
        reveal_name=policy.reveal_name,
        custom_display_name=policy.custom_display_name,
        privacy_score=score,
    )


@router.get("", response_model=PreferenceResponse)
async def get_preferences(
    donor: DonorIdentity = Depends(require_auth),
    service: ContributionService = Depends(get_contribution_service),
):
    policy = await service.disclosure.get_preference(donor.donor_ref)
    return PreferenceResponse(
        reveal_amount=policy.reveal_amount,
        reveal_name=policy.reveal_name,
        custom_display_name=policy.custom_display_name,
        privacy_score=privacy_score(policy.reveal_amount, policy.reveal_name),
    )
