"""Commitment API routes: submit, reveal, and the donor's own list."""

from fastapi import APIRouter, Depends

from pledgerank.api.deps import get_contribution_service
from pledgerank.core.auth import DonorIdentity, require_auth
from pledgerank.db.models.commitment import Commitment
from pledgerank.domain.timewindow import as_utc
from pledgerank.schemas.commitments import (
    CommitmentCreateRequest,
    CommitmentCreateResponse,
    CommitmentView,
    RevealResponse,
)
from pledgerank.services.contribution_service import ContributionService

router = APIRouter()


def _to_view(commitment: Commitment) -> CommitmentView:
    return CommitmentView(
        commitment_id=str(commitment.id),
        event_id=commitment.event_id,
        commitment_hash=commitment.commitment_hash,
        sequence_number=commitment.sequence_number,
        recorded_at=as_utc(commitment.recorded_at),
        revealed=commitment.revealed,
        revealed_amount=commitment.revealed_amount,
        revealed_at=as_utc(commitment.revealed_at),
    )


@router.post("", response_model=CommitmentCreateResponse, status_code=201)
async def submit_commitment(
    request: CommitmentCreateRequest,
    donor: DonorIdentity = Depends(require_auth),
    service: ContributionService = Depends(get_contribution_service),
):
    """Record a commitment for the authenticated donor.

    The amount is folded into the event totals but never returned by any
    endpoint until the donor reveals it.

    Raises:
        404 unknown_event, 409 duplicate_commitment, 422 invalid_proof,
        503 dependency_error / concurrency_conflict
    """
    commitment = await service.commit(
        event_id=request.event_id,
        donor_ref=donor.donor_ref,
        amount=request.amount,
        commitment_hash=request.commitment_hash,
        zk_proof_ref=request.zk_proof_ref,
    )
    return CommitmentCreateResponse(commitment_id=str(commitment.id), sequence_number=commitment.sequence_number)


@router.post("/{commitment_id}/reveal", response_model=RevealResponse)
async def reveal_commitment(
    commitment_id: str,
    donor: DonorIdentity = Depends(require_auth),
    service: ContributionService = Depends(get_contribution_service),
):
    """Reveal one of the caller's commitments. Repeat calls return the same result."""
    commitment = await service.reveal(commitment_id, donor.donor_ref)
    return RevealResponse(commitment_id=str(commitment.id), revealed_amount=commitment.revealed_amount)


@router.get("/mine", response_model=list[CommitmentView])
async def list_my_commitments(
    donor: DonorIdentity = Depends(require_auth),
    service: ContributionService = Depends(get_contribution_service),
):
    commitments = await service.commitments.list_donor_commitments(donor.donor_ref)
    return [_to_view(c) for c in commitments]
