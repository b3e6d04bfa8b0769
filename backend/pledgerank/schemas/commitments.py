"""Commitment Pydantic schemas for API requests and responses."""

from datetime import datetime
from decimal import Decimal

from pydantic import Field

from pledgerank.schemas.common import Amount, CamelModel


class CommitmentCreateRequest(CamelModel):
    event_id: str = Field(min_length=1, max_length=255)
    commitment_hash: str = Field(min_length=1, max_length=255)
    zk_proof_ref: str = Field(min_length=1, max_length=1024)
    amount: Decimal = Field(gt=0, allow_inf_nan=False)  # kept server-side, never echoed


class CommitmentCreateResponse(CamelModel):
    commitment_id: str
    sequence_number: int


class RevealResponse(CamelModel):
    commitment_id: str
    revealed_amount: Amount


class CommitmentView(CamelModel):
    """A donor's own commitment, as shown on their dashboard."""

    commitment_id: str
    event_id: str
    commitment_hash: str
    sequence_number: int
    recorded_at: datetime
    revealed: bool
    revealed_amount: Amount | None = None
    revealed_at: datetime | None = None
