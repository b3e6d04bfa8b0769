"""Ranking Pydantic schemas."""

from pledgerank.schemas.common import Amount, CamelModel


class RankingEntryResponse(CamelModel):
    """One donor's leaderboard row; amountDisplay is their revealed total."""

    rank: int
    scope_key: str
    commitment_count: int
    revealed_count: int
    first_commitment_hash: str
    donor_display: str
    amount_display: Amount | None = None


class UserRankResponse(CamelModel):
    rank: int
    scope_key: str
