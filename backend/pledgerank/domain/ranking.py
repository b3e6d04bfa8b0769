"""Ranking strategies over a commitment snapshot.

Pure functions: no DB or cache access. The service layer reads one snapshot,
hands it here, and gets back one row per donor with ranks 1..N. Ordering
never consults disclosure preferences, so masking cannot move an entry.
"""

from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum


class PrivacyMode(str, Enum):
    """How much of the ledger a ranking view may use and show."""

    TRANSPARENT = "transparent"  # revealed totals rank first, by size
    PARTIAL = "partial"  # commitment order, names per preference
    FULL = "full"  # commitment order, everyone anonymous


GLOBAL_SCOPE_KEY = "global"


@dataclass(frozen=True)
class RankingScope:
    """Either one event or the whole platform (event_id=None)."""

    event_id: str | None = None

    @property
    def is_global(self) -> bool:
        return self.event_id is None

    @property
    def scope_key(self) -> str:
        return GLOBAL_SCOPE_KEY if self.event_id is None else f"event:{self.event_id}"

    @property
    def topic(self) -> str:
        return self.scope_key


@dataclass(frozen=True)
class RankableCommitment:
    """Snapshot row a ranking is computed from."""

    commitment_id: str
    event_id: str
    donor_ref: str
    commitment_hash: str
    sequence_number: int
    recorded_at: datetime
    revealed: bool = False
    revealed_amount: Decimal | None = None


@dataclass(frozen=True)
class DonorStanding:
    """All of one donor's commitments in scope, folded into a leaderboard row."""

    donor_ref: str
    first: RankableCommitment
    commitment_count: int
    revealed_count: int = 0
    revealed_total: Decimal | None = None  # None until something is revealed


@dataclass(frozen=True)
class RankedEntry:
    rank: int
    scope_key: str
    standing: DonorStanding = field(repr=False)

    @property
    def donor_ref(self) -> str:
        return self.standing.donor_ref


CommitmentKey = Callable[[RankableCommitment], tuple]
SortKey = Callable[[DonorStanding], tuple]


def _commitment_order(scope: RankingScope) -> CommitmentKey:
    # Sequence numbers are per event; across events recorded_at decides.
    if scope.is_global:
        return lambda c: (c.recorded_at, c.event_id, c.sequence_number, c.commitment_hash)
    return lambda c: (c.sequence_number, c.commitment_hash)


def group_by_donor(commitments: Iterable[RankableCommitment], scope: RankingScope) -> list[DonorStanding]:
    """One standing per donor; its ``first`` is the earliest commitment in scope order."""
    order = _commitment_order(scope)
    by_donor: dict[str, list[RankableCommitment]] = defaultdict(list)
    for commitment in commitments:
        by_donor[commitment.donor_ref].append(commitment)

    standings = []
    for donor_ref, rows in by_donor.items():
        revealed = [c.revealed_amount for c in rows if c.revealed and c.revealed_amount is not None]
        standings.append(
            DonorStanding(
                donor_ref=donor_ref,
                first=min(rows, key=order),
                commitment_count=len(rows),
                revealed_count=len(revealed),
                revealed_total=sum(revealed, Decimal(0)) if revealed else None,
            )
        )
    return standings


def _first_commitment_order(scope: RankingScope) -> SortKey:
    order = _commitment_order(scope)
    return lambda s: order(s.first)


def _revealed_total_first(scope: RankingScope) -> SortKey:
    order = _commitment_order(scope)

    def key(s: DonorStanding) -> tuple:
        if s.revealed_total is not None:
            return (0, -s.revealed_total, s.first.commitment_hash)
        return (1, *order(s.first))

    return key


RANKING_STRATEGIES: dict[PrivacyMode, Callable[[RankingScope], SortKey]] = {
    PrivacyMode.TRANSPARENT: _revealed_total_first,
    PrivacyMode.PARTIAL: _first_commitment_order,
    PrivacyMode.FULL: _first_commitment_order,
}


def rank_donors(
    commitments: Iterable[RankableCommitment],
    scope: RankingScope,
    mode: PrivacyMode,
) -> list[RankedEntry]:
    """Group a snapshot by donor, order it for the given mode and assign ranks 1..N.

    Deterministic: the same snapshot always yields the same list, because
    every sort key ends in the donor's first commitment hash, and hashes are
    unique.
    """
    key = RANKING_STRATEGIES[mode](scope)
    ordered = sorted(group_by_donor(commitments, scope), key=key)
    return [RankedEntry(rank=i, scope_key=scope.scope_key, standing=s) for i, s in enumerate(ordered, start=1)]


def donor_rank(entries: Iterable[RankedEntry], donor_ref: str) -> int | None:
    """Rank of the donor's row, or None if they have no commitment in scope."""
    return next((e.rank for e in entries if e.donor_ref == donor_ref), None)
