"""Disclosure rules: name sanitization, privacy score, and display masking.

Pure functions. Masking runs on already-ranked entries and only decides what
is shown; it never reorders.
"""

import re
from dataclasses import dataclass
from decimal import Decimal

from pledgerank.core.exceptions import ValidationError
from pledgerank.domain.ranking import PrivacyMode, RankedEntry

MAX_DISPLAY_NAME_LENGTH = 50

_DISPLAY_NAME_RE = re.compile(r"^[\w .'\-]+$")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class DisclosurePolicy:
    reveal_amount: bool = False
    reveal_name: bool = False
    custom_display_name: str | None = None


PRIVATE_POLICY = DisclosurePolicy()


@dataclass(frozen=True)
class MaskedEntry:
    """Leaderboard row as rendered to viewers."""

    rank: int
    scope_key: str
    commitment_count: int
    revealed_count: int
    first_commitment_hash: str
    donor_display: str
    amount_display: Decimal | None


def sanitize_display_name(raw: str | None) -> str | None:
    """Normalize a donor-chosen display name.

    Strips and collapses whitespace. A blank name clears the custom name.

    Raises:
        ValidationError: If the name is over 50 characters or contains
            characters outside letters, digits, space, ``_ - . '``
    """
    if raw is None:
        return None

    name = _WHITESPACE_RE.sub(" ", raw).strip()
    if not name:
        return None
    if len(name) > MAX_DISPLAY_NAME_LENGTH:
        raise ValidationError(f"Display name must be at most {MAX_DISPLAY_NAME_LENGTH} characters")
    if not _DISPLAY_NAME_RE.match(name):
        raise ValidationError("Display name may only contain letters, digits, spaces and _ - . '")
    return name


def privacy_score(reveal_amount: bool, reveal_name: bool) -> int:
    """100 is fully private; each disclosed attribute lowers the score."""
    score = 100 - 30 * int(reveal_amount) - 20 * int(reveal_name)
    return max(0, min(100, score))


def format_donor_ref(donor_ref: str) -> str:
    """Shorten a wallet address (or long opaque id) to ``0x1234...abcd``."""
    if len(donor_ref) <= 12:
        return donor_ref
    return f"{donor_ref[:6]}...{donor_ref[-4:]}"


def anonymous_label(rank: int) -> str:
    return f"Anonymous #{rank}"


def mask_entry(entry: RankedEntry, policy: DisclosurePolicy, mode: PrivacyMode) -> MaskedEntry:
    """Render one donor row under the donor's policy and the view mode."""
    standing = entry.standing

    if mode is PrivacyMode.FULL or not policy.reveal_name:
        donor_display = anonymous_label(entry.rank)
    else:
        donor_display = policy.custom_display_name or format_donor_ref(standing.donor_ref)

    amount_display = None
    if mode is not PrivacyMode.FULL and policy.reveal_amount:
        amount_display = standing.revealed_total

    return MaskedEntry(
        rank=entry.rank,
        scope_key=entry.scope_key,
        commitment_count=standing.commitment_count,
        revealed_count=standing.revealed_count,
        first_commitment_hash=standing.first.commitment_hash,
        donor_display=donor_display,
        amount_display=amount_display,
    )
