"""Deterministic funding progress computation.

Pure functions with no external dependencies.
"""

from decimal import ROUND_HALF_UP, Decimal

_TWO_PLACES = Decimal("0.01")


def progress_percentage(current_amount: Decimal, target_amount: Decimal) -> Decimal:
    """Compute funding progress as a percentage of the target.

    Args:
        current_amount: Sum of committed amounts
        target_amount: Event target, must be positive

    Returns:
        Percentage rounded half-up to 2 places. Not capped: an over-funded
        event reports more than 100.
    """
    if target_amount <= 0:
        return Decimal("0.00")
    return (Decimal(current_amount) / Decimal(target_amount) * 100).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)
