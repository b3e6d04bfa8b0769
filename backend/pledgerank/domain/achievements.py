"""Achievement trigger definitions and threshold checks.

Pure functions. Each definition is checked on its own against one aggregate
snapshot; no definition depends on another having unlocked.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum

from pledgerank.domain.timewindow import elapsed_percentage


class TriggerType(str, Enum):
    MILESTONE_REACHED = "milestone_reached"
    DONOR_COUNT = "donor_count"
    FUNDING_PERCENTAGE = "funding_percentage"
    TIME_BASED = "time_based"


@dataclass(frozen=True)
class AchievementDefinition:
    trigger_type: TriggerType
    trigger_value: Decimal
    title: str


@dataclass(frozen=True)
class AggregateSnapshot:
    """Event aggregates as read at evaluation time."""

    current_amount: Decimal
    target_amount: Decimal
    unique_donor_count: int
    created_at: datetime
    deadline: datetime | None = None


def _fmt(value: Decimal) -> str:
    return format(Decimal(value).normalize(), "f")


def achievement_title(trigger_type: TriggerType, trigger_value: Decimal) -> str:
    value = _fmt(trigger_value)
    if trigger_type is TriggerType.MILESTONE_REACHED:
        return f"Milestone reached: {value}"
    if trigger_type is TriggerType.FUNDING_PERCENTAGE:
        return f"{value}% funded"
    if trigger_type is TriggerType.DONOR_COUNT:
        return "First donor" if value == "1" else f"{value} donors"
    return f"{value}% of campaign time elapsed"


def build_definitions(
    milestones: Iterable[Decimal],
    funding_checkpoints: Iterable[int],
    donor_thresholds: Iterable[int],
    time_checkpoints: Iterable[int],
    has_deadline: bool,
) -> list[AchievementDefinition]:
    """Expand an event's configuration into its achievement definitions.

    time_based definitions only exist for events with a deadline.
    """
    pairs: list[tuple[TriggerType, Decimal]] = []
    pairs += [(TriggerType.MILESTONE_REACHED, Decimal(m)) for m in milestones]
    pairs += [(TriggerType.FUNDING_PERCENTAGE, Decimal(p)) for p in funding_checkpoints]
    pairs += [(TriggerType.DONOR_COUNT, Decimal(n)) for n in donor_thresholds]
    if has_deadline:
        pairs += [(TriggerType.TIME_BASED, Decimal(p)) for p in time_checkpoints]

    seen: set[tuple[TriggerType, Decimal]] = set()
    definitions = []
    for trigger_type, value in pairs:
        if (trigger_type, value) in seen:
            continue
        seen.add((trigger_type, value))
        definitions.append(AchievementDefinition(trigger_type, value, achievement_title(trigger_type, value)))
    return definitions


def is_triggered(
    trigger_type: TriggerType | str,
    trigger_value: Decimal,
    snapshot: AggregateSnapshot,
    now: datetime,
) -> bool:
    """Check one definition against the snapshot.

    Raises:
        ValueError: If trigger_type is unknown
    """
    trigger_type = TriggerType(trigger_type)
    trigger_value = Decimal(trigger_value)

    if trigger_type is TriggerType.MILESTONE_REACHED:
        return snapshot.current_amount >= trigger_value

    if trigger_type is TriggerType.FUNDING_PERCENTAGE:
        if snapshot.target_amount <= 0:
            return False
        return snapshot.current_amount * 100 >= trigger_value * snapshot.target_amount

    if trigger_type is TriggerType.DONOR_COUNT:
        return snapshot.unique_donor_count >= trigger_value

    if snapshot.deadline is None:
        return False
    return Decimal(str(elapsed_percentage(snapshot.created_at, snapshot.deadline, now))) >= trigger_value
