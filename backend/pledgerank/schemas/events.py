"""Event, totals and achievement Pydantic schemas."""

from datetime import datetime
from decimal import Decimal

from pydantic import Field

from pledgerank.schemas.common import Amount, CamelModel


class EventCreateRequest(CamelModel):
    event_id: str = Field(min_length=1, max_length=255)
    target_amount: Decimal = Field(gt=0, allow_inf_nan=False)
    milestones: list[Decimal] = Field(default_factory=list)
    deadline: datetime | None = None


class EventResponse(CamelModel):
    event_id: str
    target_amount: Amount
    milestones: list[Amount]
    deadline: datetime | None = None
    created_at: datetime


class EventTotalsResponse(CamelModel):
    event_id: str
    current_amount: Amount
    unique_donor_count: int
    commitment_count: int
    progress_percentage: float


class AchievementResponse(CamelModel):
    achievement_id: str
    event_id: str
    trigger_type: str
    trigger_value: Amount
    title: str
    is_unlocked: bool
    unlocked_at: datetime | None = None


class EvaluateResponse(CamelModel):
    unlocked: list[AchievementResponse]
