"""Achievement model: per-event trigger definition plus its unlock state."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, UniqueConstraint, Uuid

from pledgerank.db.base import Base
from pledgerank.db.models.event import AMOUNT


class Achievement(Base):
    __tablename__ = "achievements"
    __table_args__ = (
        UniqueConstraint("event_id", "trigger_type", "trigger_value", name="uq_achievement_trigger"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    event_id = Column(String(255), ForeignKey("events.id"), nullable=False, index=True)

    trigger_type = Column(String(50), nullable=False)  # milestone_reached, donor_count, funding_percentage, time_based
    trigger_value = Column(AMOUNT, nullable=False)
    title = Column(String(255), nullable=False)

    is_unlocked = Column(Boolean, nullable=False, default=False)
    unlocked_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
