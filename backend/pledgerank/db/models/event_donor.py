"""EventDonor model: set of distinct donors per event."""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, ForeignKey, String

from pledgerank.db.base import Base


class EventDonor(Base):
    __tablename__ = "event_donors"

    event_id = Column(String(255), ForeignKey("events.id"), primary_key=True)
    donor_ref = Column(String(255), primary_key=True)
    first_seen_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
