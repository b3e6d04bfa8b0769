"""Event model: campaign aggregate, written only by the aggregation engine."""

from datetime import UTC, datetime

from sqlalchemy import JSON, Column, DateTime, Integer, Numeric, String

from pledgerank.db.base import Base

AMOUNT = Numeric(38, 18)


class Event(Base):
    __tablename__ = "events"

    id = Column(String(255), primary_key=True)
    target_amount = Column(AMOUNT, nullable=False)
    milestones = Column(JSON, nullable=False, default=list)  # ascending amounts, fixed at creation
    deadline = Column(DateTime(timezone=True), nullable=True)

    # Aggregates: monotonic, sum of committed (never revealed) amounts
    current_amount = Column(AMOUNT, nullable=False, default=0)
    unique_donor_count = Column(Integer, nullable=False, default=0)
    commitment_count = Column(Integer, nullable=False, default=0)

    # Compare-and-set counter for aggregate writes
    version = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC))
