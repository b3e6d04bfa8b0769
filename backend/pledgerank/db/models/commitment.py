"""Commitment model: one recorded donation commitment and its reveal state."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint, Uuid

from pledgerank.db.base import Base
from pledgerank.db.models.event import AMOUNT


class Commitment(Base):
    __tablename__ = "commitments"
    __table_args__ = (UniqueConstraint("event_id", "sequence_number", name="uq_commitment_event_sequence"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    event_id = Column(String(255), ForeignKey("events.id"), nullable=False, index=True)
    donor_ref = Column(String(255), nullable=False, index=True)

    committed_amount = Column(AMOUNT, nullable=False)  # server-internal, never rendered
    commitment_hash = Column(String(255), nullable=False, unique=True)
    sequence_number = Column(Integer, nullable=False)  # 1-based, gapless per event
    zk_proof_ref = Column(String(1024), nullable=False)
    recorded_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), index=True)

    # Reveal is one-way: revealed_amount is written once and equals committed_amount
    revealed = Column(Boolean, nullable=False, default=False)
    revealed_amount = Column(AMOUNT, nullable=True)
    revealed_at = Column(DateTime(timezone=True), nullable=True)
