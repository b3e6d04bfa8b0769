"""PrivacyPreference model: per-donor disclosure settings."""

from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from pledgerank.db.base import Base


class PrivacyPreference(Base):
    __tablename__ = "privacy_preferences"

    donor_ref = Column(String(255), primary_key=True)
    reveal_amount = Column(Boolean, nullable=False, default=False)
    reveal_name = Column(Boolean, nullable=False, default=False)
    custom_display_name = Column(String(50), nullable=True)

    version = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC))
