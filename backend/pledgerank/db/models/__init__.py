"""Re-export all models so Base.metadata sees them."""

from pledgerank.db.models.achievement import Achievement
from pledgerank.db.models.commitment import Commitment
from pledgerank.db.models.event import Event
from pledgerank.db.models.event_donor import EventDonor
from pledgerank.db.models.privacy_preference import PrivacyPreference

__all__ = [
    "Achievement",
    "Commitment",
    "Event",
    "EventDonor",
    "PrivacyPreference",
]
