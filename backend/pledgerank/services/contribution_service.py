"""ContributionService: the commit → aggregate → achieve → broadcast flow."""

import uuid

import structlog
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pledgerank.db.models.achievement import Achievement
from pledgerank.db.models.commitment import Commitment
from pledgerank.domain.achievements import TriggerType
from pledgerank.domain.ranking import GLOBAL_SCOPE_KEY, RankingScope
from pledgerank.schemas.common import format_amount
from pledgerank.schemas.updates import UpdateEvent, UpdateType
from pledgerank.services.achievement_engine import AchievementEngine
from pledgerank.services.aggregation import AggregationEngine, EventTotals
from pledgerank.services.commitment_store import CommitmentStore
from pledgerank.services.disclosure_manager import DisclosureManager
from pledgerank.services.notifier import Notifier
from pledgerank.services.proof_verifier import ProofVerifier
from pledgerank.services.ranking_engine import RankingEngine

logger = structlog.get_logger(__name__)


def commitment_update(commitment: Commitment, totals: EventTotals, topic: str) -> UpdateEvent:
    # Never carries the committed amount or the donor
    return UpdateEvent(
        type=UpdateType.COMMITMENT,
        topic=topic,
        payload={
            "eventId": commitment.event_id,
            "commitmentId": str(commitment.id),
            "commitmentHash": commitment.commitment_hash,
            "sequenceNumber": commitment.sequence_number,
            "revealed": False,
            "currentAmount": format_amount(totals.current_amount),
            "uniqueDonorCount": totals.unique_donor_count,
            "progressPercentage": float(totals.progress_percentage),
        },
    )


def reveal_update(commitment: Commitment, topic: str) -> UpdateEvent:
    # The revealed amount is public from here on; the donor still is not
    return UpdateEvent(
        type=UpdateType.COMMITMENT,
        topic=topic,
        payload={
            "eventId": commitment.event_id,
            "commitmentId": str(commitment.id),
            "commitmentHash": commitment.commitment_hash,
            "sequenceNumber": commitment.sequence_number,
            "revealed": True,
            "revealedAmount": format_amount(commitment.revealed_amount),
        },
    )


def achievement_update(achievement: Achievement, topic: str) -> UpdateEvent:
    update_type = (
        UpdateType.MILESTONE
        if achievement.trigger_type == TriggerType.MILESTONE_REACHED.value
        else UpdateType.ACHIEVEMENT
    )
    return UpdateEvent(
        type=update_type,
        topic=topic,
        payload={
            "eventId": achievement.event_id,
            "achievementId": str(achievement.id),
            "triggerType": achievement.trigger_type,
            "triggerValue": format_amount(achievement.trigger_value),
            "title": achievement.title,
        },
    )


class ContributionService:
    """Wires the engines together for the API layer.

    Steps after a commit are best-effort. The commitment is already durable,
    so their failures are logged rather than surfaced to the donor.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis: Redis,
        verifier: ProofVerifier,
        notifier: Notifier,
    ):
        self.achievements = AchievementEngine(session_factory)
        self.aggregation = AggregationEngine(session_factory, self.achievements)
        self.commitments = CommitmentStore(session_factory, redis, verifier, self.aggregation)
        self.rankings = RankingEngine(session_factory, redis)
        self.disclosure = DisclosureManager(session_factory)
        self.notifier = notifier

    async def commit(self, event_id: str, donor_ref: str, amount, commitment_hash: str, zk_proof_ref: str) -> Commitment:
        commitment = await self.commitments.record_commitment(
            event_id=event_id,
            donor_ref=donor_ref,
            committed_amount=amount,
            commitment_hash=commitment_hash,
            zk_proof_ref=zk_proof_ref,
        )
        await self.rankings.invalidate(event_id)

        try:
            unlocked = await self.achievements.evaluate(event_id)
        except Exception:
            logger.exception("post_commit_evaluation_failed", event_id=event_id, commitment_id=str(commitment.id))
            unlocked = []

        try:
            totals = await self.aggregation.get_event_totals(event_id)
            await self._broadcast(commitment_update, commitment, totals)
            for achievement in unlocked:
                await self._broadcast(achievement_update, achievement)
        except Exception:
            logger.exception("post_commit_broadcast_failed", event_id=event_id, commitment_id=str(commitment.id))

        return commitment

    async def reveal(self, commitment_id: str | uuid.UUID, donor_ref: str) -> Commitment:
        commitment = await self.commitments.reveal_commitment(commitment_id, donor_ref)
        await self.rankings.invalidate(commitment.event_id)

        try:
            await self._broadcast(reveal_update, commitment)
        except Exception:
            logger.exception(
                "post_reveal_broadcast_failed", event_id=commitment.event_id, commitment_id=str(commitment.id)
            )

        return commitment

    async def evaluate_achievements(self, event_id: str) -> list[Achievement]:
        """Manual re-evaluation, e.g. for time-based triggers."""
        unlocked = await self.achievements.evaluate(event_id)
        for achievement in unlocked:
            await self._broadcast(achievement_update, achievement)
        return unlocked

    async def _broadcast(self, build, *args) -> None:
        # Each update goes to the event topic and the global topic
        event_id = args[0].event_id
        for topic in (RankingScope(event_id).topic, GLOBAL_SCOPE_KEY):
            await self.notifier.publish(build(*args, topic=topic))
