"""CommitmentStore: records donation commitments and their one-way reveal."""

import asyncio
import uuid
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation

import structlog
from redis.asyncio import Redis
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pledgerank.core.config import get_settings
from pledgerank.core.exceptions import (
    ConcurrencyError,
    DependencyError,
    DuplicateCommitmentError,
    InvalidProofError,
    NotFoundError,
    NotOwnerError,
    UnknownEventError,
    ValidationError,
)
from pledgerank.core.locking import EventLock
from pledgerank.db.models.commitment import Commitment
from pledgerank.db.models.event import Event
from pledgerank.services.aggregation import AggregationEngine
from pledgerank.services.proof_verifier import ProofVerifier

logger = structlog.get_logger(__name__)

MAX_HASH_LENGTH = 255
MAX_PROOF_REF_LENGTH = 1024


def _parse_commitment_id(commitment_id: str | uuid.UUID) -> uuid.UUID:
    if isinstance(commitment_id, uuid.UUID):
        return commitment_id
    try:
        return uuid.UUID(commitment_id)
    except (ValueError, TypeError, AttributeError) as exc:
        raise NotFoundError(f"Commitment '{commitment_id}' not found") from exc


class CommitmentStore:
    """Persists commitments under the per-event writer lock.

    Sequence allocation, the commitment insert and the aggregate update share
    one transaction; any failure leaves nothing behind.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis: Redis,
        verifier: ProofVerifier,
        aggregation: AggregationEngine,
        lock: EventLock | None = None,
        verify_timeout: float | None = None,
    ):
        self.session_factory = session_factory
        self.verifier = verifier
        self.aggregation = aggregation
        self.lock = lock or EventLock(redis)
        self.verify_timeout = (
            verify_timeout if verify_timeout is not None else get_settings().proof_verify_timeout_seconds
        )

    async def record_commitment(
        self,
        event_id: str,
        donor_ref: str,
        committed_amount: Decimal,
        commitment_hash: str,
        zk_proof_ref: str,
    ) -> Commitment:
        """Verify and persist a commitment, updating event totals atomically.

        Returns:
            The stored commitment with its sequence number

        Raises:
            ValidationError: Malformed input
            UnknownEventError: Event does not exist
            DuplicateCommitmentError: Hash already recorded
            InvalidProofError: Verifier rejected the proof
            DependencyError: Verifier timed out or failed
            ConcurrencyError: Lock wait or aggregate CAS exhausted
        """
        amount = self._validate(donor_ref, committed_amount, commitment_hash, zk_proof_ref)
        commitment_hash = commitment_hash.strip()
        zk_proof_ref = zk_proof_ref.strip()

        async with self.session_factory() as session:
            if await session.get(Event, event_id) is None:
                raise UnknownEventError(event_id)
            if await self._hash_exists(session, commitment_hash):
                raise DuplicateCommitmentError(commitment_hash)

        await self._verify_proof(zk_proof_ref, commitment_hash, event_id)

        try:
            async with self.lock.hold(event_id):
                async with self.session_factory() as session, session.begin():
                    result = await session.execute(
                        select(func.coalesce(func.max(Commitment.sequence_number), 0)).where(
                            Commitment.event_id == event_id
                        )
                    )
                    sequence_number = result.scalar_one() + 1

                    commitment = Commitment(
                        id=uuid.uuid4(),
                        event_id=event_id,
                        donor_ref=donor_ref,
                        committed_amount=amount,
                        commitment_hash=commitment_hash,
                        sequence_number=sequence_number,
                        zk_proof_ref=zk_proof_ref,
                        recorded_at=datetime.now(UTC),
                        revealed=False,
                    )
                    session.add(commitment)
                    await session.flush()
                    await self.aggregation.on_commitment_recorded(session, commitment)
        except IntegrityError as exc:
            async with self.session_factory() as session:
                if await self._hash_exists(session, commitment_hash):
                    raise DuplicateCommitmentError(commitment_hash) from exc
            logger.warning("commitment_sequence_conflict", event_id=event_id)
            raise ConcurrencyError(f"Event '{event_id}' sequence contended, retry shortly") from exc

        logger.info(
            "commitment_recorded",
            event_id=event_id,
            commitment_id=str(commitment.id),
            sequence_number=sequence_number,
        )
        return commitment

    def _validate(self, donor_ref, committed_amount, commitment_hash, zk_proof_ref) -> Decimal:
        if not donor_ref:
            raise ValidationError("donorRef must not be empty")
        if not commitment_hash or not commitment_hash.strip():
            raise ValidationError("commitmentHash must not be empty")
        if len(commitment_hash.strip()) > MAX_HASH_LENGTH:
            raise ValidationError(f"commitmentHash must be at most {MAX_HASH_LENGTH} characters")
        if not zk_proof_ref or not zk_proof_ref.strip():
            raise ValidationError("zkProofRef must not be empty")
        if len(zk_proof_ref.strip()) > MAX_PROOF_REF_LENGTH:
            raise ValidationError(f"zkProofRef must be at most {MAX_PROOF_REF_LENGTH} characters")
        try:
            amount = Decimal(str(committed_amount))
        except (InvalidOperation, ValueError) as exc:
            raise ValidationError("amount must be a number") from exc
        if not amount.is_finite() or amount <= 0:
            raise ValidationError("amount must be positive")
        return amount

    async def _hash_exists(self, session: AsyncSession, commitment_hash: str) -> bool:
        result = await session.execute(select(Commitment.id).where(Commitment.commitment_hash == commitment_hash))
        return result.first() is not None

    async def _verify_proof(self, zk_proof_ref: str, commitment_hash: str, event_id: str) -> None:
        # Fail closed: no verdict means no commitment
        try:
            valid = await asyncio.wait_for(
                self.verifier.verify(zk_proof_ref, commitment_hash, event_id),
                timeout=self.verify_timeout,
            )
        except TimeoutError as exc:
            logger.warning("proof_verification_timeout", event_id=event_id, timeout=self.verify_timeout)
            raise DependencyError("Proof verification timed out") from exc

        if not valid:
            logger.info("proof_rejected", event_id=event_id, commitment_hash=commitment_hash)
            raise InvalidProofError()

    async def reveal_commitment(self, commitment_id: str | uuid.UUID, donor_ref: str) -> Commitment:
        """Publish a commitment's amount. Idempotent for the owner.

        Raises:
            NotFoundError: Unknown commitment
            NotOwnerError: Caller is not the committing donor
        """
        cid = _parse_commitment_id(commitment_id)

        async with self.session_factory() as session, session.begin():
            commitment = await session.get(Commitment, cid)
            if commitment is None:
                raise NotFoundError(f"Commitment '{commitment_id}' not found")
            if commitment.donor_ref != donor_ref:
                raise NotOwnerError()

            if not commitment.revealed:
                result = await session.execute(
                    update(Commitment)
                    .where(Commitment.id == cid, Commitment.revealed.is_(False))
                    .values(
                        revealed=True,
                        revealed_amount=Commitment.committed_amount,
                        revealed_at=datetime.now(UTC),
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    logger.info("commitment_revealed", commitment_id=str(cid), event_id=commitment.event_id)
                await session.refresh(commitment)

        return commitment

    async def get_commitment(self, commitment_id: str | uuid.UUID) -> Commitment:
        cid = _parse_commitment_id(commitment_id)
        async with self.session_factory() as session:
            commitment = await session.get(Commitment, cid)
            if commitment is None:
                raise NotFoundError(f"Commitment '{commitment_id}' not found")
            return commitment

    async def list_donor_commitments(self, donor_ref: str) -> list[Commitment]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Commitment)
                .where(Commitment.donor_ref == donor_ref)
                .order_by(Commitment.recorded_at.desc(), Commitment.sequence_number.desc())
            )
            return list(result.scalars().all())
