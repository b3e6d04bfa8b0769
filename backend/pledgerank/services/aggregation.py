"""AggregationEngine: the only writer of per-event totals.

Totals are built from committed amounts, never from reveals, so an event's
current_amount equals the sum of its commitments whatever their reveal state.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from pledgerank.core.config import get_settings
from pledgerank.core.exceptions import ConcurrencyError, ConflictError, UnknownEventError, ValidationError
from pledgerank.db.models.commitment import Commitment
from pledgerank.db.models.event import Event
from pledgerank.db.models.event_donor import EventDonor
from pledgerank.domain.progress import progress_percentage
from pledgerank.services.achievement_engine import AchievementEngine

logger = structlog.get_logger(__name__)


class StaleAggregateError(Exception):
    """Event version moved between read and compare-and-set."""


@dataclass(frozen=True)
class EventTotals:
    event_id: str
    current_amount: Decimal
    unique_donor_count: int
    commitment_count: int
    progress_percentage: Decimal


def _positive_decimal(value, field: str) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field} must be a number") from exc
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f"{field} must be positive")
    return amount


class AggregationEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        achievements: AchievementEngine,
        max_retries: int | None = None,
    ):
        self.session_factory = session_factory
        self.achievements = achievements
        self.max_retries = max_retries or get_settings().aggregate_max_retries

    async def register_event(
        self,
        event_id: str,
        target_amount: Decimal,
        milestones: list[Decimal] | None = None,
        deadline: datetime | None = None,
    ) -> Event:
        """Create an event with zeroed totals and its achievement definitions.

        Milestones are deduplicated and stored ascending; they never change
        afterwards.

        Raises:
            ValidationError: Empty id, non-positive target or milestone
            ConflictError: Event id already exists
        """
        event_id = (event_id or "").strip()
        if not event_id:
            raise ValidationError("eventId must not be empty")
        target = _positive_decimal(target_amount, "targetAmount")
        ordered = sorted({_positive_decimal(m, "milestone") for m in milestones or []})

        event = Event(
            id=event_id,
            target_amount=target,
            milestones=[str(m) for m in ordered],
            deadline=deadline,
            current_amount=Decimal(0),
            unique_donor_count=0,
            commitment_count=0,
            version=0,
        )
        try:
            async with self.session_factory() as session, session.begin():
                if await session.get(Event, event_id) is not None:
                    raise ConflictError(f"Event '{event_id}' already exists")
                session.add(event)
                await session.flush()
                await self.achievements.define_for_event(session, event)
        except IntegrityError as exc:
            raise ConflictError(f"Event '{event_id}' already exists") from exc

        logger.info("event_registered", event_id=event_id, target_amount=str(target), milestones=len(ordered))
        return event

    async def get_event(self, event_id: str) -> Event:
        async with self.session_factory() as session:
            event = await session.get(Event, event_id)
            if event is None:
                raise UnknownEventError(event_id)
            return event

    async def on_commitment_recorded(self, session: AsyncSession, commitment: Commitment) -> Event:
        """Fold a freshly recorded commitment into its event totals.

        Runs inside the caller's transaction so the commitment row and the
        totals commit or roll back together.

        Raises:
            ConcurrencyError: If the version compare-and-set keeps losing
        """
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(StaleAggregateError),
                stop=stop_after_attempt(self.max_retries),
                wait=wait_exponential(multiplier=0.01, max=0.2),
                reraise=True,
                before_sleep=lambda rs: logger.warning(
                    "aggregate_cas_retrying",
                    event_id=commitment.event_id,
                    attempt=rs.attempt_number,
                ),
            ):
                with attempt:
                    return await self._apply(session, commitment)
        except StaleAggregateError as exc:
            logger.error("aggregate_cas_exhausted", event_id=commitment.event_id, attempts=self.max_retries)
            raise ConcurrencyError(f"Event '{commitment.event_id}' totals are contended, retry shortly") from exc

    async def _apply(self, session: AsyncSession, commitment: Commitment) -> Event:
        result = await session.execute(
            select(Event).where(Event.id == commitment.event_id).execution_options(populate_existing=True)
        )
        event = result.scalar_one_or_none()
        if event is None:
            raise UnknownEventError(commitment.event_id)

        known = await session.get(EventDonor, (commitment.event_id, commitment.donor_ref))
        new_donor = known is None

        result = await session.execute(
            update(Event)
            .where(Event.id == event.id, Event.version == event.version)
            .values(
                current_amount=Event.current_amount + commitment.committed_amount,
                commitment_count=Event.commitment_count + 1,
                unique_donor_count=Event.unique_donor_count + (1 if new_donor else 0),
                version=Event.version + 1,
                updated_at=datetime.now(UTC),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StaleAggregateError(event.id)

        if new_donor:
            session.add(EventDonor(event_id=event.id, donor_ref=commitment.donor_ref))
            await session.flush()

        await session.refresh(event)
        return event

    async def get_event_totals(self, event_id: str) -> EventTotals:
        """Public totals for an event. Never depends on reveal state.

        Raises:
            UnknownEventError: If the event does not exist
        """
        event = await self.get_event(event_id)
        current = Decimal(event.current_amount)
        return EventTotals(
            event_id=event.id,
            current_amount=current,
            unique_donor_count=event.unique_donor_count,
            commitment_count=event.commitment_count,
            progress_percentage=progress_percentage(current, Decimal(event.target_amount)),
        )
