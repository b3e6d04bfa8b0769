"""AchievementEngine: defines and unlocks per-event achievements."""

import uuid
from datetime import UTC, datetime
from decimal import Decimal

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pledgerank.core.config import get_settings
from pledgerank.core.exceptions import UnknownEventError
from pledgerank.db.models.achievement import Achievement
from pledgerank.db.models.event import Event
from pledgerank.domain.achievements import AggregateSnapshot, build_definitions, is_triggered
from pledgerank.domain.timewindow import as_utc

logger = structlog.get_logger(__name__)


class AchievementEngine:
    """Evaluates aggregate thresholds and unlocks achievements exactly once.

    Unlocking is a compare-and-set on ``is_unlocked``: when two evaluations
    race, only the one whose UPDATE affects the row reports the unlock.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def define_for_event(self, session: AsyncSession, event: Event) -> list[Achievement]:
        """Create the event's achievement definitions inside the caller's transaction."""
        settings = get_settings()
        definitions = build_definitions(
            milestones=[Decimal(str(m)) for m in event.milestones],
            funding_checkpoints=settings.funding_percentage_checkpoints,
            donor_thresholds=settings.donor_count_thresholds,
            time_checkpoints=settings.time_based_checkpoints,
            has_deadline=event.deadline is not None,
        )
        achievements = [
            Achievement(
                id=uuid.uuid4(),
                event_id=event.id,
                trigger_type=d.trigger_type.value,
                trigger_value=d.trigger_value,
                title=d.title,
                is_unlocked=False,
            )
            for d in definitions
        ]
        session.add_all(achievements)
        await session.flush()
        return achievements

    async def evaluate(self, event_id: str, now: datetime | None = None) -> list[Achievement]:
        """Unlock every locked definition whose threshold the event has reached.

        Args:
            event_id: Event to evaluate
            now: Evaluation time (injectable for testing)

        Returns:
            Achievements unlocked by this call, in definition order. A second
            call with no new commitments returns an empty list.

        Raises:
            UnknownEventError: If the event does not exist
        """
        now = as_utc(now) or datetime.now(UTC)

        async with self.session_factory() as session:
            event = await session.get(Event, event_id)
            if event is None:
                raise UnknownEventError(event_id)
            snapshot = AggregateSnapshot(
                current_amount=Decimal(event.current_amount),
                target_amount=Decimal(event.target_amount),
                unique_donor_count=event.unique_donor_count,
                created_at=as_utc(event.created_at),
                deadline=as_utc(event.deadline),
            )
            result = await session.execute(
                select(Achievement)
                .where(Achievement.event_id == event_id, Achievement.is_unlocked.is_(False))
                .order_by(Achievement.trigger_type, Achievement.trigger_value)
            )
            candidates = list(result.scalars().all())

        unlocked: list[Achievement] = []
        for achievement in candidates:
            try:
                if not is_triggered(achievement.trigger_type, achievement.trigger_value, snapshot, now):
                    continue
                if await self._unlock(achievement.id, now):
                    achievement.is_unlocked = True
                    achievement.unlocked_at = now
                    unlocked.append(achievement)
            except Exception:
                # One broken definition must not block the rest
                logger.exception(
                    "achievement_evaluation_failed",
                    event_id=event_id,
                    achievement_id=str(achievement.id),
                    trigger_type=achievement.trigger_type,
                )

        if unlocked:
            logger.info(
                "achievements_unlocked",
                event_id=event_id,
                count=len(unlocked),
                titles=[a.title for a in unlocked],
            )
        return unlocked

    async def _unlock(self, achievement_id: uuid.UUID, now: datetime) -> bool:
        async with self.session_factory() as session, session.begin():
            result = await session.execute(
                update(Achievement)
                .where(Achievement.id == achievement_id, Achievement.is_unlocked.is_(False))
                .values(is_unlocked=True, unlocked_at=now)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def list_achievements(self, event_id: str, unlocked_only: bool = False) -> list[Achievement]:
        async with self.session_factory() as session:
            if await session.get(Event, event_id) is None:
                raise UnknownEventError(event_id)
            query = select(Achievement).where(Achievement.event_id == event_id)
            if unlocked_only:
                query = query.where(Achievement.is_unlocked.is_(True))
            result = await session.execute(query.order_by(Achievement.trigger_type, Achievement.trigger_value))
            return list(result.scalars().all())
