"""DisclosureManager: donor privacy preferences and ranking masks."""

from datetime import UTC, datetime

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from pledgerank.core.config import get_settings
from pledgerank.core.exceptions import ConcurrencyError
from pledgerank.db.models.privacy_preference import PrivacyPreference
from pledgerank.domain.disclosure import (
    PRIVATE_POLICY,
    DisclosurePolicy,
    MaskedEntry,
    mask_entry,
    privacy_score,
    sanitize_display_name,
)
from pledgerank.domain.ranking import PrivacyMode, RankedEntry

logger = structlog.get_logger(__name__)


class StalePreferenceError(Exception):
    """Preference row changed between read and compare-and-set."""


def _to_policy(row: PrivacyPreference | None) -> DisclosurePolicy:
    if row is None:
        return PRIVATE_POLICY
    return DisclosurePolicy(
        reveal_amount=row.reveal_amount,
        reveal_name=row.reveal_name,
        custom_display_name=row.custom_display_name,
    )


class DisclosureManager:
    """Stores preferences and applies them at the view boundary.

    Preference changes only affect renders made after the write; nothing
    here feeds back into ranking order.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], max_retries: int | None = None):
        self.session_factory = session_factory
        self.max_retries = max_retries or get_settings().aggregate_max_retries

    async def get_preference(self, donor_ref: str) -> DisclosurePolicy:
        """Stored policy, or the fully private default."""
        async with self.session_factory() as session:
            return _to_policy(await session.get(PrivacyPreference, donor_ref))

    async def set_preference(
        self,
        donor_ref: str,
        reveal_amount: bool,
        reveal_name: bool,
        custom_display_name: str | None = None,
    ) -> tuple[DisclosurePolicy, int]:
        """Replace the donor's preference.

        Returns:
            (stored policy, privacy score 0-100)

        Raises:
            ValidationError: Display name fails sanitization
            ConcurrencyError: Concurrent writers kept winning the CAS
        """
        policy = DisclosurePolicy(
            reveal_amount=bool(reveal_amount),
            reveal_name=bool(reveal_name),
            custom_display_name=sanitize_display_name(custom_display_name),
        )

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(StalePreferenceError),
                stop=stop_after_attempt(self.max_retries),
                wait=wait_exponential(multiplier=0.01, max=0.2),
                reraise=True,
            ):
                with attempt:
                    await self._write(donor_ref, policy)
        except StalePreferenceError as exc:
            logger.error("preference_cas_exhausted", donor_ref=donor_ref)
            raise ConcurrencyError("Preference update contended, retry shortly") from exc

        score = privacy_score(policy.reveal_amount, policy.reveal_name)
        logger.info("preference_updated", donor_ref=donor_ref, privacy_score=score)
        return policy, score

    async def _write(self, donor_ref: str, policy: DisclosurePolicy) -> None:
        try:
            async with self.session_factory() as session, session.begin():
                current = await session.get(PrivacyPreference, donor_ref)
                if current is None:
                    session.add(
                        PrivacyPreference(
                            donor_ref=donor_ref,
                            reveal_amount=policy.reveal_amount,
                            reveal_name=policy.reveal_name,
                            custom_display_name=policy.custom_display_name,
                            version=1,
                        )
                    )
                    return

                result = await session.execute(
                    update(PrivacyPreference)
                    .where(
                        PrivacyPreference.donor_ref == donor_ref,
                        PrivacyPreference.version == current.version,
                    )
                    .values(
                        reveal_amount=policy.reveal_amount,
                        reveal_name=policy.reveal_name,
                        custom_display_name=policy.custom_display_name,
                        version=PrivacyPreference.version + 1,
                        updated_at=datetime.now(UTC),
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise StalePreferenceError(donor_ref)
        except IntegrityError as exc:
            # Lost the race to create the first row
            raise StalePreferenceError(donor_ref) from exc

    def apply_mask(self, entry: RankedEntry, preference: DisclosurePolicy, mode: PrivacyMode) -> MaskedEntry:
        return mask_entry(entry, preference, mode)

    async def mask_ranking(self, entries: list[RankedEntry], mode: PrivacyMode) -> list[MaskedEntry]:
        """Mask a whole ranking with one preference lookup."""
        if not entries:
            return []

        policies: dict[str, DisclosurePolicy] = {}
        if mode is not PrivacyMode.FULL:
            donor_refs = {e.donor_ref for e in entries}
            async with self.session_factory() as session:
                result = await session.execute(
                    select(PrivacyPreference).where(PrivacyPreference.donor_ref.in_(donor_refs))
                )
                policies = {row.donor_ref: _to_policy(row) for row in result.scalars().all()}

        return [self.apply_mask(e, policies.get(e.donor_ref, PRIVATE_POLICY), mode) for e in entries]
