"""Tests for DisclosureManager preference storage and ranking masks."""

import asyncio
from datetime import UTC, datetime
from decimal import Decimal

import pytest
from sqlalchemy import select

from pledgerank.core.exceptions import ConcurrencyError, ValidationError
from pledgerank.db.models.privacy_preference import PrivacyPreference
from pledgerank.domain.disclosure import PRIVATE_POLICY, DisclosurePolicy
from pledgerank.domain.ranking import DonorStanding, PrivacyMode, RankableCommitment, RankedEntry
from pledgerank.services.disclosure_manager import DisclosureManager, StalePreferenceError

pytestmark = pytest.mark.integration

ALICE = "0xaaaa00000000000000000000000000000000beef"


@pytest.fixture
def disclosure(session_factory):
    return DisclosureManager(session_factory, max_retries=3)


def ranked(rank, donor_ref, revealed_amount=None):
    first = RankableCommitment(
        commitment_id=f"c-{rank}",
        event_id="evt-1",
        donor_ref=donor_ref,
        commitment_hash=f"0x{rank:04x}",
        sequence_number=rank,
        recorded_at=datetime(2026, 10, 1, tzinfo=UTC),
        revealed=revealed_amount is not None,
        revealed_amount=revealed_amount,
    )
    return RankedEntry(
        rank=rank,
        scope_key="event:evt-1",
        standing=DonorStanding(
            donor_ref=donor_ref,
            first=first,
            commitment_count=1,
            revealed_count=int(revealed_amount is not None),
            revealed_total=revealed_amount,
        ),
    )


async def test_default_preference_is_fully_private(disclosure, engine):
    assert await disclosure.get_preference("nobody") == PRIVATE_POLICY


async def test_set_preference_returns_policy_and_score(disclosure, engine):
    policy, score = await disclosure.set_preference(
        ALICE, reveal_amount=True, reveal_name=True, custom_display_name="  Alice   B "
    )

    assert policy == DisclosurePolicy(True, True, "Alice B")
    assert score == 50
    assert await disclosure.get_preference(ALICE) == policy


async def test_set_preference_replaces_and_bumps_version(disclosure, session_factory, engine):
    await disclosure.set_preference(ALICE, True, True, "Alice")
    await disclosure.set_preference(ALICE, False, True, "")

    assert await disclosure.get_preference(ALICE) == DisclosurePolicy(False, True, None)
    async with session_factory() as session:
        row = (await session.execute(select(PrivacyPreference))).scalar_one()
    assert row.version == 2


async def test_invalid_display_name_rejected_without_write(disclosure, engine):
    with pytest.raises(ValidationError):
        await disclosure.set_preference(ALICE, True, True, "<script>")

    assert await disclosure.get_preference(ALICE) == PRIVATE_POLICY


async def test_concurrent_writes_leave_one_consistent_row(disclosure, engine):
    await asyncio.gather(
        disclosure.set_preference(ALICE, True, False, "First"),
        disclosure.set_preference(ALICE, False, True, "Second"),
    )

    stored = await disclosure.get_preference(ALICE)
    assert stored in (DisclosurePolicy(True, False, "First"), DisclosurePolicy(False, True, "Second"))


async def test_cas_exhaustion_raises_concurrency_error(disclosure, engine, monkeypatch):
    async def always_stale(donor_ref, policy):
        raise StalePreferenceError(donor_ref)

    monkeypatch.setattr(disclosure, "_write", always_stale)

    with pytest.raises(ConcurrencyError):
        await disclosure.set_preference(ALICE, True, True)


async def test_mask_ranking_applies_each_donors_policy(disclosure, engine):
    await disclosure.set_preference(ALICE, reveal_amount=True, reveal_name=True)
    entries = [ranked(1, ALICE, Decimal("4")), ranked(2, "bob", Decimal("3"))]

    masked = await disclosure.mask_ranking(entries, PrivacyMode.TRANSPARENT)

    assert [m.rank for m in masked] == [1, 2]
    assert masked[0].donor_display == "0xaaaa...beef"
    assert masked[0].amount_display == Decimal("4")
    assert masked[1].donor_display == "Anonymous #2"
    assert masked[1].amount_display is None


async def test_full_mode_ignores_stored_preferences(disclosure, engine):
    await disclosure.set_preference(ALICE, reveal_amount=True, reveal_name=True, custom_display_name="Alice")

    masked = await disclosure.mask_ranking([ranked(1, ALICE, Decimal("4"))], PrivacyMode.FULL)

    assert masked[0].donor_display == "Anonymous #1"
    assert masked[0].amount_display is None


async def test_mask_ranking_of_empty_list(disclosure, engine):
    assert await disclosure.mask_ranking([], PrivacyMode.PARTIAL) == []
