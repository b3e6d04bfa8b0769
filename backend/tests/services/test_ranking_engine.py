"""Tests for RankingEngine: snapshots, timeframes, cache behaviour."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update

from pledgerank.core.exceptions import NotFoundError
from pledgerank.db.models.commitment import Commitment
from pledgerank.domain.ranking import PrivacyMode, RankingScope
from pledgerank.domain.timewindow import Timeframe
from pledgerank.services.disclosure_manager import DisclosureManager
from pledgerank.services.ranking_engine import RankingEngine

pytestmark = pytest.mark.integration

SCOPE = RankingScope("evt-scenario")


@pytest.fixture
def rankings(session_factory, fake_redis):
    return RankingEngine(session_factory, fake_redis, cache_ttl=5)


async def commit(store, donor, amount, hash_, event_id="evt-scenario"):
    return await store.record_commitment(event_id, donor, Decimal(amount), hash_, "proof")


async def test_empty_event_ranks_to_empty_list(rankings, scenario_event):
    assert await rankings.compute_ranking(SCOPE, Timeframe.ALL, PrivacyMode.TRANSPARENT) == []


async def test_unknown_event_ranks_to_empty_list(rankings, engine):
    assert await rankings.compute_ranking(RankingScope("nope"), Timeframe.ALL, PrivacyMode.PARTIAL) == []


async def test_partial_mode_follows_commitment_order(rankings, commitment_store, scenario_event):
    await commit(commitment_store, "A", "3", "0xa")
    await commit(commitment_store, "B", "4", "0xb")

    entries = await rankings.compute_ranking(SCOPE, Timeframe.ALL, PrivacyMode.PARTIAL)

    assert [e.donor_ref for e in entries] == ["A", "B"]
    assert [e.rank for e in entries] == [1, 2]


async def test_transparent_mode_lifts_revealed_commitments(rankings, commitment_store, scenario_event):
    await commit(commitment_store, "A", "3", "0xa")
    b = await commit(commitment_store, "B", "4", "0xb")
    await commitment_store.reveal_commitment(b.id, "B")

    entries = await rankings.compute_ranking(SCOPE, Timeframe.ALL, PrivacyMode.TRANSPARENT)

    assert [e.donor_ref for e in entries] == ["B", "A"]


async def test_repeat_donor_appears_once(rankings, commitment_store, session_factory, scenario_event):
    await commit(commitment_store, "A", "3", "0xa1")
    await commit(commitment_store, "B", "4", "0xb1")
    await commit(commitment_store, "A", "1", "0xa2")
    disclosure = DisclosureManager(session_factory)
    await disclosure.set_preference("A", reveal_amount=False, reveal_name=True, custom_display_name="Alice")

    entries = await rankings.compute_ranking(SCOPE, Timeframe.ALL, PrivacyMode.PARTIAL)
    masked = await disclosure.mask_ranking(entries, PrivacyMode.PARTIAL)

    assert [(m.rank, m.donor_display) for m in masked] == [(1, "Alice"), (2, "Anonymous #2")]
    assert [m.commitment_count for m in masked] == [2, 1]
    assert await rankings.get_user_rank(SCOPE, "A", Timeframe.ALL, PrivacyMode.PARTIAL) == 1
    assert await rankings.get_user_rank(SCOPE, "B", Timeframe.ALL, PrivacyMode.PARTIAL) == 2


async def test_transparent_mode_sums_a_donors_reveals(rankings, commitment_store, scenario_event):
    a1 = await commit(commitment_store, "A", "3", "0xa1")
    b = await commit(commitment_store, "B", "4", "0xb1")
    a2 = await commit(commitment_store, "A", "2", "0xa2")
    for commitment, donor in ((a1, "A"), (b, "B"), (a2, "A")):
        await commitment_store.reveal_commitment(commitment.id, donor)

    entries = await rankings.compute_ranking(SCOPE, Timeframe.ALL, PrivacyMode.TRANSPARENT)

    assert [e.donor_ref for e in entries] == ["A", "B"]
    assert entries[0].standing.revealed_total == Decimal("5")
    assert entries[0].standing.revealed_count == 2


async def test_results_are_cached_until_invalidated(rankings, commitment_store, scenario_event):
    await commit(commitment_store, "A", "3", "0xa")
    first = await rankings.compute_ranking(SCOPE, Timeframe.ALL, PrivacyMode.PARTIAL)

    await commit(commitment_store, "B", "4", "0xb")
    cached = await rankings.compute_ranking(SCOPE, Timeframe.ALL, PrivacyMode.PARTIAL)
    assert [e.donor_ref for e in cached] == [e.donor_ref for e in first]

    await rankings.invalidate("evt-scenario")
    fresh = await rankings.compute_ranking(SCOPE, Timeframe.ALL, PrivacyMode.PARTIAL)
    assert [e.donor_ref for e in fresh] == ["A", "B"]


async def test_cached_entries_round_trip_exactly(rankings, commitment_store, scenario_event):
    a = await commit(commitment_store, "A", "3.25", "0xa")
    await commitment_store.reveal_commitment(a.id, "A")

    computed = await rankings.compute_ranking(SCOPE, Timeframe.ALL, PrivacyMode.TRANSPARENT)
    cached = await rankings.compute_ranking(SCOPE, Timeframe.ALL, PrivacyMode.TRANSPARENT)

    assert cached == computed
    assert cached[0].standing.revealed_total == Decimal("3.25")


async def test_invalidate_drops_global_keys_too(rankings, fake_redis, scenario_event):
    await rankings.compute_ranking(RankingScope(), Timeframe.ALL, PrivacyMode.PARTIAL)
    await rankings.compute_ranking(SCOPE, Timeframe.WEEK, PrivacyMode.FULL)
    assert len([k async for k in fake_redis.scan_iter(match="pledgerank:ranking:*")]) == 2

    await rankings.invalidate("evt-scenario")

    assert [k async for k in fake_redis.scan_iter(match="pledgerank:ranking:*")] == []


async def test_timeframe_excludes_old_commitments(rankings, commitment_store, session_factory, scenario_event):
    old = await commit(commitment_store, "A", "3", "0xa")
    await commit(commitment_store, "B", "4", "0xb")
    async with session_factory() as session, session.begin():
        await session.execute(
            update(Commitment)
            .where(Commitment.id == old.id)
            .values(recorded_at=datetime.now(UTC) - timedelta(days=10))
        )

    now = datetime.now(UTC)
    week = await rankings.compute_ranking(SCOPE, Timeframe.WEEK, PrivacyMode.PARTIAL, now=now)
    month = await rankings.compute_ranking(SCOPE, Timeframe.MONTH, PrivacyMode.PARTIAL, now=now)

    assert [e.donor_ref for e in week] == ["B"]
    assert [e.donor_ref for e in month] == ["A", "B"]


async def test_global_scope_spans_events(rankings, commitment_store, aggregation, scenario_event):
    await aggregation.register_event("evt-two", Decimal("50"))
    await commit(commitment_store, "A", "3", "0xa")
    await commit(commitment_store, "C", "1", "0xc", event_id="evt-two")

    entries = await rankings.compute_ranking(RankingScope(), Timeframe.ALL, PrivacyMode.PARTIAL)

    assert [e.donor_ref for e in entries] == ["A", "C"]
    assert {e.scope_key for e in entries} == {"global"}


async def test_user_rank_matches_ranking(rankings, commitment_store, scenario_event):
    await commit(commitment_store, "A", "3", "0xa")
    await commit(commitment_store, "B", "4", "0xb")

    assert await rankings.get_user_rank(SCOPE, "B", Timeframe.ALL, PrivacyMode.PARTIAL) == 2


async def test_user_rank_without_commitments(rankings, scenario_event):
    with pytest.raises(NotFoundError):
        await rankings.get_user_rank(SCOPE, "ghost", Timeframe.ALL, PrivacyMode.PARTIAL)
