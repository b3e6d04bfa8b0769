"""End-to-end flow through ContributionService: commit, aggregate, achieve, broadcast, reveal."""

from decimal import Decimal

import pytest

from pledgerank.domain.ranking import PrivacyMode, RankingScope
from pledgerank.domain.timewindow import Timeframe
from pledgerank.schemas.updates import UpdateType

pytestmark = pytest.mark.integration

EVENT = "evt-scenario"
SCOPE = RankingScope(EVENT)


async def drain(subscription):
    events = []
    while subscription.pending():
        events.append(await subscription.get())
    return events


async def donors_in(service, mode):
    entries = await service.rankings.compute_ranking(SCOPE, Timeframe.ALL, mode)
    return [e.donor_ref for e in entries]


async def test_two_donor_scenario(service, scenario_event):
    a = await service.commit(EVENT, "A", Decimal("3"), "0xa", "proof-a")
    b = await service.commit(EVENT, "B", Decimal("4"), "0xb", "proof-b")
    assert (a.sequence_number, b.sequence_number) == (1, 2)

    totals = await service.aggregation.get_event_totals(EVENT)
    assert totals.current_amount == Decimal("7")
    assert totals.unique_donor_count == 2
    assert totals.progress_percentage == Decimal("70.00")

    milestones = {
        Decimal(m.trigger_value)
        for m in await service.achievements.list_achievements(EVENT, unlocked_only=True)
        if m.trigger_type == "milestone_reached"
    }
    assert milestones == {Decimal("2"), Decimal("5")}

    assert await donors_in(service, PrivacyMode.PARTIAL) == ["A", "B"]

    await service.reveal(b.id, "B")

    assert await donors_in(service, PrivacyMode.TRANSPARENT) == ["B", "A"]
    assert await donors_in(service, PrivacyMode.PARTIAL) == ["A", "B"]
    assert await service.aggregation.get_event_totals(EVENT) == totals


async def test_preferences_never_move_ranks(service, scenario_event):
    await service.commit(EVENT, "A", Decimal("3"), "0xa", "proof-a")
    await service.commit(EVENT, "B", Decimal("4"), "0xb", "proof-b")

    entries = await service.rankings.compute_ranking(SCOPE, Timeframe.ALL, PrivacyMode.PARTIAL)
    before = await service.disclosure.mask_ranking(entries, PrivacyMode.PARTIAL)

    await service.disclosure.set_preference("B", reveal_amount=True, reveal_name=True, custom_display_name="Bea")
    entries = await service.rankings.compute_ranking(SCOPE, Timeframe.ALL, PrivacyMode.PARTIAL)
    after = await service.disclosure.mask_ranking(entries, PrivacyMode.PARTIAL)

    assert [(m.rank, m.first_commitment_hash) for m in before] == [(m.rank, m.first_commitment_hash) for m in after]
    assert [m.donor_display for m in after] == ["Anonymous #1", "Bea"]
    # Name shown, but amount stays hidden until the commitment itself is revealed
    assert after[1].amount_display is None


async def test_commit_broadcasts_to_event_and_global_topics(service, scenario_event):
    bus = service.notifier.bus
    async with bus.subscribe("event:evt-scenario") as event_sub, bus.subscribe("global") as global_sub:
        await service.commit(EVENT, "A", Decimal("3"), "0xa", "proof-a")

        event_updates = await drain(event_sub)
        global_updates = await drain(global_sub)

    assert [u.type for u in event_updates] == [u.type for u in global_updates]
    assert event_updates[0].type is UpdateType.COMMITMENT
    assert {u.topic for u in global_updates} == {"global"}

    commitment = event_updates[0].payload
    assert commitment["sequenceNumber"] == 1
    assert commitment["revealed"] is False
    assert commitment["uniqueDonorCount"] == 1
    assert commitment["progressPercentage"] == 30.0
    assert "amount" not in commitment
    assert "donorRef" not in commitment

    milestone_titles = [u.payload["title"] for u in event_updates if u.type is UpdateType.MILESTONE]
    assert milestone_titles == ["Milestone reached: 2"]
    achievement_titles = {u.payload["title"] for u in event_updates if u.type is UpdateType.ACHIEVEMENT}
    assert achievement_titles == {"First donor", "10% funded", "25% funded"}


async def test_reveal_broadcasts_revealed_commitment(service, scenario_event):
    b = await service.commit(EVENT, "B", Decimal("4"), "0xb", "proof-b")

    bus = service.notifier.bus
    async with bus.subscribe("event:evt-scenario") as event_sub, bus.subscribe("global") as global_sub:
        await service.reveal(b.id, "B")

        event_updates = await drain(event_sub)
        global_updates = await drain(global_sub)

    assert [u.type for u in event_updates] == [UpdateType.COMMITMENT]
    assert [u.type for u in global_updates] == [UpdateType.COMMITMENT]
    payload = event_updates[0].payload
    assert payload["revealed"] is True
    assert payload["revealedAmount"] == "4"
    assert payload["commitmentId"] == str(b.id)
    assert "donorRef" not in payload


async def test_reveal_survives_broadcast_failure(service, scenario_event, monkeypatch):
    b = await service.commit(EVENT, "B", Decimal("4"), "0xb", "proof-b")

    async def broken_publish(event):
        raise RuntimeError("bus down")

    monkeypatch.setattr(service.notifier, "publish", broken_publish)

    revealed = await service.reveal(b.id, "B")

    assert revealed.revealed is True


async def test_broadcast_failure_does_not_fail_commit(service, scenario_event, monkeypatch):
    async def broken_publish(event):
        raise RuntimeError("bus down")

    monkeypatch.setattr(service.notifier, "publish", broken_publish)

    commitment = await service.commit(EVENT, "A", Decimal("3"), "0xa", "proof-a")

    assert commitment.sequence_number == 1
    assert (await service.aggregation.get_event_totals(EVENT)).commitment_count == 1


async def test_manual_evaluation_broadcasts_new_unlocks(service, scenario_event):
    await service.commit(EVENT, "A", Decimal("3"), "0xa", "proof-a")

    async with service.notifier.bus.subscribe("event:evt-scenario") as sub:
        assert await service.evaluate_achievements(EVENT) == []
        assert sub.pending() == 0
