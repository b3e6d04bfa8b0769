"""Seed demo campaigns with a handful of commitments for local development.

Proofs are accepted without verification, so never point this at production.

Run from backend/:
    python -m scripts.seed_demo_event
"""

import asyncio
import hashlib
from decimal import Decimal

from pledgerank.core.exceptions import ConflictError
from pledgerank.db import close_db, close_redis, get_redis, get_session_factory, init_db, init_redis
from pledgerank.services.contribution_service import ContributionService
from pledgerank.services.notifier import Notifier, UpdateBus
from pledgerank.services.proof_verifier import StaticProofVerifier

DEMO_EVENTS = [
    {"event_id": "tech-conference-2026", "target": "10000", "milestones": ["1000", "5000", "10000"]},
    {"event_id": "community-arts-festival", "target": "7500", "milestones": ["500", "2000", "7500"]},
    {"event_id": "open-source-hackathon", "target": "8000", "milestones": ["750", "3000", "8000"]},
]

DEMO_DONORS = [
    ("0x1111111111111111111111111111111111111111", "250"),
    ("0x2222222222222222222222222222222222222222", "1200"),
    ("0x3333333333333333333333333333333333333333", "75.5"),
    ("0x4444444444444444444444444444444444444444", "600"),
]


def demo_hash(event_id: str, donor_ref: str) -> str:
    return "0x" + hashlib.sha256(f"{event_id}:{donor_ref}".encode()).hexdigest()


async def main() -> None:
    await init_db()
    await init_redis()

    service = ContributionService(
        session_factory=get_session_factory(),
        redis=get_redis(),
        verifier=StaticProofVerifier(valid=True),
        notifier=Notifier(UpdateBus(), relay_enabled=False),
    )

    try:
        for spec in DEMO_EVENTS:
            event_id = spec["event_id"]
            try:
                await service.aggregation.register_event(
                    event_id,
                    Decimal(spec["target"]),
                    [Decimal(m) for m in spec["milestones"]],
                )
                print(f"Created event {event_id}")
            except ConflictError:
                print(f"Event {event_id} already exists, skipping")
                continue

            for donor_ref, amount in DEMO_DONORS:
                commitment = await service.commit(
                    event_id=event_id,
                    donor_ref=donor_ref,
                    amount=Decimal(amount),
                    commitment_hash=demo_hash(event_id, donor_ref),
                    zk_proof_ref=f"demo-proof:{event_id}:{donor_ref[-4:]}",
                )
                print(f"  #{commitment.sequence_number} committed by {donor_ref[:6]}...{donor_ref[-4:]}")

            totals = await service.aggregation.get_event_totals(event_id)
            print(
                f"  totals: {totals.current_amount} from {totals.unique_donor_count} donors "
                f"({totals.progress_percentage}%)"
            )
    finally:
        await close_redis()
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
