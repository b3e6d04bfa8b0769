"""Shared test fixtures for all test groups.

Database tests run against SQLite (aiosqlite) in a per-test temp file unless
TEST_DATABASE_URL points at a PostgreSQL test database.
"""

import os
from datetime import UTC, datetime
from decimal import Decimal

import pytest
from fakeredis import FakeAsyncRedis
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from pledgerank.core.locking import EventLock
from pledgerank.db.base import Base, engine_options, make_session_factory
from pledgerank.services.achievement_engine import AchievementEngine
from pledgerank.services.aggregation import AggregationEngine
from pledgerank.services.commitment_store import CommitmentStore
from pledgerank.services.contribution_service import ContributionService
from pledgerank.services.notifier import Notifier, UpdateBus
from pledgerank.services.proof_verifier import StaticProofVerifier


@pytest.fixture
def db_url(tmp_path) -> str:
    return os.getenv("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'pledgerank_test.db'}"


@pytest.fixture
async def fake_redis():
    """Provide fakeredis async client."""
    client = FakeAsyncRedis(decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
async def engine(db_url) -> AsyncEngine:
    """Fresh schema per test; also installs the global session factory."""
    import pledgerank.db.base as db_mod
    import pledgerank.db.models  # noqa: F401

    engine = create_async_engine(db_url, **engine_options(db_url))
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    db_mod._engine = engine
    db_mod._session_factory = make_session_factory(engine)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    db_mod._engine = None
    db_mod._session_factory = None
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest.fixture
def verifier() -> StaticProofVerifier:
    return StaticProofVerifier(valid=True)


@pytest.fixture
def notifier() -> Notifier:
    return Notifier(UpdateBus(queue_size=50), relay_enabled=False)


@pytest.fixture
def achievement_engine(session_factory) -> AchievementEngine:
    return AchievementEngine(session_factory)


@pytest.fixture
def aggregation(session_factory, achievement_engine) -> AggregationEngine:
    return AggregationEngine(session_factory, achievement_engine)


@pytest.fixture
def commitment_store(session_factory, fake_redis, verifier, aggregation) -> CommitmentStore:
    lock = EventLock(fake_redis, ttl=30, wait_timeout=10.0, poll_interval=0.01)
    return CommitmentStore(session_factory, fake_redis, verifier, aggregation, lock=lock)


@pytest.fixture
def service(session_factory, fake_redis, verifier, notifier) -> ContributionService:
    svc = ContributionService(session_factory, fake_redis, verifier, notifier)
    svc.commitments.lock = EventLock(fake_redis, ttl=30, wait_timeout=10.0, poll_interval=0.01)
    return svc


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


@pytest.fixture
async def scenario_event(aggregation):
    """Target 10 with milestones 2, 5 and 10."""
    return await aggregation.register_event("evt-scenario", Decimal("10"), [Decimal("2"), Decimal("5"), Decimal("10")])
