"""API-specific test fixtures."""

from contextlib import asynccontextmanager

import pytest
from fakeredis import FakeAsyncRedis
from fastapi import FastAPI
from fastapi.testclient import TestClient

from pledgerank.core.auth import DonorIdentity, require_auth
from pledgerank.db.redis import get_redis

DONOR_A = "user_alice"
DONOR_B = "user_bob"
ADMIN = "user_admin"


class AuthAs:
    """Switches the identity that require_auth resolves to."""

    def __init__(self):
        self.identity = DonorIdentity(donor_ref=DONOR_A, claims={"sub": DONOR_A})

    def __call__(self, donor_ref: str, admin: bool = False) -> None:
        claims = {"sub": donor_ref, "public_metadata": {"admin": admin}}
        self.identity = DonorIdentity(donor_ref=donor_ref, claims=claims)

    async def resolve(self) -> DonorIdentity:
        return self.identity


@pytest.fixture
def auth_as() -> AuthAs:
    return AuthAs()


@pytest.fixture
def api_client(engine, db_url, auth_as):
    """FastAPI test client with test database and fakeredis.

    Initializes the global database via init_db inside the TestClient's
    own event loop so route handlers can use get_session_factory().
    The engine fixture ensures tables exist before this runs.
    """
    from fastapi.middleware.cors import CORSMiddleware

    from pledgerank.api.routes import api_router
    from pledgerank.db import close_db, init_db
    from pledgerank.main import register_exception_handlers
    from pledgerank.services.notifier import Notifier, UpdateBus
    from pledgerank.services.proof_verifier import StaticProofVerifier

    @asynccontextmanager
    async def test_lifespan(app: FastAPI):
        """Test lifespan - initialize DB and Redis in TestClient's event loop."""
        # Reset global so init_db creates a fresh engine in THIS loop
        import pledgerank.db.base as db_mod

        db_mod._engine = None
        db_mod._session_factory = None
        await init_db(db_url)

        app.state.redis = FakeAsyncRedis(decode_responses=True)
        app.state.notifier = Notifier(UpdateBus(queue_size=50), relay_enabled=False)
        app.state.proof_verifier = StaticProofVerifier(valid=True)
        yield
        await app.state.redis.aclose()
        await close_db()

    app = FastAPI(title="PledgeRank - Test Client", version="0.1.0", lifespan=test_lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers (needed for error body and debug_id testing)
    register_exception_handlers(app)

    app.include_router(api_router, prefix="/api")

    app.dependency_overrides[require_auth] = auth_as.resolve
    app.dependency_overrides[get_redis] = lambda: app.state.redis

    with TestClient(app) as client:
        yield client


@pytest.fixture
def create_event(api_client, auth_as):
    """Register an event as an admin, then switch back to donor A."""

    def create(event_id="evt-api", target="10", milestones=("2", "5", "10"), **extra):
        auth_as(ADMIN, admin=True)
        response = api_client.post(
            "/api/events",
            json={"eventId": event_id, "targetAmount": target, "milestones": list(milestones), **extra},
        )
        auth_as(DONOR_A)
        assert response.status_code == 201, response.text
        return response.json()

    return create


@pytest.fixture
def commit(api_client, auth_as):
    """Submit a commitment as the given donor."""

    def submit(donor_ref, amount, commitment_hash, event_id="evt-api", proof="proof"):
        auth_as(donor_ref)
        return api_client.post(
            "/api/commitments",
            json={
                "eventId": event_id,
                "commitmentHash": commitment_hash,
                "zkProofRef": proof,
                "amount": amount,
            },
        )

    return submit
