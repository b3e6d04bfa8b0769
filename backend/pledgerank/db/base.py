"""Declarative base plus the process-wide async engine.

The ledger runs on PostgreSQL (asyncpg) in production. SQLite via aiosqlite
is supported for local runs and tests; amounts are stored as NUMERIC either
way.
"""

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from pledgerank.core.config import get_settings


class Base(DeclarativeBase):
    pass


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def engine_options(url: str, echo: bool = False) -> dict:
    """Keyword arguments for create_async_engine, per backend."""
    if make_url(url).get_backend_name() == "sqlite":
        # Writers queue on SQLite's file lock instead of failing fast
        return {"echo": echo, "connect_args": {"timeout": 30}}
    return {"echo": echo, "pool_pre_ping": True, "pool_size": 10, "max_overflow": 20}


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Services hand ORM rows back to the API layer after commit
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(url: str | None = None) -> None:
    """Create the engine and session factory, then ensure tables exist.

    Safe to call twice. Alembic owns the production schema; create_all only
    fills in tables that are missing.
    """
    global _engine, _session_factory

    if _engine is not None:
        return

    settings = get_settings()
    db_url = url or settings.database_url

    _engine = create_async_engine(db_url, **engine_options(db_url, echo=settings.debug))
    _session_factory = make_session_factory(_engine)

    import pledgerank.db.models  # noqa: F401

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    global _engine, _session_factory

    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for the running app.

    Raises RuntimeError if init_db() has not been called.
    """
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory


async def ping_database() -> None:
    """Round-trip a trivial query. Raises whatever the driver raises."""
    async with get_session_factory()() as session:
        await session.execute(text("SELECT 1"))
