"""RankingEngine: snapshot reads plus a short-lived Redis cache.

The cache stores unmasked rankings; masking happens per request in the
disclosure layer. Cached values are at most ``ranking_cache_ttl_seconds``
stale, and writes to an event drop its keys and the global ones.
"""

from datetime import datetime
from decimal import Decimal

import structlog
from pydantic import TypeAdapter
from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pledgerank.core.config import get_settings
from pledgerank.core.exceptions import NotFoundError
from pledgerank.db.models.commitment import Commitment
from pledgerank.db.redis import redis_key
from pledgerank.domain.ranking import (
    GLOBAL_SCOPE_KEY,
    PrivacyMode,
    RankableCommitment,
    RankedEntry,
    RankingScope,
    donor_rank,
    rank_donors,
)
from pledgerank.domain.timewindow import Timeframe, as_utc, window_start

logger = structlog.get_logger(__name__)

# Decimals round-trip as JSON strings, datetimes as ISO 8601
_CACHED_RANKING = TypeAdapter(list[RankedEntry])


def _cache_key(scope: RankingScope, timeframe: Timeframe, mode: PrivacyMode) -> str:
    return redis_key("ranking", scope.scope_key, timeframe.value, mode.value)

class RankingEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis: Redis,
        cache_ttl: int | None = None,
    ):
        self.session_factory = session_factory
        self.redis = redis
        self.cache_ttl = cache_ttl if cache_ttl is not None else get_settings().ranking_cache_ttl_seconds

    async def compute_ranking(
        self,
        scope: RankingScope,
        timeframe: Timeframe = Timeframe.ALL,
        mode: PrivacyMode = PrivacyMode.PARTIAL,
        now: datetime | None = None,
    ) -> list[RankedEntry]:
        """Rank the donors with commitments in scope and window.

        An explicit ``now`` bypasses the cache. Empty scopes return [].
        """
        use_cache = now is None and self.cache_ttl > 0
        key = _cache_key(scope, timeframe, mode)

        if use_cache:
            try:
                cached = await self.redis.get(key)
            except RedisError as exc:
                logger.warning("ranking_cache_read_failed", key=key, error=str(exc))
                cached = None
            if cached is not None:
                return _CACHED_RANKING.validate_json(cached)

        snapshot = await self._snapshot(scope, timeframe, now)
        entries = rank_donors(snapshot, scope, mode)

        if use_cache:
            try:
                await self.redis.setex(key, self.cache_ttl, _CACHED_RANKING.dump_json(entries))
            except RedisError as exc:
                logger.warning("ranking_cache_write_failed", key=key, error=str(exc))

        return entries

    async def _snapshot(
        self,
        scope: RankingScope,
        timeframe: Timeframe,
        now: datetime | None,
    ) -> list[RankableCommitment]:
        query = select(
            Commitment.id,
            Commitment.event_id,
            Commitment.donor_ref,
            Commitment.commitment_hash,
            Commitment.sequence_number,
            Commitment.recorded_at,
            Commitment.revealed,
            Commitment.revealed_amount,
        )
        if not scope.is_global:
            query = query.where(Commitment.event_id == scope.event_id)
        since = window_start(timeframe, now)
        if since is not None:
            query = query.where(Commitment.recorded_at >= since)

        # Single statement: every row comes from the same read
        async with self.session_factory() as session:
            rows = (await session.execute(query)).all()

        return [
            RankableCommitment(
                commitment_id=str(row.id),
                event_id=row.event_id,
                donor_ref=row.donor_ref,
                commitment_hash=row.commitment_hash,
                sequence_number=row.sequence_number,
                recorded_at=as_utc(row.recorded_at),
                revealed=bool(row.revealed),
                revealed_amount=None if row.revealed_amount is None else Decimal(row.revealed_amount),
            )
            for row in rows
        ]

    async def get_user_rank(
        self,
        scope: RankingScope,
        donor_ref: str,
        timeframe: Timeframe = Timeframe.ALL,
        mode: PrivacyMode = PrivacyMode.PARTIAL,
        now: datetime | None = None,
    ) -> int:
        """Rank of the donor's row in the same ranking other viewers see.

        Raises:
            NotFoundError: If the donor has no commitment in scope and window
        """
        entries = await self.compute_ranking(scope, timeframe, mode, now=now)
        rank = donor_rank(entries, donor_ref)
        if rank is None:
            raise NotFoundError("Donor has no ranked commitment in this scope")
        return rank

    async def invalidate(self, event_id: str) -> None:
        """Drop cached rankings for one event and for the global scope."""
        patterns = [
            redis_key("ranking", RankingScope(event_id).scope_key, "*"),
            redis_key("ranking", GLOBAL_SCOPE_KEY, "*"),
        ]
        try:
            for pattern in patterns:
                keys = [k async for k in self.redis.scan_iter(match=pattern)]
                if keys:
                    await self.redis.delete(*keys)
        except RedisError as exc:
            # Entries still expire within the TTL
            logger.warning("ranking_cache_invalidate_failed", event_id=event_id, error=str(exc))
