"""Per-event writer lock backed by Redis.

Commitments to the same event are serialized through this lock so that the
sequence number allocation and the aggregate update run as a single writer.
Different events never contend.
"""

import asyncio
import time
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from redis.asyncio import Redis

from pledgerank.core.config import get_settings
from pledgerank.core.exceptions import ConcurrencyError
from pledgerank.db.redis import redis_key

logger = structlog.get_logger(__name__)


class EventLock:
    """Owner-tokened Redis lock with TTL, one key per event."""

    def __init__(
        self,
        redis: Redis,
        ttl: int | None = None,
        wait_timeout: float | None = None,
        poll_interval: float | None = None,
    ):
        settings = get_settings()
        self.redis = redis
        self.ttl = ttl or settings.event_lock_ttl_seconds
        self.wait_timeout = wait_timeout if wait_timeout is not None else settings.event_lock_wait_seconds
        self.poll_interval = poll_interval if poll_interval is not None else settings.event_lock_poll_seconds

    def _lock_key(self, event_id: str) -> str:
        return redis_key("lock", "event", event_id)

    async def acquire(self, event_id: str, owner: str) -> bool:
        """Attempt to take the lock once.

        Returns:
            True if acquired (or already held by this owner), False otherwise
        """
        key = self._lock_key(event_id)
        if await self.redis.set(key, owner, nx=True, ex=self.ttl):
            return True

        current = await self.redis.get(key)
        if current == owner:
            await self.redis.expire(key, self.ttl)
            return True

        return False

    async def release(self, event_id: str, owner: str) -> bool:
        """Release the lock if this owner holds it."""
        key = self._lock_key(event_id)
        current = await self.redis.get(key)
        if current == owner:
            await self.redis.delete(key)
            return True
        return False

    async def is_locked(self, event_id: str) -> bool:
        return bool(await self.redis.exists(self._lock_key(event_id)))

    @asynccontextmanager
    async def hold(self, event_id: str) -> AsyncGenerator[str, None]:
        """Wait for and hold the event lock for the duration of the block.

        Yields:
            The owner token of this holder

        Raises:
            ConcurrencyError: If the lock could not be taken within wait_timeout
        """
        owner = uuid.uuid4().hex
        deadline = time.monotonic() + self.wait_timeout
        acquired = False
        try:
            while True:
                acquired = await self.acquire(event_id, owner)
                if acquired:
                    break
                if time.monotonic() >= deadline:
                    logger.warning("event_lock_wait_exhausted", event_id=event_id, wait_timeout=self.wait_timeout)
                    raise ConcurrencyError(f"Event '{event_id}' is busy, retry shortly")
                await asyncio.sleep(self.poll_interval)

            yield owner

        finally:
            if acquired:
                released = await self.release(event_id, owner)
                if not released:
                    # TTL expired while we held it; another writer may have entered
                    logger.error("event_lock_lost_before_release", event_id=event_id, ttl=self.ttl)
