"""Redis client shared by the whole process, and its key namespace.

Only coordination state lives in Redis: per-event writer locks, the ranking
snapshot cache and the cross-instance update relay. Losing Redis never loses
ledger data.
"""

import redis.asyncio as redis

from pledgerank.core.config import get_settings

KEY_PREFIX = "pledgerank"

_client: redis.Redis | None = None


def redis_key(*parts: str) -> str:
    """``redis_key("ranking", "event:e1")`` gives ``"pledgerank:ranking:event:e1"``."""
    return ":".join((KEY_PREFIX, *parts))


async def init_redis(url: str | None = None) -> None:
    """Connect once and fail startup if Redis does not answer."""
    global _client

    if _client is not None:
        return

    client = redis.from_url(url or get_settings().redis_url, encoding="utf-8", decode_responses=True)
    await client.ping()
    _client = client


async def close_redis() -> None:
    global _client

    client, _client = _client, None
    if client is not None:
        await client.aclose()


def get_redis() -> redis.Redis:
    """Raises RuntimeError if init_redis() has not been called."""
    if _client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _client
