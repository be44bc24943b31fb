"""Redis async connection pool (only created when a Redis URL is configured)."""

from __future__ import annotations

from typing import Optional

import redis.asyncio as aioredis

from tripcore.config import settings

_pool: Optional[aioredis.ConnectionPool] = None


async def get_redis() -> aioredis.Redis:
    """Return a Redis client backed by the shared connection pool."""
    global _pool
    if not settings.redis_url:
        raise RuntimeError("REDIS_URL is not configured")
    if _pool is None:
        _pool = aioredis.ConnectionPool.from_url(
            settings.redis_url, decode_responses=True
        )
    return aioredis.Redis(connection_pool=_pool)
