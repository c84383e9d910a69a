"""Process-wide async Redis client."""
from __future__ import annotations

import redis.asyncio as aioredis

_redis: aioredis.Redis | None = None


def init_redis(url: str) -> aioredis.Redis:
    """Create the shared client.  Connections are opened lazily on first command."""
    global _redis
    _redis = aioredis.from_url(url, decode_responses=True)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
