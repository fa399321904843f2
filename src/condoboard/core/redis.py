"""Redis client construction and key helpers.

Redis only backs the tenant directory cache. Every caller treats a Redis
failure as a cache miss, so the client is optional everywhere it is used.
"""

from __future__ import annotations

import redis.asyncio as aioredis

from src.condoboard.config import Settings


def create_redis(settings: Settings) -> aioredis.Redis:
    """Create the Redis client (with its own connection pool)."""
    return aioredis.from_url(settings.REDIS_URL, decode_responses=True)


async def close_redis(client: aioredis.Redis | None) -> None:
    if client is not None:
        await client.aclose()


def tenant_slug_key(slug: str) -> str:
    """Global (not tenant-prefixed) key for a tenant directory entry."""
    return f"tenant:slug:{slug}"
