"""Shared Redis client. The engine uses Redis only for per-deal locks."""

import redis.asyncio as redis

from deal_engine.core.config import get_settings

_redis: redis.Redis | None = None


async def init_redis(url: str | None = None) -> None:
    """Connect the shared client and fail fast if Redis is unreachable."""
    global _redis

    if _redis is not None:
        return

    settings = get_settings()
    client = redis.from_url(
        url or settings.redis_url,
        decode_responses=True,
        client_name="deal-engine",
        health_check_interval=30,
    )
    await client.ping()
    _redis = client


async def close_redis() -> None:
    global _redis

    if _redis is not None:
        await _redis.aclose()
    _redis = None


def get_redis() -> redis.Redis:
    """Return the shared client.

    Raises:
        RuntimeError: init_redis() has not run
    """
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis
