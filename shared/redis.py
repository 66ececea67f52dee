"""Redis connection helper."""

from __future__ import annotations

import redis.asyncio as redis
import structlog

from shared.config import get_settings

logger = structlog.get_logger()

_redis_client: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    """Get or create the shared Redis client (string responses)."""
    global _redis_client
    if _redis_client is None:
        settings = get_settings()
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
    return _redis_client


async def ping_redis(client: redis.Redis) -> bool:
    """True if Redis answers PING."""
    try:
        return bool(await client.ping())
    except redis.RedisError as e:
        logger.warning("redis_ping_failed", error=str(e))
        return False


async def close_redis() -> None:
    """Close the shared client; the next get_redis() reconnects."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
