"""Named, score-ordered delay queues backed by Redis sorted sets.

Scores are epoch milliseconds of the scheduled delivery instant. Reading due
entries and removing them are separate calls so the poller can process first
and remove after; the pair is not atomic.
"""

from __future__ import annotations

import json
import time
from datetime import datetime
from typing import Any

import redis.asyncio as aioredis
import structlog

logger = structlog.get_logger()


def now_ms() -> int:
    """Current time as an epoch-millisecond score."""
    return int(time.time() * 1000)


def to_score(when: datetime | int | float) -> int:
    """Convert a datetime (or an existing ms score) into a queue score."""
    if isinstance(when, datetime):
        return int(round(when.timestamp() * 1000))
    return int(when)


class DelayQueueStore:
    """Thin wrapper over ZADD / ZRANGEBYSCORE / ZREM."""

    def __init__(self, redis_client: aioredis.Redis):
        self._redis = redis_client

    async def enqueue(
        self, queue: str, score: datetime | int | float, payload: dict[str, Any] | str
    ) -> str:
        """Insert ``payload`` ordered by ``score``. Returns the stored member.

        No uniqueness is enforced here; producers must not schedule the same
        ``key`` twice.
        """
        member = payload if isinstance(payload, str) else json.dumps(payload, default=str)
        await self._redis.zadd(queue, {member: to_score(score)})
        logger.debug("queue_enqueued", queue=queue, score=to_score(score))
        return member

    async def drain_due(self, queue: str, now_score: int | None = None) -> list[str]:
        """Return every member with score <= ``now_score`` without removing it."""
        if now_score is None:
            now_score = now_ms()
        return list(await self._redis.zrangebyscore(queue, 0, now_score))

    async def entries(self, queue: str) -> list[str]:
        """Return every pending member regardless of score."""
        return list(await self._redis.zrangebyscore(queue, "-inf", "+inf"))

    async def remove(self, queue: str, member: str) -> bool:
        """Delete one exact member. Returns False if it was already gone."""
        removed = await self._redis.zrem(queue, member)
        return bool(removed)
