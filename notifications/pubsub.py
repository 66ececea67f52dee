"""Immediate notifications over a Redis pub/sub channel."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import redis.asyncio as aioredis
import structlog

from notifications.handler import NotificationHandler
from shared.schemas.notifications import NotificationEvent

logger = structlog.get_logger()


async def publish_notification(
    redis_client: aioredis.Redis,
    event: NotificationEvent | dict[str, Any],
    channel: str = "notifications",
) -> int:
    """Publish one event. Returns the number of subscribers that received it."""
    if isinstance(event, NotificationEvent):
        data = event.model_dump_json(exclude_none=True)
    else:
        data = json.dumps(event, default=str)
    receivers = await redis_client.publish(channel, data)
    logger.info("notification_published", channel=channel, receivers=receivers)
    return receivers


async def handle_message(handler: NotificationHandler, data: str | bytes) -> None:
    """Decode one pub/sub message and dispatch it. Malformed data is dropped."""
    try:
        payload = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.error("pubsub_invalid_json", error=str(e))
        return
    if not isinstance(payload, dict):
        logger.error("pubsub_invalid_payload", payload_type=type(payload).__name__)
        return
    await handler.dispatch(payload)


async def notification_listener(
    redis_url: str,
    handler: NotificationHandler,
    channel: str = "notifications",
    retry_delay: float = 5.0,
) -> None:
    """Subscribe to ``channel`` and hand every message to the handler.

    A lost Redis connection is logged and the subscription is re-established
    after ``retry_delay`` seconds.
    """
    r = aioredis.from_url(redis_url, decode_responses=True)
    try:
        while True:
            pubsub = r.pubsub()
            try:
                await pubsub.subscribe(channel)
                logger.info("notification_listener_started", channel=channel)
                async for message in pubsub.listen():
                    if message["type"] != "message":
                        continue
                    try:
                        await handle_message(handler, message["data"])
                    except Exception as e:
                        logger.error("notification_listener_error", error=str(e))
                return
            except (aioredis.RedisError, OSError):
                logger.exception("notification_listener_disconnected", channel=channel, retry_in=retry_delay)
            finally:
                await _close_pubsub(pubsub, channel)
            await asyncio.sleep(retry_delay)
    finally:
        await r.aclose()


async def _close_pubsub(pubsub: aioredis.client.PubSub, channel: str) -> None:
    try:
        await pubsub.unsubscribe(channel)
        await pubsub.aclose()
    except (aioredis.RedisError, OSError) as e:
        logger.debug("notification_listener_close_failed", channel=channel, error=str(e))
