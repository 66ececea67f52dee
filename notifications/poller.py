"""Scheduler/poller that drains due delay-queue entries into the handler.

Delivery is at most once after the handler has been invoked: an entry is
removed once its handler call returns, whether it succeeded, raised or
timed out. Reading and removing are separate Redis calls, so a crash between
them redelivers the entry on the next cycle.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable
from typing import Any

import structlog

from notifications.delay_queue import DelayQueueStore
from notifications.handler import NotificationHandler
from shared.schemas.notifications import EventType

logger = structlog.get_logger()


class Poller:
    """Runs poll cycles over a fixed set of named queues."""

    def __init__(
        self,
        queue_store: DelayQueueStore,
        handler: NotificationHandler,
        queue_names: list[str],
        update_queue: str = "update",
        dispatch_timeout: float = 30.0,
    ):
        self.queue_store = queue_store
        self.handler = handler
        self.queue_names = list(queue_names)
        self.update_queue = update_queue
        self.dispatch_timeout = dispatch_timeout

    async def run_cycle(self) -> None:
        """Poll every queue concurrently. Never raises."""
        results = await asyncio.gather(
            *(self.poll_queue(name) for name in self.queue_names),
            return_exceptions=True,
        )
        for name, result in zip(self.queue_names, results):
            if isinstance(result, BaseException):
                logger.error("poll_queue_error", queue=name, error=str(result))

    async def poll_queue(self, queue: str) -> int:
        """Process every due entry of ``queue``. Returns entries seen."""
        entries = await self.queue_store.drain_due(queue)
        if not entries:
            return 0
        logger.info("poll_entries_found", queue=queue, count=len(entries))

        parsed: list[tuple[str, dict[str, Any]]] = []
        for raw in entries:
            payload = self._parse(queue, raw)
            if payload is None:
                await self._remove(queue, raw)
                continue
            parsed.append((raw, payload))

        if queue == self.update_queue:
            await self._process_updates(queue, parsed)
        else:
            for raw, payload in parsed:
                try:
                    await self._invoke(
                        self.handler.dispatch(payload),
                        queue=queue,
                        type=payload.get("type"),
                    )
                finally:
                    await self._remove(queue, raw)
        return len(entries)

    async def _process_updates(self, queue: str, parsed: list[tuple[str, dict[str, Any]]]) -> None:
        # Group by recipient so each user gets one batch per cycle
        groups: dict[str, list[tuple[str, dict[str, Any]]]] = {}
        for raw, payload in parsed:
            if payload.get("type") != EventType.UPDATE.value:
                logger.warning("poll_update_wrong_type", queue=queue, type=payload.get("type"))
                await self._remove(queue, raw)
                continue
            user_id = payload.get("user_id")
            if not user_id:
                logger.warning("poll_update_missing_user", queue=queue)
                await self._remove(queue, raw)
                continue
            groups.setdefault(str(user_id), []).append((raw, payload))

        for user_id, group in groups.items():
            try:
                await self._invoke(
                    self.handler.handle_update(user_id, [payload for _, payload in group]),
                    queue=queue,
                    user_id=user_id,
                    count=len(group),
                )
            finally:
                for raw, _ in group:
                    await self._remove(queue, raw)

    def _parse(self, queue: str, raw: str | bytes) -> dict[str, Any] | None:
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error("poll_invalid_json", queue=queue, error=str(e))
            return None
        if not isinstance(payload, dict):
            logger.error("poll_invalid_payload", queue=queue, payload_type=type(payload).__name__)
            return None
        if not payload.get("type"):
            logger.warning("poll_payload_missing_type", queue=queue)
            return None
        return payload

    async def _invoke(self, call: Awaitable[None], **context: Any) -> None:
        try:
            if self.dispatch_timeout > 0:
                await asyncio.wait_for(call, timeout=self.dispatch_timeout)
            else:
                await call
        except asyncio.TimeoutError:
            logger.error("poll_dispatch_timeout", timeout=self.dispatch_timeout, **context)
        except Exception:
            logger.exception("poll_dispatch_failed", **context)

    async def _remove(self, queue: str, raw: str | bytes) -> None:
        try:
            await self.queue_store.remove(queue, raw)
        except Exception as e:
            # Entry stays queued and is seen again next cycle
            logger.error("poll_remove_failed", queue=queue, error=str(e))


async def poller_loop(poller: Poller, interval: float) -> None:
    """Start a cycle every ``interval`` seconds regardless of cycle duration.

    A slow cycle does not delay the next tick, so cycles can overlap.
    """
    logger.info("poller_started", interval=interval, queues=poller.queue_names)
    running: set[asyncio.Task] = set()
    try:
        while True:
            task = asyncio.create_task(poller.run_cycle())
            running.add(task)
            task.add_done_callback(running.discard)
            await asyncio.sleep(interval)
    finally:
        for task in running:
            task.cancel()
