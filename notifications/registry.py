"""Live push connection registry with heartbeat-based liveness sweeping."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Protocol

import structlog
from fastapi import WebSocket
from pydantic import BaseModel
from starlette.websockets import WebSocketState

logger = structlog.get_logger()

# Application-level probe; clients answer with {"type": "pong"}
HEARTBEAT_MESSAGE = json.dumps({"type": "ping"})


class PushConnection(Protocol):
    """What the registry needs from a push transport."""

    @property
    def is_open(self) -> bool: ...

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class WebSocketConnection:
    """Adapts a FastAPI WebSocket to :class:`PushConnection`."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_text(self, data: str) -> None:
        await self.websocket.send_text(data)

    async def close(self, code: int = 1000) -> None:
        await self.websocket.close(code=code)


class ConnectionRegistry:
    """Tracks live push connections per user.

    All mutation goes through these methods under one lock. Sends happen
    outside the lock on a snapshot, so a slow socket cannot stall
    registration or the sweep.
    """

    def __init__(self) -> None:
        self._clients: dict[str, set[PushConnection]] = {}
        self._owners: dict[PushConnection, str] = {}
        self._alive: dict[PushConnection, bool] = {}
        self._lock = asyncio.Lock()

    async def register(self, user_id: str, connection: PushConnection) -> None:
        """Track ``connection`` for ``user_id`` and mark it alive."""
        async with self._lock:
            previous = self._owners.get(connection)
            if previous is not None and previous != user_id:
                self._discard(connection)
            self._clients.setdefault(user_id, set()).add(connection)
            self._owners[connection] = user_id
            self._alive[connection] = True
        logger.info("ws_connected", user_id=user_id)

    async def unregister(self, connection: PushConnection) -> None:
        """Forget ``connection``; the user entry is pruned when it empties."""
        async with self._lock:
            user_id = self._discard(connection)
        if user_id is not None:
            logger.info("ws_disconnected", user_id=user_id)

    async def mark_alive(self, connection: PushConnection) -> None:
        """Record a heartbeat response."""
        async with self._lock:
            if connection in self._alive:
                self._alive[connection] = True

    async def broadcast(self, user_id: str, message: dict[str, Any] | BaseModel) -> int:
        """Send ``message`` to every open connection of ``user_id``.

        Returns the number of sockets written to. A user with no connections
        is not an error: offline users rely on the persisted and email
        channels instead.
        """
        async with self._lock:
            sockets = list(self._clients.get(user_id, ()))
        if not sockets:
            return 0

        if isinstance(message, BaseModel):
            message = message.model_dump()
        data = json.dumps(message, default=str)

        sent = 0
        for connection in sockets:
            if not connection.is_open:
                continue
            try:
                await connection.send_text(data)
                sent += 1
            except Exception as e:
                logger.warning("ws_send_failed", user_id=user_id, error=str(e))
        logger.info("ws_broadcast", user_id=user_id, sockets=sent)
        return sent

    async def sweep(self) -> int:
        """Close connections that missed the previous probe, then probe the rest.

        Returns the number of connections removed.
        """
        async with self._lock:
            dead = [c for c, alive in self._alive.items() if not alive]
            for connection in dead:
                self._discard(connection)
            probes = list(self._alive)
            for connection in probes:
                self._alive[connection] = False

        for connection in dead:
            try:
                await connection.close(code=1001)
            except Exception as e:
                logger.debug("ws_close_failed", error=str(e))

        failed: list[PushConnection] = []
        for connection in probes:
            if not connection.is_open:
                failed.append(connection)
                continue
            try:
                await connection.send_text(HEARTBEAT_MESSAGE)
            except Exception as e:
                logger.debug("ws_probe_failed", error=str(e))
                failed.append(connection)

        if failed:
            async with self._lock:
                for connection in failed:
                    self._discard(connection)

        removed = len(dead) + len(failed)
        if removed:
            logger.info("ws_sweep_removed", count=removed, remaining=len(self._alive))
        return removed

    def count(self, user_id: str | None = None) -> int:
        """Number of tracked connections, for one user or overall."""
        if user_id is None:
            return len(self._owners)
        return len(self._clients.get(user_id, ()))

    def _discard(self, connection: PushConnection) -> str | None:
        # Caller holds the lock.
        user_id = self._owners.pop(connection, None)
        self._alive.pop(connection, None)
        if user_id is None:
            return None
        sockets = self._clients.get(user_id)
        if sockets is not None:
            sockets.discard(connection)
            if not sockets:
                del self._clients[user_id]
        return user_id


async def heartbeat_loop(registry: ConnectionRegistry, interval: float) -> None:
    """Background loop that sweeps dead connections at a fixed interval."""
    logger.info("heartbeat_loop_started", interval=interval)
    while True:
        await asyncio.sleep(interval)
        try:
            await registry.sweep()
        except Exception:
            logger.exception("heartbeat_sweep_error")
