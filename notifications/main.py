"""Notification service - FastAPI app with poller, heartbeat and pub/sub listener."""

from __future__ import annotations

import asyncio
import json

import structlog
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from notifications.clients import ProfileClient, ResourceClient
from notifications.delay_queue import DelayQueueStore
from notifications.email import EmailSender
from notifications.handler import NotificationHandler
from notifications.poller import Poller, poller_loop
from notifications.publisher import NotificationPublisher
from notifications.pubsub import notification_listener
from notifications.registry import ConnectionRegistry, WebSocketConnection, heartbeat_loop
from notifications.routers import inbox, preferences, publish
from notifications.store import NotificationStore, PreferencesStore
from shared.config import get_settings, parse_list
from shared.database import dispose_engine, get_session_factory
from shared.redis import close_redis, get_redis, ping_redis
from shared.schemas.common import HealthResponse

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
)

logger = structlog.get_logger()
app = FastAPI(title="Notification Service", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=parse_list(get_settings().cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(inbox.router)
app.include_router(preferences.router)
app.include_router(publish.router)

app.state.registry = ConnectionRegistry()
_background_tasks: list[asyncio.Task] = []


@app.on_event("startup")
async def startup() -> None:
    settings = get_settings()
    redis_client = await get_redis()
    session_factory = get_session_factory()
    registry: ConnectionRegistry = app.state.registry

    queue_store = DelayQueueStore(redis_client)
    notification_store = NotificationStore(session_factory)
    preferences_store = PreferencesStore(session_factory)
    handler = NotificationHandler(
        registry=registry,
        profiles=ProfileClient.from_settings(settings),
        resources=ResourceClient.from_settings(settings),
        preferences=preferences_store,
        store=notification_store,
        email=EmailSender(settings),
    )
    poller = Poller(
        queue_store,
        handler,
        settings.queue_names,
        update_queue=settings.update_queue,
        dispatch_timeout=settings.dispatch_timeout_seconds,
    )

    app.state.redis = redis_client
    app.state.notification_store = notification_store
    app.state.preferences_store = preferences_store
    app.state.publisher = NotificationPublisher(
        queue_store,
        deadline_queue=settings.deadline_queue,
        update_queue=settings.update_queue,
        added_queue=settings.added_queue,
        default_reminder_days=[int(d) for d in parse_list(settings.default_reminder_days)],
    )

    _background_tasks.extend([
        asyncio.create_task(poller_loop(poller, settings.poll_interval_seconds)),
        asyncio.create_task(heartbeat_loop(registry, settings.heartbeat_interval_seconds)),
        asyncio.create_task(
            notification_listener(
                settings.redis_url,
                handler,
                settings.notification_channel,
                retry_delay=settings.listener_retry_seconds,
            )
        ),
    ])
    logger.info("notification_service_ready", queues=settings.queue_names)


@app.on_event("shutdown")
async def shutdown() -> None:
    for task in _background_tasks:
        if not task.done():
            task.cancel()
    for task in _background_tasks:
        try:
            await task
        except asyncio.CancelledError:
            pass
    _background_tasks.clear()
    await close_redis()
    await dispose_engine()
    logger.info("notification_service_shutdown")


@app.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    redis_client = getattr(request.app.state, "redis", None)
    return HealthResponse(
        redis_connected=await ping_redis(redis_client) if redis_client is not None else None,
        live_connections=request.app.state.registry.count(),
    )


@app.websocket("/ws")
async def ws_notifications(websocket: WebSocket) -> None:
    """Live push channel. Clients connect with ``?userId=`` and answer pings."""
    user_id = websocket.query_params.get("userId")
    if not user_id:
        await websocket.close(code=1008)
        logger.warning("ws_rejected_missing_user")
        return

    await websocket.accept()
    registry: ConnectionRegistry = websocket.app.state.registry
    connection = WebSocketConnection(websocket)
    await registry.register(user_id, connection)

    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                continue
            if isinstance(message, dict) and message.get("type") == "pong":
                await registry.mark_alive(connection)
    except WebSocketDisconnect:
        pass
    finally:
        await registry.unregister(connection)
