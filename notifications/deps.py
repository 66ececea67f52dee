"""FastAPI dependencies resolving the components built at startup."""

from __future__ import annotations

from fastapi import Request

from notifications.publisher import NotificationPublisher
from notifications.store import NotificationStore, PreferencesStore


def get_notification_store(request: Request) -> NotificationStore:
    return request.app.state.notification_store


def get_preferences_store(request: Request) -> PreferencesStore:
    return request.app.state.preferences_store


def get_publisher(request: Request) -> NotificationPublisher:
    return request.app.state.publisher


def get_redis_client(request: Request):
    return request.app.state.redis
