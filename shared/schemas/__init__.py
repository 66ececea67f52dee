"""Pydantic schemas for the notification service."""

from shared.schemas.common import HealthResponse
from shared.schemas.notifications import (
    EventType,
    FormattedNotification,
    FrequencyPreferences,
    NotificationEvent,
    UserPreferences,
)

__all__ = [
    "EventType",
    "FormattedNotification",
    "FrequencyPreferences",
    "HealthResponse",
    "NotificationEvent",
    "UserPreferences",
]
