"""SQLAlchemy models."""

from shared.models.base import Base
from shared.models.notification import Notification
from shared.models.notification_preference import NotificationPreference

__all__ = [
    "Base",
    "Notification",
    "NotificationPreference",
]
