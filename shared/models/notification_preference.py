"""Per-user delivery preferences."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from shared.models.base import Base


class NotificationPreference(Base):
    __tablename__ = "notification_preferences"

    user_id: Mapped[str] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(default="")
    delivery_method: Mapped[list] = mapped_column(JSON, default=list)  # ["in-app", "email"]

    delivery_frequency: Mapped[str] = mapped_column(default="Immediate")  # Immediate | Daily | Weekly
    delivery_time: Mapped[str] = mapped_column(default="1970-01-01T09:00:00+00:00")
    delivery_day: Mapped[str] = mapped_column(default="Monday")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
