"""Persisted notification records (the inbox)."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, Index, Text
from sqlalchemy.orm import Mapped, mapped_column

from shared.models.base import Base


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (Index("ix_notifications_to_user_created", "to_user_id", "created_at"),)

    # Same id as the pushed view, so the UI can reconcile live and stored copies
    id: Mapped[str] = mapped_column(primary_key=True)
    to_user_id: Mapped[str]
    title: Mapped[str] = mapped_column(Text)
    description: Mapped[str] = mapped_column(Text, default="")
    link: Mapped[str | None] = mapped_column(default=None)

    # Redelivery of the same scheduled event collapses onto one row
    dedup_key: Mapped[str | None] = mapped_column(unique=True, default=None)

    read: Mapped[bool] = mapped_column(default=False)
    user_set_read: Mapped[bool] = mapped_column(default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "to_user_id": self.to_user_id,
            "title": self.title,
            "description": self.description,
            "link": self.link,
            "read": self.read,
            "user_set_read": self.user_set_read,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
