"""Postgres-backed inbox records and delivery preferences."""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from notifications.errors import DeliveryChannelError
from shared.models.notification import Notification
from shared.models.notification_preference import NotificationPreference
from shared.schemas.notifications import (
    FormattedNotification,
    FrequencyPreferences,
    UserPreferences,
)

logger = structlog.get_logger()


class NotificationStore:
    """Durable inbox: one row per delivered notification per recipient."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def persist_notification(
        self,
        recipient_id: str,
        notification: FormattedNotification,
        dedup_key: str | None = None,
    ) -> bool:
        """Insert the record. Returns False if ``dedup_key`` was already stored.

        Raises DeliveryChannelError when the write fails.
        """
        stmt = (
            pg_insert(Notification)
            .values(
                id=notification.id,
                to_user_id=recipient_id,
                title=notification.title,
                description=notification.description,
                link=notification.link,
                dedup_key=dedup_key,
            )
            .on_conflict_do_nothing(index_elements=["dedup_key"])
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            raise DeliveryChannelError("persist", str(e)) from e

        inserted = bool(result.rowcount)
        if not inserted:
            logger.info("notification_duplicate_skipped", user_id=recipient_id, key=dedup_key)
        return inserted

    async def list_for_user(self, user_id: str) -> list[dict[str, Any]]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Notification)
                .where(Notification.to_user_id == user_id)
                .order_by(Notification.created_at.desc())
            )
            return [n.to_dict() for n in result.scalars().all()]

    async def mark_read(self, notification_ids: list[str]) -> int:
        """Mark the given notifications read. Returns rows updated."""
        if not notification_ids:
            raise ValueError("No notification IDs provided")
        async with self.session_factory() as session:
            result = await session.execute(
                update(Notification)
                .where(Notification.id.in_(notification_ids))
                .values(read=True)
            )
            await session.commit()
        return result.rowcount

    async def toggle_read(self, notification_id: str) -> dict[str, Any] | None:
        """Flip the user-controlled read flag. None if the record is missing."""
        async with self.session_factory() as session:
            notif = await session.get(Notification, notification_id)
            if notif is None:
                return None
            notif.user_set_read = not notif.user_set_read
            await session.commit()
            return notif.to_dict()

    async def delete_all(self, user_id: str) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(Notification).where(Notification.to_user_id == user_id)
            )
            await session.commit()
        logger.info("notifications_cleared", user_id=user_id, count=result.rowcount)
        return result.rowcount

    async def delete_one(self, user_id: str, notification_id: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(Notification).where(
                    Notification.to_user_id == user_id,
                    Notification.id == notification_id,
                )
            )
            await session.commit()
        return bool(result.rowcount)


class PreferencesStore:
    """Reads and writes ``notification_preferences`` rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_preferences(self, user_id: str | None) -> UserPreferences:
        """Channel preferences; an empty default when missing or on DB failure."""
        if not user_id:
            return UserPreferences()
        try:
            async with self.session_factory() as session:
                pref = await session.get(NotificationPreference, user_id)
        except SQLAlchemyError as e:
            logger.warning("preferences_lookup_failed", user_id=user_id, error=str(e))
            return UserPreferences()
        if pref is None:
            return UserPreferences()
        return UserPreferences(
            email=pref.email or "",
            delivery_method=list(pref.delivery_method or []),
        )

    async def get_frequency(self, user_id: str) -> FrequencyPreferences:
        async with self.session_factory() as session:
            pref = await session.get(NotificationPreference, user_id)
        if pref is None:
            return FrequencyPreferences()
        return FrequencyPreferences(
            delivery_frequency=pref.delivery_frequency,
            delivery_time=pref.delivery_time,
            delivery_day=pref.delivery_day,
        )

    async def update_delivery(
        self, user_id: str, delivery_method: list[str], email: str | None = None
    ) -> UserPreferences:
        async with self.session_factory() as session:
            pref = await session.get(NotificationPreference, user_id)
            if pref is None:
                pref = NotificationPreference(user_id=user_id, email="", delivery_method=[])
                session.add(pref)
            pref.delivery_method = list(delivery_method)
            if email is not None:
                pref.email = email
            await session.commit()
            logger.info("delivery_method_updated", user_id=user_id, methods=delivery_method)
            return UserPreferences(email=pref.email or "", delivery_method=list(pref.delivery_method))

    async def update_frequency(self, user_id: str, frequency: FrequencyPreferences) -> FrequencyPreferences:
        async with self.session_factory() as session:
            pref = await session.get(NotificationPreference, user_id)
            if pref is None:
                pref = NotificationPreference(user_id=user_id, email="", delivery_method=[])
                session.add(pref)
            pref.delivery_frequency = frequency.delivery_frequency
            if frequency.delivery_time is not None:
                pref.delivery_time = frequency.delivery_time
            if frequency.delivery_day is not None:
                pref.delivery_day = frequency.delivery_day
            await session.commit()
            logger.info(
                "delivery_frequency_updated",
                user_id=user_id,
                frequency=frequency.delivery_frequency,
            )
            return FrequencyPreferences(
                delivery_frequency=pref.delivery_frequency,
                delivery_time=pref.delivery_time,
                delivery_day=pref.delivery_day,
            )
