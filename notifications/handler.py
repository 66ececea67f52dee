"""Notification handler: enrich, classify, format, then scatter to channels.

Each delivery channel (push, persist, email) is attempted independently. A
failing channel is logged and the others still run, so a recipient may get a
push without an email and no error surfaces anywhere else.
"""

from __future__ import annotations

from collections.abc import Awaitable, Iterable
from typing import Any

import structlog
from pydantic import ValidationError

from notifications.clients import ProfileClient, ResourceClient
from notifications.email import DEADLINE_OR_ADDED, UPDATES, EmailSender
from notifications.errors import FormatterError, PoisonPayloadError
from notifications.formatting import (
    classify_resource,
    format_ws_added,
    format_ws_reminder,
    format_ws_update,
    priority_flags,
    resource_flags,
    resource_link,
)
from notifications.registry import ConnectionRegistry
from notifications.store import NotificationStore, PreferencesStore
from shared.schemas.notifications import (
    EventType,
    FormattedNotification,
    NotificationEvent,
)

logger = structlog.get_logger()


class NotificationHandler:
    """Routes events to the per-type handlers.

    The ``handle_*`` entry points never raise: collaborator lookups degrade
    to defaults and channel failures are logged per channel.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        profiles: ProfileClient,
        resources: ResourceClient,
        preferences: PreferencesStore,
        store: NotificationStore,
        email: EmailSender,
    ):
        self.registry = registry
        self.profiles = profiles
        self.resources = resources
        self.preferences = preferences
        self.store = store
        self.email = email

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, payload: NotificationEvent | dict[str, Any]) -> None:
        """Route one event by its ``type`` tag.

        Raises PoisonPayloadError if the payload is not a usable event.
        Unknown tags are logged and dropped.
        """
        try:
            event = NotificationEvent.coerce(payload)
        except ValidationError as e:
            raise PoisonPayloadError(f"invalid notification payload: {e}") from e

        match event.event_type:
            case EventType.DEADLINE_REMINDER:
                await self.handle_deadline_reminder(event)
            case EventType.ADDED:
                await self.handle_added_to_resource(event)
            case EventType.UPDATE:
                await self.handle_update(event.user_id, [event])
            case _:
                logger.warning("notification_type_unknown", type=event.type)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def handle_deadline_reminder(self, payload: NotificationEvent | dict[str, Any]) -> None:
        event = self._coerce_or_drop(payload, "deadline_reminder")
        if event is None or not event.user_id:
            return

        try:
            prefs = await self.preferences.get_preferences(event.user_id)
            detail = await self.resources.get_task_detail(event.resource_id)

            # Fresh detail wins; the snapshot in the payload fills the gaps
            snapshot = event.extra("task")
            task = {
                **event.resource_content,
                **(snapshot if isinstance(snapshot, dict) else {}),
                **detail,
            }
            notification = format_ws_reminder({"task": task, "day": event.extra("day")})
        except Exception:
            logger.exception("deadline_reminder_failed", user_id=event.user_id, key=event.key)
            return

        email_payload = None
        if prefs.wants_email:
            email_payload = {
                "email": prefs.email,
                "username": event.extra("username"),
                "day": event.extra("day"),
                "task": task,
                **notification.model_dump(),
            }

        await self._scatter(
            event.user_id,
            notification,
            dedup_key=event.key,
            email_kind=DEADLINE_OR_ADDED if email_payload else None,
            email_payload=email_payload,
        )
        logger.info("deadline_reminder_delivered", user_id=event.user_id, key=event.key)

    async def handle_added_to_resource(self, payload: NotificationEvent | dict[str, Any]) -> None:
        event = self._coerce_or_drop(payload, "added")
        if event is None or event.collaborator_ids is None:
            return

        content = event.resource_content
        kind = classify_resource(event.resource_type, content)
        added_by = event.extra("added_by")
        added_by_name = await self.profiles.get_display_name(added_by)
        base_view = {
            "resource_type": event.resource_type,
            "resource_id": event.resource_id,
            "resource_content": content,
            "added_by": added_by,
            "added_by_name": added_by_name,
            "link": resource_link(kind, event.resource_id, content),
            **resource_flags(kind),
            **priority_flags(content.get("priority")),
        }

        for collaborator in event.collaborator_ids:
            try:
                view = {**base_view, "user_id": collaborator}
                notification = format_ws_added(view)
                prefs = await self.preferences.get_preferences(collaborator)
            except Exception:
                logger.exception(
                    "added_notification_failed",
                    user_id=collaborator,
                    resource_id=event.resource_id,
                )
                continue

            await self._scatter(
                collaborator,
                notification,
                email_kind=DEADLINE_OR_ADDED,
                email_payload={
                    **view,
                    "email": prefs.email,
                    "notification": notification.model_dump(),
                },
            )

        logger.info(
            "added_notifications_delivered",
            resource_id=event.resource_id,
            kind=kind.value if kind else None,
            recipients=len(event.collaborator_ids),
        )

    async def handle_update(
        self, user_id: str | None, payloads: Iterable[NotificationEvent | dict[str, Any]]
    ) -> None:
        """Deliver one recipient's batch of updates, one notification each."""
        if not user_id:
            return

        batched: dict[str, list[dict[str, Any]]] = {"project": [], "task": []}
        names: dict[str, str] = {}
        for payload in payloads:
            try:
                event = NotificationEvent.coerce(payload)
            except ValidationError as e:
                logger.warning("update_payload_invalid", user_id=user_id, error=str(e))
                continue
            if not event.resource_type or not event.resource_id:
                continue
            item = event.model_dump()
            updated_by = event.extra("updated_by")
            if updated_by:
                if updated_by not in names:
                    names[updated_by] = await self.profiles.get_display_name(updated_by)
                item["updated_by_name"] = names[updated_by]
            batched.setdefault(event.resource_type, []).append(item)

        if not any(batched.values()):
            return

        try:
            notifications = format_ws_update({"user_id": user_id, "batched_resources": batched})
        except FormatterError as e:
            logger.error("update_batch_abandoned", user_id=user_id, error=str(e))
            return
        except Exception:
            logger.exception("update_batch_abandoned", user_id=user_id)
            return

        prefs = await self.preferences.get_preferences(user_id)
        for notification in notifications:
            await self._scatter(
                user_id,
                notification,
                email_kind=UPDATES,
                email_payload={
                    "email": prefs.email,
                    "user_id": user_id,
                    "notification": notification.model_dump(),
                },
            )
        logger.info("update_batch_delivered", user_id=user_id, count=len(notifications))

    @staticmethod
    def _coerce_or_drop(
        payload: NotificationEvent | dict[str, Any], expected: str
    ) -> NotificationEvent | None:
        try:
            return NotificationEvent.coerce(payload)
        except ValidationError as e:
            logger.error("notification_payload_poison", type=expected, error=str(e))
            return None

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    async def _scatter(
        self,
        user_id: str,
        notification: FormattedNotification,
        dedup_key: str | None = None,
        email_kind: str | None = None,
        email_payload: dict[str, Any] | None = None,
    ) -> dict[str, bool]:
        results = {
            "push": await self._deliver("push", user_id, self.registry.broadcast(user_id, notification)),
            "persist": await self._deliver(
                "persist",
                user_id,
                self.store.persist_notification(user_id, notification, dedup_key=dedup_key),
            ),
        }
        if email_kind is not None:
            results["email"] = await self._deliver(
                "email",
                user_id,
                self.email.send_templated_email(email_kind, email_payload or {}),
            )
        return results

    @staticmethod
    async def _deliver(channel: str, user_id: str, call: Awaitable[Any]) -> bool:
        try:
            await call
            return True
        except Exception as e:
            logger.warning("delivery_channel_failed", channel=channel, user_id=user_id, error=str(e))
            return False
