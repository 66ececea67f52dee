"""Producer side: schedules events into the delay queues."""

from __future__ import annotations

import json
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from notifications.delay_queue import DelayQueueStore, now_ms, to_score
from shared.schemas.notifications import EventType, FrequencyPreferences

logger = structlog.get_logger()

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
DEFAULT_REMINDER_DAYS = (1, 3, 7)


def parse_instant(value: Any) -> datetime | None:
    """Parse a datetime, ISO string or epoch-ms number. None if unusable."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, str) and value:
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def compute_next_notify_at(
    frequency: FrequencyPreferences | dict[str, Any], now: datetime | None = None
) -> int:
    """Next delivery instant (epoch ms, UTC) for a recipient's frequency.

    Daily and Weekly use the hour and minute of ``delivery_time`` and always
    return an instant strictly after ``now``.
    """
    if isinstance(frequency, dict):
        frequency = FrequencyPreferences.model_validate(frequency)
    now = now or datetime.now(timezone.utc)

    if frequency.delivery_frequency == "Immediate":
        return to_score(now)

    if frequency.delivery_frequency == "Daily":
        at = parse_instant(frequency.delivery_time)
        if at is None:
            raise ValueError("Invalid delivery_time format for Daily")
        at = at.astimezone(timezone.utc)
        candidate = now.replace(hour=at.hour, minute=at.minute, second=0, microsecond=0)
        if candidate <= now:
            candidate += timedelta(days=1)
        return to_score(candidate)

    if frequency.delivery_frequency == "Weekly":
        if frequency.delivery_day not in WEEKDAYS:
            raise ValueError("Invalid delivery_day for Weekly frequency")
        at = parse_instant(frequency.delivery_time)
        if at is None:
            raise ValueError("Invalid delivery_time format for Weekly")
        at = at.astimezone(timezone.utc)
        days_ahead = (WEEKDAYS.index(frequency.delivery_day) - now.weekday()) % 7
        candidate = (now + timedelta(days=days_ahead)).replace(
            hour=at.hour, minute=at.minute, second=0, microsecond=0
        )
        if candidate <= now:
            candidate += timedelta(days=7)
        return to_score(candidate)

    raise ValueError("Invalid delivery_frequency")


def _valid_days(reminder_days: Iterable[Any]) -> list[int]:
    days = []
    for day in reminder_days:
        if isinstance(day, bool) or not isinstance(day, (int, float)):
            continue
        if day != int(day) or day < 0:
            continue
        days.append(int(day))
    return days


class NotificationPublisher:
    """Writes notification events into the named delay queues."""

    def __init__(
        self,
        queue_store: DelayQueueStore,
        deadline_queue: str = "deadline_reminders",
        update_queue: str = "update",
        added_queue: str = "added",
        default_reminder_days: Iterable[int] = DEFAULT_REMINDER_DAYS,
    ):
        self.queue_store = queue_store
        self.deadline_queue = deadline_queue
        self.update_queue = update_queue
        self.added_queue = added_queue
        self.default_reminder_days = tuple(default_reminder_days)

    async def publish_deadline_reminder(
        self,
        task_id: str,
        user_id: str,
        deadline: Any,
        reminder_days: Iterable[Any] | None = None,
        username: str | None = None,
        now: datetime | None = None,
    ) -> int:
        """Schedule one reminder per day before ``deadline``.

        Non-integral days and instants already in the past are skipped.
        Returns the number of reminders scheduled.
        """
        deadline_at = parse_instant(deadline)
        if deadline_at is None:
            logger.error("deadline_reminder_invalid_deadline", task_id=task_id, deadline=str(deadline))
            return 0

        if reminder_days is None:
            reminder_days = self.default_reminder_days
        now_score = to_score(now) if now else now_ms()

        scheduled = 0
        for day in _valid_days(reminder_days):
            notify_at = to_score(deadline_at - timedelta(days=day))
            if notify_at <= now_score:
                continue
            payload = {
                "type": EventType.DEADLINE_REMINDER.value,
                "resource_type": "task",
                "resource_id": task_id,
                "user_id": user_id,
                "username": username,
                "day": day,
                "key": f"{task_id}:{user_id}:{day}",
                "notify_at": notify_at,
            }
            try:
                await self.queue_store.enqueue(self.deadline_queue, notify_at, payload)
                scheduled += 1
            except Exception as e:
                logger.error("deadline_reminder_enqueue_failed", task_id=task_id, day=day, error=str(e))
        logger.info("deadline_reminders_scheduled", task_id=task_id, user_id=user_id, count=scheduled)
        return scheduled

    async def publish_update(
        self,
        update_type: str,
        resource_id: str,
        resource_type: str,
        resource_content: dict[str, Any],
        user_id: str,
        notify_at: Any = None,
        updated_by: str | None = None,
    ) -> str:
        """Queue one update for one recipient at ``notify_at`` (now if invalid)."""
        at = parse_instant(notify_at)
        score = to_score(at) if at else now_ms()
        payload = {
            "type": EventType.UPDATE.value,
            "update_type": update_type,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "resource_content": resource_content,
            "user_id": user_id,
            "updated_by": updated_by,
            "notify_at": score,
            "original_sent": now_ms(),
        }
        return await self.queue_store.enqueue(self.update_queue, score, payload)

    async def publish_added_to_resource(
        self,
        resource_type: str,
        resource_id: str,
        collaborator_ids: list[str],
        resource_content: dict[str, Any],
        added_by: str | None = None,
        now: datetime | None = None,
    ) -> str:
        """Queue an added event for delivery now; tasks also get reminders."""
        score = to_score(now) if now else now_ms()
        payload = {
            "type": EventType.ADDED.value,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "collaborator_ids": collaborator_ids,
            "resource_content": resource_content,
            "added_by": added_by,
            "notify_at": score,
        }
        member = await self.queue_store.enqueue(self.added_queue, score, payload)

        deadline = parse_instant(resource_content.get("deadline"))
        if resource_type == "task" and deadline is not None and to_score(deadline) > score:
            for user_id in collaborator_ids:
                await self.publish_deadline_reminder(resource_id, user_id, deadline, now=now)
        return member

    async def remove_deadline_reminders(self, resource_id: str, user_id: str) -> int:
        """Cancel every pending reminder for one task and recipient."""
        removed = 0
        try:
            entries = await self.queue_store.entries(self.deadline_queue)
            for raw in entries:
                try:
                    payload = json.loads(raw)
                except (json.JSONDecodeError, TypeError):
                    continue
                if not isinstance(payload, dict):
                    continue
                if str(payload.get("resource_id")) == str(resource_id) and str(payload.get("user_id")) == str(user_id):
                    if await self.queue_store.remove(self.deadline_queue, raw):
                        removed += 1
        except Exception as e:
            logger.error("deadline_reminders_remove_failed", resource_id=resource_id, error=str(e))
        logger.info("deadline_reminders_removed", resource_id=resource_id, user_id=user_id, count=removed)
        return removed

    async def reschedule_user_updates(
        self, user_id: str, frequency: FrequencyPreferences | dict[str, Any]
    ) -> int:
        """Move a recipient's pending updates to their new delivery instant."""
        notify_at = compute_next_notify_at(frequency)
        moved = 0
        try:
            entries = await self.queue_store.entries(self.update_queue)
        except Exception as e:
            logger.error("update_reschedule_failed", user_id=user_id, error=str(e))
            return 0

        for raw in entries:
            try:
                payload = json.loads(raw)
            except (json.JSONDecodeError, TypeError):
                continue
            if not isinstance(payload, dict) or str(payload.get("user_id")) != str(user_id):
                continue
            try:
                await self.queue_store.remove(self.update_queue, raw)
                payload["notify_at"] = notify_at
                await self.queue_store.enqueue(self.update_queue, notify_at, payload)
                moved += 1
            except Exception as e:
                logger.error("update_reschedule_failed", user_id=user_id, error=str(e))
        logger.info("updates_rescheduled", user_id=user_id, count=moved, notify_at=notify_at)
        return moved
