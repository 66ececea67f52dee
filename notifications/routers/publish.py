"""Producer endpoints used by the task and project services."""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from notifications.deps import get_preferences_store, get_publisher, get_redis_client
from notifications.publisher import NotificationPublisher, compute_next_notify_at
from notifications.pubsub import publish_notification
from notifications.store import PreferencesStore
from shared.auth import require_service_auth
from shared.config import get_settings
from shared.schemas.notifications import NotificationEvent

logger = structlog.get_logger()

router = APIRouter(
    prefix="/publish",
    tags=["publish"],
    dependencies=[Depends(require_service_auth)],
)


class DeadlineReminderRequest(BaseModel):
    task_id: str
    user_id: str
    deadline: datetime
    reminder_days: list[Any] | None = None
    username: str | None = None


class UpdateRequest(BaseModel):
    update_type: str
    resource_id: str
    resource_type: str
    resource_content: dict[str, Any]
    collaborator_ids: list[str]
    updated_by: str | None = None


class AddedToResourceRequest(BaseModel):
    resource_type: str
    resource_id: str
    collaborator_ids: list[str] = Field(min_length=1)
    resource_content: dict[str, Any] = Field(default_factory=dict)
    added_by: str


@router.post("/deadline-reminder")
async def deadline_reminder(
    body: DeadlineReminderRequest,
    publisher: NotificationPublisher = Depends(get_publisher),
) -> dict:
    scheduled = await publisher.publish_deadline_reminder(
        body.task_id,
        body.user_id,
        body.deadline,
        reminder_days=body.reminder_days,
        username=body.username,
    )
    return {"message": "Deadline reminders scheduled", "scheduled": scheduled}


@router.delete("/deadline-reminder/{task_id}/{user_id}")
async def cancel_deadline_reminders(
    task_id: str,
    user_id: str,
    publisher: NotificationPublisher = Depends(get_publisher),
) -> dict:
    removed = await publisher.remove_deadline_reminders(task_id, user_id)
    return {"removed": removed}


@router.post("/update")
async def update(
    body: UpdateRequest,
    publisher: NotificationPublisher = Depends(get_publisher),
    preferences: PreferencesStore = Depends(get_preferences_store),
) -> dict:
    """Queue the update once per collaborator at their preferred delivery time."""
    queued = 0
    for collaborator_id in body.collaborator_ids:
        frequency = await preferences.get_frequency(collaborator_id)
        try:
            notify_at = compute_next_notify_at(frequency)
        except ValueError as e:
            # Stored preferences are broken; deliver with the next cycle
            logger.warning("frequency_invalid", user_id=collaborator_id, error=str(e))
            notify_at = None
        await publisher.publish_update(
            body.update_type,
            body.resource_id,
            body.resource_type,
            body.resource_content,
            collaborator_id,
            notify_at,
            body.updated_by,
        )
        queued += 1
    return {"message": f"Update notifications scheduled for {body.resource_type}", "queued": queued}


@router.post("/added-to-resource")
async def added_to_resource(
    body: AddedToResourceRequest,
    publisher: NotificationPublisher = Depends(get_publisher),
) -> dict:
    await publisher.publish_added_to_resource(
        body.resource_type,
        body.resource_id,
        body.collaborator_ids,
        body.resource_content,
        body.added_by,
    )
    return {"message": "Added-to-resource notifications scheduled"}


@router.post("/immediate")
async def immediate(
    event: NotificationEvent,
    redis_client=Depends(get_redis_client),
) -> dict:
    """Skip the delay queues and fan the event out over pub/sub."""
    if event.event_type is None:
        raise HTTPException(status_code=400, detail=f"Unknown notification type: {event.type}")
    receivers = await publish_notification(
        redis_client, event, channel=get_settings().notification_channel
    )
    return {"published": True, "receivers": receivers}
