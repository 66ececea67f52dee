"""Inbox endpoints over persisted notifications."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from notifications.deps import get_notification_store
from notifications.store import NotificationStore

router = APIRouter(prefix="/notifications", tags=["notifications"])


class MarkReadRequest(BaseModel):
    notification_ids: list[str] = Field(default_factory=list)


@router.get("/{user_id}")
async def list_notifications(
    user_id: str,
    store: NotificationStore = Depends(get_notification_store),
) -> list[dict]:
    """All notifications for a user, newest first."""
    return await store.list_for_user(user_id)


@router.patch("/read")
async def mark_read(
    body: MarkReadRequest,
    store: NotificationStore = Depends(get_notification_store),
) -> dict:
    if not body.notification_ids:
        raise HTTPException(status_code=400, detail="No notification IDs provided")
    updated = await store.mark_read(body.notification_ids)
    return {"updated": updated}


@router.patch("/toggle/{notification_id}")
async def toggle_read(
    notification_id: str,
    store: NotificationStore = Depends(get_notification_store),
) -> dict:
    notification = await store.toggle_read(notification_id)
    if notification is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    return notification


@router.delete("/all/{user_id}")
async def delete_all(
    user_id: str,
    store: NotificationStore = Depends(get_notification_store),
) -> dict:
    deleted = await store.delete_all(user_id)
    return {"deleted": deleted}


@router.delete("/{user_id}/{notification_id}")
async def delete_one(
    user_id: str,
    notification_id: str,
    store: NotificationStore = Depends(get_notification_store),
) -> dict:
    if not await store.delete_one(user_id, notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"deleted": notification_id}
