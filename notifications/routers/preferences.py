"""Delivery-method and frequency preferences."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from notifications.deps import get_preferences_store, get_publisher
from notifications.publisher import NotificationPublisher, compute_next_notify_at
from notifications.store import PreferencesStore
from shared.schemas.notifications import FrequencyPreferences, UserPreferences

logger = structlog.get_logger()

router = APIRouter(prefix="/preferences", tags=["preferences"])

DELIVERY_METHODS = {"in-app", "email"}


class DeliveryMethodUpdate(BaseModel):
    delivery_method: list[str] = Field(default_factory=list)
    email: str | None = None


@router.get("/delivery-method/{user_id}")
async def get_delivery_method(
    user_id: str,
    store: PreferencesStore = Depends(get_preferences_store),
) -> UserPreferences:
    return await store.get_preferences(user_id)


@router.put("/delivery-method/{user_id}")
async def update_delivery_method(
    user_id: str,
    body: DeliveryMethodUpdate,
    store: PreferencesStore = Depends(get_preferences_store),
) -> UserPreferences:
    unknown = set(body.delivery_method) - DELIVERY_METHODS
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown delivery method(s): {sorted(unknown)}")
    return await store.update_delivery(user_id, body.delivery_method, email=body.email)


@router.get("/frequency/{user_id}")
async def get_frequency(
    user_id: str,
    store: PreferencesStore = Depends(get_preferences_store),
) -> FrequencyPreferences:
    return await store.get_frequency(user_id)


@router.patch("/frequency/{user_id}")
async def update_frequency(
    user_id: str,
    body: FrequencyPreferences,
    store: PreferencesStore = Depends(get_preferences_store),
    publisher: NotificationPublisher = Depends(get_publisher),
) -> dict:
    """Save the frequency and move already-queued updates to the new slot."""
    try:
        compute_next_notify_at(body)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    saved = await store.update_frequency(user_id, body)
    rescheduled = await publisher.reschedule_user_updates(user_id, saved)
    return {"preferences": saved.model_dump(), "rescheduled": rescheduled}
