"""Notification schemas shared by producers, the poller and the handler."""

from __future__ import annotations

import enum
import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EventType(str, enum.Enum):
    """Recognised ``type`` tags on a notification payload."""

    DEADLINE_REMINDER = "deadline_reminder"
    ADDED = "added"
    UPDATE = "update"


class NotificationEvent(BaseModel):
    """The unit flowing through the pipeline.

    Payloads are open documents written by several producers, so unknown
    fields are kept (``extra="allow"``) and the well-known ones are coerced
    leniently: a non-list ``collaborator_ids`` becomes ``None`` and ids are
    stringified.
    """

    model_config = ConfigDict(extra="allow")

    type: str | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    user_id: str | None = None
    collaborator_ids: list[str] | None = None
    resource_content: dict[str, Any] = Field(default_factory=dict)

    # Delay-queue variant only
    key: str | None = None
    notify_at: str | int | float | None = None

    @field_validator("resource_id", "user_id", mode="before")
    @classmethod
    def _stringify_id(cls, v: Any) -> str | None:
        if v is None or v == "":
            return None
        return str(v)

    @field_validator("collaborator_ids", mode="before")
    @classmethod
    def _only_lists(cls, v: Any) -> list[str] | None:
        if not isinstance(v, list):
            return None
        return [str(item) for item in v if item is not None]

    @field_validator("resource_content", mode="before")
    @classmethod
    def _content_dict(cls, v: Any) -> dict[str, Any]:
        return v if isinstance(v, dict) else {}

    @property
    def event_type(self) -> EventType | None:
        """The parsed tag, or None when missing or unrecognised."""
        try:
            return EventType(self.type)
        except ValueError:
            return None

    def extra(self, name: str, default: Any = None) -> Any:
        """Read a producer-specific field that is not declared on the model."""
        return (self.model_extra or {}).get(name, default)

    @classmethod
    def coerce(cls, payload: NotificationEvent | dict[str, Any]) -> NotificationEvent:
        if isinstance(payload, cls):
            return payload
        return cls.model_validate(payload)


class FormattedNotification(BaseModel):
    """Push / persisted view of an event, regenerated for every delivery."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str
    description: str
    link: str


class UserPreferences(BaseModel):
    """Delivery-channel preferences for one recipient."""

    email: str = ""
    delivery_method: list[str] = Field(default_factory=list)

    @property
    def wants_email(self) -> bool:
        return "email" in self.delivery_method


class FrequencyPreferences(BaseModel):
    """How often batched updates are delivered to a recipient."""

    delivery_frequency: str = "Immediate"  # Immediate | Daily | Weekly
    delivery_time: str | None = "1970-01-01T09:00:00+00:00"
    delivery_day: str | None = "Monday"
