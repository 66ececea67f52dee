"""Classification rules and channel views for notifications.

Everything here is pure: the same input always produces the same view apart
from the generated ``id``, so a redelivered event renders identically.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

from notifications.errors import FormatterError
from shared.schemas.notifications import FormattedNotification

# Strictly-greater thresholds: 8 is high, 7 and 5 are medium, 4 is low.
HIGH_PRIORITY_ABOVE = 7
MEDIUM_PRIORITY_ABOVE = 4

# Fields compared between the original and updated snapshot of a resource
TRACKED_FIELDS = ("title", "status", "deadline", "priority", "description")


class Priority(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def tag(self) -> str:
        return f"[{self.value.upper()}]"


PRIORITY_FLAGS: dict[Priority, str] = {
    Priority.HIGH: "isHighPriority",
    Priority.MEDIUM: "isMediumPriority",
    Priority.LOW: "isLowPriority",
}


class ResourceKind(str, enum.Enum):
    TASK = "task"
    SUBTASK = "subtask"
    PROJECT = "project"
    PROJECT_TASK = "project-task"
    PROJECT_SUBTASK = "project-subtask"


RESOURCE_FLAGS: dict[ResourceKind, str] = {
    ResourceKind.TASK: "isTask",
    ResourceKind.SUBTASK: "isSubtask",
    ResourceKind.PROJECT: "isProject",
    ResourceKind.PROJECT_TASK: "isProjectTask",
    ResourceKind.PROJECT_SUBTASK: "isProjectSubtask",
}

RESOURCE_LABELS: dict[ResourceKind, str] = {
    ResourceKind.TASK: "Task",
    ResourceKind.SUBTASK: "Subtask",
    ResourceKind.PROJECT: "Project",
    ResourceKind.PROJECT_TASK: "Project Task",
    ResourceKind.PROJECT_SUBTASK: "Project Subtask",
}

UNKNOWN_RESOURCE_LABEL = "Resource"
UNTITLED = "Untitled"


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def classify_priority(priority: Any) -> Priority:
    """Map a numeric priority (1-10) onto a band. Non-numbers are low."""
    try:
        value = float(priority)
    except (TypeError, ValueError):
        return Priority.LOW
    if value > HIGH_PRIORITY_ABOVE:
        return Priority.HIGH
    if value > MEDIUM_PRIORITY_ABOVE:
        return Priority.MEDIUM
    return Priority.LOW


def priority_flags(priority: Any) -> dict[str, bool]:
    band = classify_priority(priority)
    return {flag: band is p for p, flag in PRIORITY_FLAGS.items()}


def classify_resource(resource_type: str | None, content: dict[str, Any] | None) -> ResourceKind | None:
    """Decide the resource kind from its type and ``project_id``.

    An absent ``project_id`` and an empty one mean different things for
    tasks: absent is a standalone task, empty is a subtask.
    """
    content = content or {}
    project_id = content.get("project_id")

    if resource_type == "task":
        if project_id is None:
            return ResourceKind.TASK
        if project_id == "":
            return ResourceKind.SUBTASK
        return ResourceKind.PROJECT_SUBTASK
    if resource_type == "project":
        if project_id:
            return ResourceKind.PROJECT_TASK
        return ResourceKind.PROJECT
    return None


def resource_flags(kind: ResourceKind | None) -> dict[str, bool]:
    return {flag: kind is k for k, flag in RESOURCE_FLAGS.items()}


def task_link(title: str | None, project_id: str | None) -> str:
    if project_id:
        return f"/app/project/{project_id}"
    return f"/app?taskName={quote(title or '')}"


def resource_link(kind: ResourceKind | None, resource_id: str | None, content: dict[str, Any]) -> str:
    """Where the UI should open when the notification is clicked."""
    if kind is ResourceKind.PROJECT:
        return f"/app/project/{resource_id}"
    if kind in (ResourceKind.PROJECT_TASK, ResourceKind.PROJECT_SUBTASK):
        return f"/app/project/{content.get('project_id')}"
    return task_link(content.get("title"), None)


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------


def format_date(value: Any) -> str | None:
    """Render an ISO timestamp for humans; unparsable values pass through."""
    if value is None or value == "":
        return None
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return str(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%d %b %Y, %H:%M UTC")


def format_ws_reminder(payload: dict[str, Any] | None) -> FormattedNotification | None:
    """Deadline reminder view. Returns None when there is no task snapshot."""
    if not payload or not isinstance(payload.get("task"), dict):
        return None

    task = payload["task"]
    title = task.get("title") or UNTITLED
    band = classify_priority(task.get("priority"))
    day = payload.get("day")

    parts = [f"{band.tag} Due in {day} day(s)" if day is not None else f"{band.tag} Deadline approaching"]
    parts.append(f"Status: {task.get('status') or 'N/A'}")
    deadline = format_date(task.get("deadline"))
    if deadline:
        parts.append(f"Deadline: {deadline}")
    if task.get("description"):
        parts.append(f'Description: "{task["description"]}"')

    return FormattedNotification(
        title=f"Upcoming Deadline: {title}",
        description=" | ".join(parts),
        link=task_link(title, task.get("project_id")),
    )


def format_ws_added(view: dict[str, Any]) -> FormattedNotification:
    """Added-to-resource view built from the handler's enriched dict.

    ``view`` carries the classification flags (``isTask``...,
    ``isHighPriority``...), ``resource_content``, ``added_by_name`` and ``link``.
    """
    kind = next((k for k, flag in RESOURCE_FLAGS.items() if view.get(flag)), None)
    band = next((p for p, flag in PRIORITY_FLAGS.items() if view.get(flag)), None)
    label = RESOURCE_LABELS.get(kind, UNKNOWN_RESOURCE_LABEL)
    content = view.get("resource_content") or {}

    prefix = f"{band.tag} " if band else ""
    description = f"{view.get('added_by_name') or 'Someone'} has added you to this {label.lower()}"
    if content.get("status"):
        description += f" ({content['status']})"
    deadline = format_date(content.get("deadline"))
    if deadline:
        description += f". Deadline: {deadline}"

    return FormattedNotification(
        title=f"{prefix}Added to {label}: {content.get('title') or UNTITLED}",
        description=description,
        link=view.get("link") or "/app",
    )


def _snapshots(item: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    content = item.get("resource_content")
    updated = content.get("updated") if isinstance(content, dict) else None
    if not isinstance(updated, dict):
        raise FormatterError(
            f"update for {item.get('resource_type')}:{item.get('resource_id')} has no updated snapshot"
        )
    original = content.get("original")
    return updated, original if isinstance(original, dict) else {}


def _changes(updated: dict[str, Any], original: dict[str, Any]) -> list[str]:
    changes = []
    for field in TRACKED_FIELDS:
        if field not in original or original.get(field) == updated.get(field):
            continue
        old, new = original.get(field), updated.get(field)
        if field == "deadline":
            old, new = format_date(old), format_date(new)
        changes.append(f"{field.capitalize()}: {old or 'none'} -> {new or 'none'}")
    return changes


def _format_project_update(item: dict[str, Any]) -> FormattedNotification:
    updated, original = _snapshots(item)
    title = updated.get("title") or UNTITLED
    by = item.get("updated_by_name") or item.get("updated_by") or "Unknown"

    parts = _changes(updated, original)
    deadline = format_date(updated.get("deadline"))
    if deadline:
        parts.append(f"Deadline: {deadline}")

    return FormattedNotification(
        title=f"Project {title} {item.get('update_type') or 'updated'} by: {by}",
        description=" | ".join(parts) or "Project details changed",
        link=f"/app/project/{updated.get('id') or item.get('resource_id')}",
    )


def _format_task_update(item: dict[str, Any]) -> FormattedNotification:
    updated, original = _snapshots(item)
    title = updated.get("title") or UNTITLED
    label = "Subtask" if updated.get("parent") else "Task"
    by = item.get("updated_by_name") or item.get("updated_by") or "Unknown"

    parts = [f"({updated.get('status') or 'N/A'})", *_changes(updated, original)]
    deadline = format_date(updated.get("deadline"))
    if deadline:
        parts.append(f"Deadline: {deadline}")

    return FormattedNotification(
        title=f"{label} {title} {item.get('update_type') or 'updated'} by: {by}",
        description=" | ".join(parts),
        link=task_link(title, updated.get("project_id")),
    )


def format_ws_update(view: dict[str, Any]) -> list[FormattedNotification]:
    """One view per update in ``view["batched_resources"]``, projects first.

    Raises FormatterError when the batch is malformed; the caller abandons
    the whole batch.
    """
    batched = view.get("batched_resources")
    if not isinstance(batched, dict):
        raise FormatterError("batched_resources missing")

    results = [_format_project_update(item) for item in batched.get("project") or []]
    results.extend(_format_task_update(item) for item in batched.get("task") or [])
    return results
