"""HTTP clients for the profile and task services.

Both degrade instead of raising: a failed lookup means the notification goes
out with less detail, never that it is dropped.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from notifications.errors import CollaboratorUnavailableError
from shared.auth import get_service_auth_headers
from shared.config import Settings, get_settings

logger = structlog.get_logger()

UNKNOWN_USER = "Unknown"


class _ServiceClient:
    def __init__(
        self,
        base_url: str,
        timeout: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _get_json(self, path: str) -> Any:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(
                    f"{self.base_url}{path}",
                    headers=get_service_auth_headers(),
                )
                resp.raise_for_status()
                return resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise CollaboratorUnavailableError(f"GET {path} failed: {e}") from e


class ProfileClient(_ServiceClient):
    """Resolves user ids to display names."""

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> ProfileClient:
        settings = settings or get_settings()
        return cls(settings.profile_service_url, settings.collaborator_timeout_seconds)

    async def get_display_name(self, user_id: str | None) -> str:
        if not user_id:
            return UNKNOWN_USER
        try:
            body = await self._get_json(f"/user/{user_id}")
        except CollaboratorUnavailableError as e:
            logger.warning("profile_lookup_failed", user_id=user_id, error=str(e))
            return UNKNOWN_USER
        if not isinstance(body, dict):
            return UNKNOWN_USER
        return body.get("name") or body.get("username") or UNKNOWN_USER


class ResourceClient(_ServiceClient):
    """Fetches the current task snapshot for reminders."""

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> ResourceClient:
        settings = settings or get_settings()
        return cls(settings.task_service_url, settings.collaborator_timeout_seconds)

    async def get_task_detail(self, resource_id: str | None) -> dict[str, Any]:
        if not resource_id:
            return {}
        try:
            body = await self._get_json(f"/task/{resource_id}")
        except CollaboratorUnavailableError as e:
            logger.warning("task_lookup_failed", resource_id=resource_id, error=str(e))
            return {}
        return body if isinstance(body, dict) else {}
