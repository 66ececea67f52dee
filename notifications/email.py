"""Templated email delivery through the EmailJS HTTP API."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from notifications.errors import DeliveryChannelError
from shared.config import Settings, get_settings

logger = structlog.get_logger()

DEADLINE_OR_ADDED = "deadline_or_added"
UPDATES = "updates"


class EmailSender:
    """Posts ``{service_id, template_id, user_id, template_params}`` to EmailJS.

    ``kind`` picks the template: reminders and added-to-resource share one,
    batched updates use the other.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or get_settings()
        self.timeout = timeout
        self._transport = transport

    def template_for(self, kind: str) -> str:
        if kind == DEADLINE_OR_ADDED:
            return self.settings.emailjs_resource_template
        if kind == UPDATES:
            return self.settings.emailjs_update_template
        raise ValueError(f"Unknown email kind: {kind}")

    @property
    def configured(self) -> bool:
        return bool(self.settings.emailjs_service_id and self.settings.emailjs_public_key)

    async def send_templated_email(self, kind: str, payload: dict[str, Any]) -> bool:
        """Send one email. Returns False when EmailJS is not configured.

        Raises DeliveryChannelError if the request fails.
        """
        template_id = self.template_for(kind)
        if not self.configured or not template_id:
            logger.info("email_skipped_unconfigured", kind=kind)
            return False

        body = {
            "service_id": self.settings.emailjs_service_id,
            "template_id": template_id,
            "user_id": self.settings.emailjs_public_key,
            "template_params": {"payload": payload},
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.settings.emailjs_url, json=body)
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise DeliveryChannelError("email", str(e)) from e

        logger.info("email_sent", kind=kind, to=payload.get("email"))
        return True
