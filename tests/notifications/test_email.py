"""Tests for EmailJS delivery."""

from __future__ import annotations

import json

import httpx
import pytest

from notifications.email import DEADLINE_OR_ADDED, UPDATES, EmailSender
from notifications.errors import DeliveryChannelError
from shared.config import Settings


@pytest.fixture
def settings():
    return Settings(
        emailjs_url="https://email.test/send",
        emailjs_service_id="svc",
        emailjs_public_key="pk",
        emailjs_resource_template="tpl_resource",
        emailjs_update_template="tpl_update",
    )


def _recording_transport(seen, status_code=200):
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(status_code, text="OK")

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_posts_template_request(settings):
    seen = []
    sender = EmailSender(settings, transport=_recording_transport(seen))

    assert await sender.send_templated_email(UPDATES, {"email": "a@b.c", "title": "T"}) is True

    (request,) = seen
    assert str(request.url) == "https://email.test/send"
    assert json.loads(request.content) == {
        "service_id": "svc",
        "template_id": "tpl_update",
        "user_id": "pk",
        "template_params": {"payload": {"email": "a@b.c", "title": "T"}},
    }


@pytest.mark.asyncio
async def test_resource_template_for_reminders(settings):
    seen = []
    sender = EmailSender(settings, transport=_recording_transport(seen))
    await sender.send_templated_email(DEADLINE_OR_ADDED, {})
    assert json.loads(seen[0].content)["template_id"] == "tpl_resource"


@pytest.mark.asyncio
async def test_unconfigured_skips(settings):
    seen = []
    settings.emailjs_service_id = ""
    sender = EmailSender(settings, transport=_recording_transport(seen))

    assert await sender.send_templated_email(UPDATES, {}) is False
    assert seen == []


@pytest.mark.asyncio
async def test_http_failure_raises_channel_error(settings):
    sender = EmailSender(settings, transport=_recording_transport([], status_code=500))

    with pytest.raises(DeliveryChannelError) as exc:
        await sender.send_templated_email(UPDATES, {})
    assert exc.value.channel == "email"


@pytest.mark.asyncio
async def test_unknown_kind(settings):
    with pytest.raises(ValueError):
        await EmailSender(settings).send_templated_email("digest", {})
