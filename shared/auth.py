"""Inter-service authentication.

Producers (task and project services) share a single ``SERVICE_AUTH_TOKEN``
with this service. Requests to the publish endpoints must include
``Authorization: Bearer <token>``.

Usage::

    from shared.auth import require_service_auth

    @router.post("/deadline-reminder")
    async def deadline_reminder(body: ..., _=Depends(require_service_auth)):
        ...
"""

from __future__ import annotations

import structlog
from fastapi import HTTPException, Request

from shared.config import get_settings

logger = structlog.get_logger()


def get_service_auth_headers() -> dict[str, str]:
    """Return HTTP headers for inter-service calls.

    Returns an empty dict when no token is configured (dev mode).
    """
    settings = get_settings()
    token = settings.service_auth_token
    if not token:
        return {}
    return {"Authorization": f"Bearer {token}"}


async def require_service_auth(request: Request) -> None:
    """FastAPI dependency that validates the inter-service auth token.

    Raises 401 if the token is missing or incorrect.
    Skips validation when ``service_auth_token`` is empty (dev mode).
    """
    settings = get_settings()
    expected = settings.service_auth_token
    if not expected:
        logger.warning(
            "service_auth_disabled",
            path=request.url.path,
            hint="Set SERVICE_AUTH_TOKEN in .env for production",
        )
        return

    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing service auth token")

    token = auth_header[7:]  # strip "Bearer "
    if token != expected:
        logger.warning(
            "service_auth_failed",
            path=request.url.path,
            remote=request.client.host if request.client else "unknown",
        )
        raise HTTPException(status_code=401, detail="Invalid service auth token")
