"""Shared test fixtures for the notification service test suite.

Provides mock database sessions, an in-memory sorted-set Redis stand-in,
fake push connections and a handler wired to mock collaborators, so tests
run without Postgres, Redis or the profile/task services.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest

from notifications.handler import NotificationHandler
from shared.schemas.notifications import UserPreferences


# ---------------------------------------------------------------------------
# Database mocks
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_db_session():
    """Mock async SQLAlchemy session.

    Supports the patterns used by the stores:
        session.execute(stmt) -> result
        session.get(Model, pk)
        session.add(obj)
        session.commit()
    """
    session = AsyncMock()
    default_result = MagicMock()
    default_result.rowcount = 1
    default_result.scalars.return_value.all.return_value = []
    session.execute = AsyncMock(return_value=default_result)
    session.get = AsyncMock(return_value=None)
    session.add = MagicMock()
    return session


@pytest.fixture
def mock_session_factory(mock_db_session):
    """Mock session factory compatible with ``async with factory() as session:``."""

    @asynccontextmanager
    async def _session_ctx():
        yield mock_db_session

    factory = MagicMock(side_effect=lambda: _session_ctx())
    return factory


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------


class FakeRedis:
    """In-memory subset of the sorted-set and pub/sub commands."""

    def __init__(self):
        self.zsets: dict[str, dict[str, float]] = {}
        self.published: list[tuple[str, str]] = []

    async def zadd(self, name, mapping):
        zset = self.zsets.setdefault(name, {})
        added = sum(1 for member in mapping if member not in zset)
        zset.update(mapping)
        return added

    async def zrangebyscore(self, name, min, max):
        lo, hi = float(min), float(max)
        items = sorted(self.zsets.get(name, {}).items(), key=lambda kv: (kv[1], kv[0]))
        return [member for member, score in items if lo <= score <= hi]

    async def zrem(self, name, *members):
        zset = self.zsets.get(name, {})
        removed = 0
        for member in members:
            if member in zset:
                del zset[member]
                removed += 1
        return removed

    async def publish(self, channel, data):
        self.published.append((channel, data))
        return 1

    async def ping(self):
        return True


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def mock_redis():
    """Mock async Redis client with common operations."""
    redis = AsyncMock()
    redis.publish = AsyncMock(return_value=1)
    redis.ping = AsyncMock(return_value=True)
    return redis


# ---------------------------------------------------------------------------
# Push connections
# ---------------------------------------------------------------------------


class FakeConnection:
    """Records what the registry sends; optionally fails on send."""

    def __init__(self, is_open: bool = True, fail_send: bool = False):
        self.is_open = is_open
        self.fail_send = fail_send
        self.sent: list[str] = []
        self.closed_with: int | None = None

    async def send_text(self, data: str) -> None:
        if self.fail_send:
            raise RuntimeError("socket gone")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.closed_with = code
        self.is_open = False


@pytest.fixture
def make_connection():
    return FakeConnection


# ---------------------------------------------------------------------------
# Handler with mock collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def handler():
    """NotificationHandler whose channels and lookups are all AsyncMocks."""
    registry = MagicMock()
    registry.broadcast = AsyncMock(return_value=1)

    profiles = MagicMock()
    profiles.get_display_name = AsyncMock(return_value="Alice")

    resources = MagicMock()
    resources.get_task_detail = AsyncMock(return_value={})

    preferences = MagicMock()
    preferences.get_preferences = AsyncMock(
        return_value=UserPreferences(email="user@example.com", delivery_method=["in-app", "email"])
    )

    store = MagicMock()
    store.persist_notification = AsyncMock(return_value=True)

    email = MagicMock()
    email.send_templated_email = AsyncMock(return_value=True)

    return NotificationHandler(
        registry=registry,
        profiles=profiles,
        resources=resources,
        preferences=preferences,
        store=store,
        email=email,
    )
