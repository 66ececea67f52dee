"""Tests for the delay-queue poller, including end-to-end delivery."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from notifications.delay_queue import DelayQueueStore
from notifications.errors import DeliveryChannelError
from notifications.poller import Poller, poller_loop

QUEUES = ["deadline_reminders", "update", "added"]


@pytest.fixture
def queue_store(fake_redis):
    return DelayQueueStore(fake_redis)


@pytest.fixture
def mock_handler():
    handler = MagicMock()
    handler.dispatch = AsyncMock()
    handler.handle_update = AsyncMock()
    return handler


@pytest.fixture
def poller(queue_store, mock_handler):
    return Poller(queue_store, mock_handler, QUEUES, update_queue="update", dispatch_timeout=1.0)


async def _enqueue(store, queue, payload, score=1):
    return await store.enqueue(queue, score, payload)


# ---------------------------------------------------------------------------
# Poison payloads
# ---------------------------------------------------------------------------


class TestPoisonPayloads:
    @pytest.mark.asyncio
    async def test_invalid_json_removed_without_dispatch(self, poller, queue_store, mock_handler):
        await _enqueue(queue_store, "added", "{not json")

        await poller.poll_queue("added")

        mock_handler.dispatch.assert_not_awaited()
        assert await queue_store.entries("added") == []

    @pytest.mark.asyncio
    async def test_missing_type_removed_without_dispatch(self, poller, queue_store, mock_handler):
        await _enqueue(queue_store, "deadline_reminders", {"user_id": "u1"})

        await poller.poll_queue("deadline_reminders")

        mock_handler.dispatch.assert_not_awaited()
        assert await queue_store.entries("deadline_reminders") == []

    @pytest.mark.asyncio
    async def test_non_object_json_removed(self, poller, queue_store, mock_handler):
        await _enqueue(queue_store, "added", "[1, 2]")
        await poller.poll_queue("added")
        mock_handler.dispatch.assert_not_awaited()
        assert await queue_store.entries("added") == []


# ---------------------------------------------------------------------------
# Per-entry dispatch
# ---------------------------------------------------------------------------


class TestDispatch:
    @pytest.mark.asyncio
    async def test_due_entry_dispatched_then_removed(self, poller, queue_store, mock_handler):
        payload = {"type": "deadline_reminder", "user_id": "u1", "day": 1}
        await _enqueue(queue_store, "deadline_reminders", payload)

        assert await poller.poll_queue("deadline_reminders") == 1

        mock_handler.dispatch.assert_awaited_once_with(payload)
        assert await queue_store.entries("deadline_reminders") == []

    @pytest.mark.asyncio
    async def test_future_entries_untouched(self, poller, queue_store, mock_handler):
        await _enqueue(queue_store, "added", {"type": "added"}, score=9_999_999_999_999)

        assert await poller.poll_queue("added") == 0

        mock_handler.dispatch.assert_not_awaited()
        assert len(await queue_store.entries("added")) == 1

    @pytest.mark.asyncio
    async def test_handler_failure_still_removes_and_continues(self, poller, queue_store, mock_handler):
        mock_handler.dispatch.side_effect = [RuntimeError("boom"), None]
        await _enqueue(queue_store, "added", {"type": "added", "n": 1}, score=1)
        await _enqueue(queue_store, "added", {"type": "added", "n": 2}, score=2)

        await poller.poll_queue("added")

        assert mock_handler.dispatch.await_count == 2
        assert await queue_store.entries("added") == []

    @pytest.mark.asyncio
    async def test_dispatch_timeout_removes_entry(self, queue_store, mock_handler):
        async def stalled(payload):
            await asyncio.sleep(5)

        mock_handler.dispatch = AsyncMock(side_effect=stalled)
        poller = Poller(queue_store, mock_handler, QUEUES, dispatch_timeout=0.01)
        await _enqueue(queue_store, "added", {"type": "added"})

        await poller.poll_queue("added")

        assert await queue_store.entries("added") == []


# ---------------------------------------------------------------------------
# Update batching
# ---------------------------------------------------------------------------


class TestUpdateBatching:
    @pytest.mark.asyncio
    async def test_groups_by_recipient(self, poller, queue_store, mock_handler):
        first = {"type": "update", "user_id": "u1", "resource_id": "t1"}
        second = {"type": "update", "user_id": "u2", "resource_id": "t2"}
        third = {"type": "update", "user_id": "u1", "resource_id": "t3"}
        for score, payload in enumerate([first, second, third], start=1):
            await _enqueue(queue_store, "update", payload, score=score)

        await poller.poll_queue("update")

        assert mock_handler.handle_update.await_count == 2
        calls = {c.args[0]: c.args[1] for c in mock_handler.handle_update.await_args_list}
        assert calls["u1"] == [first, third]
        assert calls["u2"] == [second]
        mock_handler.dispatch.assert_not_awaited()
        assert await queue_store.entries("update") == []

    @pytest.mark.asyncio
    async def test_missing_user_removed_without_dispatch(self, poller, queue_store, mock_handler):
        await _enqueue(queue_store, "update", {"type": "update", "resource_id": "t1"})

        await poller.poll_queue("update")

        mock_handler.handle_update.assert_not_awaited()
        assert await queue_store.entries("update") == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("tag", ["mystery", "deadline_reminder"])
    async def test_non_update_type_removed_without_dispatch(self, poller, queue_store, mock_handler, tag):
        await _enqueue(
            queue_store,
            "update",
            {
                "type": tag,
                "user_id": "u1",
                "resource_type": "task",
                "resource_id": "t1",
                "resource_content": {"updated": {"title": "X"}},
            },
        )

        await poller.poll_queue("update")

        mock_handler.handle_update.assert_not_awaited()
        mock_handler.dispatch.assert_not_awaited()
        assert await queue_store.entries("update") == []

    @pytest.mark.asyncio
    async def test_group_failure_still_removes_group(self, poller, queue_store, mock_handler):
        mock_handler.handle_update.side_effect = RuntimeError("boom")
        await _enqueue(queue_store, "update", {"type": "update", "user_id": "u1", "n": 1}, score=1)
        await _enqueue(queue_store, "update", {"type": "update", "user_id": "u1", "n": 2}, score=2)

        await poller.poll_queue("update")

        assert await queue_store.entries("update") == []


# ---------------------------------------------------------------------------
# Cycles and the loop
# ---------------------------------------------------------------------------


class TestCycle:
    @pytest.mark.asyncio
    async def test_one_failing_queue_does_not_block_others(self, queue_store, mock_handler):
        original = queue_store.drain_due

        async def drain(queue, now_score=None):
            if queue == "broken":
                raise ConnectionError("redis down")
            return await original(queue, now_score)

        queue_store.drain_due = drain
        poller = Poller(queue_store, mock_handler, ["broken", "added"])
        await _enqueue(queue_store, "added", {"type": "added"})

        await poller.run_cycle()

        mock_handler.dispatch.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_loop_ticks_independently_of_cycle_duration(self):
        started = []

        async def slow_cycle():
            started.append(1)
            await asyncio.sleep(10)

        poller = MagicMock()
        poller.queue_names = QUEUES
        poller.run_cycle = slow_cycle

        task = asyncio.create_task(poller_loop(poller, 0.01))
        await asyncio.sleep(0.1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(started) >= 2


# ---------------------------------------------------------------------------
# End to end: queue -> poller -> handler -> channels
# ---------------------------------------------------------------------------


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_deadline_reminder_delivered_even_if_email_fails(self, queue_store, handler):
        handler.email.send_templated_email.side_effect = DeliveryChannelError("email", "down")
        poller = Poller(queue_store, handler, QUEUES)
        await queue_store.enqueue("deadline_reminders", 1, {
            "type": "deadline_reminder",
            "user_id": "u1",
            "resource_id": "t1",
            "day": 2,
            "key": "t1:u1:2",
            "task": {"title": "Ship", "priority": 8},
        })

        await poller.run_cycle()

        handler.registry.broadcast.assert_awaited_once()
        user_id, notification = handler.registry.broadcast.await_args.args
        assert user_id == "u1"
        assert notification.title == "Upcoming Deadline: Ship"
        assert "[HIGH]" in notification.description

        handler.store.persist_notification.assert_awaited_once()
        assert handler.store.persist_notification.await_args.kwargs["dedup_key"] == "t1:u1:2"
        handler.email.send_templated_email.assert_awaited_once()
        assert await queue_store.entries("deadline_reminders") == []

    @pytest.mark.asyncio
    async def test_update_batch_yields_one_notification_per_payload(self, queue_store, handler):
        poller = Poller(queue_store, handler, QUEUES)
        for i in range(3):
            await queue_store.enqueue("update", i + 1, {
                "type": "update",
                "user_id": "u1",
                "resource_type": "task",
                "resource_id": f"t{i}",
                "resource_content": {"updated": {"title": f"Task {i}"}},
            })

        await poller.run_cycle()

        assert handler.registry.broadcast.await_count == 3
        assert handler.store.persist_notification.await_count == 3
        assert await queue_store.entries("update") == []

    @pytest.mark.asyncio
    async def test_unknown_type_removed_without_delivery(self, queue_store, handler):
        poller = Poller(queue_store, handler, QUEUES)
        await queue_store.enqueue("added", 1, json.dumps({"type": "mystery", "user_id": "u1"}))

        await poller.run_cycle()

        handler.registry.broadcast.assert_not_awaited()
        assert await queue_store.entries("added") == []

    @pytest.mark.asyncio
    async def test_unknown_type_in_update_queue_not_delivered(self, queue_store, handler):
        poller = Poller(queue_store, handler, QUEUES)
        await queue_store.enqueue(
            "update",
            1,
            {
                "type": "mystery",
                "user_id": "u1",
                "resource_type": "task",
                "resource_id": "t1",
                "resource_content": {"updated": {"title": "X"}},
            },
        )

        await poller.run_cycle()

        handler.registry.broadcast.assert_not_awaited()
        handler.store.persist_notification.assert_not_awaited()
        assert await queue_store.entries("update") == []
