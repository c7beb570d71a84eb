"""Tests for event models and the event broadcaster."""

import asyncio

import pytest

from testgen_rl.core.broadcaster import EventBroadcaster
from testgen_rl.data.models.events import Event, EventPriority, EventTypes


class TestEvent:
    """Test cases for the Event class."""

    def test_event_creation(self):
        """Test event creation with default values."""
        event = Event(event_type=EventTypes.STAGE_STARTED, workflow_id="wf-1", data={"stage": "reviewing"})

        assert event.type == "stage.started"
        assert event.workflow_id == "wf-1"
        assert event.source == "orchestrator"
        assert event.priority == EventPriority.MEDIUM
        assert event.channel == "workflow:wf-1"
        assert event.id is not None

    def test_event_round_trip(self):
        """Test event serialization."""
        event = Event(
            event_type=EventTypes.REWARD_COMPUTED,
            workflow_id="wf-2",
            data={"combined": 0.8},
            priority=EventPriority.HIGH,
            tags={"env": "test"},
        )

        restored = Event.from_dict(event.to_dict())

        assert restored.id == event.id
        assert restored.type == event.type
        assert restored.data == {"combined": 0.8}
        assert restored.priority == EventPriority.HIGH
        assert restored.tags == {"env": "test"}
        assert restored.created_at == event.created_at

    def test_event_string_representation(self):
        event = Event(event_type=EventTypes.WORKFLOW_FAILED, workflow_id="wf-3", data={})
        assert "workflow.failed" in str(event)
        assert "wf-3" in repr(event)


class TestEventBroadcaster:
    """Test cases for EventBroadcaster."""

    def test_channel_subscribers_only_see_their_workflow(self):
        broadcaster = EventBroadcaster()
        seen_a, seen_b = [], []
        broadcaster.subscribe("a", seen_a.append)
        broadcaster.subscribe("b", seen_b.append)

        broadcaster.publish("a", EventTypes.STAGE_STARTED, {"stage": "planning"})

        assert [e.type for e in seen_a] == ["stage.started"]
        assert seen_b == []

    def test_global_subscribers_see_everything(self):
        broadcaster = EventBroadcaster()
        seen = []
        broadcaster.subscribe_all(seen.append)

        broadcaster.publish("a", EventTypes.STAGE_STARTED)
        broadcaster.publish("b", EventTypes.STAGE_UPDATED)

        assert [e.workflow_id for e in seen] == ["a", "b"]
        assert broadcaster.published_count == 2

    def test_failing_handler_is_isolated(self):
        """A handler error is logged and the other handlers still run."""
        broadcaster = EventBroadcaster()
        seen = []

        def broken(event):
            raise RuntimeError("dashboard offline")

        broadcaster.subscribe("a", broken)
        broadcaster.subscribe("a", seen.append)

        event = broadcaster.publish("a", EventTypes.WORKFLOW_COMPLETED, {"reward": 0.9})

        assert seen == [event]
        assert broadcaster.failed_deliveries == 1

    def test_unsubscribe(self):
        broadcaster = EventBroadcaster()
        seen = []
        broadcaster.subscribe("a", seen.append)
        broadcaster.subscribe_all(seen.append)
        assert broadcaster.subscriber_count() == 2

        broadcaster.unsubscribe(seen.append)
        broadcaster.publish("a", EventTypes.STAGE_STARTED)

        assert seen == []
        assert broadcaster.subscriber_count("a") == 0

    def test_async_handler_without_loop_is_dropped(self):
        """Coroutine handlers need a running loop; without one delivery fails quietly."""
        broadcaster = EventBroadcaster()

        async def handler(event):
            pass

        broadcaster.subscribe("a", handler)
        broadcaster.publish("a", EventTypes.STAGE_STARTED)

        assert broadcaster.failed_deliveries == 1

    @pytest.mark.asyncio
    async def test_async_handlers(self):
        """Coroutine handlers are scheduled and can be drained."""
        broadcaster = EventBroadcaster()
        seen = []

        async def handler(event):
            await asyncio.sleep(0)
            seen.append(event.type)

        async def broken(event):
            raise ValueError("boom")

        broadcaster.subscribe("a", handler)
        broadcaster.subscribe("a", broken)
        broadcaster.publish("a", EventTypes.STAGE_UPDATED)
        await broadcaster.drain()

        assert seen == ["stage.updated"]
        assert broadcaster.failed_deliveries == 1
