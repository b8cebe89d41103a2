"""Tests for the status event bus."""

import asyncio

import pytest

from agentruntime.infra.event_bus import EventBus
from agentruntime.models.agent_event import AgentEvent, AgentEventType


def _event(title="x"):
    return AgentEvent("s1", AgentEventType.STATUS, title)


class TestEventBus:
    def test_delivers_to_all_subscribers(self):
        bus = EventBus()
        first, second = [], []
        bus.subscribe(first.append)
        bus.subscribe(second.append)
        bus.emit(_event("hello"))
        assert [e.title for e in first] == ["hello"]
        assert [e.title for e in second] == ["hello"]

    def test_unsubscribe(self):
        bus = EventBus()
        seen = []
        unsubscribe = bus.subscribe(seen.append)
        unsubscribe()
        unsubscribe()
        bus.emit(_event())
        assert seen == []
        assert bus.subscriber_count == 0

    def test_failing_subscriber_does_not_block_others(self):
        bus = EventBus()
        seen = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(broken)
        bus.subscribe(seen.append)
        bus.emit(_event())
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_async_subscriber_is_scheduled(self):
        bus = EventBus()
        seen = []

        async def collect(event):
            seen.append(event.title)

        bus.subscribe(collect)
        bus.emit(_event("later"))
        assert seen == []
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert seen == ["later"]
