"""Tests for the EventBus."""

from turnloop.events.bus import EventBus
from turnloop.types import AgentEvent, EventType


class TestEventBus:
    async def test_specific_and_wildcard(self):
        bus = EventBus()
        specific, wildcard = [], []
        bus.subscribe(EventType.TURN_DONE, specific.append)
        bus.subscribe("*", wildcard.append)

        await bus.publish(EventType.TURN_DONE, requests=1)
        await bus.publish(EventType.TURN_STARTED)

        assert [e.type for e in specific] == [EventType.TURN_DONE]
        assert [e.type for e in wildcard] == [EventType.TURN_DONE, EventType.TURN_STARTED]
        assert specific[0].data == {"requests": 1}

    async def test_async_handlers_run_in_order(self):
        bus = EventBus()
        order = []

        async def first(event):
            order.append("first")

        async def second(event):
            order.append("second")

        bus.subscribe(EventType.CONTENT_DELTA, first)
        bus.subscribe(EventType.CONTENT_DELTA, second)
        await bus.emit(AgentEvent(EventType.CONTENT_DELTA, {"text": "x"}))
        assert order == ["first", "second"]

    async def test_failing_handler_does_not_stop_others(self):
        bus = EventBus()
        seen = []

        def broken(event):
            raise RuntimeError("display crashed")

        bus.subscribe(EventType.TURN_ERROR, broken)
        bus.subscribe(EventType.TURN_ERROR, seen.append)
        await bus.publish(EventType.TURN_ERROR, error="x")
        assert len(seen) == 1

    async def test_unsubscribe(self):
        bus = EventBus()
        seen = []
        bus.subscribe(EventType.TURN_DONE, seen.append)
        bus.unsubscribe(EventType.TURN_DONE, seen.append)
        bus.unsubscribe(EventType.TURN_DONE, print)
        await bus.publish(EventType.TURN_DONE)
        assert seen == []

    async def test_history_is_bounded(self):
        bus = EventBus(max_history=3)
        for i in range(5):
            await bus.publish(EventType.CONTENT_DELTA, text=str(i))
        assert [e.data["text"] for e in bus.history] == ["2", "3", "4"]
        bus.clear()
        assert bus.history == []
