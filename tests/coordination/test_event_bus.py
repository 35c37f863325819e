"""
Tests for status events and the event bus.
"""

import pytest

from webpilot.coordination.event_bus import ALL_EVENTS, EventBus
from webpilot.coordination.events import (
    FinalResponseEvent,
    LoopStateEvent,
    ToolCallEvent,
    event_from_dict,
)


class TestEvents:

    def test_round_trip(self):
        event = ToolCallEvent(session_id="s1", tool_name="click", status="failed", turn=3, error="no effect")

        rebuilt = event_from_dict(event.to_dict())

        assert rebuilt == event
        assert event.to_dict()["event"] == "ToolCallEvent"

    def test_unknown_fields_ignored(self):
        data = LoopStateEvent(session_id="s1", state="done").to_dict()
        data["extra"] = "ignored"
        assert event_from_dict(data).state == "done"

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            event_from_dict({"event": "Nope", "session_id": "s1"})

    def test_event_type(self):
        assert LoopStateEvent(session_id="s1", state="done").event_type == "loopstate"


class TestEventBus:

    @pytest.mark.asyncio
    async def test_typed_and_wildcard_listeners(self):
        bus = EventBus()
        typed, everything = [], []

        async def on_state(event):
            typed.append(event)

        async def on_any(event):
            everything.append(event)

        bus.subscribe("LoopStateEvent", on_state)
        bus.subscribe(ALL_EVENTS, on_any)

        await bus.emit(LoopStateEvent(session_id="s1", state="awaiting_model"))
        await bus.emit(FinalResponseEvent(
            session_id="s1", final_response="ok", state="done", reason="completed",
            total_duration=1.0, total_turns=1, success=True,
        ))

        assert len(typed) == 1
        assert len(everything) == 2
        assert bus.get_event_count("LoopStateEvent") == 1

    @pytest.mark.asyncio
    async def test_failing_listener_removed(self):
        bus = EventBus()
        calls = []

        async def broken(event):
            calls.append(event)
            raise RuntimeError("listener bug")

        bus.subscribe(ALL_EVENTS, broken)
        for _ in range(7):
            await bus.emit(LoopStateEvent(session_id="s1", state="done"))

        assert len(calls) == 5
        assert bus.listeners[ALL_EVENTS] == []

    @pytest.mark.asyncio
    async def test_history_is_bounded(self):
        bus = EventBus(max_history=3)
        for turn in range(5):
            await bus.emit(LoopStateEvent(session_id="s1", state="awaiting_model", turn=turn))
        assert [e.turn for e in bus.events] == [2, 3, 4]

    def test_subscribe_once(self):
        bus = EventBus()

        async def listener(event):
            pass

        bus.subscribe("X", listener)
        bus.subscribe("X", listener)
        assert len(bus.listeners["X"]) == 1

        bus.unsubscribe("X", listener)
        assert bus.listeners["X"] == []
