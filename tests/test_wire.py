"""Tests for agentpty.session.wire (Wire, WireEvent, EventType)."""

from __future__ import annotations

import asyncio

from agentpty.session.wire import EventType, Wire, WireEvent


# ---------------------------------------------------------------------------
# EventType
# ---------------------------------------------------------------------------


class TestEventType:
    def test_all_variants_exist(self) -> None:
        expected = {
            "SESSION_BEGIN",
            "SESSION_END",
            "SESSION_EVICTED",
            "CAPACITY_WARNING",
            "ERROR",
            "STATUS",
        }
        actual = {e.name for e in EventType}
        assert actual == expected

    def test_values_are_lowercase(self) -> None:
        for e in EventType:
            assert e.value == e.name.lower()


# ---------------------------------------------------------------------------
# WireEvent
# ---------------------------------------------------------------------------


class TestWireEvent:
    def test_defaults(self) -> None:
        event = WireEvent(type=EventType.STATUS)
        assert event.data == {}

    def test_with_data(self) -> None:
        event = WireEvent(type=EventType.STATUS, data={"message": "hello"})
        assert event.data["message"] == "hello"


# ---------------------------------------------------------------------------
# Wire: send/subscribe
# ---------------------------------------------------------------------------


class TestWire:
    def test_send_to_subscriber(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send(WireEvent(type=EventType.STATUS, data={"message": "hi"}))
        event = q.get_nowait()
        assert event is not None
        assert event.type == EventType.STATUS
        assert event.data["message"] == "hi"

    def test_send_to_multiple_subscribers(self) -> None:
        wire = Wire()
        q1 = wire.subscribe()
        q2 = wire.subscribe()
        wire.send_session_begin(1, "sleep 5", "/tmp")
        e1 = q1.get_nowait()
        e2 = q2.get_nowait()
        assert e1 is not None and e2 is not None
        assert e1.type == e2.type == EventType.SESSION_BEGIN

    def test_send_without_subscribers(self) -> None:
        Wire().send_status("nobody listening")

    def test_unsubscribe(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.unsubscribe(q)
        wire.send_status("x")
        assert q.empty()

    def test_unsubscribe_nonexistent_is_safe(self) -> None:
        wire = Wire()
        q: asyncio.Queue[WireEvent | None] = asyncio.Queue()
        wire.unsubscribe(q)

    async def test_consumer_task(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        seen: list[EventType] = []

        async def consume() -> None:
            while (event := await q.get()) is not None:
                seen.append(event.type)

        task = asyncio.create_task(consume())
        wire.send_session_begin(1, "cat", "/tmp")
        wire.send_session_end(1, "cat", "killed", -9)
        wire.close()
        await asyncio.wait_for(task, timeout=1.0)
        assert seen == [EventType.SESSION_BEGIN, EventType.SESSION_END]


# ---------------------------------------------------------------------------
# Wire: closed-state guard
# ---------------------------------------------------------------------------


class TestWireClosedGuard:
    def test_send_after_close_is_dropped(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.close()
        assert q.get_nowait() is None
        wire.send_status("too late")
        assert q.empty()

    def test_close_sends_sentinel_to_all_subscribers(self) -> None:
        wire = Wire()
        queues = [wire.subscribe() for _ in range(3)]
        wire.close()
        assert all(q.get_nowait() is None for q in queues)

    def test_convenience_methods_respect_closed(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.close()
        q.get_nowait()  # sentinel
        wire.send_status("nope")
        wire.send_error("nope", "spawn_failed")
        wire.send_session_begin(1, "x", "/")
        wire.send_session_end(1, "x", "killed")
        wire.send_session_evicted(1, "x", "lru")
        wire.send_capacity_warning(15, 20)
        assert q.empty()


# ---------------------------------------------------------------------------
# Wire: session events
# ---------------------------------------------------------------------------


class TestSessionEvents:
    def test_send_status(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send_status("processing")
        event = q.get_nowait()
        assert event is not None
        assert event.type == EventType.STATUS
        assert event.data["message"] == "processing"

    def test_send_error(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send_error("something failed", "spawn_failed")
        event = q.get_nowait()
        assert event is not None
        assert event.type == EventType.ERROR
        assert event.data == {"error": "something failed", "kind": "spawn_failed"}

    def test_send_error_with_session(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send_error("pty gone", "session_io_error", 4)
        event = q.get_nowait()
        assert event is not None
        assert event.data["session_id"] == 4
        assert event.data["kind"] == "session_io_error"

    def test_session_begin(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send_session_begin(4, "python -i", "/work")
        event = q.get_nowait()
        assert event is not None
        assert event.data == {"session_id": 4, "command": "python -i", "workdir": "/work"}

    def test_session_end(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send_session_end(2, "make", "exited", exit_code=2)
        event = q.get_nowait()
        assert event is not None
        assert event.type == EventType.SESSION_END
        assert event.data["reason"] == "exited"
        assert event.data["exit_code"] == 2

    def test_session_end_default_exit_code(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send_session_end(2, "make", "shutdown")
        event = q.get_nowait()
        assert event is not None
        assert event.data["exit_code"] is None

    def test_session_evicted(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send_session_evicted(7, "sleep 30", "lru")
        event = q.get_nowait()
        assert event is not None
        assert event.type == EventType.SESSION_EVICTED
        assert event.data["reason"] == "lru"

    def test_capacity_warning(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send_capacity_warning(16, 20)
        event = q.get_nowait()
        assert event is not None
        assert event.type == EventType.CAPACITY_WARNING
        assert event.data == {"active_sessions": 16, "max_sessions": 20}
