"""Wire protocol — decouples session management from whoever is watching.

The registry and the terminal tools publish lifecycle events on the wire;
a CLI, a log shipper, or the host agent's UI subscribes and renders them.
Nothing on the wire ever feeds back into control flow.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any


class EventType(enum.Enum):
    SESSION_BEGIN = "session_begin"
    SESSION_END = "session_end"
    SESSION_EVICTED = "session_evicted"
    CAPACITY_WARNING = "capacity_warning"
    ERROR = "error"
    STATUS = "status"


@dataclass
class WireEvent:
    """An event on the wire."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)


class Wire:
    """Async message bus: sessions -> subscribers.

    Single-producer, multi-consumer broadcast.
    """

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[WireEvent | None]] = []
        self._closed: bool = False

    def send(self, event: WireEvent) -> None:
        """Send an event to all subscribers.

        Silently drops events after ``close()`` has been called.
        """
        if self._closed:
            return
        for q in self._subscribers:
            q.put_nowait(event)

    def send_status(self, message: str) -> None:
        self.send(WireEvent(type=EventType.STATUS, data={"message": message}))

    def send_error(self, error: str, kind: str, session_id: int | None = None) -> None:
        """A tool call failed. ``kind`` matches the result's ``error_kind``."""
        data: dict[str, Any] = {"error": error, "kind": kind}
        if session_id is not None:
            data["session_id"] = session_id
        self.send(WireEvent(type=EventType.ERROR, data=data))

    def send_session_begin(self, session_id: int, command: str, workdir: str) -> None:
        self.send(
            WireEvent(
                type=EventType.SESSION_BEGIN,
                data={"session_id": session_id, "command": command, "workdir": workdir},
            )
        )

    def send_session_end(
        self,
        session_id: int,
        command: str,
        reason: str,
        exit_code: int | None = None,
    ) -> None:
        """Notify subscribers that a session left the registry.

        ``reason`` is one of ``"exited"``, ``"killed"`` or ``"shutdown"``.
        """
        self.send(
            WireEvent(
                type=EventType.SESSION_END,
                data={
                    "session_id": session_id,
                    "command": command,
                    "reason": reason,
                    "exit_code": exit_code,
                },
            )
        )

    def send_session_evicted(self, session_id: int, command: str, reason: str) -> None:
        """``reason`` is ``"exited"`` (dead entry collected) or ``"lru"``."""
        self.send(
            WireEvent(
                type=EventType.SESSION_EVICTED,
                data={"session_id": session_id, "command": command, "reason": reason},
            )
        )

    def send_capacity_warning(self, active: int, max_sessions: int) -> None:
        self.send(
            WireEvent(
                type=EventType.CAPACITY_WARNING,
                data={"active_sessions": active, "max_sessions": max_sessions},
            )
        )

    def subscribe(self) -> asyncio.Queue[WireEvent | None]:
        """Subscribe to events. Returns a queue to read from."""
        q: asyncio.Queue[WireEvent | None] = asyncio.Queue()
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        """Unsubscribe from events."""
        if q in self._subscribers:
            self._subscribers.remove(q)

    def close(self) -> None:
        """Signal all subscribers that the wire is closing."""
        self._closed = True
        for q in self._subscribers:
            q.put_nowait(None)
