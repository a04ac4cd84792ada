"""Session registry — bounded pool of PTY sessions with eviction."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from agentpty.config import SessionConfig
from agentpty.errors import SessionNotFound
from agentpty.pty.process import PtyProcess
from agentpty.pty.session import Session, SessionMetadata, SessionStatus

if TYPE_CHECKING:
    from agentpty.session.wire import Wire

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Owns every live PTY session and the policy that bounds them.

    The registry ensures:
    - Sessions are tracked and can be looked up by ID
    - ``len(registry) <= max_sessions`` after every operation
    - Exited sessions are collected before any running one is evicted
    - The ``protected_count`` most-recently-used running sessions survive
      automatic eviction
    - All sessions are killed on cleanup (no orphan processes)

    The mapping is guarded by a lock. Processes are only ever terminated
    after the lock is released, so a slow kill never stalls other callers.
    """

    def __init__(self, config: SessionConfig | None = None, wire: Wire | None = None) -> None:
        self.config = (config or SessionConfig()).check()
        self._sessions: dict[int, Session] = {}
        self._lock = threading.Lock()
        self._next_id = 1
        self._wire = wire

    @property
    def wire(self) -> Wire | None:
        """Event bus the registry publishes on, shared with the tools."""
        return self._wire

    def next_session_id(self) -> int:
        with self._lock:
            session_id = self._next_id
            self._next_id += 1
            return session_id

    def register(self, process: PtyProcess, metadata: SessionMetadata) -> int:
        """Add a running process to the pool, evicting others if it is full.

        Returns:
            The session id.
        """
        with self._lock:
            active = len(self._sessions)
            if active >= self.config.warning_threshold:
                logger.warning(
                    "%d sessions open (max %d). Reuse or kill sessions to avoid automatic eviction.",
                    active,
                    self.config.max_sessions,
                )
                if self._wire:
                    self._wire.send_capacity_warning(active, self.config.max_sessions)
            victims = []
            if active + 1 > self.config.max_sessions:
                victims = self._select_victims_locked()
            self._sessions[metadata.session_id] = Session(process=process, metadata=metadata)
            self._next_id = max(self._next_id, metadata.session_id + 1)

        self._release(victims)
        if self._wire:
            self._wire.send_session_begin(metadata.session_id, metadata.command, metadata.workdir)
        logger.info("Registered session %d: %s", metadata.session_id, metadata.command)
        return metadata.session_id

    def get(self, session_id: int) -> Session:
        """Look up a session.

        Raises:
            SessionNotFound: no such session.
        """
        session = self.find(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def find(self, session_id: int) -> Session | None:
        with self._lock:
            return self._sessions.get(session_id)

    def touch(self, session_id: int) -> None:
        """Mark a session as just used, protecting it from LRU eviction."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFound(session_id)
            session.metadata.touch()

    def remove(
        self,
        session_id: int,
        terminate: bool = True,
        reason: str | None = None,
    ) -> Session | None:
        """Drop a session from the pool, releasing its process.

        The returned metadata reflects the process state *before* any
        termination, so callers can tell a kill from an earlier exit.

        Returns the removed session, or None if it was not registered.
        """
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return None
        session.refresh_status()
        if terminate:
            session.process.terminate()
        else:
            session.process.close()
        if self._wire:
            self._wire.send_session_end(
                session_id,
                session.metadata.command,
                reason or ("killed" if terminate else "exited"),
                session.process.exit_code,
            )
        return session

    def list(self) -> list[SessionMetadata]:
        """Copies of every session's metadata, ordered by id.

        Read-only: neither recency nor the stored status changes, so the
        listing never influences eviction.
        """
        with self._lock:
            sessions = sorted(self._sessions.values(), key=lambda s: s.session_id)
        return [s.snapshot() for s in sessions]

    def count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def enforce_capacity(self) -> list[SessionMetadata]:
        """Evict sessions until the pool is strictly below ``max_sessions``.

        Returns the metadata of every evicted session.
        """
        with self._lock:
            victims = self._select_victims_locked()
        self._release(victims)
        return [v.metadata for v, _ in victims]

    def _select_victims_locked(self) -> list[tuple[Session, str]]:
        """Pop sessions until below the limit. Caller holds ``_lock``.

        Exited sessions go first regardless of recency, then the least
        recently used running sessions outside the protected window.
        """
        limit = self.config.max_sessions
        victims: list[tuple[Session, str]] = []

        for session in list(self._sessions.values()):
            if session.refresh_status() == SessionStatus.EXITED:
                del self._sessions[session.session_id]
                victims.append((session, "exited"))

        if len(self._sessions) < limit:
            return victims

        by_recency = sorted(
            self._sessions.values(),
            key=lambda s: (s.metadata.last_used, s.session_id),
            reverse=True,
        )
        protected = by_recency[: self.config.protected_count]
        evictable = by_recency[self.config.protected_count :]

        for session in reversed(evictable):
            if len(self._sessions) < limit:
                break
            del self._sessions[session.session_id]
            victims.append((session, "lru"))

        if len(self._sessions) >= limit:
            logger.error(
                "Eviction reached protected sessions: protected_count=%d, max_sessions=%d. "
                "This configuration cannot keep the pool bounded.",
                self.config.protected_count,
                limit,
            )
            for session in reversed(protected):
                if len(self._sessions) < limit:
                    break
                del self._sessions[session.session_id]
                victims.append((session, "lru"))

        return victims

    def _release(self, victims: list[tuple[Session, str]]) -> None:
        for session, reason in victims:
            session.process.terminate()
            logger.warning(
                "Evicted session %d (%s): %s",
                session.session_id,
                reason,
                session.metadata.command,
            )
            if self._wire:
                self._wire.send_session_evicted(
                    session.session_id, session.metadata.command, reason
                )

    async def cleanup(self) -> None:
        """Kill all sessions. Called on shutdown."""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.refresh_status()
            session.process.terminate()
            if self._wire:
                self._wire.send_session_end(
                    session.session_id,
                    session.metadata.command,
                    "shutdown",
                    session.process.exit_code,
                )
        if self._wire:
            self._wire.send_status(f"Cleaned up {len(sessions)} sessions")
        logger.info("All PTY sessions cleaned up (%d killed)", len(sessions))

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, session_id: int) -> bool:
        with self._lock:
            return session_id in self._sessions
