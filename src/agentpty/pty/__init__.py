"""PTY process management — bounded pool of pseudo-terminal sessions.

Every command the agent runs gets its own PTY with process group
isolation, non-blocking polled reads with a post-exit grace period, and
registry-driven eviction when the pool fills up.
"""

from agentpty.pty.process import PtyProcess
from agentpty.pty.registry import SessionRegistry
from agentpty.pty.session import Session, SessionMetadata, SessionStatus

__all__ = [
    "PtyProcess",
    "Session",
    "SessionMetadata",
    "SessionRegistry",
    "SessionStatus",
]
