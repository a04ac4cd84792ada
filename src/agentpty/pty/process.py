"""PTY process — one OS process attached to a pseudo-terminal."""

from __future__ import annotations

import asyncio
import logging
import os
import pty
import shutil
import signal
import subprocess

from agentpty.errors import SpawnError

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.01  # seconds between non-blocking read attempts
READ_CHUNK = 65536


def resolve_shell(shell: str | None = None) -> str:
    """Return an absolute path to the shell used to run commands.

    Defaults to ``bash`` on PATH, falling back to ``/bin/sh``.
    """
    if shell is None:
        return shutil.which("bash") or "/bin/sh"
    if os.path.isabs(shell):
        if os.path.isfile(shell) and os.access(shell, os.X_OK):
            return shell
        raise SpawnError(f"Shell not found or not executable: {shell}")
    found = shutil.which(shell)
    if found is None:
        raise SpawnError(f"Shell not found on PATH: {shell}")
    return found


class PtyProcess:
    """A command running on the slave side of a PTY.

    The master fd is owned exclusively by this object and is non-blocking;
    all reads are polls bounded by a timeout. The child runs in its own
    session (``start_new_session``), so ``terminate()`` can kill the whole
    process tree through its process group.

    Uses subprocess.Popen (not os.fork) to avoid deadlocks when
    spawned from within an asyncio event loop on macOS.
    """

    def __init__(
        self,
        proc: subprocess.Popen,
        master_fd: int,
        command: str,
        workdir: str,
        grace_period_ms: int = 50,
    ) -> None:
        self._proc = proc
        self._master_fd = master_fd
        self._pgid = proc.pid
        self._terminated = False
        self._eof = False
        self._saw_exit = False
        self.command = command
        self.workdir = workdir
        self.grace_period_ms = grace_period_ms

    @classmethod
    def spawn(
        cls,
        cmd: str,
        workdir: str,
        shell: str | None = None,
        env: dict[str, str] | None = None,
        grace_period_ms: int = 50,
    ) -> PtyProcess:
        """Start ``cmd`` under ``shell -c`` attached to a fresh PTY.

        Returns immediately; the command keeps running in the background.

        Raises:
            SpawnError: the workdir or shell is invalid, or the OS refused
                to allocate the PTY or the process.
        """
        if not os.path.isdir(workdir):
            raise SpawnError(f"Working directory not found: {workdir}", kind="invalid_workdir")
        shell_path = resolve_shell(shell)

        try:
            master_fd, slave_fd = pty.openpty()
        except OSError as e:
            raise SpawnError(f"Could not allocate a PTY: {e}") from e

        full_env = {**os.environ, **(env or {})}
        full_env["TERM"] = "dumb"  # Minimize ANSI escape sequences
        full_env.pop("PROMPT_COMMAND", None)

        try:
            proc = subprocess.Popen(
                [shell_path, "-c", cmd],
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,  # Creates new process group
                env=full_env,
                cwd=workdir,
            )
        except OSError as e:
            os.close(master_fd)
            raise SpawnError(f"Failed to start {shell_path}: {e}") from e
        finally:
            # Parent always closes slave fd
            os.close(slave_fd)

        os.set_blocking(master_fd, False)
        logger.info("PTY process started: pid=%d cwd=%s cmd=%s", proc.pid, workdir, cmd)
        return cls(proc, master_fd, cmd, workdir, grace_period_ms=grace_period_ms)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def _drain(self) -> bytes:
        """Read everything currently buffered on the master fd, without blocking."""
        chunks: list[bytes] = []
        while self._master_fd >= 0:
            try:
                data = os.read(self._master_fd, READ_CHUNK)
            except BlockingIOError:
                break
            except OSError:
                # EIO: every slave fd is closed and the buffer is consumed
                self._eof = True
                break
            if not data:
                self._eof = True
                break
            chunks.append(data)
        return b"".join(chunks)

    def _has_exited(self) -> bool:
        return self._eof or self._proc.poll() is not None or self._master_fd < 0

    async def read_available(self, timeout: float) -> bytes:
        """Return output as soon as some is available, or after ``timeout``.

        An elapsed timeout with no output returns ``b""``. When the process
        is seen to have exited, waits ``grace_period_ms`` and drains once
        more before returning, to pick up output flushed right before death.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(timeout, 0.0)
        self._saw_exit = False

        while True:
            data = self._drain()
            if self._has_exited():
                await asyncio.sleep(self.grace_period_ms / 1000.0)
                self._saw_exit = True
                return data + self._drain()
            if data:
                return data
            remaining = deadline - loop.time()
            if remaining <= 0:
                return b""
            await asyncio.sleep(min(POLL_INTERVAL, remaining))

    async def collect(self, yield_time: float) -> bytes:
        """Accumulate output until ``yield_time`` elapses or the process exits.

        The deadline is soft: the process keeps running when it passes.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(yield_time, 0.0)
        chunks: list[bytes] = []

        while True:
            chunks.append(await self.read_available(deadline - loop.time()))
            if not self.is_alive():
                if not self._saw_exit:
                    # Exited after the last read returned; still owe it a grace read
                    chunks.append(await self.read_available(0))
                break
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            if self._eof:
                # Slave closed but the process lives on; nothing more will arrive
                await asyncio.sleep(min(POLL_INTERVAL * 5, remaining))
        return b"".join(chunks)

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    async def write(self, data: bytes, timeout: float = 5.0) -> int:
        """Write ``data`` to the process's stdin.

        Retries while the PTY input buffer is full, up to ``timeout``.
        Returns the number of bytes written, which is short on timeout.

        Raises:
            OSError: the PTY is gone (process exited or was terminated).
        """
        if self._master_fd < 0:
            raise OSError(f"PTY for pid {self.pid} is closed")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        view = memoryview(data)
        written = 0
        while written < len(data) and self._master_fd >= 0:
            try:
                n = os.write(self._master_fd, view[written:])
            except BlockingIOError:
                n = 0
            written += n
            if written >= len(data) or loop.time() >= deadline:
                break
            if n == 0:
                await asyncio.sleep(POLL_INTERVAL)
        return written

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def is_alive(self) -> bool:
        return not self._terminated and self._proc.poll() is None

    @property
    def exit_code(self) -> int | None:
        """Exit status once the process is reaped, else None.

        Negative values are the signal that killed it (``-9`` after terminate()).
        """
        return self._proc.poll()

    @property
    def pid(self) -> int:
        return self._proc.pid

    def terminate(self) -> bool:
        """Kill the entire process tree and release the PTY.

        Idempotent. Returns False, without error, when the process had
        already exited or was already terminated.
        """
        if self._terminated or self._proc.poll() is not None:
            self.close()
            logger.debug("PTY process %d already exited", self.pid)
            return False

        self._terminated = True
        try:
            os.killpg(self._pgid, signal.SIGKILL)
            logger.info("Killed PTY process %d (pgid=%d)", self.pid, self._pgid)
        except ProcessLookupError:
            logger.debug("Process group already gone: %d", self._pgid)
        except OSError as e:
            logger.warning("Error killing PTY process %d: %s", self.pid, e)

        # Wait for process to be reaped (avoids zombies)
        try:
            self._proc.wait(timeout=2)
        except subprocess.TimeoutExpired:
            logger.warning("PTY process %d did not exit after SIGKILL", self.pid)

        self.close()
        return True

    def close(self) -> None:
        """Release the master fd. Safe to call more than once."""
        if self._master_fd < 0:
            return
        try:
            os.close(self._master_fd)
        except OSError:
            pass
        self._master_fd = -1

    def __del__(self) -> None:
        """Ensure cleanup on garbage collection."""
        if getattr(self, "_proc", None) is not None and self.is_alive():
            self.terminate()
