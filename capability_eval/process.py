"""External process execution with timeouts and cooperative abort.

Every agent call in the pipeline goes through ``ProcessRunner.run``. Live
child processes are tracked in an ``AbortScope`` that is passed explicitly
down the call chain; aborting the scope kills every registered process and
tells callers not to start new work.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

logger = logging.getLogger(__name__)

_READ_SIZE = 64 * 1024


def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        pass


class AbortScope:
    """Cancellation token plus the registry of live child processes."""

    def __init__(self) -> None:
        self._aborted = False
        self._processes: set[asyncio.subprocess.Process] = set()

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def live_processes(self) -> int:
        return len(self._processes)

    def register(self, proc: asyncio.subprocess.Process) -> None:
        if self._aborted:
            _kill(proc)
            return
        self._processes.add(proc)

    def unregister(self, proc: asyncio.subprocess.Process) -> None:
        self._processes.discard(proc)

    def abort(self) -> None:
        """Kill every registered process. Safe to call repeatedly."""
        if not self._aborted:
            logger.info("Abort requested (%d live processes)", len(self._processes))
        self._aborted = True
        for proc in list(self._processes):
            _kill(proc)
        self._processes.clear()


@dataclass
class ProcessResult:
    """Outcome of one external process invocation."""

    stdout: str = ""
    stderr: str = ""
    returncode: int | None = None
    duration_seconds: float = 0.0
    timed_out: bool = False
    cancelled: bool = False
    error: str | None = None  # Spawn failure (e.g. executable not found)

    @property
    def ok(self) -> bool:
        return (
            self.error is None
            and not self.timed_out
            and not self.cancelled
            and self.returncode == 0
        )


class ProcessRunner:
    """Spawns one process per call, feeds stdin and captures output."""

    async def run(
        self,
        argv: Sequence[str],
        *,
        stdin_text: str = "",
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
        on_stdout: Callable[[bytes], None] | None = None,
        scope: AbortScope | None = None,
    ) -> ProcessResult:
        """Run ``argv`` to completion.

        Args:
            argv: Executable and arguments.
            stdin_text: Written to the child's stdin, which is then closed.
            cwd: Working directory for the child.
            env: Full environment for the child (inherits ours when None).
            timeout: Seconds before the child is killed; None waits forever.
            on_stdout: Called with each raw stdout chunk as it arrives.
            scope: Abort scope the child is registered with while it runs.

        Returns:
            ProcessResult. Failures are reported in the result, never raised.
        """
        start = time.monotonic()
        if scope is not None and scope.aborted:
            return ProcessResult(cancelled=True, error="Aborted before start")

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=env,
            )
        except FileNotFoundError:
            return ProcessResult(
                error=f"Command not found: {argv[0]}",
                duration_seconds=time.monotonic() - start,
            )
        except OSError as e:
            return ProcessResult(error=str(e), duration_seconds=time.monotonic() - start)

        if scope is not None:
            scope.register(proc)

        stdout_chunks: list[bytes] = []
        stderr_chunks: list[bytes] = []

        async def feed_stdin() -> None:
            assert proc.stdin is not None
            try:
                proc.stdin.write(stdin_text.encode("utf-8"))
                await proc.stdin.drain()
            except (BrokenPipeError, ConnectionResetError):
                logger.debug("stdin closed early by %s", argv[0])
            finally:
                proc.stdin.close()

        async def pump_stdout() -> None:
            assert proc.stdout is not None
            while chunk := await proc.stdout.read(_READ_SIZE):
                stdout_chunks.append(chunk)
                if on_stdout is not None:
                    on_stdout(chunk)

        async def pump_stderr() -> None:
            assert proc.stderr is not None
            while chunk := await proc.stderr.read(_READ_SIZE):
                stderr_chunks.append(chunk)

        timed_out = False
        try:
            await asyncio.wait_for(
                asyncio.gather(feed_stdin(), pump_stdout(), pump_stderr(), proc.wait()),
                timeout=timeout,
            )
        except TimeoutError:
            timed_out = True
            logger.warning("Process %s timed out after %ss", argv[0], timeout)
            _kill(proc)
            await proc.wait()
        except asyncio.CancelledError:
            _kill(proc)
            raise
        finally:
            if scope is not None:
                scope.unregister(proc)

        return ProcessResult(
            stdout=b"".join(stdout_chunks).decode("utf-8", errors="replace"),
            stderr=b"".join(stderr_chunks).decode("utf-8", errors="replace"),
            returncode=proc.returncode,
            duration_seconds=time.monotonic() - start,
            timed_out=timed_out,
            cancelled=scope is not None and scope.aborted,
        )
