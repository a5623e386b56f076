"""Agent backend protocol for evaluation.

Defines the interface the pipeline uses to talk to the coding agent: one-shot
text questions (discovery, generation, persona, judge), streaming
conversation turns, and a warm-up call.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Protocol, runtime_checkable

from ..process import AbortScope, ProcessResult


@runtime_checkable
class AgentBackend(Protocol):
    """Protocol for agent backends used in evaluation.

    Implementations never raise for process-level failures; they report
    them through the returned ``ProcessResult``.
    """

    @property
    def name(self) -> str:
        """Backend identifier (e.g. 'claude_code')."""
        ...

    async def ask(
        self,
        prompt: str,
        *,
        cwd: str | None = None,
        timeout: float | None = None,
        on_output: Callable[[str], None] | None = None,
        scope: AbortScope | None = None,
    ) -> ProcessResult:
        """Send one prompt and return the agent's plain-text reply.

        Args:
            prompt: Full prompt, written to the agent's stdin.
            cwd: Directory the agent runs in.
            timeout: Seconds before the call is killed.
            on_output: Receives decoded stdout text as it streams.
            scope: Abort scope the process registers with.
        """
        ...

    async def stream_turn(
        self,
        prompt: str,
        *,
        cwd: str,
        session_id: str = "",
        disallowed_tools: Sequence[str] = (),
        timeout: float | None = None,
        on_output: Callable[[bytes], None] | None = None,
        scope: AbortScope | None = None,
    ) -> ProcessResult:
        """Run one conversation turn with structured streaming output.

        Args:
            prompt: The turn's user input.
            cwd: Workspace the agent operates on.
            session_id: Agent session to resume (empty on the first turn).
            disallowed_tools: Tool patterns the agent may not invoke.
            timeout: Per-turn timeout in seconds.
            on_output: Receives raw stdout bytes for incremental parsing.
            scope: Abort scope the process registers with.
        """
        ...

    async def warm_up(
        self,
        cwd: str,
        *,
        timeout: float | None = None,
        scope: AbortScope | None = None,
    ) -> ProcessResult:
        """Issue a trivial call so lazily-started tool servers initialize."""
        ...
