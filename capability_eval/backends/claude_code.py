"""Claude Code agent backend for evaluation.

Invokes the Claude Code CLI (`claude` command) in print mode, either for a
plain-text answer or for newline-delimited JSON events.
"""

from __future__ import annotations

import codecs
import os
import shutil
from collections.abc import Callable, Sequence
from pathlib import Path

from ..config import AgentConfig
from ..process import AbortScope, ProcessResult, ProcessRunner

WARMUP_PROMPT = "Reply with just the word OK"

# Set inside an agent session; a nested CLI refuses to start when it sees it.
_NESTED_SESSION_VAR = "CLAUDECODE"


class ClaudeCodeBackend:
    """Backend that talks to the agent via the Claude Code CLI."""

    def __init__(
        self,
        command: str = "claude",
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
        runner: ProcessRunner | None = None,
    ) -> None:
        self._command = command
        self._args = args or []
        self._env = env or {}
        self._runner = runner or ProcessRunner()

    @property
    def name(self) -> str:
        return "claude_code"

    def build_env(self) -> dict[str, str]:
        env = {**os.environ, **self._env}
        env.pop(_NESTED_SESSION_VAR, None)
        return env

    def text_argv(self) -> list[str]:
        return [self._command, *self._args, "-p", "--output-format", "text"]

    def turn_argv(
        self, session_id: str = "", disallowed_tools: Sequence[str] = ()
    ) -> list[str]:
        argv = [
            self._command,
            *self._args,
            "-p",
            "--output-format",
            "stream-json",
            "--verbose",
            "--dangerously-skip-permissions",
        ]
        if disallowed_tools:
            argv += ["--disallowedTools", ",".join(disallowed_tools)]
        if session_id:
            argv += ["--resume", session_id]
        return argv

    def warmup_argv(self) -> list[str]:
        return [
            self._command,
            *self._args,
            "-p",
            "--output-format",
            "json",
            "--dangerously-skip-permissions",
        ]

    async def ask(
        self,
        prompt: str,
        *,
        cwd: str | None = None,
        timeout: float | None = None,
        on_output: Callable[[str], None] | None = None,
        scope: AbortScope | None = None,
    ) -> ProcessResult:
        """Execute a one-shot prompt with --print and text output."""
        on_stdout = None
        if on_output is not None:
            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

            def on_stdout(chunk: bytes) -> None:
                text = decoder.decode(chunk)
                if text:
                    on_output(text)

        return await self._runner.run(
            self.text_argv(),
            stdin_text=prompt,
            cwd=cwd or str(Path.home()),
            env=self.build_env(),
            timeout=timeout,
            on_stdout=on_stdout,
            scope=scope,
        )

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
        return await self._runner.run(
            self.turn_argv(session_id, disallowed_tools),
            stdin_text=prompt,
            cwd=cwd or str(Path.home()),
            env=self.build_env(),
            timeout=timeout,
            on_stdout=on_output,
            scope=scope,
        )

    async def warm_up(
        self,
        cwd: str,
        *,
        timeout: float | None = None,
        scope: AbortScope | None = None,
    ) -> ProcessResult:
        return await self._runner.run(
            self.warmup_argv(),
            stdin_text=WARMUP_PROMPT,
            cwd=cwd or str(Path.home()),
            env=self.build_env(),
            timeout=timeout,
            scope=scope,
        )

    async def health_check(self) -> bool:
        """Check if the agent CLI is available."""
        return shutil.which(self._command) is not None

    @classmethod
    def from_config(cls, config: AgentConfig) -> ClaudeCodeBackend:
        return cls(
            command=config.command,
            args=config.args,
            env=config.env,
        )
