"""In-process fake agent backend and stream-event builders for tests."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from capability_eval.process import ProcessResult


def assistant_text(text: str) -> dict[str, Any]:
    return {"type": "assistant", "message": {"content": [{"type": "text", "text": text}]}}


def tool_use(name: str, tool_input: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "type": "assistant",
        "message": {"content": [{"type": "tool_use", "name": name, "input": tool_input or {}}]},
    }


def tool_result(content: Any, is_error: bool = False) -> dict[str, Any]:
    return {
        "type": "user",
        "message": {
            "content": [{"type": "tool_result", "content": content, "is_error": is_error}]
        },
    }


def result_event(
    text: str = "done",
    session_id: str = "sess-1",
    cost: float = 0.01,
    is_error: bool = False,
    usage: dict[str, int] | None = None,
) -> dict[str, Any]:
    return {
        "type": "result",
        "result": text,
        "session_id": session_id,
        "cost_usd": cost,
        "duration_ms": 10,
        "is_error": is_error,
        "usage": usage or {"input_tokens": 100, "output_tokens": 20},
    }


@dataclass
class TurnScript:
    """What one fake stream turn emits and how its process ends."""

    events: list[dict[str, Any] | str] = field(default_factory=list)
    returncode: int = 0
    timed_out: bool = False
    cancelled: bool = False
    stderr: str = ""
    error: str | None = None
    delay: float = 0.0


def simple_turn(text: str = "done", session_id: str = "sess-1") -> TurnScript:
    return TurnScript(events=[assistant_text(text), result_event(text, session_id)])


@dataclass
class TurnCall:
    prompt: str
    cwd: str
    session_id: str
    disallowed_tools: list[str]
    timeout: float | None


AskHandler = Callable[[str], "str | ProcessResult"]
TurnHandler = Callable[[TurnCall], TurnScript]


class FakeBackend:
    """Scripted AgentBackend that never spawns processes."""

    def __init__(
        self,
        ask: AskHandler | None = None,
        turn: TurnHandler | None = None,
        warmup: ProcessResult | None = None,
    ) -> None:
        self._ask = ask or (lambda prompt: "[DONE]")
        self._turn = turn or (lambda call: simple_turn())
        self._warmup = warmup or ProcessResult(stdout='{"result": "OK"}', returncode=0)
        self.ask_prompts: list[str] = []
        self.turn_calls: list[TurnCall] = []
        self.warmup_cwds: list[str] = []
        self.active_turns = 0
        self.max_active_turns = 0

    @property
    def name(self) -> str:
        return "fake"

    async def ask(self, prompt, *, cwd=None, timeout=None, on_output=None, scope=None):
        self.ask_prompts.append(prompt)
        if scope is not None and scope.aborted:
            return ProcessResult(cancelled=True, error="Aborted before start")
        reply = self._ask(prompt)
        result = reply if isinstance(reply, ProcessResult) else ProcessResult(
            stdout=reply, returncode=0
        )
        if on_output is not None and result.stdout:
            on_output(result.stdout)
        return result

    async def stream_turn(
        self,
        prompt,
        *,
        cwd,
        session_id="",
        disallowed_tools=(),
        timeout=None,
        on_output=None,
        scope=None,
    ):
        call = TurnCall(prompt, cwd, session_id, list(disallowed_tools), timeout)
        self.turn_calls.append(call)
        script = self._turn(call)

        self.active_turns += 1
        self.max_active_turns = max(self.max_active_turns, self.active_turns)
        try:
            for event in script.events:
                line = event if isinstance(event, str) else json.dumps(event)
                if on_output is not None:
                    on_output((line + "\n").encode())
                await asyncio.sleep(0)
            await asyncio.sleep(script.delay)
        finally:
            self.active_turns -= 1

        return ProcessResult(
            returncode=None if script.timed_out else script.returncode,
            stderr=script.stderr,
            timed_out=script.timed_out,
            cancelled=script.cancelled or (scope is not None and scope.aborted),
            error=script.error,
        )

    async def warm_up(self, cwd, *, timeout=None, scope=None):
        self.warmup_cwds.append(cwd)
        return self._warmup
