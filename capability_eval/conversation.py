"""Multi-turn conversation runner for one (scenario, variant) pair.

Each turn spawns the agent with the current input, parses its event stream
into the live transcript and tool-invocation list, then asks the persona
for the next user message. The loop ends on ``[DONE]``, on an agent error
or timeout, on abort, or after ``max_turns`` turns.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .backends.base import AgentBackend
from .config import EvalConfig
from .events import EventEmitter, StatusThrottle
from .models import Run, RunStatus, RunVariant, Scenario, TokenUsage, ToolInvocation, new_id
from .persona import DONE_SENTINEL, PersonaSimulator
from .process import AbortScope
from .store import EvalStore
from .stream import EventKind, StreamEvent, StreamingEventParser
from .transcript import LiveTranscript

logger = logging.getLogger(__name__)

TOOL_INPUT_CHARS = 200
TOOL_RESULT_ECHO_CHARS = 300
TOOL_OUTPUT_CHARS = 500


def wrap_prompt(prompt: str) -> str:
    return (
        "Complete this task autonomously. If you need info, make reasonable "
        f"assumptions. TASK: {prompt}"
    )


def blocked_tools_for(scenario: Scenario) -> list[str]:
    """Deny-list for the without-tools variant.

    The scenario's trigger identifiers, plus a skill pattern derived from the
    component name so a skill cannot be invoked even if it is discovered.
    """
    blocked = list(scenario.component_triggers)
    skill_name = scenario.component_name.removeprefix("/")
    if skill_name:
        blocked.append(f"Skill({skill_name}*)")
    return blocked


def _timestamp() -> str:
    return datetime.now(UTC).strftime("%H:%M:%S")


@dataclass
class TurnOutcome:
    """Everything one agent turn produced."""

    result_text: str = ""
    session_id: str = ""
    is_error: bool = False
    cost_usd: float = 0.0
    duration_ms: int = 0
    usage: TokenUsage = field(default_factory=TokenUsage)
    tool_calls: list[ToolInvocation] = field(default_factory=list)
    stderr: str = ""
    cancelled: bool = False


def _usage_from(payload: dict[str, Any]) -> TokenUsage:
    usage = payload.get("usage") or {}
    return TokenUsage(
        input_tokens=int(usage.get("input_tokens") or 0),
        output_tokens=int(usage.get("output_tokens") or 0),
        cache_read=int(usage.get("cache_read_input_tokens") or 0),
        cache_write=int(usage.get("cache_creation_input_tokens") or 0),
    )


class ConversationRunner:
    """Drives one run through up to ``max_turns`` request/response turns."""

    def __init__(
        self,
        backend: AgentBackend,
        store: EvalStore,
        persona: PersonaSimulator,
        *,
        max_turns: int = 10,
        turn_timeout_seconds: float = 600.0,
        throttle_seconds: float = 1.0,
        transcript_tail_chars: int = 4000,
        events: EventEmitter | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._backend = backend
        self._store = store
        self._persona = persona
        self._max_turns = max_turns
        self._turn_timeout = turn_timeout_seconds
        self._throttle_seconds = throttle_seconds
        self._tail_chars = transcript_tail_chars
        self._events = events or EventEmitter()
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        config: EvalConfig,
        backend: AgentBackend,
        store: EvalStore,
        events: EventEmitter | None = None,
    ) -> ConversationRunner:
        persona = PersonaSimulator(
            backend,
            timeout_seconds=config.persona.timeout_seconds,
            output_tail_chars=config.persona.output_tail_chars,
        )
        return cls(
            backend,
            store,
            persona,
            max_turns=config.execution.max_turns,
            turn_timeout_seconds=config.execution.turn_timeout_seconds,
            throttle_seconds=config.execution.status_throttle_seconds,
            transcript_tail_chars=config.execution.transcript_tail_chars,
            events=events,
        )

    async def run(
        self,
        scenario: Scenario,
        variant: RunVariant,
        cwd: str,
        experiment_id: str,
        *,
        run_id: str | None = None,
        scope: AbortScope | None = None,
    ) -> Run:
        """Execute the conversation and persist its transcript and log.

        Returns a Run with status ``completed`` or ``error``. A run cut short
        by abort keeps status ``running``.
        """
        run = Run(
            id=run_id or new_id(),
            scenario_id=scenario.id,
            variant=variant,
            status=RunStatus.RUNNING,
        )
        start = time.monotonic()
        transcript = LiveTranscript()
        throttle = StatusThrottle(self._throttle_seconds, self._clock)
        blocked = blocked_tools_for(scenario) if variant == RunVariant.WITHOUT_TOOLS else []

        log = [
            f"# Eval Run: {run.id}",
            f"- Scenario: {scenario.prompt[:100]}",
            f"- Variant: {variant.value}",
            f"- Working Dir: {cwd}",
            f"- Started: {datetime.now(UTC).isoformat()}",
            "",
        ]

        current_input = wrap_prompt(scenario.prompt)
        success = True
        aborted = False

        try:
            while run.turns < self._max_turns:
                if scope is not None and scope.aborted:
                    aborted = True
                    break
                run.turns += 1

                log.append(f"## [{_timestamp()}] TURN {run.turns}")
                log.append(f"**Cwd:** {cwd}")
                if run.session_id:
                    log.append(f"**Resume:** {run.session_id}")
                if blocked:
                    log.append(f"**Blocked tools:** {', '.join(blocked)}")
                log.append(f"**Input:** {current_input[:300]}")
                log.append("")

                transcript.append(f"--- Turn {run.turns} ---")
                transcript.append(f"[user] {current_input}")
                self._events.run_status(run.id, RunStatus.RUNNING.value, transcript.render())

                outcome = await self._run_turn(
                    run.id, current_input, cwd, run.session_id, blocked,
                    transcript, throttle, scope,
                )
                self._accumulate(run, outcome, log)

                if outcome.result_text:
                    transcript.append(f"[agent] {outcome.result_text[:1000]}")
                self._events.run_status(run.id, RunStatus.RUNNING.value, transcript.render())

                if outcome.cancelled:
                    aborted = True
                    break
                if outcome.is_error:
                    success = False
                    run.error = outcome.stderr or "Agent reported an error"
                    break

                reply = await self._persona.reply(
                    scenario.prompt, scenario.expected_behavior, outcome.result_text, scope
                )
                # A cancelled persona call fails open to [DONE]
                if scope is not None and scope.aborted:
                    aborted = True
                    break
                if DONE_SENTINEL in reply:
                    log.append(f"## [{_timestamp()}] PERSONA: {DONE_SENTINEL}")
                    break
                log.append(f"## [{_timestamp()}] PERSONA: {reply[:200]}")
                log.append("")
                current_input = reply
        except Exception as e:
            logger.exception("Run %s failed", run.id)
            success = False
            run.error = str(e) or type(e).__name__
            log.append(f"## [{_timestamp()}] ERROR: {run.error}")

        if aborted:
            run.status = RunStatus.RUNNING
        else:
            run.status = RunStatus.COMPLETED if success else RunStatus.ERROR
        run.duration_seconds = time.monotonic() - start

        tool_names = sorted({t.tool_name for t in run.tool_invocations})
        outcome_label = "ABORTED" if aborted else ("COMPLETED" if success else "FAILED")
        log.append(f"## [{_timestamp()}] RUN {outcome_label}")
        log.append(
            f"- Duration: {run.duration_seconds:.1f}s | Turns: {run.turns} "
            f"| Cost: ${run.cost_usd:.4f}"
        )
        usage = run.token_usage
        log.append(
            f"- Total Tokens: in={usage.input_tokens} out={usage.output_tokens} "
            f"cache_read={usage.cache_read} cache_write={usage.cache_write}"
        )
        log.append(
            f"- Total Tool Calls: {len(run.tool_invocations)} ({', '.join(tool_names)})"
        )

        rendered = transcript.render()
        self._store.save_transcript(experiment_id, run.id, rendered)
        self._store.save_conversation_log(experiment_id, run.id, "\n".join(log))
        run.transcript = rendered[-self._tail_chars :]

        logger.info(
            "Run %s (%s) %s after %d turn(s), %d tool call(s)",
            run.id[:8], variant.value, outcome_label.lower(), run.turns,
            len(run.tool_invocations),
        )
        self._events.run_status(run.id, run.status.value, rendered)
        return run

    async def _run_turn(
        self,
        run_id: str,
        prompt: str,
        cwd: str,
        session_id: str,
        blocked: list[str],
        transcript: LiveTranscript,
        throttle: StatusThrottle,
        scope: AbortScope | None,
    ) -> TurnOutcome:
        parser = StreamingEventParser()
        tool_calls: list[ToolInvocation] = []

        def consume(events: list[StreamEvent]) -> None:
            for event in events:
                self._apply_event(event, transcript, tool_calls)
                if throttle.ready():
                    self._events.run_status(
                        run_id, RunStatus.RUNNING.value, transcript.render()
                    )

        def on_output(chunk: bytes) -> None:
            consume(parser.feed(chunk))

        result = await self._backend.stream_turn(
            prompt,
            cwd=cwd,
            session_id=session_id,
            disallowed_tools=blocked,
            timeout=self._turn_timeout,
            on_output=on_output,
            scope=scope,
        )
        consume(parser.close())

        if result.cancelled:
            return TurnOutcome(tool_calls=tool_calls, stderr=result.stderr, cancelled=True)
        if result.timed_out:
            return TurnOutcome(
                is_error=True,
                tool_calls=tool_calls,
                stderr=f"Turn timeout ({self._turn_timeout:g}s)\n{result.stderr}".strip(),
            )
        if result.error:
            return TurnOutcome(is_error=True, tool_calls=tool_calls, stderr=result.error)

        payload = parser.result or {}
        outcome = TurnOutcome(
            result_text=str(payload.get("result") or ""),
            session_id=str(payload.get("session_id") or parser.session_id),
            is_error=bool(payload.get("is_error")),
            cost_usd=float(payload.get("cost_usd") or payload.get("total_cost_usd") or 0),
            duration_ms=int(payload.get("duration_ms") or 0),
            usage=_usage_from(payload),
            tool_calls=tool_calls,
            stderr=result.stderr,
        )
        if parser.result is None and result.returncode != 0:
            outcome.is_error = True
            outcome.stderr = result.stderr or f"Agent exited with code {result.returncode}"
        return outcome

    @staticmethod
    def _apply_event(
        event: StreamEvent,
        transcript: LiveTranscript,
        tool_calls: list[ToolInvocation],
    ) -> None:
        if event.kind == EventKind.TEXT:
            transcript.append(event.text)
        elif event.kind == EventKind.TOOL_USE:
            tool_input = event.input[:TOOL_INPUT_CHARS]
            transcript.append(f"[tool] {event.name}({tool_input})")
            tool_calls.append(ToolInvocation(tool_name=event.name, input=tool_input))
        elif event.kind == EventKind.TOOL_RESULT:
            transcript.append(f"[result] {event.text[:TOOL_RESULT_ECHO_CHARS]}")
            if tool_calls:
                tool_calls[-1].output = event.text[:TOOL_OUTPUT_CHARS]
                if event.is_error:
                    tool_calls[-1].success = False
        # RESULT events carry totals only; they are read from the parser.

    @staticmethod
    def _accumulate(run: Run, outcome: TurnOutcome, log: list[str]) -> None:
        if outcome.stderr:
            log.append(f"**Stderr:** {outcome.stderr[:500]}")
        run.tool_invocations.extend(outcome.tool_calls)
        if not run.session_id and outcome.session_id:
            run.session_id = outcome.session_id
        run.cost_usd += outcome.cost_usd
        run.token_usage = run.token_usage + outcome.usage

        names = ", ".join(t.tool_name for t in outcome.tool_calls) or "none"
        log.append(f"**Tools used:** {names}")
        log.append(f"**Response:** {outcome.result_text[:500]}")
        log.append(
            f"- Cost: ${outcome.cost_usd:.4f} | Duration: {outcome.duration_ms}ms "
            f"| Tools: {len(outcome.tool_calls)}"
        )
        u = outcome.usage
        log.append(
            f"- Tokens: in={u.input_tokens} out={u.output_tokens} "
            f"cache_read={u.cache_read} cache_write={u.cache_write}"
        )
        log.append("")
