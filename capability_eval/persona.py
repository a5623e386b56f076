"""Simulated user that answers the agent between conversation turns."""

from __future__ import annotations

import logging

from .backends.base import AgentBackend
from .process import AbortScope

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


def build_persona_prompt(task: str, expected: str, agent_output: str) -> str:
    return (
        "You simulate a user in an automated eval. "
        f"The user's original task: {task}\n"
        f"Expected behavior: {expected}\n\n"
        f"The AI assistant just said:\n---\n{agent_output}\n---\n\n"
        "Reply as the user would: be concise, answer questions, provide requested info.\n"
        "If the task is fully complete and no further interaction is needed, "
        f"reply exactly: {DONE_SENTINEL}\n"
        "Return ONLY the user's reply text, nothing else."
    )


class PersonaSimulator:
    """Produces the next synthetic user message, or ``[DONE]``.

    A failed, timed-out or empty persona call yields ``[DONE]`` so that a
    broken persona ends the conversation instead of hanging it.
    """

    def __init__(
        self,
        backend: AgentBackend,
        timeout_seconds: float = 60.0,
        output_tail_chars: int = 2000,
    ) -> None:
        self._backend = backend
        self._timeout = timeout_seconds
        self._tail = output_tail_chars

    async def reply(
        self,
        task: str,
        expected_behavior: str,
        latest_agent_output: str,
        scope: AbortScope | None = None,
    ) -> str:
        prompt = build_persona_prompt(
            task, expected_behavior, latest_agent_output[-self._tail :]
        )
        result = await self._backend.ask(prompt, timeout=self._timeout, scope=scope)
        if not result.ok:
            logger.warning(
                "Persona call failed (%s); ending conversation",
                result.error or ("timeout" if result.timed_out else f"exit {result.returncode}"),
            )
            return DONE_SENTINEL
        reply = result.stdout.strip()
        return reply or DONE_SENTINEL
