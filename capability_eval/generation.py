"""Scenario synthesis: four natural-language test prompts per component."""

from __future__ import annotations

import logging
from typing import Any

from .backends.base import AgentBackend
from .events import EventEmitter, ProgressKind
from .models import Component, Scenario, ScenarioType, new_id
from .parsing import extract_json_array, valid_items
from .process import AbortScope

logger = logging.getLogger(__name__)

SCENARIO_ITEM_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["prompt", "type"],
    "properties": {
        "componentId": {"type": ["string", "null"]},
        "type": {"type": "string", "minLength": 1},
        "prompt": {"type": "string", "minLength": 1},
        "expectedBehavior": {"type": ["string", "null"]},
    },
}


def build_generation_prompt(components: list[Component], workspace: str) -> str:
    comp_list = "\n".join(
        f'- [{c.kind.value}] "{c.name}": {c.description} (triggers: {", ".join(c.triggers)})'
        for c in components
    )
    return (
        "You are generating test scenarios for evaluating Claude Code tool usage.\n"
        f"Workspace: {workspace}\n\n"
        f"Components to test:\n{comp_list}\n\n"
        "For EACH component, generate exactly 4 scenarios with these types:\n"
        '1. "direct" - A straightforward task that SHOULD trigger the component\n'
        '2. "paraphrased" - Same intent but phrased very differently\n'
        '3. "edge_case" - An unusual or boundary scenario\n'
        '4. "negative" - A prompt that should NOT trigger the component\n\n'
        "CRITICAL RULES:\n"
        "- Write prompts as NATURAL LANGUAGE only. A real user describing their task.\n"
        "- NEVER use slash commands (e.g. /skill-name) in prompts.\n"
        "- NEVER mention tool names, skill names, or component names in prompts.\n"
        "- The prompt should describe WHAT the user wants done, not HOW to do it.\n"
        "- The eval measures whether Claude discovers and uses the right tool on its own.\n\n"
        'Good: "I have a COCO dataset with images and labels, can you load it for analysis?"\n'
        'Bad: "/fiftyone-dataset-import load my COCO dataset"\n'
        'Bad: "Use the fiftyone import tool to load my dataset"\n\n'
        "Return ONLY a valid JSON array of objects with these fields:\n"
        '- "componentId": the component name (matching exactly from the list above)\n'
        '- "type": one of "direct", "paraphrased", "edge_case", "negative"\n'
        '- "prompt": the natural language test prompt\n'
        '- "expectedBehavior": what should happen (tool triggered or not, expected outcome)\n\n'
        "Return ONLY the JSON array, no markdown fences, no other text."
    )


def scenarios_from_reply(raw: str, components: list[Component]) -> list[Scenario]:
    """Resolve generated items against ``components``; empty on parse failure.

    ``componentId`` in the reply is a component *name*. Unmatched names are
    kept as the raw string so no scenario is silently dropped.
    """
    items = extract_json_array(raw)
    if items is None:
        logger.warning("No JSON array in scenario generation reply")
        return []

    by_name = {c.name: c for c in components}
    scenarios = []
    for item in valid_items(items, SCENARIO_ITEM_SCHEMA):
        ref = item.get("componentId") or ""
        comp = by_name.get(ref)
        scenarios.append(
            Scenario(
                id=new_id(),
                component_id=comp.id if comp else ref,
                type=ScenarioType.coerce(item["type"]),
                prompt=item["prompt"],
                expected_behavior=item.get("expectedBehavior") or "",
                component_name=comp.name if comp else ref,
                component_triggers=list(comp.triggers) if comp else [],
            )
        )
    return scenarios


class ScenarioSynthesizer:
    """Asks the agent to write scenarios for the selected components."""

    def __init__(self, backend: AgentBackend, events: EventEmitter | None = None) -> None:
        self._backend = backend
        self._events = events or EventEmitter()

    async def generate(
        self,
        components: list[Component],
        workspace: str,
        scope: AbortScope | None = None,
    ) -> list[Scenario]:
        selected = [c for c in components if c.selected]
        if not selected:
            return []

        result = await self._backend.ask(
            build_generation_prompt(selected, workspace),
            cwd=workspace or None,
            on_output=lambda text: self._events.text(ProgressKind.GENERATION, text),
            scope=scope,
        )
        if result.error or result.cancelled:
            logger.warning("Scenario generation call failed: %s", result.error or "aborted")
            return []

        scenarios = scenarios_from_reply(result.stdout, selected)
        logger.info(
            "Generated %d scenarios for %d components", len(scenarios), len(selected)
        )
        return scenarios
