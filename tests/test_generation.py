"""Tests for scenario synthesis."""

import json

import pytest

from capability_eval.events import EventEmitter, ProgressKind
from capability_eval.generation import (
    ScenarioSynthesizer,
    build_generation_prompt,
    scenarios_from_reply,
)
from capability_eval.models import Component, ComponentKind, ScenarioType
from capability_eval.process import ProcessResult
from fakes import FakeBackend


def reply_for(name: str) -> str:
    return json.dumps(
        [
            {"componentId": name, "type": kind, "prompt": f"{kind} task", "expectedBehavior": "ok"}
            for kind in ("direct", "paraphrased", "edge_case", "negative")
        ]
    )


class TestGenerationPrompt:
    def test_lists_components_and_rules(self, component):
        prompt = build_generation_prompt([component], "/repo")
        assert "Workspace: /repo" in prompt
        assert '- [tool_server] "docs-server"' in prompt
        assert "mcp__docs__search, mcp__docs__fetch" in prompt
        assert "exactly 4 scenarios" in prompt


class TestScenariosFromReply:
    def test_resolves_component_by_name(self, component):
        scenarios = scenarios_from_reply(reply_for("docs-server"), [component])

        assert [s.type for s in scenarios] == list(ScenarioType)
        assert all(s.component_id == "comp-1" for s in scenarios)
        assert all(s.component_name == "docs-server" for s in scenarios)
        assert scenarios[0].component_triggers == component.triggers
        assert scenarios[0].expected_behavior == "ok"
        assert all(s.enabled for s in scenarios)

    def test_unmatched_name_kept_raw(self, component):
        (scenario,) = scenarios_from_reply(
            '[{"componentId": "ghost", "type": "direct", "prompt": "p"}]', [component]
        )
        assert scenario.component_id == "ghost"
        assert scenario.component_name == "ghost"
        assert scenario.component_triggers == []

    def test_unknown_type_becomes_direct(self, component):
        (scenario,) = scenarios_from_reply(
            '[{"componentId": "docs-server", "type": "weird", "prompt": "p"}]', [component]
        )
        assert scenario.type == ScenarioType.DIRECT

    def test_invalid_items_dropped(self, component):
        raw = json.dumps(
            [
                {"componentId": "docs-server", "type": "direct"},
                {"componentId": "docs-server", "type": "direct", "prompt": ""},
                {"componentId": "docs-server", "type": "negative", "prompt": "fine"},
            ]
        )
        assert [s.prompt for s in scenarios_from_reply(raw, [component])] == ["fine"]

    def test_unparseable_reply(self, component):
        assert scenarios_from_reply("Sorry, I cannot help.", [component]) == []


class TestScenarioSynthesizer:
    @pytest.mark.asyncio
    async def test_only_selected_components_sent(self, component):
        other = Component(id="comp-2", kind=ComponentKind.SKILL, name="/lint", selected=False)
        backend = FakeBackend(ask=lambda prompt: reply_for("docs-server"))

        scenarios = await ScenarioSynthesizer(backend).generate([component, other], "/repo")

        assert len(scenarios) == 4
        assert '"docs-server"' in backend.ask_prompts[0]
        assert "/lint" not in backend.ask_prompts[0]

    @pytest.mark.asyncio
    async def test_nothing_selected_skips_agent(self, component):
        component.selected = False
        backend = FakeBackend()
        assert await ScenarioSynthesizer(backend).generate([component], "/repo") == []
        assert backend.ask_prompts == []

    @pytest.mark.asyncio
    async def test_streams_generation_text(self, component):
        seen = []
        backend = FakeBackend(ask=lambda prompt: reply_for("docs-server"))
        await ScenarioSynthesizer(backend, EventEmitter(seen.append)).generate([component], "/repo")
        chunks = [e.text for e in seen if e.kind == ProgressKind.GENERATION]
        assert "".join(chunks) == reply_for("docs-server")

    @pytest.mark.asyncio
    async def test_spawn_failure_is_empty(self, component):
        backend = FakeBackend(ask=lambda prompt: ProcessResult(error="Command not found: claude"))
        assert await ScenarioSynthesizer(backend).generate([component], "/repo") == []

    @pytest.mark.asyncio
    async def test_nonzero_exit_still_parsed(self, component):
        backend = FakeBackend(
            ask=lambda prompt: ProcessResult(stdout=reply_for("docs-server"), returncode=1)
        )
        assert len(await ScenarioSynthesizer(backend).generate([component], "/repo")) == 4
