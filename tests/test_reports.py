"""Tests for markdown and JSON report export."""

import json

import pytest

from capability_eval.errors import EvalError
from capability_eval.models import (
    ComponentMetrics,
    Experiment,
    Report,
    Run,
    RunVariant,
    ScenarioResult,
    TokenUsage,
)
from capability_eval.reports import ReportGenerator
from capability_eval.reports.generator import variant_usage


@pytest.fixture
def experiment(component, scenarios) -> Experiment:
    exp = Experiment.create("docs eval", "/repo")
    exp.components = [component]
    exp.scenarios = scenarios
    scenarios[3].enabled = False
    exp.runs = [
        Run(
            id=f"{s.id}-{variant.value}",
            scenario_id=s.id,
            variant=variant,
            token_usage=TokenUsage(input_tokens=100, output_tokens=50),
            cost_usd=0.02 if variant == RunVariant.WITH_TOOLS else 0.01,
            duration_seconds=4.0,
        )
        for s in scenarios
        for variant in (RunVariant.WITH_TOOLS, RunVariant.WITHOUT_TOOLS)
    ]
    exp.report = Report(
        overall_score=7.5,
        trigger_rate=2 / 3,
        accuracy=1.0,
        avg_quality=7.5,
        tool_lift_score=-0.5,
        total_cost=0.24,
        component_metrics=[
            ComponentMetrics(
                component_id=component.id,
                trigger_rate=2 / 3,
                accuracy=1.0,
                avg_quality=7.5,
                scenario_results=[
                    ScenarioResult(
                        scenarios[0].id, 8, 6, 2, correct_tool_used=True, task_completed=True
                    ),
                    ScenarioResult(scenarios[1].id, 7, 10, -3),
                    ScenarioResult("ghost", 0, 0, 0),
                ],
            )
        ],
        generated_at="2026-01-01T00:00:00+00:00",
    )
    return exp


class TestVariantUsage:
    def test_totals_and_average(self):
        runs = [
            Run(id="a", scenario_id="s", variant=RunVariant.WITH_TOOLS,
                token_usage=TokenUsage(10, 5), cost_usd=0.5, duration_seconds=2.0),
            Run(id="b", scenario_id="s", variant=RunVariant.WITH_TOOLS,
                token_usage=TokenUsage(1, 1), cost_usd=0.25, duration_seconds=4.0),
        ]
        usage = variant_usage(runs)
        assert usage.total_tokens == 17
        assert usage.cost_usd == 0.75
        assert usage.avg_duration == 3.0

    def test_empty(self):
        assert variant_usage([]).avg_duration == 0.0


class TestReportGenerator:
    def test_markdown_sections(self, experiment, tmp_path):
        md = ReportGenerator(tmp_path).render_markdown(experiment)

        assert md.startswith("# Capability Eval Report: docs eval")
        assert "| Overall Score | 7.5 / 10 |" in md
        assert "| Tool Lift | -0.5 |" in md
        assert "| Trigger Rate | 67% |" in md
        assert "| Total Tokens | 450 | 450 |" in md
        assert "| Cost | $0.0600 | $0.0300 |" in md
        assert "| docs-server | 67% | 100% | 7.5 | -0.3 | 3 |" in md
        assert '- **direct**: "direct prompt"' in md
        assert "With tools: 8/10 | Without: 6/10 | Lift: +2.0" in md
        assert "Tool used: yes | Completed: yes" in md
        assert "ghost" not in md

    def test_json_export(self, experiment, tmp_path):
        data = ReportGenerator(tmp_path).render_json(experiment)

        assert data["summary"]["overall_score"] == 7.5
        assert data["resource_usage"]["with_tools"]["runs"] == 3
        assert data["resource_usage"]["without_tools"]["cost_usd"] == pytest.approx(0.03)
        component = data["components"][0]
        assert component["name"] == "docs-server"
        assert component["scenarios"][0]["type"] == "direct"
        assert component["scenarios"][2]["prompt"] is None

    def test_generate_writes_both_files(self, experiment, tmp_path):
        md_path, json_path = ReportGenerator(tmp_path / "out").generate(experiment)
        assert md_path.read_text().startswith("# Capability Eval Report")
        assert json.loads(json_path.read_text())["name"] == "docs eval"

    def test_no_report_raises(self, experiment, tmp_path):
        experiment.report = None
        with pytest.raises(EvalError):
            ReportGenerator(tmp_path).generate(experiment)
        assert ReportGenerator(tmp_path).render_markdown(experiment) == ""
