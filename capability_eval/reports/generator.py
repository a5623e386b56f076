"""Report generator for evaluated experiments.

Produces a markdown summary and a JSON export with headline metrics,
per-variant resource usage, a per-component table and scenario details.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..errors import EvalError
from ..models import ComponentMetrics, Experiment, Run, RunVariant


@dataclass
class VariantUsage:
    """Token, cost and duration totals for one variant's runs."""

    runs: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    duration_seconds: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def avg_duration(self) -> float:
        return self.duration_seconds / self.runs if self.runs else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "runs": self.runs,
            "total_tokens": self.total_tokens,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "cost_usd": self.cost_usd,
            "avg_duration_seconds": self.avg_duration,
        }


def variant_usage(runs: list[Run]) -> VariantUsage:
    usage = VariantUsage()
    for run in runs:
        usage.runs += 1
        usage.input_tokens += run.token_usage.input_tokens
        usage.output_tokens += run.token_usage.output_tokens
        usage.cost_usd += run.cost_usd
        usage.duration_seconds += run.duration_seconds
    return usage


def _signed(value: float) -> str:
    return f"{'+' if value > 0 else ''}{value:.1f}"


class ReportGenerator:
    """Writes markdown and JSON exports of an experiment's report."""

    def __init__(self, output_dir: str | Path) -> None:
        self._output_dir = Path(output_dir)

    def generate(self, experiment: Experiment) -> tuple[Path, Path]:
        """Generate both exports.

        Returns:
            Tuple of (markdown_path, json_path).

        Raises:
            EvalError: The experiment has not been evaluated yet.
        """
        if experiment.report is None:
            raise EvalError(f"Experiment {experiment.name} has no report")
        self._output_dir.mkdir(parents=True, exist_ok=True)

        md_path = self._output_dir / "report.md"
        json_path = self._output_dir / "report-export.json"
        md_path.write_text(self.render_markdown(experiment), encoding="utf-8")
        json_path.write_text(
            json.dumps(self.render_json(experiment), indent=2), encoding="utf-8"
        )
        return md_path, json_path

    @staticmethod
    def _usage_by_variant(experiment: Experiment) -> tuple[VariantUsage, VariantUsage]:
        enabled_ids = {s.id for s in experiment.scenarios if s.enabled}
        runs = [r for r in experiment.runs if r.scenario_id in enabled_ids]
        return (
            variant_usage([r for r in runs if r.variant == RunVariant.WITH_TOOLS]),
            variant_usage([r for r in runs if r.variant == RunVariant.WITHOUT_TOOLS]),
        )

    def render_markdown(self, experiment: Experiment) -> str:
        report = experiment.report
        if report is None:
            return ""
        with_usage, without_usage = self._usage_by_variant(experiment)

        lines = [
            f"# Capability Eval Report: {experiment.name}",
            f"> Generated: {report.generated_at}",
            f"> Workspace: {experiment.workspace}",
            "",
            "## Summary",
            "",
            "| Metric | Value |",
            "|--------|-------|",
            f"| Overall Score | {report.overall_score:.1f} / 10 |",
            f"| Tool Lift | {_signed(report.tool_lift_score)} |",
            f"| Trigger Rate | {report.trigger_rate:.0%} |",
            f"| Accuracy | {report.accuracy:.0%} |",
            f"| Total Cost | ${report.total_cost:.4f} |",
            "",
            "## Resource Usage",
            "",
            "| Metric | With Tools | Without Tools |",
            "|--------|-----------|---------------|",
            f"| Total Tokens | {with_usage.total_tokens:,} | {without_usage.total_tokens:,} |",
            f"| Input Tokens | {with_usage.input_tokens:,} | {without_usage.input_tokens:,} |",
            f"| Output Tokens | {with_usage.output_tokens:,} | {without_usage.output_tokens:,} |",
            f"| Cost | ${with_usage.cost_usd:.4f} | ${without_usage.cost_usd:.4f} |",
            f"| Avg Duration | {with_usage.avg_duration:.1f}s | {without_usage.avg_duration:.1f}s |",
            "",
            "## Components",
            "",
            "| Component | Trigger Rate | Accuracy | Quality | Tool Lift | Scenarios |",
            "|-----------|-------------|----------|---------|-----------|-----------|",
        ]
        for m in report.component_metrics:
            lines.append(
                f"| {experiment.component_name(m.component_id)} | {m.trigger_rate:.0%} "
                f"| {m.accuracy:.0%} | {m.avg_quality:.1f} | {_signed(m.avg_tool_lift)} "
                f"| {len(m.scenario_results)} |"
            )

        lines += ["", "## Scenario Details", ""]
        scenarios = {s.id: s for s in experiment.scenarios}
        for m in report.component_metrics:
            lines.append(f"### {experiment.component_name(m.component_id)}")
            lines.append("")
            for sr in m.scenario_results:
                scenario = scenarios.get(sr.scenario_id)
                if scenario is None:
                    continue
                lines.append(f'- **{scenario.type.value}**: "{scenario.prompt}"')
                lines.append(
                    f"  - With tools: {sr.with_tools_score:g}/10 "
                    f"| Without: {sr.without_tools_score:g}/10 "
                    f"| Lift: {_signed(sr.tool_lift)}"
                )
                lines.append(
                    f"  - Tool used: {'yes' if sr.correct_tool_used else 'no'} "
                    f"| Completed: {'yes' if sr.task_completed else 'no'}"
                )
            lines.append("")

        return "\n".join(lines)

    def render_json(self, experiment: Experiment) -> dict[str, Any]:
        report = experiment.report
        if report is None:
            return {}
        with_usage, without_usage = self._usage_by_variant(experiment)
        scenarios = {s.id: s for s in experiment.scenarios}

        def component_entry(m: ComponentMetrics) -> dict[str, Any]:
            return {
                "name": experiment.component_name(m.component_id),
                "trigger_rate": m.trigger_rate,
                "accuracy": m.accuracy,
                "avg_quality": m.avg_quality,
                "tool_lift": m.avg_tool_lift,
                "scenarios": [
                    {
                        "type": scenarios[sr.scenario_id].type.value
                        if sr.scenario_id in scenarios else None,
                        "prompt": scenarios[sr.scenario_id].prompt
                        if sr.scenario_id in scenarios else None,
                        "with_tools_score": sr.with_tools_score,
                        "without_tools_score": sr.without_tools_score,
                        "tool_lift": sr.tool_lift,
                        "task_completed": sr.task_completed,
                    }
                    for sr in m.scenario_results
                ],
            }

        return {
            "name": experiment.name,
            "workspace": experiment.workspace,
            "generated_at": report.generated_at,
            "summary": {
                "overall_score": report.overall_score,
                "tool_lift": report.tool_lift_score,
                "trigger_rate": report.trigger_rate,
                "accuracy": report.accuracy,
                "total_cost": report.total_cost,
            },
            "resource_usage": {
                "with_tools": with_usage.to_dict(),
                "without_tools": without_usage.to_dict(),
            },
            "components": [component_entry(m) for m in report.component_metrics],
        }
