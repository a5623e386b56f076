"""Scoring: deterministic trigger accounting, then an LLM judge pass.

The deterministic pass decides whether each component fired from recorded
tool invocations alone. The judge pass scores both variants' transcripts
1-10 and the difference becomes the scenario's tool lift.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from .backends.base import AgentBackend
from .events import EventEmitter, ProgressKind
from .models import (
    Component,
    ComponentMetrics,
    Report,
    Run,
    RunStatus,
    RunVariant,
    Scenario,
    ScenarioResult,
    ScenarioType,
)
from .parsing import extract_json_array
from .process import AbortScope
from .store import EvalStore

logger = logging.getLogger(__name__)

SCENARIO_SEPARATOR = "\n---\n"


def find_run(runs: list[Run], scenario_id: str, variant: RunVariant) -> Run | None:
    for run in runs:
        if run.scenario_id == scenario_id and run.variant == variant:
            return run
    return None


def deterministic_pass(
    scenarios: list[Scenario],
    runs: list[Run],
    components: list[Component],
) -> list[ComponentMetrics]:
    """Trigger counts and accuracy for every component with enabled scenarios.

    A scenario without a with-tools run counts as not triggered.
    """
    enabled = [s for s in scenarios if s.enabled]
    evaluated_ids = {s.component_id for s in enabled}
    metrics_by_id = {
        c.id: ComponentMetrics(component_id=c.id)
        for c in components
        if c.id in evaluated_ids
    }
    triggers = dict.fromkeys(metrics_by_id, 0)

    for scenario in enabled:
        with_run = find_run(runs, scenario.id, RunVariant.WITH_TOOLS)
        triggered = bool(with_run and with_run.tool_invocations)
        result = ScenarioResult(
            scenario_id=scenario.id,
            correct_tool_used=triggered and scenario.type != ScenarioType.NEGATIVE,
            task_completed=with_run is not None and with_run.status == RunStatus.COMPLETED,
        )

        metrics = metrics_by_id.get(scenario.component_id)
        if metrics is None:
            continue
        if scenario.type == ScenarioType.NEGATIVE and triggered:
            metrics.false_positives += 1
        if scenario.type != ScenarioType.NEGATIVE and not triggered:
            metrics.false_negatives += 1
        if triggered:
            triggers[scenario.component_id] += 1
        metrics.scenario_results.append(result)

    for component_id, metrics in metrics_by_id.items():
        total = len(metrics.scenario_results)
        if total:
            metrics.trigger_rate = triggers[component_id] / total
            correct = total - metrics.false_positives - metrics.false_negatives
            metrics.accuracy = correct / total

    return list(metrics_by_id.values())


def build_judge_prompt(
    scenarios: list[Scenario],
    runs: list[Run],
    transcript_for: Callable[[Run], str],
    excerpt_chars: int = 2000,
) -> str:
    """Judge prompt covering every enabled scenario, in submission order.

    ``transcript_for(run)`` returns the fullest available transcript text.
    """

    def excerpt(run: Run | None) -> str:
        if run is None:
            return "No run"
        return transcript_for(run)[:excerpt_chars]

    pairs = []
    for s in scenarios:
        if not s.enabled:
            continue
        with_run = find_run(runs, s.id, RunVariant.WITH_TOOLS)
        without_run = find_run(runs, s.id, RunVariant.WITHOUT_TOOLS)
        pairs.append(
            f"## Scenario: {s.prompt}\nType: {s.type.value}\nExpected: {s.expected_behavior}\n\n"
            f"### With Tools:\n{excerpt(with_run)}\n\n"
            f"### Without Tools:\n{excerpt(without_run)}"
        )

    return (
        "You are an evaluator scoring Claude Code runs. For each scenario pair, score both "
        "runs 1-10 on correctness, quality, and task completion.\n\n"
        f"{SCENARIO_SEPARATOR.join(pairs)}\n\n"
        'Return ONLY a JSON array: [{"prompt":"...","withToolsScore":N,'
        '"withoutToolsScore":N,"quality":N}]. No other text.'
    )


def _score(entry: Any, key: str) -> float:
    if not isinstance(entry, dict):
        return 0.0
    value = entry.get(key)
    if isinstance(value, bool) or not isinstance(value, int | float):
        return 0.0
    return float(value)


def align_judge_scores(
    scenarios: list[Scenario],
    metrics: list[ComponentMetrics],
    scores: list[Any],
) -> None:
    """Apply judge scores to scenario results by position.

    Entry ``i`` belongs to the ``i``-th enabled scenario. Extra entries are
    ignored and a short list leaves the tail at zero. A judge that reorders
    or drops entries therefore mis-scores silently; matching on the echoed
    prompt would fix that.
    """
    enabled = [s for s in scenarios if s.enabled]
    results_by_scenario = {
        r.scenario_id: r for m in metrics for r in m.scenario_results
    }
    for scenario, entry in zip(enabled, scores):
        result = results_by_scenario.get(scenario.id)
        if result is None:
            continue
        result.with_tools_score = _score(entry, "withToolsScore")
        result.without_tools_score = _score(entry, "withoutToolsScore")
        result.tool_lift = result.with_tools_score - result.without_tools_score

    for m in metrics:
        if m.scenario_results:
            m.avg_quality = sum(r.with_tools_score for r in m.scenario_results) / len(
                m.scenario_results
            )


def reduce_report(metrics: list[ComponentMetrics], runs: list[Run]) -> Report:
    """Component means for score, trigger rate and accuracy.

    Tool lift is averaged over all scenario results flattened, not per
    component.
    """
    n = len(metrics) or 1
    all_results = [r for m in metrics for r in m.scenario_results]
    avg_quality = sum(m.avg_quality for m in metrics) / n
    return Report(
        overall_score=avg_quality,
        trigger_rate=sum(m.trigger_rate for m in metrics) / n,
        accuracy=sum(m.accuracy for m in metrics) / n,
        avg_quality=avg_quality,
        tool_lift_score=(
            sum(r.tool_lift for r in all_results) / len(all_results) if all_results else 0.0
        ),
        total_cost=sum(r.cost_usd for r in runs),
        component_metrics=metrics,
    )


class MetricsEngine:
    """Runs both scoring passes and persists the resulting report."""

    def __init__(
        self,
        backend: AgentBackend,
        store: EvalStore,
        *,
        events: EventEmitter | None = None,
        transcript_chars: int = 2000,
        judge_timeout_seconds: float | None = None,
    ) -> None:
        self._backend = backend
        self._store = store
        self._events = events or EventEmitter()
        self._transcript_chars = transcript_chars
        self._judge_timeout = judge_timeout_seconds

    async def evaluate(
        self,
        experiment_id: str,
        scenarios: list[Scenario],
        runs: list[Run],
        components: list[Component],
        scope: AbortScope | None = None,
    ) -> Report | None:
        """Score the runs. Returns None when there is nothing to score.

        Only runs in a terminal state are scored; total cost still covers
        every run. An aborted judge pass also returns None and leaves any
        stored report untouched.
        """
        if not runs:
            return None
        scored_runs = [r for r in runs if r.status.is_terminal]

        metrics = deterministic_pass(scenarios, scored_runs, components)
        await self._judge_pass(experiment_id, scenarios, scored_runs, metrics, scope)
        if scope is not None and scope.aborted:
            logger.info("Evaluation of %s aborted; report not written", experiment_id)
            return None

        report = reduce_report(metrics, runs)
        path = self._store.save_report(experiment_id, report)
        logger.info(
            "Report written to %s (score %.1f, lift %+.1f)",
            path, report.overall_score, report.tool_lift_score,
        )
        return report

    async def _judge_pass(
        self,
        experiment_id: str,
        scenarios: list[Scenario],
        runs: list[Run],
        metrics: list[ComponentMetrics],
        scope: AbortScope | None,
    ) -> None:
        def transcript_for(run: Run) -> str:
            return self._store.load_transcript(experiment_id, run.id) or run.transcript

        prompt = build_judge_prompt(scenarios, runs, transcript_for, self._transcript_chars)
        result = await self._backend.ask(
            prompt,
            timeout=self._judge_timeout,
            on_output=lambda text: self._events.text(ProgressKind.EVALUATION, text),
            scope=scope,
        )
        if result.error or result.timed_out or result.cancelled:
            logger.warning("Judge call failed: %s", result.error or "timeout or abort")
            return

        scores = extract_json_array(result.stdout)
        if scores is None:
            logger.warning("Judge reply contained no JSON array; scores stay at 0")
            return
        enabled = sum(1 for s in scenarios if s.enabled)
        if len(scores) != enabled:
            logger.warning(
                "Judge returned %d score entries for %d scenarios", len(scores), enabled
            )
        align_judge_scores(scenarios, metrics, scores)
