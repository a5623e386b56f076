"""Tests for the file-backed experiment store."""

import pytest

from capability_eval.errors import ExperimentNotFound
from capability_eval.models import (
    Experiment,
    Report,
    Run,
    RunStatus,
    RunVariant,
    StepId,
    StepStatus,
    TokenUsage,
    ToolInvocation,
)
from capability_eval.store import EvalStore


class TestExperiments:
    def test_save_and_load_preserves_nested_data(self, store, component, scenarios):
        experiment = Experiment.create("demo", "/repo")
        experiment.components = [component]
        experiment.scenarios = scenarios
        experiment.runs = [
            Run(
                id="run-1",
                scenario_id=scenarios[0].id,
                variant=RunVariant.WITHOUT_TOOLS,
                status=RunStatus.ERROR,
                tool_invocations=[ToolInvocation(tool_name="Read", success=False)],
                token_usage=TokenUsage(input_tokens=3, cache_read=7),
                error="Turn timeout (600s)",
            )
        ]
        experiment.step(StepId.ANALYSIS).status = StepStatus.COMPLETED
        store.save_experiment(experiment)

        loaded = store.load_experiment(experiment.id)

        assert loaded.name == "demo"
        assert loaded.components[0].triggers == component.triggers
        assert loaded.scenarios[2].component_name == "docs-server"
        run = loaded.runs[0]
        assert run.variant == RunVariant.WITHOUT_TOOLS
        assert run.status == RunStatus.ERROR
        assert run.tool_invocations[0].success is False
        assert run.token_usage.cache_read == 7
        assert loaded.step(StepId.ANALYSIS).status == StepStatus.COMPLETED
        assert loaded.report is None

    def test_missing_experiment(self, store):
        with pytest.raises(ExperimentNotFound):
            store.load_experiment("nope")

    def test_list_skips_unreadable(self, store):
        store.save_experiment(Experiment.create("a", "/a"))
        broken = store.root / "broken"
        broken.mkdir()
        (broken / "experiment.json").write_text("{")
        assert [e.name for e in store.list_experiments()] == ["a"]

    def test_list_empty_root(self, tmp_path):
        assert EvalStore(tmp_path / "missing").list_experiments() == []

    def test_find_by_prefix_and_name(self, store):
        experiment = Experiment.create("alpha", "/a")
        store.save_experiment(experiment)
        store.save_experiment(Experiment.create("beta", "/b"))

        assert store.find_experiment(experiment.id).id == experiment.id
        assert store.find_experiment(experiment.id[:8]).id == experiment.id
        assert store.find_experiment("alpha").id == experiment.id
        with pytest.raises(ExperimentNotFound):
            store.find_experiment("gamma")

    def test_delete_is_idempotent(self, store):
        experiment = Experiment.create("a", "/a")
        store.save_experiment(experiment)
        store.delete_experiment(experiment.id)
        store.delete_experiment(experiment.id)
        assert not store.experiment_dir(experiment.id).exists()


class TestArtifacts:
    def test_transcript_round_trip(self, store):
        path = store.save_transcript("exp", "run", "line 1\nline 2")
        assert path.name == "run.txt"
        assert store.load_transcript("exp", "run") == "line 1\nline 2"

    def test_missing_transcript_is_empty(self, store):
        assert store.load_transcript("exp", "nope") == ""

    def test_conversation_log_and_report(self, store):
        log_path = store.save_conversation_log("exp", "run", "# Eval Run: run")
        assert log_path.parent.name == "logs"

        report = Report(
            overall_score=7.5, trigger_rate=0.5, accuracy=1.0,
            avg_quality=7.5, tool_lift_score=2.0, total_cost=0.1,
        )
        report_path = store.save_report("exp", report)
        assert report_path == store.experiment_dir("exp") / "report.json"
        assert '"overall_score": 7.5' in report_path.read_text()

    def test_clear_runs_and_report(self, store):
        store.save_transcript("exp", "run", "text")
        store.save_conversation_log("exp", "run", "# Eval Run: run")
        store.save_report("exp", Report(
            overall_score=1.0, trigger_rate=0.0, accuracy=0.0,
            avg_quality=1.0, tool_lift_score=0.0, total_cost=0.0,
        ))

        store.clear_runs("exp")
        store.clear_report("exp")
        store.clear_report("exp")

        assert store.load_transcript("exp", "run") == ""
        assert not (store.experiment_dir("exp") / "logs").exists()
        assert not (store.experiment_dir("exp") / "report.json").exists()
