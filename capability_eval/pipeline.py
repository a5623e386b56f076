"""Four-stage experiment pipeline: analysis, generation, execution, report.

Each stage owns one payload on the Experiment (components, scenarios, runs,
report). Rerunning a stage clears its own payload and every later one, and
needs explicit confirmation when later stages already hold data. Every
stage gets a fresh AbortScope; ``abort()`` kills whatever is in flight.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from .backends.base import AgentBackend
from .backends.claude_code import ClaudeCodeBackend
from .config import EvalConfig
from .conversation import ConversationRunner
from .discovery import ComponentDiscovery
from .errors import RerunConfirmationRequired, StageError
from .events import EventEmitter
from .generation import ScenarioSynthesizer
from .metrics import MetricsEngine
from .models import (
    STEP_ORDER,
    Component,
    ExecutionMode,
    Experiment,
    Report,
    Run,
    Scenario,
    Step,
    StepId,
    StepStatus,
)
from .orchestrator import ExecutionOrchestrator
from .process import AbortScope
from .store import EvalStore
from .workspace import WorkspaceIsolator

logger = logging.getLogger(__name__)


def downstream_steps(step_id: StepId) -> list[StepId]:
    return STEP_ORDER[STEP_ORDER.index(step_id) + 1 :]


def has_downstream_data(experiment: Experiment, step_id: StepId) -> bool:
    """True when a stage after ``step_id`` already holds results."""
    later = downstream_steps(step_id)
    if StepId.GENERATION in later and experiment.scenarios:
        return True
    if StepId.EXECUTION in later and experiment.runs:
        return True
    if StepId.REPORT in later and experiment.report is not None:
        return True
    return False


def clear_downstream(experiment: Experiment, step_id: StepId) -> None:
    """Reset ``step_id`` and every later stage to pending with empty payloads."""
    cleared = {step_id, *downstream_steps(step_id)}
    experiment.steps = [
        Step(id=s.id) if s.id in cleared else s for s in experiment.steps
    ]
    if StepId.ANALYSIS in cleared:
        experiment.components = []
    if StepId.GENERATION in cleared:
        experiment.scenarios = []
    if StepId.EXECUTION in cleared:
        experiment.runs = []
    if StepId.REPORT in cleared:
        experiment.report = None


class EvalPipeline:
    """Runs pipeline stages against stored experiments."""

    def __init__(
        self,
        config: EvalConfig,
        *,
        store: EvalStore | None = None,
        backend: AgentBackend | None = None,
        events: EventEmitter | None = None,
        isolator: WorkspaceIsolator | None = None,
    ) -> None:
        self._config = config
        self._store = store or EvalStore(config.data_root)
        self._backend = backend or ClaudeCodeBackend.from_config(config.agent)
        self._events = events or EventEmitter()
        self._isolator = isolator or WorkspaceIsolator(config.worktree_dir)
        self._scope: AbortScope | None = None

        self._discovery = ComponentDiscovery(self._backend, self._events)
        self._synthesizer = ScenarioSynthesizer(self._backend, self._events)
        runner = ConversationRunner.from_config(
            config, self._backend, self._store, self._events
        )
        self._orchestrator = ExecutionOrchestrator(
            self._backend,
            runner,
            isolator=self._isolator,
            events=self._events,
            parallel_workers=config.execution.parallel_workers,
            warmup_timeout_seconds=config.execution.warmup_timeout_seconds,
        )
        self._metrics = MetricsEngine(
            self._backend,
            self._store,
            events=self._events,
            transcript_chars=config.judge.transcript_chars,
            judge_timeout_seconds=config.judge.timeout_seconds,
        )

    @property
    def store(self) -> EvalStore:
        return self._store

    @property
    def running(self) -> bool:
        return self._scope is not None

    # -- lifecycle -----------------------------------------------------------

    def create_experiment(self, name: str, workspace: str) -> Experiment:
        experiment = Experiment.create(name, workspace)
        self._store.save_experiment(experiment)
        logger.info("Created experiment %s (%s)", experiment.name, experiment.id)
        return experiment

    def delete_experiment(self, experiment: Experiment) -> None:
        """Remove the experiment's worktree and stored data."""
        if experiment.workspace:
            self._isolator.teardown(experiment.workspace, experiment.id)
        self._store.delete_experiment(experiment.id)
        logger.info("Deleted experiment %s", experiment.id)

    def abort(self) -> None:
        """Kill the running stage's processes. No-op when idle."""
        if self._scope is not None:
            self._scope.abort()

    def select_components(
        self, experiment: Experiment, refs: list[str]
    ) -> list[Component]:
        """Select components matching ``refs`` by name or id prefix.

        An empty ``refs`` selects everything. Returns the selected components.
        """
        for comp in experiment.components:
            comp.selected = not refs or any(
                comp.name == ref or comp.id.startswith(ref) for ref in refs
            )
        self._store.save_experiment(experiment)
        return experiment.selected_components

    @contextmanager
    def _stage(
        self, experiment: Experiment, step_id: StepId, confirm: bool
    ) -> Iterator[AbortScope]:
        if has_downstream_data(experiment, step_id) and not confirm:
            raise RerunConfirmationRequired(
                step_id.value, [s.value for s in downstream_steps(step_id)]
            )
        clear_downstream(experiment, step_id)
        cleared = {step_id, *downstream_steps(step_id)}
        if StepId.EXECUTION in cleared:
            self._store.clear_runs(experiment.id)
        if StepId.REPORT in cleared:
            self._store.clear_report(experiment.id)
        step = experiment.step(step_id)
        step.status = StepStatus.RUNNING
        experiment.current_step = step_id
        self._store.save_experiment(experiment)

        scope = AbortScope()
        self._scope = scope
        logger.info("Stage %s started for %s", step_id.value, experiment.name)
        try:
            yield scope
        except StageError as e:
            step.status = StepStatus.ERROR
            step.error = e.message
            raise
        except Exception as e:
            step.status = StepStatus.ERROR
            step.error = str(e) or type(e).__name__
            raise
        else:
            if scope.aborted:
                logger.info("Stage %s aborted", step_id.value)
                step.status = StepStatus.PENDING
            else:
                step.status = StepStatus.COMPLETED
        finally:
            self._scope = None
            self._store.save_experiment(experiment)

    # -- stages --------------------------------------------------------------

    async def run_analysis(
        self, experiment: Experiment, *, confirm: bool = False
    ) -> list[Component]:
        with self._stage(experiment, StepId.ANALYSIS, confirm) as scope:
            experiment.components = await self._discovery.discover(
                experiment.workspace, scope
            )
        return experiment.components

    async def run_generation(
        self, experiment: Experiment, *, confirm: bool = False
    ) -> list[Scenario]:
        if not experiment.selected_components:
            raise self._fail(experiment, StepId.GENERATION, "No components selected")
        with self._stage(experiment, StepId.GENERATION, confirm) as scope:
            scenarios = await self._synthesizer.generate(
                experiment.components, experiment.workspace, scope
            )
            experiment.scenarios = scenarios
            if not scenarios and not scope.aborted:
                raise StageError(
                    StepId.GENERATION.value,
                    "No scenarios generated; rerun analysis or change the selection",
                )
        return experiment.scenarios

    async def run_execution(
        self,
        experiment: Experiment,
        mode: ExecutionMode = ExecutionMode.SEQUENTIAL,
        *,
        confirm: bool = False,
    ) -> list[Run]:
        if not experiment.enabled_scenarios:
            raise self._fail(experiment, StepId.EXECUTION, "No enabled scenarios to execute")
        with self._stage(experiment, StepId.EXECUTION, confirm) as scope:
            experiment.runs = await self._orchestrator.run(
                experiment.scenarios,
                experiment.workspace,
                experiment.id,
                mode,
                scope,
            )
        return experiment.runs

    async def run_evaluation(
        self, experiment: Experiment, *, confirm: bool = False
    ) -> Report | None:
        with self._stage(experiment, StepId.REPORT, confirm) as scope:
            report = await self._metrics.evaluate(
                experiment.id,
                experiment.scenarios,
                experiment.runs,
                experiment.components,
                scope,
            )
            if not scope.aborted:
                if report is None:
                    raise StageError(StepId.REPORT.value, "No runs to evaluate")
                experiment.report = report
        return experiment.report

    async def run_all(
        self,
        experiment: Experiment,
        mode: ExecutionMode = ExecutionMode.SEQUENTIAL,
    ) -> Report | None:
        """Run every stage in order, stopping after an aborted stage."""
        await self.run_analysis(experiment, confirm=True)
        if not self._completed(experiment, StepId.ANALYSIS):
            return None
        await self.run_generation(experiment, confirm=True)
        if not self._completed(experiment, StepId.GENERATION):
            return None
        await self.run_execution(experiment, mode, confirm=True)
        if not self._completed(experiment, StepId.EXECUTION):
            return None
        return await self.run_evaluation(experiment, confirm=True)

    @staticmethod
    def _completed(experiment: Experiment, step_id: StepId) -> bool:
        return experiment.step(step_id).status == StepStatus.COMPLETED

    def _fail(self, experiment: Experiment, step_id: StepId, message: str) -> StageError:
        step = experiment.step(step_id)
        step.status = StepStatus.ERROR
        step.error = message
        self._store.save_experiment(experiment)
        return StageError(step_id.value, message)
