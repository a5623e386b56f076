"""Execution orchestrator: runs every enabled scenario in both variants.

Flow: isolate workspace -> warm up agent -> expand tasks -> worker pool.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from .backends.base import AgentBackend
from .conversation import ConversationRunner
from .events import EventEmitter
from .models import ExecutionMode, Run, RunStatus, RunVariant, Scenario, new_id
from .process import AbortScope
from .workspace import WorkspaceIsolator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunTask:
    scenario: Scenario
    variant: RunVariant


def expand_tasks(scenarios: list[Scenario]) -> list[RunTask]:
    """Two tasks per enabled scenario, with-tools first."""
    return [
        RunTask(scenario, variant)
        for scenario in scenarios
        if scenario.enabled
        for variant in (RunVariant.WITH_TOOLS, RunVariant.WITHOUT_TOOLS)
    ]


class ExecutionOrchestrator:
    """Drives a batch of conversation runs through a bounded worker pool."""

    def __init__(
        self,
        backend: AgentBackend,
        runner: ConversationRunner,
        *,
        isolator: WorkspaceIsolator | None = None,
        events: EventEmitter | None = None,
        parallel_workers: int = 3,
        warmup_timeout_seconds: float = 600.0,
    ) -> None:
        self._backend = backend
        self._runner = runner
        self._isolator = isolator
        self._events = events or EventEmitter()
        self._parallel_workers = max(1, parallel_workers)
        self._warmup_timeout = warmup_timeout_seconds

    async def prepare_workspace(self, workspace: str, experiment_id: str) -> str:
        """Isolated worktree path, or ``workspace`` itself when isolation fails."""
        if self._isolator is None:
            return workspace
        result = await asyncio.to_thread(self._isolator.setup, workspace, experiment_id)
        if not result.success:
            logger.warning(
                "Workspace isolation failed (%s); running against %s directly",
                result.error, workspace,
            )
            return workspace
        return result.path

    async def run(
        self,
        scenarios: list[Scenario],
        workspace: str,
        experiment_id: str,
        mode: ExecutionMode = ExecutionMode.SEQUENTIAL,
        scope: AbortScope | None = None,
    ) -> list[Run]:
        """Execute all tasks; returns runs in completion order."""
        scope = scope or AbortScope()
        cwd = await self.prepare_workspace(workspace, experiment_id)

        warmup = await self._backend.warm_up(cwd, timeout=self._warmup_timeout, scope=scope)
        if not warmup.ok:
            logger.warning(
                "Agent warm-up failed (%s); continuing",
                warmup.error or ("timeout" if warmup.timed_out else f"exit {warmup.returncode}"),
            )

        if scope.aborted:
            logger.info("Execution aborted before any run started")
            return []

        tasks = expand_tasks(scenarios)
        workers = 1 if mode == ExecutionMode.SEQUENTIAL else self._parallel_workers
        workers = min(workers, len(tasks))
        logger.info(
            "Executing %d runs (%s, %d worker(s)) in %s", len(tasks), mode.value, workers, cwd
        )

        runs: list[Run] = []
        next_index = 0

        async def worker() -> None:
            nonlocal next_index
            while not scope.aborted and next_index < len(tasks):
                task = tasks[next_index]
                next_index += 1
                runs.append(await self._execute(task, cwd, experiment_id, scope))

        await asyncio.gather(*(worker() for _ in range(workers)))
        return runs

    async def _execute(
        self, task: RunTask, cwd: str, experiment_id: str, scope: AbortScope
    ) -> Run:
        run_id = new_id()
        self._events.run_started(run_id, task.scenario.id, task.variant.value)
        try:
            return await self._runner.run(
                task.scenario, task.variant, cwd, experiment_id, run_id=run_id, scope=scope
            )
        except Exception as e:
            logger.exception("Run %s failed: %s", run_id, e)
            self._events.run_status(run_id, RunStatus.ERROR.value, str(e))
            return Run(
                id=run_id,
                scenario_id=task.scenario.id,
                variant=task.variant,
                status=RunStatus.ERROR,
                error=str(e),
            )
