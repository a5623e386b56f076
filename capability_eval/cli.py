"""Command-line interface for capability evaluation.

Usage:
    capeval new <name> <workspace>
    capeval list
    capeval show <experiment>
    capeval discover <experiment> [--yes]
    capeval select <experiment> [<component> ...]
    capeval generate <experiment> [--yes]
    capeval execute <experiment> [--mode sequential|parallel] [--yes]
    capeval evaluate <experiment> [--yes]
    capeval run <experiment> [--mode sequential|parallel]
    capeval export <experiment> [--output <dir>]
    capeval delete <experiment>

Experiments are referenced by id, unique id prefix, or name. Ctrl-C during a
stage aborts it: live agent processes are killed and the stage returns to
pending.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from .config import get_config
from .errors import EvalError, ExperimentNotFound, RerunConfirmationRequired
from .events import EventEmitter, ProgressEvent, ProgressKind
from .models import ExecutionMode, Experiment, RunStatus
from .pipeline import EvalPipeline
from .reports.generator import ReportGenerator

logger = logging.getLogger(__name__)


def _print_progress(verbose: bool) -> Callable[[ProgressEvent], None]:
    def listener(event: ProgressEvent) -> None:
        if event.kind == ProgressKind.DISCOVERY:
            sys.stderr.write(event.text)
        elif event.kind in (ProgressKind.GENERATION, ProgressKind.EVALUATION):
            if verbose:
                sys.stderr.write(event.text)
        elif event.kind == ProgressKind.RUN_STARTED:
            logger.info("run %s started (%s)", event.run_id[:8], event.variant)
        elif event.kind == ProgressKind.RUN_STATUS:
            if RunStatus(event.status).is_terminal:
                logger.info("run %s %s", event.run_id[:8], event.status)

    return listener


def _run_stage(pipeline: EvalPipeline, stage: Callable[[], Awaitable[Any]]) -> Any:
    """Run one async stage with Ctrl-C wired to the pipeline's abort."""

    async def runner() -> Any:
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, pipeline.abort)
        except (NotImplementedError, RuntimeError):
            logger.debug("SIGINT handler unavailable; Ctrl-C will not abort cleanly")
        try:
            return await stage()
        finally:
            try:
                loop.remove_signal_handler(signal.SIGINT)
            except (NotImplementedError, RuntimeError):
                pass

    return asyncio.run(runner())


def _mode(args: argparse.Namespace) -> ExecutionMode:
    return ExecutionMode(args.mode)


def _summary(experiment: Experiment) -> str:
    steps = " ".join(f"{s.id.value}={s.status.value}" for s in experiment.steps)
    return f"{experiment.id[:8]}  {experiment.name:<24} {steps}"


# -- commands -----------------------------------------------------------------


def cmd_new(args: argparse.Namespace, pipeline: EvalPipeline) -> int:
    workspace = str(Path(args.workspace).expanduser().resolve())
    experiment = pipeline.create_experiment(args.name, workspace)
    print(experiment.id)
    return 0


def cmd_list(args: argparse.Namespace, pipeline: EvalPipeline) -> int:
    experiments = pipeline.store.list_experiments()
    if not experiments:
        print("No experiments.")
    for experiment in experiments:
        print(_summary(experiment))
    return 0


def cmd_show(args: argparse.Namespace, pipeline: EvalPipeline) -> int:
    experiment = pipeline.store.find_experiment(args.experiment)
    print(_summary(experiment))
    print(f"Workspace: {experiment.workspace}")
    for step in experiment.steps:
        if step.error:
            print(f"  {step.id.value} error: {step.error}")

    print(f"\nComponents ({len(experiment.selected_components)}/{len(experiment.components)} selected):")
    for comp in experiment.components:
        mark = "x" if comp.selected else " "
        print(f"  [{mark}] {comp.id[:8]}  {comp.kind.value:<13} {comp.name}")

    print(f"\nScenarios ({len(experiment.enabled_scenarios)} enabled):")
    for scenario in experiment.scenarios:
        print(f"  {scenario.type.value:<11} {scenario.component_name}: {scenario.prompt[:70]}")

    if experiment.runs:
        done = sum(1 for r in experiment.runs if r.status.is_terminal)
        failed = sum(1 for r in experiment.runs if r.status == RunStatus.ERROR)
        print(f"\nRuns: {len(experiment.runs)} ({done} finished, {failed} failed)")

    report = experiment.report
    if report is not None:
        print(
            f"\nReport: score {report.overall_score:.1f}/10, lift {report.tool_lift_score:+.1f}, "
            f"trigger rate {report.trigger_rate:.0%}, accuracy {report.accuracy:.0%}, "
            f"cost ${report.total_cost:.4f}"
        )
    return 0


def cmd_discover(args: argparse.Namespace, pipeline: EvalPipeline) -> int:
    experiment = pipeline.store.find_experiment(args.experiment)
    components = _run_stage(
        pipeline, lambda: pipeline.run_analysis(experiment, confirm=args.yes)
    )
    for comp in components:
        print(f"{comp.id[:8]}  {comp.kind.value:<13} {comp.name}")
    return 0


def cmd_select(args: argparse.Namespace, pipeline: EvalPipeline) -> int:
    experiment = pipeline.store.find_experiment(args.experiment)
    selected = pipeline.select_components(experiment, args.components)
    print(f"{len(selected)} of {len(experiment.components)} components selected")
    return 0


def cmd_generate(args: argparse.Namespace, pipeline: EvalPipeline) -> int:
    experiment = pipeline.store.find_experiment(args.experiment)
    scenarios = _run_stage(
        pipeline, lambda: pipeline.run_generation(experiment, confirm=args.yes)
    )
    print(f"{len(scenarios)} scenarios generated")
    return 0


def cmd_execute(args: argparse.Namespace, pipeline: EvalPipeline) -> int:
    experiment = pipeline.store.find_experiment(args.experiment)
    runs = _run_stage(
        pipeline,
        lambda: pipeline.run_execution(experiment, _mode(args), confirm=args.yes),
    )
    failed = sum(1 for r in runs if r.status == RunStatus.ERROR)
    print(f"{len(runs)} runs finished ({failed} failed)")
    return 0


def cmd_evaluate(args: argparse.Namespace, pipeline: EvalPipeline) -> int:
    experiment = pipeline.store.find_experiment(args.experiment)
    report = _run_stage(
        pipeline, lambda: pipeline.run_evaluation(experiment, confirm=args.yes)
    )
    if report is not None:
        print(
            f"Score {report.overall_score:.1f}/10, lift {report.tool_lift_score:+.1f}, "
            f"cost ${report.total_cost:.4f}"
        )
    return 0


def cmd_run(args: argparse.Namespace, pipeline: EvalPipeline) -> int:
    experiment = pipeline.store.find_experiment(args.experiment)
    report = _run_stage(pipeline, lambda: pipeline.run_all(experiment, _mode(args)))
    if report is None:
        print("Pipeline stopped before the report stage")
        return 1
    print(
        f"Score {report.overall_score:.1f}/10, lift {report.tool_lift_score:+.1f}, "
        f"cost ${report.total_cost:.4f}"
    )
    return 0


def cmd_export(args: argparse.Namespace, pipeline: EvalPipeline) -> int:
    experiment = pipeline.store.find_experiment(args.experiment)
    output = args.output or pipeline.store.experiment_dir(experiment.id)
    md_path, json_path = ReportGenerator(output).generate(experiment)
    print(md_path)
    print(json_path)
    return 0


def cmd_delete(args: argparse.Namespace, pipeline: EvalPipeline) -> int:
    experiment = pipeline.store.find_experiment(args.experiment)
    pipeline.delete_experiment(experiment)
    print(f"Deleted {experiment.name}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="capeval",
        description="Measure how much an agent's auxiliary capabilities help",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    new_parser = subparsers.add_parser("new", help="Create an experiment")
    new_parser.add_argument("name", help="Experiment name")
    new_parser.add_argument("workspace", help="Workspace directory to evaluate")
    new_parser.set_defaults(func=cmd_new)

    list_parser = subparsers.add_parser("list", help="List experiments")
    list_parser.set_defaults(func=cmd_list)

    show_parser = subparsers.add_parser("show", help="Show an experiment")
    show_parser.add_argument("experiment")
    show_parser.set_defaults(func=cmd_show)

    discover_parser = subparsers.add_parser("discover", help="Run component discovery")
    discover_parser.add_argument("experiment")
    discover_parser.add_argument("--yes", action="store_true", help="Confirm clearing later stages")
    discover_parser.set_defaults(func=cmd_discover)

    select_parser = subparsers.add_parser("select", help="Choose components to evaluate")
    select_parser.add_argument("experiment")
    select_parser.add_argument(
        "components", nargs="*", help="Component names or id prefixes (default: all)"
    )
    select_parser.set_defaults(func=cmd_select)

    generate_parser = subparsers.add_parser("generate", help="Generate scenarios")
    generate_parser.add_argument("experiment")
    generate_parser.add_argument("--yes", action="store_true", help="Confirm clearing later stages")
    generate_parser.set_defaults(func=cmd_generate)

    execute_parser = subparsers.add_parser("execute", help="Execute scenario runs")
    execute_parser.add_argument("experiment")
    execute_parser.add_argument(
        "--mode",
        choices=[m.value for m in ExecutionMode],
        default=ExecutionMode.SEQUENTIAL.value,
    )
    execute_parser.add_argument("--yes", action="store_true", help="Confirm clearing later stages")
    execute_parser.set_defaults(func=cmd_execute)

    evaluate_parser = subparsers.add_parser("evaluate", help="Score runs and write the report")
    evaluate_parser.add_argument("experiment")
    evaluate_parser.add_argument("--yes", action="store_true", help="Confirm replacing the report")
    evaluate_parser.set_defaults(func=cmd_evaluate)

    run_parser = subparsers.add_parser("run", help="Run every stage in order")
    run_parser.add_argument("experiment")
    run_parser.add_argument(
        "--mode",
        choices=[m.value for m in ExecutionMode],
        default=ExecutionMode.SEQUENTIAL.value,
    )
    run_parser.set_defaults(func=cmd_run)

    export_parser = subparsers.add_parser("export", help="Write markdown and JSON reports")
    export_parser.add_argument("experiment")
    export_parser.add_argument("--output", type=Path, help="Output directory")
    export_parser.set_defaults(func=cmd_export)

    delete_parser = subparsers.add_parser("delete", help="Delete an experiment")
    delete_parser.add_argument("experiment")
    delete_parser.set_defaults(func=cmd_delete)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO, format="%(message)s"
    )

    config = get_config()
    pipeline = EvalPipeline(config, events=EventEmitter(_print_progress(args.verbose)))

    try:
        return args.func(args, pipeline)
    except ExperimentNotFound as e:
        print(f"Error: experiment not found: {e}", file=sys.stderr)
        return 1
    except RerunConfirmationRequired as e:
        print(f"{e}. Pass --yes to continue.", file=sys.stderr)
        return 2
    except EvalError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
