"""Durable storage for experiments and their per-run artifacts.

Layout under the data root::

    <root>/<experiment-id>/experiment.json
    <root>/<experiment-id>/report.json
    <root>/<experiment-id>/runs/<run-id>.txt   full transcript
    <root>/<experiment-id>/logs/<run-id>.md    human-readable turn log
"""

from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path

from .errors import ExperimentNotFound
from .models import Experiment, Report

logger = logging.getLogger(__name__)


class EvalStore:
    """File-backed store keyed by experiment id and run id."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def experiment_dir(self, experiment_id: str) -> Path:
        return self._root / experiment_id

    # -- experiments ---------------------------------------------------------

    def list_experiments(self) -> list[Experiment]:
        if not self._root.is_dir():
            return []
        experiments = []
        for path in sorted(self._root.glob("*/experiment.json")):
            try:
                experiments.append(Experiment.from_dict(json.loads(path.read_text())))
            except (json.JSONDecodeError, KeyError, ValueError):
                logger.warning("Skipping unreadable experiment file %s", path)
        experiments.sort(key=lambda e: e.created_at)
        return experiments

    def load_experiment(self, experiment_id: str) -> Experiment:
        path = self.experiment_dir(experiment_id) / "experiment.json"
        if not path.exists():
            raise ExperimentNotFound(experiment_id)
        return Experiment.from_dict(json.loads(path.read_text()))

    def find_experiment(self, ref: str) -> Experiment:
        """Load by full id, unique id prefix, or exact name."""
        path = self.experiment_dir(ref) / "experiment.json"
        if path.exists():
            return self.load_experiment(ref)
        matches = [
            e for e in self.list_experiments() if e.id.startswith(ref) or e.name == ref
        ]
        if len(matches) != 1:
            raise ExperimentNotFound(ref)
        return matches[0]

    def save_experiment(self, experiment: Experiment) -> None:
        exp_dir = self.experiment_dir(experiment.id)
        exp_dir.mkdir(parents=True, exist_ok=True)
        (exp_dir / "experiment.json").write_text(
            json.dumps(experiment.to_dict(), indent=2), encoding="utf-8"
        )

    def delete_experiment(self, experiment_id: str) -> None:
        exp_dir = self.experiment_dir(experiment_id)
        if exp_dir.exists():
            shutil.rmtree(exp_dir, ignore_errors=True)

    # -- run artifacts -------------------------------------------------------

    def save_transcript(self, experiment_id: str, run_id: str, transcript: str) -> Path:
        runs_dir = self.experiment_dir(experiment_id) / "runs"
        runs_dir.mkdir(parents=True, exist_ok=True)
        path = runs_dir / f"{run_id}.txt"
        path.write_text(transcript, encoding="utf-8")
        return path

    def load_transcript(self, experiment_id: str, run_id: str) -> str:
        path = self.experiment_dir(experiment_id) / "runs" / f"{run_id}.txt"
        if not path.exists():
            return ""
        return path.read_text(encoding="utf-8")

    def save_conversation_log(self, experiment_id: str, run_id: str, log: str) -> Path:
        logs_dir = self.experiment_dir(experiment_id) / "logs"
        logs_dir.mkdir(parents=True, exist_ok=True)
        path = logs_dir / f"{run_id}.md"
        path.write_text(log, encoding="utf-8")
        return path

    def clear_runs(self, experiment_id: str) -> None:
        """Drop every stored transcript and conversation log."""
        exp_dir = self.experiment_dir(experiment_id)
        for name in ("runs", "logs"):
            shutil.rmtree(exp_dir / name, ignore_errors=True)

    def clear_report(self, experiment_id: str) -> None:
        (self.experiment_dir(experiment_id) / "report.json").unlink(missing_ok=True)

    def save_report(self, experiment_id: str, report: Report) -> Path:
        exp_dir = self.experiment_dir(experiment_id)
        exp_dir.mkdir(parents=True, exist_ok=True)
        path = exp_dir / "report.json"
        path.write_text(json.dumps(report.to_dict(), indent=2), encoding="utf-8")
        return path
