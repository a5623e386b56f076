"""Capability evaluation for coding agents.

Discovers the auxiliary capabilities (hooks, tool servers, skills, slash
commands) an agent can reach in a workspace, generates scenarios for them,
runs every scenario with and without those capabilities, and scores the
difference.
"""

from .config import EvalConfig, get_config, reset_config
from .errors import EvalError, ExperimentNotFound, RerunConfirmationRequired, StageError
from .models import (
    Component,
    ComponentKind,
    ExecutionMode,
    Experiment,
    Report,
    Run,
    RunStatus,
    RunVariant,
    Scenario,
    ScenarioType,
)
from .pipeline import EvalPipeline
from .process import AbortScope

__all__ = [
    "AbortScope",
    "Component",
    "ComponentKind",
    "EvalConfig",
    "EvalError",
    "EvalPipeline",
    "ExecutionMode",
    "Experiment",
    "ExperimentNotFound",
    "Report",
    "RerunConfirmationRequired",
    "Run",
    "RunStatus",
    "RunVariant",
    "Scenario",
    "ScenarioType",
    "StageError",
    "get_config",
    "reset_config",
]
