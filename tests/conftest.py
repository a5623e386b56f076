"""Pytest fixtures for capability evaluation tests."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from capability_eval.config import reset_config
from capability_eval.models import (
    Component,
    ComponentKind,
    Scenario,
    ScenarioType,
)
from capability_eval.store import EvalStore

FAKE_AGENT = Path(__file__).parent / "fake_agent.py"

_ENV_VARS = (
    "CAPEVAL_CONFIG",
    "CAPEVAL_AGENT_COMMAND",
    "CAPEVAL_DATA_ROOT",
    "CAPEVAL_MAX_TURNS",
    "CAPEVAL_TURN_TIMEOUT",
    "CAPEVAL_PARALLEL_WORKERS",
    "CAPEVAL_PERSONA_TIMEOUT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the caller's CAPEVAL_* settings out of tests."""
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    yield
    reset_config()


@pytest.fixture
def fake_agent_argv() -> list[str]:
    """Command plus leading args that run the fake agent script."""
    return [sys.executable, str(FAKE_AGENT)]


@pytest.fixture
def store(tmp_path) -> EvalStore:
    return EvalStore(tmp_path / "evals")


@pytest.fixture
def component() -> Component:
    return Component(
        id="comp-1",
        kind=ComponentKind.TOOL_SERVER,
        name="docs-server",
        description="Searches documentation",
        triggers=["mcp__docs__search", "mcp__docs__fetch"],
    )


@pytest.fixture
def scenarios(component) -> list[Scenario]:
    """One scenario of each type for ``component``."""
    return [
        Scenario(
            id=f"scn-{kind.value}",
            component_id=component.id,
            type=kind,
            prompt=f"{kind.value} prompt",
            expected_behavior="uses the docs server" if kind != ScenarioType.NEGATIVE else "does not",
            component_name=component.name,
            component_triggers=list(component.triggers),
        )
        for kind in ScenarioType
    ]
