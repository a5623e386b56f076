"""Data model for capability evaluation experiments.

Components are discovered capabilities, scenarios are test prompts for one
component, runs are executed (scenario, variant) conversations, and reports
aggregate the scored comparison of both variants.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class ComponentKind(str, Enum):
    """Kinds of auxiliary capability an agent can discover."""

    HOOK = "hook"
    TOOL_SERVER = "tool_server"
    SLASH_COMMAND = "slash_command"
    SKILL = "skill"
    TOOL = "tool"

    @classmethod
    def parse(cls, value: Any, default: ComponentKind) -> ComponentKind:
        """Coerce an agent-reported kind, accepting the MCP alias."""
        if value == "mcp_server":
            return cls.TOOL_SERVER
        try:
            return cls(value)
        except ValueError:
            return default


class ScenarioType(str, Enum):
    DIRECT = "direct"
    PARAPHRASED = "paraphrased"
    EDGE_CASE = "edge_case"
    NEGATIVE = "negative"  # Component must NOT trigger

    @classmethod
    def coerce(cls, value: Any) -> ScenarioType:
        try:
            return cls(value)
        except ValueError:
            return cls.DIRECT


class RunVariant(str, Enum):
    WITH_TOOLS = "with_tools"
    WITHOUT_TOOLS = "without_tools"


class RunStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.ERROR)


class ExecutionMode(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


class StepId(str, Enum):
    ANALYSIS = "analysis"
    GENERATION = "generation"
    EXECUTION = "execution"
    REPORT = "report"


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


STEP_ORDER: list[StepId] = [
    StepId.ANALYSIS,
    StepId.GENERATION,
    StepId.EXECUTION,
    StepId.REPORT,
]


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Component:
    """A discoverable capability (hook, tool server, skill, command)."""

    id: str
    kind: ComponentKind
    name: str
    description: str = ""
    triggers: list[str] = field(default_factory=list)
    selected: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "name": self.name,
            "description": self.description,
            "triggers": list(self.triggers),
            "selected": self.selected,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Component:
        return cls(
            id=data["id"],
            kind=ComponentKind(data["kind"]),
            name=data["name"],
            description=data.get("description", ""),
            triggers=list(data.get("triggers", [])),
            selected=data.get("selected", True),
        )


@dataclass
class Scenario:
    """One test case for exactly one component.

    The component name and trigger identifiers are snapshotted at generation
    time so later component edits do not change what the scenario blocks.
    """

    id: str
    component_id: str
    type: ScenarioType
    prompt: str
    expected_behavior: str = ""
    enabled: bool = True
    component_name: str = ""
    component_triggers: list[str] = field(default_factory=list)

    @property
    def expects_trigger(self) -> bool:
        return self.type != ScenarioType.NEGATIVE

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "component_id": self.component_id,
            "type": self.type.value,
            "prompt": self.prompt,
            "expected_behavior": self.expected_behavior,
            "enabled": self.enabled,
            "component_name": self.component_name,
            "component_triggers": list(self.component_triggers),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Scenario:
        return cls(
            id=data["id"],
            component_id=data["component_id"],
            type=ScenarioType.coerce(data.get("type")),
            prompt=data["prompt"],
            expected_behavior=data.get("expected_behavior", ""),
            enabled=data.get("enabled", True),
            component_name=data.get("component_name", ""),
            component_triggers=list(data.get("component_triggers", [])),
        )


@dataclass
class ToolInvocation:
    """A tool call observed in the agent's event stream."""

    tool_name: str
    timestamp: float = field(default_factory=time.time)
    input: str = ""  # JSON-encoded, truncated
    output: str = ""  # truncated
    success: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool_name": self.tool_name,
            "timestamp": self.timestamp,
            "input": self.input,
            "output": self.output,
            "success": self.success,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolInvocation:
        return cls(
            tool_name=data["tool_name"],
            timestamp=data.get("timestamp", 0.0),
            input=data.get("input", ""),
            output=data.get("output", ""),
            success=data.get("success", True),
        )


@dataclass
class TokenUsage:
    """Token usage reported by the agent's terminal result event."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read: int = 0
    cache_write: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_read=self.cache_read + other.cache_read,
            cache_write=self.cache_write + other.cache_write,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "cache_read": self.cache_read,
            "cache_write": self.cache_write,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenUsage:
        return cls(
            input_tokens=int(data.get("input_tokens", 0)),
            output_tokens=int(data.get("output_tokens", 0)),
            cache_read=int(data.get("cache_read", 0)),
            cache_write=int(data.get("cache_write", 0)),
        )


@dataclass
class Run:
    """One executed attempt of a (scenario, variant) pair."""

    id: str
    scenario_id: str
    variant: RunVariant
    session_id: str = ""
    status: RunStatus = RunStatus.QUEUED
    transcript: str = ""  # tail only; the full text is persisted per run
    tool_invocations: list[ToolInvocation] = field(default_factory=list)
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    cost_usd: float = 0.0
    duration_seconds: float = 0.0
    turns: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "scenario_id": self.scenario_id,
            "variant": self.variant.value,
            "session_id": self.session_id,
            "status": self.status.value,
            "transcript": self.transcript,
            "tool_invocations": [t.to_dict() for t in self.tool_invocations],
            "token_usage": self.token_usage.to_dict(),
            "cost_usd": self.cost_usd,
            "duration_seconds": self.duration_seconds,
            "turns": self.turns,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Run:
        return cls(
            id=data["id"],
            scenario_id=data["scenario_id"],
            variant=RunVariant(data["variant"]),
            session_id=data.get("session_id", ""),
            status=RunStatus(data.get("status", "queued")),
            transcript=data.get("transcript", ""),
            tool_invocations=[
                ToolInvocation.from_dict(t) for t in data.get("tool_invocations", [])
            ],
            token_usage=TokenUsage.from_dict(data.get("token_usage", {})),
            cost_usd=data.get("cost_usd", 0.0),
            duration_seconds=data.get("duration_seconds", 0.0),
            turns=data.get("turns", 0),
            error=data.get("error"),
        )


@dataclass
class ScenarioResult:
    """Scored outcome of one scenario, derived from its two runs."""

    scenario_id: str
    with_tools_score: float = 0.0
    without_tools_score: float = 0.0
    tool_lift: float = 0.0
    correct_tool_used: bool = False
    task_completed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "scenario_id": self.scenario_id,
            "with_tools_score": self.with_tools_score,
            "without_tools_score": self.without_tools_score,
            "tool_lift": self.tool_lift,
            "correct_tool_used": self.correct_tool_used,
            "task_completed": self.task_completed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScenarioResult:
        return cls(
            scenario_id=data["scenario_id"],
            with_tools_score=data.get("with_tools_score", 0.0),
            without_tools_score=data.get("without_tools_score", 0.0),
            tool_lift=data.get("tool_lift", 0.0),
            correct_tool_used=data.get("correct_tool_used", False),
            task_completed=data.get("task_completed", False),
        )


@dataclass
class ComponentMetrics:
    """Aggregate over one component's evaluated scenarios."""

    component_id: str
    trigger_rate: float = 0.0
    accuracy: float = 0.0
    avg_quality: float = 0.0
    false_positives: int = 0
    false_negatives: int = 0
    scenario_results: list[ScenarioResult] = field(default_factory=list)

    @property
    def avg_tool_lift(self) -> float:
        if not self.scenario_results:
            return 0.0
        return sum(r.tool_lift for r in self.scenario_results) / len(
            self.scenario_results
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "component_id": self.component_id,
            "trigger_rate": self.trigger_rate,
            "accuracy": self.accuracy,
            "avg_quality": self.avg_quality,
            "false_positives": self.false_positives,
            "false_negatives": self.false_negatives,
            "scenario_results": [r.to_dict() for r in self.scenario_results],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ComponentMetrics:
        return cls(
            component_id=data["component_id"],
            trigger_rate=data.get("trigger_rate", 0.0),
            accuracy=data.get("accuracy", 0.0),
            avg_quality=data.get("avg_quality", 0.0),
            false_positives=data.get("false_positives", 0),
            false_negatives=data.get("false_negatives", 0),
            scenario_results=[
                ScenarioResult.from_dict(r) for r in data.get("scenario_results", [])
            ],
        )


@dataclass
class Report:
    """One evaluation of an experiment. Replaced wholesale, never patched."""

    overall_score: float
    trigger_rate: float
    accuracy: float
    avg_quality: float
    tool_lift_score: float
    total_cost: float
    component_metrics: list[ComponentMetrics] = field(default_factory=list)
    generated_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall_score": self.overall_score,
            "trigger_rate": self.trigger_rate,
            "accuracy": self.accuracy,
            "avg_quality": self.avg_quality,
            "tool_lift_score": self.tool_lift_score,
            "total_cost": self.total_cost,
            "component_metrics": [m.to_dict() for m in self.component_metrics],
            "generated_at": self.generated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Report:
        return cls(
            overall_score=data.get("overall_score", 0.0),
            trigger_rate=data.get("trigger_rate", 0.0),
            accuracy=data.get("accuracy", 0.0),
            avg_quality=data.get("avg_quality", 0.0),
            tool_lift_score=data.get("tool_lift_score", 0.0),
            total_cost=data.get("total_cost", 0.0),
            component_metrics=[
                ComponentMetrics.from_dict(m) for m in data.get("component_metrics", [])
            ],
            generated_at=data.get("generated_at", ""),
        )


@dataclass
class Step:
    id: StepId
    status: StepStatus = StepStatus.PENDING
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id.value, "status": self.status.value, "error": self.error}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Step:
        return cls(
            id=StepId(data["id"]),
            status=StepStatus(data.get("status", "pending")),
            error=data.get("error"),
        )


def default_steps() -> list[Step]:
    return [Step(id=step_id) for step_id in STEP_ORDER]


@dataclass
class Experiment:
    """Top-level aggregate: one workspace evaluated through four stages."""

    id: str
    name: str
    workspace: str
    created_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    current_step: StepId = StepId.ANALYSIS
    steps: list[Step] = field(default_factory=default_steps)
    components: list[Component] = field(default_factory=list)
    scenarios: list[Scenario] = field(default_factory=list)
    runs: list[Run] = field(default_factory=list)
    report: Report | None = None

    @classmethod
    def create(cls, name: str, workspace: str) -> Experiment:
        return cls(id=new_id(), name=name, workspace=workspace)

    def step(self, step_id: StepId) -> Step:
        for step in self.steps:
            if step.id == step_id:
                return step
        step = Step(id=step_id)
        self.steps.append(step)
        return step

    @property
    def enabled_scenarios(self) -> list[Scenario]:
        return [s for s in self.scenarios if s.enabled]

    @property
    def selected_components(self) -> list[Component]:
        return [c for c in self.components if c.selected]

    def component_name(self, component_id: str) -> str:
        for comp in self.components:
            if comp.id == component_id:
                return comp.name
        return component_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "workspace": self.workspace,
            "created_at": self.created_at,
            "current_step": self.current_step.value,
            "steps": [s.to_dict() for s in self.steps],
            "components": [c.to_dict() for c in self.components],
            "scenarios": [s.to_dict() for s in self.scenarios],
            "runs": [r.to_dict() for r in self.runs],
            "report": self.report.to_dict() if self.report else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Experiment:
        report = data.get("report")
        return cls(
            id=data["id"],
            name=data["name"],
            workspace=data["workspace"],
            created_at=data.get("created_at", ""),
            current_step=StepId(data.get("current_step", "analysis")),
            steps=[Step.from_dict(s) for s in data.get("steps", [])] or default_steps(),
            components=[Component.from_dict(c) for c in data.get("components", [])],
            scenarios=[Scenario.from_dict(s) for s in data.get("scenarios", [])],
            runs=[Run.from_dict(r) for r in data.get("runs", [])],
            report=Report.from_dict(report) if report else None,
        )
