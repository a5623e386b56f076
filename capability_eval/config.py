"""Configuration for capability evaluation runs.

Environment variables:
    CAPEVAL_CONFIG: Path to a YAML config file (optional)
    CAPEVAL_AGENT_COMMAND: Agent CLI executable (default: "claude")
    CAPEVAL_DATA_ROOT: Where transcripts, logs and reports are written
        (default: ~/.capeval/evals)
    CAPEVAL_MAX_TURNS: Maximum request/response turns per run (default: 10)
    CAPEVAL_TURN_TIMEOUT: Per-turn timeout in seconds (default: 600)
    CAPEVAL_PARALLEL_WORKERS: Worker pool size in parallel mode (default: 3)
    CAPEVAL_PERSONA_TIMEOUT: Persona call timeout in seconds (default: 60)

Values from the YAML file are applied first; environment variables override
them.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_DATA_ROOT = Path.home() / ".capeval" / "evals"


@dataclass
class AgentConfig:
    """How to invoke the coding-agent CLI."""

    command: str = "claude"
    args: list[str] = field(default_factory=list)  # Prepended to every invocation
    env: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AgentConfig:
        return cls(
            command=data.get("command", "claude"),
            args=list(data.get("args", [])),
            env=dict(data.get("env", {})),
        )


@dataclass
class ExecutionConfig:
    """Turn loop and worker pool limits."""

    max_turns: int = 10
    turn_timeout_seconds: float = 600.0
    warmup_timeout_seconds: float = 600.0
    parallel_workers: int = 3
    status_throttle_seconds: float = 1.0
    transcript_tail_chars: int = 4000

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExecutionConfig:
        return cls(
            max_turns=int(data.get("max_turns", 10)),
            turn_timeout_seconds=float(data.get("turn_timeout_seconds", 600.0)),
            warmup_timeout_seconds=float(data.get("warmup_timeout_seconds", 600.0)),
            parallel_workers=int(data.get("parallel_workers", 3)),
            status_throttle_seconds=float(data.get("status_throttle_seconds", 1.0)),
            transcript_tail_chars=int(data.get("transcript_tail_chars", 4000)),
        )


@dataclass
class PersonaConfig:
    """Simulated-user settings."""

    timeout_seconds: float = 60.0
    output_tail_chars: int = 2000

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PersonaConfig:
        return cls(
            timeout_seconds=float(data.get("timeout_seconds", 60.0)),
            output_tail_chars=int(data.get("output_tail_chars", 2000)),
        )


@dataclass
class JudgeConfig:
    """LLM judge settings for the scoring pass."""

    transcript_chars: int = 2000
    timeout_seconds: float | None = None  # None waits for the judge indefinitely

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JudgeConfig:
        timeout = data.get("timeout_seconds")
        return cls(
            transcript_chars=int(data.get("transcript_chars", 2000)),
            timeout_seconds=float(timeout) if timeout is not None else None,
        )


@dataclass
class EvalConfig:
    """Complete configuration for the evaluation pipeline."""

    agent: AgentConfig = field(default_factory=AgentConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    persona: PersonaConfig = field(default_factory=PersonaConfig)
    judge: JudgeConfig = field(default_factory=JudgeConfig)
    data_root: Path = field(default_factory=lambda: DEFAULT_DATA_ROOT)
    worktree_dir: str = ".capeval-worktrees"

    @classmethod
    def from_yaml(cls, path: str | Path) -> EvalConfig:
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EvalConfig:
        data_root = data.get("data_root")
        return cls(
            agent=AgentConfig.from_dict(data.get("agent", {})),
            execution=ExecutionConfig.from_dict(data.get("execution", {})),
            persona=PersonaConfig.from_dict(data.get("persona", {})),
            judge=JudgeConfig.from_dict(data.get("judge", {})),
            data_root=Path(data_root).expanduser() if data_root else DEFAULT_DATA_ROOT,
            worktree_dir=data.get("worktree_dir", ".capeval-worktrees"),
        )

    @classmethod
    def from_env(cls) -> EvalConfig:
        """Load configuration from CAPEVAL_CONFIG (if set) plus env overrides."""
        config_path = os.environ.get("CAPEVAL_CONFIG")
        if config_path:
            logger.debug("Loading config from %s", config_path)
            config = cls.from_yaml(config_path)
        else:
            config = cls()

        env = os.environ
        if "CAPEVAL_AGENT_COMMAND" in env:
            config.agent.command = env["CAPEVAL_AGENT_COMMAND"]
        if "CAPEVAL_DATA_ROOT" in env:
            config.data_root = Path(env["CAPEVAL_DATA_ROOT"]).expanduser()
        if "CAPEVAL_MAX_TURNS" in env:
            config.execution.max_turns = int(env["CAPEVAL_MAX_TURNS"])
        if "CAPEVAL_TURN_TIMEOUT" in env:
            config.execution.turn_timeout_seconds = float(env["CAPEVAL_TURN_TIMEOUT"])
        if "CAPEVAL_PARALLEL_WORKERS" in env:
            config.execution.parallel_workers = int(env["CAPEVAL_PARALLEL_WORKERS"])
        if "CAPEVAL_PERSONA_TIMEOUT" in env:
            config.persona.timeout_seconds = float(env["CAPEVAL_PERSONA_TIMEOUT"])
        return config


# Global config instance (lazy-loaded)
_config: EvalConfig | None = None


def get_config() -> EvalConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = EvalConfig.from_env()
    return _config


def reset_config() -> None:
    """Reset the global configuration (for testing)."""
    global _config
    _config = None
