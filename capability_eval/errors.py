"""Exceptions raised by the evaluation pipeline."""

from __future__ import annotations


class EvalError(Exception):
    """Base class for pipeline errors."""


class ExperimentNotFound(EvalError, LookupError):
    """No stored experiment matches the given reference."""


class StageError(EvalError):
    """A pipeline stage failed; the step is marked ``error``."""

    def __init__(self, step: str, message: str) -> None:
        super().__init__(f"{step}: {message}")
        self.step = step
        self.message = message


class RerunConfirmationRequired(EvalError):
    """Rerunning a stage would discard later stages' results."""

    def __init__(self, step: str, downstream: list[str]) -> None:
        super().__init__(
            f"Rerunning {step} clears results of: {', '.join(downstream)}"
        )
        self.step = step
        self.downstream = downstream
