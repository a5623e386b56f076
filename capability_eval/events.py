"""Progress events pushed to whoever is watching a pipeline run.

Events are fire-and-forget: a failing listener is logged and ignored so it
can never stall the pipeline.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class ProgressKind(str, Enum):
    DISCOVERY = "discovery"  # free-form progress text
    GENERATION = "generation"  # raw generation output chunk
    RUN_STARTED = "run_started"
    RUN_STATUS = "run_status"
    EVALUATION = "evaluation"  # raw judge output chunk


@dataclass(frozen=True)
class ProgressEvent:
    kind: ProgressKind
    text: str = ""
    run_id: str = ""
    scenario_id: str = ""
    variant: str = ""
    status: str = ""


EventListener = Callable[[ProgressEvent], None]


class EventEmitter:
    """Delivers events to an optional listener."""

    def __init__(self, listener: EventListener | None = None) -> None:
        self._listener = listener

    def emit(self, event: ProgressEvent) -> None:
        if self._listener is None:
            return
        try:
            self._listener(event)
        except Exception:  # noqa: BLE001
            logger.warning("Progress listener failed on %s event", event.kind.value, exc_info=True)

    def text(self, kind: ProgressKind, text: str) -> None:
        self.emit(ProgressEvent(kind=kind, text=text))

    def run_started(self, run_id: str, scenario_id: str, variant: str) -> None:
        self.emit(
            ProgressEvent(
                kind=ProgressKind.RUN_STARTED,
                run_id=run_id,
                scenario_id=scenario_id,
                variant=variant,
            )
        )

    def run_status(self, run_id: str, status: str, transcript: str) -> None:
        self.emit(
            ProgressEvent(
                kind=ProgressKind.RUN_STATUS, run_id=run_id, status=status, text=transcript
            )
        )


class StatusThrottle:
    """Last-emit-timestamp gate: admits at most one emission per interval."""

    def __init__(
        self,
        interval_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._interval = interval_seconds
        self._clock = clock
        self._last: float | None = None

    def ready(self) -> bool:
        now = self._clock()
        if self._last is None or now - self._last > self._interval:
            self._last = now
            return True
        return False
