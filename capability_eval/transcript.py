"""Size-bounded live transcript of a running conversation."""

from __future__ import annotations

from collections import deque

MAX_LINE_CHARS = 500
MAX_TOTAL_CHARS = 50_000
MIN_RETAINED_LINES = 20


class LiveTranscript:
    """Append-only text buffer that evicts its oldest lines past a budget.

    Each stored line is at most ``max_line_chars`` long. Once the running
    total exceeds ``max_total_chars`` lines are dropped from the front, but
    never below ``min_lines`` retained lines.
    """

    def __init__(
        self,
        max_total_chars: int = MAX_TOTAL_CHARS,
        max_line_chars: int = MAX_LINE_CHARS,
        min_lines: int = MIN_RETAINED_LINES,
    ) -> None:
        self._lines: deque[str] = deque()
        self._total_chars = 0
        self._max_total = max_total_chars
        self._max_line = max_line_chars
        self._min_lines = min_lines

    @property
    def total_chars(self) -> int:
        return self._total_chars

    def __len__(self) -> int:
        return len(self._lines)

    def append(self, line: str) -> None:
        if not line.strip():
            return
        if len(line) > self._max_line:
            line = line[: self._max_line - 3] + "..."
        self._lines.append(line)
        self._total_chars += len(line)
        while self._total_chars > self._max_total and len(self._lines) > self._min_lines:
            self._total_chars -= len(self._lines.popleft())

    def render(self) -> str:
        return "\n".join(self._lines)
