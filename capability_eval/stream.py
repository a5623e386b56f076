"""Incremental parser for the agent's newline-delimited JSON event stream.

Raw stdout bytes are buffered and split on newlines; every complete line is
decoded on its own. Lines that are not JSON objects are dropped, since the
stream is best-effort. Decoded messages are classified into the few event
kinds the conversation loop consumes.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    TEXT = "text"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"
    RESULT = "result"


@dataclass(frozen=True)
class StreamEvent:
    """One classified event from the agent stream."""

    kind: EventKind
    text: str = ""  # assistant text or tool result content
    name: str = ""  # tool name for TOOL_USE
    input: str = ""  # JSON-encoded tool input for TOOL_USE
    is_error: bool = False  # TOOL_RESULT reported failure
    payload: dict[str, Any] = field(default_factory=dict)  # RESULT event body


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    return json.dumps(content or "")


def _blocks(msg: dict[str, Any]) -> list[Any]:
    content = msg.get("content")
    if not content and isinstance(msg.get("message"), dict):
        content = msg["message"].get("content")
    return content if isinstance(content, list) else []


def _tool_use(block: dict[str, Any]) -> StreamEvent:
    raw_input = block.get("input")
    return StreamEvent(
        kind=EventKind.TOOL_USE,
        name=block["name"],
        input=json.dumps(raw_input) if raw_input else "",
    )


def _tool_result(block: dict[str, Any]) -> StreamEvent:
    return StreamEvent(
        kind=EventKind.TOOL_RESULT,
        text=_content_text(block.get("content")),
        is_error=bool(block.get("is_error")),
    )


def classify(msg: dict[str, Any]) -> list[StreamEvent]:
    """Map one decoded stream message to zero or more events."""
    msg_type = msg.get("type")
    if msg_type == "result":
        return [StreamEvent(kind=EventKind.RESULT, payload=msg)]

    events: list[StreamEvent] = []
    if msg_type == "assistant":
        for block in _blocks(msg):
            if not isinstance(block, dict):
                continue
            block_type = block.get("type")
            text = block.get("text")
            if block_type == "text" and isinstance(text, str) and text.strip():
                events.append(StreamEvent(kind=EventKind.TEXT, text=text.strip()))
            elif block_type == "tool_use" and isinstance(block.get("name"), str):
                events.append(_tool_use(block))
            elif block_type == "tool_result":
                events.append(_tool_result(block))
    elif msg_type == "user":
        for block in _blocks(msg):
            if isinstance(block, dict) and block.get("type") == "tool_result":
                events.append(_tool_result(block))

    # Partial streaming deltas
    block = msg.get("content_block")
    if isinstance(block, dict):
        text = block.get("text")
        if block.get("type") == "text" and isinstance(text, str) and text.strip():
            events.append(StreamEvent(kind=EventKind.TEXT, text=text.strip()))
        elif block.get("type") == "tool_use" and isinstance(block.get("name"), str):
            events.append(_tool_use(block))

    if isinstance(msg.get("tool_name"), str):
        events.append(StreamEvent(kind=EventKind.TOOL_USE, name=msg["tool_name"]))

    return events


class StreamingEventParser:
    """Buffers stdout chunks and yields events for each complete line."""

    def __init__(self) -> None:
        self._buffer = b""
        self.session_id = ""
        self.result: dict[str, Any] | None = None
        self.lines_dropped = 0

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split(b"\n")
        events: list[StreamEvent] = []
        for line in lines:
            events.extend(self._parse_line(line))
        return events

    def close(self) -> list[StreamEvent]:
        """Parse whatever remains after the stream ends without a newline."""
        remainder, self._buffer = self._buffer, b""
        return self._parse_line(remainder)

    def _parse_line(self, line: bytes) -> list[StreamEvent]:
        if not line.strip():
            return []
        try:
            msg = json.loads(line.decode("utf-8", errors="replace"))
        except json.JSONDecodeError:
            self.lines_dropped += 1
            logger.debug("Dropping undecodable stream line (%d bytes)", len(line))
            return []
        if not isinstance(msg, dict):
            self.lines_dropped += 1
            return []

        if not self.session_id and isinstance(msg.get("session_id"), str):
            self.session_id = msg["session_id"]
        events = classify(msg)
        for event in events:
            if event.kind == EventKind.RESULT and self.result is None:
                self.result = event.payload
        return events
