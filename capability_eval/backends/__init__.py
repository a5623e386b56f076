"""Agent backends for capability evaluation."""

from .base import AgentBackend
from .claude_code import ClaudeCodeBackend

__all__ = [
    "AgentBackend",
    "ClaudeCodeBackend",
]
