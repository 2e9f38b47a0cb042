"""Agent backend implementations."""

from ralph.engine.backend.base import AgentClient, AgentSession, StreamEvent, StreamEventType
from ralph.engine.backend.claude_cli import ClaudeCliClient, ClaudeCliSession

__all__ = [
    "AgentClient",
    "AgentSession",
    "ClaudeCliClient",
    "ClaudeCliSession",
    "StreamEvent",
    "StreamEventType",
]
