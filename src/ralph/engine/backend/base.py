"""Agent session interface consumed by the orchestration loops."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from ralph.engine.models import AgentRole


class StreamEventType(str, Enum):
    """Normalized kinds of agent stream output."""

    INIT = "init"
    MESSAGE = "message"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"
    RESULT = "result"
    ERROR = "error"
    SYSTEM = "system"
    UNKNOWN = "unknown"


@dataclass(slots=True)
class StreamEvent:
    """One line of agent output, parsed."""

    type: StreamEventType
    raw: str
    text: str = ""
    session_id: str | None = None
    tool_name: str | None = None
    is_error: bool = False

    @property
    def text_bearing(self) -> bool:
        return self.type in (StreamEventType.MESSAGE, StreamEventType.RESULT) and bool(self.text)


class AgentSession(Protocol):
    """Live handle to one agent invocation."""

    def events(self) -> Iterator[StreamEvent]:
        """Yield stream events until the agent finishes writing output."""

    def wait(self) -> None:
        """Block until the agent exits; raise ``AgentError`` on failure."""


class AgentClient(Protocol):
    """Factory for agent sessions."""

    def run(self, prompt: str, *, role: AgentRole | None = None) -> AgentSession:
        """Start an agent with the rendered prompt."""


def collect_text(events: list[StreamEvent]) -> str:
    """Assistant text of a session, falling back to the final result text."""

    messages = [event.text for event in events if event.type is StreamEventType.MESSAGE]
    if any(messages):
        return "".join(messages)
    return "".join(event.text for event in events if event.type is StreamEventType.RESULT)
