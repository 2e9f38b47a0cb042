"""Parser for Claude CLI ``--output-format stream-json`` lines."""

from __future__ import annotations

import json
from typing import Any

from ralph.engine.backend.base import StreamEvent, StreamEventType


def parse_stream_line(line: str) -> StreamEvent:
    """Map one JSON line onto a normalized stream event."""

    try:
        payload = json.loads(line)
    except json.JSONDecodeError:
        return StreamEvent(type=StreamEventType.UNKNOWN, raw=line, text=line)
    if not isinstance(payload, dict):
        return StreamEvent(type=StreamEventType.UNKNOWN, raw=line)

    kind = payload.get("type")
    session_id = _optional_str(payload.get("session_id"))

    if kind == "system":
        is_init = payload.get("subtype") == "init"
        event_type = StreamEventType.INIT if is_init else StreamEventType.SYSTEM
        return StreamEvent(type=event_type, raw=line, session_id=session_id)

    if kind == "assistant":
        content = _message_content(payload)
        text = "".join(
            str(block.get("text", "")) for block in content if block.get("type") == "text"
        )
        if text:
            return StreamEvent(
                type=StreamEventType.MESSAGE,
                raw=line,
                text=text,
                session_id=session_id,
            )
        tool_names = [
            str(block.get("name")) for block in content if block.get("type") == "tool_use"
        ]
        if tool_names:
            return StreamEvent(
                type=StreamEventType.TOOL_USE,
                raw=line,
                session_id=session_id,
                tool_name=tool_names[0],
            )
        return StreamEvent(type=StreamEventType.SYSTEM, raw=line, session_id=session_id)

    if kind == "user":
        content = _message_content(payload)
        if any(block.get("type") == "tool_result" for block in content):
            return StreamEvent(
                type=StreamEventType.TOOL_RESULT,
                raw=line,
                session_id=session_id,
                is_error=any(bool(block.get("is_error")) for block in content),
            )
        return StreamEvent(type=StreamEventType.SYSTEM, raw=line, session_id=session_id)

    if kind == "result":
        return StreamEvent(
            type=StreamEventType.RESULT,
            raw=line,
            text=_optional_str(payload.get("result")) or "",
            session_id=session_id,
            is_error=bool(payload.get("is_error"))
            or payload.get("subtype") not in (None, "success"),
        )

    if kind == "error":
        error = payload.get("error")
        message = error.get("message") if isinstance(error, dict) else error
        return StreamEvent(
            type=StreamEventType.ERROR,
            raw=line,
            text=_optional_str(message) or "unknown agent error",
            session_id=session_id,
            is_error=True,
        )

    if kind == "stream_event":
        return StreamEvent(type=StreamEventType.SYSTEM, raw=line, session_id=session_id)

    return StreamEvent(type=StreamEventType.UNKNOWN, raw=line, session_id=session_id)


def _message_content(payload: dict[str, Any]) -> list[dict[str, Any]]:
    message = payload.get("message")
    if not isinstance(message, dict):
        return []
    content = message.get("content")
    if isinstance(content, str):
        return [{"type": "text", "text": content}]
    if not isinstance(content, list):
        return []
    return [block for block in content if isinstance(block, dict)]


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    return str(value)
