from __future__ import annotations

import json

import allure

from ralph.engine.backend.base import StreamEvent, StreamEventType, collect_text
from ralph.engine.backend.stream import parse_stream_line

pytestmark = [
    allure.epic("Agent Backend"),
    allure.feature("Stream JSON Parsing"),
]


def _line(payload: dict) -> str:
    return json.dumps(payload)


def test_init_and_assistant_text() -> None:
    init = parse_stream_line(_line({"type": "system", "subtype": "init", "session_id": "abc"}))
    message = parse_stream_line(
        _line(
            {
                "type": "assistant",
                "message": {
                    "content": [
                        {"type": "text", "text": "Hello "},
                        {"type": "text", "text": "world"},
                    ],
                },
            },
        ),
    )

    assert init.type is StreamEventType.INIT
    assert init.session_id == "abc"
    assert message.type is StreamEventType.MESSAGE
    assert message.text == "Hello world"
    assert message.text_bearing is True


def test_tool_use_and_tool_result() -> None:
    tool_use = parse_stream_line(
        _line(
            {
                "type": "assistant",
                "message": {"content": [{"type": "tool_use", "name": "Edit", "input": {}}]},
            },
        ),
    )
    tool_result = parse_stream_line(
        _line(
            {
                "type": "user",
                "message": {"content": [{"type": "tool_result", "is_error": True}]},
            },
        ),
    )

    assert tool_use.type is StreamEventType.TOOL_USE
    assert tool_use.tool_name == "Edit"
    assert tool_use.text_bearing is False
    assert tool_result.type is StreamEventType.TOOL_RESULT
    assert tool_result.is_error is True


def test_result_success_and_error() -> None:
    success = parse_stream_line(_line({"type": "result", "subtype": "success", "result": "ok"}))
    failure = parse_stream_line(
        _line({"type": "result", "subtype": "error_max_turns", "result": ""}),
    )

    assert success.type is StreamEventType.RESULT
    assert success.text == "ok"
    assert success.is_error is False
    assert failure.is_error is True


def test_error_event_and_garbage() -> None:
    error = parse_stream_line(_line({"type": "error", "error": {"message": "overloaded"}}))
    garbage = parse_stream_line("not json at all")
    other = parse_stream_line(_line({"type": "something_new"}))

    assert error.type is StreamEventType.ERROR
    assert error.text == "overloaded"
    assert garbage.type is StreamEventType.UNKNOWN
    assert garbage.raw == "not json at all"
    assert other.type is StreamEventType.UNKNOWN


def test_collect_text_prefers_messages_over_result() -> None:
    events = [
        StreamEvent(type=StreamEventType.MESSAGE, raw="", text="part one, "),
        StreamEvent(type=StreamEventType.TOOL_USE, raw="", tool_name="Bash"),
        StreamEvent(type=StreamEventType.MESSAGE, raw="", text="part two"),
        StreamEvent(type=StreamEventType.RESULT, raw="", text="part one, part two"),
    ]

    assert collect_text(events) == "part one, part two"
    assert collect_text(events[-1:]) == "part one, part two"
    assert collect_text([]) == ""
