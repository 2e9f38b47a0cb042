"""Deterministic stand-in agent speaking the stream-json protocol.

Used by CLI integration tests. The prompt is read from ``--prompt-file`` or stdin.
Behaviour is selected by the role the client exports in ``RALPH_AGENT_ROLE``;
``RALPH_ECHO_REVIEW=reject`` makes the reviewer always send feedback and
``RALPH_ECHO_EXIT_CODE`` forces a failing exit.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

from ralph.engine.markers import (
    AGENTS_MD_HEADER,
    DEV_DONE_MARKER,
    REVIEWER_APPROVED_MARKER,
    VERDICT_HEADER,
)
from ralph.engine.prompts import PLAN_END_MARKER, PLAN_START_MARKER


def main(argv: list[str] | None = None) -> int:
    """Emit one agent turn as stream-json lines."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--prompt-file")
    parser.add_argument("--model", default="echo")
    args = parser.parse_args(argv)

    prompt = Path(args.prompt_file).read_text("utf-8") if args.prompt_file else sys.stdin.read()
    role = os.getenv("RALPH_AGENT_ROLE", "developer")
    text = _respond(role=role, prompt=prompt)

    _emit({"type": "system", "subtype": "init", "session_id": "echo", "model": args.model})
    _emit(
        {
            "type": "assistant",
            "session_id": "echo",
            "message": {"content": [{"type": "text", "text": text}]},
        },
    )
    _emit({"type": "result", "subtype": "success", "session_id": "echo", "result": text})
    return int(os.getenv("RALPH_ECHO_EXIT_CODE", "0"))


def _respond(*, role: str, prompt: str) -> str:
    if role == "planner":
        return json.dumps(_plan_tasks(prompt), indent=2)
    if role == "reviewer":
        if os.getenv("RALPH_ECHO_REVIEW", "approve") == "reject":
            return (
                "## Progress\nReviewed the change.\n\n"
                "### Critical Issues\nNone\n\n"
                "### Major Issues\n- echo reviewer always rejects\n\n"
                f"{VERDICT_HEADER}\nREVIEWER_FEEDBACK: echo reviewer always rejects"
            )
        return (
            "## Progress\nReviewed the change.\n\n"
            "### Critical Issues\nNone\n\n### Major Issues\nNone\n\n### Minor Issues\nNone\n\n"
            f"{VERDICT_HEADER}\n{REVIEWER_APPROVED_MARKER}"
        )
    if role == "documenter":
        return f"{AGENTS_MD_HEADER}\n```markdown\n- Echo agent learnings.\n```\n"
    return (
        "## Progress\nImplemented the task.\n\n"
        "## Learnings\nNothing surprising.\n\n"
        f"## Status\n{DEV_DONE_MARKER}"
    )


def _plan_tasks(prompt: str) -> list[dict[str, object]]:
    start = prompt.find(PLAN_START_MARKER)
    end = prompt.find(PLAN_END_MARKER)
    plan = prompt[start + len(PLAN_START_MARKER) : end] if start != -1 and end > start else ""
    titles = [line[2:].strip() for line in plan.splitlines() if line.startswith("- ")]
    if not titles:
        titles = ["Implement the plan"]
    return [
        {"title": title, "description": f"Echo task: {title}", "sequence": index}
        for index, title in enumerate(titles, start=1)
    ]


def _emit(payload: dict[str, object]) -> None:
    sys.stdout.write(json.dumps(payload) + "\n")
    sys.stdout.flush()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
