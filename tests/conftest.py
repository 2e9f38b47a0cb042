"""Shared test fixtures."""

from __future__ import annotations

import json
import shlex
import sys
from collections import deque
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from ralph.engine.backend.base import StreamEvent, StreamEventType
from ralph.engine.errors import AgentError, ChangeSetError
from ralph.engine.markers import DEV_DONE_MARKER, REVIEWER_APPROVED_MARKER
from ralph.engine.models import AgentRole, ProjectView, TaskCreate
from ralph.engine.repository import EngineRepository

ECHO_AGENT_COMMAND_TEMPLATE = (
    f"{shlex.quote(sys.executable)} -m ralph.engine.backend.echo_agent "
    "--prompt-file {prompt_file}"
)

DEVELOPER_DONE = f"## Progress\nImplemented.\n\n## Learnings\nNone.\n\n## Status\n{DEV_DONE_MARKER}"
REVIEWER_APPROVES = (
    "### Critical Issues\nNone\n\n### Major Issues\nNone\n\n### Minor Issues\nNone\n\n"
    f"### Verdict\n{REVIEWER_APPROVED_MARKER}"
)


def reviewer_rejects(feedback: str = "fix the null check") -> str:
    return (
        "### Critical Issues\nNone\n\n### Major Issues\n- missing null check\n\n"
        f"### Verdict\nREVIEWER_FEEDBACK: {feedback}"
    )


class ScriptedSession:
    """Agent session replaying a canned response."""

    def __init__(self, text: str, *, error: AgentError | None = None) -> None:
        self.text = text
        self.error = error

    def events(self) -> Iterator[StreamEvent]:
        yield StreamEvent(type=StreamEventType.INIT, raw='{"type":"system"}', session_id="s")
        if self.text:
            yield StreamEvent(
                type=StreamEventType.MESSAGE,
                raw=json.dumps({"type": "assistant", "text": self.text}),
                text=self.text,
            )

    def wait(self) -> None:
        if self.error is not None:
            raise self.error


class ScriptedAgents:
    """Agent client answering from per-role queues, then per-role defaults."""

    def __init__(self) -> None:
        self.defaults: dict[AgentRole, str] = {
            AgentRole.DEVELOPER: DEVELOPER_DONE,
            AgentRole.REVIEWER: REVIEWER_APPROVES,
            AgentRole.PLANNER: json.dumps(
                [{"title": "Only task", "description": "Do it", "sequence": 1}],
            ),
            AgentRole.DOCUMENTER: "### AGENTS.md Content\n```markdown\n- learned\n```\n",
        }
        self.queued: dict[AgentRole, deque[str | AgentError]] = {
            role: deque() for role in AgentRole
        }
        self.calls: list[tuple[AgentRole, str]] = []
        self.on_run: Callable[[AgentRole, str], None] | None = None

    def queue(self, role: AgentRole, *responses: str | AgentError) -> None:
        self.queued[role].extend(responses)

    def prompts_for(self, role: AgentRole) -> list[str]:
        return [prompt for called_role, prompt in self.calls if called_role is role]

    def run(self, prompt: str, *, role: AgentRole | None = None) -> ScriptedSession:
        agent_role = role or AgentRole.DEVELOPER
        self.calls.append((agent_role, prompt))
        if self.on_run is not None:
            self.on_run(agent_role, prompt)
        response = (
            self.queued[agent_role].popleft()
            if self.queued[agent_role]
            else self.defaults[agent_role]
        )
        if isinstance(response, AgentError):
            return ScriptedSession("", error=response)
        return ScriptedSession(response)


class RecordingChangeSets:
    """In-memory change-set provider."""

    def __init__(self, *, diff: str = "diff --git a/app.py b/app.py\n+print('hi')\n") -> None:
        self.diff = diff
        self.changes: list[str] = []
        self.descriptions: list[str] = []
        self.fail_new_change = False

    def new_change(self, title: str) -> str:
        if self.fail_new_change:
            raise ChangeSetError("jj new failed: simulated")
        self.changes.append(title)
        return f"change-{len(self.changes)}"

    def show(self) -> str:
        return self.diff

    def describe(self, description: str) -> None:
        self.descriptions.append(description)

    def log(self, revset: str = "", template: str = "") -> str:
        return "\n".join(self.changes)


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[EngineRepository]:
    repo = EngineRepository(tmp_path / "ralph.db")
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def agents() -> ScriptedAgents:
    return ScriptedAgents()


@pytest.fixture()
def change_sets() -> RecordingChangeSets:
    return RecordingChangeSets()


@pytest.fixture()
def make_project(repository: EngineRepository) -> Callable[..., ProjectView]:
    def _make(*titles: str, plan_text: str = "# Plan\n") -> ProjectView:
        project = repository.create_project(name="plan.md", plan_text=plan_text)
        repository.create_tasks(
            project.project_id,
            [
                TaskCreate(sequence=index, title=title, description=f"Implement {title}")
                for index, title in enumerate(titles or ("Task one",), start=1)
            ],
        )
        return project

    return _make


@pytest.fixture()
def echo_agent_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Point the CLI agent at the echo agent and isolate config lookups."""

    work_dir = tmp_path / "work"
    work_dir.mkdir()
    monkeypatch.setenv("RALPH_CLAUDE_COMMAND", ECHO_AGENT_COMMAND_TEMPLATE)
    monkeypatch.setenv("RALPH_WORK_DIR", str(work_dir))
    config_path = tmp_path / "config.json"
    config_path.write_text("{}", "utf-8")
    monkeypatch.setenv("RALPH_CONFIG", str(config_path))
    monkeypatch.delenv("RALPH_ECHO_REVIEW", raising=False)
    monkeypatch.delenv("RALPH_ECHO_EXIT_CODE", raising=False)
    return work_dir
