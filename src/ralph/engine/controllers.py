"""Controllers for ralph CLI commands."""

from __future__ import annotations

import logging
import re
import signal
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from ralph.config import Settings
from ralph.engine.backend.claude_cli import ClaudeCliClient
from ralph.engine.engine import Engine
from ralph.engine.events import EngineEvent, EngineEventType, TaskLoopEventType
from ralph.engine.models import TaskStatus, TaskView
from ralph.engine.repository import EngineRepository
from ralph.engine.resume import ResumeDetector
from ralph.engine.vcs import ChangeSetProvider, JjClient, NullChangeSets

logger = logging.getLogger(__name__)

STATUS_ICONS = {
    TaskStatus.COMPLETED: "[x]",
    TaskStatus.IN_PROGRESS: "[~]",
    TaskStatus.FAILED: "[!]",
    TaskStatus.ESCALATED: "[^]",
    TaskStatus.PENDING: "[ ]",
}

_METADATA_RE = re.compile(r"\A(?:\s*<!--.*?-->)+", re.DOTALL)


@dataclass(slots=True)
class RunCommand:
    """Input for ``ralph run``."""

    plan_file: Path
    db_path: Path | None = None
    pause: bool | None = None
    no_vcs: bool = False
    max_iterations: int | None = None
    skip_learnings: bool = False
    on_pause: Callable[[], bool] | None = None


@dataclass(slots=True)
class ResumeCommand:
    """Input for ``ralph resume``."""

    project_id: str
    db_path: Path | None = None
    pause: bool | None = None
    no_vcs: bool = False
    max_iterations: int | None = None
    skip_learnings: bool = False
    on_pause: Callable[[], bool] | None = None


@dataclass(slots=True)
class StatusCommand:
    """Input for ``ralph status``."""

    db_path: Path | None = None
    project_id: str | None = None


@dataclass(slots=True)
class ProjectCommand:
    """Input for reset/retry operations on one project."""

    project_id: str
    db_path: Path | None = None


@dataclass(slots=True)
class TaskExportCommand:
    """Input for ``ralph task export``."""

    project_id: str
    sequence: int
    db_path: Path | None = None
    output: Path | None = None
    metadata: bool = True


@dataclass(slots=True)
class TaskImportCommand:
    """Input for ``ralph task import``."""

    project_id: str
    sequence: int
    content: str
    db_path: Path | None = None
    strip_metadata: bool = True


class RalphCliController:
    """CLI controller for project runs and task inspection."""

    def run(self, command: RunCommand) -> Iterator[str]:
        """Plan a new project from a plan file and run it, streaming progress."""

        settings = _settings(
            db_path=command.db_path,
            pause=command.pause,
            max_iterations=command.max_iterations,
        )
        with _repository(settings) as repository:
            engine = _engine(settings, repository, no_vcs=command.no_vcs)

            def _work() -> None:
                engine.create_project(command.plan_file)
                _run_and_document(engine, skip_learnings=command.skip_learnings)

            yield from _stream(engine, _work, on_pause=command.on_pause)

    def resume(self, command: ResumeCommand) -> Iterator[str]:
        """Continue an existing project from its first unresolved task."""

        settings = _settings(
            db_path=command.db_path,
            pause=command.pause,
            max_iterations=command.max_iterations,
        )
        with _repository(settings) as repository:
            engine = _engine(settings, repository, no_vcs=command.no_vcs)
            state = engine.resume_project(command.project_id)
            yield (
                f"Resuming project {state.project.project_id} ({state.project.name}): "
                f"{state.completed}/{state.total_tasks} tasks completed"
            )
            if state.is_complete:
                yield "All tasks already completed."
                return

            def _work() -> None:
                _run_and_document(engine, skip_learnings=command.skip_learnings)

            yield from _stream(engine, _work, on_pause=command.on_pause)

    def status(self, command: StatusCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            if command.project_id is None:
                projects = repository.list_projects()
                if not projects:
                    return ["No projects found."]
                lines = []
                for project in projects:
                    tasks = repository.list_tasks(project.project_id)
                    done = sum(task.status is TaskStatus.COMPLETED for task in tasks)
                    lines.append(
                        f"{project.project_id}  {project.status.value:<12} "
                        f"{done}/{len(tasks)} tasks  {project.name}",
                    )
                return lines

            state = ResumeDetector(repository).detect_state(command.project_id)
            lines = [
                f"Project: {state.project.project_id}",
                f"Name: {state.project.name}",
                f"Status: {state.project.status.value}",
                (
                    f"Tasks: {state.total_tasks} total, {state.completed} completed, "
                    f"{state.in_progress} in progress, {state.pending} pending, "
                    f"{state.failed} failed"
                ),
                f"Learnings: {state.project.learnings_state or '-'}",
            ]
            if state.in_progress_task is not None:
                session = state.last_session
                lines.append(
                    f"Interrupted: task {state.in_progress_task.sequence} "
                    f"({state.in_progress_task.title}), last session "
                    f"{session.agent_role.value + ' ' + session.status.value if session else '-'}",
                )
            lines.extend(_task_line(task) for task in state.tasks)
            return lines

    def reset(self, command: ProjectCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            ResumeDetector(repository).reset_project(command.project_id)
            total = len(repository.list_tasks(command.project_id))
        return [f"Project {command.project_id} reset: {total} tasks pending."]

    def retry(self, command: ProjectCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            count = ResumeDetector(repository).retry_failed_tasks(command.project_id)
        if not count:
            return [f"No failed tasks in project {command.project_id}."]
        return [f"Reset {count} failed tasks in project {command.project_id} to pending."]

    def list_tasks(self, command: ProjectCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            repository.get_project(command.project_id)
            tasks = repository.list_tasks(command.project_id)
        if not tasks:
            return [f"No tasks in project {command.project_id}"]
        return [
            f"Tasks in project {command.project_id}:",
            "",
            *(f"  {_task_line(task)}" for task in tasks),
        ]

    def export_task(self, command: TaskExportCommand) -> list[str]:
        """Render a task description, optionally writing it to a file."""

        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            task = repository.get_task_by_sequence(command.project_id, command.sequence)

        content = render_task_export(task, metadata=command.metadata)
        if command.output is None:
            return [content]
        command.output.write_text(content, "utf-8")
        return [f"Exported task {task.sequence} to {command.output}"]

    def import_task(self, command: TaskImportCommand) -> list[str]:
        """Replace a task description with edited content."""

        description = command.content
        if command.strip_metadata:
            description = strip_metadata(description)
        description = description.strip()
        if not description:
            raise ValueError("Imported task description is empty.")

        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            task = repository.get_task_by_sequence(command.project_id, command.sequence)
            if task.status is TaskStatus.COMPLETED:
                raise ValueError(
                    f"Task {task.sequence} is completed; its description can no longer change.",
                )
            repository.update_task_description(task.task_id, description)
        return [f"Updated task {task.sequence} ({task.title}): {len(description)} chars"]


def render_task_export(task: TaskView, *, metadata: bool) -> str:
    if not metadata:
        return task.description
    header = (
        f"<!-- Task: {task.title} -->\n"
        f"<!-- Project: {task.project_id} -->\n"
        f"<!-- Sequence: {task.sequence} -->\n"
        f"<!-- Status: {task.status.value} -->\n"
        f"<!-- Edit below, then import with: "
        f"ralph task import {task.project_id} {task.sequence} <file> -->\n\n"
    )
    return header + task.description


def strip_metadata(text: str) -> str:
    """Drop leading HTML comment blocks written by ``task export``."""

    return _METADATA_RE.sub("", text, count=1).lstrip("\n")


def format_event(event: EngineEvent) -> str | None:
    """One progress line per event, None for events not worth printing."""

    inner = event.task_loop_event
    if event.type is not EngineEventType.TASK_LOOP or inner is None:
        return f"[{event.type.value}] {event.message}"

    position = f"{inner.task_index + 1}/{inner.total_tasks}"
    if inner.type is TaskLoopEventType.TASK_BEGIN:
        return f"==> Task {position}: {inner.task_title}"
    if inner.type is TaskLoopEventType.TASK_END:
        return f"<== Task {position}: {inner.message}"
    if inner.type is TaskLoopEventType.PROGRESS and inner.impl_event is not None:
        impl = inner.impl_event
        return f"    [{impl.type.value}] {impl.message}".rstrip()
    if inner.type is TaskLoopEventType.PAUSED:
        return f"Paused after task {position}."
    return f"[{inner.type.value}] {inner.message}".rstrip()


def _run_and_document(engine: Engine, *, skip_learnings: bool) -> None:
    result = engine.run()
    if skip_learnings or not result.completed:
        return
    project = engine.project
    if project is not None and engine.store.get_project(project.project_id).learnings_state:
        return
    engine.capture_learnings()


def _stream(
    engine: Engine,
    work: Callable[[], None],
    *,
    on_pause: Callable[[], bool] | None,
) -> Iterator[str]:
    error_holder: list[Exception] = []

    def _run() -> None:
        try:
            work()
        except Exception as exc:  # noqa: BLE001
            error_holder.append(exc)
        finally:
            engine.close()

    worker_thread = threading.Thread(target=_run, daemon=True, name="ralph-engine")
    with _signal_handlers(engine):
        worker_thread.start()
        try:
            for event in engine.events:
                line = format_event(event)
                if line is not None:
                    yield line
                if _is_pause(event):
                    if on_pause is None or on_pause():
                        engine.continue_()
                    else:
                        engine.stop()
        finally:
            if not engine.events.closed:
                engine.stop()
            worker_thread.join()

    if error_holder:
        project = engine.project
        if project is not None:
            yield f"Project {project.project_id}; resume with: ralph resume {project.project_id}"
        raise error_holder[0]


def _is_pause(event: EngineEvent) -> bool:
    inner = event.task_loop_event
    return inner is not None and inner.type is TaskLoopEventType.PAUSED


def _task_line(task: TaskView) -> str:
    icon = STATUS_ICONS.get(task.status, "[ ]")
    suffix = f" ({task.iteration_count} review rounds)" if task.iteration_count else ""
    return f"{icon} {task.sequence}. {task.title}{suffix}"


def _settings(*, db_path: Path | None, pause: bool | None, max_iterations: int | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    if pause is not None:
        settings.default_pause_mode = pause
    if max_iterations is not None:
        settings.max_review_iterations = max_iterations
    settings.validate()
    return settings


def _engine(settings: Settings, repository: EngineRepository, *, no_vcs: bool) -> Engine:
    change_sets: ChangeSetProvider = NullChangeSets()
    if not no_vcs:
        jj = JjClient(work_dir=settings.work_dir)
        # Fail before planning when jj is missing or work_dir is not a repository.
        jj.status()
        change_sets = jj
    agents = ClaudeCliClient(
        command_template=settings.claude.command_template,
        model=settings.claude.model,
        max_turns=settings.claude.max_turns,
        work_dir=settings.work_dir,
    )
    return Engine(store=repository, agents=agents, change_sets=change_sets, settings=settings)


@contextmanager
def _signal_handlers(engine: Engine) -> Iterator[None]:
    if not hasattr(signal, "SIGINT"):
        yield
        return

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _handler(signum: int, _: object | None) -> None:
        logger.warning("Received %s, stopping after the current agent session", signum)
        engine.stop()

    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
    except ValueError:
        # Signal handlers can only be installed in main thread.
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)


@contextmanager
def _repository(settings: Settings) -> Iterator[EngineRepository]:
    repository = EngineRepository(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
