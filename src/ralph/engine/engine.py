"""Top-level engine: planning, task execution and learnings capture."""

from __future__ import annotations

import json
import logging
import re
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from pathlib import Path

from ralph.config import Settings
from ralph.engine.backend.base import AgentClient, collect_text
from ralph.engine.errors import (
    AgentError,
    ChangeSetError,
    EngineError,
    PlanningError,
    RunCancelled,
    best_effort,
)
from ralph.engine.events import (
    ENGINE_CHANNEL_CAPACITY,
    EngineEvent,
    EngineEventType,
    EventChannel,
    TaskLoopEvent,
)
from ralph.engine.markers import AGENTS_MD_HEADER, README_MD_HEADER
from ralph.engine.models import (
    LEARNINGS_STATE_COMPLETE,
    AgentRole,
    ProjectStatus,
    ProjectView,
    TaskCreate,
    TaskStatus,
    TaskView,
)
from ralph.engine.parser import extract_section
from ralph.engine.prompts import PromptLibrary
from ralph.engine.resume import ProjectState, ResumeDetector
from ralph.engine.store import RecordStore
from ralph.engine.task_loop import TaskLoop, TaskLoopResult
from ralph.engine.vcs import ChangeSetProvider

logger = logging.getLogger(__name__)

LEARNINGS_DESCRIPTION = "docs: capture learnings from development session"
CHANGES_REVSET = "..@"
AGENTS_MD_FILE = "AGENTS.md"
README_MD_FILE = "README.md"

_CODE_BLOCK_RE = re.compile(r"```[^\n]*\n(.*?)```", re.DOTALL)


@dataclass(slots=True)
class Learnings:
    """Documentation snippets produced by the documenter agent."""

    agents_md: str = ""
    readme_md: str = ""

    @property
    def empty(self) -> bool:
        return not self.agents_md and not self.readme_md


class Engine:
    """Owns one project: creates or resumes it, runs its tasks, records learnings.

    Events from every stage are published on ``events``; the channel stays open
    across stages and is closed by ``close``.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: RecordStore,
        agents: AgentClient,
        change_sets: ChangeSetProvider,
        settings: Settings,
        prompts: PromptLibrary | None = None,
        channel_capacity: int = ENGINE_CHANNEL_CAPACITY,
    ) -> None:
        self.store = store
        self.agents = agents
        self.change_sets = change_sets
        self.settings = settings
        self.prompts = prompts or PromptLibrary(settings.agents.template_paths())
        self.events: EventChannel[EngineEvent] = EventChannel(channel_capacity, name="engine")
        self.project: ProjectView | None = None
        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._pause_mode = settings.default_pause_mode
        self._task_loop: TaskLoop | None = None

    @property
    def pause_mode(self) -> bool:
        with self._lock:
            return self._pause_mode

    @property
    def stopped(self) -> bool:
        return self._cancel.is_set()

    def close(self) -> None:
        self.events.close()

    def create_project(self, plan_path: Path) -> ProjectView:
        """Store the plan and break it into tasks with the planner agent."""

        plan_text = plan_path.read_text("utf-8")
        project = self.store.create_project(name=plan_path.name, plan_text=plan_text)
        self._emit(EngineEventType.PLANNING, "Breaking plan into tasks")

        try:
            planned = self._plan_tasks(plan_text)
            tasks = self.store.create_tasks(project.project_id, planned)
        except (AgentError, PlanningError) as error:
            best_effort(
                "project status update",
                self.store.update_project_status,
                project.project_id,
                ProjectStatus.FAILED,
            )
            self._emit(EngineEventType.ERROR, str(error))
            raise

        self.project = project
        self._emit(
            EngineEventType.PROJECT_CREATED,
            f"Created project {project.project_id} with {len(tasks)} tasks",
        )
        return project

    def create_project_from_text(
        self,
        *,
        name: str,
        plan_text: str,
        tasks: Sequence[TaskCreate],
    ) -> ProjectView:
        """Create a project with a known task list, bypassing the planner."""

        project = self.store.create_project(name=name, plan_text=plan_text)
        self.store.create_tasks(project.project_id, tasks)
        self.project = project
        self._emit(
            EngineEventType.PROJECT_CREATED,
            f"Created project {project.project_id} with {len(tasks)} tasks",
        )
        return project

    def resume_project(self, project_id: str) -> ProjectState:
        """Load a project and reset any task interrupted mid-session."""

        detector = ResumeDetector(self.store)
        state = detector.detect_state(project_id)
        if state.needs_cleanup:
            detector.cleanup_for_resume(state)
            state = detector.detect_state(project_id)
        self.project = state.project
        return state

    def run(self, cancel: threading.Event | None = None) -> TaskLoopResult:
        """Run every unresolved task of the loaded project."""

        if cancel is not None:
            self._cancel = cancel
        if self._cancel.is_set():
            raise RunCancelled("engine has been stopped")
        project = self._require_project()

        loop = TaskLoop(
            store=self.store,
            agents=self.agents,
            change_sets=self.change_sets,
            project_id=project.project_id,
            prompts=self.prompts,
            max_review_iterations=self.settings.max_review_iterations,
            max_task_attempts=self.settings.max_task_attempts,
            pause_mode=self.pause_mode,
        )
        with self._lock:
            self._task_loop = loop
        self._emit(EngineEventType.STARTED, "Starting task execution")

        try:
            result = self._run_relayed(loop)
        except RunCancelled:
            self._emit(EngineEventType.STOPPED, "Run stopped")
            raise
        except Exception as error:
            self._emit(EngineEventType.ERROR, str(error))
            raise
        finally:
            with self._lock:
                self._task_loop = None

        self._emit(
            EngineEventType.COMPLETED,
            f"All tasks processed ({result.completed} completed, {result.failed} failed, "
            f"{result.skipped} skipped)",
        )
        return result

    def stop(self) -> None:
        """Request cooperative cancellation of the current run."""

        if not self._cancel.is_set():
            logger.info("Stop requested")
        self._cancel.set()

    def set_pause_mode(self, enabled: bool) -> None:
        with self._lock:
            self._pause_mode = enabled
            loop = self._task_loop
        if loop is not None:
            loop.set_pause_mode(enabled)

    def continue_(self) -> bool:
        """Release a paused task loop; False when nothing is paused."""

        with self._lock:
            loop = self._task_loop
        return loop.continue_() if loop is not None else False

    def capture_learnings(self) -> Learnings:
        """Ask the documenter to summarize the run and append it to project docs."""

        project = self._require_project()
        self._emit(EngineEventType.CAPTURING_LEARNINGS, "Analyzing changes for documentation")

        completed = [
            task
            for task in self.store.list_tasks(project.project_id)
            if task.status is TaskStatus.COMPLETED
        ]
        if not completed:
            self._emit(EngineEventType.LEARNINGS_CAPTURED, "No completed tasks to document")
            return Learnings()

        try:
            changes_summary = self.change_sets.log(CHANGES_REVSET, "")
        except ChangeSetError as error:
            changes_summary = f"Unable to retrieve changes: {error}"

        prompt = self.prompts.documenter(changes_summary=changes_summary, tasks=completed)
        learnings = parse_learnings(self._run_agent(AgentRole.DOCUMENTER, prompt))

        work_dir = self.settings.work_dir
        if learnings.agents_md:
            append_learnings(work_dir / AGENTS_MD_FILE, learnings.agents_md)
        if learnings.readme_md:
            append_learnings(work_dir / README_MD_FILE, learnings.readme_md)

        self.change_sets.describe(LEARNINGS_DESCRIPTION)
        self.store.update_project_learnings_state(project.project_id, LEARNINGS_STATE_COMPLETE)
        self._emit(EngineEventType.LEARNINGS_CAPTURED, "Documentation updated")
        return learnings

    def _plan_tasks(self, plan_text: str) -> list[TaskCreate]:
        output = self._run_agent(AgentRole.PLANNER, self.prompts.planner(plan=plan_text))
        return parse_planner_output(output)

    def _run_agent(self, role: AgentRole, prompt: str) -> str:
        session = self.agents.run(prompt, role=role)
        events = list(session.events())
        session.wait()
        return collect_text(events)

    def _run_relayed(self, loop: TaskLoop) -> TaskLoopResult:
        relay = threading.Thread(
            target=self._relay,
            args=(loop.events,),
            daemon=True,
            name="ralph-engine-relay",
        )
        relay.start()
        try:
            return loop.run(self._cancel)
        finally:
            relay.join()

    def _relay(self, events: EventChannel[TaskLoopEvent]) -> None:
        for event in events:
            self.events.send(
                EngineEvent(
                    type=EngineEventType.TASK_LOOP,
                    message=event.message,
                    task_loop_event=event,
                ),
            )

    def _require_project(self) -> ProjectView:
        if self.project is None:
            raise EngineError("no project loaded")
        return self.project

    def _emit(self, event_type: EngineEventType, message: str) -> None:
        self.events.send(EngineEvent(type=event_type, message=message))


def parse_planner_output(output: str) -> list[TaskCreate]:
    """Tasks from the JSON array embedded in planner output, ordered by sequence."""

    start = output.find("[")
    end = output.rfind("]")
    if start == -1 or end <= start:
        raise PlanningError("planner returned no tasks")
    try:
        payload = json.loads(output[start : end + 1])
    except json.JSONDecodeError as error:
        raise PlanningError(f"planner returned invalid JSON: {error}") from error
    if not isinstance(payload, list) or not payload:
        raise PlanningError("planner returned no tasks")

    tasks: list[TaskCreate] = []
    for position, item in enumerate(payload, start=1):
        if not isinstance(item, dict) or not str(item.get("title") or "").strip():
            raise PlanningError(f"planner task {position} has no title")
        sequence = item.get("sequence", position)
        if not isinstance(sequence, int):
            raise PlanningError(f"planner task {position} has invalid sequence: {sequence!r}")
        tasks.append(
            TaskCreate(
                sequence=sequence,
                title=str(item["title"]).strip(),
                description=str(item.get("description") or "").strip(),
            ),
        )

    tasks.sort(key=lambda task: task.sequence)
    if len({task.sequence for task in tasks}) != len(tasks):
        raise PlanningError("planner returned duplicate task sequences")
    return tasks


def parse_learnings(output: str) -> Learnings:
    """Code blocks under the AGENTS.md and README.md headers."""

    return Learnings(
        agents_md=_section_code_block(output, AGENTS_MD_HEADER),
        readme_md=_section_code_block(output, README_MD_HEADER),
    )


def append_learnings(path: Path, content: str, *, today: date | None = None) -> None:
    """Append ``content`` to ``path`` under a dated session separator."""

    stamp = (today or date.today()).isoformat()
    with path.open("a", encoding="utf-8") as handle:
        handle.write(f"\n\n---\n\n## Session: {stamp}\n\n{content}\n")
    logger.info("Appended learnings to %s", path)


def _section_code_block(output: str, header: str) -> str:
    section = extract_section(output, header)
    if not section:
        return ""
    match = _CODE_BLOCK_RE.search(section)
    if match is None:
        return ""
    return match.group(1).strip()
