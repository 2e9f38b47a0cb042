"""Classify persisted project state and repair it before resuming."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ralph.engine.models import (
    ProjectStatus,
    ProjectView,
    SessionStatus,
    SessionView,
    TaskStatus,
    TaskView,
)
from ralph.engine.store import RecordStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ProjectState:
    """Snapshot of a project's tasks at resume time."""

    project: ProjectView
    tasks: list[TaskView] = field(default_factory=list)
    pending: int = 0
    in_progress: int = 0
    completed: int = 0
    failed: int = 0
    in_progress_task: TaskView | None = None
    last_session: SessionView | None = None
    needs_cleanup: bool = False

    @property
    def total_tasks(self) -> int:
        return len(self.tasks)

    @property
    def has_interrupted_work(self) -> bool:
        return self.in_progress_task is not None

    @property
    def is_complete(self) -> bool:
        return self.total_tasks > 0 and self.completed == self.total_tasks

    @property
    def has_failed_tasks(self) -> bool:
        return self.failed > 0


class ResumeDetector:
    """Reads project records and resets interrupted or failed work."""

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def detect_state(self, project_id: str) -> ProjectState:
        project = self.store.get_project(project_id)
        tasks = self.store.list_tasks(project_id)
        state = ProjectState(project=project, tasks=tasks)

        for task in tasks:
            if task.status is TaskStatus.PENDING:
                state.pending += 1
            elif task.status is TaskStatus.IN_PROGRESS:
                state.in_progress += 1
                if state.in_progress_task is None:
                    state.in_progress_task = task
            elif task.status is TaskStatus.COMPLETED:
                state.completed += 1
            else:
                state.failed += 1

        if state.in_progress > 1:
            logger.warning(
                "Project %s has %d in-progress tasks; resuming from sequence %d",
                project_id,
                state.in_progress,
                state.in_progress_task.sequence if state.in_progress_task else -1,
            )

        if state.in_progress_task is not None:
            state.last_session = self.store.get_latest_session(state.in_progress_task.task_id)
            state.needs_cleanup = (
                state.last_session is not None
                and state.last_session.status is SessionStatus.RUNNING
            )
        return state

    def cleanup_for_resume(self, state: ProjectState) -> None:
        """Restart the interrupted task from iteration one."""

        if not state.needs_cleanup or state.in_progress_task is None:
            return
        task = state.in_progress_task
        self.store.update_task_status(task.task_id, TaskStatus.PENDING)
        if state.last_session is not None and state.last_session.status is SessionStatus.RUNNING:
            self.store.complete_session(state.last_session.session_id, SessionStatus.FAILED)
        logger.info("Reset interrupted task %d (%s) to pending", task.sequence, task.title)

    def reset_project(self, project_id: str) -> None:
        """Return every task and the project to ``pending``; change ids are kept."""

        self.store.get_project(project_id)
        for task in self.store.list_tasks(project_id):
            self.store.update_task_status(task.task_id, TaskStatus.PENDING)
        self.store.update_project_status(project_id, ProjectStatus.PENDING)
        self.store.update_project_feedback_state(project_id, "")
        self.store.update_project_learnings_state(project_id, "")

    def retry_failed_tasks(self, project_id: str) -> int:
        """Reset failed and escalated tasks; returns how many were reset."""

        project = self.store.get_project(project_id)
        reset = 0
        for task in self.store.list_tasks(project_id):
            if task.status in (TaskStatus.FAILED, TaskStatus.ESCALATED):
                self.store.update_task_status(task.task_id, TaskStatus.PENDING)
                reset += 1
        if project.status in (ProjectStatus.FAILED, ProjectStatus.COMPLETED):
            self.store.update_project_status(project_id, ProjectStatus.PENDING)
        return reset

    def is_resumable(self, project_id: str) -> bool:
        state = self.detect_state(project_id)
        return state.pending > 0 or state.in_progress_task is not None
