"""Record store interface the engine reads and writes through."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from ralph.engine.models import (
    AgentRole,
    FeedbackType,
    FeedbackView,
    MessageView,
    ProjectStatus,
    ProjectView,
    SessionStatus,
    SessionView,
    TaskCreate,
    TaskStatus,
    TaskView,
)


class RecordStore(Protocol):
    """CRUD over projects, tasks, sessions, messages and feedback.

    Lookups of unknown ids raise ``RecordNotFound``; other failures raise
    ``StoreError``.
    """

    def create_project(self, *, name: str, plan_text: str) -> ProjectView: ...

    def get_project(self, project_id: str) -> ProjectView: ...

    def list_projects(self) -> list[ProjectView]: ...

    def update_project_status(self, project_id: str, status: ProjectStatus) -> None: ...

    def update_project_feedback_state(self, project_id: str, state: str) -> None: ...

    def update_project_learnings_state(self, project_id: str, state: str) -> None: ...

    def create_tasks(self, project_id: str, tasks: Sequence[TaskCreate]) -> list[TaskView]: ...

    def get_task(self, task_id: str) -> TaskView: ...

    def get_task_by_sequence(self, project_id: str, sequence: int) -> TaskView: ...

    def list_tasks(self, project_id: str) -> list[TaskView]: ...

    def get_next_pending_task(self, project_id: str) -> TaskView | None: ...

    def update_task_status(self, task_id: str, status: TaskStatus) -> None: ...

    def update_task_description(self, task_id: str, description: str) -> None: ...

    def update_task_change_id(self, task_id: str, change_id: str) -> None: ...

    def increment_task_iteration(self, task_id: str) -> None: ...

    def create_session(
        self,
        *,
        task_id: str,
        agent_role: AgentRole,
        iteration: int,
        input_prompt: str,
    ) -> SessionView: ...

    def list_sessions(self, task_id: str) -> list[SessionView]: ...

    def get_latest_session(self, task_id: str) -> SessionView | None: ...

    def complete_session(self, session_id: str, status: SessionStatus) -> None: ...

    def create_message(
        self,
        *,
        session_id: str,
        sequence: int,
        message_type: str,
        content: str,
    ) -> None: ...

    def list_messages(self, session_id: str) -> list[MessageView]: ...

    def create_feedback(
        self,
        *,
        session_id: str,
        feedback_type: FeedbackType,
        content: str,
    ) -> None: ...

    def get_latest_feedback(self, task_id: str) -> FeedbackView | None: ...
