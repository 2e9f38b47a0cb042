"""SQLite record store for projects, tasks and agent sessions."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from uuid import uuid4

from sqlalchemy import update as sa_update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from ralph.engine.errors import RecordNotFound, StoreError
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
from ralph.storage.alembic_runner import upgrade_head
from ralph.storage.common import build_sqlite_engine, to_utc_aware, utc_now
from ralph.storage.sqlmodel_models import (
    FeedbackRow,
    MessageRow,
    ProjectRow,
    SessionRow,
    TaskRow,
)


class EngineRepository:
    """Record store facade backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations up to head."""

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        upgrade_head(self.db_path)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with Session(self.engine) as session:
                yield session
        except SQLAlchemyError as error:
            raise StoreError(f"Record store operation failed: {error}") from error

    # -- projects ---------------------------------------------------------------

    def create_project(self, *, name: str, plan_text: str) -> ProjectView:
        now = utc_now()
        with self._session() as session:
            row = ProjectRow(
                project_id=uuid4().hex[:8],
                name=name,
                plan_text=plan_text,
                status=ProjectStatus.PENDING.value,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_project_view(row)

    def get_project(self, project_id: str) -> ProjectView:
        with self._session() as session:
            row = session.get(ProjectRow, project_id)
            if row is None:
                raise RecordNotFound("project", project_id)
            return _to_project_view(row)

    def list_projects(self) -> list[ProjectView]:
        with self._session() as session:
            rows = session.exec(
                select(ProjectRow).order_by(col(ProjectRow.created_at).desc()),
            ).all()
            return [_to_project_view(row) for row in rows]

    def update_project_status(self, project_id: str, status: ProjectStatus) -> None:
        self._update_project(project_id, status=ProjectStatus(status).value)

    def update_project_feedback_state(self, project_id: str, state: str) -> None:
        self._update_project(project_id, user_feedback_state=state)

    def update_project_learnings_state(self, project_id: str, state: str) -> None:
        self._update_project(project_id, learnings_state=state)

    def _update_project(self, project_id: str, **values: object) -> None:
        with self._session() as session:
            result = session.exec(
                sa_update(ProjectRow)
                .where(col(ProjectRow.project_id) == project_id)
                .values(updated_at=utc_now(), **values),
            )
            if result.rowcount == 0:
                raise RecordNotFound("project", project_id)
            session.commit()

    # -- tasks ------------------------------------------------------------------

    def create_tasks(self, project_id: str, tasks: Sequence[TaskCreate]) -> list[TaskView]:
        now = utc_now()
        with self._session() as session:
            if session.get(ProjectRow, project_id) is None:
                raise RecordNotFound("project", project_id)
            rows = [
                TaskRow(
                    task_id=str(uuid4()),
                    project_id=project_id,
                    sequence=task.sequence,
                    title=task.title,
                    description=task.description,
                    status=TaskStatus.PENDING.value,
                    iteration_count=0,
                    created_at=now,
                    updated_at=now,
                )
                for task in tasks
            ]
            session.add_all(rows)
            session.commit()
            for row in rows:
                session.refresh(row)
            return sorted((_to_task_view(row) for row in rows), key=lambda view: view.sequence)

    def get_task(self, task_id: str) -> TaskView:
        with self._session() as session:
            row = session.get(TaskRow, task_id)
            if row is None:
                raise RecordNotFound("task", task_id)
            return _to_task_view(row)

    def get_task_by_sequence(self, project_id: str, sequence: int) -> TaskView:
        with self._session() as session:
            row = session.exec(
                select(TaskRow).where(
                    TaskRow.project_id == project_id,
                    TaskRow.sequence == sequence,
                ),
            ).one_or_none()
            if row is None:
                raise RecordNotFound("task", f"{project_id}#{sequence}")
            return _to_task_view(row)

    def list_tasks(self, project_id: str) -> list[TaskView]:
        with self._session() as session:
            rows = session.exec(
                select(TaskRow)
                .where(TaskRow.project_id == project_id)
                .order_by(col(TaskRow.sequence).asc()),
            ).all()
            return [_to_task_view(row) for row in rows]

    def get_next_pending_task(self, project_id: str) -> TaskView | None:
        with self._session() as session:
            row = session.exec(
                select(TaskRow)
                .where(
                    TaskRow.project_id == project_id,
                    TaskRow.status == TaskStatus.PENDING.value,
                )
                .order_by(col(TaskRow.sequence).asc())
                .limit(1),
            ).first()
            return _to_task_view(row) if row is not None else None

    def update_task_status(self, task_id: str, status: TaskStatus) -> None:
        self._update_task(task_id, status=TaskStatus(status).value)

    def update_task_description(self, task_id: str, description: str) -> None:
        self._update_task(task_id, description=description)

    def update_task_change_id(self, task_id: str, change_id: str) -> None:
        self._update_task(task_id, change_id=change_id)

    def increment_task_iteration(self, task_id: str) -> None:
        self._update_task(task_id, iteration_count=col(TaskRow.iteration_count) + 1)

    def _update_task(self, task_id: str, **values: object) -> None:
        with self._session() as session:
            result = session.exec(
                sa_update(TaskRow)
                .where(col(TaskRow.task_id) == task_id)
                .values(updated_at=utc_now(), **values),
            )
            if result.rowcount == 0:
                raise RecordNotFound("task", task_id)
            session.commit()

    # -- sessions ---------------------------------------------------------------

    def create_session(
        self,
        *,
        task_id: str,
        agent_role: AgentRole,
        iteration: int,
        input_prompt: str,
    ) -> SessionView:
        with self._session() as session:
            if session.get(TaskRow, task_id) is None:
                raise RecordNotFound("task", task_id)
            row = SessionRow(
                session_id=str(uuid4()),
                task_id=task_id,
                agent_role=AgentRole(agent_role).value,
                iteration=iteration,
                input_prompt=input_prompt,
                status=SessionStatus.RUNNING.value,
                created_at=utc_now(),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_session_view(row)

    def list_sessions(self, task_id: str) -> list[SessionView]:
        with self._session() as session:
            rows = session.exec(
                select(SessionRow)
                .where(SessionRow.task_id == task_id)
                .order_by(col(SessionRow.iteration).asc(), col(SessionRow.created_at).asc()),
            ).all()
            return [_to_session_view(row) for row in rows]

    def get_latest_session(self, task_id: str) -> SessionView | None:
        with self._session() as session:
            row = session.exec(
                select(SessionRow)
                .where(SessionRow.task_id == task_id)
                .order_by(col(SessionRow.created_at).desc(), col(SessionRow.iteration).desc())
                .limit(1),
            ).first()
            return _to_session_view(row) if row is not None else None

    def complete_session(self, session_id: str, status: SessionStatus) -> None:
        with self._session() as session:
            result = session.exec(
                sa_update(SessionRow)
                .where(col(SessionRow.session_id) == session_id)
                .values(status=SessionStatus(status).value, completed_at=utc_now()),
            )
            if result.rowcount == 0:
                raise RecordNotFound("session", session_id)
            session.commit()

    # -- messages & feedback ----------------------------------------------------

    def create_message(
        self,
        *,
        session_id: str,
        sequence: int,
        message_type: str,
        content: str,
    ) -> None:
        with self._session() as session:
            session.add(
                MessageRow(
                    session_id=session_id,
                    sequence=sequence,
                    message_type=message_type,
                    content=content,
                    created_at=utc_now(),
                ),
            )
            session.commit()

    def list_messages(self, session_id: str) -> list[MessageView]:
        with self._session() as session:
            rows = session.exec(
                select(MessageRow)
                .where(MessageRow.session_id == session_id)
                .order_by(col(MessageRow.sequence).asc()),
            ).all()
            return [
                MessageView(
                    message_id=int(row.message_id or 0),
                    session_id=row.session_id,
                    sequence=row.sequence,
                    message_type=row.message_type,
                    content=row.content,
                    created_at=to_utc_aware(row.created_at),
                )
                for row in rows
            ]

    def create_feedback(
        self,
        *,
        session_id: str,
        feedback_type: FeedbackType,
        content: str,
    ) -> None:
        with self._session() as session:
            session.add(
                FeedbackRow(
                    session_id=session_id,
                    feedback_type=FeedbackType(feedback_type).value,
                    content=content,
                    created_at=utc_now(),
                ),
            )
            session.commit()

    def get_latest_feedback(self, task_id: str) -> FeedbackView | None:
        with self._session() as session:
            row = session.exec(
                select(FeedbackRow)
                .join(SessionRow, col(SessionRow.session_id) == col(FeedbackRow.session_id))
                .where(SessionRow.task_id == task_id)
                .order_by(col(FeedbackRow.feedback_id).desc())
                .limit(1),
            ).first()
            if row is None:
                return None
            return FeedbackView(
                feedback_id=int(row.feedback_id or 0),
                session_id=row.session_id,
                feedback_type=FeedbackType(row.feedback_type),
                content=row.content,
                created_at=to_utc_aware(row.created_at),
            )


def _to_project_view(row: ProjectRow) -> ProjectView:
    return ProjectView(
        project_id=row.project_id,
        name=row.name,
        plan_text=row.plan_text,
        status=ProjectStatus(row.status),
        user_feedback_state=row.user_feedback_state,
        learnings_state=row.learnings_state,
        created_at=to_utc_aware(row.created_at),
        updated_at=to_utc_aware(row.updated_at),
    )


def _to_task_view(row: TaskRow) -> TaskView:
    return TaskView(
        task_id=row.task_id,
        project_id=row.project_id,
        sequence=row.sequence,
        title=row.title,
        description=row.description,
        status=TaskStatus(row.status),
        change_id=row.change_id,
        iteration_count=row.iteration_count,
        created_at=to_utc_aware(row.created_at),
        updated_at=to_utc_aware(row.updated_at),
    )


def _to_session_view(row: SessionRow) -> SessionView:
    return SessionView(
        session_id=row.session_id,
        task_id=row.task_id,
        agent_role=AgentRole(row.agent_role),
        iteration=row.iteration,
        input_prompt=row.input_prompt,
        status=SessionStatus(row.status),
        created_at=to_utc_aware(row.created_at),
        completed_at=to_utc_aware(row.completed_at) if row.completed_at else None,
    )
