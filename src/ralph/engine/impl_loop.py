"""Per-task developer/reviewer iteration state machine."""

from __future__ import annotations

import logging
import threading
from enum import Enum

from ralph.engine.backend.base import AgentClient, StreamEvent, collect_text
from ralph.engine.errors import (
    AgentError,
    ChangeSetError,
    EscalationError,
    RunCancelled,
    best_effort,
)
from ralph.engine.events import (
    IMPL_LOOP_CHANNEL_CAPACITY,
    EventChannel,
    ImplLoopEvent,
    ImplLoopEventType,
)
from ralph.engine.models import (
    AgentRole,
    FeedbackType,
    ReviewVerdict,
    SessionStatus,
    SessionView,
    TaskView,
)
from ralph.engine.parser import parse_reviewer_verdict
from ralph.engine.prompts import PromptLibrary
from ralph.engine.store import RecordStore
from ralph.engine.vcs import ChangeSetProvider

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 5


class ImplLoopStatus(str, Enum):
    """Lifecycle of one implementation loop."""

    PENDING = "pending"
    RUNNING = "running"
    APPROVED = "approved"
    ESCALATED = "escalated"
    FAILED = "failed"


class ImplementationLoop:
    """Runs developer then reviewer until approval or ``max_iterations`` rejections.

    Each rejected round stores the reviewer feedback and bumps the task's
    iteration counter; the counter therefore equals the number of rejections.
    Events are published on ``events`` and the channel is closed when ``run``
    returns or raises.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: RecordStore,
        agents: AgentClient,
        change_sets: ChangeSetProvider,
        task: TaskView,
        plan_text: str,
        prompts: PromptLibrary | None = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        channel_capacity: int = IMPL_LOOP_CHANNEL_CAPACITY,
    ) -> None:
        if max_iterations <= 0:
            raise ValueError("max_iterations must be > 0.")
        self.store = store
        self.agents = agents
        self.change_sets = change_sets
        self.task = task
        self.plan_text = plan_text
        self.prompts = prompts or PromptLibrary()
        self.max_iterations = max_iterations
        self.events: EventChannel[ImplLoopEvent] = EventChannel(
            channel_capacity,
            name=f"impl-loop:{task.sequence}",
        )
        self._lock = threading.Lock()
        self._status = ImplLoopStatus.PENDING
        self._iteration = 0

    @property
    def status(self) -> ImplLoopStatus:
        with self._lock:
            return self._status

    @property
    def iteration(self) -> int:
        with self._lock:
            return self._iteration

    def run(self, cancel: threading.Event | None = None) -> None:
        """Drive the task to approval; raise on cancellation, escalation or failure."""

        cancel = cancel or threading.Event()
        try:
            self._iterate(cancel)
        except EscalationError as error:
            self._set_status(ImplLoopStatus.ESCALATED)
            logger.info("Task %r escalated: %s", self.task.title, error)
            self._emit(ImplLoopEventType.FAILED, str(error))
            raise
        except RunCancelled:
            self._set_status(ImplLoopStatus.FAILED)
            logger.info("Task %r interrupted", self.task.title)
            raise
        except Exception as error:
            self._set_status(ImplLoopStatus.FAILED)
            logger.info("Task %r failed: %s", self.task.title, error)
            self._emit(ImplLoopEventType.FAILED, str(error))
            raise
        finally:
            self.events.close()

    def _iterate(self, cancel: threading.Event) -> None:
        self._set_status(ImplLoopStatus.RUNNING)
        self._emit(ImplLoopEventType.STARTED, f"Starting task: {self.task.title}")

        feedback = ""
        for iteration in range(1, self.max_iterations + 1):
            with self._lock:
                self._iteration = iteration
            _raise_if_cancelled(cancel)

            self._emit(
                ImplLoopEventType.DEVELOPING,
                f"Developer working (iteration {iteration}/{self.max_iterations})",
            )
            developer_prompt = self.prompts.developer(
                plan=self.plan_text,
                task=self.task,
                feedback=feedback,
            )
            self._run_agent(AgentRole.DEVELOPER, iteration, developer_prompt, cancel)
            _raise_if_cancelled(cancel)

            diff = self._show_diff()
            self._emit(ImplLoopEventType.REVIEWING, f"Reviewer checking (iteration {iteration})")
            reviewer_prompt = self.prompts.reviewer(plan=self.plan_text, task=self.task, diff=diff)
            review_text, review_session = self._run_agent(
                AgentRole.REVIEWER,
                iteration,
                reviewer_prompt,
                cancel,
            )
            verdict = parse_reviewer_verdict(review_text)

            if verdict.approved:
                self._set_status(ImplLoopStatus.APPROVED)
                logger.info("Task %r approved at iteration %d", self.task.title, iteration)
                self._emit(ImplLoopEventType.APPROVED, "Reviewer approved the changes")
                return

            feedback = self._record_rejection(verdict, review_session)

        raise EscalationError(max_iterations=self.max_iterations)

    def _run_agent(
        self,
        role: AgentRole,
        iteration: int,
        prompt: str,
        cancel: threading.Event,
    ) -> tuple[str, SessionView]:
        session = self.store.create_session(
            task_id=self.task.task_id,
            agent_role=role,
            iteration=iteration,
            input_prompt=prompt,
        )
        events: list[StreamEvent] = []
        try:
            handle = self.agents.run(prompt, role=role)
            for sequence, event in enumerate(handle.events(), start=1):
                events.append(event)
                best_effort(
                    "message archival",
                    self.store.create_message,
                    session_id=session.session_id,
                    sequence=sequence,
                    message_type=event.type.value,
                    content=event.raw,
                )
            handle.wait()
        except Exception as error:
            best_effort(
                "session failure update",
                self.store.complete_session,
                session.session_id,
                SessionStatus.FAILED,
            )
            if cancel.is_set():
                raise RunCancelled(f"{role.value} session interrupted") from error
            if isinstance(error, AgentError):
                raise
            raise AgentError(f"{role.value} session failed: {error}", role=role.value) from error

        best_effort(
            "session completion update",
            self.store.complete_session,
            session.session_id,
            SessionStatus.COMPLETED,
        )
        return collect_text(events), session

    def _show_diff(self) -> str:
        try:
            return self.change_sets.show()
        except ChangeSetError:
            raise
        except Exception as error:
            raise ChangeSetError(f"Failed to get diff: {error}") from error

    def _record_rejection(self, verdict: ReviewVerdict, review_session: SessionView) -> str:
        best_effort(
            "feedback capture",
            self.store.create_feedback,
            session_id=review_session.session_id,
            feedback_type=FeedbackType.MAJOR,
            content=verdict.feedback,
        )
        best_effort(
            "iteration increment",
            self.store.increment_task_iteration,
            self.task.task_id,
        )
        self._emit(ImplLoopEventType.FEEDBACK, verdict.feedback)
        return verdict.feedback

    def _set_status(self, status: ImplLoopStatus) -> None:
        with self._lock:
            self._status = status

    def _emit(self, event_type: ImplLoopEventType, message: str) -> None:
        self.events.send(ImplLoopEvent(type=event_type, iteration=self.iteration, message=message))


def _raise_if_cancelled(cancel: threading.Event) -> None:
    if cancel.is_set():
        raise RunCancelled
