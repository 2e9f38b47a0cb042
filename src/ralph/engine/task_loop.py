"""Sequences a project's tasks through implementation loops."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from ralph.engine.backend.base import AgentClient
from ralph.engine.errors import (
    ChangeSetError,
    EngineError,
    EscalationError,
    RunCancelled,
    StoreError,
    best_effort,
)
from ralph.engine.events import (
    IMPL_LOOP_CHANNEL_CAPACITY,
    TASK_LOOP_CHANNEL_CAPACITY,
    EventChannel,
    ImplLoopEvent,
    TaskLoopEvent,
    TaskLoopEventType,
)
from ralph.engine.impl_loop import DEFAULT_MAX_ITERATIONS, ImplementationLoop
from ralph.engine.models import ProjectStatus, TaskStatus, TaskView
from ralph.engine.prompts import PromptLibrary
from ralph.engine.store import RecordStore
from ralph.engine.vcs import ChangeSetProvider

logger = logging.getLogger(__name__)

_PAUSE_POLL_SECONDS = 0.1


@dataclass(slots=True)
class TaskLoopResult:
    """Counters for one task loop run."""

    completed: int = 0
    failed: int = 0
    skipped: int = 0


class TaskLoop:
    """Runs every unresolved task of a project in sequence order.

    Tasks already ``completed``/``failed``/``escalated`` are counted without
    being rerun. A failed task stops the run unless ``max_task_attempts`` is
    positive, in which case the loop moves on. With pause mode enabled the loop
    waits for ``continue_()`` between tasks.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: RecordStore,
        agents: AgentClient,
        change_sets: ChangeSetProvider,
        project_id: str,
        prompts: PromptLibrary | None = None,
        max_review_iterations: int = DEFAULT_MAX_ITERATIONS,
        max_task_attempts: int = 0,
        pause_mode: bool = False,
        channel_capacity: int = TASK_LOOP_CHANNEL_CAPACITY,
    ) -> None:
        self.store = store
        self.agents = agents
        self.change_sets = change_sets
        self.project_id = project_id
        self.prompts = prompts or PromptLibrary()
        self.max_review_iterations = max_review_iterations
        self.max_task_attempts = max_task_attempts
        self.events: EventChannel[TaskLoopEvent] = EventChannel(channel_capacity, name="task-loop")
        self.result = TaskLoopResult()
        self._lock = threading.Lock()
        self._pause_mode = pause_mode
        self._paused = False
        self._resume = threading.Event()
        self._current_index = -1
        self._total = 0

    @property
    def pause_mode(self) -> bool:
        with self._lock:
            return self._pause_mode

    @property
    def paused(self) -> bool:
        with self._lock:
            return self._paused

    @property
    def current_task_index(self) -> int:
        with self._lock:
            return self._current_index

    def set_pause_mode(self, enabled: bool) -> None:
        """Toggle pausing after each task; safe to call from any thread."""

        with self._lock:
            self._pause_mode = enabled
        self._emit(
            TaskLoopEventType.PAUSE_MODE_CHANGED,
            message="Pause mode enabled" if enabled else "Pause mode disabled",
            pause_mode=enabled,
        )

    def continue_(self) -> bool:
        """Release a paused loop. Ignored when the loop is not paused."""

        with self._lock:
            if not self._paused:
                return False
            self._resume.set()
            return True

    def run(self, cancel: threading.Event | None = None) -> TaskLoopResult:
        """Process all tasks; errors carry the partial counters as ``result``."""

        cancel = cancel or threading.Event()
        try:
            return self._run(cancel)
        except (EngineError, StoreError) as error:
            error.result = self.result
            raise
        finally:
            self.events.close()

    def _run(self, cancel: threading.Event) -> TaskLoopResult:
        project = self.store.get_project(self.project_id)
        tasks = self.store.list_tasks(self.project_id)
        self._total = len(tasks)
        if not tasks:
            self._emit(TaskLoopEventType.COMPLETED, message="No tasks to run")
            return self.result

        self.store.update_project_status(self.project_id, ProjectStatus.IN_PROGRESS)
        self._emit(TaskLoopEventType.STARTED, message=f"Running {len(tasks)} tasks")

        for index, task in enumerate(tasks):
            if cancel.is_set():
                raise RunCancelled
            with self._lock:
                self._current_index = index

            if task.status is TaskStatus.COMPLETED:
                self.result.completed += 1
                continue
            if task.status is TaskStatus.FAILED:
                self.result.failed += 1
                continue
            if task.status is TaskStatus.ESCALATED:
                self.result.skipped += 1
                continue

            self._process_task(index, task, project.plan_text, cancel)

            if self.pause_mode and index < len(tasks) - 1:
                self._wait_for_continue(index, task, cancel)

        final_status = ProjectStatus.FAILED if self.result.failed else ProjectStatus.COMPLETED
        self.store.update_project_status(self.project_id, final_status)
        self._emit(
            TaskLoopEventType.COMPLETED,
            message=(
                f"Completed: {self.result.completed}, failed: {self.result.failed}, "
                f"skipped: {self.result.skipped}"
            ),
        )
        return self.result

    def _process_task(
        self,
        index: int,
        task: TaskView,
        plan_text: str,
        cancel: threading.Event,
    ) -> None:
        self._emit(TaskLoopEventType.TASK_BEGIN, index, task, message=f"Starting: {task.title}")
        self.store.update_task_status(task.task_id, TaskStatus.IN_PROGRESS)

        try:
            self._implement(index, task, plan_text, cancel)
        except (RunCancelled, StoreError):
            raise
        except EscalationError as error:
            self._record_failure(index, task, TaskStatus.ESCALATED, error)
        except Exception as error:
            self._record_failure(index, task, TaskStatus.FAILED, error)
        else:
            self.store.update_task_status(task.task_id, TaskStatus.COMPLETED)
            self.result.completed += 1
            self._emit(TaskLoopEventType.TASK_END, index, task, message="Task completed")

    def _implement(
        self,
        index: int,
        task: TaskView,
        plan_text: str,
        cancel: threading.Event,
    ) -> None:
        try:
            change_id = self.change_sets.new_change(task.title)
        except ChangeSetError:
            raise
        except Exception as error:
            raise ChangeSetError(f"Failed to create change: {error}") from error
        self.store.update_task_change_id(task.task_id, change_id)

        loop = ImplementationLoop(
            store=self.store,
            agents=self.agents,
            change_sets=self.change_sets,
            task=task,
            plan_text=plan_text,
            prompts=self.prompts,
            max_iterations=self.max_review_iterations,
            channel_capacity=IMPL_LOOP_CHANNEL_CAPACITY,
        )
        forwarder = threading.Thread(
            target=self._forward,
            args=(loop.events, index, task),
            daemon=True,
            name=f"ralph-forward-{task.sequence}",
        )
        forwarder.start()
        try:
            loop.run(cancel)
        finally:
            forwarder.join()

    def _record_failure(
        self,
        index: int,
        task: TaskView,
        status: TaskStatus,
        error: Exception,
    ) -> None:
        best_effort("task status update", self.store.update_task_status, task.task_id, status)
        self.result.failed += 1
        logger.warning("Task %d (%s) %s: %s", task.sequence, task.title, status.value, error)
        self._emit(TaskLoopEventType.TASK_END, index, task, message=f"Task {status.value}: {error}")

        if self.max_task_attempts > 0:
            return
        best_effort(
            "project status update",
            self.store.update_project_status,
            self.project_id,
            ProjectStatus.FAILED,
        )
        self._emit(TaskLoopEventType.FAILED, index, task, message=str(error))
        raise error

    def _wait_for_continue(self, index: int, task: TaskView, cancel: threading.Event) -> None:
        with self._lock:
            self._resume.clear()
            self._paused = True
        self._emit(TaskLoopEventType.PAUSED, index, task, message="Paused; waiting to continue")
        try:
            while not self._resume.wait(timeout=_PAUSE_POLL_SECONDS):
                if cancel.is_set():
                    raise RunCancelled
        finally:
            with self._lock:
                self._paused = False
        self._emit(TaskLoopEventType.RESUMED, index, task, message="Resumed")

    def _forward(self, events: EventChannel[ImplLoopEvent], index: int, task: TaskView) -> None:
        for event in events:
            self._emit(
                TaskLoopEventType.PROGRESS,
                index,
                task,
                message=event.message,
                impl_event=event,
            )

    def _emit(
        self,
        event_type: TaskLoopEventType,
        index: int = -1,
        task: TaskView | None = None,
        *,
        message: str = "",
        impl_event: ImplLoopEvent | None = None,
        pause_mode: bool | None = None,
    ) -> None:
        self.events.send(
            TaskLoopEvent(
                type=event_type,
                task_index=index,
                task_title=task.title if task else "",
                total_tasks=self._total,
                message=message,
                impl_event=impl_event,
                pause_mode=self.pause_mode if pause_mode is None else pause_mode,
            ),
        )
