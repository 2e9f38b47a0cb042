"""Typed engine events and the bounded channel they travel on."""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

IMPL_LOOP_CHANNEL_CAPACITY = 100
TASK_LOOP_CHANNEL_CAPACITY = 250
ENGINE_CHANNEL_CAPACITY = 500


class ImplLoopEventType(str, Enum):
    STARTED = "started"
    DEVELOPING = "developing"
    REVIEWING = "reviewing"
    FEEDBACK = "feedback"
    APPROVED = "approved"
    FAILED = "failed"


class TaskLoopEventType(str, Enum):
    STARTED = "started"
    TASK_BEGIN = "task_begin"
    TASK_END = "task_end"
    COMPLETED = "completed"
    FAILED = "failed"
    PROGRESS = "progress"
    PAUSED = "paused"
    RESUMED = "resumed"
    PAUSE_MODE_CHANGED = "pause_mode_changed"


class EngineEventType(str, Enum):
    PLANNING = "planning"
    PROJECT_CREATED = "project_created"
    STARTED = "started"
    TASK_LOOP = "task_loop"
    COMPLETED = "completed"
    STOPPED = "stopped"
    ERROR = "error"
    CAPTURING_LEARNINGS = "capturing_learnings"
    LEARNINGS_CAPTURED = "learnings_captured"


@dataclass(slots=True)
class ImplLoopEvent:
    """Progress of one task's developer/reviewer iterations."""

    type: ImplLoopEventType
    iteration: int
    message: str = ""


@dataclass(slots=True)
class TaskLoopEvent:
    """Task-level progress; ``progress`` events wrap an inner loop event."""

    type: TaskLoopEventType
    task_index: int = -1
    task_title: str = ""
    total_tasks: int = 0
    message: str = ""
    impl_event: ImplLoopEvent | None = None
    pause_mode: bool = False


@dataclass(slots=True)
class EngineEvent:
    """Top-level event exposed to presentation layers."""

    type: EngineEventType
    message: str = ""
    task_loop_event: TaskLoopEvent | None = None


class EventChannel(Generic[T]):
    """Bounded single-producer queue with drop-on-full sends.

    Sending never blocks. Iterating blocks until an item arrives and stops once
    the channel is closed and drained.
    """

    def __init__(self, capacity: int, *, name: str = "events") -> None:
        if capacity <= 0:
            raise ValueError("Channel capacity must be > 0.")
        self.capacity = capacity
        self.name = name
        self._items: deque[T] = deque()
        self._closed = False
        self._dropped = 0
        self._condition = threading.Condition()

    @property
    def closed(self) -> bool:
        with self._condition:
            return self._closed

    @property
    def dropped(self) -> int:
        with self._condition:
            return self._dropped

    def send(self, item: T) -> bool:
        with self._condition:
            if self._closed:
                logger.warning("Event dropped on closed %s channel: %r", self.name, item)
                return False
            if len(self._items) >= self.capacity:
                self._dropped += 1
                logger.warning("Event channel %s full, dropping event: %r", self.name, item)
                return False
            self._items.append(item)
            self._condition.notify_all()
            return True

    def close(self) -> None:
        with self._condition:
            if self._closed:
                return
            self._closed = True
            self._condition.notify_all()

    def receive(self, timeout: float | None = None) -> T | None:
        """Next item, or None once closed and drained (or on timeout)."""

        with self._condition:
            self._condition.wait_for(lambda: self._items or self._closed, timeout=timeout)
            if self._items:
                return self._items.popleft()
            return None

    def drain(self) -> list[T]:
        with self._condition:
            items = list(self._items)
            self._items.clear()
            return items

    def __iter__(self) -> Iterator[T]:
        while True:
            with self._condition:
                self._condition.wait_for(lambda: self._items or self._closed)
                if not self._items:
                    return
                item = self._items.popleft()
            yield item
