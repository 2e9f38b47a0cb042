"""Error taxonomy for the orchestration engine."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ralph.engine.task_loop import TaskLoopResult

logger = logging.getLogger(__name__)


class EngineError(RuntimeError):
    """Base class for engine failures.

    ``result`` carries partial task-loop counters when the error escapes a run.
    """

    result: TaskLoopResult | None = None


class RunCancelled(EngineError):
    """Cooperative stop requested; never a task failure."""

    def __init__(self, message: str = "run cancelled") -> None:
        super().__init__(message)


class EscalationError(EngineError):
    """Review iterations exhausted without approval."""

    def __init__(self, *, max_iterations: int) -> None:
        super().__init__(f"max iterations ({max_iterations}) reached")
        self.max_iterations = max_iterations


class AgentError(EngineError):
    """Agent session or its transport failed."""

    def __init__(self, message: str, *, role: str | None = None) -> None:
        super().__init__(message)
        self.role = role


class ChangeSetError(EngineError):
    """Change-set provider call failed."""


class PlanningError(EngineError):
    """Planner output could not be turned into tasks."""


class StoreError(RuntimeError):
    """Record store operation failed.

    Like ``EngineError``, carries partial task-loop counters as ``result``.
    """

    result: TaskLoopResult | None = None


class RecordNotFound(StoreError):
    """Requested record does not exist."""

    def __init__(self, kind: str, identity: str) -> None:
        super().__init__(f"{kind} not found: {identity}")
        self.kind = kind
        self.identity = identity


def best_effort(
    description: str,
    fn: Callable[..., object],
    *args: object,
    **kwargs: object,
) -> bool:
    """Run a non-critical store write; log and swallow ``StoreError``."""

    try:
        fn(*args, **kwargs)
    except StoreError as error:
        logger.warning("Best-effort %s failed: %s", description, error)
        logger.debug("Best-effort %s traceback", description, exc_info=True)
        return False
    return True
