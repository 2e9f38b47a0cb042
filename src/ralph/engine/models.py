"""Domain models for projects, tasks, sessions and parsed agent output."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class ProjectStatus(str, Enum):
    """Aggregate project lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskStatus(str, Enum):
    """Per-task lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    ESCALATED = "escalated"


class SessionStatus(str, Enum):
    """Agent invocation states."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class AgentRole(str, Enum):
    """Kinds of agents the engine invokes."""

    DEVELOPER = "developer"
    REVIEWER = "reviewer"
    PLANNER = "planner"
    DOCUMENTER = "documenter"


class FeedbackType(str, Enum):
    """Severity attached to stored reviewer feedback."""

    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"


LEARNINGS_STATE_COMPLETE = "complete"


@dataclass(slots=True)
class ProjectView:
    """Readable project row."""

    project_id: str
    name: str
    plan_text: str
    status: ProjectStatus
    user_feedback_state: str
    learnings_state: str
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class TaskCreate:
    """Input payload for a planned task."""

    sequence: int
    title: str
    description: str = ""


@dataclass(slots=True)
class TaskView:
    """Readable task row."""

    task_id: str
    project_id: str
    sequence: int
    title: str
    description: str
    status: TaskStatus
    change_id: str | None
    iteration_count: int
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class SessionView:
    """One agent invocation for one iteration of one task."""

    session_id: str
    task_id: str
    agent_role: AgentRole
    iteration: int
    input_prompt: str
    status: SessionStatus
    created_at: datetime
    completed_at: datetime | None


@dataclass(slots=True)
class MessageView:
    """Archived stream event of an agent session."""

    message_id: int
    session_id: str
    sequence: int
    message_type: str
    content: str
    created_at: datetime


@dataclass(slots=True)
class FeedbackView:
    """Stored reviewer feedback."""

    feedback_id: int
    session_id: str
    feedback_type: FeedbackType
    content: str
    created_at: datetime


@dataclass(slots=True)
class ParseResult:
    """Structured view over one agent response."""

    progress: str = ""
    learnings: str = ""
    status: str = ""
    is_done: bool = False
    raw: str = ""


@dataclass(slots=True)
class ReviewVerdict:
    """Reviewer decision extracted from free text."""

    approved: bool
    feedback: str = ""


@dataclass(slots=True)
class RoleParseResult:
    """Role-aware parse: developer completion or reviewer verdict."""

    progress: str
    learnings: str
    done: bool
    verdict: ReviewVerdict | None = None
