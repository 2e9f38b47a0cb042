"""Runtime configuration for the ralph engine and CLI."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ralph.engine.backend.claude_cli import DEFAULT_COMMAND_TEMPLATE
from ralph.engine.models import AgentRole

DEFAULT_CONFIG_PATH = Path("~/.config/ralph/config.json")


@dataclass(slots=True)
class ClaudeSettings:
    """Agent CLI invocation settings."""

    model: str = "opus"
    max_turns: int = 50
    command_template: str = DEFAULT_COMMAND_TEMPLATE


@dataclass(slots=True)
class AgentPromptSettings:
    """Optional prompt template files per agent role."""

    developer: Path | None = None
    reviewer: Path | None = None
    planner: Path | None = None
    documenter: Path | None = None

    def template_paths(self) -> dict[AgentRole, Path]:
        paths = {
            AgentRole.DEVELOPER: self.developer,
            AgentRole.REVIEWER: self.reviewer,
            AgentRole.PLANNER: self.planner,
            AgentRole.DOCUMENTER: self.documenter,
        }
        return {role: path for role, path in paths.items() if path is not None}


@dataclass(slots=True)
class Settings:
    """Application settings: JSON config file overlaid by ``RALPH_*`` env vars."""

    db_path: Path = Path(".ralph.db")
    work_dir: Path = field(default_factory=Path.cwd)
    max_review_iterations: int = 5
    max_task_attempts: int = 10
    default_pause_mode: bool = False
    sqlite_busy_timeout_ms: int = 5_000
    claude: ClaudeSettings = field(default_factory=ClaudeSettings)
    agents: AgentPromptSettings = field(default_factory=AgentPromptSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from the config file and environment with local defaults."""

        file_values = _load_config_file()
        claude_values = _section(file_values, "claude")
        agent_values = _section(file_values, "agents")

        return cls(
            db_path=db_path
            or Path(
                os.getenv("RALPH_DB_PATH", str(file_values.get("db_path", ".ralph.db"))),
            ).expanduser(),
            work_dir=Path(
                os.getenv("RALPH_WORK_DIR", str(file_values.get("work_dir", Path.cwd()))),
            ).expanduser(),
            max_review_iterations=int(
                os.getenv(
                    "RALPH_MAX_REVIEW_ITERATIONS",
                    str(file_values.get("max_review_iterations", 5)),
                ),
            ),
            max_task_attempts=int(
                os.getenv(
                    "RALPH_MAX_TASK_ATTEMPTS",
                    str(file_values.get("max_task_attempts", 10)),
                ),
            ),
            default_pause_mode=_env_bool(
                "RALPH_DEFAULT_PAUSE_MODE",
                default=bool(file_values.get("default_pause_mode", False)),
            ),
            sqlite_busy_timeout_ms=int(os.getenv("RALPH_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            claude=ClaudeSettings(
                model=os.getenv("RALPH_CLAUDE_MODEL", str(claude_values.get("model", "opus"))),
                max_turns=int(
                    os.getenv("RALPH_CLAUDE_MAX_TURNS", str(claude_values.get("max_turns", 50))),
                ),
                command_template=os.getenv(
                    "RALPH_CLAUDE_COMMAND",
                    str(claude_values.get("command_template", DEFAULT_COMMAND_TEMPLATE)),
                ),
            ),
            agents=AgentPromptSettings(
                developer=_prompt_path("RALPH_DEVELOPER_PROMPT", agent_values.get("developer")),
                reviewer=_prompt_path("RALPH_REVIEWER_PROMPT", agent_values.get("reviewer")),
                planner=_prompt_path("RALPH_PLANNER_PROMPT", agent_values.get("planner")),
                documenter=_prompt_path("RALPH_DOCUMENTER_PROMPT", agent_values.get("documenter")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the engine cannot run with."""

        if self.max_review_iterations <= 0:
            raise ValueError("RALPH_MAX_REVIEW_ITERATIONS must be > 0.")
        if self.max_task_attempts < 0:
            raise ValueError("RALPH_MAX_TASK_ATTEMPTS must be >= 0.")
        if self.claude.max_turns <= 0:
            raise ValueError("RALPH_CLAUDE_MAX_TURNS must be > 0.")
        if not self.claude.model.strip():
            raise ValueError("RALPH_CLAUDE_MODEL must not be empty.")
        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("RALPH_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        for role, path in self.agents.template_paths().items():
            if not path.is_file():
                raise ValueError(f"Prompt template for {role.value} not found: {path}")


def _load_config_file() -> dict[str, Any]:
    raw_path = os.getenv("RALPH_CONFIG")
    path = Path(raw_path).expanduser() if raw_path else DEFAULT_CONFIG_PATH.expanduser()
    if not path.is_file():
        if raw_path:
            raise ValueError(f"Config file not found: {path}")
        return {}
    try:
        payload = json.loads(path.read_text("utf-8"))
    except json.JSONDecodeError as error:
        raise ValueError(f"Invalid JSON in config file {path}: {error}") from error
    if not isinstance(payload, dict):
        raise ValueError(f"Config file {path} must contain a JSON object.")
    return payload


def _section(values: dict[str, Any], name: str) -> dict[str, Any]:
    section = values.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"Config section {name!r} must be a JSON object.")
    return section


def _prompt_path(env_name: str, file_value: object) -> Path | None:
    value = os.getenv(env_name) or (str(file_value) if file_value else "")
    if not value.strip():
        return None
    return Path(value.strip()).expanduser()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
