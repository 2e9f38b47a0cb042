"""Change-set providers: jj working-copy snapshots per task."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Protocol
from uuid import uuid4

from ralph.engine.errors import ChangeSetError

logger = logging.getLogger(__name__)

_NOT_A_REPO_HINTS = ("there is no jj repo", "not a jj repository", "no such repo")


class JjNotFoundError(ChangeSetError):
    """The jj binary is not installed or not on PATH."""


class NotARepositoryError(ChangeSetError):
    """The working directory is not inside a jj repository."""


class ChangeSetProvider(Protocol):
    """Snapshots per-task work and renders it for review."""

    def new_change(self, title: str) -> str:
        """Start a new change described by ``title`` and return its id."""

    def show(self) -> str:
        """Diff of the current change."""

    def describe(self, description: str) -> None:
        """Replace the description of the current change."""

    def log(self, revset: str = "", template: str = "") -> str:
        """History for ``revset`` rendered with ``template``."""


class JjClient:
    """Thin wrapper around the ``jj`` CLI."""

    def __init__(self, work_dir: Path | None = None, *, binary: str = "jj") -> None:
        self.work_dir = work_dir
        self.binary = binary

    def new_change(self, title: str) -> str:
        self._run("new", "-m", title)
        return self.current_change_id()

    def show(self) -> str:
        return self._run("show")

    def describe(self, description: str) -> None:
        self._run("describe", "-m", description)

    def current_change_id(self) -> str:
        change_id = self._run("log", "-r", "@", "-T", "change_id", "--no-graph").strip()
        if not change_id:
            raise ChangeSetError("Unable to determine current change id.")
        return change_id

    def status(self) -> str:
        return self._run("status")

    def log(self, revset: str = "", template: str = "") -> str:
        args = ["log"]
        if revset:
            args.extend(["-r", revset])
        if template:
            args.extend(["-T", template])
        return self._run(*args)

    def _run(self, *args: str) -> str:
        logger.debug("Running %s %s", self.binary, " ".join(args))
        try:
            completed = subprocess.run(  # noqa: S603
                [self.binary, *args],
                cwd=self.work_dir,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as error:
            raise JjNotFoundError(f"{self.binary} command not found") from error
        except OSError as error:
            raise ChangeSetError(f"{self.binary} {args[0]} failed to start: {error}") from error

        if completed.returncode != 0:
            stderr = completed.stderr.strip()
            if any(hint in stderr.lower() for hint in _NOT_A_REPO_HINTS):
                raise NotARepositoryError(f"not a jj repository: {self.work_dir or Path.cwd()}")
            raise ChangeSetError(f"{self.binary} {args[0]} failed: {stderr}")
        return completed.stdout


class NullChangeSets:
    """Change-set provider for runs outside version control."""

    def new_change(self, title: str) -> str:
        logger.debug("No VCS configured; skipping change for %r", title)
        return f"local-{uuid4().hex[:12]}"

    def show(self) -> str:
        return ""

    def describe(self, description: str) -> None:
        logger.debug("No VCS configured; skipping describe %r", description)

    def log(self, revset: str = "", template: str = "") -> str:
        return ""
