"""Subprocess-backed agent sessions for the Claude CLI."""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import tempfile
from collections.abc import Iterator
from pathlib import Path
from typing import IO

from ralph.engine.backend.base import StreamEvent, StreamEventType
from ralph.engine.backend.stream import parse_stream_line
from ralph.engine.errors import AgentError
from ralph.engine.models import AgentRole

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TEMPLATE = (
    "claude -p --output-format stream-json --verbose --model {model} --max-turns {max_turns}"
)
_STDERR_TAIL_CHARS = 2_000


class ClaudeCliSession:
    """Running CLI agent process streaming JSON lines on stdout."""

    def __init__(
        self,
        *,
        process: subprocess.Popen[str],
        stderr_handle: IO[str],
        command_head: str,
        scratch_dir: Path,
    ) -> None:
        self._process = process
        self._stderr_handle = stderr_handle
        self._command_head = command_head
        self._scratch_dir = scratch_dir
        self._error_message: str | None = None

    def events(self) -> Iterator[StreamEvent]:
        stdout = self._process.stdout
        if stdout is None:
            return
        for line in stdout:
            stripped = line.strip()
            if not stripped:
                continue
            event = parse_stream_line(stripped)
            if event.is_error and event.type in (StreamEventType.RESULT, StreamEventType.ERROR):
                self._error_message = event.text or "agent reported an error result"
            yield event

    def wait(self) -> None:
        try:
            if self._process.stdout is not None:
                self._process.stdout.read()
                self._process.stdout.close()
            returncode = self._process.wait()
            stderr_tail = self._read_stderr_tail()
        finally:
            self._stderr_handle.close()
            shutil.rmtree(self._scratch_dir, ignore_errors=True)

        if returncode != 0:
            detail = f": {stderr_tail}" if stderr_tail else ""
            raise AgentError(f"{self._command_head} exited with code {returncode}{detail}")
        if self._error_message is not None:
            raise AgentError(f"{self._command_head} reported error: {self._error_message}")

    def _read_stderr_tail(self) -> str:
        self._stderr_handle.flush()
        self._stderr_handle.seek(0)
        return self._stderr_handle.read()[-_STDERR_TAIL_CHARS:].strip()


class ClaudeCliClient:
    """Start Claude CLI agent sessions from a command template."""

    def __init__(
        self,
        *,
        command_template: str = DEFAULT_COMMAND_TEMPLATE,
        model: str = "opus",
        max_turns: int = 50,
        work_dir: Path | None = None,
    ) -> None:
        self.command_template = command_template
        self.model = model
        self.max_turns = max_turns
        self.work_dir = work_dir

    def run(self, prompt: str, *, role: AgentRole | None = None) -> ClaudeCliSession:
        scratch_dir = Path(tempfile.mkdtemp(prefix="ralph-agent-"))
        prompt_file = scratch_dir / "prompt.md"
        prompt_file.write_text(prompt, "utf-8")
        try:
            run_args, command_head = _build_run_args(
                command_template=self.command_template,
                model=self.model,
                max_turns=self.max_turns,
                prompt=prompt,
                prompt_file=prompt_file,
            )
        except AgentError:
            shutil.rmtree(scratch_dir, ignore_errors=True)
            raise
        prompt_on_stdin = not _mentions_prompt(self.command_template)

        env = os.environ.copy()
        if role is not None:
            env["RALPH_AGENT_ROLE"] = AgentRole(role).value
        env["RALPH_AGENT_MODEL"] = self.model

        stderr_handle = tempfile.TemporaryFile(mode="w+", encoding="utf-8")  # noqa: SIM115
        stdin_handle = prompt_file.open("rb") if prompt_on_stdin else None
        logger.debug("Starting agent %s (role=%s, stdin=%s)", command_head, role, prompt_on_stdin)
        try:
            # Own session: a terminal Ctrl-C reaches ralph only, the agent finishes its turn.
            process = subprocess.Popen(  # noqa: S603
                run_args,
                cwd=self.work_dir,
                env=env,
                stdin=stdin_handle or subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=stderr_handle,
                text=True,
                encoding="utf-8",
                start_new_session=True,
            )
        except FileNotFoundError as error:
            stderr_handle.close()
            shutil.rmtree(scratch_dir, ignore_errors=True)
            raise AgentError(f"Agent command not found: {command_head}") from error
        except OSError as error:
            stderr_handle.close()
            shutil.rmtree(scratch_dir, ignore_errors=True)
            raise AgentError(f"Agent failed to start: {error}") from error
        finally:
            if stdin_handle is not None:
                stdin_handle.close()

        return ClaudeCliSession(
            process=process,
            stderr_handle=stderr_handle,
            command_head=command_head,
            scratch_dir=scratch_dir,
        )


def _build_run_args(
    *,
    command_template: str,
    model: str,
    max_turns: int,
    prompt: str,
    prompt_file: Path,
) -> tuple[list[str], str]:
    stripped = command_template.strip()
    if not stripped:
        raise AgentError("Agent command template is empty.")
    try:
        rendered = stripped.format(
            model=shlex.quote(model),
            max_turns=max_turns,
            prompt=shlex.quote(prompt),
            prompt_file=shlex.quote(str(prompt_file)),
        )
    except KeyError as error:
        raise AgentError(f"Unsupported command template placeholder: {error}") from error

    argv = shlex.split(rendered)
    if not argv:
        raise AgentError("Agent command template rendered empty command.")
    return argv, argv[0]



def _mentions_prompt(command_template: str) -> bool:
    """Templates without a prompt placeholder receive the prompt on stdin."""

    return "{prompt}" in command_template or "{prompt_file}" in command_template
