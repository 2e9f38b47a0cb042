"""CLI entrypoint for ralph."""

import logging
import os
from collections.abc import Iterable
from pathlib import Path
from typing import TextIO

import rich_click as click

from ralph import __version__
from ralph.engine.controllers import (
    ProjectCommand,
    RalphCliController,
    ResumeCommand,
    RunCommand,
    StatusCommand,
    TaskExportCommand,
    TaskImportCommand,
)
from ralph.engine.errors import EngineError, StoreError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = RalphCliController()

_DB_PATH_OPTION = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)


@click.group()
@click.version_option(version=__version__, prog_name="ralph")
def ralph() -> None:
    """Run a plan through **developer** and **reviewer** agents, task by task."""

    logging.basicConfig(
        level=os.getenv("RALPH_LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@ralph.command("run")
@click.argument("plan_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@_DB_PATH_OPTION
@click.option(
    "--pause/--no-pause",
    default=None,
    help="Wait for confirmation after each task.",
)
@click.option("--no-vcs", is_flag=True, default=False, help="Run without jj change tracking.")
@click.option(
    "--max-iterations",
    type=click.IntRange(min=1),
    default=None,
    help="Review rounds per task before escalation.",
)
@click.option(
    "--skip-learnings",
    is_flag=True,
    default=False,
    help="Do not run the documenter after the tasks finish.",
)
def run(  # noqa: PLR0913
    plan_file: Path,
    db_path: Path | None,
    pause: bool | None,
    no_vcs: bool,
    max_iterations: int | None,
    skip_learnings: bool,
) -> None:
    """Plan a new project from PLAN_FILE and implement its tasks."""

    _emit_lines(
        CONTROLLER.run(
            RunCommand(
                plan_file=plan_file,
                db_path=db_path,
                pause=pause,
                no_vcs=no_vcs,
                max_iterations=max_iterations,
                skip_learnings=skip_learnings,
                on_pause=_confirm_continue,
            ),
        ),
    )


@ralph.command("resume")
@click.argument("project_id")
@_DB_PATH_OPTION
@click.option(
    "--pause/--no-pause",
    default=None,
    help="Wait for confirmation after each task.",
)
@click.option("--no-vcs", is_flag=True, default=False, help="Run without jj change tracking.")
@click.option(
    "--max-iterations",
    type=click.IntRange(min=1),
    default=None,
    help="Review rounds per task before escalation.",
)
@click.option(
    "--skip-learnings",
    is_flag=True,
    default=False,
    help="Do not run the documenter after the tasks finish.",
)
def resume(  # noqa: PLR0913
    project_id: str,
    db_path: Path | None,
    pause: bool | None,
    no_vcs: bool,
    max_iterations: int | None,
    skip_learnings: bool,
) -> None:
    """Continue PROJECT_ID from its first unfinished task."""

    _emit_lines(
        CONTROLLER.resume(
            ResumeCommand(
                project_id=project_id,
                db_path=db_path,
                pause=pause,
                no_vcs=no_vcs,
                max_iterations=max_iterations,
                skip_learnings=skip_learnings,
                on_pause=_confirm_continue,
            ),
        ),
    )


@ralph.command("status")
@click.argument("project_id", required=False)
@_DB_PATH_OPTION
def status(project_id: str | None, db_path: Path | None) -> None:
    """List projects, or show task progress of PROJECT_ID."""

    _emit_lines(CONTROLLER.status(StatusCommand(db_path=db_path, project_id=project_id)))


@ralph.command("reset")
@click.argument("project_id")
@_DB_PATH_OPTION
def reset(project_id: str, db_path: Path | None) -> None:
    """Set every task of PROJECT_ID back to pending."""

    _emit_lines(CONTROLLER.reset(ProjectCommand(project_id=project_id, db_path=db_path)))


@ralph.command("retry")
@click.argument("project_id")
@_DB_PATH_OPTION
def retry(project_id: str, db_path: Path | None) -> None:
    """Set failed and escalated tasks of PROJECT_ID back to pending."""

    _emit_lines(CONTROLLER.retry(ProjectCommand(project_id=project_id, db_path=db_path)))


@ralph.group()
def task() -> None:
    """Inspect and edit planned tasks."""


@task.command("list")
@click.argument("project_id")
@_DB_PATH_OPTION
def task_list(project_id: str, db_path: Path | None) -> None:
    """List tasks of PROJECT_ID with their status."""

    _emit_lines(CONTROLLER.list_tasks(ProjectCommand(project_id=project_id, db_path=db_path)))


@task.command("export")
@click.argument("project_id")
@click.argument("sequence", type=click.IntRange(min=1))
@_DB_PATH_OPTION
@click.option(
    "-o",
    "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Output file (default: stdout).",
)
@click.option(
    "--metadata/--no-metadata",
    default=True,
    show_default=True,
    help="Include task metadata as header comments.",
)
def task_export(
    project_id: str,
    sequence: int,
    db_path: Path | None,
    output: Path | None,
    metadata: bool,
) -> None:
    """Export the description of task SEQUENCE for editing."""

    _emit_lines(
        CONTROLLER.export_task(
            TaskExportCommand(
                project_id=project_id,
                sequence=sequence,
                db_path=db_path,
                output=output,
                metadata=metadata,
            ),
        ),
    )


@task.command("import")
@click.argument("project_id")
@click.argument("sequence", type=click.IntRange(min=1))
@click.argument("source", type=click.File("r", encoding="utf-8"))
@_DB_PATH_OPTION
@click.option(
    "--strip-metadata/--keep-metadata",
    default=True,
    show_default=True,
    help="Remove leading header comments written by export.",
)
def task_import(
    project_id: str,
    sequence: int,
    source: TextIO,
    db_path: Path | None,
    strip_metadata: bool,
) -> None:
    """Replace the description of task SEQUENCE from SOURCE (a file or `-`)."""

    _emit_lines(
        CONTROLLER.import_task(
            TaskImportCommand(
                project_id=project_id,
                sequence=sequence,
                content=source.read(),
                db_path=db_path,
                strip_metadata=strip_metadata,
            ),
        ),
    )


def _confirm_continue() -> bool:
    return click.confirm("Continue with the next task?", default=True)


def _emit_lines(lines: Iterable[str]) -> None:
    try:
        for line in lines:
            click.echo(line)
    except (EngineError, StoreError, ValueError) as error:
        raise click.ClickException(str(error)) from error


if __name__ == "__main__":  # pragma: no cover
    ralph()
