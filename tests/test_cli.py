from __future__ import annotations

import stat
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from ralph import __version__
from ralph.engine.models import ProjectStatus, TaskCreate, TaskStatus
from ralph.engine.repository import EngineRepository
from ralph.main import ralph

pytestmark = [
    allure.epic("CLI"),
    allure.feature("ralph commands"),
]

_PLAN = "# Feature\n\n- Add parser\n- Add command\n"


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "cli.db"


@pytest.fixture()
def plan_file(tmp_path: Path) -> Path:
    path = tmp_path / "plan.md"
    path.write_text(_PLAN, "utf-8")
    return path


@pytest.fixture()
def seeded_project(db_path: Path) -> str:
    repository = EngineRepository(db_path)
    repository.init_schema()
    try:
        project = repository.create_project(name="seeded.md", plan_text="# Seeded")
        tasks = repository.create_tasks(
            project.project_id,
            [
                TaskCreate(1, "Done already", "finished work"),
                TaskCreate(2, "Broken", "needs another go"),
                TaskCreate(3, "Todo", "not started"),
            ],
        )
        repository.update_task_status(tasks[0].task_id, TaskStatus.COMPLETED)
        repository.update_task_status(tasks[1].task_id, TaskStatus.FAILED)
        return project.project_id
    finally:
        repository.close()


def _only_project(db_path: Path):
    repository = EngineRepository(db_path)
    try:
        projects = repository.list_projects()
        assert len(projects) == 1
        return projects[0], repository.list_tasks(projects[0].project_id)
    finally:
        repository.close()


def test_version() -> None:
    result = CliRunner().invoke(ralph, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_run_plans_and_completes_tasks(echo_agent_env: Path, plan_file: Path, db_path) -> None:
    result = CliRunner().invoke(
        ralph,
        ["run", str(plan_file), "--no-vcs", "--no-pause", "--db-path", str(db_path)],
    )

    assert result.exit_code == 0, result.output
    assert "==> Task 1/2: Add parser" in result.output
    assert "==> Task 2/2: Add command" in result.output
    assert "[learnings_captured] Documentation updated" in result.output

    project, tasks = _only_project(db_path)
    assert project.status is ProjectStatus.COMPLETED
    assert project.learnings_state == "complete"
    assert [task.status for task in tasks] == [TaskStatus.COMPLETED, TaskStatus.COMPLETED]
    assert "Echo agent learnings." in (echo_agent_env / "AGENTS.md").read_text("utf-8")

    status = CliRunner().invoke(ralph, ["status", project.project_id, "--db-path", str(db_path)])
    assert status.exit_code == 0
    assert "Status: completed" in status.output
    assert "[x] 1. Add parser" in status.output


def test_run_skip_learnings(echo_agent_env: Path, plan_file: Path, db_path) -> None:
    result = CliRunner().invoke(
        ralph,
        ["run", str(plan_file), "--no-vcs", "--skip-learnings", "--db-path", str(db_path)],
    )

    assert result.exit_code == 0, result.output
    assert not (echo_agent_env / "AGENTS.md").exists()
    project, _ = _only_project(db_path)
    assert project.learnings_state == ""


def test_run_escalates_when_reviewer_keeps_rejecting(
    echo_agent_env: Path,
    plan_file: Path,
    db_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("RALPH_ECHO_REVIEW", "reject")

    result = CliRunner().invoke(
        ralph,
        ["run", str(plan_file), "--no-vcs", "--max-iterations", "1", "--db-path", str(db_path)],
    )

    assert result.exit_code == 0, result.output
    assert "Task escalated: max iterations (1) reached" in result.output
    project, tasks = _only_project(db_path)
    assert project.status is ProjectStatus.FAILED
    assert [task.status for task in tasks] == [TaskStatus.ESCALATED, TaskStatus.ESCALATED]
    assert not (echo_agent_env / "AGENTS.md").exists()

    listing = CliRunner().invoke(
        ralph,
        ["task", "list", project.project_id, "--db-path", str(db_path)],
    )
    assert "[^] 1. Add parser (1 review rounds)" in listing.output


def test_run_outside_jj_repository_fails_before_planning(
    echo_agent_env: Path,
    plan_file: Path,
    db_path: Path,
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    fake_jj = bin_dir / "jj"
    fake_jj.write_text(
        "#!/bin/sh\necho 'Error: There is no jj repo in \".\"' >&2\nexit 1\n",
        "utf-8",
    )
    fake_jj.chmod(fake_jj.stat().st_mode | stat.S_IEXEC)
    monkeypatch.setenv("PATH", str(bin_dir))

    result = CliRunner().invoke(ralph, ["run", str(plan_file), "--db-path", str(db_path)])

    assert result.exit_code == 1
    assert "not a jj repository" in result.output
    repository = EngineRepository(db_path)
    try:
        assert repository.list_projects() == []
    finally:
        repository.close()


def test_run_rejects_zero_iterations(echo_agent_env: Path, plan_file: Path) -> None:
    result = CliRunner().invoke(ralph, ["run", str(plan_file), "--max-iterations", "0"])

    assert result.exit_code == 2


def test_resume_completed_project(echo_agent_env: Path, plan_file: Path, db_path) -> None:
    CliRunner().invoke(
        ralph,
        ["run", str(plan_file), "--no-vcs", "--skip-learnings", "--db-path", str(db_path)],
    )
    project, _ = _only_project(db_path)

    result = CliRunner().invoke(
        ralph,
        ["resume", project.project_id, "--no-vcs", "--db-path", str(db_path)],
    )

    assert result.exit_code == 0, result.output
    assert "2/2 tasks completed" in result.output
    assert "All tasks already completed." in result.output


def test_resume_runs_remaining_tasks(echo_agent_env: Path, seeded_project: str, db_path) -> None:
    result = CliRunner().invoke(
        ralph,
        ["resume", seeded_project, "--no-vcs", "--skip-learnings", "--db-path", str(db_path)],
    )

    assert result.exit_code == 0, result.output
    assert "Resuming project" in result.output
    assert "==> Task 3/3: Todo" in result.output
    assert "==> Task 2/3" not in result.output


def test_status_lists_projects(echo_agent_env: Path, seeded_project: str, db_path) -> None:
    result = CliRunner().invoke(ralph, ["status", "--db-path", str(db_path)])

    assert result.exit_code == 0
    assert seeded_project in result.output
    assert "1/3 tasks  seeded.md" in result.output


def test_status_without_projects(echo_agent_env: Path, db_path: Path) -> None:
    result = CliRunner().invoke(ralph, ["status", "--db-path", str(db_path)])

    assert result.exit_code == 0
    assert "No projects found." in result.output


def test_status_unknown_project(echo_agent_env: Path, db_path: Path) -> None:
    result = CliRunner().invoke(ralph, ["status", "nope", "--db-path", str(db_path)])

    assert result.exit_code == 1
    assert "nope" in result.output


def test_retry_and_reset(echo_agent_env: Path, seeded_project: str, db_path: Path) -> None:
    runner = CliRunner()

    retry = runner.invoke(ralph, ["retry", seeded_project, "--db-path", str(db_path)])
    again = runner.invoke(ralph, ["retry", seeded_project, "--db-path", str(db_path)])
    reset = runner.invoke(ralph, ["reset", seeded_project, "--db-path", str(db_path)])
    listing = runner.invoke(ralph, ["task", "list", seeded_project, "--db-path", str(db_path)])

    assert f"Reset 1 failed tasks in project {seeded_project} to pending." in retry.output
    assert f"No failed tasks in project {seeded_project}." in again.output
    assert f"Project {seeded_project} reset: 3 tasks pending." in reset.output
    assert "[ ] 1. Done already" in listing.output


def test_task_list_icons(echo_agent_env: Path, seeded_project: str, db_path: Path) -> None:
    result = CliRunner().invoke(ralph, ["task", "list", seeded_project, "--db-path", str(db_path)])

    assert result.exit_code == 0
    assert f"Tasks in project {seeded_project}:" in result.output
    assert "  [x] 1. Done already" in result.output
    assert "  [!] 2. Broken" in result.output
    assert "  [ ] 3. Todo" in result.output


def test_task_export(echo_agent_env: Path, seeded_project: str, db_path, tmp_path) -> None:
    runner = CliRunner()

    with_metadata = runner.invoke(
        ralph,
        ["task", "export", seeded_project, "3", "--db-path", str(db_path)],
    )
    plain = runner.invoke(
        ralph,
        ["task", "export", seeded_project, "3", "--no-metadata", "--db-path", str(db_path)],
    )
    target = tmp_path / "task3.md"
    to_file = runner.invoke(
        ralph,
        ["task", "export", seeded_project, "3", "-o", str(target), "--db-path", str(db_path)],
    )

    assert "<!-- Task: Todo -->" in with_metadata.output
    assert f"ralph task import {seeded_project} 3 <file>" in with_metadata.output
    assert with_metadata.output.rstrip().endswith("not started")
    assert plain.output == "not started\n"
    assert f"Exported task 3 to {target}" in to_file.output
    assert target.read_text("utf-8").startswith("<!-- Task: Todo -->")


def test_task_import_round_trip(echo_agent_env: Path, seeded_project, db_path, tmp_path) -> None:
    runner = CliRunner()
    target = tmp_path / "task3.md"
    runner.invoke(
        ralph,
        ["task", "export", seeded_project, "3", "-o", str(target), "--db-path", str(db_path)],
    )
    target.write_text(target.read_text("utf-8").replace("not started", "use the new API"))

    result = runner.invoke(
        ralph,
        ["task", "import", seeded_project, "3", str(target), "--db-path", str(db_path)],
    )
    exported = runner.invoke(
        ralph,
        ["task", "export", seeded_project, "3", "--no-metadata", "--db-path", str(db_path)],
    )

    assert result.exit_code == 0, result.output
    assert "Updated task 3 (Todo): 15 chars" in result.output
    assert exported.output == "use the new API\n"


def test_task_import_from_stdin(echo_agent_env: Path, seeded_project: str, db_path) -> None:
    result = CliRunner().invoke(
        ralph,
        ["task", "import", seeded_project, "2", "-", "--db-path", str(db_path)],
        input="Try again with retries.\n",
    )

    assert result.exit_code == 0, result.output
    assert "Updated task 2 (Broken)" in result.output


@pytest.mark.parametrize(
    ("sequence", "content", "message"),
    [
        ("1", "new text", "is completed"),
        ("3", "<!-- Task: Todo -->\n\n   \n", "empty"),
    ],
)
def test_task_import_refusals(  # noqa: PLR0913
    echo_agent_env: Path,
    seeded_project: str,
    db_path: Path,
    sequence: str,
    content: str,
    message: str,
) -> None:
    result = CliRunner().invoke(
        ralph,
        ["task", "import", seeded_project, sequence, "-", "--db-path", str(db_path)],
        input=content,
    )

    assert result.exit_code == 1
    assert message in result.output


def test_run_pause_continue(echo_agent_env: Path, plan_file: Path, db_path: Path) -> None:
    result = CliRunner().invoke(
        ralph,
        [
            "run",
            str(plan_file),
            "--no-vcs",
            "--pause",
            "--skip-learnings",
            "--db-path",
            str(db_path),
        ],
        input="y\n",
    )

    assert result.exit_code == 0, result.output
    assert "Paused after task 1/2." in result.output
    assert "==> Task 2/2: Add command" in result.output
    project, _ = _only_project(db_path)
    assert project.status is ProjectStatus.COMPLETED


def test_run_pause_decline_stops(echo_agent_env: Path, plan_file: Path, db_path: Path) -> None:
    result = CliRunner().invoke(
        ralph,
        ["run", str(plan_file), "--no-vcs", "--pause", "--db-path", str(db_path)],
        input="n\n",
    )

    project, tasks = _only_project(db_path)
    assert result.exit_code == 1
    assert f"resume with: ralph resume {project.project_id}" in result.output
    assert [task.status for task in tasks] == [TaskStatus.COMPLETED, TaskStatus.PENDING]
    assert not (echo_agent_env / "AGENTS.md").exists()
