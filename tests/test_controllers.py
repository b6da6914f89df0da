from __future__ import annotations

import json
import logging
from pathlib import Path

import allure
import pytest

from ralph_loop import controllers
from ralph_loop.backend import AgentRunRequest, CapturedOutput
from ralph_loop.completion import COMPLETION_SENTINEL
from ralph_loop.config import ControlFilesSettings, LoopSettings, Settings
from ralph_loop.controllers import IterationController, RunCommand, RunOutcome
from ralph_loop.workspace import NotInRepositoryError

pytestmark = [
    allure.epic("Ralph Loop"),
    allure.feature("Iteration Control"),
]


class StubRunner:
    """Returns the sentinel on the ``complete_on``-th call (0 = never)."""

    def __init__(self, *, complete_on: int = 0, exit_code: int = 0) -> None:
        self.complete_on = complete_on
        self.exit_code = exit_code
        self.requests: list[AgentRunRequest] = []

    def run(self, request: AgentRunRequest) -> CapturedOutput:
        self.requests.append(request)
        call = len(self.requests)
        text = f"call {call}\n"
        if self.complete_on and call == self.complete_on:
            text += COMPLETION_SENTINEL + "\n"
        return CapturedOutput(text=text, exit_code=self.exit_code)


@pytest.fixture()
def workspace(tmp_path: Path, monkeypatch) -> Path:
    repo = tmp_path / "repo"
    control_dir = repo / "scripts" / "ralph"
    control_dir.mkdir(parents=True)
    (control_dir / "prompt.md").write_text("Implement the next story.\n", "utf-8")
    monkeypatch.setattr(controllers, "resolve_repository_root", lambda start: repo)
    return repo


def _controller(
    workspace: Path,
    runner: StubRunner,
    *,
    sleeps: list[float] | None = None,
    lines: list[str] | None = None,
) -> IterationController:
    return IterationController(
        settings=Settings(
            files=ControlFilesSettings(control_dir=Path(".")),
            loop=LoopSettings(pause_seconds=2.0),
        ),
        runner=runner,
        launch_dir=workspace / "scripts" / "ralph",
        emit=lines.append if lines is not None else None,
        sleep=sleeps.append if sleeps is not None else (lambda _: None),
    )


@pytest.mark.parametrize(("budget", "complete_on"), [(1, 1), (5, 1), (5, 3), (5, 5), (10, 7)])
def test_execute_stops_at_first_completion(
    workspace: Path,
    budget: int,
    complete_on: int,
) -> None:
    runner = StubRunner(complete_on=complete_on)

    report = _controller(workspace, runner).execute(
        RunCommand(agent="claude", max_iterations=budget),
    )

    assert report.outcome is RunOutcome.SUCCESS
    assert report.outcome.exit_code == 0
    assert report.iterations_run == complete_on
    assert report.completed_at == complete_on
    assert len(runner.requests) == complete_on


@pytest.mark.parametrize("budget", [1, 3, 10])
def test_execute_exhausts_budget_without_sentinel(workspace: Path, budget: int) -> None:
    runner = StubRunner()

    report = _controller(workspace, runner).execute(
        RunCommand(agent="amp", max_iterations=budget),
    )

    assert report.outcome is RunOutcome.BUDGET_EXHAUSTED
    assert report.outcome.exit_code == 1
    assert report.completed_at is None
    assert len(runner.requests) == budget


def test_execute_ignores_agent_exit_status(workspace: Path) -> None:
    runner = StubRunner(complete_on=3, exit_code=1)

    report = _controller(workspace, runner).execute(
        RunCommand(agent="gemini", max_iterations=5),
    )

    assert report.outcome is RunOutcome.SUCCESS
    assert len(runner.requests) == 3


def test_execute_pauses_between_iterations_only(workspace: Path) -> None:
    sleeps: list[float] = []

    _controller(workspace, StubRunner(), sleeps=sleeps).execute(
        RunCommand(agent="amp", max_iterations=4),
    )

    assert sleeps == [2.0, 2.0, 2.0]


def test_execute_runs_agent_in_repository_root_with_prompt(workspace: Path) -> None:
    runner = StubRunner(complete_on=2)

    _controller(workspace, runner).execute(
        RunCommand(agent="opencode", max_iterations=3, model="openai/gpt-4o"),
    )

    for index, request in enumerate(runner.requests, start=1):
        assert request.cwd == workspace
        assert request.prompt == b"Implement the next story.\n"
        assert request.argv == ("opencode", "run", "--model", "openai/gpt-4o")
        assert request.env["RALPH_ITERATION"] == str(index)
        assert request.env["RALPH_MAX_ITERATIONS"] == "3"
        assert request.timeout_seconds is None


def test_execute_rejects_unknown_agent_before_any_run(workspace: Path) -> None:
    runner = StubRunner()
    control_dir = workspace / "scripts" / "ralph"

    report = _controller(workspace, runner).execute(RunCommand(agent="codex", max_iterations=3))

    assert report.outcome is RunOutcome.USAGE_ERROR
    assert report.outcome.exit_code == 1
    assert "Invalid agent 'codex'" in (report.message or "")
    assert runner.requests == []
    assert not (control_dir / "progress.txt").exists()


@pytest.mark.parametrize("budget", [0, -2])
def test_execute_rejects_non_positive_budget(workspace: Path, budget: int) -> None:
    runner = StubRunner()

    report = _controller(workspace, runner).execute(RunCommand(agent="amp", max_iterations=budget))

    assert report.outcome is RunOutcome.USAGE_ERROR
    assert "positive integer" in (report.message or "")
    assert runner.requests == []


def test_execute_outside_repository_is_usage_error(workspace: Path, monkeypatch) -> None:
    def _not_a_repo(start: Path) -> Path:
        raise NotInRepositoryError(start)

    monkeypatch.setattr(controllers, "resolve_repository_root", _not_a_repo)
    runner = StubRunner()

    report = _controller(workspace, runner).execute(RunCommand(agent="amp", max_iterations=3))

    assert report.outcome is RunOutcome.USAGE_ERROR
    assert "Not inside a git repository" in (report.message or "")
    assert runner.requests == []


def test_execute_requires_prompt_file(workspace: Path) -> None:
    (workspace / "scripts" / "ralph" / "prompt.md").unlink()
    runner = StubRunner()

    report = _controller(workspace, runner).execute(RunCommand(agent="amp", max_iterations=3))

    assert report.outcome is RunOutcome.USAGE_ERROR
    assert "Prompt file not found" in (report.message or "")
    assert runner.requests == []


def test_execute_archives_once_before_looping(workspace: Path) -> None:
    control_dir = workspace / "scripts" / "ralph"
    (control_dir / ".last-branch").write_text("ralph/old\n", "utf-8")
    (control_dir / "progress.txt").write_text("old progress\n", "utf-8")
    (control_dir / "prd.json").write_text(json.dumps({"branchName": "ralph/new"}), "utf-8")
    lines: list[str] = []

    report = _controller(workspace, StubRunner(complete_on=1), lines=lines).execute(
        RunCommand(agent="amp", max_iterations=2),
    )

    assert report.archive is not None
    assert report.archive.archived is True
    archived = list((control_dir / "archive").iterdir())
    assert len(archived) == 1
    assert archived[0].name.endswith("-old")
    assert (archived[0] / "progress.txt").read_text("utf-8") == "old progress\n"
    assert (control_dir / ".last-branch").read_text("utf-8") == "ralph/new\n"
    assert "Archiving previous run: ralph/old" in lines


def test_execute_emits_operator_progress_lines(workspace: Path) -> None:
    lines: list[str] = []

    _controller(workspace, StubRunner(complete_on=2), lines=lines).execute(
        RunCommand(agent="claude", max_iterations=4),
    )

    assert lines[0] == "Starting Ralph with claude - Max iterations: 4"
    assert f"Project root: {workspace}" in lines
    assert "  Ralph Iteration 1 of 4 (using claude)" in lines
    assert "Iteration 1 complete. Continuing..." in lines
    assert "Ralph completed all tasks!" in lines
    assert lines[-1] == "Completed at iteration 2 of 4"


def test_execute_reports_exhaustion_with_progress_path(workspace: Path) -> None:
    lines: list[str] = []

    _controller(workspace, StubRunner(), lines=lines).execute(
        RunCommand(agent="amp", max_iterations=2),
    )

    progress = (workspace / "scripts" / "ralph" / "progress.txt").resolve()
    assert "Ralph reached max iterations (2) without completing all tasks." in lines
    assert lines[-1] == f"Check {progress} for status."


def test_execute_sends_prompt_file_bytes_verbatim(workspace: Path) -> None:
    raw = b"Fix the caf\xe9 page.\r\nKeep CRLF.\r\n"
    (workspace / "scripts" / "ralph" / "prompt.md").write_bytes(raw)
    runner = StubRunner(complete_on=1)

    _controller(workspace, runner).execute(RunCommand(agent="amp", max_iterations=1))

    assert runner.requests[0].prompt == raw


def test_execute_logs_failed_agent_exit_and_continues(workspace: Path, caplog) -> None:
    runner = StubRunner(exit_code=2)

    with caplog.at_level(logging.INFO, logger="ralph_loop.controllers"):
        report = _controller(workspace, runner).execute(
            RunCommand(agent="amp", max_iterations=2),
        )

    assert report.outcome is RunOutcome.BUDGET_EXHAUSTED
    assert len(runner.requests) == 2
    messages = [record.getMessage() for record in caplog.records]
    assert "Agent exited with 2 on iteration 1; exit status policy: ignore" in messages
    assert "Agent exited with 2 on iteration 2; exit status policy: ignore" in messages


def test_execute_reports_passing_stories_on_exhaustion(workspace: Path) -> None:
    control_dir = workspace / "scripts" / "ralph"
    (control_dir / "prd.json").write_text(
        json.dumps(
            {
                "project": "Shop",
                "branchName": "ralph/checkout",
                "userStories": [
                    {"id": "US-001", "title": "Cart", "passes": True},
                    {"id": "US-002", "title": "Pay", "passes": False},
                    {"id": "US-003", "title": "Ship", "passes": False},
                ],
            },
        ),
        "utf-8",
    )
    lines: list[str] = []

    _controller(workspace, StubRunner(), lines=lines).execute(
        RunCommand(agent="amp", max_iterations=1),
    )

    assert lines[-2] == "Stories passing: 1/3"
    assert lines[-1] == f"Check {(control_dir / 'progress.txt').resolve()} for status."


def test_execute_skips_story_summary_for_malformed_task_list(workspace: Path) -> None:
    control_dir = workspace / "scripts" / "ralph"
    (control_dir / "prd.json").write_text(
        json.dumps({"branchName": "ralph/x", "userStories": [{"id": "A", "priority": None}]}),
        "utf-8",
    )
    lines: list[str] = []

    report = _controller(workspace, StubRunner(), lines=lines).execute(
        RunCommand(agent="amp", max_iterations=1),
    )

    assert report.outcome is RunOutcome.BUDGET_EXHAUSTED
    assert not any(line.startswith("Stories passing") for line in lines)
