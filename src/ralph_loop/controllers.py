"""Iteration controller driving the agent until the task list is complete."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path

from ralph_loop.archive import ArchiveManager, ArchiveResult
from ralph_loop.backend import EXIT_STATUS_POLICY, AgentRunner, AgentRunRequest, CliAgentRunner
from ralph_loop.completion import is_complete
from ralph_loop.config import Settings
from ralph_loop.contracts import TaskListError, load_task_list
from ralph_loop.routing import AgentCommand, RalphUsageError, resolve_agent_command
from ralph_loop.workspace import resolve_repository_root

logger = logging.getLogger(__name__)

_BANNER_RULE = "═" * 55


class RunOutcome(str, Enum):
    """Terminal state of one controller run."""

    SUCCESS = "success"
    BUDGET_EXHAUSTED = "budget_exhausted"
    USAGE_ERROR = "usage_error"

    @property
    def exit_code(self) -> int:
        return 0 if self is RunOutcome.SUCCESS else 1


class MissingPromptError(RalphUsageError):
    """Instruction payload file does not exist."""

    def __init__(self, path: Path) -> None:
        super().__init__(f"Prompt file not found: {path}")
        self.path = path


class InvalidBudgetError(RalphUsageError):
    """Iteration budget is not a positive integer."""


@dataclass(slots=True)
class RunCommand:
    """CLI input for one loop run."""

    agent: str
    max_iterations: int
    model: str | None = None


@dataclass(slots=True)
class RunReport:
    """Result of one loop run."""

    outcome: RunOutcome
    iterations_run: int
    max_iterations: int
    message: str | None = None
    archive: ArchiveResult | None = None

    @property
    def completed_at(self) -> int | None:
        return self.iterations_run if self.outcome is RunOutcome.SUCCESS else None


class IterationController:
    """Validates the invocation, archives stale state and runs the agent loop."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        settings: Settings,
        runner: AgentRunner | None = None,
        launch_dir: Path | None = None,
        emit: Callable[[str], None] | None = None,
        output_echo: Callable[[str], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.launch_dir = (launch_dir or Path.cwd()).resolve()
        control_dir = (self.launch_dir / settings.files.control_dir).resolve()
        self.settings = replace(settings, files=replace(settings.files, control_dir=control_dir))
        self.runner = runner or CliAgentRunner()
        self._emit = emit or _discard
        self._output_echo = output_echo
        self._sleep = sleep

    def execute(self, command: RunCommand) -> RunReport:
        """Run the agent until it signals completion or the budget runs out.

        Agent exit codes follow `EXIT_STATUS_POLICY`: a non-zero exit, a
        timeout or a missing executable only makes that iteration unsuccessful.
        The loop ends on the completion sentinel or after the last iteration.
        """

        try:
            agent_command = resolve_agent_command(command.agent, command.model)
            budget = _validate_budget(command.max_iterations)
            repo_root = resolve_repository_root(self.launch_dir)
            prompt = self._read_prompt()
        except RalphUsageError as error:
            logger.debug("Usage error: %s", error)
            return RunReport(
                outcome=RunOutcome.USAGE_ERROR,
                iterations_run=0,
                max_iterations=command.max_iterations,
                message=str(error),
            )

        archive = self._prepare_state()
        self._emit(f"Starting Ralph with {agent_command.agent} - Max iterations: {budget}")
        self._emit(f"Project root: {repo_root}")

        for iteration in range(1, budget + 1):
            self._emit_banner(iteration, budget, agent_command.agent)
            output = self.runner.run(
                self._build_request(
                    agent_command=agent_command,
                    prompt=prompt,
                    repo_root=repo_root,
                    iteration=iteration,
                    budget=budget,
                ),
            )
            logger.debug(
                "Iteration %d finished: exit_code=%d timed_out=%s chars=%d",
                iteration,
                output.exit_code,
                output.timed_out,
                len(output.text),
            )
            if output.exit_code != 0:
                logger.info(
                    "Agent exited with %d on iteration %d; exit status policy: %s",
                    output.exit_code,
                    iteration,
                    EXIT_STATUS_POLICY,
                )

            if is_complete(output.text):
                self._emit("")
                self._emit("Ralph completed all tasks!")
                self._emit(f"Completed at iteration {iteration} of {budget}")
                return RunReport(
                    outcome=RunOutcome.SUCCESS,
                    iterations_run=iteration,
                    max_iterations=budget,
                    archive=archive,
                )

            self._emit(f"Iteration {iteration} complete. Continuing...")
            if iteration < budget:
                self._sleep(self.settings.loop.pause_seconds)

        progress_path = self.settings.files.control_dir / self.settings.files.progress_name
        self._emit("")
        self._emit(f"Ralph reached max iterations ({budget}) without completing all tasks.")
        summary = self._task_list_summary()
        if summary is not None:
            self._emit(summary)
        self._emit(f"Check {progress_path} for status.")
        return RunReport(
            outcome=RunOutcome.BUDGET_EXHAUSTED,
            iterations_run=budget,
            max_iterations=budget,
            message=f"Budget of {budget} iterations exhausted.",
            archive=archive,
        )

    def _prepare_state(self) -> ArchiveResult:
        manager = ArchiveManager(
            files=self.settings.files,
            branch_prefix=self.settings.loop.branch_prefix,
        )
        result = manager.prepare()
        if result.archived:
            self._emit(f"Archiving previous run: {result.previous_branch}")
            self._emit(f"   Archived to: {result.folder}")
        if result.error is not None:
            self._emit(f"Warning: archiving previous run failed: {result.error}")
        return result

    def _task_list_summary(self) -> str | None:
        task_list_path = self.settings.files.control_dir / self.settings.files.task_list_name
        if not task_list_path.is_file():
            return None
        try:
            task_list = load_task_list(task_list_path)
        except (OSError, UnicodeDecodeError, TaskListError) as error:
            logger.warning("Cannot summarize task list %s: %s", task_list_path, error)
            return None
        passing = sum(1 for story in task_list.user_stories if story.passes)
        return f"Stories passing: {passing}/{len(task_list.user_stories)}"

    def _read_prompt(self) -> bytes:
        prompt_path = self.settings.files.prompt_path
        if not prompt_path.is_file():
            raise MissingPromptError(prompt_path)
        return prompt_path.read_bytes()

    def _build_request(
        self,
        *,
        agent_command: AgentCommand,
        prompt: bytes,
        repo_root: Path,
        iteration: int,
        budget: int,
    ) -> AgentRunRequest:
        return AgentRunRequest(
            argv=agent_command.argv,
            prompt=prompt,
            cwd=repo_root,
            timeout_seconds=self.settings.loop.agent_timeout_seconds,
            env={
                "RALPH_AGENT": agent_command.agent,
                "RALPH_ITERATION": str(iteration),
                "RALPH_MAX_ITERATIONS": str(budget),
            },
            echo=self._output_echo,
        )

    def _emit_banner(self, iteration: int, budget: int, agent: str) -> None:
        self._emit("")
        self._emit(_BANNER_RULE)
        self._emit(f"  Ralph Iteration {iteration} of {budget} (using {agent})")
        self._emit(_BANNER_RULE)


def _validate_budget(value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidBudgetError(f"Max iterations must be a positive integer, got {value!r}")
    return value


def _discard(_: str) -> None:
    return None
