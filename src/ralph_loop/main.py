"""CLI entrypoint for ralph-loop."""

import logging
from dataclasses import replace
from pathlib import Path

import rich_click as click

from ralph_loop import __version__
from ralph_loop.config import Settings
from ralph_loop.controllers import IterationController, RunCommand, RunOutcome

click.rich_click.USE_MARKDOWN = True

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, prog_name="ralph")
@click.argument("agent", required=False, metavar="AGENT")
@click.argument("max_iterations", type=click.IntRange(min=1), required=False)
@click.argument("model", required=False)
@click.option(
    "--control-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Directory holding prompt.md, prd.json and progress.txt. Defaults to cwd.",
)
@click.option(
    "--timeout-seconds",
    type=click.IntRange(min=1),
    default=None,
    help="Kill an agent run after this many seconds. No limit unless set.",
)
@click.option(
    "--pause-seconds",
    type=click.FloatRange(min=0),
    default=None,
    help="Pause between iterations. Defaults to RALPH_ITERATION_PAUSE_SECONDS or 2.",
)
@click.option(
    "--log-level",
    type=click.Choice(_LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Diagnostic log level. Defaults to RALPH_LOG_LEVEL or WARNING.",
)
@click.pass_context
def ralph(  # noqa: PLR0913
    ctx: click.Context,
    agent: str | None,
    max_iterations: int | None,
    model: str | None,
    control_dir: Path | None,
    timeout_seconds: int | None,
    pause_seconds: float | None,
    log_level: str | None,
) -> None:
    """Run a coding agent repeatedly until every story in **prd.json** passes.

    **AGENT** is one of `amp`, `claude`, `gemini`, `opencode`.
    **MAX_ITERATIONS** defaults to 10.
    **MODEL** is a `provider/model` selector used by opencode only.

    Agent commands (prompt.md is piped on stdin):

    - amp: `amp --dangerously-allow-all`
    - claude: `claude --model opusplan --dangerously-skip-permissions`
    - gemini: `gemini --approval-mode=yolo`
    - opencode: `opencode run [--model MODEL]`

    Examples:

    - `ralph amp` runs Amp for 10 iterations
    - `ralph claude 5` runs Claude Code for 5 iterations
    - `ralph opencode 10 anthropic/claude-sonnet-4-20250514`

    The loop stops as soon as the agent prints `<promise>COMPLETE</promise>`.
    Must be run inside a git repository; the agent runs from the repository root.
    """

    settings = _load_settings(
        control_dir=control_dir,
        timeout_seconds=timeout_seconds,
        pause_seconds=pause_seconds,
        log_level=log_level,
    )
    _configure_logging(settings.log_level)

    if agent is None:
        click.echo("Error: Agent parameter is required", err=True)
        click.echo("")
        click.echo(ctx.get_help())
        ctx.exit(1)

    controller = IterationController(
        settings=settings,
        emit=click.echo,
        output_echo=_echo_agent_output,
    )
    report = controller.execute(
        RunCommand(
            agent=agent,
            max_iterations=max_iterations or settings.loop.max_iterations,
            model=model,
        ),
    )
    if report.outcome is RunOutcome.USAGE_ERROR:
        raise click.ClickException(report.message or "Invalid invocation.")
    ctx.exit(report.outcome.exit_code)


def _load_settings(
    *,
    control_dir: Path | None,
    timeout_seconds: int | None,
    pause_seconds: float | None,
    log_level: str | None,
) -> Settings:
    try:
        settings = Settings.from_env(control_dir=control_dir)
        loop = settings.loop
        if timeout_seconds is not None:
            loop = replace(loop, agent_timeout_seconds=timeout_seconds)
        if pause_seconds is not None:
            loop = replace(loop, pause_seconds=pause_seconds)
        settings = replace(
            settings,
            loop=loop,
            log_level=log_level.upper() if log_level is not None else settings.log_level,
        )
        settings.validate()
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    return settings


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
        force=True,
    )


def _echo_agent_output(text: str) -> None:
    click.echo(text, err=True, nl=False)


if __name__ == "__main__":  # pragma: no cover
    ralph()
