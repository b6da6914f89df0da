"""Runtime configuration for the Ralph loop."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_MAX_ITERATIONS = 10
DEFAULT_PAUSE_SECONDS = 2.0
DEFAULT_BRANCH_PREFIX = "ralph/"
DEFAULT_LOG_LEVEL = "WARNING"


@dataclass(slots=True)
class ControlFilesSettings:
    """Locations of the files shared between loop runs and the agent."""

    control_dir: Path = Path(".")
    prompt_name: str = "prompt.md"
    task_list_name: str = "prd.json"
    progress_name: str = "progress.txt"
    last_branch_name: str = ".last-branch"
    archive_dir_name: str = "archive"

    @property
    def prompt_path(self) -> Path:
        return self.control_dir / self.prompt_name

    @property
    def archive_dir(self) -> Path:
        return self.control_dir / self.archive_dir_name


@dataclass(slots=True)
class LoopSettings:
    """Iteration control settings."""

    max_iterations: int = DEFAULT_MAX_ITERATIONS
    pause_seconds: float = DEFAULT_PAUSE_SECONDS
    agent_timeout_seconds: int | None = None
    branch_prefix: str = DEFAULT_BRANCH_PREFIX


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    files: ControlFilesSettings = field(default_factory=ControlFilesSettings)
    loop: LoopSettings = field(default_factory=LoopSettings)
    log_level: str = DEFAULT_LOG_LEVEL

    @classmethod
    def from_env(cls, control_dir: Path | None = None) -> Settings:
        """Load settings from RALPH_* environment variables."""

        return cls(
            files=ControlFilesSettings(
                control_dir=control_dir or Path(os.getenv("RALPH_CONTROL_DIR", ".")),
            ),
            loop=LoopSettings(
                max_iterations=_env_int("RALPH_MAX_ITERATIONS", DEFAULT_MAX_ITERATIONS),
                pause_seconds=_env_float("RALPH_ITERATION_PAUSE_SECONDS", DEFAULT_PAUSE_SECONDS),
                agent_timeout_seconds=_env_optional_int("RALPH_AGENT_TIMEOUT_SECONDS"),
                branch_prefix=os.getenv("RALPH_BRANCH_PREFIX", DEFAULT_BRANCH_PREFIX),
            ),
            log_level=os.getenv("RALPH_LOG_LEVEL", DEFAULT_LOG_LEVEL).strip().upper(),
        )

    def validate(self) -> None:
        """Raise configuration error for values the loop cannot run with."""

        if self.loop.max_iterations <= 0:
            raise ValueError("RALPH_MAX_ITERATIONS must be a positive integer.")
        if self.loop.pause_seconds < 0:
            raise ValueError("RALPH_ITERATION_PAUSE_SECONDS must be >= 0.")
        timeout = self.loop.agent_timeout_seconds
        if timeout is not None and timeout <= 0:
            raise ValueError("RALPH_AGENT_TIMEOUT_SECONDS must be > 0 when set.")
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ValueError(f"Unknown log level: {self.log_level!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {raw!r}") from error


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError as error:
        raise ValueError(f"Invalid number value for {name}: {raw!r}") from error


def _env_optional_int(name: str) -> int | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {raw!r}") from error
