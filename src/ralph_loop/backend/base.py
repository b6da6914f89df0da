"""Agent runner interface for loop iterations."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

# Agent exit status is recorded for diagnostics only; a failed run is just
# an unsuccessful iteration and the loop moves on.
EXIT_STATUS_POLICY = "ignore"


@dataclass(slots=True)
class AgentRunRequest:
    """Inputs required to execute one agent invocation."""

    argv: tuple[str, ...]
    prompt: bytes
    cwd: Path
    timeout_seconds: int | None = None
    env: dict[str, str] = field(default_factory=dict)
    echo: Callable[[str], None] | None = None


@dataclass(slots=True)
class CapturedOutput:
    """Combined stdout/stderr text and exit status of one invocation."""

    text: str
    exit_code: int
    timed_out: bool = False


class AgentRunner(Protocol):
    """Protocol implemented by agent runners."""

    def run(self, request: AgentRunRequest) -> CapturedOutput:
        """Run the agent once and return its captured output."""
