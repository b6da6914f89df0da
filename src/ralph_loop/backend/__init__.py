"""Agent runner implementations."""

from ralph_loop.backend.base import (
    EXIT_STATUS_POLICY,
    AgentRunner,
    AgentRunRequest,
    CapturedOutput,
)
from ralph_loop.backend.cli_backend import CliAgentRunner

__all__ = [
    "EXIT_STATUS_POLICY",
    "AgentRunRequest",
    "AgentRunner",
    "CapturedOutput",
    "CliAgentRunner",
]
