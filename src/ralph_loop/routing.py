"""Agent name resolution to fixed unattended command lines."""

from __future__ import annotations

from dataclasses import dataclass

SUPPORTED_AGENTS = ("amp", "claude", "gemini", "opencode")

_AGENT_COMMANDS: dict[str, tuple[str, ...]] = {
    "amp": ("amp", "--dangerously-allow-all"),
    "claude": ("claude", "--model", "opusplan", "--dangerously-skip-permissions"),
    "gemini": ("gemini", "--approval-mode=yolo"),
    "opencode": ("opencode", "run"),
}

# Only opencode takes a provider/model selector.
_MODEL_AWARE_AGENTS = frozenset({"opencode"})


class RalphUsageError(ValueError):
    """Invocation problem detected before any agent run."""


class UnsupportedAgentError(RalphUsageError):
    """Agent name is not one of ``SUPPORTED_AGENTS``."""

    def __init__(self, agent: str) -> None:
        super().__init__(
            f"Invalid agent '{agent}'. Agent must be one of: {', '.join(SUPPORTED_AGENTS)}",
        )
        self.agent = agent


@dataclass(slots=True, frozen=True)
class AgentCommand:
    """Resolved command line for one agent."""

    agent: str
    argv: tuple[str, ...]
    model: str | None = None

    @property
    def executable(self) -> str:
        return self.argv[0]


def resolve_agent_command(agent: str, model: str | None = None) -> AgentCommand:
    """Return the argv for ``agent``; ``model`` is dropped for agents that ignore it."""

    normalized = _normalize_agent(agent)
    _validate_supported_agent(normalized, original=agent)
    argv = _AGENT_COMMANDS[normalized]
    effective_model = (model or "").strip() or None
    if normalized not in _MODEL_AWARE_AGENTS:
        return AgentCommand(agent=normalized, argv=argv)
    if effective_model is not None:
        argv = (*argv, "--model", effective_model)
    return AgentCommand(agent=normalized, argv=argv, model=effective_model)


def _normalize_agent(value: str) -> str:
    return value.strip().lower()


def _validate_supported_agent(agent: str, *, original: str) -> None:
    if agent in SUPPORTED_AGENTS:
        return
    raise UnsupportedAgentError(original)
