"""Completion signal emitted by the agent when every story passes."""

from __future__ import annotations

COMPLETION_SENTINEL = "<promise>COMPLETE</promise>"


def is_complete(output: str) -> bool:
    """Return True when captured agent output carries the completion sentinel."""

    return COMPLETION_SENTINEL in output
