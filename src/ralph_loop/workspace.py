"""Repository root discovery."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from ralph_loop.routing import RalphUsageError

logger = logging.getLogger(__name__)


class NotInRepositoryError(RalphUsageError):
    """Launch directory is not inside a git work tree."""

    def __init__(self, path: Path) -> None:
        super().__init__(f"Not inside a git repository: {path}")
        self.path = path


def resolve_repository_root(start: Path) -> Path:
    """Return the git top-level directory containing ``start``."""

    try:
        completed = subprocess.run(  # noqa: S603
            ["git", "rev-parse", "--show-toplevel"],  # noqa: S607
            cwd=start,
            check=False,
            capture_output=True,
            text=True,
        )
    except OSError as error:
        logger.warning("git is not available: %s", error)
        raise NotInRepositoryError(start) from error

    root = completed.stdout.strip()
    if completed.returncode != 0 or not root:
        logger.debug("git rev-parse failed in %s: %s", start, completed.stderr.strip())
        raise NotInRepositoryError(start)
    return Path(root)
