"""Archival of the previous run when the task list moves to a new branch."""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from ralph_loop.config import ControlFilesSettings
from ralph_loop.contracts import read_branch_name
from ralph_loop.state import BranchTracker, ControlStateStore, StateKey

logger = logging.getLogger(__name__)

PROGRESS_LOG_TITLE = "# Ralph Progress Log"


def local_now() -> datetime:
    """Current local timestamp with timezone."""

    return datetime.now().astimezone()


def progress_preamble(started_at: datetime) -> str:
    """Header written into a fresh progress log."""

    return f"{PROGRESS_LOG_TITLE}\nStarted: {started_at.isoformat(timespec='seconds')}\n"


def archive_folder_name(*, branch: str, prefix: str, day: datetime) -> str:
    """Return ``<YYYY-MM-DD>-<branch>`` with the loop prefix stripped."""

    name = branch.removeprefix(prefix) if prefix else branch
    safe = name.strip().replace("/", "-").replace("\\", "-") or "branch"
    return f"{day:%Y-%m-%d}-{safe}"


@dataclass(slots=True)
class ArchiveResult:
    """Outcome of the once-per-run archive step."""

    archived: bool
    current_branch: str
    previous_branch: str | None
    folder: Path | None = None
    error: str | None = None


class ArchiveManager:
    """Moves task list and progress log aside when ``branchName`` changes."""

    def __init__(
        self,
        *,
        files: ControlFilesSettings,
        branch_prefix: str,
        now: Callable[[], datetime] = local_now,
    ) -> None:
        self.files = files
        self.branch_prefix = branch_prefix
        self.store = ControlStateStore(files)
        self.tracker = BranchTracker(self.store)
        self._now = now

    def prepare(self) -> ArchiveResult:
        """Archive if needed, track the branch and make sure a progress log exists."""

        try:
            result = self.maybe_archive()
        except OSError as error:
            logger.exception("Archiving previous run failed")
            self.ensure_progress_log()
            current = read_branch_name(self.store.path(StateKey.TASK_LIST))
            return ArchiveResult(
                archived=False,
                current_branch=current,
                previous_branch=self.tracker.read_last(),
                error=str(error),
            )

        if result.current_branch:
            self.tracker.write_last(result.current_branch)
        self.ensure_progress_log()
        return result

    def maybe_archive(self) -> ArchiveResult:
        """Copy the previous run into the archive when the branch changed."""

        task_list_path = self.store.path(StateKey.TASK_LIST)
        current = read_branch_name(task_list_path)
        previous = self.tracker.read_last()

        if not task_list_path.is_file() or not current or not previous or current == previous:
            logger.debug("No archive needed: current=%r previous=%r", current, previous)
            return ArchiveResult(archived=False, current_branch=current, previous_branch=previous)

        folder = self.files.archive_dir / archive_folder_name(
            branch=previous,
            prefix=self.branch_prefix,
            day=self._now(),
        )
        logger.info("Branch changed from %r to %r, archiving to %s", previous, current, folder)
        folder.mkdir(parents=True, exist_ok=True)
        for key in (StateKey.TASK_LIST, StateKey.PROGRESS_LOG):
            source = self.store.path(key)
            if source.is_file():
                shutil.copyfile(source, folder / source.name)

        self.reset_progress_log()
        return ArchiveResult(
            archived=True,
            current_branch=current,
            previous_branch=previous,
            folder=folder,
        )

    def ensure_progress_log(self) -> bool:
        """Create the progress log if absent. Return True when it was created."""

        if self.store.exists(StateKey.PROGRESS_LOG):
            return False
        self.reset_progress_log()
        return True

    def reset_progress_log(self) -> None:
        self.store.set(StateKey.PROGRESS_LOG, progress_preamble(self._now()))
