"""Durable state shared across loop runs."""

from __future__ import annotations

import os
import tempfile
from enum import Enum
from pathlib import Path

from ralph_loop.config import ControlFilesSettings


class StateKey(str, Enum):
    """Logical keys of files kept in the control directory."""

    TASK_LIST = "task_list"
    PROGRESS_LOG = "progress_log"
    LAST_BRANCH = "last_branch"


class ControlStateStore:
    """Get/set access to control-directory files with atomic writes."""

    def __init__(self, files: ControlFilesSettings) -> None:
        self.files = files
        self._names = {
            StateKey.TASK_LIST: files.task_list_name,
            StateKey.PROGRESS_LOG: files.progress_name,
            StateKey.LAST_BRANCH: files.last_branch_name,
        }

    def path(self, key: StateKey) -> Path:
        return self.files.control_dir / self._names[key]

    def exists(self, key: StateKey) -> bool:
        return self.path(key).is_file()

    def get(self, key: StateKey) -> str | None:
        path = self.path(key)
        if not path.is_file():
            return None
        return path.read_text("utf-8")

    def set(self, key: StateKey, text: str) -> None:
        write_text_atomic(self.path(key), text)


def write_text_atomic(path: Path, text: str) -> None:
    """Write text through a temporary sibling file and ``os.replace``."""

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp, path)
    finally:
        if os.path.exists(tmp):
            os.unlink(tmp)


class BranchTracker:
    """Persists the last branch name the loop ran against."""

    def __init__(self, store: ControlStateStore) -> None:
        self.store = store

    def read_last(self) -> str | None:
        raw = self.store.get(StateKey.LAST_BRANCH)
        if raw is None:
            return None
        value = raw.strip()
        return value or None

    def write_last(self, name: str) -> None:
        self.store.set(StateKey.LAST_BRANCH, f"{name}\n")
