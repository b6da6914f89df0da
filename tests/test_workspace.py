from __future__ import annotations

import subprocess
from pathlib import Path

import allure
import pytest

from ralph_loop.workspace import NotInRepositoryError, resolve_repository_root

pytestmark = [
    allure.epic("Ralph Loop"),
    allure.feature("Repository Root"),
]


def test_resolve_repository_root_from_nested_directory(git_repo: Path) -> None:
    nested = git_repo / "scripts" / "ralph"

    assert resolve_repository_root(nested).resolve() == git_repo.resolve()


def test_resolve_repository_root_outside_git_raises(tmp_path: Path, monkeypatch) -> None:
    outside = tmp_path / "plain"
    outside.mkdir()
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path))

    with pytest.raises(NotInRepositoryError, match="Not inside a git repository"):
        resolve_repository_root(outside)


def test_resolve_repository_root_without_git_executable(tmp_path: Path, monkeypatch) -> None:
    def _missing_git(*args, **kwargs):
        raise FileNotFoundError("git")

    monkeypatch.setattr(subprocess, "run", _missing_git)

    with pytest.raises(NotInRepositoryError):
        resolve_repository_root(tmp_path)
