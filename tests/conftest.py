"""Shared test fixtures."""

from __future__ import annotations

import json
import os
import shutil
import stat
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path

import pytest

from ralph_loop.routing import SUPPORTED_AGENTS


@dataclass(slots=True)
class AgentRecord:
    """Invocation log written by the echo agent."""

    path: Path

    def invocations(self) -> list[dict]:
        if not self.path.exists():
            return []
        lines = self.path.read_text("utf-8").splitlines()
        return [json.loads(line) for line in lines if line]


@pytest.fixture()
def git_repo(tmp_path: Path) -> Path:
    """Fresh git work tree with a ``scripts/ralph`` control directory."""

    if shutil.which("git") is None:
        pytest.skip("git executable is required")
    repo = tmp_path / "repo"
    repo.mkdir()
    subprocess.run(["git", "init", "-q", str(repo)], check=True)  # noqa: S607
    control_dir = repo / "scripts" / "ralph"
    control_dir.mkdir(parents=True)
    (control_dir / "prompt.md").write_text("Pick the next failing story and finish it.\n", "utf-8")
    return repo


@pytest.fixture()
def fake_agents(tmp_path: Path, monkeypatch):
    """Install fake agent executables on PATH backed by the echo agent.

    Returns a function ``install(complete_after=0, exit_code=0)`` that returns
    an ``AgentRecord`` for reading back the invocations.
    """

    if os.name == "nt":
        pytest.skip("fake agent launchers are POSIX shell scripts")
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    record = tmp_path / "invocations.jsonl"
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")

    def install(*, complete_after: int = 0, exit_code: int = 0) -> AgentRecord:
        for name in SUPPORTED_AGENTS:
            launcher = bin_dir / name
            launcher.write_text(
                "#!/usr/bin/env sh\n"
                f'exec "{sys.executable}" -m ralph_loop.backend.echo_agent '
                f'--record "{record}" --complete-after {complete_after} '
                f'--exit-code {exit_code} "$@"\n',
                "utf-8",
            )
            launcher.chmod(launcher.stat().st_mode | stat.S_IXUSR)
        return AgentRecord(record)

    return install
