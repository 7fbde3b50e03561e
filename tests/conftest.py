from __future__ import annotations

import os
import subprocess
import sys
import textwrap
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


def run_git(cwd: Path, *args: str) -> str:
    process = subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return process.stdout.strip()


def init_repo(root: Path) -> None:
    """Create an empty repository on ``main`` with a local identity."""

    root.mkdir(parents=True, exist_ok=True)
    run_git(root, "init", "--quiet")
    run_git(root, "symbolic-ref", "HEAD", "refs/heads/main")
    run_git(root, "config", "user.email", "tcr@example.com")
    run_git(root, "config", "user.name", "TCR Tester")
    run_git(root, "config", "commit.gpgsign", "false")


@dataclass(slots=True)
class SteppingClock:
    """Deterministic clock advancing one second per reading."""

    start: datetime = field(default_factory=lambda: datetime(2024, 5, 6, 7, 8, 9, tzinfo=timezone.utc))
    step: timedelta = timedelta(seconds=1)
    readings: int = 0

    def __call__(self) -> datetime:
        moment = self.start + self.step * self.readings
        self.readings += 1
        return moment


@dataclass(slots=True)
class GitWorkspace:
    """Workspace repository with a bare ``origin`` remote it can push to."""

    root: Path
    remote: Path

    def git(self, *args: str) -> str:
        return run_git(self.root, *args)

    def head(self) -> str:
        return self.git("rev-parse", "HEAD")

    def remote_head(self) -> str:
        return run_git(self.remote, "rev-parse", "refs/heads/main")

    def commit_count(self) -> int:
        return int(self.git("rev-list", "--count", "HEAD"))

    def write(self, relative: str, content: str) -> Path:
        target = self.root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        return target

    def read(self, relative: str) -> str:
        return (self.root / relative).read_text(encoding="utf-8")

    def break_remote(self) -> None:
        self.git("remote", "set-url", "origin", str(self.root.parent / "missing-remote.git"))

    def run_cli(self, *args: str, stdin: Optional[str] = None) -> subprocess.CompletedProcess[str]:
        """Invoke ``python -m tcr.cli`` inside the workspace."""

        env = os.environ.copy()
        pythonpath = str(SRC)
        if env.get("PYTHONPATH"):
            pythonpath = os.pathsep.join([pythonpath, env["PYTHONPATH"]])
        env["PYTHONPATH"] = pythonpath
        env.pop("TCR_API_KEY", None)
        env.pop("OPENAI_API_KEY", None)

        command = [sys.executable, "-m", "tcr.cli", *args]
        return subprocess.run(  # noqa: S603 - command constructed from known values
            command,
            cwd=self.root,
            env=env,
            input=stdin,
            capture_output=True,
            text=True,
            check=False,
        )


WORKSPACE_CONFIG = textwrap.dedent(
    """
    tests:
      command: test ! -e broken.flag
    git:
      remote: origin
      branch: main
    """
).lstrip()


@pytest.fixture()
def git_workspace(tmp_path: Path) -> GitWorkspace:
    """Create a committed workspace whose ``main`` is already pushed to ``origin``."""

    remote = tmp_path / "remote.git"
    run_git(tmp_path, "init", "--bare", "--quiet", str(remote))

    root = tmp_path / "workspace"
    init_repo(root)
    workspace = GitWorkspace(root=root, remote=remote)
    workspace.write("app.py", "VALUE = 1\n")
    workspace.write("README.md", "# Demo\n")
    workspace.write(".gitignore", ".tcr/\nbroken.flag\n")
    workspace.write("tcr.yaml", WORKSPACE_CONFIG)

    workspace.git("add", ".")
    workspace.git("commit", "-m", "Initial workspace")
    workspace.git("remote", "add", "origin", str(remote))
    workspace.git("push", "--quiet", "origin", "main")
    return workspace


@pytest.fixture()
def clock() -> SteppingClock:
    return SteppingClock()
