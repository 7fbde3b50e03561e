from __future__ import annotations

import json
import logging
import subprocess
import tempfile
import textwrap
from pathlib import Path

import pytest

from conftest import GitWorkspace
from tcr.tools.patch import PatchError, apply_patch, looks_like_unified_diff, strip_code_fence
from tcr.tools.vcs import GitRepository

BUMP_DIFF = textwrap.dedent(
    """
    diff --git a/app.py b/app.py
    --- a/app.py
    +++ b/app.py
    @@ -1 +1 @@
    -VALUE = 1
    +VALUE = 2
    """
).lstrip()

NEW_FILE_DIFF = textwrap.dedent(
    """
    diff --git a/feature.py b/feature.py
    new file mode 100644
    --- /dev/null
    +++ b/feature.py
    @@ -0,0 +1,2 @@
    +def feature() -> str:
    +    return "on"
    """
).lstrip()


class _RecordingRepo:
    """Stands in for the git gateway and keeps what it was handed."""

    def __init__(self) -> None:
        self.patches: list[str] = []
        self.paths: list[Path] = []

    def apply_patch(self, patch_path: Path) -> subprocess.CompletedProcess[str]:
        self.paths.append(Path(patch_path))
        self.patches.append(Path(patch_path).read_text(encoding="utf-8"))
        return subprocess.CompletedProcess(["git", "apply"], 0, "", "")


@pytest.fixture()
def isolated_tempdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(scratch))
    return scratch


def _telemetry_events(caplog: pytest.LogCaptureFixture) -> list[str]:
    return [json.loads(record.getMessage())["event"] for record in caplog.records if record.name == "tcr.telemetry"]


@pytest.mark.parametrize(
    "text, expected",
    [
        ("diff --git a/x b/x", True),
        ("+++ b/x", True),
        ("@@", True),
        ("Sure! Here is what I would change.", False),
        ("", False),
        (None, False),
    ],
)
def test_looks_like_unified_diff(text: str | None, expected: bool) -> None:
    assert looks_like_unified_diff(text) is expected


def test_strip_code_fence_unwraps_single_fence() -> None:
    fenced = f"```diff\n{BUMP_DIFF}```"

    assert strip_code_fence(fenced) == BUMP_DIFF.rstrip("\n")
    assert strip_code_fence(BUMP_DIFF) == BUMP_DIFF.strip()


def test_rejects_text_without_diff_markers(
    git_workspace: GitWorkspace, isolated_tempdir: Path, caplog: pytest.LogCaptureFixture
) -> None:
    repo = GitRepository(git_workspace.root)
    caplog.set_level(logging.INFO, logger="tcr.telemetry")

    with pytest.raises(PatchError) as excinfo:
        apply_patch("I could not produce a patch this time.", repo=repo)

    assert excinfo.value.details["reason"] == "not-a-diff"
    assert git_workspace.read("app.py") == "VALUE = 1\n"
    assert git_workspace.git("status", "--porcelain") == ""
    assert list(isolated_tempdir.iterdir()) == []
    assert _telemetry_events(caplog) == ["patch_rejected"]


def test_minimal_hunk_marker_is_forwarded(isolated_tempdir: Path) -> None:
    repo = _RecordingRepo()

    result = apply_patch("@@", repo=repo)  # type: ignore[arg-type]

    assert repo.patches == ["@@\n"]
    assert repo.paths[0].name == "generated.patch"
    assert repo.paths[0].parent.name.startswith("tcr-patch-")
    assert not repo.paths[0].exists()
    assert result.paths == ()
    assert list(isolated_tempdir.iterdir()) == []


def test_apply_patch_updates_tracked_file(git_workspace: GitWorkspace, isolated_tempdir: Path) -> None:
    repo = GitRepository(git_workspace.root)

    result = apply_patch(BUMP_DIFF, repo=repo)

    assert git_workspace.read("app.py") == "VALUE = 2\n"
    assert result.paths == ("app.py",)
    assert result.command[:2] == ("git", "apply")
    assert list(isolated_tempdir.iterdir()) == []


def test_apply_patch_stages_new_files_and_strips_fence(git_workspace: GitWorkspace, isolated_tempdir: Path) -> None:
    repo = GitRepository(git_workspace.root)

    apply_patch(f"```diff\n{NEW_FILE_DIFF}```\n", repo=repo)

    assert git_workspace.read("feature.py").startswith("def feature()")
    assert "feature.py" in git_workspace.git("diff", "--cached", "--name-only").splitlines()
    assert list(isolated_tempdir.iterdir()) == []


def test_conflicting_patch_reports_failure_and_cleans_up(
    git_workspace: GitWorkspace, isolated_tempdir: Path, caplog: pytest.LogCaptureFixture
) -> None:
    repo = GitRepository(git_workspace.root)
    caplog.set_level(logging.INFO, logger="tcr.telemetry")
    conflicting = BUMP_DIFF.replace("-VALUE = 1", "-VALUE = 7")

    with pytest.raises(PatchError) as excinfo:
        apply_patch(conflicting, repo=repo)

    assert excinfo.value.details["output"]
    assert excinfo.value.details["patch_path"].endswith("generated.patch")
    assert git_workspace.read("app.py") == "VALUE = 1\n"
    assert list(isolated_tempdir.iterdir()) == []
    assert _telemetry_events(caplog) == ["patch_apply_failed"]
