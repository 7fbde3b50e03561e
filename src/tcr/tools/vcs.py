"""Minimal git helpers.

The helpers below cover what the TCR loop needs from version control:
capture a baseline, list what changed since it, commit and push the
accepted work, and put selected paths back to their baseline content.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import List, Sequence

LOGGER = logging.getLogger(__name__)


class GitError(RuntimeError):
    """Raised when a git command fails or the repository cannot be used."""

    def __init__(self, message: str, *, command: Sequence[str] = (), output: str = "") -> None:
        super().__init__(message)
        self.command: tuple[str, ...] = tuple(command)
        self.output = output


class GitRepository:
    """Lightweight wrapper around ``git`` commands scoped to a workspace root."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()
        if not (self.root / ".git").exists():
            raise GitError(f"Not a git repository: {self.root}")

    @classmethod
    def discover(cls, start: Path | str | None = None) -> "GitRepository":
        """Locate the nearest git repository starting from ``start``."""

        path = Path(start or Path.cwd()).resolve()
        for candidate in (path, *path.parents):
            if (candidate / ".git").exists():
                return cls(candidate)
        raise GitError(f"Unable to locate a git repository from {path}")

    @classmethod
    def initialise(cls, root: Path | str, *, branch: str = "main") -> "GitRepository":
        """Create an empty repository at ``root`` whose unborn branch is ``branch``."""

        path = Path(root).resolve()
        path.mkdir(parents=True, exist_ok=True)
        if (path / ".git").exists():
            return cls(path)
        for args in (["init", "--quiet"], ["symbolic-ref", "HEAD", f"refs/heads/{branch}"]):
            process = subprocess.run(["git", *args], cwd=path, capture_output=True, text=True, check=False)
            if process.returncode != 0:
                output = f"{process.stdout}{process.stderr}".strip()
                raise GitError(
                    f"git {' '.join(args)} failed: {output or 'unknown git error'}",
                    command=["git", *args],
                    output=output,
                )
        LOGGER.info("Initialised git repository at %s", path)
        return cls(path)

    # ------------------------------------------------------------------ git IO
    def _run_git(self, args: Sequence[str], *, check: bool = True) -> subprocess.CompletedProcess[str]:
        command = ["git", *args]
        LOGGER.debug("Running %s in %s", " ".join(command), self.root)
        try:
            process = subprocess.run(
                command,
                cwd=self.root,
                capture_output=True,
                text=False,
                check=False,
            )
        except OSError as error:
            raise GitError(f"git {' '.join(args)} failed: {error}", command=command) from error
        stdout = process.stdout.decode("utf-8", errors="replace") if process.stdout else ""
        stderr = process.stderr.decode("utf-8", errors="replace") if process.stderr else ""
        result = subprocess.CompletedProcess(process.args, process.returncode, stdout, stderr)
        if check and result.returncode != 0:
            combined = f"{result.stdout}{result.stderr}".strip()
            message = combined or "unknown git error"
            raise GitError(f"git {' '.join(args)} failed: {message}", command=command, output=combined)
        return result

    def git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        """Execute ``git`` with ``args`` relative to the repository root."""

        return self._run_git(list(args), check=check)

    # --------------------------------------------------------------- revisions
    def current_revision(self) -> str | None:
        """Return the ``HEAD`` sha, or ``None`` when the repository has no commits."""

        result = self._run_git(["rev-parse", "--verify", "HEAD"], check=False)
        if result.returncode != 0:
            return None
        head = result.stdout.strip()
        return head or None

    def is_ancestor(self, revision: str, ref: str) -> bool:
        """Return ``True`` when ``revision`` is reachable from ``ref``."""

        result = self._run_git(["merge-base", "--is-ancestor", revision, ref], check=False)
        return result.returncode == 0

    def find_commits(self, pattern: str) -> List[tuple[str, str]]:
        """Return ``(sha, subject)`` pairs whose message contains ``pattern`` literally."""

        if self.current_revision() is None:
            return []
        result = self._run_git(
            ["log", "--fixed-strings", f"--grep={pattern}", "--format=%H%x1f%s"],
            check=True,
        )
        commits: List[tuple[str, str]] = []
        for line in result.stdout.splitlines():
            sha, _, subject = line.partition("\x1f")
            if sha:
                commits.append((sha.strip(), subject))
        return commits

    # ------------------------------------------------------------ diff helpers
    def changed_paths_since(self, revision: str | None) -> List[str]:
        """Return paths whose working tree content differs from ``revision``.

        Paths are repository-relative POSIX strings in git's order.  Without a
        revision there is nothing to compare against and the list is empty.
        """

        if not revision:
            return []
        result = self._run_git(["diff", "--name-only", "-z", revision], check=True)
        return [entry for entry in result.stdout.split("\0") if entry]

    def diff_since(self, revision: str | None) -> str:
        """Return the unified diff of the working tree against ``revision``."""

        args: List[str] = ["diff"]
        if revision:
            args.append(revision)
        return self._run_git(args, check=True).stdout

    def paths_in_revision(self, revision: str, paths: Sequence[str]) -> set[str]:
        """Return the subset of ``paths`` that exist as files in ``revision``."""

        if not paths:
            return set()
        result = self._run_git(["ls-tree", "-r", "--name-only", "-z", revision, "--", *paths], check=True)
        return {entry for entry in result.stdout.split("\0") if entry}

    # ----------------------------------------------------------------- writes
    def indexed_paths(self, paths: Sequence[str]) -> set[str]:
        """Return the subset of ``paths`` currently recorded in the index."""

        if not paths:
            return set()
        result = self._run_git(["ls-files", "-z", "--", *paths], check=True)
        return {entry for entry in result.stdout.split("\0") if entry}

    def stage(self, paths: Sequence[str]) -> None:
        """Record additions, edits and deletions of ``paths`` in the index.

        A path missing from both the working tree and the index has its
        deletion staged already and is skipped.  An empty selection is a no-op.
        """

        if not paths:
            return
        indexed = self.indexed_paths(paths)
        selected = [
            path
            for path in paths
            if path in indexed or (self.root / path).exists() or (self.root / path).is_symlink()
        ]
        if not selected:
            return
        self._run_git(["add", "-A", "--", *selected], check=True)

    def commit(self, message: str) -> str:
        """Commit the staged changes and return the new revision sha."""

        commit = self._run_git(["commit", "-m", message], check=False)
        if commit.returncode != 0:
            output = f"{commit.stdout}{commit.stderr}".strip()
            lowered = output.lower()
            if "nothing to commit" in lowered or "no changes added to commit" in lowered:
                raise GitError(
                    f"git commit failed: nothing staged to commit ({output})",
                    command=["git", "commit", "-m", message],
                    output=output,
                )
            raise GitError(
                f"git commit failed: {output or 'unknown git error'}",
                command=["git", "commit", "-m", message],
                output=output,
            )
        revision = self.current_revision()
        if revision is None:
            raise GitError("git commit reported success but HEAD is missing")
        return revision

    def push(self, remote: str, branch: str) -> None:
        """Push ``branch`` to ``remote``; failures are surfaced as-is."""

        self._run_git(["push", remote, branch], check=True)

    def reset_soft(self, revision: str | None) -> None:
        """Move ``HEAD`` back to ``revision`` keeping index and working tree.

        ``None`` returns the branch to the unborn state, used when the commit
        being undone was the first one in the repository.
        """

        if revision:
            self._run_git(["reset", "--soft", revision], check=True)
        else:
            self._run_git(["update-ref", "-d", "HEAD"], check=True)

    def revert_to_revision(self, revision: str, paths: Sequence[str]) -> None:
        """Restore exactly ``paths`` to their content at ``revision``.

        Paths absent from ``revision`` are removed from the index and working
        tree.  Every other path is left untouched.
        """

        if not paths:
            return
        existing = self.paths_in_revision(revision, paths)
        restore = [path for path in paths if path in existing]
        remove = [path for path in paths if path not in existing]
        if restore:
            self._run_git(["checkout", revision, "--", *restore], check=True)
        if remove:
            self._run_git(["rm", "-r", "-f", "--quiet", "--ignore-unmatch", "--", *remove], check=True)
            for relative in remove:
                target = self.root / relative
                if target.is_file() or target.is_symlink():
                    target.unlink(missing_ok=True)

    def apply_patch(self, patch_path: Path | str) -> subprocess.CompletedProcess[str]:
        """Apply a patch file with three-way fallback, tolerating whitespace noise."""

        return self._run_git(
            ["apply", "--3way", "--whitespace=nowarn", str(patch_path)],
            check=True,
        )


__all__ = ["GitError", "GitRepository"]
