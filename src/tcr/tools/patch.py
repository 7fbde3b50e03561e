"""Unified diff helpers with guard rails for applying generated patches."""

from __future__ import annotations

import json
import logging
import re
import shutil
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Tuple

from .vcs import GitError, GitRepository


class PatchError(RuntimeError):
    """Raised when a patch fails validation or application."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


@dataclass(slots=True)
class PatchResult:
    """Outcome of applying a patch to the repository."""

    command: Tuple[str, ...]
    paths: Tuple[str, ...]
    stdout: str
    stderr: str


TELEMETRY_LOGGER = logging.getLogger("tcr.telemetry")
TEMP_PREFIX = "tcr-patch-"
PATCH_FILENAME = "generated.patch"

_DIFF_MARKERS = ("diff ", "+++", "@@")
_FENCE_RE = re.compile(r"^```[A-Za-z0-9_-]*[ \t]*\n(?P<body>.*?)\n?```[ \t]*$", re.DOTALL)
_DIFF_PATH_RE = re.compile(r"^\+\+\+ (?:b/)?(?P<path>[^\t\n]+)", re.MULTILINE)
_PATCH_FAILED_RE = re.compile(r"error: patch failed: (?P<path>.+?)(?::(?P<line>\d+))?$")
_PATCH_DOES_NOT_APPLY_RE = re.compile(r"error: (?P<path>.+?): patch does not apply")


def _emit_patch_event(event: str, **fields: Any) -> None:
    """Log structured telemetry events when applying patches."""
    payload = {"event": event, "timestamp": datetime.now(timezone.utc).isoformat()}
    for key, value in fields.items():
        payload[key] = value.as_posix() if isinstance(value, Path) else value
    TELEMETRY_LOGGER.info(json.dumps(payload, separators=(",", ":"), ensure_ascii=True, default=str))


def strip_code_fence(text: str) -> str:
    """Remove a single Markdown code fence wrapped around the whole payload."""
    stripped = text.strip()
    match = _FENCE_RE.match(stripped)
    if not match:
        return stripped
    return match.group("body").strip("\n")


def looks_like_unified_diff(text: str | None) -> bool:
    """Return ``True`` when ``text`` carries at least one unified diff marker."""
    if not text:
        return False
    return any(marker in text for marker in _DIFF_MARKERS)


def _extract_paths(patch: str) -> Tuple[str, ...]:
    paths: list[str] = []
    for match in _DIFF_PATH_RE.finditer(patch):
        candidate = match.group("path").strip()
        if candidate == "/dev/null" or candidate in paths:
            continue
        paths.append(candidate)
    return tuple(paths)


def _failing_paths(output: str) -> list[str]:
    failing: list[str] = []
    for raw_line in output.splitlines():
        line = raw_line.strip()
        match = _PATCH_FAILED_RE.match(line) or _PATCH_DOES_NOT_APPLY_RE.match(line)
        if match and match.group("path") not in failing:
            failing.append(match.group("path"))
    return failing


def apply_patch(patch: str, *, repo: GitRepository) -> PatchResult:
    """Apply a unified diff ``patch`` to ``repo`` through ``git apply --3way``.

    The patch is written to a fresh temporary directory outside the workspace,
    and that directory is removed on every exit path.
    """

    text = strip_code_fence(patch)
    if not looks_like_unified_diff(text):
        _emit_patch_event("patch_rejected", reason="not-a-diff", patch_bytes=len(text.encode("utf-8")))
        raise PatchError("Patch does not look like a unified diff.", details={"reason": "not-a-diff"})

    if not text.endswith("\n"):
        text = f"{text}\n"

    temp_dir = Path(tempfile.mkdtemp(prefix=TEMP_PREFIX))
    patch_path = temp_dir / PATCH_FILENAME
    try:
        patch_path.write_text(text, encoding="utf-8")
        try:
            result = repo.apply_patch(patch_path)
        except GitError as error:
            details = {
                "patch_path": patch_path.as_posix(),
                "output": error.output,
                "failing_paths": _failing_paths(error.output),
            }
            _emit_patch_event("patch_apply_failed", **details)
            raise PatchError(f"Patch failed to apply: {error.output or error}", details=details) from error

        touched = _extract_paths(text)
        _emit_patch_event("patch_apply_succeeded", patch_path=patch_path, touched_paths=list(touched))
        return PatchResult(
            command=tuple(result.args),
            paths=touched,
            stdout=result.stdout,
            stderr=result.stderr,
        )
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)


__all__ = [
    "PatchError",
    "PatchResult",
    "apply_patch",
    "looks_like_unified_diff",
    "strip_code_fence",
]
