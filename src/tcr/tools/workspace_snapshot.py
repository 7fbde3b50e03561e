"""Capped listings of the workspace tree for patch-generation prompts."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, List

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 300
DEFAULT_IGNORED = (
    ".git",
    "node_modules",
    ".vscode",
    ".idea",
    "dist",
    "out",
    "build",
    ".turbo",
    ".tcr",
    "__pycache__",
    ".venv",
    ".pytest_cache",
)


def snapshot_file_tree(
    root: Path | str,
    *,
    limit: int = DEFAULT_MAX_ENTRIES,
    ignored: Iterable[str] = DEFAULT_IGNORED,
) -> List[str]:
    """Return up to ``limit`` workspace-relative entries in depth-first order.

    Directories carry a trailing ``/``.  Siblings are visited in name order so
    the listing is stable across runs.  Any entry with a path component in
    ``ignored`` is skipped together with its subtree.
    """

    base = Path(root).resolve()
    skip = set(ignored)
    entries: List[str] = []
    if limit <= 0:
        return entries

    def walk(directory: Path) -> None:
        try:
            children = sorted(os.scandir(directory), key=lambda item: item.name)
        except OSError as error:
            LOGGER.warning("Failed to snapshot %s: %s", directory, error)
            return
        for child in children:
            if len(entries) >= limit:
                return
            if child.name in skip:
                continue
            relative = Path(child.path).relative_to(base).as_posix()
            is_dir = child.is_dir(follow_symlinks=False)
            entries.append(f"{relative}/" if is_dir else relative)
            if is_dir:
                walk(Path(child.path))

    walk(base)
    return entries[:limit]


__all__ = ["DEFAULT_IGNORED", "DEFAULT_MAX_ENTRIES", "snapshot_file_tree"]
