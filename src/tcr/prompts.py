"""Prompt templates for the patch-generation request."""

from __future__ import annotations

from typing import Sequence

from .memory.schema import Session

DIFF_ONLY_INSTRUCTIONS = (
    "You are writing a unified diff against the workspace root. Requirements:",
    "- Respond ONLY with a unified diff, no code fences, no extra prose.",
    "- Paths must be relative to workspace root.",
    "- Include full file contents in the diff hunks (no placeholders).",
    "- Create files as needed; keep changes minimal and buildable.",
    "- Do not delete unrelated files.",
)

CLOSING_INSTRUCTION = "Return only unified diffs. No fences. Keep output under token limits."


def render_file_tree(entries: Sequence[str]) -> str:
    """Format workspace entries as a bullet list."""
    if not entries:
        return "- (empty)"
    return "\n".join(f"- {entry}" for entry in entries)


def render_patch_prompt(session: Session, tree: Sequence[str]) -> str:
    """Build the user instruction asking for a diff that implements ``session``."""
    lines = [
        *DIFF_ONLY_INSTRUCTIONS,
        "",
        "Prompt:",
        f"Title: {session.title}",
        f"Body: {session.prompt_body or 'N/A'}",
        f"Baseline commit: {session.baseline.describe()}",
        "",
        "Workspace file tree (truncated):",
        render_file_tree(tree),
        "",
        CLOSING_INSTRUCTION,
    ]
    return "\n".join(lines)


__all__ = ["CLOSING_INSTRUCTION", "DIFF_ONLY_INSTRUCTIONS", "render_file_tree", "render_patch_prompt"]
