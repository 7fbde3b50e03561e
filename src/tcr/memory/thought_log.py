"""Per-session narrative file: a fixed skeleton followed by appended events."""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

NOTES_PLACEHOLDER = "- Add patch-generation interactions here as the session progresses."
APPROVE_TEST_HEADING = "## Test run (approve)"


def render_skeleton(*, session_id: str, title: str, prompt_body: str, created_at: str) -> str:
    lines = [
        f"# Thought Log – {session_id}",
        "",
        "## Prompt",
        title,
        "",
        prompt_body,
        "",
        "## Timeline",
        f"- {created_at}: Prompt created.",
        "",
        "## Notes",
        NOTES_PLACEHOLDER,
        "",
    ]
    return "\n".join(lines)


def fenced(text: str) -> list[str]:
    """Wrap ``text`` in a Markdown code fence, returned as separate lines."""
    return ["```", text.rstrip("\n"), "```"]


class ThoughtLog:
    """Append-only writer for one session's thought log."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def create(self, *, session_id: str, title: str, prompt_body: str, created_at: str) -> None:
        """Write the initial skeleton; an existing log is never overwritten."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        content = render_skeleton(
            session_id=session_id,
            title=title,
            prompt_body=prompt_body,
            created_at=created_at,
        )
        with self.path.open("x", encoding="utf-8", newline="\n") as handle:
            handle.write(content)

    def append(self, lines: Sequence[str]) -> None:
        with self.path.open("a", encoding="utf-8", newline="\n") as handle:
            handle.write("\n".join(lines) + "\n")

    def record(self, timestamp: str, message: str, *extra: str) -> None:
        """Append ``- <timestamp>: <message>`` plus optional detail paragraphs."""
        lines = [f"- {timestamp}: {message}"]
        for paragraph in extra:
            if paragraph:
                lines.extend(["", paragraph])
        lines.append("")
        self.append(lines)

    def record_test_run(self, output: str, *, heading: str = APPROVE_TEST_HEADING) -> None:
        self.append([heading, *fenced(output), ""])

    def read(self) -> str:
        return self.path.read_text(encoding="utf-8")


__all__ = ["APPROVE_TEST_HEADING", "NOTES_PLACEHOLDER", "ThoughtLog", "fenced", "render_skeleton"]
