"""Append-only Markdown ledger with one block per session.

The file is plain text meant to be read by people, so every mutation parses
it into blocks first and rewrites only the header lines of the block whose
``ID:`` line names the session exactly.  All other bytes are preserved.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .schema import SessionStatus

LOGGER = logging.getLogger(__name__)

PROMPT_LOG_HEADER = "# Prompt Log\n\n"
BLOCK_SEPARATOR = "---"
PENDING_COMMIT = "pending"


class PromptLogError(RuntimeError):
    """Raised when the prompt log cannot be parsed or would lose its invariants."""


@dataclass(slots=True)
class PromptLogEntry:
    """Parsed view of one session block."""

    session_id: str
    status: str
    commit: str
    thought_log: str = ""
    title: str = ""
    created_at: str = ""
    prompt_body: str = ""

    @property
    def is_committed(self) -> bool:
        return self.commit != PENDING_COMMIT


@dataclass(slots=True)
class _Block:
    lines: List[str] = field(default_factory=list)
    terminated: bool = False

    def header_range(self) -> range:
        for index, line in enumerate(self.lines):
            if line.rstrip() == "Prompt:":
                return range(0, index)
        return range(0, len(self.lines))

    def session_id(self) -> Optional[str]:
        for index in self.header_range():
            line = self.lines[index].rstrip()
            if line.startswith("ID: "):
                return line[len("ID: "):].strip()
        return None


def quote_block(text: str) -> str:
    """Render ``text`` as a Markdown block quote, one ``> `` per line."""
    return "\n".join(f"> {line}" for line in text.split("\n"))


def _unquote(line: str) -> str:
    if line.startswith("> "):
        return line[2:]
    if line.startswith(">"):
        return line[1:]
    return line


def render_entry(
    *,
    session_id: str,
    title: str,
    created_at: str,
    thought_log: str,
    prompt_body: str,
    status: SessionStatus = SessionStatus.PENDING,
    commit: Optional[str] = None,
) -> str:
    """Render a complete block including its trailing separator."""
    lines = [
        f"## {created_at} – {title}",
        f"ID: {session_id}",
        f"Status: {status.value}",
        f"ThoughtLog: {thought_log}",
        f"Commit: {commit or PENDING_COMMIT}",
        "",
        "Prompt:",
        quote_block(prompt_body),
        "",
        BLOCK_SEPARATOR,
        "",
    ]
    return "\n".join(lines)


def _parse_blocks(text: str) -> List[_Block]:
    blocks: List[_Block] = []
    current = _Block()
    for line in text.split("\n"):
        if line.rstrip() == BLOCK_SEPARATOR:
            current.terminated = True
            blocks.append(current)
            current = _Block()
            continue
        current.lines.append(line)
    blocks.append(current)
    return blocks


def _render_blocks(blocks: List[_Block]) -> str:
    lines: List[str] = []
    for block in blocks:
        lines.extend(block.lines)
        if block.terminated:
            lines.append(BLOCK_SEPARATOR)
    return "\n".join(lines)


def _entry_from_block(block: _Block) -> Optional[PromptLogEntry]:
    session_id = block.session_id()
    if session_id is None:
        return None
    entry = PromptLogEntry(session_id=session_id, status="", commit=PENDING_COMMIT)
    header = block.header_range()
    for index in header:
        line = block.lines[index].rstrip()
        if line.startswith("## ") and " – " in line:
            created_at, _, title = line[3:].partition(" – ")
            entry.created_at = created_at.strip()
            entry.title = title.strip()
        elif line.startswith("Status:"):
            entry.status = line[len("Status:"):].strip()
        elif line.startswith("Commit:"):
            entry.commit = line[len("Commit:"):].strip() or PENDING_COMMIT
        elif line.startswith("ThoughtLog:"):
            entry.thought_log = line[len("ThoughtLog:"):].strip()
    body_lines: List[str] = []
    for line in block.lines[header.stop + 1:]:
        if not line.startswith(">"):
            if body_lines:
                break
            continue
        body_lines.append(_unquote(line))
    entry.prompt_body = "\n".join(body_lines)
    return entry


class PromptLog:
    """Reader and writer for the workspace prompt log file."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def ensure(self) -> None:
        """Create the file with its heading when it does not exist yet."""
        if self.path.exists():
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(PROMPT_LOG_HEADER, encoding="utf-8", newline="\n")

    def _read(self) -> str:
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""

    def _write(self, text: str) -> None:
        handle = tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            newline="\n",
            dir=self.path.parent,
            prefix=f".{self.path.name}.",
            delete=False,
        )
        try:
            with handle:
                handle.write(text)
            os.replace(handle.name, self.path)
        except BaseException:
            Path(handle.name).unlink(missing_ok=True)
            raise

    def entries(self) -> List[PromptLogEntry]:
        parsed: List[PromptLogEntry] = []
        for block in _parse_blocks(self._read()):
            entry = _entry_from_block(block)
            if entry is not None:
                parsed.append(entry)
        return parsed

    def find(self, session_id: str) -> Optional[PromptLogEntry]:
        matches = [entry for entry in self.entries() if entry.session_id == session_id]
        if len(matches) > 1:
            raise PromptLogError(f"Prompt log holds {len(matches)} blocks for {session_id}.")
        return matches[0] if matches else None

    def append(
        self,
        *,
        session_id: str,
        title: str,
        created_at: str,
        thought_log: str,
        prompt_body: str,
        status: SessionStatus = SessionStatus.PENDING,
        commit: Optional[str] = None,
    ) -> None:
        """Append a new block; a session may own only one block."""
        self.ensure()
        if self.find(session_id) is not None:
            raise PromptLogError(f"Prompt log already has a block for {session_id}.")
        existing = self._read()
        prefix = "" if not existing or existing.endswith("\n") else "\n"
        block = render_entry(
            session_id=session_id,
            title=title,
            created_at=created_at,
            thought_log=thought_log,
            prompt_body=prompt_body,
            status=status,
            commit=commit,
        )
        with self.path.open("a", encoding="utf-8", newline="\n") as handle:
            handle.write(prefix + block)

    def update_status(self, session_id: str, status: SessionStatus, commit: Optional[str]) -> bool:
        """Rewrite the ``Status:``/``Commit:`` lines of one block in place.

        Returns ``False`` when no block carries ``session_id``.  Rewriting a
        block to the values it already holds leaves the file unchanged.
        """
        text = self._read()
        blocks = _parse_blocks(text)
        matches = [block for block in blocks if block.session_id() == session_id]
        if not matches:
            LOGGER.warning("No prompt log block found for %s", session_id)
            return False
        if len(matches) > 1:
            raise PromptLogError(f"Prompt log holds {len(matches)} blocks for {session_id}.")

        block = matches[0]
        for index in block.header_range():
            line = block.lines[index]
            if line.startswith("Status:"):
                block.lines[index] = f"Status: {status.value}"
            elif line.startswith("Commit:") and commit:
                block.lines[index] = f"Commit: {commit}"

        rendered = _render_blocks(blocks)
        if rendered != text:
            self._write(rendered)
        return True


__all__ = [
    "PENDING_COMMIT",
    "PROMPT_LOG_HEADER",
    "PromptLog",
    "PromptLogEntry",
    "PromptLogError",
    "quote_block",
    "render_entry",
]
