from __future__ import annotations

from pathlib import Path

import pytest

from tcr.memory.thought_log import NOTES_PLACEHOLDER, ThoughtLog


def _create(log: ThoughtLog) -> None:
    log.create(
        session_id="p-20240506T070809",
        title="Add greeting",
        prompt_body="Say hello.",
        created_at="2024-05-06T07:08:09.000Z",
    )


def test_create_writes_skeleton(tmp_path: Path) -> None:
    log = ThoughtLog(tmp_path / "prompts" / "p-20240506T070809-log.md")

    _create(log)

    assert log.read() == (
        "# Thought Log – p-20240506T070809\n"
        "\n"
        "## Prompt\n"
        "Add greeting\n"
        "\n"
        "Say hello.\n"
        "\n"
        "## Timeline\n"
        "- 2024-05-06T07:08:09.000Z: Prompt created.\n"
        "\n"
        "## Notes\n"
        f"{NOTES_PLACEHOLDER}\n"
    )


def test_create_never_overwrites(tmp_path: Path) -> None:
    log = ThoughtLog(tmp_path / "log.md")
    _create(log)

    with pytest.raises(FileExistsError):
        _create(log)


def test_record_appends_event_with_details(tmp_path: Path) -> None:
    log = ThoughtLog(tmp_path / "log.md")
    _create(log)
    before = log.read()

    log.record("2024-05-06T07:08:10.000Z", "Continued session.", "try again", "")
    log.record_test_run("1 passed\n")

    appended = log.read()[len(before):]
    assert appended == (
        "- 2024-05-06T07:08:10.000Z: Continued session.\n"
        "\n"
        "try again\n"
        "\n"
        "## Test run (approve)\n"
        "```\n"
        "1 passed\n"
        "```\n"
        "\n"
    )
