from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from tcr.config import ConfigError, TcrConfig, default_config_data, load_config, write_config
from tcr.memory.schema import Baseline, Session, utc_now
from tcr.prompts import render_patch_prompt


def test_missing_file_yields_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "tcr.yaml")

    assert config == TcrConfig()
    assert config.tests.command == "pytest"
    assert config.git.remote == "origin" and config.git.branch == "main"
    assert config.prompt_log_relative() == "prompts.md"
    assert config.thought_log_relative("p-1") == "prompts/p-1-log.md"


def test_partial_file_overrides_selected_keys(tmp_path: Path) -> None:
    path = tmp_path / "tcr.yaml"
    path.write_text("tests:\n  command: make check\n  timeout: 30\npaths:\n  prompts_root: docs/prompts\n", encoding="utf-8")

    config = load_config(path)

    assert config.tests.command == "make check"
    assert config.tests.timeout == 30
    assert config.thought_log_relative("p-9") == "docs/prompts/p-9-log.md"
    assert config.models.max_tokens == 800


@pytest.mark.parametrize(
    "content",
    [
        "tests: [unclosed",
        "- just\n- a list\n",
        "unknown_section:\n  key: 1\n",
        "tests:\n  timeout: -5\n",
    ],
)
def test_invalid_files_raise_config_error(tmp_path: Path, content: str) -> None:
    path = tmp_path / "tcr.yaml"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(path)


def test_write_config_round_trips_defaults(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "tcr.yaml"

    write_config(path, default_config_data())

    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert list(data) == ["paths", "tests", "git", "models", "snapshot"]
    assert data["models"]["api_key"] == ""
    assert load_config(path) == TcrConfig()


def test_patch_prompt_mentions_title_body_baseline_and_tree() -> None:
    session = Session(
        id="p-1",
        title="Add greeting",
        prompt_body="Print hello on start.",
        created_at=utc_now(),
        thought_log_path="prompts/p-1-log.md",
        baseline=Baseline.absent(),
    )

    prompt = render_patch_prompt(session, ["app.py", "pkg/", "pkg/mod.py"])

    assert "Title: Add greeting" in prompt
    assert "Body: Print hello on start." in prompt
    assert "Baseline commit: unknown" in prompt
    assert "- pkg/mod.py" in prompt
    assert prompt.rstrip().endswith("Keep output under token limits.")
