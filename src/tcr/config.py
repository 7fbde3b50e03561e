"""Workspace configuration: defaults, YAML loading and validation."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .tools.workspace_snapshot import DEFAULT_IGNORED, DEFAULT_MAX_ENTRIES

DEFAULT_CONFIG_NAME = "tcr.yaml"
DEFAULT_SYSTEM_PROMPT = (
    "You operate in a Test-Commit-Revert workflow. Return only unified diffs for necessary files. "
    "Be minimal and keep code passing tests."
)


class ConfigError(RuntimeError):
    """Raised when the workspace configuration cannot be loaded."""


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class PathsConfig(_Section):
    prompts_root: str = "prompts"
    prompt_log: str = "prompts.md"
    state_db: str = ".tcr/sessions.sqlite"


class SuiteConfig(_Section):
    command: str = "pytest"
    timeout: Optional[float] = Field(default=None, gt=0)


class GitConfig(_Section):
    remote: str = "origin"
    branch: str = "main"


class ModelsConfig(_Section):
    api_key: str = ""
    base_url: str = "https://api.openai.com/v1/chat/completions"
    model: str = "gpt-4o-mini"
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    temperature: float = Field(default=0.0, ge=0.0, le=2.0)
    max_tokens: int = Field(default=800, gt=0)
    timeout: float = Field(default=60.0, gt=0)


class SnapshotConfig(_Section):
    max_entries: int = Field(default=DEFAULT_MAX_ENTRIES, ge=0)
    ignored: List[str] = Field(default_factory=lambda: list(DEFAULT_IGNORED))


class TcrConfig(_Section):
    """Typed view over ``tcr.yaml``; every key has a default."""

    paths: PathsConfig = Field(default_factory=PathsConfig)
    tests: SuiteConfig = Field(default_factory=SuiteConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    models: ModelsConfig = Field(default_factory=ModelsConfig)
    snapshot: SnapshotConfig = Field(default_factory=SnapshotConfig)

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "TcrConfig":
        try:
            return cls.model_validate(data)
        except ValidationError as error:
            raise ConfigError(f"Invalid configuration: {error}") from error

    def prompt_log_relative(self) -> str:
        return Path(self.paths.prompt_log).as_posix()

    def thought_log_relative(self, session_id: str) -> str:
        return (Path(self.paths.prompts_root) / f"{session_id}-log.md").as_posix()


def default_config_data() -> Dict[str, Any]:
    """Return the default configuration as a plain mapping (API key left blank)."""
    return TcrConfig().model_dump()


def load_config(config_path: Path) -> TcrConfig:
    """Load YAML configuration from disk; a missing file yields the defaults."""
    if not config_path.exists():
        return TcrConfig()

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config {config_path}: {error}") from error

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping at the top level.")

    return TcrConfig.from_mapping(data)


def write_config(config_path: Path, config_data: Dict[str, Any]) -> None:
    """Persist configuration data to disk with stable formatting."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(config_data, handle, sort_keys=False)


__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_SYSTEM_PROMPT",
    "GitConfig",
    "ModelsConfig",
    "PathsConfig",
    "SnapshotConfig",
    "TcrConfig",
    "SuiteConfig",
    "default_config_data",
    "load_config",
    "write_config",
]
