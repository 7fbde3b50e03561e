"""Typed records tracked by the TCR session store."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def iso_timestamp(moment: datetime) -> str:
    """Render ``moment`` as UTC ISO 8601 with millisecond precision and a ``Z`` suffix."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    rendered = moment.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return rendered.replace("+00:00", "Z")


class RecordModel(BaseModel):
    """Base Pydantic model with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=False)


class InvalidTransition(RuntimeError):
    """Raised when a session status change would break the forward-only lifecycle."""


class SessionStatus(str, Enum):
    """Lifecycle states for a session."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DENIED = "DENIED"

    @property
    def is_terminal(self) -> bool:
        return self is not SessionStatus.PENDING


class Verdict(str, Enum):
    """Classification of the most recent test command run."""

    PASS = "PASS"
    FAIL = "FAIL"


class BaselineState(str, Enum):
    """Whether the baseline revision was looked up and what was found."""

    UNCHECKED = "UNCHECKED"
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"


class Baseline(RecordModel):
    """Revision captured when a session was created."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    state: BaselineState = BaselineState.UNCHECKED
    sha: Optional[str] = None

    @model_validator(mode="after")
    def _sha_matches_state(self) -> "Baseline":
        if self.state is BaselineState.PRESENT and not self.sha:
            raise ValueError("a present baseline requires a revision sha")
        if self.state is not BaselineState.PRESENT and self.sha:
            raise ValueError(f"a {self.state.value.lower()} baseline cannot carry a sha")
        return self

    @classmethod
    def present(cls, sha: str) -> "Baseline":
        return cls(state=BaselineState.PRESENT, sha=sha)

    @classmethod
    def absent(cls) -> "Baseline":
        return cls(state=BaselineState.ABSENT)

    @property
    def is_present(self) -> bool:
        return self.state is BaselineState.PRESENT

    def describe(self) -> str:
        return self.sha if self.sha else "unknown"


class Session(RecordModel):
    """One tracked change request from creation to approval or denial."""

    id: str = Field(frozen=True)
    title: str = Field(frozen=True)
    prompt_body: str = Field(frozen=True)
    created_at: datetime = Field(frozen=True)
    thought_log_path: str = Field(frozen=True)
    status: SessionStatus = SessionStatus.PENDING
    baseline: Baseline = Field(default_factory=Baseline)
    last_test_result: Optional[Verdict] = None
    last_test_output: Optional[str] = None
    last_commit: Optional[str] = None

    @property
    def baseline_sha(self) -> Optional[str]:
        return self.baseline.sha

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def transition(self, target: SessionStatus) -> None:
        """Move to ``target``; only ``PENDING`` sessions may move, and never back."""
        if target is SessionStatus.PENDING:
            raise InvalidTransition(f"Session {self.id} cannot move back to PENDING.")
        if self.status.is_terminal:
            raise InvalidTransition(f"Session {self.id} is already {self.status.value}.")
        self.status = target

    def describe(self) -> str:
        """One-line summary used by status displays."""
        created = iso_timestamp(self.created_at)
        line = f"ID {self.id} | {self.status.value} | Created {created} | Log {self.thought_log_path}"
        if self.last_test_result is not None:
            line = f"{line} | Tests {self.last_test_result.value}"
        return line


__all__ = [
    "Baseline",
    "BaselineState",
    "InvalidTransition",
    "RecordModel",
    "Session",
    "SessionStatus",
    "Verdict",
    "iso_timestamp",
    "utc_now",
]
