"""Session state machine driving the test, commit or revert loop.

Every session starts ``PENDING`` and ends either ``APPROVED`` (tests passed,
change committed and pushed) or ``DENIED`` (code reverted to the baseline,
logs committed and pushed).  Status is only persisted after the matching
commit has been pushed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Literal, Optional, Sequence

from .config import DEFAULT_CONFIG_NAME, TcrConfig, load_config
from .memory.prompt_log import PromptLog
from .memory.schema import Baseline, Session, SessionStatus, Verdict, iso_timestamp, utc_now
from .memory.store import SessionStore
from .memory.thought_log import ThoughtLog, fenced
from .models.llm_client import LLMClient, LLMClientError, LLMRequest
from .prompts import render_patch_prompt
from .tools.patch import PatchError, apply_patch, looks_like_unified_diff, strip_code_fence
from .tools.test_runner import SuiteResult, run_test_command
from .tools.vcs import GitError, GitRepository
from .tools.workspace_snapshot import snapshot_file_tree

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], datetime]
TestRunner = Callable[..., SuiteResult]

APPROVE_TAG = "[APPROVE]"
DENY_TAG = "[DENY]"

ContinueStatus = Literal["applied", "apply_failed", "not_a_diff", "empty", "unavailable", "error"]


class SessionError(RuntimeError):
    """Raised when an operation is refused before touching the workspace."""


def commit_message(tag: str, session: Session) -> str:
    return f"TCR: {tag} {session.title} ({session.id})"


@dataclass(slots=True)
class WorkspaceContext:
    """Everything an operation needs about one workspace, passed explicitly."""

    root: Path
    config: TcrConfig
    store: SessionStore
    repo: Optional[GitRepository] = None
    clock: Clock = utc_now

    @classmethod
    def open(
        cls,
        root: Path | str,
        config: Optional[TcrConfig] = None,
        *,
        config_path: Path | str | None = None,
        clock: Clock = utc_now,
    ) -> "WorkspaceContext":
        workspace = Path(root).resolve()
        if not workspace.is_dir():
            raise SessionError(f"Workspace not found: {workspace}")
        if config is None:
            config = load_config(Path(config_path) if config_path else workspace / DEFAULT_CONFIG_NAME)
        try:
            repo: Optional[GitRepository] = GitRepository(workspace)
        except GitError as error:
            LOGGER.info("%s; git operations are unavailable.", error)
            repo = None
        store = SessionStore(workspace / config.paths.state_db)
        return cls(root=workspace, config=config, store=store, repo=repo, clock=clock)

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> "WorkspaceContext":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def prompt_log_relative(self) -> str:
        return self.config.prompt_log_relative()

    @property
    def prompt_log(self) -> PromptLog:
        return PromptLog(self.root / self.config.paths.prompt_log)

    def thought_log(self, session: Session) -> ThoughtLog:
        return ThoughtLog(self.root / session.thought_log_path)

    def now(self) -> datetime:
        moment = self.clock()
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment

    def now_iso(self) -> str:
        return iso_timestamp(self.now())

    def require_repo(self) -> GitRepository:
        if self.repo is None:
            raise SessionError(f"Workspace is not a git repository: {self.root}")
        return self.repo

    def active_session(self) -> Optional[Session]:
        return self.store.get_active()


@dataclass(slots=True)
class ApplyOutcome:
    applied: bool
    message: str
    paths: tuple[str, ...] = ()


@dataclass(slots=True)
class ContinueOutcome:
    status: ContinueStatus
    message: str
    response: Optional[str] = None
    apply: Optional[ApplyOutcome] = None


@dataclass(slots=True)
class ApprovalOutcome:
    session: Session
    tests: SuiteResult
    commit: Optional[str] = None

    @property
    def approved(self) -> bool:
        return self.commit is not None


@dataclass(slots=True)
class DenialOutcome:
    session: Session
    commit: str
    reverted: tuple[str, ...] = ()


@dataclass(slots=True)
class ReviewSummary:
    session: Session
    paths: List[str] = field(default_factory=list)
    diff: str = ""


def _dedupe(paths: Sequence[str]) -> List[str]:
    seen: set[str] = set()
    ordered: List[str] = []
    for path in paths:
        if path and path not in seen:
            seen.add(path)
            ordered.append(path)
    return ordered


class SessionOrchestrator:
    """Coordinator for the create, continue, apply, approve and deny operations."""

    def __init__(
        self,
        context: WorkspaceContext,
        *,
        patch_generator: Optional[LLMClient] = None,
        test_runner: TestRunner = run_test_command,
    ) -> None:
        self._context = context
        self._generator = patch_generator
        self._run_tests = test_runner

    @property
    def context(self) -> WorkspaceContext:
        return self._context

    # ------------------------------------------------------------- lookups
    def resolve(self, session_id: Optional[str] = None) -> Session:
        """Return the named session, or the active one when no id is given."""
        store = self._context.store
        if session_id:
            session = store.get(session_id)
            if session is None:
                raise SessionError(f"Unknown session: {session_id}")
            return session
        session = store.get_active()
        if session is None:
            raise SessionError("No active session. Create one with 'tcr new' or pick one with 'tcr select'.")
        return session

    def sessions(self) -> List[Session]:
        return self._context.store.list_sessions()

    def select(self, session_id: str) -> Session:
        """Make ``session_id`` the active session; nothing else changes."""
        try:
            session = self._context.store.set_active(session_id)
        except KeyError as error:
            raise SessionError(f"Unknown session: {session_id}") from error
        LOGGER.info("Selected session %s", session_id)
        return session

    def status(self) -> Optional[Session]:
        """Return the active session after reconciling it with pushed history."""
        session = self._context.active_session()
        if session is None:
            return None
        return self.reconcile(session)

    # -------------------------------------------------------------- create
    def create(self, title: str, prompt_body: str) -> Session:
        context = self._context
        clean_title = " ".join(title.split())
        clean_body = prompt_body.strip()
        if not clean_title:
            raise SessionError("A session title is required.")
        if not clean_body:
            raise SessionError("A prompt body is required.")

        baseline = self._capture_baseline()
        self.ensure_artifacts()

        created = context.now()
        created_at = iso_timestamp(created)
        session_id = self._new_session_id(created)
        thought_relative = context.config.thought_log_relative(session_id)

        session = Session(
            id=session_id,
            title=clean_title,
            prompt_body=clean_body,
            created_at=created,
            thought_log_path=thought_relative,
            baseline=baseline,
        )
        context.thought_log(session).create(
            session_id=session_id,
            title=clean_title,
            prompt_body=clean_body,
            created_at=created_at,
        )
        context.prompt_log.append(
            session_id=session_id,
            title=clean_title,
            created_at=created_at,
            thought_log=thought_relative,
            prompt_body=clean_body,
        )
        context.store.save_and_activate(session)
        LOGGER.info("Created prompt %s (baseline: %s).", session_id, baseline.describe())
        return session

    def _capture_baseline(self) -> Baseline:
        repo = self._context.repo
        if repo is None:
            LOGGER.warning("No git repository at %s; baseline unknown.", self._context.root)
            return Baseline.absent()
        try:
            sha = repo.current_revision()
        except GitError as error:
            LOGGER.warning("Could not read git HEAD: %s", error)
            return Baseline.absent()
        if sha is None:
            LOGGER.warning("Repository has no commits yet; baseline unknown.")
            return Baseline.absent()
        return Baseline.present(sha)

    def ensure_artifacts(self) -> None:
        """Create the prompts directory and the Prompt Log header when missing."""
        context = self._context
        (context.root / context.config.paths.prompts_root).mkdir(parents=True, exist_ok=True)
        context.prompt_log.ensure()

    def _new_session_id(self, created: datetime) -> str:
        base = "p-" + created.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%S")
        candidate = base
        suffix = 2
        while self._id_taken(candidate):
            candidate = f"{base}-{suffix}"
            suffix += 1
        return candidate

    def _id_taken(self, session_id: str) -> bool:
        context = self._context
        if context.store.exists(session_id):
            return True
        return (context.root / context.config.thought_log_relative(session_id)).exists()

    # ------------------------------------------------------------ continue
    def continue_session(self, session: Session, *, note: Optional[str] = None) -> ContinueOutcome:
        """Ask the patch generator for a diff and apply it when it looks usable."""
        context = self._context
        session = self._require_pending(session)
        response: Optional[str] = None
        diff_ready = False

        if self._generator is None:
            outcome = ContinueOutcome(
                status="unavailable",
                message="Patch generator not configured (no API key); nothing requested.",
            )
        else:
            tree = snapshot_file_tree(
                context.root,
                limit=context.config.snapshot.max_entries,
                ignored=context.config.snapshot.ignored,
            )
            models = context.config.models
            request = LLMRequest(
                prompt=render_patch_prompt(session, tree),
                system_prompt=models.system_prompt,
                temperature=models.temperature,
                max_tokens=models.max_tokens,
                metadata={"session_id": session.id},
            )
            try:
                response = self._generator.complete(request)
            except LLMClientError as error:
                LOGGER.error("Patch generation failed: %s", error)
                outcome = ContinueOutcome(status="error", message=f"Patch generation failed: {error}")
            else:
                if response is None:
                    outcome = ContinueOutcome(status="empty", message="No diff returned; nothing applied.")
                elif not looks_like_unified_diff(strip_code_fence(response)):
                    LOGGER.warning("Response for %s does not look like a unified diff.", session.id)
                    outcome = ContinueOutcome(
                        status="not_a_diff",
                        message="Response does not look like a unified diff; skipping apply.",
                        response=response,
                    )
                else:
                    diff_ready = True
                    outcome = ContinueOutcome(status="applied", message="Received a unified diff.", response=response)

        note_text = (note or "").strip()
        extra: List[str] = []
        if note_text:
            extra.append(note_text)
        if response and response != note_text:
            extra.append("\n".join(fenced(response)))
        context.thought_log(session).record(
            context.now_iso(),
            f"Continued session. {outcome.message}",
            *extra,
        )

        if diff_ready and response is not None:
            applied = self.apply(response, session)
            outcome.apply = applied
            outcome.message = applied.message
            if not applied.applied:
                outcome.status = "apply_failed"
        return outcome

    # --------------------------------------------------------------- apply
    def apply(self, diff_text: str, session: Session) -> ApplyOutcome:
        """Apply ``diff_text`` to the working tree; the session stays ``PENDING``."""
        context = self._context
        session = self._require_pending(session)
        if not looks_like_unified_diff(strip_code_fence(diff_text)):
            LOGGER.warning("Refusing to apply text that does not look like a unified diff.")
            return ApplyOutcome(applied=False, message="Text does not look like a unified diff; skipping apply.")

        repo = context.require_repo()
        thought = context.thought_log(session)
        try:
            result = apply_patch(diff_text, repo=repo)
        except PatchError as error:
            LOGGER.error("Failed to apply diff: %s", error)
            thought.record(context.now_iso(), "Failed to apply diff via git apply.", "\n".join(fenced(str(error))))
            return ApplyOutcome(applied=False, message=f"Failed to apply diff: {error}")

        touched = ", ".join(result.paths)
        detail = f"Applied diff via git apply ({touched})." if touched else "Applied diff via git apply."
        thought.record(context.now_iso(), detail)
        return ApplyOutcome(applied=True, message="Applied diff.", paths=result.paths)

    # ------------------------------------------------------------- approve
    def approve(self, session: Session) -> ApprovalOutcome:
        """Run the tests and, when they pass, commit and push the change."""
        context = self._context
        session = self._require_pending(session)
        repo = context.require_repo()
        thought = context.thought_log(session)

        tests = self._run_tests(
            context.config.tests.command,
            cwd=context.root,
            timeout=context.config.tests.timeout,
        )
        thought.record_test_run(tests.output)
        session.last_test_result = Verdict.PASS if tests.ok else Verdict.FAIL
        session.last_test_output = tests.output
        context.store.save_and_activate(session)

        if not tests.ok:
            LOGGER.warning("Tests failed; approve blocked for %s.", session.id)
            return ApprovalOutcome(session=session, tests=tests)

        try:
            changed = repo.changed_paths_since(session.baseline_sha)
        except GitError as error:
            self._record_failure(session, "Approve aborted: could not list changes since baseline.", error)
            raise
        staged = _dedupe([context.prompt_log_relative, session.thought_log_path, *changed])
        commit = self._commit_and_push(session, staged, commit_message(APPROVE_TAG, session), action="Approve")

        self._finalize(session, SessionStatus.APPROVED, commit, f"Approved and committed {commit}.")
        return ApprovalOutcome(session=session, tests=tests, commit=commit)

    # ---------------------------------------------------------------- deny
    def deny(self, session: Session) -> DenialOutcome:
        """Revert code to the baseline and commit only the logs."""
        context = self._context
        session = self._require_pending(session)
        if not session.baseline.is_present or not session.baseline_sha:
            raise SessionError("No baseline recorded; cannot revert code safely.")
        repo = context.require_repo()
        baseline = session.baseline_sha

        protected = _dedupe([context.prompt_log_relative, session.thought_log_path])
        try:
            changed = repo.changed_paths_since(baseline)
            code = [path for path in changed if path not in protected]
            repo.revert_to_revision(baseline, code)
        except GitError as error:
            self._record_failure(session, "Deny aborted: revert failed.", error)
            raise
        if code:
            LOGGER.info("Reverted %d path(s) to %s: %s", len(code), baseline, ", ".join(code))

        commit = self._commit_and_push(session, protected, commit_message(DENY_TAG, session), action="Deny")
        self._finalize(
            session,
            SessionStatus.DENIED,
            commit,
            f"Denied and reverted code. Committed {commit} (logs only).",
        )
        return DenialOutcome(session=session, commit=commit, reverted=tuple(code))

    # -------------------------------------------------------------- review
    def review(self, session: Session) -> ReviewSummary:
        """Report what changed since the session baseline without touching anything."""
        repo = self._context.require_repo()
        baseline = session.baseline_sha
        return ReviewSummary(
            session=session,
            paths=repo.changed_paths_since(baseline),
            diff=repo.diff_since(baseline),
        )

    # ----------------------------------------------------------- reconcile
    def reconcile(self, session: Session) -> Session:
        """Finalize a ``PENDING`` session whose approve/deny commit was already pushed.

        Covers a push that succeeded but whose confirmation never reached the
        status rewrite.  Only commits reachable from the remote-tracking branch
        count, so a local commit that was never pushed is ignored.
        """
        context = self._context
        repo = context.repo
        if session.is_terminal or repo is None:
            return session

        marker = f"({session.id})"
        git_cfg = context.config.git
        tracking = f"refs/remotes/{git_cfg.remote}/{git_cfg.branch}"
        try:
            candidates = repo.find_commits(marker)
        except GitError as error:
            LOGGER.warning("Could not inspect history for %s: %s", session.id, error)
            return session

        for sha, subject in candidates:
            if not subject.rstrip().endswith(marker):
                continue
            if f"TCR: {APPROVE_TAG} " in subject:
                target = SessionStatus.APPROVED
            elif f"TCR: {DENY_TAG} " in subject:
                target = SessionStatus.DENIED
            else:
                continue
            if not repo.is_ancestor(sha, tracking):
                continue
            LOGGER.warning("Recovering %s as %s from pushed commit %s.", session.id, target.value, sha)
            self._finalize(session, target, sha, f"Recovered {target.value} status from pushed commit {sha}.")
            break
        return session

    # ------------------------------------------------------------- helpers
    def _require_pending(self, session: Session) -> Session:
        current = self._context.store.get(session.id)
        if current is None:
            raise SessionError(f"Unknown session: {session.id}")
        current = self.reconcile(current)
        if current.is_terminal:
            raise SessionError(f"Session {current.id} is already {current.status.value}.")
        return current

    def _commit_and_push(self, session: Session, paths: Sequence[str], message: str, *, action: str) -> str:
        context = self._context
        repo = context.require_repo()
        git_cfg = context.config.git
        head_before = repo.current_revision()

        try:
            repo.stage(paths)
            commit = repo.commit(message)
        except GitError as error:
            self._record_failure(session, f"{action} aborted: staging or commit failed.", error)
            raise

        try:
            repo.push(git_cfg.remote, git_cfg.branch)
        except GitError as error:
            try:
                repo.reset_soft(head_before)
            except GitError as reset_error:
                LOGGER.error("Failed to undo unpushed commit %s: %s", commit, reset_error)
            self._record_failure(session, f"{action} aborted: push failed; local commit {commit} undone.", error)
            raise
        LOGGER.info("Committed and pushed %s to %s/%s", commit, git_cfg.remote, git_cfg.branch)
        return commit

    def _record_failure(self, session: Session, message: str, error: Exception) -> None:
        LOGGER.error("%s %s", message, error)
        context = self._context
        context.thought_log(session).record(context.now_iso(), message, "\n".join(fenced(str(error))))

    def _finalize(self, session: Session, status: SessionStatus, commit: str, note: str) -> None:
        context = self._context
        prompt_log = context.prompt_log
        if not prompt_log.update_status(session.id, status, commit):
            LOGGER.warning("Prompt log block for %s was missing; appending a fresh one.", session.id)
            prompt_log.append(
                session_id=session.id,
                title=session.title,
                created_at=iso_timestamp(session.created_at),
                thought_log=session.thought_log_path,
                prompt_body=session.prompt_body,
                status=status,
                commit=commit,
            )
        session.transition(status)
        session.last_commit = commit
        context.store.save_and_activate(session)
        context.thought_log(session).record(context.now_iso(), note)


__all__ = [
    "ApplyOutcome",
    "ApprovalOutcome",
    "ContinueOutcome",
    "DenialOutcome",
    "ReviewSummary",
    "SessionError",
    "SessionOrchestrator",
    "WorkspaceContext",
    "commit_message",
]
