"""CLI commands for driving TCR prompt sessions."""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, NoReturn, Optional

import typer

from .config import DEFAULT_CONFIG_NAME, ConfigError, TcrConfig, default_config_data, write_config
from .memory.prompt_log import PromptLogError
from .memory.schema import InvalidTransition, Session
from .models import ChatCompletionsClient, LLMClient, resolve_api_key
from .orchestrator import SessionError, SessionOrchestrator, WorkspaceContext
from .tools.vcs import GitError, GitRepository

APP_HELP = "Test-Commit-Revert prompt sessions: create, apply, approve or deny."
BLOCKED_EXIT_CODE = 2

LOGGER = logging.getLogger(__name__)

_DOMAIN_ERRORS = (ConfigError, SessionError, GitError, PromptLogError, InvalidTransition)

app = typer.Typer(help=APP_HELP, no_args_is_help=True)


@dataclass(slots=True)
class _CliState:
    workspace: Path
    config_path: Optional[Path]


def _fail(message: str, *, code: int = 1) -> NoReturn:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(code=code)


def _state(ctx: typer.Context) -> _CliState:
    state = ctx.obj
    if not isinstance(state, _CliState):
        state = _CliState(workspace=Path.cwd(), config_path=None)
        ctx.obj = state
    return state


def _build_generator(config: TcrConfig) -> Optional[LLMClient]:
    models = config.models
    api_key = resolve_api_key(models.api_key)
    if not api_key:
        LOGGER.info("No API key configured; patch generation disabled.")
        return None
    return ChatCompletionsClient(
        api_key=api_key,
        base_url=models.base_url,
        model=models.model,
        timeout=models.timeout,
    )


@contextmanager
def _session_orchestrator(ctx: typer.Context, *, with_generator: bool = False) -> Iterator[SessionOrchestrator]:
    state = _state(ctx)
    try:
        context = WorkspaceContext.open(state.workspace, config_path=state.config_path)
    except _DOMAIN_ERRORS as error:
        _fail(str(error))
    try:
        generator = _build_generator(context.config) if with_generator else None
        yield SessionOrchestrator(context, patch_generator=generator)
    except _DOMAIN_ERRORS as error:
        _fail(str(error))
    finally:
        context.close()


def _echo_session_line(session: Session, *, active_id: Optional[str] = None) -> None:
    marker = "*" if session.id == active_id else " "
    typer.echo(f"{marker} {session.id} [{session.status.value}] {session.title}")


@app.callback()
def main(
    ctx: typer.Context,
    workspace: str = typer.Option(
        ".",
        "--workspace",
        "-w",
        help="Workspace root (must be the git repository root).",
    ),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help=f"Path to the configuration file (defaults to <workspace>/{DEFAULT_CONFIG_NAME}).",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Configure logging and remember the workspace for the selected command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = _CliState(workspace=Path(workspace), config_path=Path(config) if config else None)


@app.command()
def init(ctx: typer.Context) -> None:
    """Write the default configuration, a git repository and the Prompt Log."""
    state = _state(ctx)
    root = state.workspace.resolve()
    config_path = state.config_path or root / DEFAULT_CONFIG_NAME

    if config_path.exists():
        typer.echo(f"Configuration already present at {config_path}.")
    else:
        write_config(config_path, default_config_data())
        typer.echo(f"Created configuration at {config_path}.")

    if not (root / ".git").exists():
        try:
            GitRepository.initialise(root)
        except GitError as error:
            _fail(f"Failed to initialize git repository at {root}: {error}")
        typer.echo(f"Initialized git repository at {root}.")

    with _session_orchestrator(ctx) as orchestrator:
        orchestrator.ensure_artifacts()
        typer.echo(f"Prompt log ready at {orchestrator.context.prompt_log.path}.")


@app.command()
def new(
    ctx: typer.Context,
    title: str = typer.Argument(..., help="Short title for the change request."),
    body: Optional[str] = typer.Option(None, "--body", "-b", help="Prompt body describing the change."),
) -> None:
    """Create a PENDING session and make it active."""
    prompt_body = body if body is not None else typer.prompt("Prompt body")
    with _session_orchestrator(ctx) as orchestrator:
        session = orchestrator.create(title, prompt_body)
        typer.echo(f"Created prompt {session.id} (baseline: {session.baseline.describe()}).")
        typer.echo(f"Thought log: {session.thought_log_path}")


@app.command("continue")
def continue_(
    ctx: typer.Context,
    note: Optional[str] = typer.Option(None, "--note", "-n", help="Note to record before requesting a patch."),
) -> None:
    """Request a unified diff for the active session and apply it."""
    with _session_orchestrator(ctx, with_generator=True) as orchestrator:
        session = orchestrator.resolve()
        outcome = orchestrator.continue_session(session, note=note)
        prefix = "" if outcome.status == "applied" else "Warning: "
        typer.echo(f"{prefix}{outcome.message}")
        if outcome.status == "apply_failed":
            raise typer.Exit(code=1)


@app.command()
def apply(
    ctx: typer.Context,
    patch: str = typer.Argument(..., help="Path to a unified diff, or '-' to read from stdin."),
) -> None:
    """Apply a unified diff to the workspace for the active session."""
    if patch == "-":
        diff_text = sys.stdin.read()
    else:
        patch_path = Path(patch)
        if not patch_path.is_file():
            raise typer.BadParameter(f"Patch file not found: {patch_path}", param_hint="PATCH")
        diff_text = patch_path.read_text(encoding="utf-8")

    with _session_orchestrator(ctx) as orchestrator:
        session = orchestrator.resolve()
        outcome = orchestrator.apply(diff_text, session)
        if not outcome.applied:
            _fail(outcome.message)
        typer.echo(outcome.message)
        for path in outcome.paths:
            typer.echo(f"  {path}")


@app.command()
def review(ctx: typer.Context) -> None:
    """Show what changed since the active session's baseline."""
    with _session_orchestrator(ctx) as orchestrator:
        summary = orchestrator.review(orchestrator.resolve())
        typer.echo(f"Baseline: {summary.session.baseline.describe()}")
        if not summary.paths:
            typer.echo("No changes since baseline.")
            return
        typer.echo("Changed files:")
        for path in summary.paths:
            typer.echo(f"- {path}")
        typer.echo("")
        typer.echo(summary.diff.rstrip("\n"))


@app.command()
def approve(ctx: typer.Context) -> None:
    """Run the tests; on success commit and push the change."""
    with _session_orchestrator(ctx) as orchestrator:
        outcome = orchestrator.approve(orchestrator.resolve())
        if not outcome.approved:
            typer.echo("Tests failed; approve blocked.", err=True)
            typer.echo(outcome.tests.output, err=True)
            raise typer.Exit(code=BLOCKED_EXIT_CODE)
        typer.echo(f"Approved and committed {outcome.commit}.")


@app.command()
def deny(ctx: typer.Context) -> None:
    """Revert code to the baseline and commit only the logs."""
    with _session_orchestrator(ctx) as orchestrator:
        outcome = orchestrator.deny(orchestrator.resolve())
        for path in outcome.reverted:
            typer.echo(f"Reverted {path}")
        typer.echo(f"Denied and reverted code. Committed {outcome.commit} (logs only).")


@app.command()
def status(ctx: typer.Context) -> None:
    """Report the active session."""
    with _session_orchestrator(ctx) as orchestrator:
        session = orchestrator.status()
        if session is None:
            typer.echo("No active session.")
            return
        typer.echo(session.describe())
        if session.last_commit:
            typer.echo(f"Commit: {session.last_commit}")


@app.command()
def sessions(ctx: typer.Context) -> None:
    """List stored sessions, newest first; the active one is starred."""
    with _session_orchestrator(ctx) as orchestrator:
        stored = orchestrator.sessions()
        if not stored:
            typer.echo("No sessions yet.")
            return
        active = orchestrator.context.active_session()
        for session in stored:
            _echo_session_line(session, active_id=active.id if active else None)


@app.command()
def select(
    ctx: typer.Context,
    session_id: Optional[str] = typer.Argument(None, help="Session id to make active."),
) -> None:
    """Make another stored session the active one."""
    with _session_orchestrator(ctx) as orchestrator:
        if session_id is None:
            stored = orchestrator.sessions()
            if not stored:
                _fail("No sessions to select.")
            active = orchestrator.context.active_session()
            for session in stored:
                _echo_session_line(session, active_id=active.id if active else None)
            session_id = typer.prompt("Session id").strip()
        session = orchestrator.select(session_id)
        typer.echo(f"Selected session {session.id}.")


if __name__ == "__main__":
    app()
