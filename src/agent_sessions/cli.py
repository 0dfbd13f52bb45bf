"""CLI interface for agent sessions."""

import asyncio
import sys
import uuid
from pathlib import Path
from typing import Optional

import click
import httpx
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .errors import AgentSessionsError
from .harness import SessionHarness
from .models import SessionConfig, SessionInfo, SessionStatus
from .persistence import SessionStore
from .workspace import WorkspaceManager

console = Console()

STATUS_COLORS = {
    SessionStatus.INITIALIZING: "white",
    SessionStatus.WORKING: "yellow",
    SessionStatus.COMPLETED: "green",
    SessionStatus.ERROR: "red",
}

DEFAULT_SERVER_URL = "http://127.0.0.1:8000"


def _colored_status(status: SessionStatus) -> str:
    color = STATUS_COLORS.get(status, "white")
    return f"[{color}]{status.value}[/{color}]"


def _print_session(info: SessionInfo) -> None:
    lines = [
        f"[bold]Status:[/bold] {_colored_status(info.status)}",
        f"[bold]Repository:[/bold] {info.git_directory}",
        f"[bold]Branch:[/bold] {info.branch_name or '-'}",
        f"[bold]Created:[/bold] {info.created_at:%Y-%m-%d %H:%M:%S}",
    ]
    if info.pr_url:
        lines.append(f"[bold]Pull request:[/bold] {info.pr_url}")
    if info.error_message:
        lines.append(f"[bold]Error:[/bold] {info.error_message}")
    console.print(Panel("\n".join(lines), title=f"Session {info.id}"))


def _store(home: Optional[Path]) -> SessionStore:
    return SessionStore(WorkspaceManager(home).sessions_dir)


@click.group()
@click.version_option(package_name="agent-sessions")
@click.option('--home', type=click.Path(path_type=Path), envvar='AGENT_SESSIONS_HOME',
              help='Application home (default: ~/.agent-sessions)')
@click.pass_context
def main(ctx: click.Context, home: Optional[Path]):
    """Agent Sessions - run a coding agent in an isolated copy of a repository."""
    ctx.ensure_object(dict)
    ctx.obj['home'] = home


@main.command()
@click.argument('repo', type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option('--instructions', '-i', required=True, help='Task for the agent')
@click.option('--additional', help='Additional instructions appended to the task')
@click.option('--instructions-file', type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='File whose content is appended to the task')
@click.option('--base', help='Branch the pull request targets (default from config)')
@click.option('--session-id', help='Session id (generated when omitted)')
@click.pass_context
def run(
    ctx: click.Context,
    repo: Path,
    instructions: str,
    additional: Optional[str],
    instructions_file: Optional[Path],
    base: Optional[str],
    session_id: Optional[str],
):
    """Run one session in the foreground until it finishes.

    Removes working copies left behind by earlier runs first, so do not use
    it while a server started with 'serve' shares the same home.
    Ctrl+C cancels the session.
    """
    harness = SessionHarness(ctx.obj['home'])
    try:
        config = SessionConfig(
            session_id=session_id or uuid.uuid4().hex,
            git_directory=str(repo.resolve()),
            user_instructions=instructions,
            additional_instructions=additional,
            instructions_file_content=(
                instructions_file.read_text(encoding="utf-8") if instructions_file else None
            ),
            base_branch=base or harness.config.default_base_branch,
        )
    except ValidationError as e:
        console.print(f"[red]Invalid session:[/red] {e}")
        sys.exit(1)

    try:
        info = asyncio.run(_run_foreground(harness, config))
    except AgentSessionsError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    _print_session(info)
    if info.status != SessionStatus.COMPLETED:
        sys.exit(1)


async def _run_foreground(harness: SessionHarness, config: SessionConfig) -> SessionInfo:
    harness.recovery.recover_on_startup()

    loop = asyncio.get_running_loop()
    harness.recovery.setup_signal_handlers(loop)
    try:
        info = await harness.orchestrator.run_session(config)
        await harness.recovery.wait_for_shutdown()
        return harness.orchestrator.get_status(info.id)
    finally:
        harness.recovery.remove_signal_handlers(loop)


@main.command()
@click.argument('session_id')
@click.pass_context
def status(ctx: click.Context, session_id: str):
    """Show the recorded state of a session."""
    try:
        info = _store(ctx.obj['home']).load(session_id)
    except AgentSessionsError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    if info is None:
        console.print(f"[red]Session not found: {session_id}[/red]")
        sys.exit(1)
    _print_session(info)


@main.command('list')
@click.option('--active', is_flag=True, help='Only sessions still initializing or working')
@click.pass_context
def list_sessions(ctx: click.Context, active: bool):
    """List recorded sessions."""
    store = _store(ctx.obj['home'])
    records = [r for r in (store.load(sid) for sid in store.list_ids()) if r is not None]
    if active:
        records = [r for r in records if not r.status.is_terminal]

    if not records:
        console.print("[yellow]No sessions recorded.[/yellow]")
        return

    records.sort(key=lambda r: r.created_at)

    table = Table(title="Sessions")
    table.add_column("ID", style="cyan")
    table.add_column("Status")
    table.add_column("Branch")
    table.add_column("Created")
    table.add_column("Result")

    for r in records:
        result = r.pr_url or r.error_message or "-"
        table.add_row(
            r.id,
            _colored_status(r.status),
            r.branch_name or "-",
            f"{r.created_at:%Y-%m-%d %H:%M}",
            result[:60] + "..." if len(result) > 60 else result,
        )

    console.print(table)

    counts = {s: sum(1 for r in records if r.status == s) for s in SessionStatus}
    console.print(f"\n[green]Completed:[/green] {counts[SessionStatus.COMPLETED]}  "
                  f"[red]Error:[/red] {counts[SessionStatus.ERROR]}  "
                  f"[yellow]Active:[/yellow] "
                  f"{counts[SessionStatus.INITIALIZING] + counts[SessionStatus.WORKING]}")


@main.command()
@click.argument('session_id')
@click.option('--server', default=DEFAULT_SERVER_URL, show_default=True,
              help='URL of the server running the session')
def cancel(session_id: str, server: str):
    """Cancel a session running on a server started with 'serve'."""
    url = f"{server.rstrip('/')}/api/sessions/{session_id}/cancel"
    try:
        response = httpx.post(url, timeout=30.0)
    except httpx.HTTPError as e:
        console.print(f"[red]Could not reach {server}:[/red] {e}")
        sys.exit(1)

    if not response.is_success:
        try:
            detail = response.json().get("detail", response.text)
        except ValueError:
            detail = response.text
        console.print(f"[red]Cancel failed ({response.status_code}):[/red] {detail}")
        sys.exit(1)

    _print_session(SessionInfo.model_validate(response.json()))


@main.command()
@click.pass_context
def reclaim(ctx: click.Context):
    """Remove working copies left behind by earlier runs.

    Also marks sessions a crashed process left unfinished as failed.
    Do not run while a server is running sessions from the same home.
    """
    harness = SessionHarness(ctx.obj['home'])
    try:
        count = harness.recovery.recover_on_startup()
    except AgentSessionsError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    console.print(f"[green]Removed {count} working copies[/green]")


@main.command()
@click.option('--host', default='127.0.0.1', help='Host to bind to')
@click.option('--port', default=8000, help='Port to listen on')
@click.pass_context
def serve(ctx: click.Context, host: str, port: int):
    """Serve the session API."""
    from .api import run_server

    harness = SessionHarness(ctx.obj['home'])
    console.print(f"[bold blue]Agent Sessions API[/bold blue] on http://{host}:{port}")
    console.print(f"[dim]Home: {harness.workspace.home}[/dim]")
    run_server(harness, host=host, port=port)


if __name__ == "__main__":
    main()
