"""
tbd CLI - Sync command for replicating issues through git.

Provides CLI interface to the SyncService: commit local edits to the sync
branch, merge remote changes and push, retrying when another clone pushed
first.
"""

import typer
from rich.console import Console
from rich.table import Table

from tbd.cli.errors import ExitCode, print_error, print_not_git_repo_error, print_sync_error
from tbd.cli.project import require_config, require_project_dir
from tbd.core.sync import GitError, SyncError, SyncService, SyncStatus, SyncSummary

console = Console()
app = typer.Typer(
    name="sync",
    help="Sync issues with the remote through the sync branch",
    no_args_is_help=False,
)


def _open_service() -> SyncService:
    project_dir = require_project_dir()
    return SyncService(project_dir=project_dir, config=require_config(project_dir))


def _report(summary: SyncSummary) -> None:
    text = summary.format()
    if text:
        console.print(f"[green]✓[/green] Synced: {text}")
    else:
        console.print("[green]✓[/green] Already in sync")

    if summary.conflicts:
        console.print(
            f"[yellow]⚠[/yellow]  {summary.conflicts} conflicting value(s) were archived; "
            "run [bold]tbd attic list[/bold] to review"
        )


@app.callback(invoke_without_command=True)
def sync(
    ctx: typer.Context,
    pull: bool = typer.Option(
        False,
        "--pull",
        help="Only fetch and merge remote changes",
    ),
    push: bool = typer.Option(
        False,
        "--push",
        help="Only push local changes (merging only if the push is rejected)",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        help="Push even when the remote already has everything",
    ),
) -> None:
    """
    Sync issues with the remote.

    Commits local edits to the sync branch, merges remote changes field by
    field and pushes. Values lost to a conflict are kept in the attic.

    Examples:
        tbd sync                    # Full sync
        tbd sync --pull             # Fetch and merge only
        tbd sync --push             # Push local changes
        tbd sync status             # Show where the branch stands
    """
    # If a subcommand was invoked, don't run the default action
    if ctx.invoked_subcommand is not None:
        return

    if pull and push:
        print_error("--pull and --push cannot be combined", solution="tbd sync")
        raise typer.Exit(ExitCode.USER_ERROR)

    service = _open_service()
    try:
        if pull:
            summary = service.pull()
        elif push:
            summary = service.push(force=force)
        else:
            summary = service.sync(force=force)
    except SyncError as e:
        print_sync_error(e)
        raise typer.Exit(ExitCode.GENERAL_ERROR)
    except GitError as e:
        console.print(f"[red]Git error:[/red] {e.stderr or str(e)}")
        raise typer.Exit(ExitCode.GENERAL_ERROR)
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")
        raise typer.Exit(ExitCode.SIGINT)

    _report(summary)


@app.command()
def status(
    fetch: bool = typer.Option(
        True,
        "--fetch/--no-fetch",
        help="Fetch the remote branch before comparing",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show detailed status information",
    ),
) -> None:
    """
    Show sync status.

    Examples:
        tbd sync status
        tbd sync status --no-fetch -v
    """
    service = _open_service()
    try:
        report = service.get_status(fetch=fetch)
    except GitError as e:
        if "not a git repository" in (e.stderr or "").lower():
            print_not_git_repo_error()
            raise typer.Exit(ExitCode.USER_ERROR)
        console.print(f"[red]Git error:[/red] {e.stderr or str(e)}")
        raise typer.Exit(ExitCode.GENERAL_ERROR)

    status_icons = {
        SyncStatus.UP_TO_DATE: ("✓", "green", "Up to date with remote"),
        SyncStatus.AHEAD: ("↑", "yellow", f"{report.ahead} commit(s) not pushed"),
        SyncStatus.BEHIND: ("↓", "yellow", f"{report.behind} remote commit(s) to merge"),
        SyncStatus.DIVERGED: (
            "⚠",
            "yellow",
            f"Diverged: {report.ahead} ahead, {report.behind} behind",
        ),
        SyncStatus.NO_REMOTE: ("○", "blue", f"No branch {report.branch} on {report.remote}"),
        SyncStatus.UNINITIALIZED: ("✗", "red", "Sync branch not created yet"),
    }

    icon, color, message = status_icons[report.status]
    console.print(f"[{color}]{icon}[/{color}] {message}")

    if not report.local_changes.is_empty():
        console.print(f"[dim]Uncommitted local changes: {report.local_changes.format()}[/dim]")

    if verbose:
        state = service.get_state()
        table = Table(title="Sync Details", show_header=False)
        table.add_column("Field", style="cyan")
        table.add_column("Value")

        table.add_row("Branch", report.branch)
        table.add_row("Remote", report.remote)
        if state.last_commit_sha:
            table.add_row("Last commit", state.last_commit_sha[:8])
        if state.last_sync_at:
            table.add_row("Last synced", state.last_sync_at.strftime("%Y-%m-%d %H:%M:%S"))
        if state.last_push_at:
            table.add_row("Last pushed", state.last_push_at.strftime("%Y-%m-%d %H:%M:%S"))
        elif state.last_commit_sha:
            table.add_row("Last pushed", "[dim]Never[/dim]")

        console.print()
        console.print(table)

    if report.status in (SyncStatus.AHEAD, SyncStatus.BEHIND, SyncStatus.DIVERGED):
        console.print("\n[dim]→ Run [bold]tbd sync[/bold] to bring both sides together[/dim]")
    elif report.status == SyncStatus.NO_REMOTE:
        console.print("\n[dim]→ Run [bold]tbd sync[/bold] to create the remote branch[/dim]")
