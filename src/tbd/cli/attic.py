"""
tbd CLI - Attic commands.

Browse values that lost a merge conflict and put them back.
"""

import json
from pathlib import Path

import typer
import yaml
from rich.console import Console
from rich.table import Table

from tbd.cli.errors import ExitCode, print_error
from tbd.cli.project import open_attic_store, require_project_dir, resolve_issue
from tbd.core.attic import (
    AtticEntry,
    AtticEntryNotFoundError,
    AtticRestoreError,
    ConflictSource,
)
from tbd.core.paths import issues_dir
from tbd.core.records.store import RecordStore, RecordWriteError

console = Console()
app = typer.Typer(
    name="attic",
    help="Review and restore values archived during conflict resolution",
    no_args_is_help=True,
)


def _preview(value: object, width: int = 60) -> str:
    text = value if isinstance(value, str) else json.dumps(value)
    text = " ".join(str(text).split())
    return text if len(text) <= width else text[: width - 1] + "…"


@app.command("list")
def list_entries(
    issue_ref: str | None = typer.Argument(None, help="Only entries for this issue"),
) -> None:
    """
    List attic entries, newest first.

    Examples:
        tbd attic list
        tbd attic list is-01hx
    """
    project_dir = require_project_dir()
    records = RecordStore(issues_dir(project_dir))
    entity_id = resolve_issue(records, issue_ref) if issue_ref else None

    entries = open_attic_store(project_dir).list_entries(entity_id)
    if not entries:
        console.print("[dim]Attic is empty[/dim]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Issue", style="dim")
    table.add_column("Timestamp")
    table.add_column("Field", style="cyan")
    table.add_column("Lost value", overflow="fold")

    for entry in entries:
        table.add_row(entry.entity_id, entry.timestamp, entry.field, _preview(entry.lost_value))

    console.print(table)
    console.print(f"\n[dim]Total: {len(entries)} entries[/dim]")


def _find_entry(project_dir: Path, issue_ref: str, timestamp: str, field: str | None) -> AtticEntry:
    records = RecordStore(issues_dir(project_dir))
    entity_id = resolve_issue(records, issue_ref)
    try:
        return open_attic_store(project_dir).get(entity_id, timestamp, field)
    except AtticEntryNotFoundError as e:
        print_error(str(e), solution=f"tbd attic list {entity_id}")
        raise typer.Exit(ExitCode.USER_ERROR)


@app.command()
def show(
    issue_ref: str = typer.Argument(..., help="Issue ID or unique prefix"),
    timestamp: str = typer.Argument(..., help="Entry timestamp (from tbd attic list)"),
    field: str | None = typer.Option(None, "--field", "-f", help="Field, if several match"),
) -> None:
    """
    Show one archived value in full.

    Examples:
        tbd attic show is-01hx 2025-01-07T10:30:00.000Z --field title
    """
    entry = _find_entry(require_project_dir(), issue_ref, timestamp, field)

    console.print(f"[bold cyan]{entry.entity_id}[/bold cyan] {entry.field} @ {entry.timestamp}")
    versions = {
        ConflictSource.LOCAL: entry.context.local_version,
        ConflictSource.REMOTE: entry.context.remote_version,
    }
    console.print(
        f"[dim]Lost by:[/dim] {entry.loser_source.value} (version {versions[entry.loser_source]})"
    )
    console.print(
        f"[dim]Kept:[/dim] {entry.winner_source.value} (version {versions[entry.winner_source]})"
    )
    console.print()
    if isinstance(entry.lost_value, str):
        console.print(entry.lost_value, markup=False)
    else:
        console.print(yaml.safe_dump(entry.lost_value, default_flow_style=False).rstrip(), markup=False)


@app.command()
def restore(
    issue_ref: str = typer.Argument(..., help="Issue ID or unique prefix"),
    timestamp: str = typer.Argument(..., help="Entry timestamp (from tbd attic list)"),
    field: str | None = typer.Option(None, "--field", "-f", help="Field, if several match"),
) -> None:
    """
    Write an archived title, description or notes back onto its issue.

    The restore is an ordinary edit: the issue's version goes up and the
    change syncs like any other.

    Examples:
        tbd attic restore is-01hx 2025-01-07T10:30:00.000Z --field description
    """
    project_dir = require_project_dir()
    entry = _find_entry(project_dir, issue_ref, timestamp, field)
    records = RecordStore(issues_dir(project_dir))

    try:
        issue = open_attic_store(project_dir).restore(
            entry.entity_id, entry.timestamp, records, field=entry.field
        )
    except AtticRestoreError as e:
        print_error("Cannot restore", reason=str(e))
        raise typer.Exit(ExitCode.USER_ERROR)
    except RecordWriteError as e:
        print_error("Could not save issue", reason=str(e))
        raise typer.Exit(ExitCode.GENERAL_ERROR)

    console.print(
        f"[green]✓[/green] Restored {entry.field} on {issue.id} (version {issue.version})"
    )
