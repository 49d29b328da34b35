"""
tbd CLI - issue commands.

Create, inspect and edit issues in the local working copy. Changes reach
other clones on the next ``tbd sync``.
"""

import json

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from tbd.cli.errors import ExitCode, print_error, print_invalid_option_error
from tbd.cli.project import open_record_store, resolve_issue
from tbd.core.records import (
    Issue,
    IssueKind,
    IssueStatus,
    RecordNotFoundError,
    RecordStore,
    RecordWriteError,
    add_dependency,
    add_labels,
    blocked_issues,
    close_issue,
    create_issue,
    ready_issues,
    remove_dependency,
    remove_labels,
    reopen_issue,
    update_issue,
)

console = Console()

label_app = typer.Typer(help="Add or remove issue labels")
dep_app = typer.Typer(help="Manage blocking dependencies between issues")

STATUS_COLORS = {
    IssueStatus.OPEN: "white",
    IssueStatus.IN_PROGRESS: "yellow",
    IssueStatus.BLOCKED: "red",
    IssueStatus.DEFERRED: "dim",
    IssueStatus.CLOSED: "green",
}


def _parse_kind(value: str) -> IssueKind:
    try:
        return IssueKind(value.lower())
    except ValueError:
        print_invalid_option_error(value, [k.value for k in IssueKind])
        raise typer.Exit(ExitCode.USER_ERROR)


def _parse_status(value: str) -> IssueStatus:
    try:
        return IssueStatus(value.lower())
    except ValueError:
        print_invalid_option_error(value, [s.value for s in IssueStatus])
        raise typer.Exit(ExitCode.USER_ERROR)


def _print_json(data: object) -> None:
    typer.echo(json.dumps(data, indent=2))


def _mutate(store: RecordStore, action, *args, **kwargs) -> Issue:
    """Run a record mutation, turning its failures into CLI exits."""
    try:
        return action(store, *args, **kwargs)
    except RecordNotFoundError as e:
        print_error(str(e), solution="tbd list --all")
        raise typer.Exit(ExitCode.USER_ERROR)
    except ValidationError as e:
        print_error("Invalid value", reason=str(e))
        raise typer.Exit(ExitCode.USER_ERROR)
    except RecordWriteError as e:
        print_error("Could not save issue", reason=str(e))
        raise typer.Exit(ExitCode.GENERAL_ERROR)


def create(
    title: str = typer.Argument(..., help="Issue title"),
    kind: str = typer.Option(
        "task",
        "--type",
        "-t",
        help="Issue type: bug, feature, task, epic, chore",
    ),
    priority: int = typer.Option(
        2,
        "--priority",
        "-p",
        help="Priority level (0-4, where 0 is highest)",
    ),
    description: str | None = typer.Option(
        None,
        "--description",
        "-d",
        help="Issue description",
    ),
    labels: list[str] | None = typer.Option(
        None,
        "--label",
        "-l",
        help="Issue labels (can be repeated)",
    ),
    assignee: str | None = typer.Option(
        None,
        "--assignee",
        help="Who is working on it",
    ),
    parent: str | None = typer.Option(
        None,
        "--parent",
        help="Parent issue ID",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON",
    ),
) -> None:
    """
    Create a new issue.

    Examples:
        tbd create "Fix login bug" --type bug --priority 1
        tbd create "Write tests" --label testing --parent is-01hx
    """
    store = open_record_store()
    issue_kind = _parse_kind(kind)
    parent_id = resolve_issue(store, parent) if parent else None

    issue = _mutate(
        store,
        create_issue,
        title,
        kind=issue_kind,
        priority=priority,
        description=description,
        labels=labels or [],
        assignee=assignee,
        parent_id=parent_id,
    )

    if json_output:
        _print_json(issue.model_dump(mode="json"))
    else:
        console.print(f"[green]Created:[/green] {issue.id}")
        if issue.parent_id:
            console.print(f"  Parent: {issue.parent_id}")


def list_issues(
    status: str | None = typer.Option(
        None,
        "--status",
        "-s",
        help="Filter by status: open, in_progress, blocked, deferred, closed",
    ),
    kind: str | None = typer.Option(
        None,
        "--type",
        "-t",
        help="Filter by issue type",
    ),
    label: str | None = typer.Option(
        None,
        "--label",
        "-l",
        help="Filter by label",
    ),
    show_all: bool = typer.Option(
        False,
        "--all",
        help="Include closed issues",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON",
    ),
) -> None:
    """
    List issues, highest priority first. Closed issues are hidden unless
    --all or --status closed is given.

    Examples:
        tbd list
        tbd list --status in_progress
        tbd list --label backend --all
    """
    store = open_record_store()
    status_filter = _parse_status(status) if status else None
    kind_filter = _parse_kind(kind) if kind else None

    issues = store.list_records()
    if status_filter is not None:
        issues = [i for i in issues if i.status == status_filter]
    elif not show_all:
        issues = [i for i in issues if not i.is_closed]
    if kind_filter is not None:
        issues = [i for i in issues if i.kind == kind_filter]
    if label:
        issues = [i for i in issues if label in i.labels]
    issues.sort(key=lambda i: (i.priority, i.created_at, i.id))

    if json_output:
        _print_json([i.model_dump(mode="json") for i in issues])
        return

    if not issues:
        console.print("[dim]No issues found[/dim]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("ID", style="dim")
    table.add_column("P", width=2, justify="center")
    table.add_column("Type", width=8)
    table.add_column("Status", width=12)
    table.add_column("Title", overflow="fold")

    for issue in issues:
        color = STATUS_COLORS.get(issue.status, "white")
        table.add_row(
            issue.id,
            str(issue.priority),
            issue.kind.value,
            f"[{color}]{issue.status.value}[/{color}]",
            issue.title,
        )

    console.print(table)
    console.print(f"\n[dim]Total: {len(issues)} issues[/dim]")


def show(
    issue_ref: str = typer.Argument(..., help="Issue ID or unique prefix"),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON",
    ),
) -> None:
    """
    Show detailed information about an issue.

    Examples:
        tbd show is-01hx5zzk
        tbd show is-01hx5zzk --json
    """
    store = open_record_store()
    issue = store.get(resolve_issue(store, issue_ref))

    if json_output:
        _print_json(issue.model_dump(mode="json"))
        return

    console.print(f"[bold cyan]{issue.id}[/bold cyan] - {issue.title}")
    console.print(f"[dim]Status:[/dim] {issue.status.value}")
    console.print(f"[dim]Type:[/dim] {issue.kind.value}")
    console.print(f"[dim]Priority:[/dim] {issue.priority}")
    console.print(f"[dim]Version:[/dim] {issue.version}")

    if issue.assignee:
        console.print(f"[dim]Assignee:[/dim] {issue.assignee}")
    if issue.parent_id:
        console.print(f"[dim]Parent:[/dim] {issue.parent_id}")
    if issue.labels:
        console.print(f"[dim]Labels:[/dim] {', '.join(issue.labels)}")
    if issue.dependencies:
        console.print(f"[dim]Blocks:[/dim] {', '.join(d.target for d in issue.dependencies)}")
    if issue.is_closed and issue.close_reason:
        console.print(f"[dim]Close reason:[/dim] {issue.close_reason}")

    if issue.description:
        console.print(f"\n[bold]Description:[/bold]\n{issue.description}")
    if issue.notes:
        console.print(f"\n[bold]Notes:[/bold]\n{issue.notes}")


def update(
    issue_ref: str = typer.Argument(..., help="Issue ID or unique prefix"),
    title: str | None = typer.Option(None, "--title", help="New title"),
    status: str | None = typer.Option(
        None,
        "--status",
        "-s",
        help="New status: open, in_progress, blocked, deferred, closed",
    ),
    priority: int | None = typer.Option(
        None,
        "--priority",
        "-p",
        help="New priority (0-4)",
    ),
    kind: str | None = typer.Option(None, "--type", "-t", help="New issue type"),
    assignee: str | None = typer.Option(None, "--assignee", help="New assignee"),
    description: str | None = typer.Option(
        None,
        "--description",
        "-d",
        help="Replace the description",
    ),
    notes: str | None = typer.Option(None, "--notes", help="Replace the notes"),
) -> None:
    """
    Update fields of an issue as a single change.

    Examples:
        tbd update is-01hx --status in_progress --assignee alice
        tbd update is-01hx --title "Fix login redirect"
    """
    store = open_record_store()
    issue_id = resolve_issue(store, issue_ref)

    changes: dict[str, object] = {}
    if title is not None:
        changes["title"] = title
    if status is not None:
        changes["status"] = _parse_status(status)
    if priority is not None:
        changes["priority"] = priority
    if kind is not None:
        changes["kind"] = _parse_kind(kind)
    if assignee is not None:
        changes["assignee"] = assignee or None
    if description is not None:
        changes["description"] = description
    if notes is not None:
        changes["notes"] = notes

    if not changes:
        print_error("Nothing to update", solution="tbd update --help")
        raise typer.Exit(ExitCode.USER_ERROR)

    issue = _mutate(store, update_issue, issue_id, **changes)
    console.print(f"[green]Updated:[/green] {issue.id} (version {issue.version})")


def close(
    issue_ref: str = typer.Argument(..., help="Issue ID or unique prefix"),
    reason: str | None = typer.Option(
        None,
        "--reason",
        "-r",
        help="Reason for closing the issue",
    ),
) -> None:
    """
    Close an issue.

    Examples:
        tbd close is-01hx
        tbd close is-01hx --reason "Fixed in #456"
    """
    store = open_record_store()
    issue = _mutate(store, close_issue, resolve_issue(store, issue_ref), reason=reason)
    console.print(f"[green]Closed:[/green] {issue.id}")


def reopen(
    issue_ref: str = typer.Argument(..., help="Issue ID or unique prefix"),
) -> None:
    """
    Reopen a closed issue.
    """
    store = open_record_store()
    issue = _mutate(store, reopen_issue, resolve_issue(store, issue_ref))
    console.print(f"[green]Reopened:[/green] {issue.id} - {issue.title}")


def ready(
    kind: str | None = typer.Option(
        None,
        "--type",
        "-t",
        help="Filter by issue type",
    ),
    label: str | None = typer.Option(
        None,
        "--label",
        "-l",
        help="Filter by label",
    ),
    limit: int | None = typer.Option(
        None,
        "--limit",
        "-n",
        min=1,
        help="Show at most this many issues",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON",
    ),
) -> None:
    """
    List issues ready to work on (open, unassigned, no open blockers).

    Examples:
        tbd ready
        tbd ready --type bug --limit 5
    """
    store = open_record_store()
    kind_filter = _parse_kind(kind) if kind else None
    issues = ready_issues(store, kind=kind_filter, label=label)[:limit]

    if json_output:
        _print_json([i.model_dump(mode="json") for i in issues])
        return

    if not issues:
        console.print("[yellow]No issues ready to work on.[/yellow]")
        return

    table = Table(title="Ready Issues", show_header=True, header_style="bold cyan")
    table.add_column("ID", style="dim")
    table.add_column("P", width=2, justify="center")
    table.add_column("Type", width=8)
    table.add_column("Title", overflow="fold")

    for issue in issues:
        table.add_row(issue.id, str(issue.priority), issue.kind.value, issue.title)

    console.print(table)


def blocked(
    limit: int | None = typer.Option(
        None,
        "--limit",
        "-n",
        min=1,
        help="Show at most this many issues",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON",
    ),
) -> None:
    """
    Show blocked issues and the open issues blocking them.

    An issue is blocked if an open issue blocks it or its status is
    blocked.
    """
    store = open_record_store()
    entries = blocked_issues(store)[:limit]

    if json_output:
        _print_json(
            [
                {**issue.model_dump(mode="json"), "blocked_by": [b.id for b in blockers]}
                for issue, blockers in entries
            ]
        )
        return

    if not entries:
        console.print("[yellow]No blocked issues found.[/yellow]")
        return

    table = Table(title="Blocked Issues", show_header=True, header_style="bold cyan")
    table.add_column("ID", style="dim")
    table.add_column("P", width=2, justify="center")
    table.add_column("Title", overflow="fold")
    table.add_column("Blocked By", overflow="fold")

    for issue, blockers in entries:
        waiting_on = ", ".join(b.id for b in blockers) or "[dim](status blocked)[/dim]"
        table.add_row(issue.id, str(issue.priority), issue.title, waiting_on)

    console.print(table)


@label_app.command("add")
def label_add(
    issue_ref: str = typer.Argument(..., help="Issue ID or unique prefix"),
    labels: list[str] = typer.Argument(..., help="Labels to add"),
) -> None:
    """Add labels to an issue."""
    store = open_record_store()
    issue = _mutate(store, add_labels, resolve_issue(store, issue_ref), labels)
    console.print(f"[green]✓[/green] {issue.id} labels: {', '.join(issue.labels) or '(none)'}")


@label_app.command("remove")
def label_remove(
    issue_ref: str = typer.Argument(..., help="Issue ID or unique prefix"),
    labels: list[str] = typer.Argument(..., help="Labels to remove"),
) -> None:
    """Remove labels from an issue."""
    store = open_record_store()
    issue = _mutate(store, remove_labels, resolve_issue(store, issue_ref), labels)
    console.print(f"[green]✓[/green] {issue.id} labels: {', '.join(issue.labels) or '(none)'}")


@dep_app.command("add")
def dep_add(
    issue_ref: str = typer.Argument(..., help="Issue that blocks another"),
    target_ref: str = typer.Argument(..., help="Issue that is blocked"),
) -> None:
    """
    Record that ISSUE blocks TARGET.

    Examples:
        tbd dep add is-01hx is-01hy
    """
    store = open_record_store()
    issue_id = resolve_issue(store, issue_ref)
    target_id = resolve_issue(store, target_ref)
    _mutate(store, add_dependency, issue_id, target_id)
    console.print(f"[green]✓[/green] {issue_id} blocks {target_id}")


@dep_app.command("remove")
def dep_remove(
    issue_ref: str = typer.Argument(..., help="Issue that blocks another"),
    target_ref: str = typer.Argument(..., help="Issue that is blocked"),
) -> None:
    """Remove a blocking dependency."""
    store = open_record_store()
    issue_id = resolve_issue(store, issue_ref)
    target_id = resolve_issue(store, target_ref)
    _mutate(store, remove_dependency, issue_id, target_id)
    console.print(f"[green]✓[/green] {issue_id} no longer blocks {target_id}")
