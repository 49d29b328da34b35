"""
Standardized error handling and exit codes for the tbd CLI.

This module provides consistent error messaging with actionable guidance
and standardized exit codes across all CLI commands.
"""

from enum import IntEnum

from rich.console import Console

from tbd.core.sync.models import SyncError, SyncPhase

console = Console()


class ExitCode(IntEnum):
    """Standard exit codes for tbd CLI operations."""

    SUCCESS = 0
    """Operation completed successfully (resolved conflicts included)."""

    GENERAL_ERROR = 1
    """Generic error, including a sync that could not complete."""

    USER_ERROR = 2
    """Bad input or project setup (actionable by user)."""

    SIGINT = 130
    """Terminated by SIGINT (Ctrl+C) - Unix standard."""


def print_error(
    problem: str,
    *,
    reason: str | None = None,
    solution: str | None = None,
) -> None:
    """
    Print a standardized error message with actionable guidance.

    Args:
        problem: Brief description of what went wrong
        reason: Optional explanation of why it happened
        solution: Optional command or action to fix it

    Example:
        >>> print_error(
        ...     "Issue not found: is-01hx",
        ...     reason="No issue ID starts with that prefix",
        ...     solution="tbd list --all",
        ... )
    """
    console.print(f"[red]Error:[/red] {problem}")

    if reason:
        console.print(f"[dim]{reason}[/dim]")

    if solution:
        console.print(f"[cyan]→ Try:[/cyan] {solution}")


def print_not_git_repo_error() -> None:
    """Print error when not in a git repository."""
    print_error(
        "Not a git repository",
        reason="tbd stores issues on a git branch",
        solution="git init  # or cd to your project root",
    )


def print_not_initialized_error() -> None:
    """Print error when no .tbd/ directory is found."""
    print_error(
        "Not a tbd project",
        reason="Could not find .tbd/ in this directory or any parent",
        solution="tbd init",
    )


def print_issue_not_found_error(ref: str) -> None:
    """Print error when an issue reference matches nothing."""
    print_error(
        f"Issue not found: {ref}",
        reason="No issue ID or ID prefix matches",
        solution="tbd list --all  # to see available issues",
    )


def print_invalid_option_error(option: str, valid_options: list[str]) -> None:
    """Print error when an invalid option value is provided."""
    valid_str = ", ".join(valid_options)
    print_error(
        f"Invalid option: {option}",
        reason=f"Valid options are: {valid_str}",
        solution=f"Use one of: {valid_str}",
    )


def print_sync_error(error: SyncError) -> None:
    """Print a sync failure with advice matching its phase."""
    if error.retryable:
        solution = "tbd sync  # local commits are kept and pushed next time"
    elif error.phase is SyncPhase.COMMIT:
        solution = "tbd --debug sync  # to see the failing git command"
    else:
        solution = "tbd sync status"
    print_error(
        f"Sync failed during {error.phase.value}",
        reason=str(error.__cause__ or error),
        solution=solution,
    )


__all__ = [
    "ExitCode",
    "print_error",
    "print_invalid_option_error",
    "print_issue_not_found_error",
    "print_not_git_repo_error",
    "print_not_initialized_error",
    "print_sync_error",
]
