"""
tbd CLI - Main application entry point.

This module sets up the Typer CLI application with all subcommands.
"""

import logging
import sys

import typer
from rich.console import Console

from tbd import __version__
from tbd.cli import attic, init_cmd, issues, sync

# Help panel names for command grouping
PANEL_ISSUES = "Work with Issues"
PANEL_SYNC = "Share Issues"

app = typer.Typer(
    name="tbd",
    help="Git-native issue tracking that syncs through a dedicated branch",
    no_args_is_help=True,
    context_settings={"help_option_names": ["--help", "-h"]},
)

console = Console()


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"tbd version {__version__}")
        raise typer.Exit(0)


@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug output with detailed logging",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show tbd version and exit",
    ),
) -> None:
    """
    tbd - issues that live in your git repository.

    Quick Start:
        1. tbd init                  # Set up .tbd/ and the sync branch
        2. tbd create "Title"        # Create an issue
        3. tbd sync                  # Share it through the remote

    Conflicting edits are merged field by field. Anything a merge had to
    drop is kept in the attic (tbd attic list).
    """
    _configure_logging(debug)
    ctx.obj = {"debug": debug}


app.command(name="init")(init_cmd.main)

app.command(name="create", rich_help_panel=PANEL_ISSUES)(issues.create)
app.command(name="list", rich_help_panel=PANEL_ISSUES)(issues.list_issues)
app.command(name="show", rich_help_panel=PANEL_ISSUES)(issues.show)
app.command(name="update", rich_help_panel=PANEL_ISSUES)(issues.update)
app.command(name="close", rich_help_panel=PANEL_ISSUES)(issues.close)
app.command(name="reopen", rich_help_panel=PANEL_ISSUES)(issues.reopen)
app.command(name="ready", rich_help_panel=PANEL_ISSUES)(issues.ready)
app.command(name="blocked", rich_help_panel=PANEL_ISSUES)(issues.blocked)
app.add_typer(issues.label_app, name="label", rich_help_panel=PANEL_ISSUES)
app.add_typer(issues.dep_app, name="dep", rich_help_panel=PANEL_ISSUES)

app.add_typer(sync.app, name="sync", rich_help_panel=PANEL_SYNC)
app.add_typer(attic.app, name="attic", rich_help_panel=PANEL_SYNC)


def cli_main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "cli_main"]
