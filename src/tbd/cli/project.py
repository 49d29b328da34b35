"""
Project lookup shared by the CLI commands.
"""

from pathlib import Path

import typer

from tbd.cli.errors import (
    ExitCode,
    print_error,
    print_issue_not_found_error,
    print_not_initialized_error,
)
from tbd.core.attic.store import AtticStore
from tbd.core.config.loader import ConfigError, load_config
from tbd.core.config.models import TbdConfig
from tbd.core.ids import AmbiguousIdError
from tbd.core.paths import NotInitializedError, attic_dir, find_project_root, issues_dir
from tbd.core.records.operations import resolve
from tbd.core.records.store import RecordNotFoundError, RecordStore


def require_project_dir() -> Path:
    """Project root for the current directory, or exit with a user error."""
    try:
        return find_project_root()
    except NotInitializedError:
        print_not_initialized_error()
        raise typer.Exit(ExitCode.USER_ERROR)


def require_config(project_dir: Path) -> TbdConfig:
    try:
        return load_config(project_dir)
    except ConfigError as e:
        print_error("Invalid configuration", reason=str(e), solution="Fix .tbd/config.yml")
        raise typer.Exit(ExitCode.USER_ERROR)


def open_record_store() -> RecordStore:
    return RecordStore(issues_dir(require_project_dir()))


def open_attic_store(project_dir: Path) -> AtticStore:
    return AtticStore(attic_dir(project_dir))


def resolve_issue(store: RecordStore, ref: str) -> str:
    """
    Resolve a user-supplied ID or prefix, exiting with a user error on failure.
    """
    try:
        return resolve(store, ref)
    except RecordNotFoundError:
        print_issue_not_found_error(ref)
        raise typer.Exit(ExitCode.USER_ERROR)
    except AmbiguousIdError as e:
        print_error(str(e), solution="Use more characters of the ID")
        raise typer.Exit(ExitCode.USER_ERROR)
