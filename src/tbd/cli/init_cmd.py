"""
tbd init command.

Sets up ``.tbd/`` in the current git repository:
- config.yml with the sync branch and remote
- .gitignore keeping the materialized data and sync state off user branches
- data-sync/ with meta.yml, issues/ and attic/
- the first commit on the local sync branch
"""

import logging
from pathlib import Path

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console

from tbd.cli.errors import ExitCode, print_error, print_not_git_repo_error, print_sync_error
from tbd.core.config.loader import ConfigError, load_config, save_config
from tbd.core.config.models import SyncConfig, TbdConfig
from tbd.core.paths import (
    GITIGNORE_CONTENT,
    META_FILE,
    SCHEMA_VERSION,
    attic_dir,
    config_path,
    data_sync_dir,
    issues_dir,
    tbd_dir,
)
from tbd.core.sync import GitContext, GitError, SyncError, SyncService

logger = logging.getLogger(__name__)
console = Console()


def _ensure_data_dir(project_dir: Path) -> None:
    issues_dir(project_dir).mkdir(parents=True, exist_ok=True)
    attic_dir(project_dir).mkdir(parents=True, exist_ok=True)

    meta = data_sync_dir(project_dir) / META_FILE
    if not meta.exists():
        meta.write_text(
            yaml.safe_dump({"schema_version": SCHEMA_VERSION}, default_flow_style=False),
            encoding="utf-8",
        )


def _ensure_gitignore(project_dir: Path) -> None:
    gitignore = tbd_dir(project_dir) / ".gitignore"
    existing = gitignore.read_text(encoding="utf-8") if gitignore.exists() else ""

    missing = [line for line in GITIGNORE_CONTENT.splitlines() if line not in existing.splitlines()]
    if not missing:
        return

    with open(gitignore, "a", encoding="utf-8") as f:
        if existing and not existing.endswith("\n"):
            f.write("\n")
        f.write("\n".join(missing) + "\n")


def init_project(project_dir: Path, config: TbdConfig) -> str | None:
    """
    Create the ``.tbd/`` layout and the first sync branch commit.

    Existing files are kept (an existing config.yml wins over ``config``),
    so running it twice is harmless.

    Returns:
        SHA of the commit created on the sync branch, or None if there was
        nothing new to commit.

    Raises:
        ConfigError: If an existing config.yml is invalid.
        SyncError: If the sync branch commit fails.
    """
    tbd_dir(project_dir).mkdir(parents=True, exist_ok=True)
    if config_path(project_dir).exists():
        logger.info("Keeping existing %s", config_path(project_dir))
        config = load_config(project_dir, use_cache=False)
    else:
        save_config(project_dir, config)
    _ensure_gitignore(project_dir)
    _ensure_data_dir(project_dir)

    service = SyncService(project_dir=project_dir, config=config)
    return service.commit_local("tbd: initialize")


def main(
    branch: str | None = typer.Option(
        None,
        "--branch",
        help="Sync branch name (default: tbd-sync)",
    ),
    remote: str | None = typer.Option(
        None,
        "--remote",
        help="Git remote to sync with (default: origin)",
    ),
) -> None:
    """
    Initialize tbd in the current git repository.

    Examples:
        tbd init
        tbd init --branch issues-sync --remote upstream
    """
    project_dir = Path.cwd().resolve()

    try:
        GitContext.discover(project_dir, remote="origin", branch="tbd-sync")
    except GitError:
        print_not_git_repo_error()
        raise typer.Exit(ExitCode.USER_ERROR)

    overrides = {}
    if branch:
        overrides["branch"] = branch
    if remote:
        overrides["remote"] = remote
    try:
        config = TbdConfig(sync=SyncConfig(**overrides))
    except ValidationError as e:
        print_error("Invalid sync settings", reason=str(e))
        raise typer.Exit(ExitCode.USER_ERROR)

    already = tbd_dir(project_dir).is_dir()
    try:
        commit = init_project(project_dir, config)
    except ConfigError as e:
        print_error("Invalid configuration", reason=str(e), solution="Fix .tbd/config.yml")
        raise typer.Exit(ExitCode.USER_ERROR)
    except SyncError as e:
        print_sync_error(e)
        raise typer.Exit(ExitCode.GENERAL_ERROR)

    if already:
        console.print("[blue]tbd is already initialized here[/blue]")
    else:
        console.print(f"[green]✓[/green] Initialized tbd in {tbd_dir(project_dir)}")
    if commit:
        console.print(f"[green]✓[/green] Recorded initial data on the sync branch ({commit[:8]})")
