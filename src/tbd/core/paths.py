"""
On-disk layout of a tbd project.

    .tbd/
      config.yml
      .gitignore
      .sync-state.json
      data-sync/            materialized copy of the sync branch
        meta.yml
        issues/{id}.md
        attic/{entity}_{timestamp}_{field}.yml

The same ``.tbd/data-sync/`` prefix is used for paths inside the sync
branch tree, so a file's working-copy path and its tree path always match.
"""

from __future__ import annotations

from pathlib import Path

TBD_DIR = ".tbd"
CONFIG_FILE = "config.yml"
STATE_FILE = ".sync-state.json"
DATA_SYNC_DIR = f"{TBD_DIR}/data-sync"
ISSUES_DIR = "issues"
ATTIC_DIR = "attic"
META_FILE = "meta.yml"

SCHEMA_VERSION = 1

# Name of the private index file inside the git dir
ISOLATED_INDEX_NAME = "tbd-index"

GITIGNORE_CONTENT = "data-sync/\n.sync-state.json\n"


class NotInitializedError(RuntimeError):
    """Raised when a command needs a .tbd/ directory and none is found."""

    def __init__(self, start: Path):
        super().__init__(f"Not a tbd project (no {TBD_DIR}/ found from {start})")
        self.start = start


def find_project_root(start: Path | None = None) -> Path:
    """
    Walk up from ``start`` to the directory that contains ``.tbd/``.

    Raises:
        NotInitializedError: If no ancestor contains a .tbd directory.
    """
    origin = (start or Path.cwd()).resolve()
    for candidate in (origin, *origin.parents):
        if (candidate / TBD_DIR).is_dir():
            return candidate
    raise NotInitializedError(origin)


def tbd_dir(project_dir: Path) -> Path:
    return project_dir / TBD_DIR


def config_path(project_dir: Path) -> Path:
    return project_dir / TBD_DIR / CONFIG_FILE


def state_path(project_dir: Path) -> Path:
    return project_dir / TBD_DIR / STATE_FILE


def data_sync_dir(project_dir: Path) -> Path:
    return project_dir / DATA_SYNC_DIR


def issues_dir(project_dir: Path) -> Path:
    return data_sync_dir(project_dir) / ISSUES_DIR


def attic_dir(project_dir: Path) -> Path:
    return data_sync_dir(project_dir) / ATTIC_DIR


def tree_path(relative: str) -> str:
    """Path of a data-sync file inside the sync branch tree."""
    return f"{DATA_SYNC_DIR}/{relative}"


def is_issue_path(path: str) -> bool:
    """True for ``.tbd/data-sync/issues/*.md`` tree paths."""
    prefix = f"{DATA_SYNC_DIR}/{ISSUES_DIR}/"
    return path.startswith(prefix) and path.endswith(".md") and "/" not in path[len(prefix) :]
