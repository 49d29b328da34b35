"""
Pytest configuration and shared fixtures.

Provides git repositories (with and without a bare remote), initialized tbd
projects and issue factories used across the test suite.
"""

from __future__ import annotations

import subprocess
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from tbd.cli.init_cmd import init_project
from tbd.core.config import TbdConfig, clear_cache
from tbd.core.ids import generate_issue_id
from tbd.core.records.models import Issue

BASE_TIME = datetime(2025, 1, 7, 10, 0, tzinfo=timezone.utc)


def run_git(repo: Path, *args: str) -> str:
    """Run a git command in ``repo`` and return its stripped stdout."""
    result = subprocess.run(
        ["git", *args], cwd=repo, capture_output=True, text=True, check=True
    )
    return result.stdout.strip()


def make_repo(path: Path) -> Path:
    """Create a git repository with an identity and one commit on HEAD."""
    path.mkdir(parents=True)
    subprocess.run(["git", "init"], cwd=path, capture_output=True, check=True)
    run_git(path, "config", "user.email", "test@example.com")
    run_git(path, "config", "user.name", "Test User")
    (path / "README.md").write_text("# Test Repo\n")
    run_git(path, "add", "README.md")
    run_git(path, "commit", "-m", "Initial commit")
    return path


# ==============================================================================
# Isolation
# ==============================================================================


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch: pytest.MonkeyPatch):
    """Keep TBD_* variables and cached config from leaking between tests."""
    for name in ("TBD_SYNC_BRANCH", "TBD_SYNC_REMOTE", "TBD_SYNC_MAX_RETRIES"):
        monkeypatch.delenv(name, raising=False)
    clear_cache()
    yield
    clear_cache()


# ==============================================================================
# Git Fixtures
# ==============================================================================


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """Create a temporary git repository with an initial commit."""
    return make_repo(tmp_path / "repo")


@pytest.fixture
def bare_remote(tmp_path: Path) -> Path:
    """Create an empty bare repository to act as the shared remote."""
    remote = tmp_path / "remote.git"
    subprocess.run(
        ["git", "init", "--bare", str(remote)], capture_output=True, check=True
    )
    return remote


@pytest.fixture
def make_project(tmp_path: Path, bare_remote: Path) -> Callable[[str], Path]:
    """
    Factory for initialized tbd projects that share ``bare_remote`` as origin.
    """

    def _make(name: str) -> Path:
        repo = make_repo(tmp_path / name)
        run_git(repo, "remote", "add", "origin", str(bare_remote))
        init_project(repo, TbdConfig())
        return repo

    return _make


@pytest.fixture
def tbd_project(make_project: Callable[[str], Path]) -> Path:
    """A single initialized tbd project with a (still empty) remote."""
    return make_project("alice")


# ==============================================================================
# Sample Data Fixtures
# ==============================================================================


@pytest.fixture
def make_issue() -> Callable[..., Issue]:
    """
    Factory for issues with fixed timestamps.

    Example:
        >>> issue = make_issue(title="Fix login", version=2)
    """

    def _make(**overrides: Any) -> Issue:
        data: dict[str, Any] = {
            "id": generate_issue_id(),
            "title": "Sample issue",
            "created_at": BASE_TIME,
            "updated_at": BASE_TIME,
        }
        data.update(overrides)
        return Issue(**data)

    return _make
