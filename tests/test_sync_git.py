"""
Tests for the git plumbing wrapper and the isolated index.

Tests cover:
- Typed ref lookups (Found / NotFound / Failed)
- Fetching a branch that does not exist on the remote
- Building commits in the isolated index without touching the checkout
- Compare-and-swap ref updates
- Non-fast-forward detection
"""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from conftest import run_git

from tbd.core.sync import (
    Failed,
    Found,
    GitContext,
    GitError,
    GitRunner,
    NotFound,
    is_non_fast_forward,
    isolated_index,
)


@pytest.fixture
def ctx(git_repo: Path) -> GitContext:
    return GitContext.discover(git_repo, remote="origin", branch="tbd-sync")


def build_commit(ctx: GitContext, files: dict[str, bytes], parents: list[str]) -> str:
    """Create a commit containing ``files`` using the isolated index."""
    with isolated_index(ctx) as idx:
        git = GitRunner(idx)
        blobs = {path: git.hash_object(content) for path, content in files.items()}
        git.update_index(blobs)
        tree = git.run(["write-tree"])
        return git.commit_tree(tree, parents, "test commit")


class TestContext:
    """Tests for GitContext."""

    def test_discover(self, git_repo: Path, ctx: GitContext) -> None:
        """The git dir is found and refs are derived from the branch."""
        assert ctx.git_dir == (git_repo / ".git").resolve()
        assert ctx.local_ref == "refs/heads/tbd-sync"
        assert ctx.remote_ref == "refs/remotes/origin/tbd-sync"

    def test_discover_outside_repo(self, tmp_path: Path) -> None:
        """A plain directory is not a repository."""
        plain = tmp_path / "plain"
        plain.mkdir()
        with pytest.raises(GitError):
            GitContext.discover(plain, remote="origin", branch="tbd-sync")


class TestLookups:
    """Tests for typed lookups."""

    def test_resolve_existing_ref(self, git_repo: Path, ctx: GitContext) -> None:
        """HEAD resolves to the current commit."""
        result = GitRunner(ctx).resolve_ref("HEAD")
        assert result == Found(run_git(git_repo, "rev-parse", "HEAD"))

    def test_resolve_missing_ref(self, ctx: GitContext) -> None:
        """A missing branch is NotFound, not an exception."""
        result = GitRunner(ctx).resolve_ref(ctx.local_ref)
        assert isinstance(result, NotFound)

    def test_fetch_missing_branch(self, ctx: GitContext, bare_remote: Path) -> None:
        """A remote without the sync branch is NotFound."""
        run_git(ctx.repo_dir, "remote", "add", "origin", str(bare_remote))
        assert isinstance(GitRunner(ctx).fetch_branch(), NotFound)

    def test_fetch_unknown_remote_fails(self, ctx: GitContext) -> None:
        """A broken remote is reported as Failed with the git error."""
        result = GitRunner(ctx).fetch_branch()
        assert isinstance(result, Failed)
        assert result.error.stderr

    def test_unrelated_histories(self, ctx: GitContext) -> None:
        """Two root commits have no merge base."""
        a = build_commit(ctx, {"a.txt": b"a\n"}, [])
        b = build_commit(ctx, {"b.txt": b"b\n"}, [])
        assert isinstance(GitRunner(ctx).merge_base(a, b), NotFound)


class TestIsolatedIndex:
    """Tests for commits built outside the user's checkout."""

    def test_user_state_untouched(self, git_repo: Path, ctx: GitContext) -> None:
        """HEAD, the index and the working tree are unchanged."""
        (git_repo / "wip.txt").write_text("uncommitted\n")
        run_git(git_repo, "add", "wip.txt")
        head_before = run_git(git_repo, "rev-parse", "HEAD")
        status_before = run_git(git_repo, "status", "--porcelain")

        commit = build_commit(ctx, {".tbd/data-sync/meta.yml": b"schema_version: 1\n"}, [])
        GitRunner(ctx).update_ref(ctx.local_ref, commit, None, "test")

        assert run_git(git_repo, "rev-parse", "HEAD") == head_before
        assert run_git(git_repo, "status", "--porcelain") == status_before
        assert not (git_repo / ".tbd").exists()
        assert not ctx.index_file.exists()

        files = GitRunner(ctx).list_tree(commit, ".tbd/data-sync")
        assert list(files) == [".tbd/data-sync/meta.yml"]

    def test_index_removed_on_error(self, ctx: GitContext) -> None:
        """The private index is cleaned up when the block raises."""
        with pytest.raises(GitError):
            with isolated_index(ctx) as idx:
                git = GitRunner(idx)
                git.update_index({"a.txt": git.hash_object(b"a\n")})
                assert ctx.index_file.exists()
                git.run(["read-tree", "does-not-exist"])
        assert not ctx.index_file.exists()

    def test_stale_index_discarded(self, ctx: GitContext) -> None:
        """A leftover index from a crashed run does not leak into a new commit."""
        ctx.index_file.write_bytes(b"garbage")
        commit = build_commit(ctx, {"a.txt": b"a\n"}, [])
        assert list(GitRunner(ctx).list_tree(commit, ".")) == ["a.txt"]

    def test_blob_round_trip(self, ctx: GitContext) -> None:
        """Blob content is stored and read back byte for byte."""
        git = GitRunner(ctx)
        content = "line one\r\nünïcode\n".encode()
        assert git.read_blob(git.hash_object(content)) == content


class TestRefUpdates:
    """Tests for compare-and-swap ref updates and diffs."""

    def test_create_requires_absent_ref(self, ctx: GitContext) -> None:
        """Creating a ref that already exists fails."""
        git = GitRunner(ctx)
        first = build_commit(ctx, {"a.txt": b"1\n"}, [])
        second = build_commit(ctx, {"a.txt": b"2\n"}, [first])
        git.update_ref(ctx.local_ref, first, None, "create")
        with pytest.raises(GitError):
            git.update_ref(ctx.local_ref, second, None, "create again")

    def test_stale_old_value_rejected(self, ctx: GitContext) -> None:
        """An update based on an outdated tip fails."""
        git = GitRunner(ctx)
        first = build_commit(ctx, {"a.txt": b"1\n"}, [])
        second = build_commit(ctx, {"a.txt": b"2\n"}, [first])
        git.update_ref(ctx.local_ref, first, None, "create")
        git.update_ref(ctx.local_ref, second, first, "advance")
        with pytest.raises(GitError):
            git.update_ref(ctx.local_ref, first, first, "stale")
        assert git.resolve_ref(ctx.local_ref) == Found(second)

    def test_diff_name_status(self, ctx: GitContext) -> None:
        """Added and modified paths are reported with their status."""
        git = GitRunner(ctx)
        first = build_commit(ctx, {"d/a.txt": b"1\n"}, [])
        second = build_commit(ctx, {"d/a.txt": b"2\n", "d/b.txt": b"new\n"}, [first])
        assert git.diff_name_status(first, second, "d") == [("M", "d/a.txt"), ("A", "d/b.txt")]
        assert git.count_commits(f"{first}..{second}") == 1


class TestPushRejection:
    """Tests for push failure classification."""

    @pytest.mark.parametrize(
        "stderr",
        [
            " ! [rejected]        tbd-sync -> tbd-sync (fetch first)",
            " ! [rejected]        tbd-sync -> tbd-sync (non-fast-forward)",
        ],
    )
    def test_rejections(self, stderr: str) -> None:
        assert is_non_fast_forward(stderr)

    @pytest.mark.parametrize(
        "stderr",
        [
            " ! [remote rejected] tbd-sync -> tbd-sync (pre-receive hook declined)\n"
            "error: failed to push some refs to 'origin'",
            " ! [remote rejected] tbd-sync -> tbd-sync (permission denied)",
        ],
    )
    def test_remote_rejection_is_a_failure(self, stderr: str) -> None:
        """Hook and permission rejections are not lost races."""
        assert not is_non_fast_forward(stderr)

    def test_network_failure(self) -> None:
        stderr = "fatal: unable to access 'https://example.com/repo.git/': Could not resolve host"
        assert not is_non_fast_forward(stderr)

    def test_push_to_bare_remote(self, ctx: GitContext, bare_remote: Path) -> None:
        """A first push creates the branch on the remote."""
        run_git(ctx.repo_dir, "remote", "add", "origin", str(bare_remote))
        commit = build_commit(ctx, {"a.txt": b"1\n"}, [])
        git = GitRunner(ctx)
        git.update_ref(ctx.local_ref, commit, None, "create")

        result = git.push_branch()

        assert result.returncode == 0
        remote_tip = subprocess.run(
            ["git", "rev-parse", "refs/heads/tbd-sync"],
            cwd=bare_remote,
            capture_output=True,
            text=True,
            check=True,
        ).stdout.strip()
        assert remote_tip == commit
