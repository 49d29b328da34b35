"""
Git plumbing wrapper.

Every call takes an explicit ``GitContext`` (repository, git dir, remote,
sync branch and extra environment). Nothing here reads the process cwd or
changes ``os.environ``: the isolated index is selected by passing
``GIT_INDEX_FILE`` in the child environment only.

Lookups whose "not there" outcome is ordinary (does this ref exist? do these
commits share history? does the remote have the branch?) return
``Found | NotFound | Failed`` so callers branch on data rather than on
exception types. Everything else raises ``GitError``.
"""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Generic, TypeVar, Union

from tbd.core.paths import ISOLATED_INDEX_NAME

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Reasons git gives on a "[rejected]" push line when the remote moved;
# "[remote rejected]" (hooks, permissions) is a plain failure
NON_FAST_FORWARD_MARKERS = ("non-fast-forward", "fetch first")


class GitError(Exception):
    """Exception raised when a git operation fails."""

    def __init__(self, message: str, command: list[str] | None = None, stderr: str = ""):
        super().__init__(message)
        self.command = command
        self.stderr = stderr

    def __str__(self) -> str:
        base = super().__str__()
        return f"{base}: {self.stderr}" if self.stderr else base


@dataclass(frozen=True)
class Found(Generic[T]):
    value: T


@dataclass(frozen=True)
class NotFound:
    what: str


@dataclass(frozen=True)
class Failed:
    error: GitError


RefLookup = Union[Found[str], NotFound, Failed]


@dataclass(frozen=True)
class GitContext:
    """
    Explicit handle on the repository and sync branch.

    Example:
        >>> ctx = GitContext.discover(Path("."), remote="origin", branch="tbd-sync")
        >>> ctx.local_ref
        'refs/heads/tbd-sync'
        >>> ctx.remote_ref
        'refs/remotes/origin/tbd-sync'
    """

    repo_dir: Path
    git_dir: Path
    remote: str
    branch: str
    env: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def discover(cls, repo_dir: Path, *, remote: str, branch: str) -> GitContext:
        """
        Build a context for the repository containing ``repo_dir``.

        Raises:
            GitError: If ``repo_dir`` is not inside a git repository.
        """
        draft = cls(repo_dir=repo_dir, git_dir=repo_dir, remote=remote, branch=branch)
        git_dir = GitRunner(draft).run(["rev-parse", "--absolute-git-dir"])
        return replace(draft, git_dir=Path(git_dir))

    @property
    def local_ref(self) -> str:
        return f"refs/heads/{self.branch}"

    @property
    def remote_ref(self) -> str:
        return f"refs/remotes/{self.remote}/{self.branch}"

    @property
    def index_file(self) -> Path:
        return self.git_dir / ISOLATED_INDEX_NAME

    def with_env(self, **extra: str) -> GitContext:
        return replace(self, env={**self.env, **extra})


def _remove_index(index_file: Path) -> None:
    for path in (index_file, index_file.with_name(index_file.name + ".lock")):
        if path.exists():
            path.unlink()


@contextmanager
def isolated_index(ctx: GitContext) -> Iterator[GitContext]:
    """
    Scope in which git index operations use a private index file.

    Yields a context whose commands run with ``GIT_INDEX_FILE`` pointing at
    ``<git-dir>/tbd-index``. The user's index, working tree and HEAD are never
    touched. The private index is removed on every exit path.

    Example:
        >>> with isolated_index(ctx) as idx:
        ...     git = GitRunner(idx)
        ...     git.run(["read-tree", tip])
        ...     tree = git.run(["write-tree"])
    """
    index_file = ctx.index_file
    _remove_index(index_file)
    logger.debug("Acquired isolated index %s", index_file)
    try:
        yield ctx.with_env(GIT_INDEX_FILE=str(index_file))
    finally:
        _remove_index(index_file)
        logger.debug("Released isolated index %s", index_file)


def is_non_fast_forward(stderr: str) -> bool:
    """True if a push failure means the remote moved since our fetch."""
    for line in stderr.lower().splitlines():
        if "[rejected]" in line and any(m in line for m in NON_FAST_FORWARD_MARKERS):
            return True
    return False


class GitRunner:
    """
    Runs git commands against one ``GitContext``.

    Output is decoded as UTF-8. Blob content is returned as bytes so it can be
    written back byte-for-byte.
    """

    def __init__(self, ctx: GitContext, timeout: float | None = None):
        self.ctx = ctx
        self.timeout = timeout

    def _env(self) -> dict[str, str]:
        env = dict(os.environ)
        # Stable, English messages (push rejection detection) and no prompts
        env["LC_ALL"] = "C"
        env["GIT_TERMINAL_PROMPT"] = "0"
        env.pop("GIT_INDEX_FILE", None)
        env.update(self.ctx.env)
        return env

    def execute(
        self, args: list[str], *, input_data: str | bytes | None = None
    ) -> subprocess.CompletedProcess[bytes]:
        """
        Run a git command and return the raw completed process.

        Raises:
            GitError: If git cannot be started or times out.
        """
        cmd = ["git"] + args
        logger.debug("Running git command: %s", " ".join(cmd))

        if isinstance(input_data, str):
            input_data = input_data.encode("utf-8")

        try:
            return subprocess.run(
                cmd,
                cwd=self.ctx.repo_dir,
                env=self._env(),
                input=input_data,
                capture_output=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise GitError(f"Git command timed out: {' '.join(cmd)}", command=cmd) from e
        except FileNotFoundError as e:
            raise GitError("git not found in PATH", command=cmd) from e

    def run_bytes(self, args: list[str], *, input_data: str | bytes | None = None) -> bytes:
        """
        Run a git command and return its raw stdout.

        Raises:
            GitError: If the command exits non-zero.
        """
        result = self.execute(args, input_data=input_data)
        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            raise GitError(
                f"Git command failed: git {' '.join(args)}",
                command=["git"] + args,
                stderr=stderr,
            )
        return result.stdout

    def run(self, args: list[str], *, input_data: str | bytes | None = None) -> str:
        """
        Run a git command and return its stdout (stripped).

        Raises:
            GitError: If the command exits non-zero.
        """
        return self.run_bytes(args, input_data=input_data).decode("utf-8").strip()

    # Typed lookups

    def resolve_ref(self, ref: str) -> RefLookup:
        """Resolve a ref to a commit SHA."""
        result = self.execute(["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"])
        stdout = result.stdout.decode("utf-8").strip()
        if result.returncode == 0 and stdout:
            return Found(stdout)
        stderr = result.stderr.decode("utf-8", errors="replace").strip()
        if result.returncode == 1 and not stderr:
            return NotFound(ref)
        return Failed(GitError(f"Cannot resolve {ref}", command=["git", "rev-parse", ref], stderr=stderr))

    def merge_base(self, a: str, b: str) -> RefLookup:
        """Best common ancestor of two commits (NotFound for unrelated histories)."""
        result = self.execute(["merge-base", a, b])
        stdout = result.stdout.decode("utf-8").strip()
        if result.returncode == 0 and stdout:
            return Found(stdout)
        stderr = result.stderr.decode("utf-8", errors="replace").strip()
        if result.returncode == 1 and not stderr:
            return NotFound(f"{a}...{b}")
        return Failed(GitError("merge-base failed", command=["git", "merge-base", a, b], stderr=stderr))

    def fetch_branch(self) -> RefLookup:
        """
        Fetch the sync branch into its remote-tracking ref.

        Returns:
            Found(remote tip SHA), NotFound if the remote has no such branch,
            or Failed for network and other errors.
        """
        ctx = self.ctx
        refspec = f"+{ctx.local_ref}:{ctx.remote_ref}"
        result = self.execute(["fetch", "--no-tags", ctx.remote, refspec])
        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            if "couldn't find remote ref" in stderr.lower():
                return NotFound(f"{ctx.remote}/{ctx.branch}")
            return Failed(
                GitError(
                    f"Failed to fetch {ctx.remote}/{ctx.branch}",
                    command=["git", "fetch", ctx.remote, refspec],
                    stderr=stderr,
                )
            )
        return self.resolve_ref(ctx.remote_ref)

    # Plumbing

    def count_commits(self, revision_range: str) -> int:
        return int(self.run(["rev-list", "--count", revision_range]) or 0)

    def list_tree(self, commit: str, prefix: str) -> dict[str, str]:
        """
        Map every blob path under ``prefix`` in ``commit`` to its SHA.
        """
        raw = self.run_bytes(["ls-tree", "-r", "-z", "--full-tree", commit, "--", prefix])
        files: dict[str, str] = {}
        for record in raw.split(b"\0"):
            if not record:
                continue
            meta, _, path = record.partition(b"\t")
            _mode, obj_type, sha = meta.decode("ascii").split()
            if obj_type == "blob":
                files[path.decode("utf-8", errors="surrogateescape")] = sha
        return files

    def read_blob(self, sha: str) -> bytes:
        return self.run_bytes(["cat-file", "blob", sha])

    def hash_object(self, content: str | bytes) -> str:
        """Store content as a blob and return its SHA."""
        return self.run(["hash-object", "-w", "--no-filters", "--stdin"], input_data=content)

    def hash_files(self, paths: list[Path], *, write: bool) -> list[str]:
        """Hash files on disk (optionally storing them), in order."""
        if not paths:
            return []
        args = ["hash-object", "--no-filters", "--stdin-paths"]
        if write:
            args.insert(1, "-w")
        output = self.run(args, input_data="".join(f"{p}\n" for p in paths))
        return output.splitlines()

    def update_index(self, blobs: Mapping[str, str]) -> None:
        """Add or replace index entries (path -> blob SHA) in the current index."""
        if not blobs:
            return
        payload = "".join(f"100644 {sha}\t{path}\0" for path, sha in sorted(blobs.items()))
        self.run(["update-index", "-z", "--index-info"], input_data=payload)

    def commit_tree(self, tree: str, parents: list[str], message: str) -> str:
        args = ["commit-tree", tree]
        for parent in parents:
            args += ["-p", parent]
        return self.run(args + ["-m", message])

    def update_ref(self, ref: str, new: str, old: str | None, reason: str) -> None:
        """
        Compare-and-swap a ref.

        ``old=None`` requires that the ref does not exist yet.

        Raises:
            GitError: If the ref no longer has the expected value.
        """
        self.run(["update-ref", "-m", reason, ref, new, old or ""])

    def diff_name_status(self, old: str, new: str, prefix: str) -> list[tuple[str, str]]:
        """``(status letter, path)`` pairs for blobs changed under ``prefix``."""
        raw = self.run_bytes(
            ["diff", "--name-status", "--no-renames", "-z", old, new, "--", prefix]
        )
        fields = [f.decode("utf-8", errors="surrogateescape") for f in raw.split(b"\0") if f]
        return [(fields[i][:1], fields[i + 1]) for i in range(0, len(fields) - 1, 2)]

    def push_branch(self) -> subprocess.CompletedProcess[bytes]:
        """
        Push the local sync branch without force.

        Returns the completed process so the caller can tell a lost race
        (non-fast-forward) from a network failure.
        """
        ctx = self.ctx
        return self.execute(["push", ctx.remote, f"{ctx.local_ref}:{ctx.local_ref}"])
