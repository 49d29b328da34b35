"""
Git-based issue synchronization service.

Replicates ``.tbd/data-sync/`` through a dedicated sync branch without
touching the user's checkout:

1. Commit local edits to the sync branch inside an isolated index.
2. Fetch the remote sync branch.
3. Fast-forward, or three-way merge each record that changed on both sides
   and archive every losing value in the attic.
4. Push without force. If another writer got there first, fetch, merge and
   try again, up to ``sync.max_push_retries`` times.

Every ref move is a compare-and-swap ``update-ref``, made only once the new
commit is fully built, so a failure at any step leaves the branch where it
was.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime
from pathlib import Path

from tbd.core.attic.models import AtticEntry
from tbd.core.attic.store import dump_entry, entry_filename
from tbd.core.config.loader import load_config
from tbd.core.config.models import SyncConfig, TbdConfig
from tbd.core.merge.engine import merge_issues
from tbd.core.paths import (
    ATTIC_DIR,
    DATA_SYNC_DIR,
    ISSUES_DIR,
    data_sync_dir,
    is_issue_path,
    state_path,
    tree_path,
)
from tbd.core.records.models import Issue
from tbd.core.records.store import RecordParseError, parse_issue, serialize_issue
from tbd.core.sync.git import (
    Failed,
    Found,
    GitContext,
    GitError,
    GitRunner,
    is_non_fast_forward,
    isolated_index,
)
from tbd.core.sync.models import (
    SyncError,
    SyncPhase,
    SyncState,
    SyncStatus,
    SyncStatusReport,
    SyncSummary,
    SyncTallies,
)
from tbd.core.timestamps import utc_now

logger = logging.getLogger(__name__)


class SyncService:
    """
    Service for syncing issues through the sync branch.

    Example:
        >>> service = SyncService(project_dir=Path("."))
        >>> summary = service.sync()
        >>> print(summary.format() or "Already in sync")
    """

    def __init__(
        self,
        project_dir: Path | None = None,
        config: TbdConfig | None = None,
        git_timeout: float | None = None,
    ) -> None:
        """
        Initialize the sync service.

        Args:
            project_dir: Directory containing ``.tbd/``. Defaults to the
                current working directory.
            config: Loaded configuration. Read from the project when omitted.
            git_timeout: Optional per-command timeout in seconds.
        """
        self.project_dir = (project_dir or Path.cwd()).resolve()
        self.config = config or load_config(self.project_dir)
        self.git_timeout = git_timeout
        self._context: GitContext | None = None
        self._state: SyncState | None = None

    @property
    def sync_config(self) -> SyncConfig:
        return self.config.sync

    @property
    def context(self) -> GitContext:
        """
        Git context for the project repository.

        Raises:
            GitError: If the project is not inside a git repository.
        """
        if self._context is None:
            self._context = GitContext.discover(
                self.project_dir,
                remote=self.sync_config.remote,
                branch=self.sync_config.branch,
            )
        return self._context

    @property
    def data_dir(self) -> Path:
        return data_sync_dir(self.project_dir)

    @property
    def state_file_path(self) -> Path:
        """Full path to the sync state file."""
        return state_path(self.project_dir)

    def _git(self, ctx: GitContext | None = None) -> GitRunner:
        return GitRunner(ctx or self.context, timeout=self.git_timeout)

    # State

    def _load_state(self) -> SyncState:
        """Load sync state from file or return default state."""
        if self._state is not None:
            return self._state

        if self.state_file_path.exists():
            try:
                content = self.state_file_path.read_text(encoding="utf-8")
                self._state = SyncState.model_validate_json(content)
                return self._state
            except (json.JSONDecodeError, ValueError) as e:
                logger.warning("Failed to load sync state: %s", e)

        self._state = SyncState(
            branch_name=self.sync_config.branch,
            remote_name=self.sync_config.remote,
        )
        return self._state

    def _save_state(self, state: SyncState) -> None:
        """Save sync state to file atomically."""
        self._state = state
        self.state_file_path.parent.mkdir(parents=True, exist_ok=True)

        temp_path = self.state_file_path.with_suffix(".tmp")
        try:
            temp_path.write_text(state.model_dump_json(indent=2), encoding="utf-8")
            temp_path.replace(self.state_file_path)
        except OSError:
            if temp_path.exists():
                temp_path.unlink()
            raise

    def get_state(self) -> SyncState:
        return self._load_state()

    # Working copy

    def _working_files(self) -> dict[str, Path]:
        """Tree path -> file for everything in the materialized data dir."""
        root = self.data_dir
        if not root.is_dir():
            return {}
        files: dict[str, Path] = {}
        for path in sorted(root.rglob("*")):
            if path.is_file() and not path.name.endswith(".tmp"):
                files[tree_path(path.relative_to(root).as_posix())] = path
        return files

    def _hash_working_copy(self, git: GitRunner, *, write: bool) -> dict[str, str]:
        files = self._working_files()
        shas = git.hash_files(list(files.values()), write=write)
        return dict(zip(files, shas))

    def _pending_changes(
        self, git: GitRunner, tip: str | None, *, write: bool
    ) -> tuple[dict[str, str], dict[str, str]]:
        """
        Working-copy files that differ from the sync branch tip.

        Files missing from the working copy are not treated as deletions:
        records are never removed, and the next materialization restores them.

        Returns:
            ``(changed path -> blob SHA, tip path -> blob SHA)``
        """
        tip_files = git.list_tree(tip, DATA_SYNC_DIR) if tip else {}
        working = self._hash_working_copy(git, write=write)

        missing = [path for path in tip_files if path not in working]
        if missing:
            logger.warning(
                "%d file(s) missing from %s; restoring them from the sync branch",
                len(missing),
                self.data_dir,
            )

        changes = {path: sha for path, sha in working.items() if tip_files.get(path) != sha}
        return changes, tip_files

    def _materialize(self, git: GitRunner, commit: str) -> int:
        """
        Write the data files of ``commit`` into the working copy.

        Only files whose content differs are rewritten, each atomically.

        Returns:
            Number of files written.
        """
        target_files = git.list_tree(commit, DATA_SYNC_DIR)
        working = self._hash_working_copy(git, write=False)

        written = 0
        for path, sha in sorted(target_files.items()):
            if working.get(path) == sha:
                continue
            target = self.project_dir / path
            target.parent.mkdir(parents=True, exist_ok=True)
            temp_path = target.with_name(target.name + ".tmp")
            temp_path.write_bytes(git.read_blob(sha))
            temp_path.replace(target)
            written += 1

        if written:
            logger.info("Materialized %d file(s) from %s", written, commit[:8])
        return written

    # Refs

    def _local_tip(self, git: GitRunner, phase: SyncPhase) -> str | None:
        lookup = git.resolve_ref(self.context.local_ref)
        if isinstance(lookup, Found):
            return lookup.value
        if isinstance(lookup, Failed):
            raise SyncError(phase, str(lookup.error)) from lookup.error
        return None

    def is_initialized(self) -> bool:
        """True once the local sync branch exists."""
        git = self._git()
        return isinstance(git.resolve_ref(self.context.local_ref), Found)

    def _tally_between(self, git: GitRunner, old: str | None, new: str) -> SyncTallies:
        """Record files added, modified and removed going from ``old`` to ``new``."""
        prefix = tree_path(ISSUES_DIR)
        if old is None:
            records = [path for path in git.list_tree(new, prefix) if is_issue_path(path)]
            return SyncTallies(new=len(records))
        if old == new:
            return SyncTallies()

        tallies = SyncTallies()
        for status, path in git.diff_name_status(old, new, prefix):
            if not is_issue_path(path):
                continue
            if status == "A":
                tallies.new += 1
            elif status == "D":
                tallies.deleted += 1
            else:
                tallies.updated += 1
        return tallies

    # Commit

    def commit_local(self, message: str | None = None) -> str | None:
        """
        Commit working-copy changes to the local sync branch.

        Creates the branch with a root commit the first time.

        Returns:
            The new commit SHA, or None if nothing changed.

        Raises:
            SyncError: (phase COMMIT) if any git step fails. The branch is
                left unchanged.
        """
        git = self._git()
        ctx = self.context
        try:
            tip = self._local_tip(git, SyncPhase.COMMIT)
            changes, tip_files = self._pending_changes(git, tip, write=True)
            if not changes:
                logger.debug("No local changes to commit")
                return None

            with isolated_index(ctx) as index_ctx:
                index_git = self._git(index_ctx)
                index_git.run(["read-tree", tip] if tip else ["read-tree", "--empty"])
                index_git.update_index(changes)
                tree = index_git.run(["write-tree"])
                commit = index_git.commit_tree(
                    tree,
                    [tip] if tip else [],
                    message or f"tbd: record {len(changes)} local change(s)",
                )
                index_git.update_ref(ctx.local_ref, commit, tip, reason="tbd: commit local changes")
        except GitError as e:
            raise SyncError(SyncPhase.COMMIT, f"Failed to commit local changes: {e}") from e

        new_files = sum(1 for path in changes if path not in tip_files)
        logger.info(
            "Committed %d new and %d modified file(s) to %s (%s)",
            new_files,
            len(changes) - new_files,
            ctx.branch,
            commit[:8],
        )
        return commit

    # Merge

    def _load_issue(self, git: GitRunner, path: str, sha: str) -> Issue:
        return parse_issue(git.read_blob(sha).decode("utf-8"), source=f"{path}@{sha[:8]}")

    def _merge_diverged(
        self, git: GitRunner, local_sha: str, remote_sha: str
    ) -> tuple[str, list[AtticEntry]]:
        """
        Build and install a merge commit for two diverged tips.

        Returns:
            ``(merge commit SHA, archived conflict entries)``
        """
        ctx = self.context

        base_lookup = git.merge_base(local_sha, remote_sha)
        if isinstance(base_lookup, Failed):
            raise base_lookup.error
        base_sha = base_lookup.value if isinstance(base_lookup, Found) else None

        local_files = git.list_tree(local_sha, DATA_SYNC_DIR)
        remote_files = git.list_tree(remote_sha, DATA_SYNC_DIR)
        base_files = git.list_tree(base_sha, DATA_SYNC_DIR) if base_sha else {}
        now = utc_now()

        updates: dict[str, str] = {}
        entries: list[AtticEntry] = []

        # Paths only present locally are already in the index via read-tree
        for path, remote_blob in sorted(remote_files.items()):
            local_blob = local_files.get(path)
            if local_blob == remote_blob:
                continue
            if local_blob is None:
                updates[path] = remote_blob
                continue
            if not is_issue_path(path):
                logger.debug("Keeping local copy of %s", path)
                continue

            base_blob = base_files.get(path)
            if base_blob == local_blob:
                updates[path] = remote_blob
                continue
            if base_blob == remote_blob:
                continue

            base = self._load_issue(git, path, base_blob) if base_blob else None
            result = merge_issues(
                base,
                self._load_issue(git, path, local_blob),
                self._load_issue(git, path, remote_blob),
                now=now,
            )
            merged_blob = git.hash_object(serialize_issue(result.merged))
            if merged_blob != local_blob:
                updates[path] = merged_blob

            for entry in result.attic_entries():
                attic_path = tree_path(f"{ATTIC_DIR}/{entry_filename(entry)}")
                updates[attic_path] = git.hash_object(dump_entry(entry))
                entries.append(entry)

        with isolated_index(ctx) as index_ctx:
            index_git = self._git(index_ctx)
            index_git.run(["read-tree", local_sha])
            index_git.update_index(updates)
            tree = index_git.run(["write-tree"])
            commit = index_git.commit_tree(
                tree, [local_sha, remote_sha], f"tbd: merge {ctx.remote}/{ctx.branch}"
            )
            index_git.update_ref(ctx.local_ref, commit, local_sha, reason="tbd: merge")

        if entries:
            logger.info("Resolved %d field conflict(s) into the attic", len(entries))
        return commit, entries

    def _integrate(self, git: GitRunner, remote_sha: str) -> tuple[SyncTallies, list[AtticEntry]]:
        """
        Bring the remote tip into the local sync branch.

        Returns:
            ``(record changes received, archived conflict entries)``

        Raises:
            SyncError: (phase MERGE) if a git step fails or a record cannot
                be parsed. The branch is left unchanged.
        """
        ctx = self.context
        entries: list[AtticEntry] = []
        try:
            local_sha = self._local_tip(git, SyncPhase.MERGE)
            if local_sha == remote_sha:
                return SyncTallies(), entries

            if local_sha is None:
                git.update_ref(ctx.local_ref, remote_sha, None, reason="tbd: create from remote")
                logger.info("Created %s from %s/%s", ctx.branch, ctx.remote, ctx.branch)
                new_tip = remote_sha
            else:
                behind = git.count_commits(f"{local_sha}..{remote_sha}")
                if behind == 0:
                    return SyncTallies(), entries
                ahead = git.count_commits(f"{remote_sha}..{local_sha}")
                if ahead == 0:
                    git.update_ref(ctx.local_ref, remote_sha, local_sha, reason="tbd: fast-forward")
                    logger.info("Fast-forwarded %s by %d commit(s)", ctx.branch, behind)
                    new_tip = remote_sha
                else:
                    logger.info(
                        "Sync branch diverged (%d ahead, %d behind), merging", ahead, behind
                    )
                    new_tip, entries = self._merge_diverged(git, local_sha, remote_sha)

            received = self._tally_between(git, local_sha, new_tip)
            self._materialize(git, new_tip)
        except (GitError, RecordParseError) as e:
            raise SyncError(SyncPhase.MERGE, f"Failed to merge remote changes: {e}") from e
        except OSError as e:
            raise SyncError(SyncPhase.MERGE, f"Failed to update {self.data_dir}: {e}") from e

        return received, entries

    # Orchestration

    def _run(self, *, fetch_first: bool, push: bool, force: bool) -> SyncSummary:
        summary = SyncSummary(started_at=datetime.now())
        git = self._git()
        ctx = self.context
        state = self._load_state()

        self.commit_local()

        max_attempts = self.sync_config.max_push_retries
        delay_ms = float(self.sync_config.retry_delay_ms)
        last_phase = SyncPhase.PUSH
        last_error = ""

        for attempt in range(1, max_attempts + 1):
            summary.attempts = attempt

            if fetch_first or attempt > 1:
                fetched = git.fetch_branch()
                if isinstance(fetched, Failed):
                    last_phase, last_error = SyncPhase.FETCH, str(fetched.error)
                    logger.warning(
                        "Fetch failed (attempt %d/%d): %s", attempt, max_attempts, last_error
                    )
                    if attempt < max_attempts:
                        time.sleep(delay_ms / 1000)
                        delay_ms *= self.sync_config.retry_backoff
                    continue
                remote_sha = fetched.value if isinstance(fetched, Found) else None
                if remote_sha is not None:
                    received, entries = self._integrate(git, remote_sha)
                    summary.received = summary.received.add(received)
                    summary.attic_entries.extend(entries)
            else:
                tracking = git.resolve_ref(ctx.remote_ref)
                remote_sha = tracking.value if isinstance(tracking, Found) else None

            if not push:
                break

            local_sha = self._local_tip(git, SyncPhase.PUSH)
            if local_sha is None:
                logger.info("Nothing to push: %s has no commits yet", ctx.branch)
                break
            if local_sha == remote_sha and not force:
                logger.debug("Remote already at %s, skipping push", local_sha[:8])
                break

            try:
                sent = self._tally_between(git, remote_sha, local_sha)
            except GitError as e:
                raise SyncError(SyncPhase.PUSH, f"Failed to compare with remote: {e}") from e

            result = git.push_branch()
            if result.returncode == 0:
                summary.sent = sent
                summary.pushed = True
                try:
                    git.run(["update-ref", ctx.remote_ref, local_sha])
                except GitError as e:
                    logger.warning("Could not update %s: %s", ctx.remote_ref, e)
                state.mark_pushed(local_sha)
                logger.info("Pushed %s to %s (%s)", ctx.branch, ctx.remote, local_sha[:8])
                break

            last_phase = SyncPhase.PUSH
            last_error = result.stderr.decode("utf-8", errors="replace").strip()
            if is_non_fast_forward(last_error):
                logger.info(
                    "Push rejected, remote moved (attempt %d/%d)", attempt, max_attempts
                )
            else:
                logger.warning("Push failed (attempt %d/%d): %s", attempt, max_attempts, last_error)
                if attempt < max_attempts:
                    time.sleep(delay_ms / 1000)
                    delay_ms *= self.sync_config.retry_backoff
        else:
            raise SyncError(
                last_phase,
                f"Giving up after {max_attempts} attempt(s): {last_error}",
                retryable=True,
            )

        tip = self._local_tip(git, SyncPhase.MERGE)
        if tip is not None:
            try:
                self._materialize(git, tip)
            except (GitError, OSError) as e:
                raise SyncError(SyncPhase.MERGE, f"Failed to update {self.data_dir}: {e}") from e
            if not summary.pushed:
                state.mark_synced(tip)
            self._save_state(state)

        summary.commit_sha = tip
        summary.completed_at = datetime.now()
        return summary

    def sync(self, force: bool = False) -> SyncSummary:
        """
        Full sync: commit local changes, fetch, merge, push with retry.

        Args:
            force: Push even when the remote already has the local tip.

        Raises:
            SyncError: If a step fails or the retries are exhausted.
                Resolved conflicts are not errors; see ``attic_entries``.
        """
        return self._run(fetch_first=True, push=True, force=force)

    def pull(self) -> SyncSummary:
        """Commit local changes, fetch and merge, without pushing."""
        return self._run(fetch_first=True, push=False, force=False)

    def push(self, force: bool = False) -> SyncSummary:
        """
        Commit local changes and push.

        Fetches and merges only when the push is rejected.
        """
        return self._run(fetch_first=False, push=True, force=force)

    def get_status(self, fetch: bool = True) -> SyncStatusReport:
        """
        Compare the local sync branch with the remote.

        Args:
            fetch: Refresh the remote-tracking ref first. When False the last
                fetched state is used.

        Raises:
            GitError: If the repository cannot be inspected.
        """
        git = self._git()
        ctx = self.context
        report = SyncStatusReport(
            status=SyncStatus.UNINITIALIZED, branch=ctx.branch, remote=ctx.remote
        )

        lookup = git.resolve_ref(ctx.local_ref)
        if isinstance(lookup, Failed):
            raise lookup.error
        local_sha = lookup.value if isinstance(lookup, Found) else None

        changes, tip_files = self._pending_changes(git, local_sha, write=False)
        for path in changes:
            if not is_issue_path(path):
                continue
            if path in tip_files:
                report.local_changes.updated += 1
            else:
                report.local_changes.new += 1

        if local_sha is None:
            return report

        if fetch:
            remote = git.fetch_branch()
            if isinstance(remote, Failed):
                logger.warning("Failed to fetch remote: %s", remote.error)
        else:
            remote = git.resolve_ref(ctx.remote_ref)

        if not isinstance(remote, Found):
            report.status = SyncStatus.NO_REMOTE
            return report

        report.ahead = git.count_commits(f"{remote.value}..{local_sha}")
        report.behind = git.count_commits(f"{local_sha}..{remote.value}")
        if report.ahead and report.behind:
            report.status = SyncStatus.DIVERGED
        elif report.ahead:
            report.status = SyncStatus.AHEAD
        elif report.behind:
            report.status = SyncStatus.BEHIND
        else:
            report.status = SyncStatus.UP_TO_DATE
        return report
