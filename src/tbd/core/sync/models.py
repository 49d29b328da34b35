"""
Data models for the sync service.

Defines Pydantic models for sync state, tallies, summaries and status,
plus the ``SyncError`` raised when a sync cannot complete.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from tbd.core.attic.models import AtticEntry


class SyncPhase(str, Enum):
    """Step of the sync protocol a failure happened in."""

    COMMIT = "commit"
    FETCH = "fetch"
    MERGE = "merge"
    PUSH = "push"


class SyncError(Exception):
    """
    Raised when a sync cannot complete.

    ``retryable`` is True when running sync again later may succeed (network
    trouble, a remote that kept moving). Local commits are kept either way.
    """

    def __init__(self, phase: SyncPhase, message: str, *, retryable: bool = False):
        super().__init__(message)
        self.phase = phase
        self.retryable = retryable

    def __str__(self) -> str:
        return f"{self.phase.value} failed: {super().__str__()}"


class SyncStatus(str, Enum):
    """Status of sync branch relative to remote."""

    UP_TO_DATE = "up_to_date"
    AHEAD = "ahead"
    BEHIND = "behind"
    DIVERGED = "diverged"
    NO_REMOTE = "no_remote"
    UNINITIALIZED = "uninitialized"


class SyncState(BaseModel):
    """
    Persistent sync state stored in `.tbd/.sync-state.json`.

    Example:
        >>> state = SyncState(branch_name="tbd-sync")
        >>> state.mark_synced("abc123")
        >>> state.has_unpushed_changes()
        True
    """

    branch_name: str = Field(
        default="tbd-sync",
        description="Name of the sync branch",
    )

    remote_name: str = Field(
        default="origin",
        description="Name of the remote to sync with",
    )

    last_commit_sha: str | None = Field(
        default=None,
        description="Local sync branch tip after the last sync",
    )

    last_sync_at: datetime | None = Field(
        default=None,
        description="Timestamp of the last sync",
    )

    last_push_sha: str | None = Field(
        default=None,
        description="SHA of the last pushed commit",
    )

    last_push_at: datetime | None = Field(
        default=None,
        description="Timestamp of the last push",
    )

    def has_unpushed_changes(self) -> bool:
        """Check if there are local commits not pushed to remote."""
        if self.last_commit_sha is None:
            return False
        return self.last_commit_sha != self.last_push_sha

    def mark_synced(self, commit_sha: str) -> None:
        """Update state after the local branch was brought up to date."""
        self.last_commit_sha = commit_sha
        self.last_sync_at = datetime.now()

    def mark_pushed(self, commit_sha: str) -> None:
        """Update state after a successful push."""
        self.last_commit_sha = commit_sha
        self.last_push_sha = commit_sha
        self.last_push_at = datetime.now()


class SyncTallies(BaseModel):
    """Counts of record files created, modified and removed in one direction."""

    new: int = 0
    updated: int = 0
    deleted: int = 0

    @property
    def total(self) -> int:
        return self.new + self.updated + self.deleted

    def is_empty(self) -> bool:
        return self.total == 0

    def add(self, other: SyncTallies) -> SyncTallies:
        return SyncTallies(
            new=self.new + other.new,
            updated=self.updated + other.updated,
            deleted=self.deleted + other.deleted,
        )

    def format(self) -> str:
        """
        Example:
            >>> SyncTallies(new=1, updated=2).format()
            '1 new, 2 updated'
        """
        parts = []
        if self.new:
            parts.append(f"{self.new} new")
        if self.updated:
            parts.append(f"{self.updated} updated")
        if self.deleted:
            parts.append(f"{self.deleted} deleted")
        return ", ".join(parts)


class SyncSummary(BaseModel):
    """
    Result of a sync, pull or push.

    ``sent`` counts record changes the push delivered to the remote;
    ``received`` counts record changes merged into the local branch, summed
    over every attempt.
    """

    sent: SyncTallies = Field(default_factory=SyncTallies)
    received: SyncTallies = Field(default_factory=SyncTallies)

    attic_entries: list[AtticEntry] = Field(
        default_factory=list,
        description="Values archived while resolving conflicts",
    )

    attempts: int = Field(default=0, description="Fetch/merge/push rounds used")
    pushed: bool = Field(default=False, description="Whether a push succeeded")
    commit_sha: str | None = Field(default=None, description="Local tip when done")

    started_at: datetime | None = Field(default=None)
    completed_at: datetime | None = Field(default=None)

    @property
    def conflicts(self) -> int:
        return len(self.attic_entries)

    @property
    def duration_seconds(self) -> float | None:
        """Calculate operation duration in seconds."""
        if self.started_at and self.completed_at:
            delta = self.completed_at - self.started_at
            return delta.total_seconds()
        return None

    def format(self) -> str:
        """
        One-line human summary, empty when nothing moved.

        Example:
            >>> SyncSummary(sent=SyncTallies(new=1)).format()
            'sent 1 new'
        """
        parts = []
        if not self.sent.is_empty():
            parts.append(f"sent {self.sent.format()}")
        if not self.received.is_empty():
            parts.append(f"received {self.received.format()}")

        text = ", ".join(parts)
        if self.conflicts:
            noun = "conflict" if self.conflicts == 1 else "conflicts"
            suffix = f"({self.conflicts} {noun} resolved)"
            text = f"{text} {suffix}" if text else suffix
        return text


class SyncStatusReport(BaseModel):
    """Where the local sync branch stands against the remote."""

    status: SyncStatus
    branch: str
    remote: str
    ahead: int = 0
    behind: int = 0
    local_changes: SyncTallies = Field(
        default_factory=SyncTallies,
        description="Record changes in the working copy not yet committed",
    )
