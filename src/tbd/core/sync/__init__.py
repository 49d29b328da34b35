"""
Sync module for replicating issues through a git branch.

Example:
    >>> from tbd.core.sync import SyncService
    >>> service = SyncService(project_dir=Path("."))
    >>> summary = service.sync()
    >>> summary.format()
    'sent 1 new, received 2 updated (1 conflict resolved)'
"""

from tbd.core.sync.git import (
    Failed,
    Found,
    GitContext,
    GitError,
    GitRunner,
    NotFound,
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
from tbd.core.sync.service import SyncService

__all__ = [
    "Failed",
    "Found",
    "GitContext",
    "GitError",
    "GitRunner",
    "NotFound",
    "SyncError",
    "SyncPhase",
    "SyncService",
    "SyncState",
    "SyncStatus",
    "SyncStatusReport",
    "SyncSummary",
    "SyncTallies",
    "is_non_fast_forward",
    "isolated_index",
]
