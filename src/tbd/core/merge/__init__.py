"""
Three-way merge engine for issues.

Example:
    >>> from tbd.core.merge import merge_issues
    >>> result = merge_issues(base, local, remote)
    >>> for conflict in result.conflicts:
    ...     attic.record(conflict.to_attic_entry())
"""

from tbd.core.merge.engine import (
    SCALAR_FIELDS,
    SET_FIELDS,
    FieldConflict,
    MergeResult,
    merge_issues,
    merge_set,
    pick_winner,
)

__all__ = [
    "SCALAR_FIELDS",
    "SET_FIELDS",
    "FieldConflict",
    "MergeResult",
    "merge_issues",
    "merge_set",
    "pick_winner",
]
