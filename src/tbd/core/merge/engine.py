"""
Field-level three-way merge for issues.

Each field is merged independently against the common ancestor:

- Set fields (``labels``, ``dependencies``) merge as an observed-remove set:
  anything either side added is kept, anything in the base is kept only if
  both sides kept it. An add always beats a concurrent remove, and these
  fields never conflict.
- Scalar fields take whichever side changed. If both changed to different
  values, the side with the higher version wins (then the later
  ``updated_at``), and the losing value is returned as a ``FieldConflict`` to
  be archived in the attic.
- ``version`` becomes ``max(local, remote) + 1`` and ``updated_at`` the merge
  time, so a merged record always dominates both of its parents.

The merge is a pure function of its inputs (plus ``now``): no I/O, no hidden
state, the same inputs always give the same output and the same conflicts.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from tbd.core.attic.models import AtticContext, AtticEntry, ConflictSource
from tbd.core.records.models import Issue, IssueStatus
from tbd.core.timestamps import format_timestamp, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

IMMUTABLE_FIELDS = ("type", "id", "created_at", "created_by")
SET_FIELDS = ("labels", "dependencies")
SCALAR_FIELDS = (
    "title",
    "kind",
    "status",
    "priority",
    "assignee",
    "description",
    "notes",
    "due_date",
    "deferred_until",
    "parent_id",
    "close_reason",
    "closed_at",
)
CLOSE_FIELDS = ("closed_at", "close_reason")


@dataclass(frozen=True)
class FieldConflict:
    """A scalar field both sides changed to different values."""

    issue_id: str
    field: str
    timestamp: str
    winner: ConflictSource
    winner_value: Any
    lost_value: Any
    local_version: int
    remote_version: int
    local_updated_at: str
    remote_updated_at: str

    @property
    def loser(self) -> ConflictSource:
        return self.winner.other

    def to_attic_entry(self) -> AtticEntry:
        return AtticEntry(
            entity_id=self.issue_id,
            timestamp=self.timestamp,
            field=self.field,
            lost_value=self.lost_value,
            winner_source=self.winner,
            loser_source=self.loser,
            context=AtticContext(
                local_version=self.local_version,
                remote_version=self.remote_version,
                local_updated_at=self.local_updated_at,
                remote_updated_at=self.remote_updated_at,
            ),
        )


@dataclass
class MergeResult:
    """Outcome of merging one issue."""

    merged: Issue
    conflicts: list[FieldConflict] = field(default_factory=list)

    def attic_entries(self) -> list[AtticEntry]:
        return [conflict.to_attic_entry() for conflict in self.conflicts]


def _canonical(data: dict[str, Any]) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"))


def pick_winner(local: Issue, remote: Issue) -> ConflictSource:
    """
    Decide which side wins scalar conflicts.

    Higher version wins, then later ``updated_at``. A full tie is broken by
    comparing the canonical serialized records, which both replicas compute
    identically, so two clones merging the same pair agree on the winner.
    """
    if local.version != remote.version:
        return ConflictSource.LOCAL if local.version > remote.version else ConflictSource.REMOTE
    if local.updated_at != remote.updated_at:
        return (
            ConflictSource.LOCAL if local.updated_at > remote.updated_at else ConflictSource.REMOTE
        )
    local_key = _canonical(local.model_dump(mode="json"))
    remote_key = _canonical(remote.model_dump(mode="json"))
    return ConflictSource.LOCAL if local_key >= remote_key else ConflictSource.REMOTE


def _freeze(value: Any) -> Any:
    if isinstance(value, dict):
        return tuple(sorted((k, _freeze(v)) for k, v in value.items()))
    return value


def merge_set(base: list[Any] | None, local: list[Any], remote: list[Any]) -> list[Any]:
    """
    Observed-remove set merge.

    Returns elements added on either side plus base elements both sides kept,
    in a deterministic order.
    """
    by_key: dict[Any, Any] = {}
    for item in [*(base or []), *local, *remote]:
        by_key.setdefault(_freeze(item), item)

    base_keys = {_freeze(item) for item in base or []}
    local_keys = {_freeze(item) for item in local}
    remote_keys = {_freeze(item) for item in remote}

    added = (local_keys - base_keys) | (remote_keys - base_keys)
    kept = added | (base_keys & local_keys & remote_keys)
    return [by_key[key] for key in sorted(kept, key=repr)]


def _merge_extensions(
    base: dict[str, Any] | None,
    local: dict[str, Any],
    remote: dict[str, Any],
    winner: ConflictSource,
) -> dict[str, Any]:
    base = base or {}
    merged: dict[str, Any] = {}
    for namespace in sorted(set(local) | set(remote)):
        if namespace not in remote:
            merged[namespace] = local[namespace]
        elif namespace not in local:
            merged[namespace] = remote[namespace]
        else:
            lv, rv, bv = local[namespace], remote[namespace], base.get(namespace)
            if lv == rv or rv == bv:
                merged[namespace] = lv
            elif lv == bv:
                merged[namespace] = rv
            else:
                merged[namespace] = lv if winner is ConflictSource.LOCAL else rv
    return merged


def merge_issues(
    base: Issue | None,
    local: Issue,
    remote: Issue,
    *,
    now: datetime | None = None,
) -> MergeResult:
    """
    Three-way merge of one issue.

    Args:
        base: Common ancestor, or None when the issue has no shared history
            (treated as a baseline with every field unset).
        local: Local version.
        remote: Remote version.
        now: Merge time (defaults to the current time).

    Returns:
        MergeResult with the merged issue and the scalar conflicts, one per
        losing value.

    Raises:
        ValueError: If local and remote are different issues.

    Example:
        >>> result = merge_issues(base, local, remote)
        >>> result.merged.version > max(local.version, remote.version)
        True
    """
    if local.id != remote.id:
        raise ValueError(f"Cannot merge different issues: {local.id} and {remote.id}")

    if local == remote:
        return MergeResult(merged=local)

    merge_time = parse_timestamp(now) if now is not None else utc_now()
    timestamp = format_timestamp(merge_time)

    base_d = base.model_dump(mode="json") if base is not None else {}
    local_d = local.model_dump(mode="json")
    remote_d = remote.model_dump(mode="json")

    winner = pick_winner(local, remote)
    conflicts: list[FieldConflict] = []

    def conflict(name: str, lost: Any, kept: Any, winning: ConflictSource) -> None:
        conflicts.append(
            FieldConflict(
                issue_id=local.id,
                field=name,
                timestamp=timestamp,
                winner=winning,
                winner_value=kept,
                lost_value=lost,
                local_version=local.version,
                remote_version=remote.version,
                local_updated_at=local_d["updated_at"],
                remote_updated_at=remote_d["updated_at"],
            )
        )

    merged: dict[str, Any] = {}

    # Immutable: base if known, else the earliest creator
    creator = local_d if local_d["created_at"] <= remote_d["created_at"] else remote_d
    for name in IMMUTABLE_FIELDS:
        merged[name] = base_d[name] if name in base_d else creator[name]

    for name in SCALAR_FIELDS:
        lv, rv, bv = local_d.get(name), remote_d.get(name), base_d.get(name)
        if lv == rv or rv == bv:
            merged[name] = lv
        elif lv == bv:
            merged[name] = rv
        else:
            kept, lost = (lv, rv) if winner is ConflictSource.LOCAL else (rv, lv)
            merged[name] = kept
            conflict(name, lost, kept, winner)

    for name in SET_FIELDS:
        merged[name] = merge_set(base_d.get(name), local_d[name], remote_d[name])

    merged["extensions"] = _merge_extensions(
        base_d.get("extensions"), local_d["extensions"], remote_d["extensions"], winner
    )

    # A reopened issue cannot carry close metadata; archive it instead
    if merged["status"] != IssueStatus.CLOSED.value:
        status_source = (
            ConflictSource.LOCAL if merged["status"] == local_d["status"] else ConflictSource.REMOTE
        )
        for name in CLOSE_FIELDS:
            if merged[name] is not None:
                # One side is open, so a scalar conflict on this field lost None
                conflicts[:] = [c for c in conflicts if c.field != name]
                conflict(name, merged[name], None, status_source)
                merged[name] = None
    elif merged["closed_at"] is None:
        merged["closed_at"] = timestamp

    merged["version"] = max(local.version, remote.version) + 1
    merged["updated_at"] = timestamp

    result = MergeResult(merged=Issue.model_validate(merged), conflicts=conflicts)
    if conflicts:
        logger.info(
            "Merged %s with %d conflict(s): %s",
            local.id,
            len(conflicts),
            ", ".join(c.field for c in conflicts),
        )
    return result
