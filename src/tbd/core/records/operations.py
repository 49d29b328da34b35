"""
User-level mutations on issues.

Every mutation reads the current record, applies the change as a single
version bump via ``Issue.with_changes`` and writes it back. Changes that do
not alter anything are not written and do not bump the version.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from tbd.core.ids import generate_issue_id, resolve_issue_id
from tbd.core.records.models import Dependency, DependencyType, Issue, IssueKind, IssueStatus
from tbd.core.records.store import RecordNotFoundError, RecordStore
from tbd.core.timestamps import utc_now

logger = logging.getLogger(__name__)


def resolve(store: RecordStore, ref: str) -> str:
    """
    Resolve user input (full ID, ULID or unique prefix) to an issue ID.

    Raises:
        RecordNotFoundError: If nothing matches.
        AmbiguousIdError: If the prefix matches several issues.
    """
    issue_id = resolve_issue_id(ref, store.ids())
    if issue_id is None:
        raise RecordNotFoundError(ref)
    return issue_id


def create_issue(
    store: RecordStore,
    title: str,
    *,
    kind: IssueKind = IssueKind.TASK,
    priority: int = 2,
    description: str | None = None,
    labels: Iterable[str] = (),
    assignee: str | None = None,
    parent_id: str | None = None,
    created_by: str | None = None,
    now: datetime | None = None,
) -> Issue:
    """
    Create and store a new issue at version 1.

    Raises:
        pydantic.ValidationError: If any field is invalid.
        RecordWriteError: If the file cannot be written.
    """
    timestamp = now or utc_now()
    issue = Issue(
        id=generate_issue_id(),
        kind=kind,
        title=title,
        description=description or None,
        priority=priority,
        labels=list(labels),
        assignee=assignee,
        parent_id=parent_id,
        created_by=created_by,
        created_at=timestamp,
        updated_at=timestamp,
    )
    store.put(issue)
    logger.info("Created issue %s", issue.id)
    return issue


def _apply(store: RecordStore, issue_id: str, **changes: Any) -> Issue:
    current = store.get(issue_id)
    updated = current.with_changes(**changes)
    if updated is not current:
        store.put(updated)
        logger.info("Updated issue %s to version %d", issue_id, updated.version)
    return updated


def update_issue(store: RecordStore, issue_id: str, **changes: Any) -> Issue:
    """
    Apply arbitrary field changes as one mutation.

    Setting ``status`` to anything but closed also clears ``closed_at`` and
    ``close_reason``.
    """
    status = changes.get("status")
    if status is not None and IssueStatus(status) != IssueStatus.CLOSED:
        changes.setdefault("closed_at", None)
        changes.setdefault("close_reason", None)
    elif status is not None:
        changes.setdefault("closed_at", store.get(issue_id).closed_at or utc_now())
    return _apply(store, issue_id, **changes)


def close_issue(store: RecordStore, issue_id: str, reason: str | None = None) -> Issue:
    return _apply(
        store,
        issue_id,
        status=IssueStatus.CLOSED,
        closed_at=utc_now(),
        close_reason=reason,
    )


def reopen_issue(store: RecordStore, issue_id: str) -> Issue:
    return _apply(
        store,
        issue_id,
        status=IssueStatus.OPEN,
        closed_at=None,
        close_reason=None,
    )


def add_labels(store: RecordStore, issue_id: str, labels: Iterable[str]) -> Issue:
    current = store.get(issue_id)
    return _apply(store, issue_id, labels=[*current.labels, *labels])


def remove_labels(store: RecordStore, issue_id: str, labels: Iterable[str]) -> Issue:
    current = store.get(issue_id)
    drop = {label.strip() for label in labels}
    return _apply(store, issue_id, labels=[lbl for lbl in current.labels if lbl not in drop])


def add_dependency(store: RecordStore, issue_id: str, target_id: str) -> Issue:
    """
    Record that ``issue_id`` blocks ``target_id``.

    Raises:
        RecordNotFoundError: If the target issue does not exist.
        pydantic.ValidationError: If the edge would be a self-dependency.
    """
    store.get(target_id)
    current = store.get(issue_id)
    edge = Dependency(type=DependencyType.BLOCKS, target=target_id)
    return _apply(store, issue_id, dependencies=[*current.dependencies, edge])


def remove_dependency(store: RecordStore, issue_id: str, target_id: str) -> Issue:
    current = store.get(issue_id)
    remaining = [dep for dep in current.dependencies if dep.target != target_id]
    return _apply(store, issue_id, dependencies=remaining)


def open_blockers(issues: Iterable[Issue]) -> dict[str, list[Issue]]:
    """
    Map each issue ID to the issues that block it and are not closed yet.

    An edge ``A blocks B`` is stored on A, so this is the reverse lookup.
    """
    blockers: dict[str, list[Issue]] = {}
    for issue in issues:
        if issue.is_closed:
            continue
        for dep in issue.dependencies:
            if dep.type == DependencyType.BLOCKS:
                blockers.setdefault(dep.target, []).append(issue)
    return blockers


def _by_priority(issue: Issue) -> tuple[int, datetime, str]:
    return (issue.priority, issue.created_at, issue.id)


def ready_issues(
    store: RecordStore,
    kind: IssueKind | None = None,
    label: str | None = None,
) -> list[Issue]:
    """
    Issues ready to work on, highest priority first.

    An issue is ready if:
    - Status is OPEN
    - Nobody is assigned
    - No open issue blocks it
    """
    issues = store.list_records()
    blockers = open_blockers(issues)

    ready = []
    for issue in issues:
        if issue.status != IssueStatus.OPEN or issue.assignee:
            continue
        if blockers.get(issue.id):
            continue
        if kind is not None and issue.kind != kind:
            continue
        if label is not None and label not in issue.labels:
            continue
        ready.append(issue)
    return sorted(ready, key=_by_priority)


def blocked_issues(store: RecordStore) -> list[tuple[Issue, list[Issue]]]:
    """
    Issues that cannot move, each with its open blockers.

    Covers non-closed issues that an open issue blocks, plus issues whose
    status is BLOCKED (their blocker list may be empty).
    """
    issues = store.list_records()
    blockers = open_blockers(issues)

    blocked = []
    for issue in issues:
        if issue.is_closed:
            continue
        waiting_on = blockers.get(issue.id, [])
        if waiting_on or issue.status == IssueStatus.BLOCKED:
            blocked.append((issue, waiting_on))
    return sorted(blocked, key=lambda pair: _by_priority(pair[0]))
