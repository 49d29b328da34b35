"""
Issue records: model, file store and mutations.

Example:
    >>> from tbd.core.records import RecordStore, create_issue
    >>> store = RecordStore(Path(".tbd/data-sync/issues"))
    >>> issue = create_issue(store, "Fix login bug")
    >>> store.get(issue.id).version
    1
"""

from tbd.core.records.models import (
    Dependency,
    DependencyType,
    Issue,
    IssueKind,
    IssueStatus,
)
from tbd.core.records.operations import (
    add_dependency,
    add_labels,
    blocked_issues,
    close_issue,
    create_issue,
    open_blockers,
    ready_issues,
    remove_dependency,
    remove_labels,
    reopen_issue,
    resolve,
    update_issue,
)
from tbd.core.records.store import (
    RecordNotFoundError,
    RecordParseError,
    RecordStore,
    RecordWriteError,
    parse_issue,
    serialize_issue,
)

__all__ = [
    "Dependency",
    "DependencyType",
    "Issue",
    "IssueKind",
    "IssueStatus",
    "RecordNotFoundError",
    "RecordParseError",
    "RecordStore",
    "RecordWriteError",
    "add_dependency",
    "add_labels",
    "blocked_issues",
    "close_issue",
    "create_issue",
    "open_blockers",
    "parse_issue",
    "ready_issues",
    "remove_dependency",
    "remove_labels",
    "reopen_issue",
    "resolve",
    "serialize_issue",
    "update_issue",
]
