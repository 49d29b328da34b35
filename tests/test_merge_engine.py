"""
Tests for the field-level three-way merge.

Tests cover:
- Scalar conflicts and winner selection
- Set merges (labels, dependencies)
- Immutable fields and extensions
- Close metadata normalization
- Version monotonicity, idempotence and determinism
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import pytest

from tbd.core.attic import ConflictSource
from tbd.core.attic.store import entry_filename
from tbd.core.merge import SCALAR_FIELDS, merge_issues, merge_set, pick_winner
from tbd.core.records import Dependency, Issue, IssueStatus
from tbd.core.timestamps import format_timestamp

BASE_TIME = datetime(2025, 1, 7, 10, 0, tzinfo=timezone.utc)
T1 = BASE_TIME + timedelta(minutes=1)
T2 = BASE_TIME + timedelta(minutes=2)
MERGE_TIME = BASE_TIME + timedelta(hours=1)

OTHER_ID = "is-01hx5zzkbkactav9wevgemmvs0"
THIRD_ID = "is-01hx5zzkbkactav9wevgemmvs1"


@pytest.fixture
def base(make_issue: Callable[..., Issue]) -> Issue:
    return make_issue(title="Bug")


class TestScalarFields:
    """Tests for scalar field merging."""

    def test_concurrent_title_edits(self, base: Issue) -> None:
        """Both sides retitle: the later edit wins and the other is archived."""
        local = base.with_changes(title="Bug fix", now=T2)
        remote = base.with_changes(title="Bug report", now=T1)

        result = merge_issues(base, local, remote, now=MERGE_TIME)

        assert result.merged.title == "Bug fix"
        assert result.merged.version == 3
        assert len(result.conflicts) == 1
        conflict = result.conflicts[0]
        assert conflict.field == "title"
        assert conflict.lost_value == "Bug report"
        assert conflict.winner == ConflictSource.LOCAL
        assert conflict.loser == ConflictSource.REMOTE

    def test_one_sided_changes_merge_cleanly(self, base: Issue) -> None:
        """Edits to different fields combine without conflicts."""
        local = base.with_changes(title="Renamed", now=T1)
        remote = base.with_changes(priority=0, assignee="bob", now=T2)

        result = merge_issues(base, local, remote, now=MERGE_TIME)

        assert result.conflicts == []
        assert result.merged.title == "Renamed"
        assert result.merged.priority == 0
        assert result.merged.assignee == "bob"

    def test_higher_version_beats_later_timestamp(self, base: Issue) -> None:
        """Version is compared before updated_at."""
        local = base.with_changes(title="A", now=T2)
        remote = base.with_changes(priority=1, now=T1).with_changes(title="B", now=T1)

        result = merge_issues(base, local, remote, now=MERGE_TIME)

        assert result.merged.title == "B"
        assert result.conflicts[0].lost_value == "A"
        assert result.merged.version == 4

    def test_identical_changes_do_not_conflict(self, base: Issue) -> None:
        """Both sides setting the same value is not a conflict."""
        local = base.with_changes(title="Same", now=T1)
        remote = base.with_changes(title="Same", now=T2)
        assert merge_issues(base, local, remote, now=MERGE_TIME).conflicts == []

    def test_no_value_is_silently_lost(self, base: Issue) -> None:
        """Every differing scalar ends up in the merge or in a conflict."""
        local = base.with_changes(
            title="L", description="local body", priority=0, assignee="alice", now=T1
        )
        remote = base.with_changes(
            title="R", description="remote body", priority=4, assignee="bob", now=T2
        )

        result = merge_issues(base, local, remote, now=MERGE_TIME)
        merged = result.merged.model_dump(mode="json")
        lost = {c.field: c.lost_value for c in result.conflicts}

        for name in SCALAR_FIELDS:
            for side in (local, remote):
                value = side.model_dump(mode="json")[name]
                assert value == merged[name] or lost.get(name) == value


class TestWinner:
    """Tests for pick_winner."""

    def test_full_tie_is_symmetric(self, base: Issue) -> None:
        """Swapping the sides never changes which record wins."""
        a = base.with_changes(title="A", now=T1)
        b = base.with_changes(title="B", now=T1)
        first = pick_winner(a, b)
        second = pick_winner(b, a)
        assert first != second

    def test_merge_is_order_independent(self, base: Issue) -> None:
        """Both replicas compute the same merged record."""
        a = base.with_changes(title="A", labels=["x"], now=T1)
        b = base.with_changes(title="B", labels=["y"], now=T1)
        ab = merge_issues(base, a, b, now=MERGE_TIME)
        ba = merge_issues(base, b, a, now=MERGE_TIME)
        assert ab.merged == ba.merged
        assert [c.lost_value for c in ab.conflicts] == [c.lost_value for c in ba.conflicts]


class TestSetFields:
    """Tests for label and dependency merging."""

    def test_concurrent_label_adds(self, base: Issue) -> None:
        """Labels added on either side are all kept, without conflicts."""
        local = base.with_changes(labels=["urgent"], now=T1)
        remote = base.with_changes(labels=["p0"], now=T2)

        result = merge_issues(base, local, remote, now=MERGE_TIME)

        assert result.merged.labels == ["p0", "urgent"]
        assert result.conflicts == []

    def test_removal_on_one_side_is_honored(
        self, make_issue: Callable[..., Issue]
    ) -> None:
        """A base label removed by one side and kept by the other is removed."""
        base = make_issue(labels=["a", "b"])
        local = base.with_changes(labels=["b"], now=T1)
        remote = base.with_changes(labels=["a", "b", "c"], now=T2)

        result = merge_issues(base, local, remote, now=MERGE_TIME)
        assert result.merged.labels == ["b", "c"]

    def test_dependencies_union(self, base: Issue) -> None:
        """Dependency edges from both sides are kept."""
        local = base.with_changes(dependencies=[Dependency(target=OTHER_ID)], now=T1)
        remote = base.with_changes(dependencies=[Dependency(target=THIRD_ID)], now=T2)

        result = merge_issues(base, local, remote, now=MERGE_TIME)
        assert [d.target for d in result.merged.dependencies] == [OTHER_ID, THIRD_ID]

    def test_merge_set_without_base(self) -> None:
        """With no ancestor every element is an add."""
        assert merge_set(None, ["b"], ["a", "b"]) == ["a", "b"]


class TestImmutableAndExtensions:
    """Tests for identity fields and extension payloads."""

    def test_creator_comes_from_earliest_record(
        self, make_issue: Callable[..., Issue]
    ) -> None:
        """Without a base, the earlier created_at provides creation fields."""
        local = make_issue(created_by="alice")
        remote = local.model_copy(
            update={"created_by": "bob", "created_at": T1, "updated_at": T1, "title": "Other"}
        )

        result = merge_issues(None, local, remote, now=MERGE_TIME)

        assert result.merged.created_by == "alice"
        assert result.merged.created_at == local.created_at

    def test_one_sided_extension_change(self, base: Issue) -> None:
        """A namespace changed on one side is taken from that side."""
        local = base.with_changes(extensions={"github": {"number": 1}}, now=T1)
        remote = base.with_changes(title="Other", now=T2)

        result = merge_issues(base, local, remote, now=MERGE_TIME)
        assert result.merged.extensions == {"github": {"number": 1}}

    def test_conflicting_extensions_take_winner(self, base: Issue) -> None:
        """Both sides changing a namespace keeps the winner's payload, no conflict."""
        local = base.with_changes(extensions={"github": {"number": 1}}, now=T1)
        remote = base.with_changes(extensions={"github": {"number": 2}}, now=T2)

        result = merge_issues(base, local, remote, now=MERGE_TIME)

        assert result.merged.extensions == {"github": {"number": 2}}
        assert result.conflicts == []


class TestCloseNormalization:
    """Tests for close metadata on merged records."""

    def test_reopen_wins_and_close_fields_are_archived(self, base: Issue) -> None:
        """A winning non-closed status drops close metadata into the attic."""
        local = base.with_changes(
            status=IssueStatus.CLOSED, closed_at=T1, close_reason="fixed", now=T1
        )
        remote = base.with_changes(priority=1, now=T1).with_changes(
            status=IssueStatus.IN_PROGRESS, now=T2
        )

        result = merge_issues(base, local, remote, now=MERGE_TIME)

        assert result.merged.status == IssueStatus.IN_PROGRESS
        assert result.merged.closed_at is None
        assert result.merged.close_reason is None
        lost = {c.field: c.lost_value for c in result.conflicts}
        assert lost["status"] == "closed"
        assert lost["close_reason"] == "fixed"
        assert lost["closed_at"] == format_timestamp(T1)

    def test_reopen_against_edited_reason_archives_once(self, base: Issue) -> None:
        """A close field in conflict and then cleared yields a single attic entry."""
        closed = base.with_changes(
            status=IssueStatus.CLOSED, closed_at=T1, close_reason="a", now=T1
        )
        local = closed.with_changes(
            status=IssueStatus.OPEN, closed_at=None, close_reason=None, now=T2
        )
        remote = closed.with_changes(close_reason="b", now=T1).with_changes(priority=1, now=T1)
        assert remote.version > local.version

        result = merge_issues(closed, local, remote, now=MERGE_TIME)

        assert result.merged.status == IssueStatus.OPEN
        assert result.merged.close_reason is None
        fields = [c.field for c in result.conflicts]
        assert len(fields) == len(set(fields))
        lost = {c.field: c.lost_value for c in result.conflicts}
        assert lost["close_reason"] == "b"
        names = [entry_filename(e) for e in result.attic_entries()]
        assert len(names) == len(set(names))

    def test_closed_without_timestamp_gets_merge_time(self, base: Issue) -> None:
        """A merged closed record always has closed_at."""
        local = base.with_changes(status=IssueStatus.CLOSED, now=T1)
        remote = base.with_changes(title="Other", now=T2)

        result = merge_issues(base, local, remote, now=MERGE_TIME)

        assert result.merged.status == IssueStatus.CLOSED
        assert result.merged.closed_at == MERGE_TIME


class TestMergeProperties:
    """Tests for version, idempotence and determinism."""

    def test_version_dominates_both_parents(self, base: Issue) -> None:
        """Merged version is max + 1 and updated_at is the merge time."""
        local = base.with_changes(title="A", now=T1)
        remote = base.with_changes(priority=0, now=T1).with_changes(priority=1, now=T2)

        result = merge_issues(base, local, remote, now=MERGE_TIME)

        assert result.merged.version == 4
        assert result.merged.updated_at == MERGE_TIME

    def test_identical_sides_are_a_fixed_point(self, base: Issue) -> None:
        """Merging a record with itself changes nothing."""
        local = base.with_changes(title="A", now=T1)
        result = merge_issues(base, local, local, now=MERGE_TIME)
        assert result.merged == local
        assert result.conflicts == []

    def test_deterministic(self, base: Issue) -> None:
        """Same inputs, same outputs."""
        local = base.with_changes(title="A", description="x", now=T1)
        remote = base.with_changes(title="B", description="y", now=T2)
        first = merge_issues(base, local, remote, now=MERGE_TIME)
        second = merge_issues(base, local, remote, now=MERGE_TIME)
        assert first.merged == second.merged
        assert first.attic_entries() == second.attic_entries()

    def test_different_issues_rejected(self, make_issue: Callable[..., Issue]) -> None:
        """Merging two unrelated records is a programming error."""
        with pytest.raises(ValueError):
            merge_issues(None, make_issue(), make_issue())
