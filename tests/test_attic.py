"""
Tests for the attic conflict archive.

Tests cover:
- Filename encoding and parsing
- Recording and listing entries
- Lookup by timestamp and field
- Restoring archived values onto live issues
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from tbd.core.attic import (
    AtticContext,
    AtticEntry,
    AtticEntryNotFoundError,
    AtticError,
    AtticRestoreError,
    AtticStore,
    ConflictSource,
    attic_filename,
    parse_attic_filename,
)
from tbd.core.records import Issue, RecordStore

ISSUE_ID = "is-01hx5zzkbkactav9wevgemmvrz"
TIMESTAMP = "2025-01-07T10:30:00.000Z"


def make_entry(
    *,
    entity_id: str = ISSUE_ID,
    timestamp: str = TIMESTAMP,
    field: str = "title",
    lost_value: object = "Bug report",
) -> AtticEntry:
    return AtticEntry(
        entity_id=entity_id,
        timestamp=timestamp,
        field=field,
        lost_value=lost_value,
        winner_source=ConflictSource.LOCAL,
        loser_source=ConflictSource.REMOTE,
        context=AtticContext(
            local_version=2,
            remote_version=2,
            local_updated_at="2025-01-07T10:02:00.000Z",
            remote_updated_at="2025-01-07T10:01:00.000Z",
        ),
    )


@pytest.fixture
def attic(tmp_path: Path) -> AtticStore:
    return AtticStore(tmp_path / "attic")


@pytest.fixture
def records(tmp_path: Path) -> RecordStore:
    return RecordStore(tmp_path / "issues")


class TestFilenames:
    """Tests for attic filename encoding."""

    def test_filename_escapes_colons(self) -> None:
        """Colons in the time are written as dashes."""
        name = attic_filename(ISSUE_ID, TIMESTAMP, "title")
        assert name == f"{ISSUE_ID}_2025-01-07T10-30-00.000Z_title.yml"
        assert ":" not in name

    def test_parse_recovers_components(self) -> None:
        """Field names containing underscores survive parsing."""
        name = attic_filename(ISSUE_ID, TIMESTAMP, "close_reason")
        assert parse_attic_filename(name) == (ISSUE_ID, TIMESTAMP, "close_reason")

    @pytest.mark.parametrize(
        "name",
        ["README.md", "notes.yml", f"{ISSUE_ID}_title.yml", f"{ISSUE_ID}_2025-01-07_title.yml"],
    )
    def test_parse_rejects_other_files(self, name: str) -> None:
        """Names that are not attic entries parse to None."""
        assert parse_attic_filename(name) is None

    def test_timestamp_with_offset_rejected(self) -> None:
        """Offsets would not survive the colon escaping."""
        with pytest.raises(ValueError):
            attic_filename(ISSUE_ID, "2025-01-07T10:30:00-05:00", "title")


class TestRecordAndList:
    """Tests for recording and listing entries."""

    def test_record_and_get(self, attic: AtticStore) -> None:
        """A recorded entry reads back equal."""
        entry = make_entry()
        path = attic.record(entry)
        assert path.name == attic_filename(ISSUE_ID, TIMESTAMP, "title")
        assert attic.get(ISSUE_ID, TIMESTAMP) == entry

    def test_get_accepts_escaped_timestamp(self, attic: AtticStore) -> None:
        """The timestamp may be given as it appears in the filename."""
        entry = make_entry()
        attic.record(entry)
        assert attic.get(ISSUE_ID, "2025-01-07T10-30-00.000Z") == entry

    def test_record_is_idempotent(self, attic: AtticStore) -> None:
        """Recording the same entry twice is a no-op."""
        entry = make_entry()
        attic.record(entry)
        attic.record(entry)
        assert attic.list_entries() == [entry]

    def test_conflicting_rerecord_rejected(self, attic: AtticStore) -> None:
        """Entries are immutable once written."""
        attic.record(make_entry())
        with pytest.raises(AtticError):
            attic.record(make_entry(lost_value="Something else"))

    def test_list_most_recent_first(self, attic: AtticStore) -> None:
        """Entries sort by timestamp descending, then field."""
        older = make_entry(timestamp="2025-01-06T09:00:00.000Z")
        newer_title = make_entry()
        newer_notes = make_entry(field="notes", lost_value="n")
        other = make_entry(entity_id="is-01hx5zzkbkactav9wevgemmvs0")
        for entry in (older, newer_title, newer_notes, other):
            attic.record(entry)

        listed = attic.list_entries(ISSUE_ID)
        assert [(e.timestamp, e.field) for e in listed] == [
            (TIMESTAMP, "notes"),
            (TIMESTAMP, "title"),
            ("2025-01-06T09:00:00.000Z", "title"),
        ]
        assert len(attic.list_entries()) == 4

    def test_list_empty(self, attic: AtticStore) -> None:
        """A missing attic directory lists nothing."""
        assert attic.list_entries() == []

    def test_get_by_field(self, attic: AtticStore) -> None:
        """field selects among entries from one merge."""
        attic.record(make_entry())
        attic.record(make_entry(field="notes", lost_value="n"))
        assert attic.get(ISSUE_ID, TIMESTAMP, "notes").lost_value == "n"

    def test_get_missing(self, attic: AtticStore) -> None:
        """Unknown keys raise AtticEntryNotFoundError."""
        with pytest.raises(AtticEntryNotFoundError):
            attic.get(ISSUE_ID, TIMESTAMP)


class TestRestore:
    """Tests for AtticStore.restore."""

    def test_restore_description_bumps_version(
        self,
        attic: AtticStore,
        records: RecordStore,
        make_issue: Callable[..., Issue],
    ) -> None:
        """Restoring onto a version 5 issue produces version 6 with the old value."""
        issue = make_issue(id=ISSUE_ID, version=5, description="Current text")
        records.put(issue)
        attic.record(make_entry(field="description", lost_value="Archived text"))

        restored = attic.restore(ISSUE_ID, TIMESTAMP, records)

        assert restored.version == 6
        assert restored.description == "Archived text"
        assert records.get(ISSUE_ID) == restored
        assert attic.get(ISSUE_ID, TIMESTAMP).lost_value == "Archived text"

    def test_restore_same_value_still_bumps(
        self,
        attic: AtticStore,
        records: RecordStore,
        make_issue: Callable[..., Issue],
    ) -> None:
        """A restore is always recorded as a new mutation."""
        records.put(make_issue(id=ISSUE_ID, title="Bug report"))
        attic.record(make_entry())
        assert attic.restore(ISSUE_ID, TIMESTAMP, records).version == 2

    def test_non_restorable_field(
        self,
        attic: AtticStore,
        records: RecordStore,
        make_issue: Callable[..., Issue],
    ) -> None:
        """Only text fields can be restored; nothing is written otherwise."""
        issue = make_issue(id=ISSUE_ID)
        records.put(issue)
        attic.record(make_entry(field="priority", lost_value=0))

        with pytest.raises(AtticRestoreError):
            attic.restore(ISSUE_ID, TIMESTAMP, records)
        assert records.get(ISSUE_ID) == issue

    def test_restore_missing_issue(self, attic: AtticStore, records: RecordStore) -> None:
        """An entry whose issue is gone cannot be restored."""
        attic.record(make_entry())
        with pytest.raises(AtticRestoreError):
            attic.restore(ISSUE_ID, TIMESTAMP, records)

    def test_restore_invalid_value(
        self,
        attic: AtticStore,
        records: RecordStore,
        make_issue: Callable[..., Issue],
    ) -> None:
        """An archived value that fails validation is reported, not written."""
        records.put(make_issue(id=ISSUE_ID))
        attic.record(make_entry(lost_value=""))
        with pytest.raises(AtticRestoreError):
            attic.restore(ISSUE_ID, TIMESTAMP, records)
