"""
Attic storage: one YAML file per archived value.

Files live at ``.tbd/data-sync/attic/`` and are named
``{entity_id}_{timestamp}_{field}.yml`` with every ``:`` in the timestamp
written as ``-`` so the name is safe on every filesystem. Entity IDs and
timestamps never contain ``_``; field names may, so the name is split on
the first two underscores only.

The attic is append-only: entries are never rewritten or deleted.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from tbd.core.attic.models import RESTORABLE_FIELDS, AtticEntry, check_attic_timestamp
from tbd.core.records.models import Issue
from tbd.core.records.store import RecordStore

logger = logging.getLogger(__name__)

ATTIC_SUFFIX = ".yml"


class AtticError(Exception):
    """Base exception for attic operations."""


class AtticEntryNotFoundError(AtticError, LookupError):
    """Raised when no attic entry matches an (entity, timestamp) pair."""

    def __init__(self, entity_id: str, timestamp: str, field: str | None = None):
        target = f"{entity_id} at {timestamp}" + (f" ({field})" if field else "")
        super().__init__(f"Attic entry not found: {target}")
        self.entity_id = entity_id
        self.timestamp = timestamp
        self.field = field


class AtticRestoreError(AtticError):
    """Raised when an attic entry cannot be restored onto its issue."""


def escape_timestamp(timestamp: str) -> str:
    return timestamp.replace(":", "-")


def unescape_timestamp(escaped: str) -> str:
    """Reverse ``escape_timestamp``: only the time portion carries escapes."""
    date_part, sep, time_part = escaped.partition("T")
    return f"{date_part}{sep}{time_part.replace('-', ':')}"


def attic_filename(entity_id: str, timestamp: str, field: str) -> str:
    """
    Build the filename for an attic entry.

    Example:
        >>> attic_filename("is-01hx5zzkbkactav9wevgemmvrz", "2025-01-07T10:30:00.000Z", "title")
        'is-01hx5zzkbkactav9wevgemmvrz_2025-01-07T10-30-00.000Z_title.yml'

    Raises:
        ValueError: If the components cannot round-trip through a filename.
    """
    check_attic_timestamp(timestamp)
    if not entity_id or "_" in entity_id or "/" in entity_id:
        raise ValueError(f"Invalid attic entity id: {entity_id!r}")
    if not field or "/" in field:
        raise ValueError(f"Invalid attic field name: {field!r}")
    return f"{entity_id}_{escape_timestamp(timestamp)}_{field}{ATTIC_SUFFIX}"


def parse_attic_filename(filename: str) -> tuple[str, str, str] | None:
    """
    Parse an attic filename back into ``(entity_id, timestamp, field)``.

    Returns:
        The original triple, or None if the name is not an attic filename.
    """
    if not filename.endswith(ATTIC_SUFFIX):
        return None
    parts = filename[: -len(ATTIC_SUFFIX)].split("_", 2)
    if len(parts) != 3 or not all(parts):
        return None
    entity_id, escaped, field = parts
    if "T" not in escaped:
        return None
    return entity_id, unescape_timestamp(escaped), field


def entry_filename(entry: AtticEntry) -> str:
    return attic_filename(entry.entity_id, entry.timestamp, entry.field)


def dump_entry(entry: AtticEntry) -> str:
    """Canonical YAML text of an entry."""
    return yaml.safe_dump(
        entry.model_dump(mode="json"),
        default_flow_style=False,
        sort_keys=True,
        allow_unicode=True,
    )


def load_entry(text: str, source: str = "<string>") -> AtticEntry:
    """
    Parse an entry from YAML text.

    Raises:
        AtticError: If the text is not a valid entry.
    """
    try:
        data = yaml.safe_load(text)
        return AtticEntry.model_validate(data)
    except (yaml.YAMLError, ValidationError) as e:
        raise AtticError(f"Invalid attic entry {source}: {e}") from e


class AtticStore:
    """
    Append-only archive of values lost to conflict resolution.

    Example:
        >>> attic = AtticStore(Path(".tbd/data-sync/attic"))
        >>> attic.record(entry)
        >>> [e.field for e in attic.list_entries("is-01hx5zzkbkactav9wevgemmvrz")]
        ['title']
        >>> issue = attic.restore(entry.entity_id, entry.timestamp, records)
    """

    def __init__(self, attic_dir: Path):
        self.attic_dir = Path(attic_dir)

    def path_for(self, entry: AtticEntry) -> Path:
        return self.attic_dir / entry_filename(entry)

    def record(self, entry: AtticEntry) -> Path:
        """
        Persist an entry.

        Re-recording an identical entry is a no-op.

        Returns:
            Path of the entry file.

        Raises:
            AtticError: If a different entry already exists under the same key.
        """
        path = self.path_for(entry)
        content = dump_entry(entry)

        if path.exists():
            if path.read_text(encoding="utf-8") == content:
                return path
            raise AtticError(f"Attic entry already exists with different content: {path.name}")

        self.attic_dir.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_suffix(".yml.tmp")
        try:
            temp_path.write_text(content, encoding="utf-8")
            temp_path.replace(path)
        except OSError:
            if temp_path.exists():
                temp_path.unlink()
            raise

        logger.info(
            "Archived %s.%s lost to %s (%s)",
            entry.entity_id,
            entry.field,
            entry.winner_source.value,
            entry.timestamp,
        )
        return path

    def list_entries(self, entity_id: str | None = None) -> list[AtticEntry]:
        """
        List entries, most recent first.

        Args:
            entity_id: Only return entries for this issue.

        Returns:
            Entries sorted by timestamp descending (then by field).
        """
        if not self.attic_dir.exists():
            return []

        entries: list[AtticEntry] = []
        for path in self.attic_dir.glob(f"*{ATTIC_SUFFIX}"):
            parsed = parse_attic_filename(path.name)
            if parsed is None:
                continue
            if entity_id is not None and parsed[0] != entity_id:
                continue
            try:
                entries.append(load_entry(path.read_text(encoding="utf-8"), source=path.name))
            except AtticError as e:
                logger.warning("Skipping unreadable attic entry: %s", e)

        entries.sort(key=lambda e: e.field)
        entries.sort(key=lambda e: e.timestamp, reverse=True)
        return entries

    def get(self, entity_id: str, timestamp: str, field: str | None = None) -> AtticEntry:
        """
        Look up an entry.

        Args:
            entity_id: Issue ID.
            timestamp: Entry timestamp, either as stored or in its
                filename-escaped form (``:`` written as ``-``).
            field: Disambiguates when one merge archived several fields.

        Raises:
            AtticEntryNotFoundError: If no entry matches.
        """
        for entry in sorted(self.list_entries(entity_id), key=lambda e: e.field):
            if entry.timestamp != timestamp and escape_timestamp(entry.timestamp) != timestamp:
                continue
            if field is not None and entry.field != field:
                continue
            return entry
        raise AtticEntryNotFoundError(entity_id, timestamp, field)

    def restore(
        self,
        entity_id: str,
        timestamp: str,
        records: RecordStore,
        *,
        field: str | None = None,
    ) -> Issue:
        """
        Write an archived value back onto its live issue as a new mutation.

        The issue's version is bumped and ``updated_at`` refreshed. The attic
        entry itself is left untouched.

        Raises:
            AtticEntryNotFoundError: If the entry does not exist.
            AtticRestoreError: If the field is not restorable, or the issue
                is missing. Nothing is written in either case.
        """
        entry = self.get(entity_id, timestamp, field)

        if entry.field not in RESTORABLE_FIELDS:
            raise AtticRestoreError(
                f"Cannot restore field '{entry.field}': only {', '.join(RESTORABLE_FIELDS)} "
                "can be restored from the attic"
            )

        current = records.find(entry.entity_id)
        if current is None:
            raise AtticRestoreError(f"Issue not found: {entry.entity_id}")

        try:
            restored = current.with_changes(force=True, **{entry.field: entry.lost_value})
        except ValidationError as e:
            raise AtticRestoreError(
                f"Archived value for '{entry.field}' is not valid on {entry.entity_id}: {e}"
            ) from e

        records.put(restored)
        logger.info(
            "Restored %s.%s from attic entry %s (version %d)",
            entry.entity_id,
            entry.field,
            entry.timestamp,
            restored.version,
        )
        return restored
