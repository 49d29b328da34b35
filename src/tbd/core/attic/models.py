"""
Data models for the attic (conflict archive).
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

_FIELD_RE = re.compile(r"^[a-z][a-z0-9_]*$")

# Fields whose archived values can be written back onto a live issue
RESTORABLE_FIELDS = ("title", "description", "notes")


class ConflictSource(str, Enum):
    """Which replica a value came from during a merge."""

    LOCAL = "local"
    REMOTE = "remote"

    @property
    def other(self) -> ConflictSource:
        return ConflictSource.REMOTE if self is ConflictSource.LOCAL else ConflictSource.LOCAL


class AtticContext(BaseModel):
    """Snapshot of both sides at merge time."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    local_version: int = Field(ge=1)
    remote_version: int = Field(ge=1)
    local_updated_at: str = Field(description="Local updated_at (canonical UTC)")
    remote_updated_at: str = Field(description="Remote updated_at (canonical UTC)")


def check_attic_timestamp(value: str) -> str:
    """
    Validate that a timestamp can be encoded into an attic filename.

    The date portion may contain ``-``; the time portion (after ``T``) must
    not, since ``-`` is what ``:`` is escaped to.

    Raises:
        ValueError: If the timestamp cannot round-trip through a filename.
    """
    date_part, sep, time_part = value.partition("T")
    if not sep or not date_part or not time_part:
        raise ValueError(f"Attic timestamp must be ISO 8601 with a 'T' separator: {value!r}")
    if "-" in time_part or "_" in value or "/" in value:
        raise ValueError(f"Attic timestamp must be UTC without '-', '_' or '/' in the time: {value!r}")
    return value


class AtticEntry(BaseModel):
    """
    A value that lost a merge conflict.

    Keyed by ``(entity_id, timestamp, field)``. Entries are immutable;
    restoring one creates a new mutation on the live issue instead.

    Example:
        >>> entry = AtticEntry(
        ...     entity_id="is-01hx5zzkbkactav9wevgemmvrz",
        ...     timestamp="2025-01-07T10:30:00.000Z",
        ...     field="title",
        ...     lost_value="Bug report",
        ...     winner_source=ConflictSource.LOCAL,
        ...     loser_source=ConflictSource.REMOTE,
        ...     context=AtticContext(
        ...         local_version=2,
        ...         remote_version=2,
        ...         local_updated_at="2025-01-07T10:00:00.000Z",
        ...         remote_updated_at="2025-01-07T09:00:00.000Z",
        ...     ),
        ... )
        >>> entry.is_restorable
        True
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    entity_id: str = Field(description="ID of the issue the value belonged to")
    timestamp: str = Field(description="Merge time (canonical UTC)")
    field: str = Field(description="Name of the conflicting field")
    lost_value: Any = Field(default=None, description="The discarded value")
    winner_source: ConflictSource
    loser_source: ConflictSource
    context: AtticContext

    @field_validator("entity_id")
    @classmethod
    def validate_entity_id(cls, v: str) -> str:
        if not v or "_" in v or "/" in v:
            raise ValueError(f"Invalid attic entity id: {v!r}")
        return v

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v: str) -> str:
        return check_attic_timestamp(v)

    @field_validator("field")
    @classmethod
    def validate_field(cls, v: str) -> str:
        if not _FIELD_RE.match(v):
            raise ValueError(f"Invalid attic field name: {v!r}")
        return v

    @property
    def is_restorable(self) -> bool:
        return self.field in RESTORABLE_FIELDS
