"""
Issue data model.

An issue is a closed set of typed fields. Files are validated against this
model at the record store boundary, so the merge engine only ever sees
well-formed records.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)

from tbd.core.ids import is_valid_issue_id
from tbd.core.timestamps import format_timestamp, parse_timestamp, utc_now

TITLE_MAX_LENGTH = 500


class IssueKind(str, Enum):
    """What sort of work an issue tracks."""

    BUG = "bug"
    FEATURE = "feature"
    TASK = "task"
    EPIC = "epic"
    CHORE = "chore"


class IssueStatus(str, Enum):
    """Workflow status of an issue."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    DEFERRED = "deferred"
    CLOSED = "closed"


class DependencyType(str, Enum):
    """Edge types between issues. Only "blocks" edges are materialized."""

    BLOCKS = "blocks"


class Dependency(BaseModel):
    """A directed edge: the owning issue blocks ``target``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: DependencyType = Field(default=DependencyType.BLOCKS)
    target: str = Field(description="ID of the blocked issue")

    @field_validator("target")
    @classmethod
    def validate_target(cls, v: str) -> str:
        if not is_valid_issue_id(v):
            raise ValueError(f"Invalid dependency target: {v}")
        return v

    def sort_key(self) -> tuple[str, str]:
        return (self.type.value, self.target)


# Timestamp-valued fields, normalized to aware UTC with ms precision
TIMESTAMP_FIELDS = (
    "created_at",
    "updated_at",
    "closed_at",
    "due_date",
    "deferred_until",
)


class Issue(BaseModel):
    """
    A tracked issue.

    ``version`` increases with every mutation, including merges, and never
    decreases. ``labels`` and ``dependencies`` are sets: they are kept sorted
    and deduplicated so equal issues serialize identically.

    Example:
        >>> issue = Issue(id="is-01hx5zzkbkactav9wevgemmvrz", title="Fix login")
        >>> issue.status
        <IssueStatus.OPEN: 'open'>
        >>> issue.version
        1
    """

    model_config = ConfigDict(extra="forbid")

    type: Literal["is"] = Field(default="is", description="Entity type tag")
    id: str = Field(description="Internal ID (is-{ulid})")
    version: int = Field(default=1, ge=1, description="Mutation counter")

    kind: IssueKind = Field(default=IssueKind.TASK)
    title: str = Field(min_length=1, max_length=TITLE_MAX_LENGTH)
    description: str | None = Field(default=None, description="Markdown body")
    notes: str | None = Field(default=None, description="Working notes")

    status: IssueStatus = Field(default=IssueStatus.OPEN)
    priority: int = Field(default=2, ge=0, le=4, description="0 = critical, 4 = backlog")
    assignee: str | None = Field(default=None)

    labels: list[str] = Field(default_factory=list)
    dependencies: list[Dependency] = Field(default_factory=list)
    parent_id: str | None = Field(default=None)

    due_date: datetime | None = Field(default=None)
    deferred_until: datetime | None = Field(default=None)

    created_by: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    closed_at: datetime | None = Field(default=None)
    close_reason: str | None = Field(default=None)

    extensions: dict[str, dict[str, Any]] = Field(
        default_factory=dict,
        description="Namespaced opaque metadata (e.g. import provenance)",
    )

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not is_valid_issue_id(v):
            raise ValueError(f"Invalid issue ID: {v}")
        return v

    @field_validator("parent_id")
    @classmethod
    def validate_parent_id(cls, v: str | None) -> str | None:
        if v is not None and not is_valid_issue_id(v):
            raise ValueError(f"Invalid parent ID: {v}")
        return v

    @field_validator(*TIMESTAMP_FIELDS, mode="before")
    @classmethod
    def normalize_timestamp(cls, v: Any) -> Any:
        if v is None or v == "":
            return None
        if isinstance(v, (str, datetime)):
            return parse_timestamp(v)
        return v

    @field_validator("labels")
    @classmethod
    def normalize_labels(cls, v: list[str]) -> list[str]:
        cleaned = {label.strip() for label in v}
        if "" in cleaned:
            raise ValueError("Labels must not be empty")
        return sorted(cleaned)

    @field_validator("dependencies")
    @classmethod
    def normalize_dependencies(cls, v: list[Dependency]) -> list[Dependency]:
        return sorted(set(v), key=Dependency.sort_key)

    @model_validator(mode="after")
    def check_invariants(self) -> Issue:
        if any(dep.target == self.id for dep in self.dependencies):
            raise ValueError(f"Issue {self.id} cannot depend on itself")
        if self.parent_id == self.id:
            raise ValueError(f"Issue {self.id} cannot be its own parent")
        if self.status != IssueStatus.CLOSED and (
            self.closed_at is not None or self.close_reason is not None
        ):
            raise ValueError("closed_at and close_reason must be empty unless status is closed")
        return self

    @field_serializer(*TIMESTAMP_FIELDS)
    def serialize_timestamp(self, v: datetime | None) -> str | None:
        return format_timestamp(v) if v is not None else None

    @property
    def is_closed(self) -> bool:
        return self.status == IssueStatus.CLOSED

    def with_changes(
        self, *, now: datetime | None = None, force: bool = False, **changes: Any
    ) -> Issue:
        """
        Return a new, validated issue with ``changes`` applied as one mutation.

        Bumps ``version`` by one and refreshes ``updated_at``. Returns ``self``
        unchanged when the changes are a no-op, unless ``force`` is set.

        Raises:
            pydantic.ValidationError: If the result violates an invariant.
        """
        data = self.model_dump()
        data.update(changes)
        candidate = Issue.model_validate(data)
        if candidate == self and not force:
            return self
        data = candidate.model_dump()
        data["version"] = self.version + 1
        data["updated_at"] = now or utc_now()
        return Issue.model_validate(data)

    def to_frontmatter_dict(self) -> dict[str, Any]:
        """
        Convert to the front matter mapping (everything except the body fields).

        Returns:
            JSON-compatible dict with keys sorted, suitable for YAML.
        """
        data = self.model_dump(mode="json", exclude={"description", "notes"})
        return {key: data[key] for key in sorted(data)}

    @classmethod
    def from_frontmatter_dict(
        cls,
        data: dict[str, Any],
        description: str | None = None,
        notes: str | None = None,
    ) -> Issue:
        """
        Build an issue from parsed front matter plus body sections.

        Raises:
            pydantic.ValidationError: If the data is not a valid issue.
        """
        return cls.model_validate(
            {**data, "description": description or None, "notes": notes or None}
        )
