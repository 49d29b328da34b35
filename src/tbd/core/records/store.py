"""
Record store: one Markdown file per issue.

Issues are stored at ``.tbd/data-sync/issues/{id}.md`` as YAML front matter
followed by the description body and an optional ``## Notes`` section:

    ---
    created_at: '2025-01-07T10:30:00.000Z'
    id: is-01hx5zzkbkactav9wevgemmvrz
    ...
    ---

    Description body here.

    ## Notes

    Working notes here.

Uses python-frontmatter for the front matter. Serialization is canonical
(sorted keys, normalized sets and timestamps), so equal issues always produce
byte-identical files and therefore identical git blobs.

A line reading ``## Notes`` inside the description or the notes themselves
is written as ``\\## Notes`` so only the section heading splits the body.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

import frontmatter
import yaml
from pydantic import ValidationError

from tbd.core.records.models import Issue

logger = logging.getLogger(__name__)

NOTES_HEADING = "## Notes"
_NOTES_RE = re.compile(r"^## Notes[ \t]*$", re.IGNORECASE | re.MULTILINE)
_ESCAPE_RE = re.compile(r"^(\\*## Notes[ \t]*)$", re.IGNORECASE | re.MULTILINE)
_UNESCAPE_RE = re.compile(r"^\\(\\*## Notes[ \t]*)$", re.IGNORECASE | re.MULTILINE)


class RecordNotFoundError(LookupError):
    """Raised when an issue ID has no record file."""

    def __init__(self, issue_id: str):
        super().__init__(f"Issue not found: {issue_id}")
        self.issue_id = issue_id


class RecordWriteError(OSError):
    """Raised when a record file cannot be written."""


class RecordParseError(ValueError):
    """Raised when a record file is not a valid issue."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"Invalid issue file {source}: {reason}")
        self.source = source
        self.reason = reason


def _escape(text: str) -> str:
    return _ESCAPE_RE.sub(r"\\\1", text.strip())


def _unescape(text: str) -> str:
    return _UNESCAPE_RE.sub(r"\1", text.strip())


def parse_issue(text: str, source: str = "<string>") -> Issue:
    """
    Parse issue file content.

    Args:
        text: File content (LF or CRLF line endings).
        source: Name used in error messages.

    Returns:
        Validated Issue.

    Raises:
        RecordParseError: If the front matter is missing or the issue is invalid.
    """
    try:
        post = frontmatter.loads(text.replace("\r\n", "\n"))
    except yaml.YAMLError as e:
        raise RecordParseError(source, f"bad YAML front matter: {e}") from e
    if not post.metadata:
        raise RecordParseError(source, "missing or empty front matter")

    body = post.content.strip()
    description, notes = body, ""
    match = _NOTES_RE.search(body)
    if match:
        description = body[: match.start()]
        notes = body[match.end() :]

    try:
        return Issue.from_frontmatter_dict(
            dict(post.metadata), _unescape(description), _unescape(notes)
        )
    except ValidationError as e:
        raise RecordParseError(source, str(e)) from e


def serialize_issue(issue: Issue) -> str:
    """Serialize an issue to canonical file content."""
    sections = []
    if issue.description:
        sections.append(_escape(issue.description))
    if issue.notes:
        sections.append(f"{NOTES_HEADING}\n\n{_escape(issue.notes)}")

    post = frontmatter.Post("\n\n".join(sections))
    post.metadata.update(issue.to_frontmatter_dict())
    return frontmatter.dumps(post, sort_keys=True, width=10_000) + "\n"


class RecordStore:
    """
    File-per-issue storage.

    Example:
        >>> store = RecordStore(Path(".tbd/data-sync/issues"))
        >>> store.put(issue)
        >>> store.get(issue.id).title
        'Fix login'
        >>> store.find("is-missing") is None
        True
    """

    def __init__(self, issues_dir: Path):
        self.issues_dir = Path(issues_dir)

    def path_for(self, issue_id: str) -> Path:
        return self.issues_dir / f"{issue_id}.md"

    def find(self, issue_id: str) -> Issue | None:
        """
        Read an issue, returning None if it does not exist.

        Raises:
            RecordParseError: If the file exists but is malformed.
        """
        path = self.path_for(issue_id)
        if not path.exists():
            return None
        return parse_issue(path.read_text(encoding="utf-8"), source=str(path))

    def get(self, issue_id: str) -> Issue:
        """
        Read an issue.

        Raises:
            RecordNotFoundError: If no record file exists for the ID.
            RecordParseError: If the file is malformed.
        """
        issue = self.find(issue_id)
        if issue is None:
            raise RecordNotFoundError(issue_id)
        return issue

    def put(self, issue: Issue) -> None:
        """
        Write an issue atomically (temp file, then replace).

        Raises:
            RecordWriteError: If the file cannot be written.
        """
        path = self.path_for(issue.id)
        temp_path = path.with_suffix(".md.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(serialize_issue(issue), encoding="utf-8")
            temp_path.replace(path)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise RecordWriteError(f"Failed to write {path}: {e}") from e
        logger.debug("Wrote issue %s (version %d)", issue.id, issue.version)

    def ids(self) -> list[str]:
        """IDs of all stored issues, sorted (creation order)."""
        if not self.issues_dir.exists():
            return []
        return sorted(p.stem for p in self.issues_dir.glob("*.md"))

    def list_records(self) -> list[Issue]:
        """
        Load every issue, sorted by ID.

        Malformed files are skipped with a warning so one bad file does not
        hide the rest.
        """
        issues: list[Issue] = []
        for issue_id in self.ids():
            try:
                issue = self.find(issue_id)
            except RecordParseError as e:
                logger.warning("Skipping malformed issue file: %s", e)
                continue
            if issue is not None:
                issues.append(issue)
        return issues
