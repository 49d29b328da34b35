"""
UTC timestamp helpers.

All timestamps written by tbd are timezone-aware UTC with millisecond
precision, serialized as ``YYYY-MM-DDTHH:MM:SS.mmmZ``. Truncating to
milliseconds means a value survives a write/read cycle unchanged, which the
merge engine relies on when comparing fields.
"""

from __future__ import annotations

from datetime import datetime, timezone


def truncate_ms(value: datetime) -> datetime:
    """Convert to UTC and drop sub-millisecond precision."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def utc_now() -> datetime:
    """Current time, UTC, millisecond precision."""
    return truncate_ms(datetime.now(timezone.utc))


def format_timestamp(value: datetime) -> str:
    """
    Format a datetime in canonical form.

    Example:
        >>> format_timestamp(datetime(2025, 1, 7, 10, 30, tzinfo=timezone.utc))
        '2025-01-07T10:30:00.000Z'
    """
    value = truncate_ms(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_timestamp(value: str | datetime) -> datetime:
    """
    Parse an ISO 8601 timestamp into an aware UTC datetime.

    Accepts the canonical form as well as ``+00:00`` offsets, naive values
    (assumed UTC) and datetimes already decoded by the YAML loader.

    Raises:
        ValueError: If the string is not a valid ISO 8601 timestamp.
    """
    if isinstance(value, datetime):
        return truncate_ms(value)
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return truncate_ms(datetime.fromisoformat(text))
