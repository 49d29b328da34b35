"""
Issue ID generation, validation and resolution.

Internal IDs have the form ``is-{ulid}``: a 26-character, lowercase
Crockford base32 ULID (48-bit millisecond timestamp followed by 80 random
bits). Lexicographic order of IDs is creation order, and IDs generated in
the same millisecond by one process are strictly increasing.

User input is resolved against the existing IDs: a full ID, the bare ULID,
or any unique prefix of either.
"""

from __future__ import annotations

import re
import secrets
import threading
import time
from collections.abc import Iterable

ID_PREFIX = "is"

# Crockford base32, lowercase (no i, l, o, u)
ULID_CHARS = "0123456789abcdefghjkmnpqrstvwxyz"
ULID_LENGTH = 26

_ID_RE = re.compile(rf"^{ID_PREFIX}-[0-9a-z]{{{ULID_LENGTH}}}$")

_RANDOM_BITS = 80
_lock = threading.Lock()
_last_ms = -1
_last_random = 0


class AmbiguousIdError(LookupError):
    """Raised when an ID prefix matches more than one issue."""

    def __init__(self, ref: str, matches: list[str]):
        super().__init__(f"Ambiguous issue ID '{ref}' matches: {', '.join(matches)}")
        self.ref = ref
        self.matches = matches


def _encode(value: int, length: int) -> str:
    chars = []
    for _ in range(length):
        chars.append(ULID_CHARS[value & 31])
        value >>= 5
    return "".join(reversed(chars))


def new_ulid(now_ms: int | None = None) -> str:
    """
    Generate a monotonic ULID.

    Args:
        now_ms: Milliseconds since the epoch (defaults to the current time).

    Returns:
        26-character lowercase ULID string.
    """
    global _last_ms, _last_random

    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000

    with _lock:
        if now_ms <= _last_ms:
            # Same (or earlier) millisecond: keep ordering by bumping the random part
            now_ms = _last_ms
            _last_random = (_last_random + 1) % (1 << _RANDOM_BITS)
        else:
            _last_ms = now_ms
            _last_random = secrets.randbits(_RANDOM_BITS)
        random_part = _last_random

    return _encode(now_ms, 10) + _encode(random_part, 16)


def generate_issue_id() -> str:
    """Generate a new internal issue ID (``is-{ulid}``)."""
    return f"{ID_PREFIX}-{new_ulid()}"


def is_valid_issue_id(value: str) -> bool:
    """Check whether ``value`` is a well-formed internal issue ID."""
    return bool(_ID_RE.match(value))


def resolve_issue_id(ref: str, known_ids: Iterable[str]) -> str | None:
    """
    Resolve user input to a known internal ID.

    Args:
        ref: Full ID, bare ULID, or a unique prefix of either.
        known_ids: IDs of the existing issues.

    Returns:
        The matching ID, or None if nothing matches.

    Raises:
        AmbiguousIdError: If the prefix matches more than one ID.
    """
    needle = ref.strip().lower()
    if not needle:
        return None
    if not needle.startswith(f"{ID_PREFIX}-"):
        needle = f"{ID_PREFIX}-{needle}"

    ids = list(known_ids)
    if needle in ids:
        return needle

    matches = sorted(i for i in ids if i.startswith(needle))
    if len(matches) > 1:
        raise AmbiguousIdError(ref, matches)
    return matches[0] if matches else None
