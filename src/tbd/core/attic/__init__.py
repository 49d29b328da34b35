"""
Attic: append-only archive of values lost to automatic conflict resolution.

Every scalar conflict resolved by the merge engine produces one entry here,
so no value is ever discarded silently. ``title``, ``description`` and
``notes`` can be restored onto the live issue.
"""

from tbd.core.attic.models import (
    RESTORABLE_FIELDS,
    AtticContext,
    AtticEntry,
    ConflictSource,
)
from tbd.core.attic.store import (
    AtticEntryNotFoundError,
    AtticError,
    AtticRestoreError,
    AtticStore,
    attic_filename,
    dump_entry,
    entry_filename,
    load_entry,
    parse_attic_filename,
)

__all__ = [
    "RESTORABLE_FIELDS",
    "AtticContext",
    "AtticEntry",
    "AtticEntryNotFoundError",
    "AtticError",
    "AtticRestoreError",
    "AtticStore",
    "ConflictSource",
    "attic_filename",
    "dump_entry",
    "entry_filename",
    "load_entry",
    "parse_attic_filename",
]
