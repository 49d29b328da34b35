"""
tbd - Git-native issue tracking.

Issues live as Markdown files on a dedicated sync branch. Independent clones
edit offline and converge through field-level three-way merges, with every
value lost to conflict resolution kept in the attic.
"""

__version__ = "0.4.0"

# Re-export core models for convenience
from tbd.core.records.models import Issue, IssueKind, IssueStatus

__all__ = ["Issue", "IssueKind", "IssueStatus", "__version__"]
