"""Tag validation, filtering and synchronization."""

from amiforge.tagging.manager import (
    TagDiff,
    TagSynchronizer,
    diff_tags,
    filter_ignored_tags,
    validate_tags,
)

__all__ = ["TagDiff", "TagSynchronizer", "diff_tags", "filter_ignored_tags", "validate_tags"]
