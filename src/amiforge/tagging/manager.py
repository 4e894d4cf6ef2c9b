"""Tag management for images: validation, filtering and diff-based sync."""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional
from amiforge.utils.logging import get_logger

logger = get_logger(__name__)

# Tags under this prefix are owned by AWS and can never be set or removed
AWS_RESERVED_PREFIX = "aws:"

MAX_TAGS_PER_RESOURCE = 50


@dataclass
class TagDiff:
    """Tags to add or overwrite, and tag keys to remove."""

    to_apply: Dict[str, str] = field(default_factory=dict)
    to_remove: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.to_apply and not self.to_remove


def diff_tags(old: Optional[Dict[str, str]], new: Optional[Dict[str, str]]) -> TagDiff:
    """Compute the minimal change turning the old tag set into the new one.

    Args:
        old: Previously recorded tags
        new: Newly declared tags

    Returns:
        TagDiff with changed or added tags and the sorted keys that were dropped
    """
    old = old or {}
    new = new or {}

    to_apply = {key: value for key, value in new.items() if old.get(key) != value}
    to_remove = sorted(key for key in old if key not in new)

    return TagDiff(to_apply=to_apply, to_remove=to_remove)


def filter_ignored_tags(
    tags: Dict[str, str],
    ignore_keys: Iterable[str] = (),
    ignore_prefixes: Iterable[str] = (),
) -> Dict[str, str]:
    """Drop AWS-reserved tags and tags excluded by configuration.

    Args:
        tags: Tags as reported by the remote API
        ignore_keys: Exact keys to drop
        ignore_prefixes: Key prefixes to drop

    Returns:
        Filtered copy of the tags
    """
    ignore_keys = set(ignore_keys)
    prefixes = (AWS_RESERVED_PREFIX,) + tuple(ignore_prefixes)
    return {
        key: value
        for key, value in tags.items()
        if key not in ignore_keys and not key.startswith(prefixes)
    }


def validate_tags(tags: Dict[str, str]) -> List[str]:
    """Validate tags against AWS requirements.

    Args:
        tags: Dictionary of tags to validate

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = []

    for key, value in tags.items():
        if not key:
            errors.append("Tag key cannot be empty")
        elif len(key) > 128:
            errors.append(f"Tag key exceeds 128 characters: {key}")
        elif key.startswith(AWS_RESERVED_PREFIX):
            errors.append(f"Tag key cannot start with 'aws:' (reserved): {key}")

        if not isinstance(value, str):
            errors.append(f"Tag value must be a string for key '{key}': {value}")
        elif len(value) > 256:
            errors.append(f"Tag value exceeds 256 characters for key '{key}'")

    if len(tags) > MAX_TAGS_PER_RESOURCE:
        errors.append(
            f"Too many tags: {len(tags)} (AWS limit is {MAX_TAGS_PER_RESOURCE} per resource)"
        )

    return errors


class TagSynchronizer:
    """Brings a resource's remote tags from one declared set to another."""

    def __init__(self, client):
        """Initialize tag synchronizer.

        Args:
            client: Remote client exposing list_tags, apply_tags and remove_tags
        """
        self.client = client

    def sync(
        self,
        resource_id: str,
        old: Optional[Dict[str, str]],
        new: Optional[Dict[str, str]],
    ) -> TagDiff:
        """Issue at most one remove call followed by at most one apply call.

        Args:
            resource_id: Remote identifier of the tagged resource
            old: Previously recorded tags; None reads them from the remote API
            new: Newly declared tags

        Returns:
            The TagDiff that was applied
        """
        if old is None:
            old = filter_ignored_tags(self.client.list_tags(resource_id))
        diff = diff_tags(old, new)

        if diff.is_empty:
            logger.debug(f"Tags of {resource_id} already up to date")
            return diff

        if diff.to_remove:
            self.client.remove_tags(resource_id, diff.to_remove)
            logger.info(f"Removed {len(diff.to_remove)} tags from {resource_id}")

        if diff.to_apply:
            self.client.apply_tags(resource_id, diff.to_apply)
            logger.info(f"Applied {len(diff.to_apply)} tags to {resource_id}")

        return diff
