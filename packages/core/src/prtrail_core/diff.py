"""Normalization of the changed-file list reported by the code host.

Everything downstream (import scanning, pairing, clustering) consumes the
``ChangedFile`` values produced here, in the order the code host reported
them. That order is the "diff order" used to break ties deterministically.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from prtrail_core.errors import InvalidDiffError

logger = logging.getLogger(__name__)

CHANGE_TYPES = ("added", "modified", "deleted", "renamed")

# GitHub's REST API reports `removed`, `changed`, `copied` and
# `unchanged` in addition to our four change types.
_STATUS_ALIASES = {
    "added": "added",
    "a": "added",
    "removed": "deleted",
    "deleted": "deleted",
    "d": "deleted",
    "renamed": "renamed",
    "r": "renamed",
    "modified": "modified",
    "m": "modified",
}


@dataclass(frozen=True)
class ChangedFile:
    path: str
    change_type: str
    additions: int
    deletions: int

    @property
    def churn(self) -> int:
        return self.additions + self.deletions


def map_change_type(status: str | None) -> str:
    """Map a code-host file status onto one of CHANGE_TYPES.

    Unknown statuses (``changed``, ``copied``, ``unchanged``) count as
    modifications, which is how the review treats them anyway.
    """
    return _STATUS_ALIASES.get((status or "modified").strip().lower(), "modified")


def normalize_path(path: str) -> str:
    cleaned = path.strip().replace("\\", "/")
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    return cleaned.strip("/")


def _coerce(record) -> ChangedFile:
    if isinstance(record, ChangedFile):
        path, change_type, additions, deletions = record.path, record.change_type, record.additions, record.deletions
    elif isinstance(record, Mapping):
        try:
            path = record["path"]
            change_type = record.get("change_type", record.get("changeType", record.get("status")))
            additions = record.get("additions", 0)
            deletions = record.get("deletions", 0)
        except KeyError:
            raise InvalidDiffError("Changed-file record is missing its path.") from None
    else:
        try:
            path, change_type, additions, deletions = record
        except (TypeError, ValueError):
            raise InvalidDiffError(f"Changed-file record must have 4 fields, got {record!r}.") from None

    if not isinstance(path, str) or not normalize_path(path):
        raise InvalidDiffError(f"Changed-file record has an empty path: {record!r}.", identifier=str(path))
    path = normalize_path(path)

    for label, value in (("additions", additions), ("deletions", deletions)):
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidDiffError(f"{path}: {label} must be an integer, got {value!r}.", identifier=path)
        if value < 0:
            raise InvalidDiffError(f"{path}: {label} must not be negative ({value}).", identifier=path)

    return ChangedFile(path=path, change_type=map_change_type(change_type), additions=additions, deletions=deletions)


def normalize_diff(records: Iterable) -> list[ChangedFile]:
    """Validate a changed-file list and return it as ChangedFile values.

    Accepts ``(path, change_type, additions, deletions)`` tuples, mappings
    with those keys, or ChangedFile values. An exact repeat of an earlier
    record is dropped; two records for the same path that disagree raise
    InvalidDiffError.
    """
    seen: dict[str, ChangedFile] = {}
    files: list[ChangedFile] = []
    for record in records:
        changed = _coerce(record)
        previous = seen.get(changed.path)
        if previous is not None:
            if previous == changed:
                logger.debug("Dropping repeated diff entry for %s", changed.path)
                continue
            raise InvalidDiffError(f"Duplicate path in diff: {changed.path}", identifier=changed.path)
        seen[changed.path] = changed
        files.append(changed)

    logger.debug("Normalized %d changed file(s)", len(files))
    return files
