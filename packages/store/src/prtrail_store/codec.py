"""Persisted session document: (de)serialization, version check, repair.

The document is JSON with a ``$schema`` version tag. Serialization is
deterministic (sorted keys, fixed indentation) so that saving a session,
loading it back and saving again produces identical bytes.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict

from prtrail_core.errors import CorruptStateError, InvariantViolationError, SchemaVersionError
from prtrail_core.session import (
    ClusterFile,
    CommentEdit,
    FileCluster,
    QAEntry,
    ReviewComment,
    ReviewSession,
    SessionIdentity,
    validate_session,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "review-state-v1"
SCHEMA_KEY = "$schema"

_MISSING = object()


class _Malformed(ValueError):
    pass


def recovery_hint(source: str) -> str:
    return (
        f"Recovery: inspect or move {source} aside, then run `prtrail state clear` "
        "and `prtrail analyze` to start a fresh session."
    )


def session_to_dict(session: ReviewSession) -> dict:
    data = asdict(session)
    data[SCHEMA_KEY] = SCHEMA_VERSION
    return data


def dumps(session: ReviewSession) -> str:
    return json.dumps(session_to_dict(session), indent=2, sort_keys=True, ensure_ascii=False) + "\n"


def _get(mapping, key: str, kind, where: str, default=_MISSING):
    if not isinstance(mapping, dict):
        raise _Malformed(f"{where} is not an object")
    if key not in mapping or (mapping[key] is None and default is None):
        if default is _MISSING:
            raise _Malformed(f"{where}.{key} is missing")
        return default
    value = mapping[key]
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        expected = kind.__name__ if isinstance(kind, type) else "/".join(k.__name__ for k in kind)
        raise _Malformed(f"{where}.{key} should be {expected}, got {type(value).__name__}")
    return value


def _list(mapping, key: str, where: str) -> list:
    return _get(mapping, key, list, where, default=[])


def _strings(mapping, key: str, where: str) -> list[str]:
    values = _list(mapping, key, where)
    if not all(isinstance(v, str) for v in values):
        raise _Malformed(f"{where}.{key} should contain only strings")
    return list(values)


def _cluster(data, where: str) -> FileCluster:
    files = [
        ClusterFile(
            path=_get(f, "path", str, f"{where}.files[{i}]"),
            change_type=_get(f, "change_type", str, f"{where}.files[{i}]"),
            additions=_get(f, "additions", int, f"{where}.files[{i}]"),
            deletions=_get(f, "deletions", int, f"{where}.files[{i}]"),
            annotation=_get(f, "annotation", str, f"{where}.files[{i}]", default=None),
        )
        for i, f in enumerate(_list(data, "files", where))
    ]
    return FileCluster(
        id=_get(data, "id", str, where),
        name=_get(data, "name", str, where),
        description=_get(data, "description", str, where, default=""),
        files=files,
        priority=_get(data, "priority", int, where),
        depends_on=_strings(data, "depends_on", where),
        status=_get(data, "status", str, where),
        oversized=_get(data, "oversized", bool, where, default=False),
        context=_get(data, "context", str, where, default=None),
    )


def _comment(data, where: str) -> ReviewComment:
    history = [
        CommentEdit(
            timestamp=_get(e, "timestamp", str, f"{where}.history[{i}]"),
            action=_get(e, "action", str, f"{where}.history[{i}]"),
            previous_body=_get(e, "previous_body", str, f"{where}.history[{i}]", default=None),
            reason=_get(e, "reason", str, f"{where}.history[{i}]", default=None),
        )
        for i, e in enumerate(_list(data, "history", where))
    ]
    return ReviewComment(
        id=_get(data, "id", str, where),
        file=_get(data, "file", str, where),
        line=_get(data, "line", int, where),
        body=_get(data, "body", str, where),
        original_body=_get(data, "original_body", str, where),
        state=_get(data, "state", str, where),
        history=history,
        external_id=_get(data, "external_id", int, where, default=None),
        created_at=_get(data, "created_at", str, where),
        updated_at=_get(data, "updated_at", str, where),
        context=_get(data, "context", str, where, default=None),
        merged_into=_get(data, "merged_into", str, where, default=None),
    )


def _question(data, where: str) -> QAEntry:
    return QAEntry(
        question=_get(data, "question", str, where),
        answer=_get(data, "answer", str, where),
        context=_get(data, "context", str, where, default=""),
        timestamp=_get(data, "timestamp", str, where),
    )


def _session(data: dict) -> ReviewSession:
    identity = _get(data, "identity", dict, "session")
    return ReviewSession(
        identity=SessionIdentity(
            owner=_get(identity, "owner", str, "identity"),
            repo=_get(identity, "repo", str, "identity"),
            pr_number=_get(identity, "pr_number", int, "identity"),
        ),
        branch_name=_get(data, "branch_name", str, "session"),
        base_branch=_get(data, "base_branch", str, "session"),
        title=_get(data, "title", str, "session"),
        author=_get(data, "author", str, "session"),
        review_mode=_get(data, "review_mode", str, "session"),
        narrative=_get(data, "narrative", str, "session", default=""),
        clusters=[_cluster(c, f"clusters[{i}]") for i, c in enumerate(_list(data, "clusters", "session"))],
        comments=[_comment(c, f"comments[{i}]") for i, c in enumerate(_list(data, "comments", "session"))],
        current_cluster_id=_get(data, "current_cluster_id", str, "session", default=None),
        reviewed_sections=_strings(data, "reviewed_sections", "session"),
        questions=[_question(q, f"questions[{i}]") for i, q in enumerate(_list(data, "questions", "session"))],
        started_at=_get(data, "started_at", str, "session"),
        last_updated=_get(data, "last_updated", str, "session"),
        spec_context=_get(data, "spec_context", str, "session", default=None),
    )


def repair(session: ReviewSession) -> list[str]:
    """Rebuild derived data that can be recomputed from primary data.

    Only ``reviewed_sections`` qualifies: it is an index over cluster
    statuses. Returns a description of each repair made.
    """
    repairs = []
    expected = [c.id for c in sorted(session.clusters, key=lambda c: c.priority) if c.status == "reviewed"]
    if set(session.reviewed_sections) != set(expected) or len(session.reviewed_sections) != len(expected):
        repairs.append(f"rebuilt reviewed sections ({len(session.reviewed_sections)} -> {len(expected)} entries)")
        session.reviewed_sections = expected
    return repairs


def loads(text: str, source: str = "<memory>") -> ReviewSession:
    """Parse, version-check, repair and validate a persisted document."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise CorruptStateError(
            f"{source} is not valid JSON ({e.msg} at line {e.lineno}).",
            identifier=source,
            recovery=recovery_hint(source),
        ) from e

    if not isinstance(data, dict):
        raise CorruptStateError(
            f"{source} does not contain a session object.", identifier=source, recovery=recovery_hint(source)
        )

    found = data.get(SCHEMA_KEY)
    if found != SCHEMA_VERSION:
        raise SchemaVersionError(
            f"{source} was written with schema {found!r}; this version reads {SCHEMA_VERSION!r}. "
            "Clear the session and analyze the pull request again.",
            identifier=source,
            found=found if isinstance(found, str) else None,
        )

    try:
        session = _session(data)
    except _Malformed as e:
        raise CorruptStateError(f"{source}: {e}.", identifier=source, recovery=recovery_hint(source)) from e

    for description in repair(session):
        logger.warning("Repaired %s: %s", source, description)

    try:
        validate_session(session)
    except InvariantViolationError as e:
        raise CorruptStateError(f"{source}: {e}", identifier=source, recovery=recovery_hint(source)) from e
    return session
