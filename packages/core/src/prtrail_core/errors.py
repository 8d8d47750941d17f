"""Error taxonomy for the review-session engine.

Every error carries a machine-readable ``kind`` and the ``identifier`` it is
about (a path, a comment id, a cluster id, a state file) so the presentation
layer can act on it without parsing messages. None of these are retried
internally; a retry is always a new invocation by the caller.
"""

from __future__ import annotations


class ReviewEngineError(Exception):
    """Base class for all engine errors."""

    kind = "engine_error"

    def __init__(self, message: str, identifier: str | None = None):
        super().__init__(message)
        self.identifier = identifier


class InvalidDiffError(ReviewEngineError):
    """Malformed or duplicate changed-file input."""

    kind = "invalid_diff"


class CycleError(ReviewEngineError):
    """A cluster dependency cycle survived SCC condensation.

    Guarded only; condensation should make this unreachable.
    """

    kind = "cycle"


class SchemaVersionError(ReviewEngineError):
    """Persisted session written by an incompatible schema version."""

    kind = "schema_version"

    def __init__(self, message: str, identifier: str | None = None, found: str | None = None):
        super().__init__(message, identifier)
        self.found = found


class CorruptStateError(ReviewEngineError):
    """Persisted session cannot be parsed. Requires manual recovery."""

    kind = "corrupt_state"

    def __init__(self, message: str, identifier: str | None = None, recovery: str | None = None):
        super().__init__(message, identifier)
        self.recovery = recovery

    def __str__(self) -> str:
        base = super().__str__()
        return f"{base}\n{self.recovery}" if self.recovery else base


class InvariantViolationError(ReviewEngineError):
    """The session aggregate would break one of its invariants."""

    kind = "invariant_violation"


class ClusterNotFoundError(InvariantViolationError):
    kind = "cluster_not_found"


class CommentNotFoundError(InvariantViolationError):
    kind = "comment_not_found"


class StateTransitionError(ReviewEngineError):
    """Illegal comment or cluster status transition."""

    kind = "state_transition"

    def __init__(self, message: str, identifier: str | None = None, current: str | None = None):
        super().__init__(message, identifier)
        self.current = current


class RemotePostFailure(ReviewEngineError):
    """Raised by a posting collaborator when the remote call did not succeed.

    CommentLifecycle absorbs it: the comment stays staged.
    """

    kind = "remote_post_failure"
