"""Comment drafting state machine.

    suggested --stage--> staged --post--> posted (terminal)
                         staged <--skip/restore--> skipped

Every operation mutates the in-memory session only. Persisting is the
caller's job, once per command, which is what makes a batch atomic at the
store level: if anything raises, nothing is saved.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from prtrail_core.errors import (
    CommentNotFoundError,
    InvariantViolationError,
    RemotePostFailure,
    StateTransitionError,
)
from prtrail_core.session import CommentEdit, ReviewComment, ReviewSession, utc_now

logger = logging.getLogger(__name__)

# action -> (allowed source states, target state)
_TRANSITIONS = {
    "stage": (("suggested",), "staged"),
    "skip": (("staged",), "skipped"),
    "restore": (("skipped",), "staged"),
    "post": (("staged",), "posted"),
}
BATCH_ACTIONS = ("stage", "skip", "restore")
EDIT_TONES = ("reword", "soften", "strengthen")

_ID_RE = re.compile(r"^c-(\d+)$")


@dataclass(frozen=True)
class PostResult:
    """What the remote collaborator reports for one comment."""

    comment_id: str
    success: bool
    external_id: int | None = None
    error: str | None = None


@dataclass
class BatchOutcome:
    posted: list[str] = field(default_factory=list)
    failed: list[PostResult] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed


Poster = Callable[[ReviewComment], PostResult]


class CommentLifecycle:
    def __init__(self, session: ReviewSession):
        self.session = session

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, comment_id: str) -> ReviewComment:
        comment = self.session.comment_by_id(comment_id)
        if comment is None:
            raise CommentNotFoundError(f"Comment not found: {comment_id}", identifier=comment_id)
        if not comment.is_live:
            raise StateTransitionError(
                f"Comment {comment_id} was combined into {comment.merged_into}.",
                identifier=comment_id,
                current=comment.state,
            )
        return comment

    def listing(self, state: str | None = None) -> list[ReviewComment]:
        return [c for c in self.session.live_comments() if state is None or c.state == state]

    def _next_id(self) -> str:
        numbers = [int(m.group(1)) for m in (_ID_RE.match(c.id) for c in self.session.comments) if m]
        return f"c-{max(numbers, default=0) + 1}"

    def _record(
        self,
        comment: ReviewComment,
        action: str,
        previous_body: str | None = None,
        reason: str | None = None,
        timestamp: str | None = None,
    ) -> None:
        now = timestamp or utc_now()
        comment.history.append(CommentEdit(timestamp=now, action=action, previous_body=previous_body, reason=reason))
        comment.updated_at = now
        self.session.touch(now)

    def _check_transition(self, comment: ReviewComment, action: str) -> str:
        allowed, target = _TRANSITIONS[action]
        if comment.state not in allowed:
            raise StateTransitionError(
                f"Cannot {action} comment {comment.id}: it is {comment.state} (needs {' or '.join(allowed)}).",
                identifier=comment.id,
                current=comment.state,
            )
        return target

    # ------------------------------------------------------------------
    # Single-comment operations
    # ------------------------------------------------------------------

    def add(self, file: str, line: int, body: str, context: str | None = None) -> ReviewComment:
        """Record an externally suggested comment in the ``suggested`` state."""
        if file not in self.session.file_paths():
            raise InvariantViolationError(f"{file} is not part of any cluster in this review.", identifier=file)
        if line < 1:
            raise InvariantViolationError(f"Line numbers start at 1, got {line}.", identifier=file)
        if not body.strip():
            raise InvariantViolationError("Comment body cannot be empty.", identifier=file)

        now = utc_now()
        comment = ReviewComment(
            id=self._next_id(),
            file=file,
            line=line,
            body=body,
            original_body=body,
            created_at=now,
            updated_at=now,
            context=context,
        )
        self.session.comments.append(comment)
        self.session.touch(now)
        logger.debug("Added comment %s on %s:%d", comment.id, file, line)
        return comment

    def stage(self, comment_id: str) -> ReviewComment:
        comment = self.get(comment_id)
        comment.state = self._check_transition(comment, "stage")
        comment.updated_at = utc_now()
        self.session.touch(comment.updated_at)
        return comment

    def edit(self, comment_id: str, body: str, action: str = "reword", reason: str | None = None) -> ReviewComment:
        if action not in EDIT_TONES:
            raise InvariantViolationError(f"Unknown edit action {action!r} (expected {', '.join(EDIT_TONES)}).")
        if not body.strip():
            raise InvariantViolationError("Comment body cannot be empty.", identifier=comment_id)
        comment = self.get(comment_id)
        if comment.state not in ("suggested", "staged"):
            raise StateTransitionError(
                f"Cannot edit comment {comment_id}: it is {comment.state}.",
                identifier=comment_id,
                current=comment.state,
            )
        previous = comment.body
        comment.body = body
        self._record(comment, action, previous_body=previous, reason=reason)
        return comment

    def skip(self, comment_id: str, reason: str | None = None) -> ReviewComment:
        comment = self.get(comment_id)
        comment.state = self._check_transition(comment, "skip")
        self._record(comment, "skip", reason=reason)
        return comment

    def restore(self, comment_id: str) -> ReviewComment:
        comment = self.get(comment_id)
        comment.state = self._check_transition(comment, "restore")
        self._record(comment, "restore")
        return comment

    def combine(self, target_id: str, source_id: str) -> ReviewComment:
        """Append ``source``'s body to ``target`` and logically delete ``source``."""
        if target_id == source_id:
            raise InvariantViolationError("Cannot combine a comment with itself.", identifier=target_id)
        target = self.get(target_id)
        source = self.get(source_id)
        for comment in (target, source):
            if comment.state == "posted":
                raise StateTransitionError(
                    f"Cannot combine posted comment {comment.id}.", identifier=comment.id, current=comment.state
                )
        if target.file != source.file:
            raise InvariantViolationError(
                f"Comments {target_id} and {source_id} are on different files.", identifier=source_id
            )

        now = utc_now()
        previous = target.body
        target.body = f"{target.body}\n\n{source.body}"
        self._record(target, "combine", previous_body=previous, reason=f"combined with {source_id}", timestamp=now)
        self._record(source, "combine", reason=f"combined into {target_id}", timestamp=now)
        source.merged_into = target_id
        return target

    def post(self, comment_id: str, external_id: int) -> ReviewComment:
        """Mark a staged comment posted. Call only after the remote post succeeded."""
        if external_id is None:
            raise InvariantViolationError(f"Posting {comment_id} requires an external id.", identifier=comment_id)
        comment = self.get(comment_id)
        comment.state = self._check_transition(comment, "post")
        comment.external_id = external_id
        self._record(comment, "post")
        return comment

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def batch(self, action: str, comment_ids: Iterable[str], reason: str | None = None) -> list[ReviewComment]:
        """Apply stage, skip or restore to every id, or to none of them.

        ``reason`` is recorded on skips.
        """
        if action not in BATCH_ACTIONS:
            raise InvariantViolationError(f"Unknown batch action {action!r} (expected {', '.join(BATCH_ACTIONS)}).")
        comments = [self.get(cid) for cid in dict.fromkeys(comment_ids)]
        for comment in comments:
            self._check_transition(comment, action)

        if action == "skip":
            return [self.skip(comment.id, reason=reason) for comment in comments]
        operation = getattr(self, action)
        return [operation(comment.id) for comment in comments]

    def select_for_post(self, comment_ids: Iterable[str] | None = None) -> list[ReviewComment]:
        """The comments a post would send: the given ids, or every staged comment."""
        if comment_ids is None:
            return self.listing("staged")
        comments = [self.get(cid) for cid in dict.fromkeys(comment_ids)]
        for comment in comments:
            self._check_transition(comment, "post")
        return comments

    def post_batch(self, comment_ids: Iterable[str] | None, poster: Poster) -> BatchOutcome:
        """Send a selection through ``poster`` and record what succeeded.

        The whole selection is validated before the first remote call.
        Comments whose post failed are left untouched in ``staged`` so the
        same batch can simply be retried. Any exception raised by the poster
        counts as a failure for that comment and the batch carries on.
        """
        outcome = BatchOutcome()
        for comment in self.select_for_post(comment_ids):
            try:
                result = poster(comment)
            except RemotePostFailure as e:
                result = PostResult(comment_id=comment.id, success=False, error=str(e))
            except Exception as e:
                # Transport errors from the client library, such as ConnectionError.
                result = PostResult(comment_id=comment.id, success=False, error=f"{type(e).__name__}: {e}")

            if result.success and result.external_id is not None:
                self.post(comment.id, result.external_id)
                outcome.posted.append(comment.id)
            else:
                logger.warning("Posting %s failed: %s", comment.id, result.error or "no external id returned")
                outcome.failed.append(result)
        return outcome
