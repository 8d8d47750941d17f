"""Abstract session store.

A backend only moves serialized documents in and out of its medium and
keeps track of which session is active. Validation, encoding, version
checks and repair happen here, identically for every backend. The CLI
depends on BaseStore, not on a concrete backend.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from prtrail_core.session import ReviewSession, SessionIdentity, validate_session
from prtrail_store import codec

logger = logging.getLogger(__name__)


class BaseStore(ABC):
    """Load and atomically persist one ReviewSession per identity.

    The store is single-writer: if two processes save the same session
    concurrently, the last write wins.
    """

    # ------------------------------------------------------------------
    # Backend hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def describe(self, identity: SessionIdentity) -> str:
        """Human-readable location of a session, used in error messages."""

    @abstractmethod
    def _read_document(self, identity: SessionIdentity) -> str | None:
        """Return the stored document, or None when there is none."""

    @abstractmethod
    def _write_document(self, identity: SessionIdentity, document: str) -> None:
        """Atomically replace the stored document and mark it active."""

    @abstractmethod
    def _delete_document(self, identity: SessionIdentity) -> bool:
        """Remove the stored document. Returns False when there was none."""

    @abstractmethod
    def _read_active(self) -> SessionIdentity | None:
        """Return the active-session pointer as stored, without checking it."""

    @abstractmethod
    def _clear_active(self) -> None:
        pass

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def load(self, identity: SessionIdentity) -> ReviewSession | None:
        """Return the persisted session, or None when there is none yet.

        Raises SchemaVersionError or CorruptStateError for documents that
        cannot be trusted; those are never repaired automatically.
        """
        self.stale_identity(identity)
        document = self._read_document(identity)
        if document is None:
            return None
        return codec.loads(document, source=self.describe(identity))

    def save(self, session: ReviewSession) -> None:
        """Validate and persist ``session``, then mark it active.

        Raises InvariantViolationError before anything is written. Does not
        touch timestamps: saving the same session twice writes the same bytes.
        """
        validate_session(session)
        self._write_document(session.identity, codec.dumps(session))
        logger.debug("Saved %s to %s", session.identity, self.describe(session.identity))

    def clear(self, identity: SessionIdentity) -> bool:
        removed = self._delete_document(identity)
        if self._read_active() == identity:
            self._clear_active()
        return removed

    def active_identity(self) -> SessionIdentity | None:
        """The identity of the most recently saved session.

        A pointer to a session that no longer exists is dropped.
        """
        active = self._read_active()
        if active is not None and self._read_document(active) is None:
            logger.warning("Active session %s no longer exists; clearing the pointer.", active)
            self._clear_active()
            return None
        return active

    def stale_identity(self, identity: SessionIdentity) -> SessionIdentity | None:
        """Return the active identity when it differs from ``identity``.

        This is a warning, not an error: the reviewer may legitimately
        switch between pull requests.
        """
        active = self.active_identity()
        if active is not None and active != identity:
            logger.warning("Active session belongs to %s, not %s.", active, identity)
            return active
        return None

    def close(self) -> None:
        """Release any resources held by the store (connections, file handles).

        Default is a no-op so callers can always call close() safely.
        """
