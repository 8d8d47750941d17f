"""SQLiteStore: all sessions in a single local database file.

Schema:
  sessions        one row per (owner, repo, pr_number), holding the same JSON
                  document JsonFileStore writes; the schema tag is duplicated
                  into its own column so it can be inspected with plain SQL.
  active_session  at most one row: the identity of the active session.

Each save is one transaction, so SQLite provides the all-or-nothing
replacement that JsonFileStore gets from os.replace.
"""

from __future__ import annotations

import logging
import sqlite3

from prtrail_core.session import SessionIdentity
from prtrail_store.base import BaseStore
from prtrail_store.codec import SCHEMA_VERSION

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    owner           TEXT NOT NULL,
    repo            TEXT NOT NULL,
    pr_number       INTEGER NOT NULL,
    schema_version  TEXT NOT NULL,
    document        TEXT NOT NULL,
    PRIMARY KEY (owner, repo, pr_number)
);
CREATE TABLE IF NOT EXISTS active_session (
    slot            INTEGER PRIMARY KEY CHECK (slot = 1),
    owner           TEXT NOT NULL,
    repo            TEXT NOT NULL,
    pr_number       INTEGER NOT NULL
);
"""


class SQLiteStore(BaseStore):
    """Stores review sessions in a local SQLite database file.

    The database file path defaults to `.prtrail.db` in the current working
    directory. Configure via .prtrail.yml: `store: sqlite` and
    `store_path: /path/to/prtrail.db`.
    """

    def __init__(self, db_path: str = ".prtrail.db"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    def describe(self, identity: SessionIdentity) -> str:
        return f"{self.db_path} ({identity})"

    def _read_document(self, identity: SessionIdentity) -> str | None:
        row = self._conn.execute(
            "SELECT document FROM sessions WHERE owner=? AND repo=? AND pr_number=?",
            (identity.owner, identity.repo, identity.pr_number),
        ).fetchone()
        return row["document"] if row else None

    def _write_document(self, identity: SessionIdentity, document: str) -> None:
        with self._conn:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO sessions (owner, repo, pr_number, schema_version, document)
                VALUES (?, ?, ?, ?, ?)
                """,
                (identity.owner, identity.repo, identity.pr_number, SCHEMA_VERSION, document),
            )
            self._conn.execute(
                "INSERT OR REPLACE INTO active_session (slot, owner, repo, pr_number) VALUES (1, ?, ?, ?)",
                (identity.owner, identity.repo, identity.pr_number),
            )

    def _delete_document(self, identity: SessionIdentity) -> bool:
        with self._conn:
            cursor = self._conn.execute(
                "DELETE FROM sessions WHERE owner=? AND repo=? AND pr_number=?",
                (identity.owner, identity.repo, identity.pr_number),
            )
        return cursor.rowcount > 0

    def _read_active(self) -> SessionIdentity | None:
        row = self._conn.execute("SELECT owner, repo, pr_number FROM active_session WHERE slot = 1").fetchone()
        if row is None:
            return None
        return SessionIdentity(owner=row["owner"], repo=row["repo"], pr_number=row["pr_number"])

    def _clear_active(self) -> None:
        with self._conn:
            self._conn.execute("DELETE FROM active_session")

    def close(self) -> None:
        self._conn.close()
