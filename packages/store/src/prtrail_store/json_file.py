"""JsonFileStore: one JSON document per pull request under a state directory.

Layout:
  <root>/sessions/<owner>/<repo>/<pr>.json   one session document each
  <root>/active.json                         pointer to the active session

Every write goes to a temporary file in the destination directory, is
flushed and fsynced, then renamed over the target with os.replace. A reader
therefore sees either the previous document or the new one, never a partial
write. Temporary files left behind by an interrupted write are ignored and
swept on the next load.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
from pathlib import Path

from prtrail_core.session import SessionIdentity
from prtrail_store.base import BaseStore

logger = logging.getLogger(__name__)

_TMP_SUFFIX = ".tmp"


def atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=_TMP_SUFFIX)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_name)
        raise


class JsonFileStore(BaseStore):
    """Stores sessions as JSON files under ``root`` (default ``.prtrail``).

    Configure via .prtrail.yml: `store: json` and `store_path: /path/to/dir`.
    """

    def __init__(self, root: str | Path = ".prtrail"):
        self.root = Path(root)

    @property
    def active_path(self) -> Path:
        return self.root / "active.json"

    def path_for(self, identity: SessionIdentity) -> Path:
        return self.root / "sessions" / identity.owner / identity.repo / f"{identity.pr_number}.json"

    def describe(self, identity: SessionIdentity) -> str:
        return str(self.path_for(identity))

    def _sweep_temp_files(self, path: Path) -> None:
        if not path.parent.is_dir():
            return
        for leftover in path.parent.glob(f".{path.name}.*{_TMP_SUFFIX}"):
            logger.info("Removing leftover temporary file %s", leftover)
            with contextlib.suppress(FileNotFoundError):
                leftover.unlink()

    def _read_document(self, identity: SessionIdentity) -> str | None:
        path = self.path_for(identity)
        self._sweep_temp_files(path)
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8")

    def _write_document(self, identity: SessionIdentity, document: str) -> None:
        atomic_write_text(self.path_for(identity), document)
        atomic_write_text(self.active_path, json.dumps({"identity": str(identity)}) + "\n")

    def _delete_document(self, identity: SessionIdentity) -> bool:
        path = self.path_for(identity)
        if not path.is_file():
            return False
        path.unlink()
        return True

    def _read_active(self) -> SessionIdentity | None:
        if not self.active_path.is_file():
            return None
        try:
            data = json.loads(self.active_path.read_text(encoding="utf-8"))
            return SessionIdentity.parse(data["identity"])
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError):
            # Only an index; the session documents are intact.
            logger.warning("Ignoring unreadable active-session pointer %s", self.active_path)
            self._clear_active()
            return None

    def _clear_active(self) -> None:
        with contextlib.suppress(FileNotFoundError):
            self.active_path.unlink()
