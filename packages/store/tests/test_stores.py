"""Tests for prtrail-store implementations."""

from __future__ import annotations

import json
import logging
import sqlite3
from unittest.mock import patch

import pytest

from prtrail_core.comments import CommentLifecycle
from prtrail_core.errors import CorruptStateError, InvariantViolationError, SchemaVersionError
from prtrail_core.navigation import NavigationEngine
from prtrail_core.session import (
    ClusterFile,
    FileCluster,
    SessionIdentity,
    create_session,
    record_question,
)
from prtrail_store import codec
from prtrail_store.json_file import JsonFileStore
from prtrail_store.sqlite import SQLiteStore

IDENTITY = SessionIdentity("acme", "api", 7)
OTHER = SessionIdentity("acme", "web", 12)


def _make_session(identity=IDENTITY):
    session = create_session(identity, "feature/auth", "main", "Add auth", "octocat")
    session.clusters = [
        FileCluster(
            id="cluster-1",
            name="Data Models",
            description="1 file (modified)",
            files=[ClusterFile("src/types/user.ts", "modified", 3, 0)],
            priority=1,
        ),
        FileCluster(
            id="cluster-2",
            name="Auth",
            description="1 file (modified)",
            files=[ClusterFile("src/auth/token.ts", "modified", 10, 2, annotation="large change")],
            priority=2,
            depends_on=["cluster-1"],
        ),
    ]
    session.narrative = "**Add auth** by @octocat"
    lifecycle = CommentLifecycle(session)
    lifecycle.add("src/auth/token.ts", 4, "Check expiry ✓", context="Auth")
    lifecycle.stage("c-1")
    lifecycle.edit("c-1", "Please check expiry", action="soften")
    nav = NavigationEngine(session)
    nav.next()
    nav.next()
    record_question(session, "Why HS256?", "Shared secret only.", context="Auth")
    return session


def _stores(tmp_path):
    return [JsonFileStore(tmp_path / "state"), SQLiteStore(db_path=str(tmp_path / "state.db"))]


@pytest.fixture(params=["json", "sqlite"])
def store(request, tmp_path):
    if request.param == "json":
        instance = JsonFileStore(tmp_path / "state")
    else:
        instance = SQLiteStore(db_path=str(tmp_path / "state.db"))
    yield instance
    instance.close()


# ---------------------------------------------------------------------------
# codec
# ---------------------------------------------------------------------------


class TestCodec:
    def test_document_is_tagged_and_snake_case(self):
        data = json.loads(codec.dumps(_make_session()))
        assert data["$schema"] == "review-state-v1"
        assert data["identity"] == {"owner": "acme", "repo": "api", "pr_number": 7}
        assert data["current_cluster_id"] == "cluster-2"
        assert data["comments"][0]["original_body"] == "Check expiry ✓"

    def test_round_trip_is_byte_identical(self):
        text = codec.dumps(_make_session())
        assert codec.dumps(codec.loads(text)) == text

    def test_invalid_json(self):
        with pytest.raises(CorruptStateError) as exc_info:
            codec.loads("{not json", source="state.json")
        assert "state clear" in exc_info.value.recovery
        assert exc_info.value.identifier == "state.json"

    def test_non_object_root(self):
        with pytest.raises(CorruptStateError):
            codec.loads("[]")

    def test_wrong_schema_version(self):
        data = json.loads(codec.dumps(_make_session()))
        data["$schema"] = "review-state-v0"
        with pytest.raises(SchemaVersionError) as exc_info:
            codec.loads(json.dumps(data))
        assert exc_info.value.found == "review-state-v0"

    def test_missing_schema_tag(self):
        data = json.loads(codec.dumps(_make_session()))
        del data["$schema"]
        with pytest.raises(SchemaVersionError):
            codec.loads(json.dumps(data))

    def test_missing_required_field(self):
        data = json.loads(codec.dumps(_make_session()))
        del data["clusters"][0]["priority"]
        with pytest.raises(CorruptStateError, match="priority"):
            codec.loads(json.dumps(data))

    def test_wrong_field_type(self):
        data = json.loads(codec.dumps(_make_session()))
        data["comments"][0]["line"] = "4"
        with pytest.raises(CorruptStateError, match="line"):
            codec.loads(json.dumps(data))

    def test_invariant_violation_is_corruption(self):
        data = json.loads(codec.dumps(_make_session()))
        data["clusters"][0]["depends_on"] = ["cluster-2"]
        with pytest.raises(CorruptStateError, match="cycle"):
            codec.loads(json.dumps(data))

    def test_reviewed_sections_rebuilt(self, caplog):
        data = json.loads(codec.dumps(_make_session()))
        data["reviewed_sections"] = ["cluster-1", "cluster-1"]
        with caplog.at_level(logging.WARNING):
            session = codec.loads(json.dumps(data), source="state.json")
        assert session.reviewed_sections == ["cluster-1"]
        assert "Repaired state.json" in caplog.text


# ---------------------------------------------------------------------------
# Behaviour shared by every backend
# ---------------------------------------------------------------------------


class TestStoreContract:
    def test_load_missing_returns_none(self, store):
        assert store.load(IDENTITY) is None

    def test_save_then_load(self, store):
        session = _make_session()
        store.save(session)
        loaded = store.load(IDENTITY)
        assert loaded == session

    def test_resave_is_idempotent(self, store):
        session = _make_session()
        store.save(session)
        first = codec.dumps(store.load(IDENTITY))
        store.save(store.load(IDENTITY))
        assert codec.dumps(store.load(IDENTITY)) == first

    def test_reviewed_sections_out_of_step_rejected(self, store):
        session = _make_session()
        session.reviewed_sections = []
        with pytest.raises(InvariantViolationError, match="Reviewed sections"):
            store.save(session)
        assert store.load(IDENTITY) is None

    def test_every_saved_session_survives_reload_unchanged(self, store, caplog):
        session = _make_session()
        NavigationEngine(session).next()
        store.save(session)
        first = codec.dumps(store.load(IDENTITY))
        with caplog.at_level(logging.WARNING):
            store.save(store.load(IDENTITY))
            assert codec.dumps(store.load(IDENTITY)) == first
        assert "Repaired" not in caplog.text

    def test_save_marks_active(self, store):
        store.save(_make_session())
        assert store.active_identity() == IDENTITY
        store.save(_make_session(OTHER))
        assert store.active_identity() == OTHER

    def test_invalid_session_writes_nothing(self, store):
        session = _make_session()
        session.current_cluster_id = "cluster-9"
        with pytest.raises(InvariantViolationError):
            store.save(session)
        assert store.load(IDENTITY) is None
        assert store.active_identity() is None

    def test_clear(self, store):
        store.save(_make_session())
        assert store.clear(IDENTITY) is True
        assert store.load(IDENTITY) is None
        assert store.active_identity() is None
        assert store.clear(IDENTITY) is False

    def test_clear_other_keeps_active(self, store):
        store.save(_make_session(OTHER))
        store.save(_make_session())
        store.clear(OTHER)
        assert store.active_identity() == IDENTITY

    def test_stale_identity_warns(self, store, caplog):
        store.save(_make_session())
        with caplog.at_level(logging.WARNING):
            assert store.load(OTHER) is None
        assert "Active session belongs to acme/api#7" in caplog.text
        assert store.stale_identity(IDENTITY) is None


# ---------------------------------------------------------------------------
# JsonFileStore
# ---------------------------------------------------------------------------


class TestJsonFileStore:
    def test_layout(self, tmp_path):
        store = JsonFileStore(tmp_path)
        store.save(_make_session())
        path = tmp_path / "sessions" / "acme" / "api" / "7.json"
        assert path.is_file()
        assert json.loads((tmp_path / "active.json").read_text()) == {"identity": "acme/api#7"}

    def test_corrupt_file_reported_and_untouched(self, tmp_path):
        store = JsonFileStore(tmp_path)
        path = store.path_for(IDENTITY)
        path.parent.mkdir(parents=True)
        path.write_text('{"$schema": "review-state-v1", "identity": ')

        with pytest.raises(CorruptStateError) as exc_info:
            store.load(IDENTITY)

        assert str(path) in str(exc_info.value)
        assert path.read_text() == '{"$schema": "review-state-v1", "identity": '

    def test_interrupted_write_keeps_previous_document(self, tmp_path):
        store = JsonFileStore(tmp_path)
        session = _make_session()
        store.save(session)
        before = store.path_for(IDENTITY).read_text()

        session.narrative = "changed"
        with patch("prtrail_store.json_file.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                store.save(session)

        assert store.path_for(IDENTITY).read_text() == before
        assert list(store.path_for(IDENTITY).parent.glob("*.tmp")) == []
        assert store.load(IDENTITY).narrative == "**Add auth** by @octocat"

    def test_leftover_temp_file_ignored_and_swept(self, tmp_path):
        store = JsonFileStore(tmp_path)
        store.save(_make_session())
        leftover = store.path_for(IDENTITY).parent / ".7.json.k3j2h1.tmp"
        leftover.write_text('{"half": ')

        assert store.load(IDENTITY) is not None
        assert not leftover.exists()

    def test_dangling_active_pointer_cleared(self, tmp_path, caplog):
        store = JsonFileStore(tmp_path)
        store.save(_make_session())
        store.path_for(IDENTITY).unlink()

        with caplog.at_level(logging.WARNING):
            assert store.active_identity() is None
        assert "no longer exists" in caplog.text
        assert not store.active_path.exists()

    def test_unreadable_active_pointer_ignored(self, tmp_path):
        store = JsonFileStore(tmp_path)
        store.save(_make_session())
        store.active_path.write_text("garbage")

        assert store.active_identity() is None
        assert store.load(IDENTITY) is not None


# ---------------------------------------------------------------------------
# SQLiteStore
# ---------------------------------------------------------------------------


class TestSQLiteStore:
    def test_schema_version_column(self, tmp_path):
        db_path = str(tmp_path / "test.db")
        store = SQLiteStore(db_path=db_path)
        store.save(_make_session())
        store.close()

        conn = sqlite3.connect(db_path)
        row = conn.execute("SELECT schema_version FROM sessions WHERE owner='acme' AND repo='api'").fetchone()
        conn.close()
        assert row == ("review-state-v1",)

    def test_persists_across_connections(self, tmp_path):
        db_path = str(tmp_path / "test.db")
        session = _make_session()
        first = SQLiteStore(db_path=db_path)
        first.save(session)
        first.close()

        second = SQLiteStore(db_path=db_path)
        assert second.active_identity() == IDENTITY
        assert second.load(IDENTITY) == session
        second.close()

    def test_corrupt_document(self, tmp_path):
        db_path = str(tmp_path / "test.db")
        store = SQLiteStore(db_path=db_path)
        store.save(_make_session())
        with store._conn:
            store._conn.execute("UPDATE sessions SET document = '{oops'")

        with pytest.raises(CorruptStateError):
            store.load(IDENTITY)
        store.close()

    def test_same_document_as_json_store(self, tmp_path):
        session = _make_session()
        json_store, sqlite_store = _stores(tmp_path)
        json_store.save(session)
        sqlite_store.save(session)

        assert sqlite_store._read_document(IDENTITY) == json_store.path_for(IDENTITY).read_text(encoding="utf-8")
        sqlite_store.close()
