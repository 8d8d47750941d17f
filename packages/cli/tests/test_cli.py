"""Tests for the CLI entry point."""

import json
import subprocess
from unittest.mock import MagicMock

import click
import pytest
from click.testing import CliRunner
from github import GithubException

from prtrail_cli.cli import _build_store, main
from prtrail_core.clustering import build_clusters
from prtrail_core.comments import CommentLifecycle
from prtrail_core.session import SessionIdentity, create_session
from prtrail_store.json_file import JsonFileStore
from prtrail_store.sqlite import SQLiteStore

IDENTITY = SessionIdentity("acme", "api", 7)

AUTH_DIFF = [
    ("src/auth/token.ts", "modified", 10, 2),
    ("src/auth/validate.ts", "modified", 5, 1),
    ("src/types/user.ts", "modified", 3, 0),
    ("tests/auth.test.ts", "added", 40, 0),
]
AUTH_CONTENT = {"src/auth/token.ts": "import { User } from '../types/user';\n"}


def _make_config(store="json"):
    return {
        "github_token": "tok",
        "debug": False,
        "store": store,
        "store_path": None,
        "max_cluster_size": 50,
        "merge_threshold": 8,
        "group_depth": 2,
        "large_change_lines": 100,
    }


def _patch_common(mocker, tmp_path, token="tok"):
    """Patch load_config, resolve_github_token, and _build_store for most tests."""
    store = JsonFileStore(tmp_path / "state")
    mocker.patch("prtrail_core.config.load_config", return_value=_make_config())
    mocker.patch("prtrail_cli.auth.resolve_github_token", return_value=token)
    mocker.patch("prtrail_cli.cli._build_store", return_value=store)
    return store


def _seed(store, review_mode="normal", staged=()):
    """Save an analyzed session (Data Models, Tests, Auth) with optional staged comments."""
    result = build_clusters(AUTH_DIFF, read_content=AUTH_CONTENT.get)
    session = create_session(IDENTITY, "feature/auth", "main", "Add auth", "octocat", review_mode=review_mode)
    session.clusters = list(result.clusters)
    session.narrative = "**Add auth** by @octocat"
    lifecycle = CommentLifecycle(session)
    for line, body in staged:
        comment = lifecycle.add("src/auth/token.ts", line, body)
        lifecycle.stage(comment.id)
    store.save(session)
    return session


def _github_file(path, status, additions, deletions):
    f = MagicMock()
    f.filename = path
    f.status = status
    f.additions = additions
    f.deletions = deletions
    return f


def _mock_pr(author="octocat"):
    pr = MagicMock()
    pr.number = 7
    pr.title = "Add auth"
    pr.user.login = author
    pr.head.ref = "feature/auth"
    pr.head.sha = "a" * 40
    pr.base.ref = "main"
    pr.get_files.return_value = [_github_file(*record) for record in AUTH_DIFF]
    return pr


def _mock_repo():
    repo = MagicMock()
    repo.get_contents.side_effect = lambda path, ref=None: MagicMock(
        decoded_content=AUTH_CONTENT.get(path, "").encode()
    )
    return repo


def _patch_github(mocker, module="analyze", pr=None, current_user="reviewer"):
    pr = pr or _mock_pr()
    mocker.patch(f"prtrail_cli.commands.{module}.get_repo", return_value=_mock_repo())
    mocker.patch(f"prtrail_cli.commands.{module}.get_pull", return_value=pr)
    if module == "analyze":
        mocker.patch("prtrail_cli.commands.analyze.get_current_user", return_value=current_user)
    return pr


def _invoke(*args):
    return CliRunner().invoke(main, list(args))


# ---------------------------------------------------------------------------
# Store selection
# ---------------------------------------------------------------------------


class TestBuildStore:
    def test_json_store(self, tmp_path):
        store = _build_store({"store": "json", "store_path": str(tmp_path / "state")})
        assert isinstance(store, JsonFileStore)
        assert store.root == tmp_path / "state"

    def test_sqlite_store(self, tmp_path):
        store = _build_store({"store": "sqlite", "store_path": str(tmp_path / "state.db")})
        assert isinstance(store, SQLiteStore)
        assert store.db_path == str(tmp_path / "state.db")
        store.close()

    def test_unknown_store(self):
        with pytest.raises(click.UsageError):
            _build_store({"store": "gist"})


# ---------------------------------------------------------------------------
# auth.py
# ---------------------------------------------------------------------------


class TestGithubToken:
    def test_config_token_wins(self, mocker):
        from prtrail_cli.auth import resolve_github_token

        mock_run = mocker.patch("prtrail_cli.auth.subprocess.run")
        assert resolve_github_token({"github_token": "cfg-token"}) == "cfg-token"
        mock_run.assert_not_called()

    def test_env_used_without_config(self, monkeypatch):
        from prtrail_cli.auth import resolve_github_token

        monkeypatch.setenv("GITHUB_TOKEN", "env-token")
        assert resolve_github_token() == "env-token"

    def test_falls_back_to_gh_cli(self, mocker, monkeypatch):
        from prtrail_cli.auth import resolve_github_token

        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        mocker.patch("prtrail_cli.auth.subprocess.run", return_value=MagicMock(returncode=0, stdout="gh-token\n"))
        assert resolve_github_token({"github_token": None}) == "gh-token"

    @pytest.mark.parametrize(
        "outcome",
        [
            {"side_effect": FileNotFoundError},
            {"side_effect": subprocess.TimeoutExpired(cmd="gh", timeout=5)},
            {"return_value": MagicMock(returncode=1, stdout="")},
            {"return_value": MagicMock(returncode=0, stdout="   ")},
        ],
    )
    def test_none_when_gh_has_no_token(self, mocker, monkeypatch, outcome):
        from prtrail_cli.auth import resolve_github_token

        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        mocker.patch("prtrail_cli.auth.subprocess.run", **outcome)
        assert resolve_github_token({}) is None

    def test_require_names_the_purpose(self, mocker):
        from prtrail_cli.auth import require_github_token

        mocker.patch("prtrail_cli.auth.resolve_github_token", return_value=None)
        with pytest.raises(click.UsageError, match="needed to post comments"):
            require_github_token({}, "post comments")


# ---------------------------------------------------------------------------
# analyze
# ---------------------------------------------------------------------------


class TestAnalyze:
    def test_creates_session(self, mocker, tmp_path):
        store = _patch_common(mocker, tmp_path)
        _patch_github(mocker)

        result = _invoke("analyze", "--repo", "acme/api", "--pr", "7")

        assert result.exit_code == 0, result.output
        session = store.load(IDENTITY)
        assert [c.name for c in session.clusters] == ["Data Models", "Tests", "Auth"]
        assert session.clusters[2].depends_on == ["cluster-1"]
        assert session.review_mode == "normal"
        assert session.narrative.startswith("**Add auth** by @octocat")
        assert store.active_identity() == IDENTITY

    def test_self_review_detected(self, mocker, tmp_path):
        store = _patch_common(mocker, tmp_path)
        _patch_github(mocker, current_user="octocat")

        result = _invoke("analyze", "--repo", "acme/api", "--pr", "7")

        assert result.exit_code == 0, result.output
        assert store.load(IDENTITY).review_mode == "self-review"

    def test_existing_session_is_not_recomputed(self, mocker, tmp_path):
        store = _patch_common(mocker, tmp_path)
        _seed(store, staged=[(4, "Check expiry")])
        mock_get_repo = mocker.patch("prtrail_cli.commands.analyze.get_repo")

        result = _invoke("analyze", "--repo", "acme/api", "--pr", "7")

        assert result.exit_code == 0
        assert "already exists" in result.output
        mock_get_repo.assert_not_called()
        assert len(store.load(IDENTITY).comments) == 1

    def test_force_starts_over(self, mocker, tmp_path):
        store = _patch_common(mocker, tmp_path)
        _seed(store, staged=[(4, "Check expiry")])
        _patch_github(mocker)

        result = _invoke("analyze", "--repo", "acme/api", "--pr", "7", "--force")

        assert result.exit_code == 0, result.output
        assert store.load(IDENTITY).comments == []

    def test_json_output(self, mocker, tmp_path):
        _patch_common(mocker, tmp_path)
        _patch_github(mocker)

        result = _invoke("analyze", "--repo", "acme/api", "--pr", "7", "--json")

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["$schema"] == "review-state-v1"
        assert len(data["clusters"]) == 3

    def test_spec_file_attached(self, mocker, tmp_path):
        store = _patch_common(mocker, tmp_path)
        _patch_github(mocker)
        spec = tmp_path / "spec.md"
        spec.write_text("FR-1: tokens expire after 1h\n")

        result = _invoke("analyze", "--repo", "acme/api", "--pr", "7", "--spec-file", str(spec))

        assert result.exit_code == 0, result.output
        assert store.load(IDENTITY).spec_context == "FR-1: tokens expire after 1h\n"

    def test_missing_github_token(self, mocker, tmp_path):
        _patch_common(mocker, tmp_path, token=None)

        result = _invoke("analyze", "--repo", "acme/api", "--pr", "7")

        assert result.exit_code != 0
        assert "token" in result.output.lower()

    def test_github_error_exits_1(self, mocker, tmp_path):
        _patch_common(mocker, tmp_path)
        mocker.patch("prtrail_cli.commands.analyze.get_repo", return_value=_mock_repo())
        mocker.patch(
            "prtrail_cli.commands.analyze.get_pull", side_effect=GithubException(404, "Not Found", None)
        )

        result = _invoke("analyze", "--repo", "acme/api", "--pr", "7")

        assert result.exit_code == 1
        assert "Could not fetch PR #7" in result.output

    def test_bad_repo_name(self, mocker, tmp_path):
        _patch_common(mocker, tmp_path)
        result = _invoke("analyze", "--repo", "acme", "--pr", "7")
        assert result.exit_code == 2


# ---------------------------------------------------------------------------
# Session resolution + nav
# ---------------------------------------------------------------------------


class TestNav:
    def test_next_enters_first_cluster(self, mocker, tmp_path):
        store = _patch_common(mocker, tmp_path)
        _seed(store)

        result = _invoke("nav", "next")

        assert result.exit_code == 0, result.output
        session = store.load(IDENTITY)
        assert session.current_cluster_id == "cluster-1"
        assert session.clusters[0].status == "in_progress"

    def test_goto_and_back(self, mocker, tmp_path):
        store = _patch_common(mocker, tmp_path)
        _seed(store)

        assert _invoke("nav", "goto", "auth").exit_code == 0
        assert store.load(IDENTITY).current_cluster_id == "cluster-3"

        assert _invoke("nav", "back").exit_code == 0
        assert store.load(IDENTITY).current_cluster_id == "cluster-2"

    def test_explicit_identity(self, mocker, tmp_path):
        store = _patch_common(mocker, tmp_path)
        _seed(store)

        result = _invoke("nav", "next", "--repo", "acme/api", "--pr", "7")

        assert result.exit_code == 0, result.output

    def test_repo_without_pr_is_usage_error(self, mocker, tmp_path):
        store = _patch_common(mocker, tmp_path)
        _seed(store)
        result = _invoke("nav", "next", "--repo", "acme/api")
        assert result.exit_code == 2

    def test_no_active_session(self, mocker, tmp_path):
        _patch_common(mocker, tmp_path)
        result = _invoke("nav", "next")
        assert result.exit_code != 0
        assert "No active review session" in result.output

    def test_unknown_session(self, mocker, tmp_path):
        _patch_common(mocker, tmp_path)
        result = _invoke("nav", "next", "--repo", "acme/web", "--pr", "1")
        assert result.exit_code == 1
        assert "prtrail analyze" in result.output

    def test_engine_error_exits_1(self, mocker, tmp_path):
        store = _patch_common(mocker, tmp_path)
        _seed(store)

        result = _invoke("nav", "goto", "billing")

        assert result.exit_code == 1
        assert "cluster_not_found" in result.output

    def test_done_before_start_is_an_error(self, mocker, tmp_path):
        store = _patch_common(mocker, tmp_path)
        _seed(store)
        assert _invoke("nav", "done").exit_code == 1


# ---------------------------------------------------------------------------
# comment
# ---------------------------------------------------------------------------


class TestComment:
    def test_add_stage_edit(self, mocker, tmp_path):
        store = _patch_common(mocker, tmp_path)
        _seed(store)

        assert _invoke("comment", "add", "src/auth/token.ts", "4", "Check expiry").exit_code == 0
        assert _invoke("comment", "stage", "c-1").exit_code == 0
        result = _invoke("comment", "edit", "c-1", "Please check expiry", "--action", "soften")

        assert result.exit_code == 0, result.output
        comment = store.load(IDENTITY).comments[0]
        assert comment.state == "staged"
        assert comment.body == "Please check expiry"
        assert comment.original_body == "Check expiry"
        assert comment.history[-1].action == "soften"

    def test_skip_and_restore(self, mocker, tmp_path):
        store = _patch_common(mocker, tmp_path)
        _seed(store, staged=[(4, "Check expiry")])

        assert _invoke("comment", "skip", "c-1", "--reason", "later").exit_code == 0
        assert store.load(IDENTITY).comments[0].state == "skipped"
        assert _invoke("comment", "restore", "c-1").exit_code == 0

        comment = store.load(IDENTITY).comments[0]
        assert comment.state == "staged"
        assert comment.body == "Check expiry"

    def test_batch_failure_saves_nothing(self, mocker, tmp_path):
        store = _patch_common(mocker, tmp_path)
        _seed(store, staged=[(4, "Check expiry")])
        _invoke("comment", "add", "src/auth/token.ts", "9", "Rename this")

        result = _invoke("comment", "skip", "c-1", "c-2")

        assert result.exit_code == 1
        assert "state_transition" in result.output
        assert store.load(IDENTITY).comments[0].state == "staged"

    def test_add_on_unknown_file(self, mocker, tmp_path):
        store = _patch_common(mocker, tmp_path)
        _seed(store)
        result = _invoke("comment", "add", "README.md", "1", "Typo")
        assert result.exit_code == 1
        assert store.load(IDENTITY).comments == []

    def test_combine(self, mocker, tmp_path):
        store = _patch_common(mocker, tmp_path)
        _seed(store, staged=[(4, "First"), (9, "Second")])

        result = _invoke("comment", "combine", "c-1", "c-2")

        assert result.exit_code == 0, result.output
        session = store.load(IDENTITY)
        assert session.comments[0].body == "First\n\nSecond"
        assert session.comments[1].merged_into == "c-1"

    def test_list_json(self, mocker, tmp_path):
        store = _patch_common(mocker, tmp_path)
        _seed(store, staged=[(4, "First")])

        result = _invoke("comment", "list", "--json")

        assert result.exit_code == 0, result.output
        assert [c["id"] for c in json.loads(result.output)] == ["c-1"]


# ---------------------------------------------------------------------------
# post
# ---------------------------------------------------------------------------


class TestPost:
    def test_partial_failure_keeps_failed_comments_staged(self, mocker, tmp_path):
        store = _patch_common(mocker, tmp_path)
        _seed(store, staged=[(4, "First"), (9, "Second")])
        pr = _patch_github(mocker, module="post")
        pr.create_review_comment.side_effect = [
            MagicMock(id=101),
            GithubException(422, {"message": "line must be part of the diff"}, None),
        ]

        result = _invoke("post", "--all", "--yes")

        assert result.exit_code == 1
        assert "1 comment(s) failed to post" in result.output
        first, second = store.load(IDENTITY).comments
        assert (first.state, first.external_id) == ("posted", 101)
        assert (second.state, second.external_id) == ("staged", None)
        assert second.history == []

    def test_connection_error_still_saves_posted_comments(self, mocker, tmp_path):
        store = _patch_common(mocker, tmp_path)
        _seed(store, staged=[(4, "First"), (9, "Second")])
        pr = _patch_github(mocker, module="post")
        pr.create_review_comment.side_effect = [MagicMock(id=101), ConnectionError("reset by peer")]

        result = _invoke("post", "--all", "--yes")

        assert result.exit_code == 1
        assert "ConnectionError: reset by peer" in result.output
        first, second = store.load(IDENTITY).comments
        assert (first.state, first.external_id) == ("posted", 101)
        assert (second.state, second.external_id) == ("staged", None)

    def test_retry_posts_only_remaining(self, mocker, tmp_path):
        store = _patch_common(mocker, tmp_path)
        _seed(store, staged=[(4, "First")])
        pr = _patch_github(mocker, module="post")
        pr.create_review_comment.return_value = MagicMock(id=7)

        assert _invoke("post", "--all", "--yes").exit_code == 0
        result = _invoke("post", "--all", "--yes")

        assert result.exit_code == 0
        assert "No staged comments to post" in result.output
        assert pr.create_review_comment.call_count == 1

    def test_self_review_posts_issue_comments(self, mocker, tmp_path):
        store = _patch_common(mocker, tmp_path)
        _seed(store, review_mode="self-review", staged=[(4, "Note to self")])
        pr = _patch_github(mocker, module="post")
        pr.create_issue_comment.return_value = MagicMock(id=55)

        result = _invoke("post", "c-1", "--yes")

        assert result.exit_code == 0, result.output
        pr.create_issue_comment.assert_called_once_with("**src/auth/token.ts:4**\n\nNote to self")
        pr.create_review_comment.assert_not_called()
        assert store.load(IDENTITY).comments[0].external_id == 55

    def test_requires_ids_or_all(self, mocker, tmp_path):
        store = _patch_common(mocker, tmp_path)
        _seed(store)
        assert _invoke("post").exit_code == 2
        assert _invoke("post", "c-1", "--all").exit_code == 2

    def test_confirmation_declined(self, mocker, tmp_path):
        store = _patch_common(mocker, tmp_path)
        _seed(store, staged=[(4, "First")])
        pr = _patch_github(mocker, module="post")

        result = CliRunner().invoke(main, ["post", "--all"], input="n\n")

        assert result.exit_code != 0
        pr.create_review_comment.assert_not_called()
        assert store.load(IDENTITY).comments[0].state == "staged"


# ---------------------------------------------------------------------------
# state, resume, qa
# ---------------------------------------------------------------------------


class TestState:
    def test_show_json(self, mocker, tmp_path):
        store = _patch_common(mocker, tmp_path)
        _seed(store)

        result = _invoke("state", "show", "--json")

        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["identity"] == {"owner": "acme", "repo": "api", "pr_number": 7}

    def test_show_renders(self, mocker, tmp_path):
        store = _patch_common(mocker, tmp_path)
        _seed(store, staged=[(4, "First")])

        result = _invoke("state", "show")

        assert result.exit_code == 0, result.output
        assert "Data Models" in result.output

    def test_clear(self, mocker, tmp_path):
        store = _patch_common(mocker, tmp_path)
        _seed(store)

        result = _invoke("state", "clear", "--yes")

        assert result.exit_code == 0, result.output
        assert "Cleared" in result.output
        assert store.load(IDENTITY) is None

    def test_corrupt_state_reported(self, mocker, tmp_path):
        store = _patch_common(mocker, tmp_path)
        _seed(store)
        store.path_for(IDENTITY).write_text("{broken")

        result = _invoke("state", "show", "--repo", "acme/api", "--pr", "7")

        assert result.exit_code == 1
        assert "corrupt_state" in result.output
        assert store.path_for(IDENTITY).read_text() == "{broken"


class TestResumeAndQA:
    def test_resume_shows_current_cluster(self, mocker, tmp_path):
        store = _patch_common(mocker, tmp_path)
        _seed(store, staged=[(4, "First")])
        _invoke("nav", "next")

        result = _invoke("resume")

        assert result.exit_code == 0, result.output
        assert "Data Models" in result.output
        assert "staged comment(s) not yet posted" in result.output

    def test_qa_defaults_context_to_current_cluster(self, mocker, tmp_path):
        store = _patch_common(mocker, tmp_path)
        _seed(store)
        _invoke("nav", "next")

        result = _invoke("qa", "Why a new type?", "Shared with the API layer.")

        assert result.exit_code == 0, result.output
        entry = store.load(IDENTITY).questions[0]
        assert entry.question == "Why a new type?"
        assert entry.context == "Data Models"
