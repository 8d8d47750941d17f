from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from github import Github, GithubException

from prtrail_core.comments import PostResult
from prtrail_core.diff import map_change_type
from prtrail_core.graph import ContentReader
from prtrail_core.session import ReviewComment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PullInfo:
    number: int
    title: str
    author: str
    head_branch: str
    base_branch: str
    head_sha: str


def get_repo(repo_name: str, token: str):
    return Github(token).get_repo(repo_name)


def get_pull(repo, pr_number: int):
    return repo.get_pull(pr_number)


def get_diff(pr):
    return pr.get_files()


def get_pull_info(pr) -> PullInfo:
    return PullInfo(
        number=pr.number,
        title=pr.title or "",
        author=pr.user.login if pr.user else "",
        head_branch=pr.head.ref,
        base_branch=pr.base.ref,
        head_sha=pr.head.sha,
    )


def get_current_user(token: str) -> str | None:
    """Login of the token's owner, or None when it cannot be determined."""
    try:
        return Github(token).get_user().login
    except GithubException as e:
        logger.debug("Could not resolve the authenticated user: %s", e)
        return None


def to_diff_records(files) -> list[tuple[str, str, int, int]]:
    """PyGithub File objects -> (path, change type, additions, deletions), in API order."""
    return [(f.filename, map_change_type(f.status), f.additions, f.deletions) for f in files]


def remote_reader(repo, head_sha: str) -> ContentReader:
    """Read file text at the PR head through the contents API.

    Every fetch is pinned to ``head_sha`` so all content comes from the same
    snapshot as the diff. A file that cannot be fetched simply contributes no
    import edges.
    """

    def read(path: str) -> str | None:
        try:
            return repo.get_contents(path, ref=head_sha).decoded_content.decode("utf-8", errors="replace")
        except GithubException as e:
            logger.debug("Could not fetch %s at %s: %s", path, head_sha[:7], e)
            return None

    return read


def local_reader(root: str | Path) -> ContentReader:
    """Read file text from a local checkout of the PR head."""
    base = Path(root)

    def read(path: str) -> str | None:
        target = base / path
        if not target.is_file():
            return None
        return target.read_text(encoding="utf-8", errors="replace")

    return read


def post_review_comment(pr, comment: ReviewComment) -> PostResult:
    """Post one comment inline on the PR diff at its file and line."""
    try:
        created = pr.create_review_comment(comment.body, pr.head.sha, comment.file, line=comment.line)
    except GithubException as e:
        return PostResult(comment_id=comment.id, success=False, error=f"{e.status}: {e.data}")
    return PostResult(comment_id=comment.id, success=True, external_id=created.id)


def post_issue_comment(pr, comment: ReviewComment) -> PostResult:
    """Post one comment on the PR conversation.

    Used for self-review sessions, where notes are addressed to the PR as a
    whole. The file and line are folded into the body.
    """
    body = f"**{comment.file}:{comment.line}**\n\n{comment.body}"
    try:
        created = pr.create_issue_comment(body)
    except GithubException as e:
        return PostResult(comment_id=comment.id, success=False, error=f"{e.status}: {e.data}")
    return PostResult(comment_id=comment.id, success=True, external_id=created.id)
