"""The review-session aggregate and its invariants.

A ReviewSession exclusively owns its clusters, comments and Q&A entries.
Nothing here touches the filesystem: CommentLifecycle and NavigationEngine
mutate the in-memory aggregate, and a store persists it only after
``validate_session`` has accepted it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone

from prtrail_core.diff import CHANGE_TYPES
from prtrail_core.errors import InvariantViolationError

REVIEW_MODES = ("normal", "self-review")
CLUSTER_STATUSES = ("pending", "in_progress", "reviewed")
COMMENT_STATES = ("suggested", "staged", "skipped", "posted")
EDIT_ACTIONS = ("reword", "soften", "strengthen", "combine", "skip", "restore", "post")

_IDENTITY_RE = re.compile(r"^(?P<owner>[\w.-]+)/(?P<repo>[\w.-]+)#(?P<pr>\d+)$")


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True, order=True)
class SessionIdentity:
    """Globally unique (owner, repository, pull-request number) triple."""

    owner: str
    repo: str
    pr_number: int

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    def __str__(self) -> str:
        return f"{self.owner}/{self.repo}#{self.pr_number}"

    @classmethod
    def parse(cls, text: str) -> SessionIdentity:
        """Parse ``owner/repo#123``."""
        match = _IDENTITY_RE.match(text.strip())
        if not match:
            raise ValueError(f"Not a session identity (expected owner/repo#N): {text!r}")
        return cls(owner=match["owner"], repo=match["repo"], pr_number=int(match["pr"]))

    @classmethod
    def from_repo(cls, full_name: str, pr_number: int) -> SessionIdentity:
        owner, sep, repo = full_name.partition("/")
        if not sep or not owner or not repo or "/" in repo:
            raise ValueError(f"Repository must be in owner/name format: {full_name!r}")
        return cls(owner=owner, repo=repo, pr_number=pr_number)


@dataclass
class ClusterFile:
    path: str
    change_type: str
    additions: int
    deletions: int
    annotation: str | None = None


@dataclass
class FileCluster:
    id: str
    name: str
    description: str
    files: list[ClusterFile]
    priority: int
    depends_on: list[str] = field(default_factory=list)
    status: str = "pending"
    oversized: bool = False
    context: str | None = None

    @property
    def paths(self) -> list[str]:
        return [f.path for f in self.files]


@dataclass
class CommentEdit:
    """One entry of a comment's append-only audit trail."""

    timestamp: str
    action: str
    previous_body: str | None = None
    reason: str | None = None


@dataclass
class ReviewComment:
    id: str
    file: str
    line: int
    body: str
    original_body: str
    state: str = "suggested"
    history: list[CommentEdit] = field(default_factory=list)
    external_id: int | None = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    context: str | None = None
    # Set on the source of a combine; the comment is then logically deleted.
    merged_into: str | None = None

    @property
    def is_live(self) -> bool:
        return self.merged_into is None


@dataclass(frozen=True)
class QAEntry:
    question: str
    answer: str
    context: str
    timestamp: str


@dataclass
class ReviewSession:
    identity: SessionIdentity
    branch_name: str
    base_branch: str
    title: str
    author: str
    review_mode: str = "normal"
    narrative: str = ""
    clusters: list[FileCluster] = field(default_factory=list)
    comments: list[ReviewComment] = field(default_factory=list)
    current_cluster_id: str | None = None
    reviewed_sections: list[str] = field(default_factory=list)
    questions: list[QAEntry] = field(default_factory=list)
    started_at: str = field(default_factory=utc_now)
    last_updated: str = field(default_factory=utc_now)
    spec_context: str | None = None

    def touch(self, timestamp: str | None = None) -> None:
        self.last_updated = timestamp or utc_now()

    def cluster_by_id(self, cluster_id: str) -> FileCluster | None:
        return next((c for c in self.clusters if c.id == cluster_id), None)

    def comment_by_id(self, comment_id: str) -> ReviewComment | None:
        return next((c for c in self.comments if c.id == comment_id), None)

    def cluster_for_file(self, path: str) -> FileCluster | None:
        return next((c for c in self.clusters if path in c.paths), None)

    def file_paths(self) -> set[str]:
        return {path for cluster in self.clusters for path in cluster.paths}

    def live_comments(self) -> list[ReviewComment]:
        return [c for c in self.comments if c.is_live]


def create_session(
    identity: SessionIdentity,
    branch_name: str,
    base_branch: str,
    title: str,
    author: str,
    review_mode: str = "normal",
) -> ReviewSession:
    now = utc_now()
    return ReviewSession(
        identity=identity,
        branch_name=branch_name,
        base_branch=base_branch,
        title=title,
        author=author,
        review_mode=review_mode,
        started_at=now,
        last_updated=now,
    )


def record_question(session: ReviewSession, question: str, answer: str, context: str = "") -> QAEntry:
    """Append a Q&A note to the session. Entries are never edited afterwards."""
    if not question.strip():
        raise InvariantViolationError("A Q&A entry needs a question.")
    entry = QAEntry(question=question, answer=answer, context=context, timestamp=utc_now())
    session.questions.append(entry)
    session.touch(entry.timestamp)
    return entry


def _check(condition: bool, message: str, identifier: str | None = None) -> None:
    if not condition:
        raise InvariantViolationError(message, identifier=identifier)


def _has_cycle(depends_on: dict[str, list[str]]) -> str | None:
    """Return a cluster id on a dependsOn cycle, or None."""
    visiting: set[str] = set()
    done: set[str] = set()
    for start in sorted(depends_on):
        if start in done:
            continue
        stack = [(start, iter(depends_on.get(start, [])))]
        visiting.add(start)
        while stack:
            node, children = stack[-1]
            child = next(children, None)
            if child is None:
                stack.pop()
                visiting.discard(node)
                done.add(node)
                continue
            if child in visiting:
                return child
            if child not in done:
                visiting.add(child)
                stack.append((child, iter(depends_on.get(child, []))))
    return None


def validate_session(session: ReviewSession) -> None:
    """Raise InvariantViolationError if the aggregate is not persistable."""
    _check(session.review_mode in REVIEW_MODES, f"Unknown review mode {session.review_mode!r}.")

    cluster_ids = [c.id for c in session.clusters]
    _check(len(cluster_ids) == len(set(cluster_ids)), "Cluster ids must be unique.")
    priorities = [c.priority for c in session.clusters]
    _check(len(priorities) == len(set(priorities)), "Cluster priorities must be unique.")
    known = set(cluster_ids)

    for cluster in session.clusters:
        _check(bool(cluster.files), f"Cluster {cluster.id} has no files.", cluster.id)
        _check(cluster.status in CLUSTER_STATUSES, f"Cluster {cluster.id} has unknown status {cluster.status!r}.", cluster.id)
        for dep in cluster.depends_on:
            _check(dep in known, f"Cluster {cluster.id} depends on unknown cluster {dep}.", cluster.id)
            _check(dep != cluster.id, f"Cluster {cluster.id} depends on itself.", cluster.id)
        for f in cluster.files:
            _check(f.change_type in CHANGE_TYPES, f"{f.path} has unknown change type {f.change_type!r}.", f.path)

    on_cycle = _has_cycle({c.id: list(c.depends_on) for c in session.clusters})
    _check(on_cycle is None, f"Cluster dependencies form a cycle through {on_cycle}.", on_cycle)

    if session.current_cluster_id is not None:
        _check(
            session.current_cluster_id in known,
            f"Current cluster {session.current_cluster_id} does not exist.",
            session.current_cluster_id,
        )
    for section in session.reviewed_sections:
        _check(section in known, f"Reviewed section {section} is not a cluster.", section)
    reviewed = {c.id for c in session.clusters if c.status == "reviewed"}
    _check(
        len(session.reviewed_sections) == len(reviewed) and set(session.reviewed_sections) == reviewed,
        "Reviewed sections do not match the clusters marked reviewed.",
    )

    paths = session.file_paths()
    comment_ids = [c.id for c in session.comments]
    _check(len(comment_ids) == len(set(comment_ids)), "Comment ids must be unique.")
    for comment in session.comments:
        _check(comment.file in paths, f"Comment {comment.id} references {comment.file}, which is in no cluster.", comment.id)
        _check(comment.state in COMMENT_STATES, f"Comment {comment.id} has unknown state {comment.state!r}.", comment.id)
        _check(comment.line >= 1, f"Comment {comment.id} has invalid line {comment.line}.", comment.id)
        if comment.state == "posted":
            _check(comment.external_id is not None, f"Posted comment {comment.id} has no external id.", comment.id)
        if comment.merged_into is not None:
            _check(comment.merged_into in comment_ids, f"Comment {comment.id} merged into unknown comment.", comment.id)
        for edit in comment.history:
            _check(edit.action in EDIT_ACTIONS, f"Comment {comment.id} has unknown edit action {edit.action!r}.", comment.id)
