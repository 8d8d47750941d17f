"""Reviewer position over a session's clusters.

Navigation only ever reads the cluster plan produced at analyze time; it
never reclusters or reorders. Cluster status moves pending -> in_progress on
entry and in_progress -> reviewed only when the reviewer advances past it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from prtrail_core.errors import ClusterNotFoundError, StateTransitionError
from prtrail_core.session import FileCluster, ReviewSession, utc_now

logger = logging.getLogger(__name__)

MOVED = "moved"
COMPLETE = "complete"
BLOCKED = "blocked"
AT_START = "at_start"


@dataclass(frozen=True)
class NavigationResult:
    status: str
    cluster: FileCluster | None = None
    blocked_by: tuple[str, ...] = ()

    @property
    def moved(self) -> bool:
        return self.status == MOVED


class NavigationEngine:
    def __init__(self, session: ReviewSession):
        self.session = session

    def ordered(self) -> list[FileCluster]:
        return sorted(self.session.clusters, key=lambda c: c.priority)

    def current(self) -> FileCluster | None:
        if self.session.current_cluster_id is None:
            return None
        return self.session.cluster_by_id(self.session.current_cluster_id)

    def _enter(self, cluster: FileCluster) -> NavigationResult:
        now = utc_now()
        if cluster.status == "pending":
            cluster.status = "in_progress"
        self.session.current_cluster_id = cluster.id
        self.session.touch(now)
        logger.debug("Entered %s (%s)", cluster.id, cluster.name)
        return NavigationResult(status=MOVED, cluster=cluster)

    def mark_reviewed(self, cluster_id: str | None = None) -> FileCluster:
        cluster = self.session.cluster_by_id(cluster_id) if cluster_id else self.current()
        if cluster is None:
            raise ClusterNotFoundError(
                f"Cluster not found: {cluster_id}" if cluster_id else "No cluster is in progress.",
                identifier=cluster_id,
            )
        if cluster.status == "pending":
            raise StateTransitionError(
                f"Cluster {cluster.id} has not been started.", identifier=cluster.id, current=cluster.status
            )
        if cluster.status != "reviewed":
            cluster.status = "reviewed"
            self.session.touch()
        if cluster.id not in self.session.reviewed_sections:
            self.session.reviewed_sections.append(cluster.id)
        return cluster

    def next(self) -> NavigationResult:
        """Finish the current cluster and enter the first ready pending one.

        A pending cluster is ready when each cluster it depends on is
        in progress or reviewed. When pending clusters remain but none is
        ready, the result is ``blocked``: the current cluster is still
        marked reviewed, but the position stays on it.
        """
        current = self.current()
        if current is not None and current.status == "in_progress":
            self.mark_reviewed(current.id)

        pending = [c for c in self.ordered() if c.status == "pending"]
        if not pending:
            return NavigationResult(status=COMPLETE, cluster=self.current())

        for cluster in pending:
            unmet = self._unmet_dependencies(cluster)
            if not unmet:
                return self._enter(cluster)

        first = pending[0]
        return NavigationResult(status=BLOCKED, cluster=first, blocked_by=self._unmet_dependencies(first))

    def back(self) -> NavigationResult:
        ordered = self.ordered()
        current = self.current()
        if current is None or ordered.index(current) == 0:
            return NavigationResult(status=AT_START, cluster=current)
        return self._enter(ordered[ordered.index(current) - 1])

    def goto(self, target: str) -> NavigationResult:
        """Jump to a cluster by id, priority number or name fragment."""
        return self._enter(self.find(target))

    def find(self, target: str) -> FileCluster:
        target = target.strip()
        ordered = self.ordered()

        cluster = self.session.cluster_by_id(target)
        if cluster is not None:
            return cluster
        if target.isdigit():
            match = next((c for c in ordered if c.priority == int(target)), None)
            if match is not None:
                return match

        needle = target.lower()
        exact = [c for c in ordered if c.name.lower() == needle]
        if exact:
            return exact[0]
        partial = [c for c in ordered if needle and needle in c.name.lower()]
        if partial:
            return partial[0]
        raise ClusterNotFoundError(f"No cluster matches {target!r}.", identifier=target)

    def _unmet_dependencies(self, cluster: FileCluster) -> tuple[str, ...]:
        unmet = []
        for dep_id in cluster.depends_on:
            dep = self.session.cluster_by_id(dep_id)
            if dep is None or dep.status == "pending":
                unmet.append(dep_id)
        return tuple(unmet)

    def progress(self) -> dict:
        counts = {"pending": 0, "in_progress": 0, "reviewed": 0}
        for cluster in self.session.clusters:
            counts[cluster.status] = counts.get(cluster.status, 0) + 1
        total = len(self.session.clusters)
        return {
            "total": total,
            **counts,
            "percent": round(100 * counts["reviewed"] / total) if total else 100,
        }
