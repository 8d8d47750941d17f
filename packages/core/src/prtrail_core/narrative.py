from __future__ import annotations

from prtrail_core.clustering import ClusterResult


def build_narrative(
    title: str,
    author: str,
    head_branch: str,
    result: ClusterResult,
    spec_context: str | None = None,
) -> str:
    """Markdown skeleton stored as the session narrative.

    Purely structural: counts, concerns and reading order. Anything richer is
    written by whoever consumes the session.
    """
    file_count = result.total_files
    lines = [
        f"**{title}** by @{author}",
        "",
        f"This PR contains {file_count} changed file{'s' if file_count != 1 else ''} "
        f"organized into {len(result.clusters)} review cluster{'s' if len(result.clusters) != 1 else ''}.",
    ]

    if result.cross_cutting_concerns:
        lines += ["", f"**Cross-cutting concerns**: {', '.join(result.cross_cutting_concerns)}"]

    if result.graph.cycles:
        lines += ["", f"**Import cycles**: {len(result.graph.cycles)} (files in a cycle are reviewed together)"]

    if result.clusters:
        lines += ["", "**Suggested reading order**:"]
        for cluster in result.clusters:
            lines.append(f"{cluster.priority}. {cluster.name} ({len(cluster.files)} files)")

    if spec_context:
        lines += ["", "**Specification context attached** (see `prtrail state show`)."]

    lines += ["", f"Branch: `{head_branch}`"]
    return "\n".join(lines)
