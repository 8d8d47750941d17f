"""rich renderables for sessions, clusters and comments."""

from __future__ import annotations

from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from prtrail_core.navigation import BLOCKED, COMPLETE, NavigationEngine, NavigationResult
from prtrail_core.session import FileCluster, ReviewComment, ReviewSession

_STATUS_STYLE = {
    "pending": "dim",
    "in_progress": "yellow",
    "reviewed": "green",
}

_STATE_STYLE = {
    "suggested": "cyan",
    "staged": "yellow",
    "skipped": "dim",
    "posted": "green",
}

_CHANGE_MARK = {
    "added": "[green]A[/green]",
    "modified": "[yellow]M[/yellow]",
    "deleted": "[red]D[/red]",
    "renamed": "[blue]R[/blue]",
}


def _styled(value: str, styles: dict) -> str:
    style = styles.get(value, "white")
    return f"[{style}]{value}[/{style}]"


def cluster_table(session: ReviewSession) -> Table:
    table = Table(title=f"Review Plan: {session.identity}", show_header=True, header_style="bold cyan")
    table.add_column("#", justify="right", width=3)
    table.add_column("Cluster", style="bold")
    table.add_column("Files", justify="right", width=6)
    table.add_column("Depends On")
    table.add_column("Status", width=12)

    for cluster in sorted(session.clusters, key=lambda c: c.priority):
        marker = "→ " if cluster.id == session.current_cluster_id else ""
        name = f"{marker}{escape(cluster.name)}"
        if cluster.oversized:
            name += " [red](oversized)[/red]"
        deps = ", ".join(escape(session.cluster_by_id(d).name) for d in cluster.depends_on if session.cluster_by_id(d))
        table.add_row(
            str(cluster.priority),
            name,
            str(len(cluster.files)),
            deps or "-",
            _styled(cluster.status, _STATUS_STYLE),
        )
    return table


def cluster_panel(cluster: FileCluster, session: ReviewSession) -> Panel:
    lines = [Text.from_markup(f"[dim]{escape(cluster.description)}[/dim]"), Text("")]
    for f in cluster.files:
        line = f"{_CHANGE_MARK.get(f.change_type, '?')} {escape(f.path)} [dim]+{f.additions}/-{f.deletions}[/dim]"
        if f.annotation:
            line += f"  [italic cyan]{escape(f.annotation)}[/italic cyan]"
        lines.append(Text.from_markup(line))

    comments = [c for c in session.live_comments() if c.file in cluster.paths]
    if comments:
        lines += [Text(""), Text.from_markup(f"[bold]{len(comments)} comment(s) on this cluster[/bold]")]
    if cluster.context:
        lines += [Text(""), Text(cluster.context)]

    body = Text("\n").join(lines)
    title = f"[{cluster.priority}/{len(session.clusters)}] {escape(cluster.name)} ({_styled(cluster.status, _STATUS_STYLE)})"
    return Panel(body, title=title, title_align="left")


def comment_table(comments: list[ReviewComment]) -> Table:
    table = Table(title="Comments", show_header=True, header_style="bold cyan")
    table.add_column("ID", style="bold", width=6)
    table.add_column("Location")
    table.add_column("State", width=10)
    table.add_column("Comment", max_width=60)
    table.add_column("Edits", justify="right", width=5)

    for c in comments:
        table.add_row(
            c.id,
            escape(f"{c.file}:{c.line}"),
            _styled(c.state, _STATE_STYLE),
            escape(c.body if len(c.body) <= 120 else c.body[:117] + "..."),
            str(len(c.history)),
        )
    return table


def progress_line(session: ReviewSession) -> str:
    progress = NavigationEngine(session).progress()
    staged = sum(1 for c in session.live_comments() if c.state == "staged")
    posted = sum(1 for c in session.live_comments() if c.state == "posted")
    return (
        f"[bold]{progress['reviewed']}/{progress['total']}[/bold] clusters reviewed ({progress['percent']}%)"
        f" · {staged} staged · {posted} posted comment(s)"
    )


def session_header(session: ReviewSession) -> Panel:
    mode = " [magenta](self-review)[/magenta]" if session.review_mode == "self-review" else ""
    header = (
        f"[bold]{escape(session.title)}[/bold] by @{escape(session.author)}{mode}\n"
        f"[dim]{escape(session.branch_name)} → {escape(session.base_branch)} · started {session.started_at[:19].replace('T', ' ')}"
        f" · updated {session.last_updated[:19].replace('T', ' ')}[/dim]\n"
        f"{progress_line(session)}"
    )
    return Panel(header, title=str(session.identity), title_align="left")


def narrative(session: ReviewSession) -> Markdown:
    return Markdown(session.narrative or "_No narrative._")


def navigation_message(result: NavigationResult, session: ReviewSession) -> str:
    if result.status == COMPLETE:
        return "[green]All clusters reviewed. Run `prtrail post --all` to post staged comments.[/green]"
    if result.status == BLOCKED:
        names = ", ".join(escape(session.cluster_by_id(d).name) for d in result.blocked_by if session.cluster_by_id(d))
        return (
            f"[yellow]{escape(result.cluster.name)} depends on clusters not started yet: {names}. "
            "Use `prtrail nav goto` to review one of those first.[/yellow]"
        )
    if not result.moved:
        return "[yellow]Already at the first cluster.[/yellow]"
    return ""
