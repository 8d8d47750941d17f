"""resume command: reopen a session exactly where it was left."""

from __future__ import annotations

import click
from rich.console import Console

from prtrail_cli.common import load_session, session_options
from prtrail_cli.render import cluster_panel, cluster_table, session_header
from prtrail_core.navigation import NavigationEngine

console = Console()


@click.command("resume")
@session_options
@click.pass_context
def resume_cmd(ctx, repo: str | None, pr_number: int | None):
    """Show where the session stands and the cluster to continue with.

    Nothing is recomputed: the plan stored at analyze time stays the source
    of truth for the life of the session.
    """
    session = load_session(ctx, repo, pr_number)
    navigator = NavigationEngine(session)

    console.print(session_header(session))
    console.print(cluster_table(session))

    current = navigator.current()
    if current is not None:
        console.print(cluster_panel(current, session))
    elif navigator.progress()["pending"]:
        console.print("[dim]Run `prtrail nav next` to start with the first cluster.[/dim]")
    else:
        console.print("[green]All clusters reviewed.[/green]")

    staged = [c for c in session.live_comments() if c.state == "staged"]
    if staged:
        console.print(f"[yellow]{len(staged)} staged comment(s) not yet posted. Run `prtrail post --all`.[/yellow]")
