"""nav commands: move through the review plan one cluster at a time."""

from __future__ import annotations

import click
from rich.console import Console
from rich.markup import escape

from prtrail_cli.common import load_session, session_options
from prtrail_cli.render import cluster_panel, navigation_message, progress_line
from prtrail_core.navigation import NavigationEngine, NavigationResult

console = Console()


def _report(result: NavigationResult, session) -> None:
    message = navigation_message(result, session)
    if message:
        console.print(message)
    if result.moved and result.cluster is not None:
        console.print(cluster_panel(result.cluster, session))
    console.print(progress_line(session))


@click.group("nav")
def nav_group():
    """Navigate between review clusters."""


@nav_group.command("next")
@session_options
@click.pass_context
def next_cmd(ctx, repo: str | None, pr_number: int | None):
    """Mark the current cluster reviewed and open the next ready one."""
    session = load_session(ctx, repo, pr_number)
    result = NavigationEngine(session).next()
    ctx.obj["store"].save(session)
    _report(result, session)


@nav_group.command("back")
@session_options
@click.pass_context
def back_cmd(ctx, repo: str | None, pr_number: int | None):
    """Return to the previous cluster without marking the current one reviewed."""
    session = load_session(ctx, repo, pr_number)
    result = NavigationEngine(session).back()
    if result.moved:
        ctx.obj["store"].save(session)
    _report(result, session)


@nav_group.command("goto")
@click.argument("target")
@session_options
@click.pass_context
def goto_cmd(ctx, target: str, repo: str | None, pr_number: int | None):
    """Jump to a cluster by id, number or name (case-insensitive, partial match)."""
    session = load_session(ctx, repo, pr_number)
    result = NavigationEngine(session).goto(target)
    ctx.obj["store"].save(session)
    _report(result, session)


@nav_group.command("current")
@session_options
@click.pass_context
def current_cmd(ctx, repo: str | None, pr_number: int | None):
    """Show the cluster under review."""
    session = load_session(ctx, repo, pr_number)
    cluster = NavigationEngine(session).current()
    if cluster is None:
        console.print("[yellow]No cluster in progress. Run `prtrail nav next` to start.[/yellow]")
        return
    console.print(cluster_panel(cluster, session))


@nav_group.command("done")
@session_options
@click.pass_context
def done_cmd(ctx, repo: str | None, pr_number: int | None):
    """Mark the current cluster reviewed without moving on."""
    session = load_session(ctx, repo, pr_number)
    cluster = NavigationEngine(session).mark_reviewed()
    ctx.obj["store"].save(session)
    console.print(f"[green]Marked {escape(cluster.name)} reviewed.[/green]")
    console.print(progress_line(session))
