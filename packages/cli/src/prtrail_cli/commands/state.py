"""state commands: inspect or discard the stored review session."""

from __future__ import annotations

import json

import click
from rich.console import Console
from rich.markup import escape

from prtrail_cli.common import load_session, resolve_identity, session_options
from prtrail_cli.render import cluster_table, comment_table, narrative, session_header
from prtrail_store.codec import session_to_dict

console = Console()


@click.group("state")
def state_group():
    """Inspect or clear the stored review session."""


@state_group.command("show")
@session_options
@click.option("--json", "as_json", is_flag=True, help="Print the session document as JSON.")
@click.pass_context
def show_cmd(ctx, repo: str | None, pr_number: int | None, as_json: bool):
    """Show the session: plan, progress, comments and Q&A."""
    session = load_session(ctx, repo, pr_number)

    if as_json:
        click.echo(json.dumps(session_to_dict(session), indent=2, sort_keys=True))
        return

    console.print(session_header(session))
    console.print(narrative(session))
    console.print(cluster_table(session))

    comments = session.live_comments()
    if comments:
        console.print(comment_table(comments))

    if session.questions:
        console.print("\n[bold]Questions[/bold]")
        for entry in session.questions:
            console.print(f"[cyan]Q:[/cyan] {escape(entry.question)}\n[green]A:[/green] {escape(entry.answer)}")
            if entry.context:
                console.print(f"   [dim]{escape(entry.context)}[/dim]")

    if session.spec_context:
        console.print("\n[bold]Specification context[/bold]")
        console.print(session.spec_context, markup=False)


@state_group.command("clear")
@session_options
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt.")
@click.pass_context
def clear_cmd(ctx, repo: str | None, pr_number: int | None, yes: bool):
    """Delete the session, including unposted comment drafts."""
    identity = resolve_identity(ctx, repo, pr_number)
    if not yes:
        click.confirm(f"Delete the review session for {identity}?", abort=True)

    if ctx.obj["store"].clear(identity):
        console.print(f"[green]Cleared review session for {identity}.[/green]")
    else:
        console.print(f"[yellow]No review session for {identity}.[/yellow]")
