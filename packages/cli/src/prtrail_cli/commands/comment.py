"""comment commands: draft review comments before posting them."""

from __future__ import annotations

import json
from dataclasses import asdict

import click
from rich.console import Console
from rich.markup import escape

from prtrail_cli.common import load_session, session_options
from prtrail_cli.render import comment_table
from prtrail_core.comments import CommentLifecycle, EDIT_TONES
from prtrail_core.session import COMMENT_STATES

console = Console()


@click.group("comment")
def comment_group():
    """Draft, edit and triage review comments."""


@comment_group.command("add")
@click.argument("file")
@click.argument("line", type=int)
@click.argument("body")
@click.option("--context", default=None, help="Context shown alongside the comment.")
@click.option("--stage", "stage_now", is_flag=True, help="Stage the comment immediately.")
@session_options
@click.pass_context
def add_cmd(ctx, file: str, line: int, body: str, context: str | None, stage_now: bool, repo, pr_number):
    """Record a suggested comment on FILE at LINE."""
    session = load_session(ctx, repo, pr_number)
    lifecycle = CommentLifecycle(session)
    comment = lifecycle.add(file, line, body, context=context)
    if stage_now:
        lifecycle.stage(comment.id)
    ctx.obj["store"].save(session)
    console.print(f"[green]Added {comment.id} ({comment.state}) on {escape(file)}:{line}.[/green]")


def _batch_command(action: str, past: str, help_text: str):
    @click.argument("comment_ids", nargs=-1, required=True)
    @session_options
    @click.pass_context
    def command(ctx, comment_ids: tuple[str, ...], repo, pr_number, **kwargs):
        session = load_session(ctx, repo, pr_number)
        changed = CommentLifecycle(session).batch(action, comment_ids, reason=kwargs.get("reason"))
        ctx.obj["store"].save(session)
        console.print(f"[green]{past.capitalize()} {', '.join(c.id for c in changed)}.[/green]")

    command.__doc__ = help_text
    return command


comment_group.command("stage")(
    _batch_command("stage", "staged", "Accept suggested comments for posting (all or none).")
)
comment_group.command("skip")(
    click.option("--reason", default=None, help="Why the comments are being skipped.")(
        _batch_command("skip", "skipped", "Set staged comments aside (all or none).")
    )
)
comment_group.command("restore")(
    _batch_command("restore", "restored", "Bring skipped comments back to staged (all or none).")
)


@comment_group.command("edit")
@click.argument("comment_id")
@click.argument("body")
@click.option(
    "--action",
    type=click.Choice(EDIT_TONES),
    default="reword",
    show_default=True,
    help="Kind of edit, recorded in the comment history.",
)
@click.option("--reason", default=None, help="Why the comment was changed.")
@session_options
@click.pass_context
def edit_cmd(ctx, comment_id: str, body: str, action: str, reason: str | None, repo, pr_number):
    """Replace the body of a comment, keeping the previous text in its history."""
    session = load_session(ctx, repo, pr_number)
    comment = CommentLifecycle(session).edit(comment_id, body, action=action, reason=reason)
    ctx.obj["store"].save(session)
    console.print(f"[green]Updated {comment.id} ({action}).[/green]")


@comment_group.command("combine")
@click.argument("target_id")
@click.argument("source_id")
@session_options
@click.pass_context
def combine_cmd(ctx, target_id: str, source_id: str, repo, pr_number):
    """Merge SOURCE_ID into TARGET_ID. Both must be on the same file."""
    session = load_session(ctx, repo, pr_number)
    target = CommentLifecycle(session).combine(target_id, source_id)
    ctx.obj["store"].save(session)
    console.print(f"[green]Combined {source_id} into {target.id}.[/green]")


@comment_group.command("list")
@click.option("--state", type=click.Choice(COMMENT_STATES), default=None, help="Only show comments in this state.")
@click.option("--json", "as_json", is_flag=True, help="Print comments as JSON.")
@session_options
@click.pass_context
def list_cmd(ctx, state: str | None, as_json: bool, repo, pr_number):
    """List comments in the session."""
    session = load_session(ctx, repo, pr_number)
    comments = CommentLifecycle(session).listing(state)

    if as_json:
        click.echo(json.dumps([asdict(c) for c in comments], indent=2))
        return
    if not comments:
        console.print("[yellow]No comments.[/yellow]")
        return
    console.print(comment_table(comments))
