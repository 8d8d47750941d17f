"""post command: send staged comments to GitHub."""

from __future__ import annotations

import click
from github import GithubException
from rich.console import Console
from rich.markup import escape

from prtrail_cli.common import load_session, session_options
from prtrail_cli.render import comment_table
from prtrail_core.comments import CommentLifecycle
from prtrail_core.gh.pull_request import get_pull, get_repo, post_issue_comment, post_review_comment

console = Console()


@click.command("post")
@click.argument("comment_ids", nargs=-1)
@click.option("--all", "post_all", is_flag=True, help="Post every staged comment.")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt.")
@session_options
@click.pass_context
def post_cmd(ctx, comment_ids: tuple[str, ...], post_all: bool, yes: bool, repo, pr_number):
    """Post staged comments, by id or with --all.

    Comments that fail to post stay staged, untouched; run the same command
    again to retry them. The session is saved once, after the whole batch.
    """
    from prtrail_cli.auth import require_github_token

    if post_all == bool(comment_ids):
        raise click.UsageError("Pass comment ids or --all (not both).")

    session = load_session(ctx, repo, pr_number)
    lifecycle = CommentLifecycle(session)
    ids = None if post_all else list(comment_ids)

    selection = lifecycle.select_for_post(ids)
    if not selection:
        console.print("[yellow]No staged comments to post.[/yellow]")
        return

    token = require_github_token(ctx.obj["config"], "post comments")

    console.print(comment_table(selection))
    self_review = session.review_mode == "self-review"
    target = "the PR conversation" if self_review else "the PR diff"
    if not yes:
        click.confirm(f"Post {len(selection)} comment(s) to {target}?", abort=True)

    try:
        this_pr = get_pull(get_repo(session.identity.full_name, token=token), session.identity.pr_number)
    except GithubException as e:
        raise click.ClickException(f"Could not fetch {session.identity}: {e.status} {e.data}") from e

    poster = post_issue_comment if self_review else post_review_comment
    outcome = lifecycle.post_batch(ids, lambda comment: poster(this_pr, comment))
    ctx.obj["store"].save(session)

    if outcome.posted:
        console.print(f"[green]Posted {len(outcome.posted)} comment(s): {', '.join(outcome.posted)}.[/green]")
    if outcome.failed:
        for failure in outcome.failed:
            console.print(f"  [red]{failure.comment_id}: {escape(failure.error or 'no external id returned')}[/red]")
        raise click.ClickException(f"{len(outcome.failed)} comment(s) failed to post and remain staged.")
