"""analyze command: build the review plan for a pull request and start a session."""

from __future__ import annotations

import json
from pathlib import Path

import click
from github import GithubException
from rich.console import Console

from prtrail_cli.render import cluster_table, narrative
from prtrail_core.clustering import ClusterOptions, build_clusters
from prtrail_core.diff import normalize_diff
from prtrail_core.gh.pull_request import (
    get_current_user,
    get_diff,
    get_pull,
    get_pull_info,
    get_repo,
    local_reader,
    remote_reader,
    to_diff_records,
)
from prtrail_core.narrative import build_narrative
from prtrail_core.session import SessionIdentity, create_session
from prtrail_store.codec import session_to_dict

console = Console()


@click.command("analyze")
@click.option("--repo", required=True, help="GitHub repository in owner/name format.")
@click.option("--pr", "pr_number", type=int, required=True, help="Pull request number.")
@click.option(
    "--local",
    "local_path",
    type=click.Path(exists=True, file_okay=False),
    default=None,
    help="Read file contents from this checkout of the PR head instead of the GitHub API.",
)
@click.option(
    "--spec-file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Specification text to store alongside the session for display.",
)
@click.option("--force", is_flag=True, help="Discard an existing session for this PR and analyze again.")
@click.option("--json", "as_json", is_flag=True, help="Print the new session as JSON.")
@click.pass_context
def analyze_cmd(
    ctx,
    repo: str,
    pr_number: int,
    local_path: str | None,
    spec_file: str | None,
    force: bool,
    as_json: bool,
):
    """Cluster a pull request's changed files into an ordered review plan.

    The plan is computed once. Navigation and resume reuse it as stored;
    pass --force to throw the session away and start over.
    """
    from prtrail_cli.auth import require_github_token

    store = ctx.obj["store"]
    config = ctx.obj["config"]

    try:
        identity = SessionIdentity.from_repo(repo, pr_number)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--repo") from e

    if not force and store.load(identity) is not None:
        console.print(
            f"[yellow]A review session for {identity} already exists. "
            "Run `prtrail resume` to continue it, or pass --force to start over.[/yellow]"
        )
        return

    token = require_github_token(config, f"fetch PR #{pr_number} from {repo}")

    try:
        options = ClusterOptions.from_config(config)
    except (TypeError, ValueError) as e:
        raise click.UsageError(f"Invalid clustering configuration: {e}") from e

    try:
        this_repo = get_repo(repo, token=token)
        this_pr = get_pull(this_repo, pr_number)
        info = get_pull_info(this_pr)
        files = normalize_diff(to_diff_records(get_diff(this_pr)))
    except GithubException as e:
        raise click.ClickException(f"Could not fetch PR #{pr_number} from {repo}: {e.status} {e.data}") from e

    if not as_json:
        console.print(f"[cyan]Analyzing {len(files)} changed file(s) in {identity}...[/cyan]")
    reader = local_reader(local_path) if local_path else remote_reader(this_repo, info.head_sha)
    result = build_clusters(files, read_content=reader, options=options)

    spec_context = Path(spec_file).read_text(encoding="utf-8") if spec_file else None
    current_user = get_current_user(token)

    session = create_session(
        identity,
        branch_name=info.head_branch,
        base_branch=info.base_branch,
        title=info.title,
        author=info.author,
        review_mode="self-review" if current_user and current_user == info.author else "normal",
    )
    session.clusters = list(result.clusters)
    session.spec_context = spec_context
    session.narrative = build_narrative(info.title, info.author, info.head_branch, result, spec_context)

    store.save(session)

    if as_json:
        click.echo(json.dumps(session_to_dict(session), indent=2, sort_keys=True))
        return

    console.print(narrative(session))
    console.print(cluster_table(session))
    if session.review_mode == "self-review":
        console.print("[magenta]Self-review: comments will be posted to the PR conversation.[/magenta]")
    console.print("[dim]Run `prtrail nav next` to start with the first cluster.[/dim]")
