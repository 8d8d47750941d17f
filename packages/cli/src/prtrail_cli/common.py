"""Helpers shared by the session commands: identity resolution and loading."""

from __future__ import annotations

import click

from prtrail_core.session import ReviewSession, SessionIdentity


def session_options(f):
    """Add --repo/--pr to a command. Both omitted means the active session."""
    f = click.option("--pr", "pr_number", type=int, default=None, help="Pull request number.")(f)
    f = click.option("--repo", default=None, help="GitHub repository (owner/name). Defaults to the active session.")(f)
    return f


def resolve_identity(ctx: click.Context, repo: str | None, pr_number: int | None) -> SessionIdentity:
    if repo and pr_number is not None:
        try:
            return SessionIdentity.from_repo(repo, pr_number)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--repo") from e
    if repo or pr_number is not None:
        raise click.UsageError("--repo and --pr must be given together.")

    active = ctx.obj["store"].active_identity()
    if active is None:
        raise click.UsageError("No active review session. Pass --repo and --pr, or run `prtrail analyze` first.")
    return active


def load_session(ctx: click.Context, repo: str | None, pr_number: int | None) -> ReviewSession:
    identity = resolve_identity(ctx, repo, pr_number)
    session = ctx.obj["store"].load(identity)
    if session is None:
        raise click.ClickException(
            f"No review session for {identity}. "
            f"Run `prtrail analyze --repo {identity.full_name} --pr {identity.pr_number}` first."
        )
    return session
