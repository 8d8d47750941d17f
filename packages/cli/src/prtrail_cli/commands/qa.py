"""qa command: keep a log of questions asked during the review."""

from __future__ import annotations

import click
from rich.console import Console

from prtrail_cli.common import load_session, session_options
from prtrail_core.session import record_question

console = Console()


@click.command("qa")
@click.argument("question")
@click.argument("answer")
@click.option("--context", default="", help="Where the question came up (file, cluster, ...).")
@session_options
@click.pass_context
def qa_cmd(ctx, question: str, answer: str, context: str, repo, pr_number):
    """Record QUESTION and its ANSWER in the session."""
    session = load_session(ctx, repo, pr_number)
    if not context:
        current = session.cluster_by_id(session.current_cluster_id) if session.current_cluster_id else None
        context = current.name if current else ""
    record_question(session, question, answer, context=context)
    ctx.obj["store"].save(session)
    console.print(f"[green]Recorded question #{len(session.questions)}.[/green]")
