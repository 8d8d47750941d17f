"""CLI entry point for prtrail.

Commands:
  analyze  cluster a pull request's changes into an ordered review plan
  state    show or clear the stored review session
  nav      move through clusters (next, back, goto, current, done)
  comment  draft, edit, skip, restore and combine review comments
  post     post staged comments to GitHub
  resume   pick up where the last session left off
  qa       record a question and its answer in the session log
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from prtrail_cli.commands.analyze import analyze_cmd
from prtrail_cli.commands.comment import comment_group
from prtrail_cli.commands.nav import nav_group
from prtrail_cli.commands.post import post_cmd
from prtrail_cli.commands.qa import qa_cmd
from prtrail_cli.commands.resume import resume_cmd
from prtrail_cli.commands.state import state_group
from prtrail_core.errors import ReviewEngineError

console = Console()


def _build_store(config: dict):
    """Instantiate the configured session store from .prtrail.yml settings.

    Store selection:
      store: json   → JsonFileStore (store_path directory, default .prtrail)
      store: sqlite → SQLiteStore   (store_path file, default .prtrail.db)

    This factory lives in cli.py so neither prtrail_core nor prtrail_store
    know about the CLI config format.
    """
    store_type = config.get("store", "json")

    if store_type == "sqlite":
        from prtrail_store.sqlite import SQLiteStore

        return SQLiteStore(db_path=config.get("store_path") or ".prtrail.db")

    if store_type == "json":
        from prtrail_store.json_file import JsonFileStore

        return JsonFileStore(root=config.get("store_path") or ".prtrail")

    raise click.UsageError(f"Unknown store {store_type!r} in configuration (expected 'json' or 'sqlite').")


def _setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_time=False, show_path=False)],
        force=True,
    )


class EngineGroup(click.Group):
    """Group that reports engine errors as ordinary CLI failures (exit status 1)."""

    def invoke(self, ctx: click.Context):
        try:
            return super().invoke(ctx)
        except ReviewEngineError as e:
            raise click.ClickException(f"{e} [{e.kind}]") from e


@click.group(cls=EngineGroup)
@click.version_option(
    version=importlib.metadata.version("prtrail"),
    prog_name="prtrail",
)
@click.option(
    "--config",
    "config_path",
    default=".prtrail.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="PRTRAIL_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging (same as PRTRAIL_DEBUG=1).")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Guided, resumable pull-request review sessions."""
    from prtrail_core.config import load_config

    ctx.ensure_object(dict)

    try:
        config = load_config(config_path)
    except ValueError as e:
        raise click.UsageError(str(e)) from e

    _setup_logging(verbose or config.get("debug", False))

    store = _build_store(config)
    ctx.obj["store"] = store
    ctx.obj["config"] = config
    ctx.call_on_close(store.close)


main.add_command(analyze_cmd)
main.add_command(state_group)
main.add_command(nav_group)
main.add_command(comment_group)
main.add_command(post_cmd)
main.add_command(resume_cmd)
main.add_command(qa_cmd)
