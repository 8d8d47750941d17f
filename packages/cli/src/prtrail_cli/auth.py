"""GitHub token for the commands that reach GitHub.

Only ``analyze`` (fetch the PR, detect self-review) and ``post`` need one.
Navigation, comment drafting, state and Q&A run offline against the local
store and never resolve a token.

Resolution order (stops at first success):
  1. ``github_token`` in the loaded configuration, which carries GITHUB_TOKEN
  2. `gh auth token` (GitHub CLI session, available after `gh auth login`)
"""

from __future__ import annotations

import logging
import os
import subprocess

import click

logger = logging.getLogger(__name__)


def _gh_cli_token() -> str | None:
    try:
        result = subprocess.run(
            ["gh", "auth", "token"],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        logger.debug("gh CLI unavailable; no token from a gh session.")
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def resolve_github_token(config: dict | None = None) -> str | None:
    """Return a GitHub token, or None when no source has one. Never raises."""
    token = (config or {}).get("github_token") or os.environ.get("GITHUB_TOKEN")
    if token:
        return token

    token = _gh_cli_token()
    if token:
        logger.debug("Resolved GitHub token via gh CLI session.")
    return token


def require_github_token(config: dict | None, purpose: str) -> str:
    """Resolve a token or stop the command with a usage error naming ``purpose``."""
    token = resolve_github_token(config)
    if not token:
        raise click.UsageError(f"A GitHub token is needed to {purpose}. Set GITHUB_TOKEN or run `gh auth login`.")
    return token
