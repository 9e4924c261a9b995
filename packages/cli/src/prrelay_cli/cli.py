"""CLI entry point for prrelay.

Commands:
  review   run the review pipeline on a pull request and post the result
  diff     show the files a pull request changes, as extracted from git
  prs      list a repository's pull requests
  repos    list a project's repositories
  history  display review trackers from the configured store
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from prrelay_cli.commands.history import history_cmd
from prrelay_cli.commands.platform import diff_cmd, prs_cmd, repos_cmd
from prrelay_cli.commands.review import review_cmd

console = Console()


def _build_store(config: dict):
    """Instantiate the configured tracker store from .prrelay.yml settings.

    Store selection:
      store: sqlite → SQLiteStore (store_path, default .prrelay.db)
      store: gist   → GistStore   (requires gist_id and a GitHub token)
      store: memory → MemoryStore (nothing persists past this process)

    This factory lives in cli.py so neither prrelay_core nor prrelay_store
    know about the CLI config format.
    """
    store_type = config.get("store", "sqlite")

    if store_type == "gist":
        from prrelay_store.gist import GistStore

        gist_id = config.get("gist_id")
        token = config.get("github_token")
        if not gist_id or not token:
            raise click.UsageError("store: gist requires gist_id in .prrelay.yml and a GitHub token.")
        return GistStore(gist_id=gist_id, token=token)

    if store_type == "memory":
        from prrelay_store.memory import MemoryStore

        console.print("[yellow]Using the in-memory store: review counts will not persist.[/yellow]")
        return MemoryStore()

    from prrelay_store.sqlite import SQLiteStore

    return SQLiteStore(db_path=config.get("store_path") or ".prrelay.db")


def _build_platform(config: dict):
    """Instantiate the configured platform client, turning missing credentials into a UsageError."""
    from prrelay_core.platforms import build_platform

    try:
        return build_platform(config)
    except ValueError as e:
        raise click.UsageError(str(e)) from e


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=verbose)],
        force=True,
    )


@click.group()
@click.version_option(
    version=importlib.metadata.version("prrelay"),
    prog_name="prrelay",
)
@click.option(
    "--config",
    "config_path",
    default=".prrelay.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="PRRELAY_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Log every git command and API call.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Extract pull-request diffs and deliver review comments to Backlog or GitHub."""
    from prrelay_cli.auth import resolve_github_token
    from prrelay_core.config import load_config

    _configure_logging(verbose)
    ctx.ensure_object(dict)

    try:
        config = load_config(config_path)
    except ValueError as e:
        raise click.UsageError(str(e)) from e

    # Resolve token early so all subcommands share the same resolution.
    if config["platform"] == "github" or config["store"] == "gist":
        token = resolve_github_token()
        if token:
            config["github_token"] = token

    ctx.obj["config"] = config

    # history and review need the store; listing commands do not, so build it lazily.
    def get_store():
        if "store" not in ctx.obj:
            store = _build_store(config)
            ctx.obj["store"] = store
            ctx.call_on_close(store.close)
        return ctx.obj["store"]

    ctx.obj["get_store"] = get_store


main.add_command(review_cmd)
main.add_command(diff_cmd)
main.add_command(prs_cmd)
main.add_command(repos_cmd)
main.add_command(history_cmd)
