"""Read-only platform commands: diff, prs and repos."""

from __future__ import annotations

import asyncio

import click
from rich.console import Console
from rich.table import Table

from prrelay_core.diff import PullRequestChanges, collect_pull_request_changes
from prrelay_core.errors import PlatformError
from prrelay_core.platforms.base import PR_STATUSES
from prrelay_core.vcs.git import GitCLI
from prrelay_core.workspace import WorkspaceManager

console = Console()

_STATUS_STYLE = {
    "added": "green",
    "modified": "yellow",
    "deleted": "red",
    "renamed": "cyan",
    "open": "green",
    "closed": "dim",
    "merged": "magenta",
}


def _run(coro):
    try:
        return asyncio.run(coro)
    except PlatformError as e:
        raise click.ClickException(str(e)) from e


def _styled(value: str) -> str:
    style = _STATUS_STYLE.get(value, "white")
    return f"[{style}]{value}[/{style}]"


@click.command("diff")
@click.option("--project", required=True, help="Backlog project key, or GitHub owner.")
@click.option("--repo", "repository", required=True, help="Repository name.")
@click.option("--pr", "pr_number", type=int, required=True, help="Pull request number.")
@click.option("--shallow", is_flag=True, help="Clone with depth 1. Overrides config file.")
@click.pass_context
def diff_cmd(ctx, project: str, repository: str, pr_number: int, shallow: bool):
    """Show the files changed by a pull request, extracted from a fresh clone."""
    from prrelay_cli.cli import _build_platform

    config = ctx.obj["config"]
    shallow = shallow or config.get("shallow_clone", False)

    async def run() -> PullRequestChanges:
        vcs = GitCLI()
        async with _build_platform(config) as platform:
            return await collect_pull_request_changes(
                platform,
                vcs,
                WorkspaceManager(vcs, root=config.get("workspace_root")),
                project,
                repository,
                pr_number,
                shallow=shallow,
            )

    changes = _run(run())
    pr = changes.pull_request
    console.print(f"\n[bold]#{pr.number}[/bold] {pr.title}  [dim]{pr.head} → {pr.base}[/dim]")

    if changes.error:
        console.print(f"[red]{changes.error}[/red]")
        return
    if not changes.files:
        console.print("[yellow]No changed files.[/yellow]")
        return

    table = Table(title=f"{changes.base_ref}...{changes.head_ref}", show_header=True, header_style="bold cyan")
    table.add_column("Status", width=10)
    table.add_column("Path")
    table.add_column("Diff lines", justify="right", width=10)
    table.add_column("Error", max_width=40)

    for f in changes.files:
        path = f"{f.previous_path} → {f.path}" if f.previous_path else f.path
        diff_lines = str(len(f.diff.splitlines())) if f.diff is not None else "-"
        table.add_row(_styled(f.status), path, diff_lines, f"[red]{f.error}[/red]" if f.error else "")

    console.print(table)


@click.command("prs")
@click.option("--project", required=True, help="Backlog project key, or GitHub owner.")
@click.option("--repo", "repository", required=True, help="Repository name.")
@click.option("--status", type=click.Choice(PR_STATUSES), default=None, help="Only show PRs in this state.")
@click.pass_context
def prs_cmd(ctx, project: str, repository: str, status: str | None):
    """List the pull requests of a repository."""
    from prrelay_cli.cli import _build_platform

    async def run():
        async with _build_platform(ctx.obj["config"]) as platform:
            return await platform.list_pull_requests(project, repository, status=status)

    pulls = _run(run())
    if not pulls:
        console.print("[yellow]No pull requests found.[/yellow]")
        return

    table = Table(title=f"Pull requests: {project}/{repository}", show_header=True, header_style="bold cyan")
    table.add_column("PR", style="bold", width=6)
    table.add_column("Title", max_width=50)
    table.add_column("Branches")
    table.add_column("Status", width=8)
    table.add_column("Author")

    for pr in pulls:
        table.add_row(f"#{pr.number}", pr.title, f"{pr.head} → {pr.base}", _styled(pr.status), pr.author)

    console.print(table)


@click.command("repos")
@click.option("--project", required=True, help="Backlog project key, or GitHub owner.")
@click.pass_context
def repos_cmd(ctx, project: str):
    """List the repositories of a project."""
    from prrelay_cli.cli import _build_platform

    async def run():
        async with _build_platform(ctx.obj["config"]) as platform:
            return await platform.list_repositories(project)

    repositories = _run(run())
    if not repositories:
        console.print("[yellow]No repositories found.[/yellow]")
        return

    table = Table(title=f"Repositories: {project}", show_header=True, header_style="bold cyan")
    table.add_column("Name", style="bold")
    table.add_column("Description", max_width=60)
    for r in repositories:
        table.add_row(r.name, r.description)
    console.print(table)
