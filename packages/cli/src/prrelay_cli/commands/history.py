"""history command: display review trackers from the store."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from prrelay_store.models import PullRequestTracker

console = Console()


def _growth(value: float | None) -> str:
    return "-" if value is None else f"{value:.0f}%"


def _timestamp(value: str | None) -> str:
    return value[:19].replace("T", " ") if value else "-"


def _print_events(tracker: PullRequestTracker, limit: int) -> None:
    table = Table(title=f"Review History: {tracker.key}", show_header=True, header_style="bold cyan")
    table.add_column("#", style="bold", width=4)
    table.add_column("Reviewed At", width=20)
    table.add_column("Type", width=10)
    table.add_column("Strengths", justify="right", width=10)
    table.add_column("Improvements", justify="right", width=12)
    table.add_column("Growth", justify="right", width=8)
    table.add_column("Comment", justify="right")

    # Most recent first, capped at --limit.
    for event in list(reversed(tracker.review_history))[:limit]:
        table.add_row(
            str(event.sequence),
            _timestamp(event.reviewed_at),
            "[yellow]re-review[/yellow]" if event.is_re_review else "first",
            str(event.strength_count),
            str(event.improvement_count),
            _growth(event.growth),
            str(event.posted_comment_id or "-"),
        )
    console.print(table)


@click.command("history")
@click.option("--project", required=True, help="Backlog project key, or GitHub owner.")
@click.option("--repo", "repository", required=True, help="Repository name.")
@click.option("--pr", "pr_number", type=int, default=None, help="Show the review history of one PR.")
@click.option("--limit", default=20, show_default=True, help="Maximum number of rows to show.")
@click.pass_context
def history_cmd(ctx, project: str, repository: str, pr_number: int | None, limit: int):
    """Show how often pull requests of a repository have been reviewed.

    Reads from the configured store (SQLite by default). With --pr, lists
    every delivered review of that PR with its growth indicator.
    """
    from prrelay_core.platforms import host_identity

    try:
        host = host_identity(ctx.obj["config"], project)
    except ValueError as e:
        raise click.UsageError(str(e)) from e

    store = ctx.obj["get_store"]()
    trackers = store.list_trackers(host, repository)
    if pr_number is not None:
        trackers = [t for t in trackers if t.key.pr_number == pr_number]

    if not trackers:
        console.print("[yellow]No review records found.[/yellow]")
        return

    if pr_number is not None:
        _print_events(trackers[0], limit)
        return

    table = Table(title=f"Review Trackers: {project}/{repository}", show_header=True, header_style="bold cyan")
    table.add_column("PR", style="bold", width=6)
    table.add_column("Reviews", justify="right", width=8)
    table.add_column("Last Reviewed", width=20)
    table.add_column("Growth", justify="right", width=8)
    table.add_column("Requests", justify="right", width=9)

    for t in trackers[:limit]:
        requests = len(t.processed_comment_ids) + int(t.description_processed)
        table.add_row(
            f"#{t.key.pr_number}",
            str(t.review_count),
            _timestamp(t.last_reviewed_at),
            _growth(t.latest_growth),
            str(requests),
        )

    console.print(table)
