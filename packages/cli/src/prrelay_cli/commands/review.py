"""review command: run the pipeline on one pull request and post the feedback."""

from __future__ import annotations

import asyncio

import click
from rich.console import Console

from prrelay_core.errors import DeliveryError, FeedbackError, PlatformError
from prrelay_core.pipeline import FileFeedbackSource, ReviewOutcome, review_pull_request
from prrelay_core.vcs.git import GitCLI

console = Console()


def _print_outcome(outcome: ReviewOutcome) -> None:
    if outcome.skipped_reason:
        console.print(f"[yellow]Skipped {outcome.key}: {outcome.skipped_reason}.[/yellow]")
        return

    changes = outcome.changes
    if changes is not None and changes.error:
        console.print(f"[yellow]{changes.error} Reviewed on PR metadata only.[/yellow]")
    elif changes is not None:
        failed = [f for f in changes.files if f.error]
        console.print(f"  {len(changes.files)} changed file(s) extracted" + (f", {len(failed)} with errors" if failed else ""))

    delivery = outcome.delivery
    if delivery.fallback_used:
        console.print("[yellow]The platform rejected the review text; posted the fallback notice instead.[/yellow]")
    elif delivery.parts > 1:
        console.print(f"  Posted in {delivery.parts} parts: comments {', '.join(str(i) for i in delivery.comment_ids)}")

    if outcome.tracker is None:
        console.print(f"[green]Review posted as comment {delivery.comment_id}[/green] [yellow](not recorded)[/yellow]")
        return
    line = f"[green]Review #{outcome.tracker.review_count} posted as comment {delivery.comment_id}.[/green]"
    growth = outcome.tracker.review_history[-1].growth
    if growth is not None:
        line += f" Growth since last review: {growth:.0f}%"
    console.print(line)


@click.command("review")
@click.option("--project", required=True, help="Backlog project key, or GitHub owner.")
@click.option("--repo", "repository", required=True, help="Repository name.")
@click.option("--pr", "pr_number", type=int, required=True, help="Pull request number.")
@click.option(
    "--feedback",
    "feedback_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="JSON or YAML file holding the review (summary, strengths, improvements).",
)
@click.option("--comment-id", type=int, default=None, help="Comment that requested this review.")
@click.option("--shallow", is_flag=True, help="Clone with depth 1. Overrides config file.")
@click.option("--force", is_flag=True, help="Review even if no unprocessed review request exists.")
@click.pass_context
def review_cmd(
    ctx,
    project: str,
    repository: str,
    pr_number: int,
    feedback_path: str,
    comment_id: int | None,
    shallow: bool,
    force: bool,
):
    """Review a pull request and post the feedback as a PR comment.

    Without --force, the PR description (or the comment given by
    --comment-id) must ask for a review, e.g. with @codereview, and each
    request is honored once.

    \b
    Required environment variables:
      BACKLOG_API_KEY   for platform: backlog
      GITHUB_TOKEN      for platform: github (or use gh CLI)
    """
    from prrelay_cli.cli import _build_platform

    config = dict(ctx.obj["config"])
    if shallow:
        config["shallow_clone"] = True
    store = ctx.obj["get_store"]()

    async def run() -> ReviewOutcome:
        async with _build_platform(config) as platform:
            return await review_pull_request(
                platform,
                GitCLI(),
                store,
                FileFeedbackSource(feedback_path),
                project,
                repository,
                pr_number,
                comment_id=comment_id,
                config=config,
                force=force,
            )

    try:
        outcome = asyncio.run(run())
    except (DeliveryError, FeedbackError, PlatformError) as e:
        raise click.ClickException(str(e)) from e

    _print_outcome(outcome)
