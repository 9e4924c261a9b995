"""Core PR review orchestration.

One call to review_pull_request() handles one inbound review request:

  PR metadata → trigger check → workspace + diff → feedback source
  → format + sanitize → delivery → tracker update

The review text itself comes from a FeedbackSource supplied by the caller;
this package only moves code to it and its answer back to the PR.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import yaml

from prrelay_core.config import comment_limits
from prrelay_core.delivery import DeliveryEngine, DeliveryResult, DeliveryTarget
from prrelay_core.diff import PullRequestChanges, collect_pull_request_changes
from prrelay_core.errors import FeedbackError
from prrelay_core.formatter import ReviewResult, format_review, sanitize
from prrelay_core.mention import detect_review_request
from prrelay_core.platforms.base import BasePlatform, PullRequest
from prrelay_core.vcs.base import BaseVCS
from prrelay_core.workspace import WorkspaceManager
from prrelay_store.base import BaseTrackerStore
from prrelay_store.models import DeliveryRecord, PullRequestTracker, ReviewEvent, TrackerKey

logger = logging.getLogger(__name__)


@dataclass
class ReviewRequest:
    """Everything a feedback source gets to look at."""

    pull_request: PullRequest
    changes: PullRequestChanges
    is_re_review: bool = False
    previous_review: ReviewEvent | None = None
    source_comment_id: int | None = None


class FeedbackSource(Protocol):
    async def generate(self, request: ReviewRequest) -> ReviewResult: ...


class FileFeedbackSource:
    """Reads a prepared ReviewResult from a JSON or YAML file.

    Lets the CLI deliver feedback produced elsewhere (another tool, a human,
    a CI step) through the same formatting, delivery and tracking path.
    """

    def __init__(self, path: str | Path):
        self._path = Path(path)

    async def generate(self, request: ReviewRequest) -> ReviewResult:
        text = await asyncio.to_thread(self._path.read_text, encoding="utf-8")
        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise FeedbackError(f"Feedback file {self._path} is not valid JSON or YAML: {e}") from e
        if not isinstance(data, dict):
            raise FeedbackError(f"Feedback file {self._path} must contain a mapping, got {type(data).__name__}.")
        return ReviewResult.from_dict(data)


@dataclass
class ReviewOutcome:
    key: TrackerKey
    pull_request: PullRequest | None = None
    skipped_reason: str | None = None
    changes: PullRequestChanges | None = None
    delivery: DeliveryResult | None = None
    tracker: PullRequestTracker | None = None

    @property
    def delivered(self) -> bool:
        return self.delivery is not None


async def deliver_review(
    platform: BasePlatform,
    store: BaseTrackerStore,
    key: TrackerKey,
    target: DeliveryTarget,
    result: ReviewResult,
    pull_request: PullRequest | None = None,
    is_re_review: bool | None = None,
    source_comment_id: int | None = None,
    config: dict | None = None,
) -> tuple[DeliveryResult, PullRequestTracker | None]:
    """Format, sanitize and post ``result``, then record the delivery.

    ``is_re_review`` defaults to whether the tracker already has a delivered
    review. Returns the delivery result and the updated tracker (None when the
    tracker could not be written; the comment is already posted by then).
    """
    config = config or {}
    previous = await asyncio.to_thread(store.get, key)
    previous_count = previous.review_count if previous else 0
    if is_re_review is None:
        is_re_review = previous_count > 0

    body = sanitize(format_review(result, pull_request, review_count=previous_count + 1))
    max_length, threshold = comment_limits(config, platform.MAX_COMMENT_LENGTH, platform.SPLIT_THRESHOLD)
    engine = DeliveryEngine(platform, max_length, threshold, send_delay=config.get("send_delay", 1.0))
    delivery = await engine.deliver(target, body)

    record = DeliveryRecord(
        review_token=result.review_token,
        strength_count=len(result.strengths),
        improvement_count=len(result.improvements),
        is_re_review=is_re_review,
        source_comment_id=source_comment_id,
        posted_comment_ids=delivery.comment_ids,
    )
    try:
        tracker = await asyncio.to_thread(store.record_delivery, key, record)
    except Exception as e:
        # The review is already on the PR; losing the count must not turn that into a failure.
        logger.warning("Could not record delivery for %s (%s): %s", key, type(e).__name__, e)
        return delivery, None

    logger.info("Delivered review #%d on %s as comment %s", tracker.review_count, key, delivery.comment_id)
    return delivery, tracker


async def _consume_trigger(
    platform: BasePlatform,
    store: BaseTrackerStore,
    key: TrackerKey,
    target: DeliveryTarget,
    pr: PullRequest,
    comment_id: int | None,
) -> str | None:
    """Check and consume the review request. Returns a skip reason, or None to proceed.

    The request is marked processed here, before any extraction, so a retry of
    the same comment never produces a second review even if this one fails later.
    """
    if comment_id is None:
        if not detect_review_request(pr.description):
            return "description does not request a review"
        if not await asyncio.to_thread(store.mark_description_processed, key):
            return "description request was already processed"
        return None

    tracker = await asyncio.to_thread(store.get, key)
    if tracker is not None and comment_id in tracker.ai_review_comment_ids:
        return f"comment {comment_id} is a posted review"

    comments = await platform.list_comments(target.project, target.repository, target.pr_number)
    comment = next((c for c in comments if c.id == comment_id), None)
    if comment is None:
        return f"comment {comment_id} not found"
    if not detect_review_request(comment.content):
        return f"comment {comment_id} does not request a review"
    if not await asyncio.to_thread(store.mark_comment_processed, key, comment_id):
        return f"comment {comment_id} was already processed"
    return None


async def review_pull_request(
    platform: BasePlatform,
    vcs: BaseVCS,
    store: BaseTrackerStore,
    feedback_source: FeedbackSource,
    project: str,
    repository: str,
    pr_number: int,
    comment_id: int | None = None,
    config: dict | None = None,
    force: bool = False,
) -> ReviewOutcome:
    """Run the full review pipeline for one PR and return what happened.

    Closed and merged PRs are skipped. Without ``force`` the PR description
    (or, with ``comment_id``, that comment) must ask for a review that has
    not been honored yet. Extraction problems degrade to a metadata-only
    review; delivery problems raise DeliveryError.
    """
    config = config or {}
    key = TrackerKey(host=platform.host_identity(project), repository=repository, pr_number=pr_number)
    target = DeliveryTarget(project=project, repository=repository, pr_number=pr_number)

    pr = await platform.get_pull_request(project, repository, pr_number)
    if pr.status != "open":
        logger.info("Skipping %s: pull request is %s", key, pr.status)
        return ReviewOutcome(key=key, pull_request=pr, skipped_reason=f"pull request is {pr.status}")

    if not force:
        reason = await _consume_trigger(platform, store, key, target, pr, comment_id)
        if reason:
            logger.info("Skipping %s: %s", key, reason)
            return ReviewOutcome(key=key, pull_request=pr, skipped_reason=reason)

    tracker = await asyncio.to_thread(store.get, key)
    is_re_review = tracker is not None and tracker.review_count > 0

    workspaces = WorkspaceManager(vcs, root=config.get("workspace_root"))
    changes = await collect_pull_request_changes(
        platform,
        vcs,
        workspaces,
        project,
        repository,
        pr_number,
        shallow=config.get("shallow_clone", False),
        pull_request=pr,
    )

    request = ReviewRequest(
        pull_request=pr,
        changes=changes,
        is_re_review=is_re_review,
        previous_review=tracker.review_history[-1] if is_re_review and tracker.review_history else None,
        source_comment_id=comment_id,
    )
    result = await feedback_source.generate(request)

    delivery, updated = await deliver_review(
        platform,
        store,
        key,
        target,
        result,
        pull_request=pr,
        is_re_review=is_re_review,
        source_comment_id=comment_id,
        config=config,
    )
    return ReviewOutcome(key=key, pull_request=pr, changes=changes, delivery=delivery, tracker=updated)
