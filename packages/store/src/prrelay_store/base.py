"""Abstract tracker store interface.

The pipeline and the CLI depend on BaseTrackerStore, not on a concrete
backend, so backends are swappable without touching either. Backends only
provide storage and an atomic read-modify-write (``_mutate``); the tracker
rules themselves (counting, history, growth) live here, once.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, TypeVar

from prrelay_store.models import DeliveryRecord, PullRequestTracker, ReviewEvent, TrackerKey

T = TypeVar("T")


def compute_growth(previous: ReviewEvent, improvement_count: int) -> float:
    """Share of the previous review's improvement items no longer reported, as 0-100.

    A previous review with no improvements leaves nothing to resolve: growth is 0.
    """
    if previous.improvement_count <= 0:
        return 0.0
    resolved = (previous.improvement_count - improvement_count) / previous.improvement_count * 100
    return max(0.0, min(100.0, resolved))


def apply_delivery(tracker: PullRequestTracker, delivery: DeliveryRecord) -> ReviewEvent:
    """Append ``delivery`` to ``tracker`` in place and return the new event."""
    previous = tracker.review_history[-1] if tracker.review_history else None
    growth = None
    if delivery.is_re_review and previous is not None:
        growth = compute_growth(previous, delivery.improvement_count)

    event = ReviewEvent(
        reviewed_at=delivery.reviewed_at,
        review_token=delivery.review_token,
        strength_count=delivery.strength_count,
        improvement_count=delivery.improvement_count,
        is_re_review=delivery.is_re_review,
        source_comment_id=delivery.source_comment_id,
        growth=growth,
        posted_comment_id=delivery.posted_comment_ids[0] if delivery.posted_comment_ids else None,
        sequence=len(tracker.review_history) + 1,
    )
    tracker.review_history.append(event)
    tracker.review_count = len(tracker.review_history)
    tracker.last_reviewed_at = delivery.reviewed_at
    for comment_id in delivery.posted_comment_ids:
        if comment_id not in tracker.ai_review_comment_ids:
            tracker.ai_review_comment_ids.append(comment_id)
    return event


class BaseTrackerStore(ABC):
    """Pluggable persistence for per-PR review trackers.

    Implementations must make ``_mutate`` atomic with respect to concurrent
    callers of the same store, so two deliveries on one PR can never both
    read the same count.
    """

    @abstractmethod
    def get(self, key: TrackerKey) -> PullRequestTracker | None:
        """Return the tracker for ``key``, or None if the PR was never seen."""

    @abstractmethod
    def _mutate(self, key: TrackerKey, fn: Callable[[PullRequestTracker], T]) -> T:
        """Load (or create) the tracker, apply ``fn`` to it, persist it, return fn's result."""

    @abstractmethod
    def list_trackers(self, host: str, repository: str) -> list[PullRequestTracker]:
        """Return every tracker of a repository, ordered by PR number."""

    @abstractmethod
    def remove_repository(self, host: str, repository: str) -> int:
        """Delete a repository and all of its trackers. Returns the number of trackers removed."""

    def record_delivery(self, key: TrackerKey, delivery: DeliveryRecord) -> PullRequestTracker:
        """Record a successful delivery, creating the tracker on first use."""

        def apply(tracker: PullRequestTracker) -> PullRequestTracker:
            apply_delivery(tracker, delivery)
            return tracker

        return self._mutate(key, apply)

    def mark_comment_processed(self, key: TrackerKey, comment_id: int) -> bool:
        """Mark an inbound comment as consumed. False if it already was."""

        def mark(tracker: PullRequestTracker) -> bool:
            if comment_id in tracker.processed_comment_ids:
                return False
            tracker.processed_comment_ids.append(comment_id)
            return True

        return self._mutate(key, mark)

    def mark_description_processed(self, key: TrackerKey) -> bool:
        """Mark the PR description's review request as consumed. False if it already was."""

        def mark(tracker: PullRequestTracker) -> bool:
            if tracker.description_processed:
                return False
            tracker.description_processed = True
            return True

        return self._mutate(key, mark)

    def is_comment_processed(self, key: TrackerKey, comment_id: int) -> bool:
        tracker = self.get(key)
        return tracker is not None and comment_id in tracker.processed_comment_ids

    def close(self) -> None:
        """Release any resources held by the store (connections, file handles).

        Optional: subclasses that need cleanup should override this.
        Default is a no-op so callers can always call close() safely.
        """
