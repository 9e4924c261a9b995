"""Persistent per-pull-request review trackers."""

from prrelay_store.base import BaseTrackerStore
from prrelay_store.models import DeliveryRecord, PullRequestTracker, ReviewEvent, TrackerKey

__all__ = ["BaseTrackerStore", "DeliveryRecord", "PullRequestTracker", "ReviewEvent", "TrackerKey"]
