"""In-process store. Used by the tests and by ``store: memory`` for one-off runs.

Nothing survives the process, so a PR reviewed twice in two separate
invocations is treated as new both times.
"""

from __future__ import annotations

import copy
import threading
from typing import Callable, TypeVar

from prrelay_store.base import BaseTrackerStore
from prrelay_store.models import PullRequestTracker, TrackerKey

T = TypeVar("T")


class MemoryStore(BaseTrackerStore):
    """Keeps trackers in a dict. Callers always receive copies."""

    def __init__(self):
        self._trackers: dict[TrackerKey, PullRequestTracker] = {}
        self._lock = threading.Lock()

    def get(self, key: TrackerKey) -> PullRequestTracker | None:
        with self._lock:
            tracker = self._trackers.get(key)
            return copy.deepcopy(tracker) if tracker is not None else None

    def _mutate(self, key: TrackerKey, fn: Callable[[PullRequestTracker], T]) -> T:
        with self._lock:
            tracker = copy.deepcopy(self._trackers.get(key)) or PullRequestTracker(key=key)
            result = fn(tracker)
            self._trackers[key] = tracker
            return copy.deepcopy(result)

    def list_trackers(self, host: str, repository: str) -> list[PullRequestTracker]:
        with self._lock:
            found = [t for k, t in self._trackers.items() if k.host == host and k.repository == repository]
            return copy.deepcopy(sorted(found, key=lambda t: t.key.pr_number))

    def remove_repository(self, host: str, repository: str) -> int:
        with self._lock:
            doomed = [k for k in self._trackers if k.host == host and k.repository == repository]
            for key in doomed:
                del self._trackers[key]
            return len(doomed)
