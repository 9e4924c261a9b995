"""GistStore: zero-infrastructure shared tracker state via a GitHub Gist.

Data format: a single JSON document named `prrelay_trackers.json` inside the
Gist. Each tracker is a flat object whose list fields (review_history,
processed_comment_ids, ai_review_comment_ids) are themselves JSON text, the
same shape the trackers had when they lived in text columns. A field that no
longer parses reads as empty and is rewritten on the next update.

Writes are serialized per process with a lock. Two processes writing the same
Gist can still overwrite each other; use SQLiteStore where that matters.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Callable, TypeVar

from github import Auth, Github

from prrelay_store.base import BaseTrackerStore
from prrelay_store.models import PullRequestTracker, ReviewEvent, TrackerKey, parse_ids, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

_GIST_FILENAME = "prrelay_trackers.json"
_FORMAT_VERSION = 1


class GistStore(BaseTrackerStore):
    """Stores all trackers in one GitHub Gist file.

    Every read fetches the whole document and filters in memory, which is
    fine for hundreds of PRs. The Gist ID is stored in .prrelay.yml under
    `gist_id`.
    """

    def __init__(self, gist_id: str, token: str | None = None, client: Github | None = None):
        self._gist_id = gist_id
        self._gh = client or Github(auth=Auth.Token(token))
        self._lock = threading.Lock()

    def _get_gist(self):
        return self._gh.get_gist(self._gist_id)

    def _read_document(self, gist) -> list[dict]:
        """Return the tracker entries stored in the Gist, or [] if the file is missing or unreadable."""
        file_obj = gist.files.get(_GIST_FILENAME)
        if file_obj is None:
            return []
        try:
            document = json.loads(file_obj.content or "{}")
        except json.JSONDecodeError as e:
            logger.warning("Tracker Gist %s is not valid JSON, starting empty: %s", self._gist_id, e)
            return []
        trackers = document.get("trackers") if isinstance(document, dict) else None
        if not isinstance(trackers, list):
            logger.warning("Tracker Gist %s has no tracker list, starting empty", self._gist_id)
            return []
        return [t for t in trackers if isinstance(t, dict)]

    def _write_document(self, gist, entries: list[dict]) -> None:
        content = json.dumps({"version": _FORMAT_VERSION, "trackers": entries}, indent=2, ensure_ascii=False)
        gist.edit(files={_GIST_FILENAME: {"content": content}})

    def get(self, key: TrackerKey) -> PullRequestTracker | None:
        with self._lock:
            for entry in self._read_document(self._get_gist()):
                if _matches(entry, key):
                    return _from_entry(entry)
        return None

    def _mutate(self, key: TrackerKey, fn: Callable[[PullRequestTracker], T]) -> T:
        with self._lock:
            gist = self._get_gist()
            entries = self._read_document(gist)
            index = next((i for i, e in enumerate(entries) if _matches(e, key)), None)
            tracker = _from_entry(entries[index]) if index is not None else PullRequestTracker(key=key)
            result = fn(tracker)
            if index is None:
                entries.append(_to_entry(tracker))
            else:
                entries[index] = _to_entry(tracker)
            self._write_document(gist, entries)
            return result

    def list_trackers(self, host: str, repository: str) -> list[PullRequestTracker]:
        with self._lock:
            entries = self._read_document(self._get_gist())
        found = [_from_entry(e) for e in entries if e.get("host") == host and e.get("repository") == repository]
        return sorted(found, key=lambda t: t.key.pr_number)

    def remove_repository(self, host: str, repository: str) -> int:
        with self._lock:
            gist = self._get_gist()
            entries = self._read_document(gist)
            kept = [e for e in entries if not (e.get("host") == host and e.get("repository") == repository)]
            removed = len(entries) - len(kept)
            if removed:
                self._write_document(gist, kept)
        return removed


def _matches(entry: dict, key: TrackerKey) -> bool:
    return (
        entry.get("host") == key.host
        and entry.get("repository") == key.repository
        and entry.get("pr_number") == key.pr_number
    )


def _load_blob(raw, key: TrackerKey, name: str) -> list:
    if isinstance(raw, list):
        return raw
    try:
        value = json.loads(raw or "[]")
    except (TypeError, json.JSONDecodeError):
        logger.warning("Malformed %s for %s, treating as empty", name, key)
        return []
    if not isinstance(value, list):
        logger.warning("Malformed %s for %s, treating as empty", name, key)
        return []
    return value


def _load_history(raw, key: TrackerKey) -> list[ReviewEvent]:
    try:
        return [ReviewEvent.from_dict(e) for e in _load_blob(raw, key, "review_history") if isinstance(e, dict)]
    except (TypeError, ValueError) as e:
        logger.warning("Malformed review_history for %s, treating as empty: %s", key, e)
        return []


def _from_entry(entry: dict) -> PullRequestTracker:
    key = TrackerKey(host=entry.get("host", ""), repository=entry.get("repository", ""), pr_number=entry.get("pr_number", 0))
    history = _load_history(entry.get("review_history"), key)
    try:
        review_count = int(entry.get("review_count", len(history)))
    except (TypeError, ValueError):
        review_count = len(history)
    return PullRequestTracker(
        key=key,
        review_count=review_count,
        last_reviewed_at=entry.get("last_reviewed_at"),
        review_history=history,
        processed_comment_ids=parse_ids(_load_blob(entry.get("processed_comment_ids"), key, "processed_comment_ids")),
        description_processed=bool(entry.get("description_processed", False)),
        ai_review_comment_ids=parse_ids(_load_blob(entry.get("ai_review_comment_ids"), key, "ai_review_comment_ids")),
        created_at=entry.get("created_at") or utc_now(),
    )


def _to_entry(tracker: PullRequestTracker) -> dict:
    return {
        "host": tracker.key.host,
        "repository": tracker.key.repository,
        "pr_number": tracker.key.pr_number,
        "review_count": tracker.review_count,
        "last_reviewed_at": tracker.last_reviewed_at,
        "review_history": json.dumps([e.to_dict() for e in tracker.review_history], ensure_ascii=False),
        "processed_comment_ids": json.dumps(tracker.processed_comment_ids),
        "description_processed": tracker.description_processed,
        "ai_review_comment_ids": json.dumps(tracker.ai_review_comment_ids),
        "created_at": tracker.created_at,
    }
