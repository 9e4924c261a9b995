"""SQLiteStore: local file-based tracker store, the default backend.

Schema (version kept in ``PRAGMA user_version``):
  repositories           one row per (host, repository)
  pull_request_trackers  one row per PR; id lists are JSON text columns
  review_events          the review history, one row per delivered review

Deleting a repository row cascades to its trackers and their events.

Every read-modify-write runs inside ``BEGIN IMMEDIATE``, which takes the
database write lock before the read. Two processes delivering on the same
PR therefore serialize instead of both incrementing from the same count.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from prrelay_store.base import BaseTrackerStore
from prrelay_store.models import PullRequestTracker, ReviewEvent, TrackerKey, parse_ids, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA_VERSION = 1

_SCHEMA = """
CREATE TABLE IF NOT EXISTS repositories (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    host        TEXT NOT NULL,
    name        TEXT NOT NULL,
    created_at  TEXT NOT NULL,
    UNIQUE (host, name)
);
CREATE TABLE IF NOT EXISTS pull_request_trackers (
    id                      INTEGER PRIMARY KEY AUTOINCREMENT,
    repository_id           INTEGER NOT NULL REFERENCES repositories (id) ON DELETE CASCADE,
    pr_number               INTEGER NOT NULL,
    review_count            INTEGER NOT NULL DEFAULT 0,
    last_reviewed_at        TEXT,
    processed_comment_ids   TEXT NOT NULL DEFAULT '[]',
    description_processed   INTEGER NOT NULL DEFAULT 0,
    ai_review_comment_ids   TEXT NOT NULL DEFAULT '[]',
    created_at              TEXT NOT NULL,
    UNIQUE (repository_id, pr_number)
);
CREATE TABLE IF NOT EXISTS review_events (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    tracker_id          INTEGER NOT NULL REFERENCES pull_request_trackers (id) ON DELETE CASCADE,
    sequence            INTEGER NOT NULL,
    reviewed_at         TEXT NOT NULL,
    review_token        TEXT,
    strength_count      INTEGER DEFAULT 0,
    improvement_count   INTEGER DEFAULT 0,
    is_re_review        INTEGER DEFAULT 0,
    source_comment_id   INTEGER,
    growth              REAL,
    posted_comment_id   INTEGER,
    UNIQUE (tracker_id, sequence)
);
CREATE INDEX IF NOT EXISTS idx_trackers_repo ON pull_request_trackers (repository_id);
CREATE INDEX IF NOT EXISTS idx_events_tracker ON review_events (tracker_id);
"""

_TRACKER_SELECT = """
SELECT t.*, r.host AS host, r.name AS repository
FROM pull_request_trackers t JOIN repositories r ON r.id = t.repository_id
"""


class SQLiteStore(BaseTrackerStore):
    """Stores trackers in a local SQLite database file.

    The database file path defaults to `.prrelay.db` in the current working
    directory. Configure via .prrelay.yml: `store_path: /path/to/prrelay.db`.
    """

    def __init__(self, db_path: str = ".prrelay.db", timeout: float = 30.0):
        # Autocommit mode: transactions are opened explicitly with BEGIN IMMEDIATE.
        self._conn = sqlite3.connect(db_path, timeout=timeout, isolation_level=None, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._lock = threading.RLock()
        self._migrate()

    def _migrate(self) -> None:
        version = self._conn.execute("PRAGMA user_version").fetchone()[0]
        if version > SCHEMA_VERSION:
            raise RuntimeError(
                f"Tracker database schema version {version} is newer than supported version {SCHEMA_VERSION}."
            )
        if version < SCHEMA_VERSION:
            self._conn.executescript(_SCHEMA)
            self._conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            logger.debug("Initialized tracker schema version %d", SCHEMA_VERSION)

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, key: TrackerKey) -> PullRequestTracker | None:
        with self._lock:
            row = self._conn.execute(
                _TRACKER_SELECT + " WHERE r.host=? AND r.name=? AND t.pr_number=?",
                (key.host, key.repository, key.pr_number),
            ).fetchone()
            return self._row_to_tracker(row) if row is not None else None

    def list_trackers(self, host: str, repository: str) -> list[PullRequestTracker]:
        with self._lock:
            rows = self._conn.execute(
                _TRACKER_SELECT + " WHERE r.host=? AND r.name=? ORDER BY t.pr_number",
                (host, repository),
            ).fetchall()
            return [self._row_to_tracker(r) for r in rows]

    def _row_to_tracker(self, row: sqlite3.Row) -> PullRequestTracker:
        events = self._conn.execute(
            "SELECT * FROM review_events WHERE tracker_id=? ORDER BY sequence",
            (row["id"],),
        ).fetchall()
        key = TrackerKey(host=row["host"], repository=row["repository"], pr_number=row["pr_number"])
        return PullRequestTracker(
            key=key,
            review_count=row["review_count"],
            last_reviewed_at=row["last_reviewed_at"],
            review_history=[self._row_to_event(e) for e in events],
            processed_comment_ids=_load_ids(row["processed_comment_ids"], key, "processed_comment_ids"),
            description_processed=bool(row["description_processed"]),
            ai_review_comment_ids=_load_ids(row["ai_review_comment_ids"], key, "ai_review_comment_ids"),
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> ReviewEvent:
        return ReviewEvent(
            reviewed_at=row["reviewed_at"],
            review_token=row["review_token"] or "",
            strength_count=row["strength_count"] or 0,
            improvement_count=row["improvement_count"] or 0,
            is_re_review=bool(row["is_re_review"]),
            source_comment_id=row["source_comment_id"],
            growth=row["growth"],
            posted_comment_id=row["posted_comment_id"],
            sequence=row["sequence"],
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _mutate(self, key: TrackerKey, fn: Callable[[PullRequestTracker], T]) -> T:
        with self._transaction():
            tracker = self.get(key) or PullRequestTracker(key=key)
            stored_events = len(tracker.review_history)
            result = fn(tracker)
            self._write(tracker, stored_events)
            return result

    def _repository_id(self, host: str, name: str) -> int:
        self._conn.execute(
            "INSERT OR IGNORE INTO repositories (host, name, created_at) VALUES (?, ?, ?)",
            (host, name, utc_now()),
        )
        return self._conn.execute("SELECT id FROM repositories WHERE host=? AND name=?", (host, name)).fetchone()[0]

    def _write(self, tracker: PullRequestTracker, stored_events: int) -> None:
        repo_id = self._repository_id(tracker.key.host, tracker.key.repository)
        self._conn.execute(
            """
            INSERT INTO pull_request_trackers
              (repository_id, pr_number, review_count, last_reviewed_at, processed_comment_ids,
               description_processed, ai_review_comment_ids, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (repository_id, pr_number) DO UPDATE SET
              review_count = excluded.review_count,
              last_reviewed_at = excluded.last_reviewed_at,
              processed_comment_ids = excluded.processed_comment_ids,
              description_processed = excluded.description_processed,
              ai_review_comment_ids = excluded.ai_review_comment_ids
            """,
            (
                repo_id,
                tracker.key.pr_number,
                tracker.review_count,
                tracker.last_reviewed_at,
                json.dumps(tracker.processed_comment_ids),
                int(tracker.description_processed),
                json.dumps(tracker.ai_review_comment_ids),
                tracker.created_at,
            ),
        )
        tracker_id = self._conn.execute(
            "SELECT id FROM pull_request_trackers WHERE repository_id=? AND pr_number=?",
            (repo_id, tracker.key.pr_number),
        ).fetchone()[0]

        # History is append-only: only events added by this mutation are new.
        for event in tracker.review_history[stored_events:]:
            self._conn.execute(
                """
                INSERT INTO review_events
                  (tracker_id, sequence, reviewed_at, review_token, strength_count, improvement_count,
                   is_re_review, source_comment_id, growth, posted_comment_id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    tracker_id,
                    event.sequence,
                    event.reviewed_at,
                    event.review_token,
                    event.strength_count,
                    event.improvement_count,
                    int(event.is_re_review),
                    event.source_comment_id,
                    event.growth,
                    event.posted_comment_id,
                ),
            )

    def remove_repository(self, host: str, repository: str) -> int:
        with self._transaction():
            removed = self._conn.execute(
                "SELECT COUNT(*) FROM pull_request_trackers t JOIN repositories r ON r.id = t.repository_id "
                "WHERE r.host=? AND r.name=?",
                (host, repository),
            ).fetchone()[0]
            self._conn.execute("DELETE FROM repositories WHERE host=? AND name=?", (host, repository))
        logger.info("Removed repository %s/%s and %d tracker(s)", host, repository, removed)
        return removed

    def close(self) -> None:
        self._conn.close()


def _load_ids(raw: str | None, key: TrackerKey, column: str) -> list[int]:
    """Decode a JSON id-list column. Malformed values read as empty."""
    try:
        value = json.loads(raw or "[]")
    except json.JSONDecodeError:
        logger.warning("Malformed %s for %s, treating as empty", column, key)
        return []
    if not isinstance(value, list):
        logger.warning("Malformed %s for %s, treating as empty", column, key)
        return []
    return parse_ids(value)
