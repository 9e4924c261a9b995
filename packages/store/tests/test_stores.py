"""Tests for prrelay-store implementations."""

from __future__ import annotations

import json
import sqlite3
import threading
from unittest.mock import MagicMock

import pytest

from prrelay_store.base import apply_delivery, compute_growth
from prrelay_store.gist import GistStore
from prrelay_store.memory import MemoryStore
from prrelay_store.models import DeliveryRecord, PullRequestTracker, ReviewEvent, TrackerKey
from prrelay_store.sqlite import SCHEMA_VERSION, SQLiteStore

KEY = TrackerKey(host="backlog:space/PROJ", repository="api", pr_number=7)
GIST_FILE = "prrelay_trackers.json"


def _delivery(improvements=3, strengths=2, re_review=False, comment_ids=(101,), source=None):
    return DeliveryRecord(
        review_token="tok",
        strength_count=strengths,
        improvement_count=improvements,
        is_re_review=re_review,
        source_comment_id=source,
        posted_comment_ids=list(comment_ids),
    )


class _FakeGist:
    """Stands in for a PyGithub Gist: edit() replaces file contents like the API does."""

    def __init__(self, content: str | None = None):
        self.files = {}
        self.edits = 0
        if content is not None:
            self.files[GIST_FILE] = MagicMock(content=content)

    def edit(self, files):
        self.edits += 1
        for name, spec in files.items():
            self.files[name] = MagicMock(content=spec["content"])


def _make_gist_store(gist: _FakeGist | None = None) -> GistStore:
    client = MagicMock()
    client.get_gist.return_value = gist or _FakeGist()
    return GistStore(gist_id="abc123", client=client)


@pytest.fixture(params=["sqlite", "memory", "gist"])
def store(request, tmp_path):
    if request.param == "sqlite":
        s = SQLiteStore(db_path=str(tmp_path / "trackers.db"))
    elif request.param == "memory":
        s = MemoryStore()
    else:
        s = _make_gist_store()
    yield s
    s.close()


# ---------------------------------------------------------------------------
# Growth and delivery rules
# ---------------------------------------------------------------------------


class TestComputeGrowth:
    def test_half_resolved(self):
        assert compute_growth(ReviewEvent(reviewed_at="t", improvement_count=4), 2) == 50.0

    def test_all_resolved(self):
        assert compute_growth(ReviewEvent(reviewed_at="t", improvement_count=4), 0) == 100.0

    def test_more_issues_clamps_to_zero(self):
        assert compute_growth(ReviewEvent(reviewed_at="t", improvement_count=2), 5) == 0.0

    def test_previous_without_improvements_is_zero(self):
        assert compute_growth(ReviewEvent(reviewed_at="t", improvement_count=0), 3) == 0.0


class TestApplyDelivery:
    def test_first_delivery_has_no_growth(self):
        tracker = PullRequestTracker(key=KEY)
        event = apply_delivery(tracker, _delivery())
        assert event.growth is None
        assert event.sequence == 1
        assert tracker.review_count == 1

    def test_growth_requires_re_review_flag(self):
        tracker = PullRequestTracker(key=KEY)
        apply_delivery(tracker, _delivery(improvements=4))
        event = apply_delivery(tracker, _delivery(improvements=1, re_review=False))
        assert event.growth is None

    def test_re_review_computes_growth(self):
        tracker = PullRequestTracker(key=KEY)
        apply_delivery(tracker, _delivery(improvements=4))
        event = apply_delivery(tracker, _delivery(improvements=1, re_review=True))
        assert event.growth == 75.0

    def test_re_review_without_prior_event_has_no_growth(self):
        tracker = PullRequestTracker(key=KEY)
        event = apply_delivery(tracker, _delivery(re_review=True))
        assert event.growth is None

    def test_posted_ids_appended_in_order_without_duplicates(self):
        tracker = PullRequestTracker(key=KEY)
        apply_delivery(tracker, _delivery(comment_ids=(1, 2)))
        apply_delivery(tracker, _delivery(comment_ids=(2, 3)))
        assert tracker.ai_review_comment_ids == [1, 2, 3]

    def test_first_posted_id_recorded_on_event(self):
        tracker = PullRequestTracker(key=KEY)
        event = apply_delivery(tracker, _delivery(comment_ids=(11, 12)))
        assert event.posted_comment_id == 11


# ---------------------------------------------------------------------------
# Behaviour shared by every backend
# ---------------------------------------------------------------------------


class TestTrackerStore:
    def test_unknown_pr_returns_none(self, store):
        assert store.get(KEY) is None

    def test_first_delivery_creates_tracker(self, store):
        tracker = store.record_delivery(KEY, _delivery())
        assert tracker.review_count == 1
        assert tracker.last_reviewed_at is not None
        assert len(tracker.review_history) == 1

        loaded = store.get(KEY)
        assert loaded.review_count == 1
        assert loaded.ai_review_comment_ids == [101]

    def test_count_matches_history_after_n_deliveries(self, store):
        for i in range(4):
            store.record_delivery(KEY, _delivery(comment_ids=(100 + i,), re_review=i > 0))

        tracker = store.get(KEY)
        assert tracker.review_count == 4
        assert len(tracker.review_history) == 4
        assert [e.sequence for e in tracker.review_history] == [1, 2, 3, 4]
        assert tracker.ai_review_comment_ids == [100, 101, 102, 103]

    def test_growth_persisted_for_re_review(self, store):
        store.record_delivery(KEY, _delivery(improvements=4))
        store.record_delivery(KEY, _delivery(improvements=2, re_review=True))

        history = store.get(KEY).review_history
        assert history[0].growth is None
        assert history[1].growth == 50.0
        assert history[1].is_re_review is True

    def test_mark_comment_processed_once(self, store):
        assert store.mark_comment_processed(KEY, 55) is True
        assert store.mark_comment_processed(KEY, 55) is False
        assert store.is_comment_processed(KEY, 55) is True
        assert store.is_comment_processed(KEY, 56) is False

    def test_consumed_request_creates_tracker_with_zero_reviews(self, store):
        store.mark_comment_processed(KEY, 55)
        tracker = store.get(KEY)
        assert tracker.review_count == 0
        assert tracker.review_history == []
        assert tracker.processed_comment_ids == [55]

    def test_mark_description_processed_once(self, store):
        assert store.mark_description_processed(KEY) is True
        assert store.mark_description_processed(KEY) is False
        assert store.get(KEY).description_processed is True

    def test_is_comment_processed_does_not_create_tracker(self, store):
        assert store.is_comment_processed(KEY, 1) is False
        assert store.get(KEY) is None

    def test_delivery_keeps_processed_flags(self, store):
        store.mark_description_processed(KEY)
        store.mark_comment_processed(KEY, 9)
        store.record_delivery(KEY, _delivery())

        tracker = store.get(KEY)
        assert tracker.description_processed is True
        assert tracker.processed_comment_ids == [9]
        assert tracker.review_count == 1

    def test_list_trackers_isolated_by_repository(self, store):
        other = TrackerKey(host=KEY.host, repository="web", pr_number=1)
        store.record_delivery(TrackerKey(KEY.host, KEY.repository, 9), _delivery())
        store.record_delivery(KEY, _delivery())
        store.record_delivery(other, _delivery())

        trackers = store.list_trackers(KEY.host, KEY.repository)
        assert [t.key.pr_number for t in trackers] == [7, 9]

    def test_remove_repository_removes_its_trackers(self, store):
        other = TrackerKey(host=KEY.host, repository="web", pr_number=1)
        store.record_delivery(KEY, _delivery())
        store.mark_comment_processed(TrackerKey(KEY.host, KEY.repository, 8), 3)
        store.record_delivery(other, _delivery())

        assert store.remove_repository(KEY.host, KEY.repository) == 2
        assert store.get(KEY) is None
        assert store.get(other) is not None
        assert store.remove_repository(KEY.host, KEY.repository) == 0


# ---------------------------------------------------------------------------
# SQLiteStore
# ---------------------------------------------------------------------------


class TestSQLiteStore:
    def test_persists_across_connections(self, tmp_path):
        """Data written by one SQLiteStore instance must be readable by another."""
        db_path = str(tmp_path / "test.db")
        store_a = SQLiteStore(db_path=db_path)
        store_a.record_delivery(KEY, _delivery())
        store_a.close()

        store_b = SQLiteStore(db_path=db_path)
        assert store_b.get(KEY).review_count == 1
        store_b.close()

    def test_schema_version_recorded(self, tmp_path):
        db_path = str(tmp_path / "test.db")
        SQLiteStore(db_path=db_path).close()
        conn = sqlite3.connect(db_path)
        assert conn.execute("PRAGMA user_version").fetchone()[0] == SCHEMA_VERSION
        conn.close()

    def test_remove_repository_cascades_to_events(self, tmp_path):
        db_path = str(tmp_path / "test.db")
        store = SQLiteStore(db_path=db_path)
        store.record_delivery(KEY, _delivery())
        store.record_delivery(KEY, _delivery(re_review=True))
        store.remove_repository(KEY.host, KEY.repository)
        store.close()

        conn = sqlite3.connect(db_path)
        assert conn.execute("SELECT COUNT(*) FROM review_events").fetchone()[0] == 0
        assert conn.execute("SELECT COUNT(*) FROM pull_request_trackers").fetchone()[0] == 0
        conn.close()

    def test_malformed_id_column_reads_as_empty(self, tmp_path):
        db_path = str(tmp_path / "test.db")
        store = SQLiteStore(db_path=db_path)
        store.mark_comment_processed(KEY, 5)
        store.close()

        conn = sqlite3.connect(db_path)
        conn.execute("UPDATE pull_request_trackers SET processed_comment_ids = 'not json'")
        conn.commit()
        conn.close()

        store = SQLiteStore(db_path=db_path)
        assert store.get(KEY).processed_comment_ids == []
        store.close()

    def test_failed_mutation_rolls_back(self, tmp_path):
        store = SQLiteStore(db_path=str(tmp_path / "test.db"))

        def boom(tracker):
            tracker.review_count = 99
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            store._mutate(KEY, boom)
        assert store.get(KEY) is None
        store.close()

    def test_concurrent_deliveries_are_all_counted(self, tmp_path):
        db_path = str(tmp_path / "test.db")
        SQLiteStore(db_path=db_path).close()

        def deliver():
            s = SQLiteStore(db_path=db_path)
            for _ in range(5):
                s.record_delivery(KEY, _delivery())
            s.close()

        threads = [threading.Thread(target=deliver) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        store = SQLiteStore(db_path=db_path)
        tracker = store.get(KEY)
        assert tracker.review_count == 20
        assert [e.sequence for e in tracker.review_history] == list(range(1, 21))
        store.close()


# ---------------------------------------------------------------------------
# GistStore
# ---------------------------------------------------------------------------


class TestGistStore:
    def test_writes_single_document_with_text_blobs(self):
        gist = _FakeGist()
        store = _make_gist_store(gist)

        store.record_delivery(KEY, _delivery())

        document = json.loads(gist.files[GIST_FILE].content)
        assert document["version"] == 1
        entry = document["trackers"][0]
        assert entry["host"] == KEY.host
        assert entry["review_count"] == 1
        assert isinstance(entry["review_history"], str)
        assert json.loads(entry["review_history"])[0]["improvement_count"] == 3

    def test_missing_file_reads_as_empty(self):
        store = _make_gist_store(_FakeGist())
        assert store.get(KEY) is None
        assert store.list_trackers(KEY.host, KEY.repository) == []

    def test_invalid_document_reads_as_empty(self):
        store = _make_gist_store(_FakeGist(content="{not json"))
        assert store.get(KEY) is None

    def test_malformed_history_blob_reads_as_empty(self, caplog):
        entry = {
            "host": KEY.host,
            "repository": KEY.repository,
            "pr_number": KEY.pr_number,
            "review_count": 2,
            "review_history": "[{broken",
            "processed_comment_ids": "[4]",
            "description_processed": True,
            "ai_review_comment_ids": "[]",
        }
        store = _make_gist_store(_FakeGist(content=json.dumps({"version": 1, "trackers": [entry]})))

        tracker = store.get(KEY)

        assert tracker.review_history == []
        assert tracker.processed_comment_ids == [4]
        assert "Malformed review_history" in caplog.text

    @pytest.mark.parametrize(
        "bad_event",
        [
            {"reviewed_at": "2026-01-01T00:00:00+00:00", "strength_count": "n/a"},
            {"reviewed_at": "2026-01-01T00:00:00+00:00", "growth": "x"},
            {"reviewed_at": "2026-01-01T00:00:00+00:00", "sequence": None},
        ],
    )
    def test_bad_values_inside_valid_json_read_as_empty(self, caplog, bad_event):
        entry = {
            "host": KEY.host,
            "repository": KEY.repository,
            "pr_number": KEY.pr_number,
            "review_count": "two",
            "review_history": json.dumps([bad_event]),
            "processed_comment_ids": json.dumps([4, "x", "12", None]),
            "description_processed": False,
            "ai_review_comment_ids": json.dumps(["abc", 9]),
        }
        store = _make_gist_store(_FakeGist(content=json.dumps({"version": 1, "trackers": [entry]})))

        tracker = store.get(KEY)

        assert tracker.review_history == []
        assert tracker.review_count == 0
        assert tracker.processed_comment_ids == [4, 12]
        assert tracker.ai_review_comment_ids == [9]
        assert "Malformed review_history" in caplog.text

    def test_bad_values_do_not_block_new_deliveries(self):
        entry = {
            "host": KEY.host,
            "repository": KEY.repository,
            "pr_number": KEY.pr_number,
            "review_history": json.dumps([{"strength_count": "n/a"}]),
            "processed_comment_ids": json.dumps(["x"]),
        }
        gist = _FakeGist(content=json.dumps({"version": 1, "trackers": [entry]}))
        store = _make_gist_store(gist)

        tracker = store.record_delivery(KEY, _delivery())

        assert tracker.review_count == 1
        assert len(tracker.review_history) == 1
        assert gist.edits == 1

    def test_remove_missing_repository_does_not_write(self):
        gist = _FakeGist()
        store = _make_gist_store(gist)
        assert store.remove_repository("github:x", "y") == 0
        assert gist.edits == 0


# ---------------------------------------------------------------------------
# MemoryStore
# ---------------------------------------------------------------------------


class TestMemoryStore:
    def test_returned_tracker_is_a_copy(self):
        store = MemoryStore()
        store.record_delivery(KEY, _delivery())

        tracker = store.get(KEY)
        tracker.review_history.clear()

        assert len(store.get(KEY).review_history) == 1
