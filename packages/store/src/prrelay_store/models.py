"""Review tracker data models.

Decoupled from prrelay_core so the store layer can be used independently
and prrelay_core's extraction and delivery code has no knowledge of
persistence concerns.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_ids(values: list) -> list[int]:
    """Keep the entries of a decoded id list that are integers (or integer strings)."""
    return [int(v) for v in values if isinstance(v, (int, str)) and str(v).lstrip("-").isdigit()]


@dataclass(frozen=True)
class TrackerKey:
    """Identifies one pull request across invocations.

    ``host`` is the platform host identity, e.g. ``"backlog:myspace/PROJ"``
    or ``"github:octocat"``.
    """

    host: str
    repository: str
    pr_number: int

    def __str__(self) -> str:
        return f"{self.host}/{self.repository}#{self.pr_number}"


@dataclass(frozen=True)
class ReviewEvent:
    """One delivered review. Events are appended, never edited."""

    reviewed_at: str  # ISO-8601 UTC timestamp
    review_token: str = ""
    strength_count: int = 0
    improvement_count: int = 0
    is_re_review: bool = False
    source_comment_id: int | None = None
    growth: float | None = None  # % of the previous review's improvements resolved, 0-100
    posted_comment_id: int | None = None
    sequence: int = 0  # 1-based position in the tracker's history

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> ReviewEvent:
        growth = d.get("growth")
        return cls(
            reviewed_at=d.get("reviewed_at", ""),
            review_token=d.get("review_token", ""),
            strength_count=int(d.get("strength_count", 0)),
            improvement_count=int(d.get("improvement_count", 0)),
            is_re_review=bool(d.get("is_re_review", False)),
            source_comment_id=d.get("source_comment_id"),
            growth=float(growth) if growth is not None else None,
            posted_comment_id=d.get("posted_comment_id"),
            sequence=int(d.get("sequence", 0)),
        )


@dataclass
class DeliveryRecord:
    """What the pipeline hands the store after a review has been posted."""

    review_token: str = ""
    strength_count: int = 0
    improvement_count: int = 0
    is_re_review: bool = False
    source_comment_id: int | None = None
    posted_comment_ids: list[int] = field(default_factory=list)
    reviewed_at: str = field(default_factory=utc_now)


@dataclass
class PullRequestTracker:
    key: TrackerKey
    review_count: int = 0
    last_reviewed_at: str | None = None
    review_history: list[ReviewEvent] = field(default_factory=list)
    processed_comment_ids: list[int] = field(default_factory=list)
    description_processed: bool = False
    ai_review_comment_ids: list[int] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now)

    @property
    def latest_growth(self) -> float | None:
        for event in reversed(self.review_history):
            if event.growth is not None:
                return event.growth
        return None
