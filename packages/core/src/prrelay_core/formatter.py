"""Review rendering and platform-safe sanitization.

Two steps, kept separate so each can be tested on its own:

  format_review()  ReviewResult → Markdown, using semantic emoji markers
  sanitize()       Markdown → text the destination accepts

Backlog stores comments in a column that rejects 4-byte UTF-8, so every
emoji outside the Basic Multilingual Plane makes the whole comment fail.
sanitize() turns the markers that carry meaning into bracketed text first,
then strips what is left of the emoji ranges.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prrelay_core.platforms.base import PullRequest

MARKER_CRITICAL = "\U0001f534"  # red circle
MARKER_WARNING = "\u26a0\ufe0f"
MARKER_IMPROVEMENT = "\U0001f4a1"  # light bulb
MARKER_GOOD = "\u2705"

# Ordered: multi-codepoint sequences before their single-codepoint prefixes.
_SEMANTIC_REPLACEMENTS = (
    ("\u26a0\ufe0f", "[WARNING]"),
    ("\u26a0", "[WARNING]"),
    ("\U0001f534", "[CRITICAL]"),
    ("\U0001f6a8", "[CRITICAL]"),  # police light
    ("\U0001f7e0", "[WARNING]"),  # orange circle
    ("\U0001f7e1", "[WARNING]"),  # yellow circle
    ("\U0001f4a1", "[IMPROVEMENT]"),
    ("\U0001f7e2", "[IMPROVEMENT]"),  # green circle
    ("\u2705", "[GOOD]"),
)

_STRIPPED_RE = re.compile(
    "["
    "\U0001f000-\U0001faff"  # mahjong .. symbols & pictographs extended-A
    "\U000e0000-\U000e007f"  # tag characters (flag sequences)
    "\ufe00-\ufe0f"  # variation selectors
    "\u200d"  # zero-width joiner
    "\u20e3"  # combining enclosing keycap
    "]"
)

_EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")

_PRIORITY_ORDER = ("high", "medium", "low")
_PRIORITY_HEADING = {
    "high": f"{MARKER_CRITICAL} High priority",
    "medium": f"{MARKER_WARNING} Medium priority",
    "low": f"{MARKER_IMPROVEMENT} Low priority",
}


def sanitize(text: str) -> str:
    """Return ``text`` with emoji the platform rejects replaced or removed.

    Pure and total: never raises, characters outside the stripped ranges
    pass through untouched, and ``sanitize(sanitize(x)) == sanitize(x)``.
    """
    if not text:
        return ""
    for emoji, label in _SEMANTIC_REPLACEMENTS:
        text = text.replace(emoji, label)
    text = _STRIPPED_RE.sub("", text)
    return _EXCESS_NEWLINES_RE.sub("\n\n", text)


@dataclass
class FeedbackItem:
    title: str
    detail: str = ""
    priority: str = "medium"  # "high" | "medium" | "low"
    file_path: str | None = None
    suggestion: str | None = None


@dataclass
class ReviewResult:
    """Feedback produced by the external reviewer for one PR."""

    summary: str = ""
    strengths: list[str] = field(default_factory=list)
    improvements: list[FeedbackItem] = field(default_factory=list)
    review_token: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> ReviewResult:
        improvements = []
        for item in data.get("improvements", []):
            if isinstance(item, str):
                improvements.append(FeedbackItem(title=item))
                continue
            priority = str(item.get("priority", "medium")).lower()
            improvements.append(
                FeedbackItem(
                    title=item.get("title", ""),
                    detail=item.get("detail", ""),
                    priority=priority if priority in _PRIORITY_ORDER else "medium",
                    file_path=item.get("file_path"),
                    suggestion=item.get("suggestion"),
                )
            )
        return cls(
            summary=data.get("summary", ""),
            strengths=[str(s) for s in data.get("strengths", [])],
            improvements=improvements,
            review_token=str(data.get("review_token", "")),
        )


def _render_item(index: int, item: FeedbackItem) -> list[str]:
    lines = [f"#### {index}. {item.title}", ""]
    if item.file_path:
        lines += [f"**File**: `{item.file_path}`", ""]
    if item.detail:
        lines += [item.detail, ""]
    if item.suggestion:
        lines += [f"**Suggestion**: {item.suggestion}", ""]
    return lines


def format_review(
    result: ReviewResult,
    pull_request: PullRequest | None = None,
    review_count: int = 1,
    reviewed_at: datetime | None = None,
) -> str:
    """Render a ReviewResult as the Markdown body of a PR comment.

    ``review_count`` is the number this review will have once delivered;
    anything above 1 is flagged as a re-review.
    """
    reviewed_at = reviewed_at or datetime.now(timezone.utc)
    lines = ["## AI Code Review", ""]

    if review_count > 1:
        lines += [f"_Re-review #{review_count}: feedback reflects the latest changes._", ""]

    if pull_request is not None:
        lines += [
            "### Review details",
            "",
            f"- PR: #{pull_request.number} {pull_request.title}",
            f"- Branches: `{pull_request.head}` → `{pull_request.base}`",
        ]
    lines += [f"- Reviewed at: {reviewed_at.strftime('%Y-%m-%d %H:%M UTC')}", ""]

    if result.summary:
        lines += ["### Summary", "", result.summary, ""]

    if result.strengths:
        lines += [f"### {MARKER_GOOD} Strengths", ""]
        lines += [f"- {s}" for s in result.strengths]
        lines.append("")

    if not result.improvements:
        lines += ["### Result", "", "No significant issues were found in this change.", ""]
    else:
        by_priority = {p: [i for i in result.improvements if i.priority == p] for p in _PRIORITY_ORDER}
        counts = ", ".join(f"{p}: {len(by_priority[p])}" for p in _PRIORITY_ORDER)
        lines += ["### Improvements", "", f"{len(result.improvements)} item(s) ({counts})", ""]
        for priority in _PRIORITY_ORDER:
            items = by_priority[priority]
            if not items:
                continue
            lines += [f"### {_PRIORITY_HEADING[priority]}", ""]
            for n, item in enumerate(items, 1):
                lines += _render_item(n, item)

    lines += ["---", "_This review was generated automatically. Reply with `@codereview` to request another pass._"]
    return "\n".join(lines)
