"""Posting review comments under platform size limits.

A comment that fits the platform's hard limit is posted unchanged. Longer
comments are split at section breaks into numbered parts, each carrying an
``(i/N)`` header and, except for the last, a continuation footer. Parts are
sent one by one with a pause between them so the platform keeps them in order.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from prrelay_core.errors import DeliveryError, PlatformError

if TYPE_CHECKING:
    from prrelay_core.platforms.base import BasePlatform

logger = logging.getLogger(__name__)

DEFAULT_MAX_LENGTH = 8000
DEFAULT_SPLIT_THRESHOLD = 7500
DEFAULT_SEND_DELAY = 1.0

HEADER_TEMPLATE = "**AI Code Review ({index}/{total})**\n\n"
FOOTER = "\n\n---\n_(continued in the next comment)_"

# Checked in this order; the latest position wins regardless of marker.
SECTION_BREAKS = ("\n\n", "\n# ", "\n## ", "\n### ")

# Must stay ASCII-only: it is what we send after the platform refused the
# characters of the real review.
FALLBACK_MESSAGE = (
    "AI code review completed, but the review text could not be posted because "
    "the platform rejected some of its characters. Please check the review in the app."
)


@dataclass
class CommentPart:
    index: int
    total: int
    body: str

    @property
    def header(self) -> str:
        return HEADER_TEMPLATE.format(index=self.index, total=self.total)

    @property
    def footer(self) -> str:
        return FOOTER if self.index < self.total else ""

    def render(self) -> str:
        return f"{self.header}{self.body}{self.footer}"


@dataclass(frozen=True)
class DeliveryTarget:
    project: str
    repository: str
    pr_number: int


@dataclass
class DeliveryResult:
    """Outcome of one delivery. ``comment_id`` is the first posted part."""

    comment_id: int
    comment_ids: list[int] = field(default_factory=list)
    parts: int = 1
    fallback_used: bool = False


def _reserved_length() -> int:
    # Sized for three-digit numbering so the final count never pushes a part over.
    return len(HEADER_TEMPLATE.format(index=999, total=999)) + len(FOOTER)


def _find_break(candidate: str) -> int | None:
    best = max(candidate.rfind(marker) for marker in SECTION_BREAKS)
    if best <= len(candidate) // 2:
        return None
    # "\n\n## " matches both "\n\n" and "\n## "; cut before the whole blank line.
    while candidate[best - 1] == "\n":
        best -= 1
    return best


def split_comment(comment: str, threshold: int = DEFAULT_SPLIT_THRESHOLD) -> list[CommentPart]:
    """Split ``comment`` into parts whose rendered length is at most ``threshold``.

    Joining the bodies of the returned parts gives back ``comment`` exactly:
    a cut made at a section break leaves the break at the start of the next
    body. Cuts only happen at a break found past the middle of the chunk;
    otherwise the chunk is cut at the budget.
    """
    budget = threshold - _reserved_length()
    if budget <= 0:
        raise ValueError(f"Split threshold {threshold} leaves no room for comment text.")

    bodies: list[str] = []
    rest = comment
    while rest:
        if len(rest) <= budget:
            bodies.append(rest)
            break
        cut = _find_break(rest[:budget]) or budget
        bodies.append(rest[:cut])
        rest = rest[cut:]

    total = len(bodies)
    return [CommentPart(index=i, total=total, body=body) for i, body in enumerate(bodies, 1)]


class DeliveryEngine:
    def __init__(
        self,
        platform: BasePlatform,
        max_length: int = DEFAULT_MAX_LENGTH,
        split_threshold: int = DEFAULT_SPLIT_THRESHOLD,
        send_delay: float = DEFAULT_SEND_DELAY,
    ):
        if split_threshold > max_length:
            raise ValueError(f"split_threshold ({split_threshold}) must not exceed max_length ({max_length}).")
        self._platform = platform
        self._max_length = max_length
        self._split_threshold = split_threshold
        self._send_delay = send_delay

    async def deliver(self, target: DeliveryTarget, comment: str) -> DeliveryResult:
        """Post ``comment`` on the target PR, splitting it when it is too long.

        An encoding rejection from the platform is answered with a single
        ASCII fallback comment. Parts already posted before a failure stay
        posted, and a fallback result lists their ids ahead of its own.

        Raises:
            DeliveryError: the platform refused the comment for any other
                reason, or refused the fallback too.
        """
        sent: list[int] = []
        try:
            if len(comment) <= self._max_length:
                comment_id = await self._send(target, comment)
                return DeliveryResult(comment_id=comment_id, comment_ids=[comment_id], parts=1)
            return await self._send_parts(target, split_comment(comment, self._split_threshold), sent)
        except PlatformError as e:
            if not e.is_encoding_rejection:
                raise DeliveryError(f"Failed to post review on {_describe(target)}: {e}") from e
            logger.warning("%s rejected the review characters, sending fallback: %s", self._platform.name, e)
            return await self._send_fallback(target, e, sent)

    async def _send_parts(self, target: DeliveryTarget, parts: list[CommentPart], sent: list[int]) -> DeliveryResult:
        logger.info("Review is too long for one comment, posting %d parts on %s", len(parts), _describe(target))
        for part in parts:
            if sent and self._send_delay > 0:
                await asyncio.sleep(self._send_delay)
            sent.append(await self._send(target, part.render()))
            logger.debug("Posted part %d/%d as comment %s", part.index, part.total, sent[-1])
        return DeliveryResult(comment_id=sent[0], comment_ids=list(sent), parts=len(parts))

    async def _send_fallback(self, target: DeliveryTarget, cause: PlatformError, sent: list[int]) -> DeliveryResult:
        try:
            comment_id = await self._send(target, FALLBACK_MESSAGE)
        except PlatformError as e:
            raise DeliveryError(f"Fallback comment on {_describe(target)} was rejected too: {e}") from e
        # Parts posted before the rejection stay on the PR and stay tracked.
        ids = [*sent, comment_id]
        return DeliveryResult(comment_id=ids[0], comment_ids=ids, parts=len(ids), fallback_used=True)

    async def _send(self, target: DeliveryTarget, content: str) -> int:
        return await self._platform.add_comment(target.project, target.repository, target.pr_number, content)


def _describe(target: DeliveryTarget) -> str:
    return f"{target.project}/{target.repository}#{target.pr_number}"
