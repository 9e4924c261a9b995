"""Abstract review-platform client.

The pipeline and delivery engine depend on BasePlatform, not on Backlog or
GitHub, so the hosting service is chosen once, in configuration, and every
other component stays platform-agnostic.

Clients are created per operation and used as async context managers; they
hold no state that outlives the ``async with`` block.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

PR_STATUSES = ("open", "closed", "merged")


@dataclass(frozen=True)
class PullRequest:
    """Normalized PR metadata; ``base`` and ``head`` are branch names."""

    number: int
    title: str
    description: str
    base: str
    head: str
    status: str  # "open" | "closed" | "merged"
    author: str = ""


@dataclass(frozen=True)
class Repository:
    name: str
    description: str = ""


@dataclass(frozen=True)
class PlatformComment:
    id: int
    content: str
    author: str = ""


class BasePlatform(ABC):
    """Pluggable client for the service hosting the pull requests."""

    name: str = ""
    MAX_COMMENT_LENGTH: int = 8000
    SPLIT_THRESHOLD: int = 7500

    async def __aenter__(self) -> BasePlatform:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        """Release network resources. Default is a no-op."""

    @abstractmethod
    def host_identity(self, project: str) -> str:
        """Stable identity of the project's host, used as the tracker key's first part."""

    @abstractmethod
    def clone_url(self, project: str, repository: str) -> str:
        """URL the VCS backend clones from."""

    @abstractmethod
    async def list_repositories(self, project: str) -> list[Repository]:
        """Return the repositories of a project (GitHub: of an owner)."""

    @abstractmethod
    async def list_pull_requests(self, project: str, repository: str, status: str | None = None) -> list[PullRequest]:
        """Return PRs, optionally filtered by "open", "closed" or "merged"."""

    @abstractmethod
    async def get_pull_request(self, project: str, repository: str, number: int) -> PullRequest:
        """Return a single PR. Raises PlatformError when it does not exist."""

    @abstractmethod
    async def add_comment(self, project: str, repository: str, number: int, content: str) -> int:
        """Post ``content`` as a PR comment and return the new comment id."""

    @abstractmethod
    async def list_comments(self, project: str, repository: str, number: int) -> list[PlatformComment]:
        """Return the PR's comments, newest first."""


def check_status(status: str | None) -> None:
    if status is not None and status not in PR_STATUSES:
        raise ValueError(f"Unknown pull request status: {status!r}. Choose one of {', '.join(PR_STATUSES)}.")
