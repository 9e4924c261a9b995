"""Abstract version-control capability interface.

The diff extractor and workspace manager depend on BaseVCS, not on the git
CLI, so an alternate backend (libgit2 bindings, a hosting API that serves
trees directly) can be swapped in without touching extraction logic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path


class BaseVCS(ABC):
    """Narrow set of repository operations the engine needs.

    Every method is a coroutine: implementations are expected to be I/O
    bound (subprocesses, network) and must not block the event loop.
    """

    @abstractmethod
    async def clone(self, url: str, dest: Path, branch: str, shallow: bool = False) -> None:
        """Clone ``branch`` of ``url`` into ``dest``.

        With ``shallow=True`` history depth is limited to one commit, but
        every remote branch must remain fetchable.
        """

    @abstractmethod
    async def fetch_all(self, workspace: Path) -> None:
        """Fetch every remote branch into the workspace."""

    @abstractmethod
    async def list_remote_branches(self, workspace: Path) -> list[str]:
        """Return remote-tracking refs, e.g. ``["origin/main", "origin/feature"]``."""

    @abstractmethod
    async def diff_name_status(self, workspace: Path, base_ref: str, head_ref: str) -> str:
        """Return the raw name-status report between two refs."""

    @abstractmethod
    async def diff_file(self, workspace: Path, base_ref: str, head_ref: str, path: str) -> str:
        """Return the unified diff between two refs scoped to one path."""

    @abstractmethod
    async def checkout(self, workspace: Path, ref: str) -> None:
        """Check out ``ref`` so its files are readable from the working tree."""

    @abstractmethod
    async def read_file(self, workspace: Path, path: str) -> str:
        """Return the content of ``path`` at the checked-out revision."""
