"""Per-operation scratch workspaces holding a cloned repository.

Every review operation clones into its own uniquely named directory, so
concurrent operations on different PRs never collide on disk. Callers should
prefer the ``workspace()`` context manager: it guarantees release on every
exit path, including exceptions raised deep in diff extraction or delivery
and cancellation of the surrounding task.
"""

from __future__ import annotations

import logging
import re
import shutil
import tempfile
import time
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from prrelay_core.errors import GitCommandError, WorkspaceError
from prrelay_core.vcs.base import BaseVCS

logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(r"[^A-Za-z0-9._-]+")


def default_workspace_root() -> Path:
    return Path(tempfile.gettempdir()) / "prrelay"


class WorkspaceManager:
    def __init__(self, vcs: BaseVCS, root: str | Path | None = None):
        self._vcs = vcs
        self._root = Path(root) if root else default_workspace_root()

    @property
    def root(self) -> Path:
        return self._root

    def _new_path(self, label: str) -> Path:
        slug = _SLUG_RE.sub("_", label).strip("_")[:60] or "repo"
        return self._root / f"{slug}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"

    async def acquire(self, repo_url: str, branch: str, shallow: bool = False, label: str = "") -> Path:
        """Create a fresh directory and clone ``branch`` of ``repo_url`` into it.

        On clone failure the partially created directory is removed before
        the error propagates as WorkspaceError.
        """
        path = self._new_path(label or repo_url.rsplit("/", 1)[-1].removesuffix(".git"))
        path.mkdir(parents=True, exist_ok=False)
        logger.debug("Created workspace %s", path)

        try:
            await self._vcs.clone(repo_url, path, branch, shallow=shallow)
        except BaseException as e:
            self._remove(path)
            if isinstance(e, GitCommandError):
                raise WorkspaceError(f"Failed to clone branch '{branch}': {e.stderr.strip() or e}") from e
            raise

        logger.info("Cloned branch %s into %s%s", branch, path, " (shallow)" if shallow else "")
        return path

    def release(self, path: str | Path | None) -> None:
        """Remove a workspace tree. Safe to call twice or on a path that never existed.

        Deliberately synchronous: it has no await points, so it runs to
        completion even inside a ``finally`` of a task being cancelled.
        """
        if not path:
            return
        self._remove(Path(path))

    @staticmethod
    def _remove(path: Path) -> None:
        if not path.exists():
            return
        try:
            shutil.rmtree(path)
            logger.debug("Removed workspace %s", path)
        except OSError as e:
            logger.warning("Could not remove workspace %s: %s", path, e)

    @asynccontextmanager
    async def workspace(
        self, repo_url: str, branch: str, shallow: bool = False, label: str = ""
    ) -> AsyncIterator[Path]:
        path = await self.acquire(repo_url, branch, shallow=shallow, label=label)
        try:
            yield path
        finally:
            self.release(path)
