"""Changed-file extraction between the two branches of a pull request.

The extractor works on a local clone rather than the hosting API: one
``git fetch --all`` gives us every branch, and from there the name-status
report, per-file diffs and post-change contents are all local reads. That
keeps API traffic to a single PR-metadata call per review.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from prrelay_core.errors import BranchNotFoundError, GitCommandError, WorkspaceError

if TYPE_CHECKING:
    from prrelay_core.platforms.base import BasePlatform, PullRequest
    from prrelay_core.vcs.base import BaseVCS
    from prrelay_core.workspace import WorkspaceManager

logger = logging.getLogger(__name__)

_STATUS_BY_PREFIX = {
    "A": "added",
    "M": "modified",
    "D": "deleted",
    "R": "renamed",
}

REMOTE = "origin"


def status_from_code(code: str) -> str:
    """Map a git status code (``A``, ``M``, ``D``, ``R100`` ...) to a change status."""
    return _STATUS_BY_PREFIX.get(code[:1], "unknown")


@dataclass
class FileChange:
    path: str
    status: str  # "added" | "modified" | "deleted" | "renamed" | "unknown"
    status_code: str = ""
    previous_path: str | None = None
    diff: str | None = None
    content: str | None = None
    error: str | None = None


@dataclass
class DiffResult:
    files: list[FileChange]
    base_ref: str
    head_ref: str


@dataclass
class PullRequestChanges:
    """What the review step receives: PR metadata plus the changed files.

    ``error`` is set (and ``files`` empty) when the workspace could not be
    prepared. The review still proceeds on metadata alone.
    """

    pull_request: PullRequest
    files: list[FileChange] = field(default_factory=list)
    base_ref: str = ""
    head_ref: str = ""
    error: str | None = None


def parse_name_status(output: str) -> list[FileChange]:
    """Parse ``git diff --name-status`` output, keeping git's ordering.

    Rename and copy lines carry two paths (``R100\\told\\tnew``); the new
    path is the one whose content we read. ``-z`` output (NUL-separated
    fields, paths unquoted) is accepted as well.
    """
    if "\0" in output:
        return _parse_name_status_z(output)
    changes: list[FileChange] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        code, _, rest = line.partition("\t")
        paths = rest.split("\t")
        if not paths or not paths[-1]:
            logger.debug("Skipping unparseable name-status line: %r", line)
            continue
        previous = paths[0] if len(paths) > 1 else None
        changes.append(_change(code.strip(), paths[-1], previous))
    return changes


def _parse_name_status_z(output: str) -> list[FileChange]:
    changes: list[FileChange] = []
    fields = output.split("\0")
    i = 0
    while i < len(fields):
        code = fields[i].strip()
        i += 1
        if not code:
            continue
        # Renames and copies are followed by two paths, everything else by one.
        width = 2 if code[0] in "RC" else 1
        paths = fields[i : i + width]
        i += width
        if len(paths) < width or not paths[-1]:
            logger.debug("Skipping truncated name-status record: %r", code)
            continue
        changes.append(_change(code, paths[-1], paths[0] if width == 2 else None))
    return changes


def _change(code: str, path: str, previous: str | None) -> FileChange:
    return FileChange(path=path, status=status_from_code(code), status_code=code, previous_path=previous)


class DiffExtractor:
    def __init__(self, vcs: BaseVCS, remote: str = REMOTE):
        self._vcs = vcs
        self._remote = remote

    async def extract(self, workspace: Path, base_branch: str, head_branch: str) -> DiffResult:
        """Return every file changed between ``base_branch`` and ``head_branch``.

        Failures up to and including the checkout are fatal (WorkspaceError).
        After that each file is processed in isolation: a failing diff or
        content read is recorded on that FileChange and the loop continues.
        """
        base_ref = f"{self._remote}/{base_branch}"
        head_ref = f"{self._remote}/{head_branch}"

        try:
            await self._vcs.fetch_all(workspace)
            remote_branches = set(await self._vcs.list_remote_branches(workspace))
        except GitCommandError as e:
            raise WorkspaceError(f"Failed to fetch branches '{base_branch}' and '{head_branch}': {e}") from e

        for branch, ref in ((base_branch, base_ref), (head_branch, head_ref)):
            if ref not in remote_branches:
                raise BranchNotFoundError(branch, sorted(remote_branches))

        try:
            name_status = await self._vcs.diff_name_status(workspace, base_ref, head_ref)
            files = parse_name_status(name_status)
            await self._vcs.checkout(workspace, head_ref)
        except GitCommandError as e:
            raise WorkspaceError(f"Failed to compare {base_ref}...{head_ref}: {e}") from e

        logger.info("%d file(s) changed between %s and %s", len(files), base_ref, head_ref)

        for change in files:
            await self._fill(workspace, change, base_ref, head_ref)

        return DiffResult(files=files, base_ref=base_ref, head_ref=head_ref)

    async def _fill(self, workspace: Path, change: FileChange, base_ref: str, head_ref: str) -> None:
        try:
            change.diff = await self._vcs.diff_file(workspace, base_ref, head_ref, change.path)
            if change.status != "deleted":
                change.content = await self._vcs.read_file(workspace, change.path)
        except Exception as e:
            logger.warning("Could not extract %s: %s", change.path, e)
            change.error = str(e) or type(e).__name__
            change.content = None


async def collect_pull_request_changes(
    platform: BasePlatform,
    vcs: BaseVCS,
    workspaces: WorkspaceManager,
    project: str,
    repository: str,
    pr_number: int,
    shallow: bool = False,
    pull_request: PullRequest | None = None,
) -> PullRequestChanges:
    """Fetch PR metadata and its changed files, degrading to metadata only.

    Workspace failures (clone, fetch, missing branch) are reported on
    ``PullRequestChanges.error`` instead of failing the review.
    """
    pr = pull_request or await platform.get_pull_request(project, repository, pr_number)
    url = platform.clone_url(project, repository)

    try:
        async with workspaces.workspace(url, pr.base, shallow=shallow, label=f"{project}_{repository}") as path:
            result = await DiffExtractor(vcs).extract(path, pr.base, pr.head)
    except WorkspaceError as e:
        logger.warning("Diff extraction failed for %s/%s#%d: %s", project, repository, pr_number, e)
        return PullRequestChanges(pull_request=pr, error=f"Could not extract changed files: {e}")

    return PullRequestChanges(pull_request=pr, files=result.files, base_ref=result.base_ref, head_ref=result.head_ref)
