"""Shared fakes for prrelay_core tests: an in-memory VCS and a recording platform."""

from __future__ import annotations

from pathlib import Path

import pytest

from prrelay_core.errors import GitCommandError
from prrelay_core.platforms.base import BasePlatform, PlatformComment, PullRequest, Repository
from prrelay_core.vcs.base import BaseVCS


class FakeVCS(BaseVCS):
    def __init__(self):
        self.branches = ["origin/main", "origin/feature"]
        self.name_status = ""
        self.diffs: dict[str, str] = {}
        self.contents: dict[str, str] = {}
        self.failing_reads: set[str] = set()
        self.failing_diffs: set[str] = set()
        self.clone_error: BaseException | None = None
        self.fetch_error: BaseException | None = None
        self.calls: list[tuple] = []
        self.cloned_into: list[Path] = []

    async def clone(self, url, dest, branch, shallow=False):
        self.calls.append(("clone", url, branch, shallow))
        if self.clone_error is not None:
            (dest / "partial").write_text("half a clone")
            raise self.clone_error
        (dest / "README").write_text("cloned")
        self.cloned_into.append(dest)

    async def fetch_all(self, workspace):
        self.calls.append(("fetch_all",))
        if self.fetch_error is not None:
            raise self.fetch_error

    async def list_remote_branches(self, workspace):
        return list(self.branches)

    async def diff_name_status(self, workspace, base_ref, head_ref):
        self.calls.append(("diff_name_status", base_ref, head_ref))
        return self.name_status

    async def diff_file(self, workspace, base_ref, head_ref, path):
        if path in self.failing_diffs:
            raise GitCommandError(["diff", base_ref, head_ref, "--", path], 128, f"fatal: bad path {path}")
        return self.diffs.get(path, f"diff --git a/{path} b/{path}\n+change\n")

    async def checkout(self, workspace, ref):
        self.calls.append(("checkout", ref))

    async def read_file(self, workspace, path):
        if path in self.failing_reads:
            raise FileNotFoundError(f"No such file: {path}")
        return self.contents.get(path, f"content of {path}\n")


class FakePlatform(BasePlatform):
    name = "fake"

    def __init__(self, pull_request: PullRequest | None = None):
        self.pull_request = pull_request or PullRequest(
            number=7,
            title="Add login form",
            description="Please take a look @codereview",
            base="main",
            head="feature",
            status="open",
            author="hanako",
        )
        self.comments: list[PlatformComment] = []
        self.posted: list[str] = []
        # Consumed in order by add_comment; None means succeed.
        self.add_comment_errors: list[BaseException | None] = []
        self._next_id = 1000

    def host_identity(self, project):
        return f"fake:{project}"

    def clone_url(self, project, repository):
        return f"https://git.example.invalid/{project}/{repository}.git"

    async def list_repositories(self, project):
        return [Repository(name="api")]

    async def list_pull_requests(self, project, repository, status=None):
        return [self.pull_request]

    async def get_pull_request(self, project, repository, number):
        return self.pull_request

    async def add_comment(self, project, repository, number, content):
        if self.add_comment_errors:
            error = self.add_comment_errors.pop(0)
            if error is not None:
                raise error
        self._next_id += 1
        self.posted.append(content)
        return self._next_id

    async def list_comments(self, project, repository, number):
        return list(self.comments)


@pytest.fixture
def fake_vcs():
    return FakeVCS()


@pytest.fixture
def fake_platform():
    return FakePlatform()
