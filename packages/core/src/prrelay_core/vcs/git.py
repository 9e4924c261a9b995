"""git CLI backend driven through asyncio subprocesses."""

from __future__ import annotations

import asyncio
import logging
import os
import re
from pathlib import Path

from prrelay_core.errors import GitCommandError
from prrelay_core.vcs.base import BaseVCS

logger = logging.getLogger(__name__)

# user:token@host: strip the secret before anything reaches a log or an exception.
_CREDENTIALS_RE = re.compile(r"(https?://)[^/@\s]+@")


def redact(text: str) -> str:
    return _CREDENTIALS_RE.sub(r"\1***@", text)


class GitCLI(BaseVCS):
    """BaseVCS implementation that shells out to ``git``.

    Non-zero exit codes raise GitCommandError. stderr on a successful run is
    logged as a warning unless it is git's informational "Cloning into..."
    line. git writes progress and advice there, so it is not fatal by itself.
    """

    def __init__(self, git_binary: str = "git"):
        self._git = git_binary

    async def _run(self, *args: str, cwd: Path | None = None) -> str:
        logger.debug("Running: git %s (cwd=%s)", redact(" ".join(args)), cwd)
        proc = await asyncio.create_subprocess_exec(
            self._git,
            *args,
            cwd=str(cwd) if cwd is not None else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env={**os.environ, "GIT_TERMINAL_PROMPT": "0"},
        )
        stdout, stderr = await proc.communicate()
        err = redact(stderr.decode("utf-8", errors="replace"))

        if proc.returncode != 0:
            raise GitCommandError([redact(a) for a in args], proc.returncode, err)

        if err.strip() and not err.lstrip().startswith("Cloning into"):
            logger.warning("git %s: %s", redact(" ".join(args)), err.strip())

        return stdout.decode("utf-8", errors="replace")

    async def clone(self, url: str, dest: Path, branch: str, shallow: bool = False) -> None:
        args = ["clone", "--branch", branch]
        if shallow:
            # --depth implies --single-branch; the extractor still needs every branch.
            args += ["--depth", "1", "--no-single-branch"]
        args += [url, str(dest)]
        await self._run(*args)

    async def fetch_all(self, workspace: Path) -> None:
        await self._run("fetch", "--all", "--quiet", cwd=workspace)

    async def list_remote_branches(self, workspace: Path) -> list[str]:
        output = await self._run("branch", "--remotes", "--format=%(refname:short)", cwd=workspace)
        return [line.strip() for line in output.splitlines() if line.strip()]

    async def diff_name_status(self, workspace: Path, base_ref: str, head_ref: str) -> str:
        # -z emits paths verbatim; without it git C-quotes non-ASCII names.
        return await self._run("diff", "--name-status", "-z", base_ref, head_ref, cwd=workspace)

    async def diff_file(self, workspace: Path, base_ref: str, head_ref: str, path: str) -> str:
        return await self._run("-c", "core.quotepath=off", "diff", base_ref, head_ref, "--", path, cwd=workspace)

    async def checkout(self, workspace: Path, ref: str) -> None:
        await self._run("checkout", "--quiet", "--detach", ref, cwd=workspace)

    async def read_file(self, workspace: Path, path: str) -> str:
        target = workspace / path
        return await asyncio.to_thread(target.read_text, encoding="utf-8", errors="replace")
