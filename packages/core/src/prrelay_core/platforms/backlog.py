"""Backlog (Nulab) pull-request client over the v2 REST API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from prrelay_core.errors import PlatformError
from prrelay_core.platforms.base import (
    BasePlatform,
    PlatformComment,
    PullRequest,
    Repository,
    check_status,
)

logger = logging.getLogger(__name__)

DEFAULT_DOMAIN = "backlog.jp"

# Backlog's fixed pull-request status ids.
STATUS_IDS = {"open": 1, "closed": 2, "merged": 3}
_STATUS_BY_ID = {v: k for k, v in STATUS_IDS.items()}


def host_key(space: str, project: str) -> str:
    return f"backlog:{space}/{project}"


class BacklogPlatform(BasePlatform):
    """Talks to ``https://<space>.<domain>/api/v2`` with an API key.

    Backlog stores comment text in a column that refuses 4-byte UTF-8, which
    is why its limits are the conservative defaults and why the delivery
    engine sanitizes before posting here.
    """

    name = "backlog"
    MAX_COMMENT_LENGTH = 8000
    SPLIT_THRESHOLD = 7500

    def __init__(
        self,
        space: str,
        api_key: str,
        domain: str = DEFAULT_DOMAIN,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.space = space
        self.domain = domain
        self._client = httpx.AsyncClient(
            base_url=f"https://{space}.{domain}/api/v2",
            params={"apiKey": api_key},
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    def host_identity(self, project: str) -> str:
        return host_key(self.space, project)

    def clone_url(self, project: str, repository: str) -> str:
        return f"{self.space}@{self.space}.git.{self.domain}:/{project}/{repository}.git"

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise PlatformError(f"Backlog request {method} {path} failed: {e}") from e

        if response.is_error:
            payload = _error_payload(response)
            raise PlatformError(
                f"Backlog {method} {path} returned {response.status_code}: {_error_message(payload)}",
                status_code=response.status_code,
                payload=payload,
            )
        return response.json()

    def _pulls_path(self, project: str, repository: str) -> str:
        return f"/projects/{project}/git/repositories/{repository}/pullRequests"

    async def list_repositories(self, project: str) -> list[Repository]:
        data = await self._request("GET", f"/projects/{project}/git/repositories")
        return [Repository(name=r["name"], description=r.get("description") or "") for r in data]

    async def list_pull_requests(self, project: str, repository: str, status: str | None = None) -> list[PullRequest]:
        check_status(status)
        params: dict[str, Any] = {"count": 100}
        if status is not None:
            params["statusId[]"] = STATUS_IDS[status]
        data = await self._request("GET", self._pulls_path(project, repository), params=params)
        return [_to_pull_request(item) for item in data]

    async def get_pull_request(self, project: str, repository: str, number: int) -> PullRequest:
        data = await self._request("GET", f"{self._pulls_path(project, repository)}/{number}")
        return _to_pull_request(data)

    async def add_comment(self, project: str, repository: str, number: int, content: str) -> int:
        data = await self._request(
            "POST",
            f"{self._pulls_path(project, repository)}/{number}/comments",
            data={"content": content},
        )
        logger.debug("Posted Backlog comment %s on %s/%s#%d", data.get("id"), project, repository, number)
        return int(data["id"])

    async def list_comments(self, project: str, repository: str, number: int) -> list[PlatformComment]:
        data = await self._request(
            "GET",
            f"{self._pulls_path(project, repository)}/{number}/comments",
            params={"order": "desc", "count": 100},
        )
        return [
            PlatformComment(
                id=int(c["id"]),
                content=c.get("content") or "",
                author=(c.get("createdUser") or {}).get("name", ""),
            )
            for c in data
        ]


def _to_pull_request(data: dict) -> PullRequest:
    status_id = (data.get("status") or {}).get("id")
    return PullRequest(
        number=int(data["number"]),
        title=data.get("summary") or "",
        description=data.get("description") or "",
        base=data["base"],
        head=data["branch"],
        # Anything beyond the three fixed ids (drafts) is still an open PR.
        status=_STATUS_BY_ID.get(status_id, "open"),
        author=(data.get("createdUser") or {}).get("name", ""),
    )


def _error_payload(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def _error_message(payload: Any) -> str:
    if isinstance(payload, dict):
        errors = payload.get("errors") or []
        messages = [e.get("message", "") for e in errors if isinstance(e, dict)]
        if any(messages):
            return "; ".join(m for m in messages if m)
    return str(payload)[:200]
