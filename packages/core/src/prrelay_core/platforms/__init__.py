"""Review-platform clients and the factory that picks one from config."""

from __future__ import annotations

from prrelay_core.platforms.base import BasePlatform, PlatformComment, PullRequest, Repository


def build_platform(config: dict) -> BasePlatform:
    """Instantiate the client named by ``config["platform"]``.

    Raises ValueError when the credentials that platform needs are missing.
    """
    name = config.get("platform", "backlog")
    if name == "backlog":
        from prrelay_core.platforms.backlog import BacklogPlatform

        if not config.get("backlog_space") or not config.get("backlog_api_key"):
            raise ValueError("Backlog needs a space (backlog_space / BACKLOG_SPACE) and BACKLOG_API_KEY.")
        return BacklogPlatform(
            space=config["backlog_space"],
            api_key=config["backlog_api_key"],
            domain=config.get("backlog_domain") or "backlog.jp",
            timeout=config.get("http_timeout", 30.0),
        )
    if name == "github":
        from prrelay_core.platforms.github import GitHubPlatform

        if not config.get("github_token"):
            raise ValueError("GitHub needs a token (GITHUB_TOKEN or `gh auth login`).")
        return GitHubPlatform(token=config["github_token"])
    raise ValueError(f"Unknown platform: {name!r}")


def host_identity(config: dict, project: str) -> str:
    """Tracker host key for ``project`` without building a client (no credentials needed)."""
    if config.get("platform", "backlog") == "github":
        from prrelay_core.platforms.github import host_key

        return host_key(project)

    from prrelay_core.platforms.backlog import host_key

    if not config.get("backlog_space"):
        raise ValueError("Backlog needs a space (backlog_space / BACKLOG_SPACE).")
    return host_key(config["backlog_space"], project)


__all__ = ["BasePlatform", "PlatformComment", "PullRequest", "Repository", "build_platform", "host_identity"]
