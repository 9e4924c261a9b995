import os
from pathlib import Path
from typing import Optional

import yaml

PLATFORMS = ("backlog", "github")
STORES = ("sqlite", "gist", "memory")

DEFAULT_CONFIG: dict = {
    "platform": "backlog",
    "backlog_space": None,
    "backlog_domain": "backlog.jp",
    "max_comment_length": None,  # None = the platform's own hard limit
    "split_threshold": None,  # None = the platform's own split size
    "send_delay": 1.0,  # seconds between the parts of a split comment
    "shallow_clone": False,
    "workspace_root": None,  # None = <system temp dir>/prrelay
    "store": "sqlite",
    "store_path": ".prrelay.db",
    "gist_id": None,
    "http_timeout": 30.0,
}


def load_config(config_path: str = ".prrelay.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .prrelay.yml in the current directory
      3. CLI argument overrides
    """
    config = dict(DEFAULT_CONFIG)

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    if config["platform"] not in PLATFORMS:
        raise ValueError(f"Unknown platform {config['platform']!r}. Choose one of: {', '.join(PLATFORMS)}.")
    if config["store"] not in STORES:
        raise ValueError(f"Unknown store {config['store']!r}. Choose one of: {', '.join(STORES)}.")

    # Resolve credentials from environment variables
    config["backlog_api_key"] = os.environ.get("BACKLOG_API_KEY")
    config["github_token"] = os.environ.get("GITHUB_TOKEN")
    if not config.get("backlog_space"):
        config["backlog_space"] = os.environ.get("BACKLOG_SPACE")

    return config


def comment_limits(config: dict, default_max: int, default_threshold: int) -> tuple[int, int]:
    """Return ``(max_comment_length, split_threshold)``, falling back to the platform's values."""
    max_length = config.get("max_comment_length") or default_max
    threshold = config.get("split_threshold") or default_threshold
    return max_length, min(threshold, max_length)
