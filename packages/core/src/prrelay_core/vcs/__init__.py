"""Version-control backends used to materialize pull-request branches."""

from prrelay_core.vcs.base import BaseVCS
from prrelay_core.vcs.git import GitCLI

__all__ = ["BaseVCS", "GitCLI"]
