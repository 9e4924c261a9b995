"""Exception hierarchy shared by every prrelay_core component.

Workspace and git errors are fatal for the operation that raised them.
Per-file extraction failures never raise; they are recorded on the
FileChange instead (see prrelay_core.diff).
"""

from __future__ import annotations

import re

_ENCODING_REJECTION_RE = re.compile(
    r"incorrect string value|invalid (?:character|byte|string)|encod|malformed utf|unicode",
    re.IGNORECASE,
)


class PrRelayError(Exception):
    """Base class for all prrelay errors."""


class WorkspaceError(PrRelayError):
    """Clone, fetch or checkout failed and the workspace is unusable."""


class BranchNotFoundError(WorkspaceError):
    """A PR branch no longer exists on the remote (deleted or renamed)."""

    def __init__(self, branch: str, available: list[str] | None = None):
        self.branch = branch
        self.available = available or []
        super().__init__(f"Branch '{branch}' does not exist on the remote (origin/{branch} not found).")


class GitCommandError(PrRelayError):
    """A git subprocess exited with a non-zero status."""

    def __init__(self, args: list[str], returncode: int, stderr: str):
        self.args_list = args
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"git {' '.join(args)} failed with exit code {returncode}: {stderr.strip()}")


class PlatformError(PrRelayError):
    """The review platform rejected a request."""

    def __init__(self, message: str, status_code: int | None = None, payload: object = None):
        self.status_code = status_code
        self.payload = payload
        super().__init__(message)

    @property
    def is_encoding_rejection(self) -> bool:
        """True when the platform refused the content because of its characters.

        Backlog answers 4-byte characters with a 400 whose message reads
        "Incorrect string value"; other platforms phrase it differently, so
        match on the payload text rather than on a single error code.
        """
        if self.status_code is not None and not 400 <= self.status_code < 500:
            return False
        return bool(_ENCODING_REJECTION_RE.search(f"{self.payload} {self}"))


class DeliveryError(PrRelayError):
    """A review comment could not be delivered, even in fallback form."""


class FeedbackError(PrRelayError, ValueError):
    """Prepared review feedback could not be read or is not a mapping."""
