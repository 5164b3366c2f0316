from __future__ import annotations

from typing import Any


class SyncError(RuntimeError):
    """Base class for failures that stop a sync call."""


class LicenseError(SyncError):
    """The show's license does not allow syncing. Raised before any request."""


class SyncAborted(SyncError):
    """The operator chose to abort at the scored-entry prompt."""

    def __init__(self, message: str = "Sync aborted by operator", scored_count: int = 0) -> None:
        super().__init__(message)
        self.scored_count = scored_count


class RemoteError(SyncError):
    """A PostgREST call failed.

    ``status_code`` is ``None`` for transport failures (DNS, timeouts, refused
    connections); otherwise it carries the HTTP status and the raw response body.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str = "",
        detail: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.detail = detail

    def as_dict(self) -> dict[str, Any]:
        return {
            "message": str(self),
            "statusCode": self.status_code,
            "detail": self.detail,
            "body": self.body,
        }
