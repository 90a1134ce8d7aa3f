"""Error taxonomy shared by the feed, cleaning and API layers.

- ``TransportError``: a feed could not be fetched (network failure or non-2xx).
- ``FeedParseError``: a fetched document is not a calendar at all.
- ``PersistenceError``: a store write or read failed.
- ``PreconditionError``: the call cannot proceed (no sources, no workers).
- ``NotFoundError``: a referenced property does not exist.
"""

from __future__ import annotations


class StaySyncError(Exception):
    """Base error for the sync engine."""


class TransportError(StaySyncError):
    """Raised when a calendar feed cannot be fetched."""

    def __init__(
        self,
        *,
        url: str,
        message: str,
        status_code: int | None = None,
    ) -> None:
        self.url = url
        self.status_code = status_code
        self.message = message
        if status_code is not None:
            super().__init__(f"Feed fetch failed ({status_code}): {message}")
        else:
            super().__init__(f"Feed fetch failed: {message}")


class FeedParseError(StaySyncError):
    """Raised when a fetched body is not a calendar document."""


class PersistenceError(StaySyncError):
    """Raised when the relational store rejects a read or write."""


class PreconditionError(StaySyncError):
    """Raised when an operation cannot start.

    Carries a stable machine-readable ``code`` rendered by the API layer.
    """

    code = "PRECONDITION_FAILED"

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)


class NoActiveSourcesError(PreconditionError):
    """No active calendar source matched the sync request."""

    code = "NO_ACTIVE_SOURCES"


class NoEligibleWorkersError(PreconditionError):
    """No active cleaner assignment exists for the property."""

    code = "NO_ELIGIBLE_WORKERS"


class NotFoundError(StaySyncError):
    """Raised when a referenced record (property) does not exist."""
