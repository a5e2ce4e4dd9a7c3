"""Fetch and state error taxonomy."""

from typing import Optional


class FetchError(Exception):
    """Base class for every failed fetch."""

    kind = "error"

    def __init__(self, url: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{message} ({url})")
        self.url = url
        self.status_code = status_code


class TransientFetchError(FetchError):
    """Timeout, connection failure, HTTP 429 or 5xx. Retried before surfacing."""

    kind = "transient"


class TerminalFetchError(FetchError):
    """Non-retryable HTTP failure (4xx other than 429)."""

    kind = "terminal"


class NotFoundError(TerminalFetchError):
    """HTTP 404. Pagination walks treat this as the end of the listing."""

    kind = "not_found"


class AntiBotChallenge(FetchError):
    """The source answered with a challenge page instead of content.

    Callers stop the whole batch when they see this.
    """

    kind = "challenge"


class StateCorruption(Exception):
    """A persisted state document could not be read or validated."""


class MissingStateError(Exception):
    """A stage's required input has never been produced."""
