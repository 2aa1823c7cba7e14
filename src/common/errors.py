"""Exception types raised by backends and the resolution engine."""
from __future__ import annotations

from typing import Optional


class ResolutionError(Exception):
    """Base class for all resolver errors."""


class InvalidRequestError(ResolutionError):
    """Caller misuse detected before any repository is contacted."""


class ConstraintParseError(ResolutionError, ValueError):
    """A version or version-range string could not be parsed."""

    def __init__(self, text: Optional[str], reason: str):
        self.text = text
        self.reason = reason
        super().__init__(f"Cannot parse version '{text}': {reason}")


class ResolutionCancelled(ResolutionError):
    """Raised when a cancellation token has been triggered."""


class RepositoryError(ResolutionError):
    """A single repository could not answer a query."""

    def __init__(self, message: str, *, url: Optional[str] = None):
        self.url = url
        super().__init__(message)


class RepositoryTransportError(RepositoryError):
    """Network, timeout or HTTP status failure talking to a repository."""

    def __init__(self, message: str, *, url: Optional[str] = None, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message, url=url)


class MalformedResponseError(RepositoryError):
    """Response body is missing the expected JSON or XML structure."""

    def __init__(self, message: str, *, url: Optional[str] = None, detail: Optional[str] = None):
        self.detail = detail
        super().__init__(message, url=url)


class UnsupportedOperationError(RepositoryError):
    """The repository protocol has no way to perform the requested search."""
