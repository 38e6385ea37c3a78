"""
Directory Connector Exceptions.

Injected lookup functions signal failures with these types so the batch
resolver can tell throttling apart from transient and permanent errors.
"""

from typing import Optional


class DirectoryClientError(Exception):
    """Base exception for directory client errors."""

    pass


class DirectoryRateLimitError(DirectoryClientError):
    """Raised when the backend throttles a request (429/503)."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        status_code: int = 429,
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class DirectoryTransientError(DirectoryClientError):
    """Raised for network failures and non-throttling server errors (5xx)."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DirectoryResponseError(DirectoryClientError):
    """Raised when a lookup response cannot be parsed."""

    pass


class DirectoryAuthenticationError(DirectoryClientError):
    """Raised when directory authentication fails (401/403)."""

    pass


class DirectoryNotFoundError(DirectoryClientError):
    """Raised when the tenant or endpoint is not found (404)."""

    pass


# Errors after which retrying the same batch cannot succeed
NON_RETRYABLE_ERRORS = (DirectoryAuthenticationError, DirectoryNotFoundError)
