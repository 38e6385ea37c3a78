"""
Directory Connector package.
"""

from .core import DirectoryObjectsClient, LookupFunction, parse_directory_objects
from .models import (
    NON_RETRYABLE_ERRORS,
    DirectoryAuthenticationError,
    DirectoryClientError,
    DirectoryNotFoundError,
    DirectoryRateLimitError,
    DirectoryResponseError,
    DirectoryTransientError,
)

__all__ = [
    "DirectoryObjectsClient",
    "LookupFunction",
    "parse_directory_objects",
    "NON_RETRYABLE_ERRORS",
    "DirectoryClientError",
    "DirectoryAuthenticationError",
    "DirectoryNotFoundError",
    "DirectoryRateLimitError",
    "DirectoryResponseError",
    "DirectoryTransientError",
]
