"""
HTTP Transport layer for the directory connector.
Handles session configuration and maps HTTP status codes to connector errors.

Retries are deliberately not performed here: the batch resolver owns the
retry budget so that throttling never multiplies requests.
"""

import logging
from typing import Any, Optional

import requests

from directory_enrichment.config.settings import get_settings

from .models import (
    DirectoryAuthenticationError,
    DirectoryClientError,
    DirectoryNotFoundError,
    DirectoryRateLimitError,
    DirectoryTransientError,
)
from .utils import parse_retry_after, sanitize_url_for_logging

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUS_CODES = frozenset({429, 503})


class DirectoryTransport:
    """
    Base HTTP transport for the directory objects API.
    Handles session management, headers and status classification.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        *,
        timeout: Optional[int] = None,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize directory transport with configuration.

        Args:
            token: Bearer token. If None, reads DIRENRICH_DIRECTORY_TOKEN
                from settings
            timeout: Request timeout in seconds. If None, uses settings default
            base_url: API base URL. If None, uses settings default
            session: Pre-built requests session (tests, connection pooling)
        """
        self.settings = get_settings()

        self.token = token or self.settings.directory_token
        if not self.token:
            raise DirectoryAuthenticationError(
                "Directory token required via constructor parameter or "
                "DIRENRICH_DIRECTORY_TOKEN in .env configuration file"
            )

        self.timeout = (
            timeout if timeout is not None else self.settings.directory_timeout
        )
        self.base_url = (
            base_url if base_url is not None else self.settings.directory_base_url
        ).rstrip("/")

        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {self.token}",
                "User-Agent": "DirectoryEnrichment/0.1",
                "Accept": "application/json",
                "Content-Type": "application/json; charset=utf-8",
            }
        )

        logger.info(
            "Directory transport initialized",
            extra={
                "base_url": self.base_url,
                "timeout": self.timeout,
            },
        )

    def _make_request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        """
        Make a single HTTP request and classify the outcome.

        Args:
            method: HTTP method (GET, POST, etc.)
            url: Request URL
            **kwargs: Additional arguments for requests

        Returns:
            Response object for successful requests

        Raises:
            DirectoryAuthenticationError: For 401/403
            DirectoryNotFoundError: For 404
            DirectoryRateLimitError: For 429/503
            DirectoryTransientError: For other 5xx and network failures
            DirectoryClientError: For any other unexpected status
        """
        sanitized_url = sanitize_url_for_logging(url)

        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.warning(
                "Directory request failed",
                extra={"url": sanitized_url, "error_type": type(e).__name__},
            )
            raise DirectoryTransientError(f"Request failed: {e}") from e

        status = response.status_code

        if 200 <= status < 300:
            logger.debug(
                "Directory API request successful",
                extra={"url": sanitized_url, "status_code": status},
            )
            return response

        if status in RATE_LIMIT_STATUS_CODES:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            logger.warning(
                "Directory rate limit exceeded",
                extra={
                    "url": sanitized_url,
                    "status_code": status,
                    "retry_after": retry_after,
                },
            )
            raise DirectoryRateLimitError(
                f"Rate limited ({status})", status_code=status, retry_after=retry_after
            )

        if status in (401, 403):
            logger.error(
                "Directory authentication failed",
                extra={"url": sanitized_url, "status_code": status},
            )
            raise DirectoryAuthenticationError(f"Not authorized ({status})")

        if status == 404:
            logger.warning(
                "Directory resource not found",
                extra={"url": sanitized_url, "status_code": status},
            )
            raise DirectoryNotFoundError("Resource not found")

        if status >= 500:
            logger.warning(
                "Directory server error",
                extra={"url": sanitized_url, "status_code": status},
            )
            raise DirectoryTransientError(f"Server error: {status}", status_code=status)

        logger.error(
            "Unexpected directory API response",
            extra={"url": sanitized_url, "status_code": status},
        )
        raise DirectoryClientError(f"Unexpected status code: {status}")
