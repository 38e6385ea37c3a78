"""
Utility functions for the directory connector.
"""

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional


def sanitize_url_for_logging(url: str) -> str:
    """
    Sanitize URL for logging by removing token parameters.

    Args:
        url: Original URL that may contain sensitive data

    Returns:
        Sanitized URL safe for logging
    """
    if "token=" in url:
        return url.split("token=")[0] + "[TOKEN_SANITIZED]"
    return url


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """
    Parse a Retry-After header into seconds.

    Accepts both the delta-seconds and the HTTP-date forms; anything else
    (or a date in the past) yields None.
    """
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        seconds = (when - datetime.now(timezone.utc)).total_seconds()
    return seconds if seconds > 0 else None
