"""Structured logging for the resolution engine.

Every module logs through structlog on top of the stdlib ``logging`` tree, so
each event is one JSON object per line on stderr. stdout is left to the CLI,
which writes the enriched document there.

Events never carry directory data:
- credential fields (token, password, secret, api_key, Authorization) and
  resolved names (display name, UPN) are replaced by ``[REDACTED]``
- object ids under ``object_id``/``object_ids`` keys are shortened to their
  first group, enough to correlate events without logging the full id

Tenants, counts, attempts and status codes are logged as they are.

The level comes from ``LOG_LEVEL`` in directory_enrichment.config.settings
(DEBUG, INFO, WARNING, ERROR, CRITICAL; default INFO).

Usage:
    >>> from directory_enrichment.utils.logging import get_logger
    >>> logger = get_logger(__name__)
    >>> logger.info("batch_resolver.batch_completed", tenant="contoso.com", resolved=12)
"""

import logging
import re
import sys
from typing import Any, Dict, MutableMapping, Optional

import structlog
from pydantic import ValidationError
from structlog.types import EventDict, Processor

from directory_enrichment.config import get_settings

CREDENTIAL_KEY = re.compile(
    r"password|token|api_key|secret|^authorization$", re.IGNORECASE
)
DIRECTORY_DATA_KEY = re.compile(
    r"^(display_?name|upn|user_?principal_?name|label)$", re.IGNORECASE
)
OBJECT_ID_KEY = re.compile(r"^object_?ids?$", re.IGNORECASE)
GUID_PATTERN = re.compile(
    r"\b([0-9a-f]{8})-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b",
    re.IGNORECASE,
)

REDACTED_VALUE = "[REDACTED]"

_stderr_handler = logging.StreamHandler(sys.stderr)


def mask_object_ids(value: Any) -> Any:
    """Shorten every GUID in ``value`` to its first group.

    Example:
        >>> mask_object_ids(["550e8400-e29b-41d4-a716-446655440000"])
        ['550e8400-****']
    """
    if isinstance(value, str):
        return GUID_PATTERN.sub(r"\1-****", value)
    if isinstance(value, (list, tuple, set, frozenset)):
        return [mask_object_ids(item) for item in value]
    return value


def sanitize_for_logging(data: Dict[str, Any]) -> Dict[str, Any]:
    """Strip credentials and directory data from a dictionary before logging.

    Args:
        data: Event fields, possibly nested

    Returns:
        New dictionary safe to render

    Example:
        >>> sanitize_for_logging({"directory_token": "abc", "tenant": "contoso.com"})
        {'directory_token': '[REDACTED]', 'tenant': 'contoso.com'}
    """
    sanitized: Dict[str, Any] = {}
    for key, value in data.items():
        name = str(key)
        if CREDENTIAL_KEY.search(name) or DIRECTORY_DATA_KEY.match(name):
            sanitized[key] = REDACTED_VALUE
        elif OBJECT_ID_KEY.match(name):
            sanitized[key] = mask_object_ids(value)
        elif isinstance(value, dict):
            sanitized[key] = sanitize_for_logging(value)
        else:
            sanitized[key] = value
    return sanitized


def sanitization_processor(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> MutableMapping[str, Any]:
    """Structlog processor applying sanitize_for_logging to every event."""
    return sanitize_for_logging(dict(event_dict))


def _get_log_level() -> int:
    try:
        level_name = get_settings().LOG_LEVEL.upper()
    except ValidationError:
        # Broken settings are reported by the caller that needs them
        level_name = "INFO"
    return getattr(logging, level_name, logging.INFO)


def configure_logging(level: Optional[int] = None) -> None:
    """Route structlog through the stdlib root logger with JSON rendering.

    Safe to call again, e.g. to change the level; the stderr handler is only
    attached once.

    Args:
        level: stdlib level; ``LOG_LEVEL`` from settings if None
    """
    if level is None:
        level = _get_log_level()

    root = logging.getLogger()
    root.setLevel(level)
    if _stderr_handler not in root.handlers:
        _stderr_handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(_stderr_handler)

    processors: list[Processor] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        sanitization_processor,
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


def get_logger(name: str) -> Any:
    """Get a structlog BoundLogger that renders sanitized JSON.

    Args:
        name: Logger name (typically __name__ of the calling module)
    """
    return structlog.get_logger(name)
