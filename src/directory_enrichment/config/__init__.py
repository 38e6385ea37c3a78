"""Configuration management for Directory Enrichment.

Usage:
    >>> from directory_enrichment.config import get_settings
    >>> settings = get_settings()
    >>> settings.lookup_batch_size
    100
"""

from directory_enrichment.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
