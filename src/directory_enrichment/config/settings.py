"""
Configuration management for Directory Enrichment.

This module provides environment-based configuration using Pydantic BaseSettings,
allowing the resolver to be tuned per deployment (batch size, retry budget,
partner UPN conventions) without code changes.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger(__name__)

# Determine project root for resolving .env by default
PROJECT_ROOT = Path(__file__).resolve().parents[3]
DEFAULT_ENV_FILE = PROJECT_ROOT / ".env"
ENV_FILE_OVERRIDE = os.getenv("DIRENRICH_ENV_FILE")
if ENV_FILE_OVERRIDE:
    env_file_candidate = Path(ENV_FILE_OVERRIDE).expanduser()
    if not env_file_candidate.is_absolute():
        env_file_candidate = PROJECT_ROOT / env_file_candidate
    SETTINGS_ENV_FILE = env_file_candidate
else:
    SETTINGS_ENV_FILE = DEFAULT_ENV_FILE


class Settings(BaseSettings):
    """
    Application settings with environment variable support.

    Environment variables are automatically loaded with the DIRENRICH_ prefix.
    For example, DIRENRICH_LOOKUP_BATCH_SIZE will override lookup_batch_size.

    Unprefixed fields:
    - ENVIRONMENT: Deployment environment (dev, staging, prod)
    - LOG_LEVEL: Logging level (uppercase)
    """

    ENVIRONMENT: Literal["dev", "staging", "prod"] = Field(
        default="dev",
        validation_alias="ENVIRONMENT",
        description="Deployment environment",
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Logging level (uppercase)",
    )

    app_name: str = Field(default="DirectoryEnrichment", description="Application name")

    # Tenant scoping
    default_tenant: str = Field(
        default="",
        description="Tenant context used for canonical GUIDs when no override is given",
    )

    # Directory API - backend used to resolve object ids to display names
    directory_base_url: str = Field(
        default="http://localhost:7071",
        description="Base URL of the directory objects API",
    )
    directory_token: str = Field(
        default="",
        description="Bearer token; loaded from DIRENRICH_DIRECTORY_TOKEN",
    )
    directory_timeout: int = Field(
        default=30, description="Directory API request timeout in seconds"
    )

    # Batch resolution
    lookup_batch_size: int = Field(
        default=100, description="Maximum identifiers submitted per lookup call"
    )
    lookup_retry_max: int = Field(
        default=4,
        description="Maximum lookup attempts per batch before marking it failed",
    )
    lookup_backoff_base: float = Field(
        default=0.5, description="Initial backoff delay in seconds"
    )
    lookup_backoff_max: float = Field(
        default=8.0, description="Upper bound for a single backoff delay in seconds"
    )
    lookup_timeout: float = Field(
        default=60.0,
        description="Seconds one lookup call may take before it counts as failed",
    )

    # Identifier extraction
    partner_upn_prefix: str = Field(
        default="user_",
        description="Local-part prefix preceding the object id in partner UPNs",
    )
    match_embedded_guids: bool = Field(
        default=False,
        description="Also match GUIDs embedded in longer free text",
    )

    @model_validator(mode="after")
    def validate_lookup_limits(self) -> "Settings":
        """Reject batch and retry settings that would stall resolution.

        Raises:
            ValueError: If a size, attempt count or timeout is not
                positive, or the backoff cap is smaller than the base delay.
        """
        if self.lookup_batch_size < 1:
            raise ValueError("lookup_batch_size must be at least 1")
        if self.lookup_retry_max < 1:
            raise ValueError("lookup_retry_max must be at least 1")
        if self.lookup_backoff_base < 0:
            raise ValueError("lookup_backoff_base must not be negative")
        if self.lookup_backoff_max < self.lookup_backoff_base:
            raise ValueError(
                "lookup_backoff_max must be greater than or equal to "
                "lookup_backoff_base"
            )
        if self.lookup_timeout <= 0:
            raise ValueError("lookup_timeout must be positive")
        if not self.partner_upn_prefix:
            raise ValueError("partner_upn_prefix must not be empty")
        return self

    model_config = SettingsConfigDict(
        env_prefix="DIRENRICH_",
        env_file=str(SETTINGS_ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance with loaded configuration
    """
    settings = Settings()
    logger.debug(
        "configuration.loaded",
        environment=settings.ENVIRONMENT,
        lookup_batch_size=settings.lookup_batch_size,
        lookup_retry_max=settings.lookup_retry_max,
        credentials_configured=bool(settings.directory_token),
    )
    return settings
