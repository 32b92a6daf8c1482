"""Centralized configuration for the RevEd Kids compliance core.

Configuration strategy:
- SECRETS (encryption key, database password, relay token): sourced from
  .env only, masked in every dump.
- COMPLIANCE thresholds (inactivity horizons, anomaly windows, consent
  expiry): safe defaults matching the platform's legal commitments.
  Override via .env as needed.

Usage:
    from reved_compliance.settings import settings

    settings.audit.suspicious_read_threshold
    settings.database.sync_url
"""

from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from reved_compliance.settings.base import LoggingSettings, PathsSettings
from reved_compliance.settings.compliance import (
    AnonymizationSettings,
    AuditSettings,
    ConsentSettings,
    RetentionSettings,
)
from reved_compliance.settings.database import DatabaseSettings
from reved_compliance.settings.notifications import NotificationSettings
from reved_compliance.settings.scheduler import SchedulerSettings
from reved_compliance.settings.security import EncryptionSettings

__all__ = [
    # Main
    "Settings",
    "settings",
    # Base
    "PathsSettings",
    "LoggingSettings",
    # Database
    "DatabaseSettings",
    # Security
    "EncryptionSettings",
    # Compliance
    "AuditSettings",
    "AnonymizationSettings",
    "RetentionSettings",
    "ConsentSettings",
    # Delivery
    "NotificationSettings",
    "SchedulerSettings",
    # Utilities
    "get_masked_settings",
]


# =============================================================================
# GLOBAL SETTINGS
# =============================================================================


class Settings(BaseSettings):
    """Global application settings.

    Aggregates all configuration sections into a single object.
    Access via the singleton: `from reved_compliance.settings import settings`
    """

    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # Paths and logging
    paths: PathsSettings = Field(default_factory=PathsSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    # Storage and crypto
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    encryption: EncryptionSettings = Field(default_factory=EncryptionSettings)

    # Compliance core
    audit: AuditSettings = Field(default_factory=AuditSettings)
    anonymization: AnonymizationSettings = Field(default_factory=AnonymizationSettings)
    retention: RetentionSettings = Field(default_factory=RetentionSettings)
    consent: ConsentSettings = Field(default_factory=ConsentSettings)

    # Delivery
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        valid_envs = {"development", "production", "test"}
        v_lower = v.lower()
        if v_lower not in valid_envs:
            raise ValueError(f"Invalid ENVIRONMENT. Valid: {valid_envs}")
        return v_lower

    def model_post_init(self, _: Any) -> None:
        """Initialize directories after settings are loaded."""
        self.paths.ensure_directories()


# =============================================================================
# SINGLETON INSTANCE
# =============================================================================

settings = Settings()


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def get_masked_settings() -> dict[str, Any]:
    """Return settings dict with sensitive values masked.

    Returns:
        Configuration dictionary safe for logging.
    """
    config = settings.model_dump()
    mask = "***MASKED***"

    # Paths to mask (section, key)
    secrets = [
        ("database", "password"),
        ("database", "url"),
        ("encryption", "key"),
        ("encryption", "salt"),
        ("notifications", "relay_token"),
        ("scheduler", "broker_url"),
        ("scheduler", "result_backend"),
    ]

    for section, key in secrets:
        if section in config and key in config[section] and config[section][key]:
            config[section][key] = mask

    return config
