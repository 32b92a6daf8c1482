"""Notification delivery settings.

The mail relay is an HTTP endpoint accepting templated messages.
When no relay is configured, notifications are only logged.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class NotificationSettings(BaseSettings):
    """Mail relay configuration.

    Attributes:
        relay_url: HTTP endpoint of the mail relay.
        relay_token: Bearer token for the relay.
        timeout: HTTP timeout (seconds).
        max_attempts: Delivery attempts before giving up.
        sender: From address.
        compliance_email: Mailbox receiving retention warnings.
        security_email: Mailbox receiving security alerts.
    """

    relay_url: str | None = Field(default=None, alias="MAIL_RELAY_URL")
    relay_token: str = Field(default="", alias="MAIL_RELAY_TOKEN")
    timeout: float = Field(default=10.0, alias="MAIL_RELAY_TIMEOUT")
    max_attempts: int = Field(default=3, alias="MAIL_MAX_ATTEMPTS")
    sender: str = Field(default="noreply@revedkids.com", alias="MAIL_FROM")
    compliance_email: str = Field(default="compliance@revedkids.com", alias="COMPLIANCE_EMAIL")
    security_email: str = Field(default="security@revedkids.com", alias="SECURITY_EMAIL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def is_configured(self) -> bool:
        """Check if a mail relay is configured."""
        return bool(self.relay_url)
