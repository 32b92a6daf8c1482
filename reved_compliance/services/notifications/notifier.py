"""Notification delivery.

Services only know ``notify(to, template, variables)``; template bodies
live in the mail relay. Delivery retry happens here, never in callers.
"""

from collections.abc import Mapping
from types import TracebackType
from typing import Any, Protocol

import httpx
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from reved_compliance.services.errors import NotificationError
from reved_compliance.settings import settings
from reved_compliance.utils.logger import setup_logger

logger = setup_logger("services.notifications")

# Templates referenced by the compliance services
TEMPLATES = frozenset(
    {
        "retention-warning",
        "parental-consent-first",
        "parental-consent-second",
        "student-account-created",
        "inactivity-warning",
        "anonymization-completed",
        "gdpr-verification",
    }
)


class RelayUnavailableError(NotificationError):
    """Raised when the relay answers with a retryable status."""


class Notifier(Protocol):
    """Anything able to deliver a templated message."""

    def notify(self, to: str, template: str, variables: Mapping[str, Any]) -> None:
        """Deliver a templated message.

        Args:
            to: Recipient address.
            template: Template name.
            variables: Template variables.
        """
        ...


def _check_template(template: str) -> None:
    """Reject unknown template names."""
    if template not in TEMPLATES:
        raise NotificationError(f"Unknown notification template: {template}")


class LoggingNotifier:
    """Notifier that only logs messages (no relay configured)."""

    def notify(self, to: str, template: str, variables: Mapping[str, Any]) -> None:
        """Log the message instead of sending it."""
        _check_template(template)
        logger.info(f"notification_logged: template={template} to={to} vars={sorted(variables)}")


class WebhookNotifier:
    """Notifier posting messages to an HTTP mail relay.

    Transport failures and 5xx answers are retried with exponential
    backoff; 4xx answers fail immediately.
    """

    def __init__(
        self,
        relay_url: str | None = None,
        client: httpx.Client | None = None,
        max_attempts: int | None = None,
        backoff_multiplier: float = 1.0,
    ) -> None:
        """Initialize the relay client.

        Args:
            relay_url: Relay endpoint (defaults to MAIL_RELAY_URL).
            client: Preconfigured HTTP client (created when None).
            max_attempts: Delivery attempts (defaults to MAIL_MAX_ATTEMPTS).
            backoff_multiplier: Multiplier of the exponential backoff.
        """
        self._relay_url = relay_url or settings.notifications.relay_url
        if not self._relay_url:
            raise NotificationError("MAIL_RELAY_URL is not configured")

        headers = {"Content-Type": "application/json"}
        if settings.notifications.relay_token:
            headers["Authorization"] = f"Bearer {settings.notifications.relay_token}"

        self._client = client or httpx.Client(timeout=settings.notifications.timeout, headers=headers)
        self._max_attempts = max_attempts or settings.notifications.max_attempts
        self._backoff_multiplier = backoff_multiplier

    # -------------------------------------------------------------------------
    # Context Manager
    # -------------------------------------------------------------------------

    def __enter__(self) -> "WebhookNotifier":
        """Enter context."""
        return self

    def __exit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        """Exit context and close HTTP client."""
        self.close()

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------

    def notify(self, to: str, template: str, variables: Mapping[str, Any]) -> None:
        """Post a message to the relay, retrying transient failures.

        Args:
            to: Recipient address.
            template: Template name.
            variables: Template variables.

        Raises:
            NotificationError: If delivery failed for good.
        """
        _check_template(template)
        payload = {
            "from": settings.notifications.sender,
            "to": to,
            "template": template,
            "variables": dict(variables),
        }

        retrying = Retrying(
            retry=retry_if_exception_type((httpx.TransportError, RelayUnavailableError)),
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._backoff_multiplier, max=10),
        )
        try:
            for attempt in retrying:
                with attempt:
                    self._post(payload)
        except RetryError as e:
            cause = e.last_attempt.exception()
            logger.error(f"notification_failed: template={template} to={to} error={cause}")
            raise NotificationError(
                f"Delivery of '{template}' failed after {self._max_attempts} attempts"
            ) from cause

        logger.info(f"notification_sent: template={template} to={to}")

    def _post(self, payload: dict[str, Any]) -> None:
        """Send one delivery attempt.

        Args:
            payload: JSON body.

        Raises:
            RelayUnavailableError: On 429 or 5xx answers.
            NotificationError: On other non-2xx answers.
        """
        response = self._client.post(self._relay_url, json=payload)
        if response.status_code == 429 or response.status_code >= 500:
            logger.warning(f"relay_unavailable: status={response.status_code}")
            raise RelayUnavailableError(f"Relay answered {response.status_code}")
        if response.status_code >= 400:
            raise NotificationError(f"Relay rejected message: {response.status_code}")


# =============================================================================
# FACTORY
# =============================================================================


def build_notifier() -> Notifier:
    """Build the notifier matching the configuration.

    Returns:
        WebhookNotifier when a relay is configured, LoggingNotifier otherwise.
    """
    if settings.notifications.is_configured:
        return WebhookNotifier()
    logger.warning("mail_relay_not_configured: notifications will only be logged")
    return LoggingNotifier()
