"""Notification delivery (logging or HTTP mail relay)."""

from reved_compliance.services.notifications.notifier import (
    TEMPLATES,
    LoggingNotifier,
    Notifier,
    RelayUnavailableError,
    WebhookNotifier,
    build_notifier,
)

__all__ = [
    "TEMPLATES",
    "LoggingNotifier",
    "Notifier",
    "RelayUnavailableError",
    "WebhookNotifier",
    "build_notifier",
]
