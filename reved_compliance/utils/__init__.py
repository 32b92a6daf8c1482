"""Shared utilities: logging and time."""

from reved_compliance.utils.clock import Clock, ensure_utc, utc_now
from reved_compliance.utils.logger import (
    get_audit_logger,
    setup_logger,
    setup_structured_logging,
)

__all__ = [
    "Clock",
    "ensure_utc",
    "utc_now",
    "get_audit_logger",
    "setup_logger",
    "setup_structured_logging",
]
