"""Anonymization engine exceptions."""

from reved_compliance.services.errors import ComplianceError


class AnonymizationError(ComplianceError):
    """Base exception for anonymization errors."""


class UnsupportedEntityTypeError(AnonymizationError):
    """Raised when no handler can anonymize an entity type."""


class DuplicateJobError(AnonymizationError):
    """Raised when a target already has a pending or running job."""


class JobNotFoundError(AnonymizationError):
    """Raised when an anonymization job does not exist."""
