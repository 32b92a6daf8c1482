"""Anonymization strategies, job schemas and errors.

The engine lives in ``reved_compliance.services.anonymization.engine``.
"""

from reved_compliance.services.anonymization.errors import (
    AnonymizationError,
    DuplicateJobError,
    JobNotFoundError,
    UnsupportedEntityTypeError,
)
from reved_compliance.services.anonymization.schemas import (
    AnonymizationConfig,
    AnonymizationReason,
    AnonymizationReport,
    InactivityCheckResult,
    JobPriority,
    JobState,
    JobStatus,
    priority_for,
)
from reved_compliance.services.anonymization.strategies import (
    AnonymizationRule,
    AnonymizationStrategy,
    apply_anonymization_strategy,
    generalize_field,
)

__all__ = [
    # Strategies
    "AnonymizationRule",
    "AnonymizationStrategy",
    "apply_anonymization_strategy",
    "generalize_field",
    # Schemas
    "AnonymizationConfig",
    "AnonymizationReason",
    "AnonymizationReport",
    "InactivityCheckResult",
    "JobPriority",
    "JobState",
    "JobStatus",
    "priority_for",
    # Errors
    "AnonymizationError",
    "DuplicateJobError",
    "JobNotFoundError",
    "UnsupportedEntityTypeError",
]
