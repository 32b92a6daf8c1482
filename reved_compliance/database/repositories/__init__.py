"""Repository layer for database operations."""

from reved_compliance.database.repositories.anonymization import AnonymizationJobRepository
from reved_compliance.database.repositories.audit import (
    AuditFilterData,
    AuditLogRepository,
    SecurityAlertRepository,
)
from reved_compliance.database.repositories.base import BaseRepository
from reved_compliance.database.repositories.consent import ParentalConsentRepository
from reved_compliance.database.repositories.retention import (
    ArchivedRecordRepository,
    DataRetentionLogRepository,
    RetentionDetailsData,
    RetentionPolicyRepository,
    RetentionScheduleRepository,
)
from reved_compliance.database.repositories.school import (
    LearningSessionRepository,
    ParentRepository,
    StudentProgressRepository,
    StudentRepository,
)

__all__ = [
    "BaseRepository",
    # Audit
    "AuditFilterData",
    "AuditLogRepository",
    "SecurityAlertRepository",
    # Anonymization
    "AnonymizationJobRepository",
    # Retention
    "ArchivedRecordRepository",
    "DataRetentionLogRepository",
    "RetentionDetailsData",
    "RetentionPolicyRepository",
    "RetentionScheduleRepository",
    # Consent
    "ParentalConsentRepository",
    # Platform entities
    "LearningSessionRepository",
    "ParentRepository",
    "StudentProgressRepository",
    "StudentRepository",
]
