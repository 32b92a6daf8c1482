"""SQLAlchemy ORM models for the compliance core.

Importing this package registers every table on Base.metadata.
"""

from reved_compliance.database.models.anonymization import AnonymizationJob
from reved_compliance.database.models.audit import AuditLogEntry, SecurityAlert
from reved_compliance.database.models.base import (
    Base,
    JSONType,
    RetentionFlagsMixin,
    TimestampMixin,
    UTCDateTime,
)
from reved_compliance.database.models.consent import ParentalConsent
from reved_compliance.database.models.retention import (
    ArchivedRecord,
    DataRetentionLog,
    RetentionPolicy,
    RetentionSchedule,
)
from reved_compliance.database.models.school import (
    LearningSession,
    Parent,
    Student,
    StudentProgress,
)

__all__ = [
    # Base
    "Base",
    "JSONType",
    "RetentionFlagsMixin",
    "TimestampMixin",
    "UTCDateTime",
    # Audit
    "AuditLogEntry",
    "SecurityAlert",
    # Anonymization
    "AnonymizationJob",
    # Retention
    "ArchivedRecord",
    "DataRetentionLog",
    "RetentionPolicy",
    "RetentionSchedule",
    # Consent
    "ParentalConsent",
    # Platform entities
    "LearningSession",
    "Parent",
    "Student",
    "StudentProgress",
]
