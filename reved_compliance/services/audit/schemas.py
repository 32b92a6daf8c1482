"""Audit trail schemas.

Enumerations, validated inputs and the views returned to callers.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from reved_compliance.database.models import AuditLogEntry, SecurityAlert

# =============================================================================
# ENUMERATIONS
# =============================================================================


class AuditEntityType(StrEnum):
    """Entity types that can be audited."""

    STUDENT = "student"
    PARENT = "parent"
    EXERCISE = "exercise"
    PROGRESS = "progress"
    PARENTAL_CONSENT = "parental_consent"
    GDPR_REQUEST = "gdpr_request"
    DATA_EXPORT = "data_export"
    ENCRYPTION = "encryption"
    KEY_ROTATION = "key_rotation"
    KEY_REVOCATION = "key_revocation"
    USER_SESSION = "user_session"
    ADMIN_ACTION = "admin_action"
    ANONYMIZATION_JOB = "anonymization_job"
    RETENTION_POLICY = "retention_policy"
    RETENTION_EXECUTION = "retention_execution"
    RETENTION_SCHEDULE = "retention_schedule"
    RETENTION_REPORT = "retention_report"
    SECURITY_ALERT = "security_alert"
    COMPLIANCE_REPORT = "compliance_report"
    SESSION = "session"
    CONSENT = "consent"
    AUDIT_LOG = "audit_log"


class AuditActionType(StrEnum):
    """Audited actions."""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    EXPORT = "export"
    ANONYMIZE = "anonymize"
    CONSENT_GIVEN = "consent_given"
    CONSENT_REVOKED = "consent_revoked"
    LOGIN = "login"
    LOGOUT = "logout"
    ACCESS_DENIED = "access_denied"
    ENCRYPT = "encrypt"
    DECRYPT = "decrypt"
    KEY_GENERATED = "key_generated"
    KEY_ROTATED = "key_rotated"
    EMERGENCY_REVOKED = "emergency_revoked"
    DATA_RETENTION_APPLIED = "data_retention_applied"
    FIRST_CONSENT = "first_consent"
    SECOND_CONSENT = "second_consent"
    VERIFIED = "verified"
    COMPLETED = "completed"
    FAILED = "failed"
    CREATED = "created"
    REVOKED = "revoked"
    ARCHIVED = "archived"


class Severity(StrEnum):
    """Severity levels, lowest first."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AuditCategory(StrEnum):
    """Functional categories of audited actions."""

    DATA_ACCESS = "data_access"
    DATA_MODIFICATION = "data_modification"
    CONSENT_MANAGEMENT = "consent_management"
    SECURITY = "security"
    COMPLIANCE = "compliance"
    SYSTEM = "system"
    USER_BEHAVIOR = "user_behavior"


_CATEGORY_BY_ACTION: dict[AuditActionType, AuditCategory] = {
    AuditActionType.CREATE: AuditCategory.DATA_MODIFICATION,
    AuditActionType.UPDATE: AuditCategory.DATA_MODIFICATION,
    AuditActionType.DELETE: AuditCategory.DATA_MODIFICATION,
    AuditActionType.READ: AuditCategory.DATA_ACCESS,
    AuditActionType.EXPORT: AuditCategory.DATA_ACCESS,
    AuditActionType.CONSENT_GIVEN: AuditCategory.CONSENT_MANAGEMENT,
    AuditActionType.CONSENT_REVOKED: AuditCategory.CONSENT_MANAGEMENT,
    AuditActionType.FIRST_CONSENT: AuditCategory.CONSENT_MANAGEMENT,
    AuditActionType.SECOND_CONSENT: AuditCategory.CONSENT_MANAGEMENT,
    AuditActionType.VERIFIED: AuditCategory.CONSENT_MANAGEMENT,
    AuditActionType.REVOKED: AuditCategory.CONSENT_MANAGEMENT,
    AuditActionType.LOGIN: AuditCategory.USER_BEHAVIOR,
    AuditActionType.LOGOUT: AuditCategory.USER_BEHAVIOR,
    AuditActionType.ACCESS_DENIED: AuditCategory.SECURITY,
    AuditActionType.ENCRYPT: AuditCategory.SECURITY,
    AuditActionType.DECRYPT: AuditCategory.SECURITY,
    AuditActionType.KEY_GENERATED: AuditCategory.SECURITY,
    AuditActionType.KEY_ROTATED: AuditCategory.SECURITY,
    AuditActionType.EMERGENCY_REVOKED: AuditCategory.SECURITY,
    AuditActionType.ANONYMIZE: AuditCategory.COMPLIANCE,
    AuditActionType.DATA_RETENTION_APPLIED: AuditCategory.COMPLIANCE,
}

# Details of these actions on these entities are sealed before storage
ENCRYPTED_ACTIONS = frozenset(
    {AuditActionType.CREATE, AuditActionType.UPDATE, AuditActionType.EXPORT, AuditActionType.READ}
)
ENCRYPTED_ENTITY_TYPES = frozenset(
    {AuditEntityType.STUDENT, AuditEntityType.PARENT, AuditEntityType.PARENTAL_CONSENT}
)


def categorize_action(action: AuditActionType) -> AuditCategory:
    """Default category of an action."""
    return _CATEGORY_BY_ACTION.get(action, AuditCategory.SYSTEM)


def requires_encryption(action: AuditActionType, entity_type: AuditEntityType) -> bool:
    """Whether the details of an entry must be stored encrypted."""
    return action in ENCRYPTED_ACTIONS and entity_type in ENCRYPTED_ENTITY_TYPES


# =============================================================================
# INPUTS
# =============================================================================


class AuditActionInput(BaseModel):
    """Action to record in the audit trail."""

    model_config = ConfigDict(use_enum_values=False, str_strip_whitespace=True)

    entity_type: AuditEntityType
    entity_id: str = Field(min_length=1, max_length=100)
    action: AuditActionType
    user_id: str | None = Field(default=None, max_length=100)
    parent_id: str | None = Field(default=None, max_length=100)
    student_id: str | None = Field(default=None, max_length=100)
    details: dict[str, Any] = Field(default_factory=dict)
    ip_address: str | None = Field(default=None, max_length=64)
    user_agent: str | None = None
    severity: Severity = Severity.MEDIUM
    category: AuditCategory | None = None

    @model_validator(mode="after")
    def default_category(self) -> "AuditActionInput":
        """Fill the category from the action when not given."""
        if self.category is None:
            self.category = categorize_action(self.action)
        return self


class AuditQuery(BaseModel):
    """Audit search filters and pagination."""

    entity_type: AuditEntityType | None = None
    entity_id: str | None = None
    action: AuditActionType | None = None
    user_id: str | None = None
    student_id: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    severity: list[Severity] | None = None
    category: AuditCategory | None = None
    limit: int = Field(default=100, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)
    include_details: bool = False

    @model_validator(mode="after")
    def check_period(self) -> "AuditQuery":
        """Reject inverted periods."""
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must precede end_date")
        return self


# =============================================================================
# VIEWS
# =============================================================================


@dataclass
class AuditRecord:
    """Read-only view of an audit entry."""

    id: str
    entity_type: str
    entity_id: str
    action: str
    user_id: str | None
    parent_id: str | None
    student_id: str | None
    details: Any
    ip_address: str | None
    user_agent: str | None
    timestamp: datetime
    severity: str
    category: str
    correlation_id: str
    checksum: str
    encrypted: bool

    @classmethod
    def from_model(cls, entry: AuditLogEntry, details: Any = None) -> "AuditRecord":
        """Build a view, optionally substituting decrypted details.

        Args:
            entry: Stored entry.
            details: Details to expose (stored details when None).

        Returns:
            AuditRecord view.
        """
        return cls(
            id=entry.id,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            action=entry.action,
            user_id=entry.user_id,
            parent_id=entry.parent_id,
            student_id=entry.student_id,
            details=entry.details if details is None else details,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            timestamp=entry.timestamp,
            severity=entry.severity,
            category=entry.category,
            correlation_id=entry.correlation_id,
            checksum=entry.checksum,
            encrypted=entry.encrypted,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-friendly dict."""
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass
class AuditQueryResult:
    """Page of audit entries."""

    entries: list[AuditRecord]
    total: int
    has_more: bool


@dataclass
class IntegrityReport:
    """Outcome of a checksum verification."""

    audit_id: str
    valid: bool
    stored_checksum: str
    calculated_checksum: str

    @property
    def tampering(self) -> bool:
        """Whether the entry was modified out-of-band."""
        return not self.valid


@dataclass
class AlertView:
    """Read-only view of a security alert."""

    id: str
    type: str
    severity: str
    entity_type: str
    entity_id: str
    description: str
    detected_at: datetime
    audit_entries: list[str] = field(default_factory=list)
    resolved: bool = False

    @classmethod
    def from_model(cls, alert: SecurityAlert) -> "AlertView":
        """Build a view from a stored alert."""
        return cls(
            id=alert.id,
            type=alert.type,
            severity=alert.severity,
            entity_type=alert.entity_type,
            entity_id=alert.entity_id,
            description=alert.description,
            detected_at=alert.detected_at,
            audit_entries=list(alert.audit_entries),
            resolved=alert.resolved,
        )
