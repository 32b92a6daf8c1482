"""Retention policy schemas."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from reved_compliance.database.models import RetentionPolicy, RetentionSchedule

# =============================================================================
# ENUMERATIONS
# =============================================================================


class RetentionEntityType(StrEnum):
    """Entity types a policy can target."""

    STUDENT = "student"
    PARENT = "parent"
    PROGRESS = "progress"
    SESSION = "session"
    AUDIT_LOG = "audit_log"
    CONSENT = "consent"


class TriggerCondition(StrEnum):
    """What starts the retention clock."""

    TIME_BASED = "time_based"
    EVENT_BASED = "event_based"
    CONSENT_WITHDRAWAL = "consent_withdrawal"
    ACCOUNT_DELETION = "account_deletion"


class RetentionAction(StrEnum):
    """What happens past the horizon."""

    DELETE = "delete"
    ANONYMIZE = "anonymize"
    ARCHIVE = "archive"
    NOTIFY_ONLY = "notify_only"


class RetentionPriority(StrEnum):
    """Policy priority."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RetentionException(StrEnum):
    """Named exception predicates."""

    ACTIVE_LEGAL_CASE = "active_legal_case"
    ONGOING_AUDIT = "ongoing_audit"
    PREMIUM_ACCOUNT = "premium_account"
    RECENT_ACTIVITY = "recent_activity"
    REGULATORY_REQUIREMENT = "regulatory_requirement"


class EntityOutcome(StrEnum):
    """Result of running a policy on one entity."""

    PROCESSED = "processed"
    NOTIFIED = "notified"
    DEFERRED = "deferred"
    EXEMPTED = "exempted"
    FAILED = "failed"


# =============================================================================
# INPUTS
# =============================================================================


class RetentionPolicyCreate(BaseModel):
    """New retention policy."""

    policy_name: str = Field(min_length=2, max_length=100)
    entity_type: RetentionEntityType
    retention_period_days: int = Field(ge=1, le=10950)
    trigger_condition: TriggerCondition = TriggerCondition.TIME_BASED
    action: RetentionAction
    priority: RetentionPriority = RetentionPriority.MEDIUM
    active: bool = True
    legal_basis: str | None = None
    exceptions: list[RetentionException] = Field(default_factory=list)
    notification_days: int = Field(default=30, ge=0, le=365)
    created_by: str | None = None

    @field_validator("exceptions")
    @classmethod
    def dedupe_exceptions(cls, value: list[RetentionException]) -> list[RetentionException]:
        """Drop repeated exception names, keeping order."""
        return list(dict.fromkeys(value))


class RetentionPolicyUpdate(BaseModel):
    """Partial update of a retention policy."""

    policy_name: str | None = Field(default=None, min_length=2, max_length=100)
    retention_period_days: int | None = Field(default=None, ge=1, le=10950)
    trigger_condition: TriggerCondition | None = None
    action: RetentionAction | None = None
    priority: RetentionPriority | None = None
    active: bool | None = None
    legal_basis: str | None = None
    exceptions: list[RetentionException] | None = None
    notification_days: int | None = Field(default=None, ge=0, le=365)


class ManualScheduleRequest(BaseModel):
    """Retention action scheduled by hand for one entity."""

    entity_type: RetentionEntityType
    entity_id: str = Field(min_length=1, max_length=100)
    action: RetentionAction
    scheduled_date: datetime
    policy_id: str | None = None
    priority: RetentionPriority = RetentionPriority.MEDIUM


# =============================================================================
# VIEWS
# =============================================================================


@dataclass
class PolicyView:
    """Read-only view of a retention policy."""

    id: str
    policy_name: str
    entity_type: str
    retention_period_days: int
    trigger_condition: str
    action: str
    priority: str
    active: bool
    legal_basis: str | None
    exceptions: list[str]
    notification_days: int
    last_executed: datetime | None
    records_processed: int

    @classmethod
    def from_model(cls, policy: RetentionPolicy) -> "PolicyView":
        """Build a view from a stored policy."""
        return cls(
            id=policy.id,
            policy_name=policy.policy_name,
            entity_type=policy.entity_type,
            retention_period_days=policy.retention_period_days,
            trigger_condition=policy.trigger_condition,
            action=policy.action,
            priority=policy.priority,
            active=policy.active,
            legal_basis=policy.legal_basis,
            exceptions=list(policy.exceptions),
            notification_days=policy.notification_days,
            last_executed=policy.last_executed,
            records_processed=policy.records_processed,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-friendly dict."""
        data = dict(self.__dict__)
        data["last_executed"] = self.last_executed.isoformat() if self.last_executed else None
        return data


@dataclass
class ScheduleView:
    """Read-only view of a retention schedule."""

    id: str
    policy_id: str | None
    entity_type: str
    entity_id: str
    action: str
    priority: str
    source: str
    scheduled_date: datetime | None
    notification_sent_at: datetime | None
    completed: bool

    @classmethod
    def from_model(cls, schedule: RetentionSchedule) -> "ScheduleView":
        """Build a view from a stored schedule."""
        return cls(
            id=schedule.id,
            policy_id=schedule.policy_id,
            entity_type=schedule.entity_type,
            entity_id=schedule.entity_id,
            action=schedule.action,
            priority=schedule.priority,
            source=schedule.source,
            scheduled_date=schedule.scheduled_date,
            notification_sent_at=schedule.notification_sent_at,
            completed=schedule.completed,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-friendly dict."""
        data = dict(self.__dict__)
        for key in ("scheduled_date", "notification_sent_at"):
            data[key] = data[key].isoformat() if data[key] else None
        return data


@dataclass
class PolicyExecutionResult:
    """Per-policy counters of one run."""

    processed: int = 0
    notified: int = 0
    exempted: int = 0
    failed: int = 0

    def record(self, outcome: EntityOutcome) -> None:
        """Count an entity outcome (deferrals are not counted)."""
        if outcome == EntityOutcome.PROCESSED:
            self.processed += 1
        elif outcome == EntityOutcome.NOTIFIED:
            self.notified += 1
        elif outcome == EntityOutcome.EXEMPTED:
            self.exempted += 1
        elif outcome == EntityOutcome.FAILED:
            self.failed += 1

    def to_dict(self) -> dict[str, int]:
        """Serialize to a dict."""
        return dict(self.__dict__)


@dataclass
class RetentionRunSummary:
    """Outcome of a full retention run."""

    policies_executed: int = 0
    records_processed: int = 0
    errors_encountered: int = 0
    manual_schedules_processed: int = 0

    def to_dict(self) -> dict[str, int]:
        """Serialize to a dict."""
        return dict(self.__dict__)


@dataclass
class RetentionStatus:
    """Retention outlook of one entity."""

    applicable_policies: list[PolicyView] = field(default_factory=list)
    scheduled_actions: list[ScheduleView] = field(default_factory=list)
    retention_date: datetime | None = None
    days_until_retention: int | None = None
    can_extend_retention: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-friendly dict."""
        return {
            "applicable_policies": [p.to_dict() for p in self.applicable_policies],
            "scheduled_actions": [s.to_dict() for s in self.scheduled_actions],
            "retention_date": self.retention_date.isoformat() if self.retention_date else None,
            "days_until_retention": self.days_until_retention,
            "can_extend_retention": self.can_extend_retention,
        }


@dataclass
class RetentionReport:
    """Retention activity over a period.

    Attributes:
        period_start: Period start.
        period_end: Period end.
        generated_at: Generation timestamp.
        policies_executed: Policies run inside the period.
        records_processed: Records affected by successful operations.
        by_action: Records per operation type.
        by_table: Records per table.
        errors: Failed operations (table, error).
        compliance_status: compliant, warning or non_compliant.
        recommendations: Follow-up suggestions.
    """

    period_start: datetime
    period_end: datetime
    generated_at: datetime
    policies_executed: list[str] = field(default_factory=list)
    records_processed: int = 0
    by_action: dict[str, int] = field(default_factory=dict)
    by_table: dict[str, int] = field(default_factory=dict)
    errors: list[dict[str, str]] = field(default_factory=list)
    compliance_status: str = "compliant"
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-friendly dict."""
        return {
            "period": {"start": self.period_start.isoformat(), "end": self.period_end.isoformat()},
            "generated_at": self.generated_at.isoformat(),
            "policies_executed": self.policies_executed,
            "records_processed": self.records_processed,
            "by_action": self.by_action,
            "by_table": self.by_table,
            "errors": self.errors,
            "compliance_status": self.compliance_status,
            "recommendations": self.recommendations,
        }
