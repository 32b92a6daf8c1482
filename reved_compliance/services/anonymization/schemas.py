"""Anonymization job schemas."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from reved_compliance.database.models import AnonymizationJob
from reved_compliance.settings import settings


class AnonymizationReason(StrEnum):
    """Why a job was requested."""

    CONSENT_WITHDRAWAL = "consent_withdrawal"
    RETENTION_POLICY = "retention_policy"
    GDPR_REQUEST = "gdpr_request"
    INACTIVITY = "inactivity"
    ACCOUNT_DELETION = "account_deletion"


class JobState(StrEnum):
    """Lifecycle of a job: pending -> running -> completed | failed, or cancelled."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobPriority(StrEnum):
    """Processing priority."""

    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


PRIORITY_BY_REASON: dict[AnonymizationReason, JobPriority] = {
    AnonymizationReason.GDPR_REQUEST: JobPriority.URGENT,
    AnonymizationReason.CONSENT_WITHDRAWAL: JobPriority.URGENT,
    AnonymizationReason.ACCOUNT_DELETION: JobPriority.HIGH,
    AnonymizationReason.RETENTION_POLICY: JobPriority.MEDIUM,
    AnonymizationReason.INACTIVITY: JobPriority.LOW,
}


def priority_for(reason: AnonymizationReason) -> JobPriority:
    """Priority derived from the request reason."""
    return PRIORITY_BY_REASON[reason]


class AnonymizationConfig(BaseModel):
    """Anonymization request."""

    entity_type: str = Field(min_length=1, max_length=50)
    entity_id: str = Field(min_length=1, max_length=100)
    reason: AnonymizationReason
    preserve_statistics: bool = Field(
        default_factory=lambda: settings.anonymization.preserve_educational_statistics
    )
    immediate_execution: bool = False
    scheduled_for: datetime | None = None
    notify_user: bool = True
    requested_by: str | None = Field(default=None, max_length=100)

    @field_validator("entity_id", mode="before")
    @classmethod
    def coerce_entity_id(cls, value: Any) -> Any:
        """Accept integer primary keys."""
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


@dataclass
class JobStatus:
    """Read-only view of an anonymization job."""

    id: str
    entity_type: str
    entity_id: str
    reason: str
    status: str
    priority: str
    progress: int
    affected_records: int
    anonymized_fields: list[str] = field(default_factory=list)
    preserved_fields: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    preserve_statistics: bool = True
    scheduled_for: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_model(cls, job: AnonymizationJob) -> "JobStatus":
        """Build a view from a stored job."""
        return cls(
            id=job.id,
            entity_type=job.entity_type,
            entity_id=job.entity_id,
            reason=job.reason,
            status=job.status,
            priority=job.priority,
            progress=job.progress,
            affected_records=job.affected_records,
            anonymized_fields=list(job.anonymized_fields),
            preserved_fields=list(job.preserved_fields),
            errors=list(job.errors),
            preserve_statistics=job.preserve_statistics,
            scheduled_for=job.scheduled_for,
            started_at=job.started_at,
            completed_at=job.completed_at,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-friendly dict."""
        data = dict(self.__dict__)
        for key in ("scheduled_for", "started_at", "completed_at"):
            value = data[key]
            data[key] = value.isoformat() if value else None
        return data


@dataclass
class InactivityCheckResult:
    """Outcome of the daily inactivity sweep."""

    warnings_sent: int = 0
    anonymizations_scheduled: int = 0

    def to_dict(self) -> dict[str, int]:
        """Serialize to a dict."""
        return {
            "warnings_sent": self.warnings_sent,
            "anonymizations_scheduled": self.anonymizations_scheduled,
        }


@dataclass
class AnonymizationReport:
    """Per-job account of what was anonymized and how.

    Attributes:
        job_id: Job identifier.
        entity_type: Entity type of the target.
        entity_id: Target identifier.
        reason: Why the job was requested.
        status: Job state when the report was built.
        executed_at: Completion time (None while the job has not ended).
        records_processed: Rows touched.
        fields_anonymized: Field name -> strategy applied.
        preserved_data: Statistical fields kept in generalized form.
        statistics_generated: Whether statistics were preserved.
        compliance_checks: GDPR principles checked against the job.
    """

    job_id: str
    entity_type: str
    entity_id: str
    reason: str
    status: str
    executed_at: datetime | None
    records_processed: int
    fields_anonymized: dict[str, str] = field(default_factory=dict)
    preserved_data: list[str] = field(default_factory=list)
    statistics_generated: bool = True
    compliance_checks: dict[str, bool] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-friendly dict."""
        data = dict(self.__dict__)
        data["executed_at"] = self.executed_at.isoformat() if self.executed_at else None
        return data
