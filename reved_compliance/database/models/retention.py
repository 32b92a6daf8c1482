"""Retention models.

Policies, per-entity schedules, the operation log and the cold
storage table.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from reved_compliance.database.models.base import (
    Base,
    JSONType,
    TimestampMixin,
    UTCDateTime,
)
from reved_compliance.utils.clock import utc_now


class RetentionPolicy(TimestampMixin, Base):
    """Retention policy: entity type -> period -> action.

    Attributes:
        id: UUID primary key.
        policy_name: Human-readable name.
        entity_type: Entity type the policy applies to.
        retention_period_days: Retention horizon in days.
        trigger_condition: What starts the retention clock.
        action: delete, anonymize, archive or notify_only.
        priority: low, medium, high or critical.
        active: Whether the daily run executes the policy.
        legal_basis: Documentation of the legal ground.
        exceptions: Named exception predicates.
        notification_days: Notice period before the action.
        last_executed: Last run time.
        records_processed: Total entities processed.
    """

    __tablename__ = "retention_policies"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    policy_name: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    retention_period_days: Mapped[int] = mapped_column(Integer, nullable=False)
    trigger_condition: Mapped[str] = mapped_column(String(30), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default="medium")
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    legal_basis: Mapped[str | None] = mapped_column(Text)
    exceptions: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    notification_days: Mapped[int] = mapped_column(Integer, nullable=False, default=30)

    # Execution tracking
    last_executed: Mapped[datetime | None] = mapped_column(UTCDateTime())
    records_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_by: Mapped[str | None] = mapped_column(String(100))

    def __repr__(self) -> str:
        """Return string representation."""
        return (
            f"<RetentionPolicy(name='{self.policy_name}', entity='{self.entity_type}', "
            f"days={self.retention_period_days}, action='{self.action}')>"
        )


class RetentionSchedule(TimestampMixin, Base):
    """Retention progress of one entity under one policy.

    Policy rows record the warning and completion. Manual rows
    (policy_id may be None) carry an operator-requested action.

    Attributes:
        id: UUID primary key.
        policy_id: Owning policy, None for manual schedules.
        entity_type: Entity type.
        entity_id: Entity identifier.
        action: Action to apply.
        priority: Priority inherited from the policy.
        source: policy or manual.
        scheduled_date: When the action becomes due.
        notification_sent_at: When the retention warning went out.
        completed: Whether the action was applied.
        completed_at: When it was applied.
        errors: Failure messages.
        anonymization_job_id: Anonymization job awaited before completion.
    """

    __tablename__ = "retention_schedules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    policy_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("retention_policies.id", ondelete="CASCADE")
    )
    entity_type: Mapped[str] = mapped_column(String(30), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default="medium")
    source: Mapped[str] = mapped_column(String(10), nullable=False, default="policy")

    scheduled_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), index=True)
    notification_sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    errors: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    anonymization_job_id: Mapped[str | None] = mapped_column(String(36))

    __table_args__ = (
        Index("ix_retention_schedules_target", "policy_id", "entity_type", "entity_id"),
        Index("ix_retention_schedules_entity", "entity_type", "entity_id"),
    )

    def __repr__(self) -> str:
        """Return string representation."""
        return (
            f"<RetentionSchedule(entity='{self.entity_type}:{self.entity_id}', "
            f"action='{self.action}', completed={self.completed})>"
        )


class DataRetentionLog(Base):
    """Log of data retention operations.

    Tracks deletion, anonymization and archival for GDPR compliance.

    Attributes:
        id: Primary key.
        operation_type: Type of operation (delete, anonymize, archive, notify_only).
        table_name: Target table name.
        records_affected: Number of records processed.
        criteria: Selection criteria used.
        executed_by: User or process that executed.
        status: Operation status (success, failed).
        error_message: Error details if failed.
    """

    __tablename__ = "data_retention_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # Operation details
    operation_type: Mapped[str] = mapped_column(String(50), nullable=False)
    table_name: Mapped[str] = mapped_column(String(100), nullable=False)
    records_affected: Mapped[int] = mapped_column(Integer, default=0)

    # Criteria and context
    criteria: Mapped[str | None] = mapped_column(Text)
    executed_by: Mapped[str] = mapped_column(String(100), nullable=False)

    # Status
    status: Mapped[str] = mapped_column(String(20), default="success")
    error_message: Mapped[str | None] = mapped_column(Text)

    # Timestamps
    executed_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utc_now,
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        """Return string representation."""
        return (
            f"<DataRetentionLog(id={self.id}, "
            f"op='{self.operation_type}', table='{self.table_name}', "
            f"records={self.records_affected})>"
        )


class ArchivedRecord(Base):
    """Cold-storage copy of an archived entity.

    Attributes:
        id: Primary key.
        entity_type: Archived entity type.
        entity_id: Archived entity identifier.
        policy_id: Policy that archived it.
        storage_tier: Storage tier tag.
        payload: Encrypted snapshot envelope.
        archived_at: Archival time.
    """

    __tablename__ = "archived_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    entity_type: Mapped[str] = mapped_column(String(30), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    policy_id: Mapped[str | None] = mapped_column(String(36))
    storage_tier: Mapped[str] = mapped_column(String(20), nullable=False, default="cold_storage")
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    archived_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utc_now)

    __table_args__ = (Index("ix_archived_records_entity", "entity_type", "entity_id"),)

    def __repr__(self) -> str:
        """Return string representation."""
        return f"<ArchivedRecord(entity='{self.entity_type}:{self.entity_id}', tier='{self.storage_tier}')>"
