"""Retention repositories.

Policies, per-entity schedules, the operation log and cold storage.
"""

from datetime import datetime
from typing import Any, TypedDict

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from reved_compliance.database.models import (
    ArchivedRecord,
    DataRetentionLog,
    RetentionPolicy,
    RetentionSchedule,
)
from reved_compliance.database.repositories.base import BaseRepository


class RetentionDetailsData(TypedDict, total=False):
    """Typed dictionary for retention operation details."""

    policy_id: str
    entity_id: str
    retention_days: int


class RetentionPolicyRepository(BaseRepository[RetentionPolicy]):
    """Repository for RetentionPolicy operations."""

    model = RetentionPolicy

    def __init__(self, session: Session) -> None:
        """Initialize retention policy repository.

        Args:
            session: SQLAlchemy session instance.
        """
        super().__init__(session)

    def active(self) -> list[RetentionPolicy]:
        """Active policies, by creation order.

        Returns:
            Active policies.
        """
        return self.find(RetentionPolicy.active.is_(True), order_by=RetentionPolicy.created_at)

    def for_entity_type(self, entity_type: str, active_only: bool = True) -> list[RetentionPolicy]:
        """Policies targeting an entity type.

        Args:
            entity_type: Entity type.
            active_only: Skip inactive policies.

        Returns:
            Matching policies.
        """
        criteria = [RetentionPolicy.entity_type == entity_type]
        if active_only:
            criteria.append(RetentionPolicy.active.is_(True))
        return self.find(*criteria, order_by=RetentionPolicy.created_at)

    def executed_between(self, start: datetime, end: datetime) -> list[RetentionPolicy]:
        """Policies whose last run falls inside a period.

        Args:
            start: Period start.
            end: Period end.

        Returns:
            Matching policies.
        """
        return self.find(
            RetentionPolicy.last_executed >= start,
            RetentionPolicy.last_executed <= end,
        )


class RetentionScheduleRepository(BaseRepository[RetentionSchedule]):
    """Repository for RetentionSchedule operations."""

    model = RetentionSchedule

    def __init__(self, session: Session) -> None:
        """Initialize retention schedule repository.

        Args:
            session: SQLAlchemy session instance.
        """
        super().__init__(session)

    def get_for(
        self,
        policy_id: str,
        entity_type: str,
        entity_id: str,
    ) -> RetentionSchedule | None:
        """Schedule of one entity under one policy.

        Args:
            policy_id: Policy identifier.
            entity_type: Entity type.
            entity_id: Entity identifier.

        Returns:
            Schedule or None.
        """
        matches = self.find(
            RetentionSchedule.policy_id == policy_id,
            RetentionSchedule.entity_type == entity_type,
            RetentionSchedule.entity_id == entity_id,
            RetentionSchedule.source == "policy",
            limit=1,
        )
        return matches[0] if matches else None

    def completed_entity_ids(self, policy_id: str) -> set[str]:
        """Entity ids already processed under a policy.

        Args:
            policy_id: Policy identifier.

        Returns:
            Set of entity ids.
        """
        stmt = select(RetentionSchedule.entity_id).where(
            RetentionSchedule.policy_id == policy_id,
            RetentionSchedule.source == "policy",
            RetentionSchedule.completed.is_(True),
        )
        return set(self._session.scalars(stmt).all())

    def awaiting_anonymization(self, policy_id: str) -> list[RetentionSchedule]:
        """Open schedules of a policy waiting on an anonymization job.

        Args:
            policy_id: Policy identifier.

        Returns:
            Schedules with a tracked job.
        """
        return self.find(
            RetentionSchedule.policy_id == policy_id,
            RetentionSchedule.source == "policy",
            RetentionSchedule.completed.is_(False),
            RetentionSchedule.anonymization_job_id.is_not(None),
        )

    def due_manual(self, now: datetime) -> list[RetentionSchedule]:
        """Manual schedules whose date has come.

        Args:
            now: Reference time.

        Returns:
            Due schedules, oldest first.
        """
        return self.find(
            RetentionSchedule.source == "manual",
            RetentionSchedule.completed.is_(False),
            RetentionSchedule.scheduled_date <= now,
            order_by=RetentionSchedule.scheduled_date,
        )

    def open_for_entity(self, entity_type: str, entity_id: str) -> list[RetentionSchedule]:
        """Uncompleted schedules of an entity, earliest first.

        Args:
            entity_type: Entity type.
            entity_id: Entity identifier.

        Returns:
            Open schedules.
        """
        return self.find(
            RetentionSchedule.entity_type == entity_type,
            RetentionSchedule.entity_id == entity_id,
            RetentionSchedule.completed.is_(False),
            order_by=RetentionSchedule.scheduled_date,
        )

    def count_by_completion(self) -> dict[bool, int]:
        """Schedule counts by completion flag.

        Returns:
            Mapping completed -> count.
        """
        stmt = select(RetentionSchedule.completed, func.count()).group_by(RetentionSchedule.completed)
        return {bool(completed): count for completed, count in self._session.execute(stmt).all()}


class DataRetentionLogRepository(BaseRepository[DataRetentionLog]):
    """Repository for DataRetentionLog entity operations.

    Tracks data retention operations for GDPR compliance.
    """

    model = DataRetentionLog

    def __init__(self, session: Session) -> None:
        """Initialize data retention log repository.

        Args:
            session: SQLAlchemy session instance.
        """
        super().__init__(session)

    def log_operation(
        self,
        table_name: str,
        operation_type: str,
        records_affected: int,
        executed_by: str = "system",
        criteria: str | None = None,
        status: str = "success",
        error_message: str | None = None,
        executed_at: datetime | None = None,
    ) -> DataRetentionLog:
        """Log a data retention operation.

        Args:
            table_name: Target table name.
            operation_type: Operation type (delete, anonymize, archive, notify_only).
            records_affected: Number of records processed.
            executed_by: User or system that ran the operation.
            criteria: Selection criteria used.
            status: Operation status (success, failed).
            error_message: Error details if failed.
            executed_at: Operation time (defaults to now).

        Returns:
            Created log entry.
        """
        log = DataRetentionLog(
            table_name=table_name,
            operation_type=operation_type,
            records_affected=records_affected,
            executed_by=executed_by,
            criteria=criteria,
            status=status,
            error_message=error_message,
        )
        if executed_at is not None:
            log.executed_at = executed_at
        return self.create(log)

    def in_period(self, start: datetime, end: datetime) -> list[DataRetentionLog]:
        """Operations executed inside a period.

        Args:
            start: Period start.
            end: Period end.

        Returns:
            Matching log entries, oldest first.
        """
        return self.find(
            DataRetentionLog.executed_at >= start,
            DataRetentionLog.executed_at <= end,
            order_by=DataRetentionLog.executed_at,
        )

    def get_by_table(self, table_name: str, limit: int = 50) -> list[DataRetentionLog]:
        """Get retention logs for a specific table.

        Args:
            table_name: Table name to filter.
            limit: Maximum results.

        Returns:
            Log entries, newest first.
        """
        return self.find(
            DataRetentionLog.table_name == table_name,
            order_by=DataRetentionLog.executed_at.desc(),
            limit=limit,
        )


class ArchivedRecordRepository(BaseRepository[ArchivedRecord]):
    """Repository for cold-storage records."""

    model = ArchivedRecord

    def __init__(self, session: Session) -> None:
        """Initialize archived record repository.

        Args:
            session: SQLAlchemy session instance.
        """
        super().__init__(session)

    def archive(
        self,
        entity_type: str,
        entity_id: str,
        payload: dict[str, Any],
        policy_id: str | None,
        archived_at: datetime,
    ) -> ArchivedRecord:
        """Store a snapshot in cold storage.

        Args:
            entity_type: Entity type.
            entity_id: Entity identifier.
            payload: Encrypted snapshot envelope.
            policy_id: Archiving policy.
            archived_at: Archival time.

        Returns:
            Created record.
        """
        record = ArchivedRecord(
            entity_type=entity_type,
            entity_id=entity_id,
            payload=payload,
            policy_id=policy_id,
            archived_at=archived_at,
        )
        return self.create(record)

    def for_entity(self, entity_type: str, entity_id: str) -> list[ArchivedRecord]:
        """Archived copies of an entity.

        Args:
            entity_type: Entity type.
            entity_id: Entity identifier.

        Returns:
            Archived records, newest first.
        """
        return self.find(
            ArchivedRecord.entity_type == entity_type,
            ArchivedRecord.entity_id == entity_id,
            order_by=ArchivedRecord.archived_at.desc(),
        )
