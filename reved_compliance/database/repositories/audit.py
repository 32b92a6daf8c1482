"""Audit trail repositories.

Queries backing audit search, anomaly windows and trail anonymization.
"""

from collections.abc import Sequence
from datetime import datetime
from typing import TypedDict

from sqlalchemy import ColumnElement, and_, func, or_, select
from sqlalchemy.orm import Session

from reved_compliance.database.models import AuditLogEntry, SecurityAlert
from reved_compliance.database.repositories.base import BaseRepository


class AuditFilterData(TypedDict, total=False):
    """Typed dictionary for audit search filters."""

    entity_type: str
    entity_id: str
    action: str
    user_id: str
    student_id: str
    start_date: datetime
    end_date: datetime
    severity: Sequence[str]
    category: str


class AuditLogRepository(BaseRepository[AuditLogEntry]):
    """Repository for AuditLogEntry operations."""

    model = AuditLogEntry

    def __init__(self, session: Session) -> None:
        """Initialize audit log repository.

        Args:
            session: SQLAlchemy session instance.
        """
        super().__init__(session)

    @staticmethod
    def _build_criteria(filters: AuditFilterData) -> list[ColumnElement[bool]]:
        """Translate search filters into SQL criteria.

        Args:
            filters: Search filters.

        Returns:
            List of boolean expressions.
        """
        criteria: list[ColumnElement[bool]] = []
        for name in ("entity_type", "entity_id", "action", "user_id", "student_id", "category"):
            value = filters.get(name)
            if value is not None:
                criteria.append(getattr(AuditLogEntry, name) == value)

        if filters.get("start_date") is not None:
            criteria.append(AuditLogEntry.timestamp >= filters["start_date"])
        if filters.get("end_date") is not None:
            criteria.append(AuditLogEntry.timestamp <= filters["end_date"])
        if filters.get("severity"):
            criteria.append(AuditLogEntry.severity.in_(list(filters["severity"])))
        return criteria

    def search(
        self,
        filters: AuditFilterData,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[AuditLogEntry], int]:
        """Search entries, newest first.

        Args:
            filters: Search filters.
            limit: Page size.
            offset: Page offset.

        Returns:
            Tuple (page of entries, total matching count).
        """
        criteria = self._build_criteria(filters)
        total = self.count(*criteria)
        entries = self.find(
            *criteria,
            order_by=AuditLogEntry.timestamp.desc(),
            limit=limit,
            offset=offset,
        )
        return entries, total

    def ids_for_entity_since(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        since: datetime,
    ) -> list[str]:
        """Ids of entries for one entity and action inside a window.

        Args:
            entity_type: Entity type.
            entity_id: Entity identifier.
            action: Audited action.
            since: Window start.

        Returns:
            Entry ids, oldest first.
        """
        stmt = (
            select(AuditLogEntry.id)
            .where(
                AuditLogEntry.entity_type == entity_type,
                AuditLogEntry.entity_id == entity_id,
                AuditLogEntry.action == action,
                AuditLogEntry.timestamp >= since,
            )
            .order_by(AuditLogEntry.timestamp)
        )
        return list(self._session.scalars(stmt).all())

    def ids_for_ip_since(
        self,
        ip_address: str,
        entity_type: str,
        action: str,
        since: datetime,
    ) -> list[str]:
        """Ids of entries from one IP address inside a window.

        Args:
            ip_address: Caller IP.
            entity_type: Entity type.
            action: Audited action.
            since: Window start.

        Returns:
            Entry ids, oldest first.
        """
        stmt = (
            select(AuditLogEntry.id)
            .where(
                AuditLogEntry.ip_address == ip_address,
                AuditLogEntry.entity_type == entity_type,
                AuditLogEntry.action == action,
                AuditLogEntry.timestamp >= since,
            )
            .order_by(AuditLogEntry.timestamp)
        )
        return list(self._session.scalars(stmt).all())

    def for_student(self, student_id: str) -> list[AuditLogEntry]:
        """Entries linked to a student, directly or as the audited entity.

        Args:
            student_id: Student identifier.

        Returns:
            Matching entries, oldest first.
        """
        return self.find(
            or_(
                AuditLogEntry.student_id == student_id,
                and_(
                    AuditLogEntry.entity_type == "student",
                    AuditLogEntry.entity_id == student_id,
                ),
            ),
            order_by=AuditLogEntry.timestamp,
        )

    def in_period(
        self,
        start: datetime,
        end: datetime,
        entity_type: str | None = None,
    ) -> list[AuditLogEntry]:
        """Entries inside a period, oldest first.

        Args:
            start: Period start.
            end: Period end.
            entity_type: Optional entity type filter.

        Returns:
            Matching entries.
        """
        criteria = [AuditLogEntry.timestamp >= start, AuditLogEntry.timestamp <= end]
        if entity_type:
            criteria.append(AuditLogEntry.entity_type == entity_type)
        return self.find(*criteria, order_by=AuditLogEntry.timestamp)

    def older_than(self, cutoff: datetime, limit: int | None = None) -> list[AuditLogEntry]:
        """Entries written before a cutoff.

        Args:
            cutoff: Exclusive upper bound on timestamp.
            limit: Maximum number of results.

        Returns:
            Matching entries, oldest first.
        """
        return self.find(
            AuditLogEntry.timestamp < cutoff,
            order_by=AuditLogEntry.timestamp,
            limit=limit,
        )

    def count_by_category(self, start: datetime, end: datetime) -> dict[str, int]:
        """Entry counts per category inside a period.

        Args:
            start: Period start.
            end: Period end.

        Returns:
            Mapping category -> count.
        """
        stmt = (
            select(AuditLogEntry.category, func.count())
            .where(AuditLogEntry.timestamp >= start, AuditLogEntry.timestamp <= end)
            .group_by(AuditLogEntry.category)
        )
        return {category: count for category, count in self._session.execute(stmt).all()}


class SecurityAlertRepository(BaseRepository[SecurityAlert]):
    """Repository for SecurityAlert operations."""

    model = SecurityAlert

    def __init__(self, session: Session) -> None:
        """Initialize security alert repository.

        Args:
            session: SQLAlchemy session instance.
        """
        super().__init__(session)

    def find_open(
        self,
        alert_type: str,
        entity_type: str,
        entity_id: str,
        since: datetime,
    ) -> SecurityAlert | None:
        """Unresolved alert of a type for an entity detected inside a window.

        Args:
            alert_type: Alert type.
            entity_type: Entity type.
            entity_id: Entity identifier.
            since: Window start.

        Returns:
            Matching alert or None.
        """
        matches = self.find(
            SecurityAlert.type == alert_type,
            SecurityAlert.entity_type == entity_type,
            SecurityAlert.entity_id == entity_id,
            SecurityAlert.resolved.is_(False),
            SecurityAlert.detected_at >= since,
            limit=1,
        )
        return matches[0] if matches else None

    def in_period(self, start: datetime, end: datetime) -> list[SecurityAlert]:
        """Alerts detected inside a period.

        Args:
            start: Period start.
            end: Period end.

        Returns:
            Matching alerts, newest first.
        """
        return self.find(
            SecurityAlert.detected_at >= start,
            SecurityAlert.detected_at <= end,
            order_by=SecurityAlert.detected_at.desc(),
        )

    def unresolved(self, limit: int = 100) -> list[SecurityAlert]:
        """Open alerts, newest first.

        Args:
            limit: Maximum number of results.

        Returns:
            Unresolved alerts.
        """
        return self.find(
            SecurityAlert.resolved.is_(False),
            order_by=SecurityAlert.detected_at.desc(),
            limit=limit,
        )
