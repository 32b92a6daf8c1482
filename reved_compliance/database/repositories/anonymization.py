"""Anonymization job repository."""

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from reved_compliance.database.models import AnonymizationJob
from reved_compliance.database.repositories.base import BaseRepository

ACTIVE_STATUSES = ("pending", "running")


class AnonymizationJobRepository(BaseRepository[AnonymizationJob]):
    """Repository for AnonymizationJob operations."""

    model = AnonymizationJob

    def __init__(self, session: Session) -> None:
        """Initialize anonymization job repository.

        Args:
            session: SQLAlchemy session instance.
        """
        super().__init__(session)

    def find_active_for(self, entity_type: str, entity_id: str) -> AnonymizationJob | None:
        """Pending or running job for a target.

        Args:
            entity_type: Target entity type.
            entity_id: Target identifier.

        Returns:
            Active job or None.
        """
        matches = self.find(
            AnonymizationJob.entity_type == entity_type,
            AnonymizationJob.entity_id == entity_id,
            AnonymizationJob.status.in_(ACTIVE_STATUSES),
            limit=1,
        )
        return matches[0] if matches else None

    def by_status(self, status: str) -> list[AnonymizationJob]:
        """Jobs in a given status, oldest first.

        Args:
            status: Lifecycle status.

        Returns:
            Matching jobs.
        """
        return self.find(AnonymizationJob.status == status, order_by=AnonymizationJob.created_at)

    def for_target(self, entity_type: str, entity_id: str) -> list[AnonymizationJob]:
        """All jobs for a target, newest first.

        Args:
            entity_type: Target entity type.
            entity_id: Target identifier.

        Returns:
            Matching jobs.
        """
        return self.find(
            AnonymizationJob.entity_type == entity_type,
            AnonymizationJob.entity_id == entity_id,
            order_by=AnonymizationJob.created_at.desc(),
        )

    def count_by_status(self) -> dict[str, int]:
        """Job counts per status.

        Returns:
            Mapping status -> count.
        """
        stmt = select(AnonymizationJob.status, func.count()).group_by(AnonymizationJob.status)
        return {status: count for status, count in self._session.execute(stmt).all()}
