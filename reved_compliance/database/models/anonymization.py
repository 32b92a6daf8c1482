"""AnonymizationJob model.

Durable job bookkeeping so that a restart can fail or resume
interrupted work.
"""

from datetime import datetime

from sqlalchemy import Boolean, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from reved_compliance.database.models.base import Base, JSONType, TimestampMixin, UTCDateTime


class AnonymizationJob(TimestampMixin, Base):
    """Anonymization job for one entity.

    Lifecycle: pending -> running -> completed | failed, or
    pending -> cancelled.

    Attributes:
        id: UUID primary key.
        entity_type: student, parent or session.
        entity_id: Target identifier.
        reason: Why the data is anonymized.
        status: Lifecycle status.
        priority: Derived from reason.
        progress: Completion percentage.
        affected_records: Rows touched, related records included.
        anonymized_fields: Fields rewritten by a strategy.
        preserved_fields: Fields kept in generalized form.
        errors: Error messages collected during execution.
        preserve_statistics: Generalize statistical fields instead of erasing them.
        notify_user: Notify the data subject on completion.
        scheduled_for: Deferred execution time, if any.
    """

    __tablename__ = "anonymization_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    reason: Mapped[str] = mapped_column(String(30), nullable=False)

    # Lifecycle
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    priority: Mapped[str] = mapped_column(String(10), nullable=False)
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Outcome
    affected_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    anonymized_fields: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    preserved_fields: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    errors: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)

    # Options
    preserve_statistics: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notify_user: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    requested_by: Mapped[str | None] = mapped_column(String(100))

    # Timing
    scheduled_for: Mapped[datetime | None] = mapped_column(UTCDateTime())
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime())

    __table_args__ = (Index("ix_anonymization_jobs_target", "entity_type", "entity_id"),)

    def __repr__(self) -> str:
        """Return string representation."""
        return (
            f"<AnonymizationJob(id='{self.id}', target='{self.entity_type}:{self.entity_id}', "
            f"status='{self.status}')>"
        )
