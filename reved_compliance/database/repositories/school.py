"""Repositories for platform entities (students, parents, progress, sessions)."""

from datetime import datetime

from sqlalchemy import delete, func
from sqlalchemy.orm import Session

from reved_compliance.database.models import (
    LearningSession,
    Parent,
    Student,
    StudentProgress,
)
from reved_compliance.database.repositories.base import BaseRepository


class StudentRepository(BaseRepository[Student]):
    """Repository for Student operations."""

    model = Student

    def __init__(self, session: Session) -> None:
        """Initialize student repository.

        Args:
            session: SQLAlchemy session instance.
        """
        super().__init__(session)

    def inactive_since(self, before: datetime) -> list[Student]:
        """Non-anonymized students whose last activity precedes a date.

        Args:
            before: Exclusive upper bound on last activity.

        Returns:
            Matching students.
        """
        return self.find(
            Student.last_activity_at.is_not(None),
            Student.last_activity_at < before,
            Student.anonymized_at.is_(None),
            order_by=Student.last_activity_at,
        )

    def idle_before(self, cutoff: datetime) -> list[Student]:
        """Non-anonymized students idle since before a cutoff.

        Last activity is used when known, creation time otherwise.

        Args:
            cutoff: Retention cutoff.

        Returns:
            Matching students.
        """
        return self.find(
            func.coalesce(Student.last_activity_at, Student.created_at) < cutoff,
            Student.anonymized_at.is_(None),
            order_by=Student.id,
        )


class ParentRepository(BaseRepository[Parent]):
    """Repository for Parent operations."""

    model = Parent

    def __init__(self, session: Session) -> None:
        """Initialize parent repository.

        Args:
            session: SQLAlchemy session instance.
        """
        super().__init__(session)

    def idle_before(self, cutoff: datetime) -> list[Parent]:
        """Non-anonymized parents idle since before a cutoff.

        Args:
            cutoff: Retention cutoff.

        Returns:
            Matching parents.
        """
        return self.find(
            func.coalesce(Parent.last_activity_at, Parent.created_at) < cutoff,
            Parent.anonymized_at.is_(None),
            order_by=Parent.id,
        )


class StudentProgressRepository(BaseRepository[StudentProgress]):
    """Repository for StudentProgress operations."""

    model = StudentProgress

    def __init__(self, session: Session) -> None:
        """Initialize progress repository.

        Args:
            session: SQLAlchemy session instance.
        """
        super().__init__(session)

    def for_student(self, student_id: int) -> list[StudentProgress]:
        """Progress rows of a student.

        Args:
            student_id: Student identifier.

        Returns:
            Progress rows.
        """
        return self.find(StudentProgress.student_id == student_id, order_by=StudentProgress.id)

    def delete_for_student(self, student_id: int) -> int:
        """Delete every progress row of a student.

        Args:
            student_id: Student identifier.

        Returns:
            Number of rows deleted.
        """
        result = self._session.execute(
            delete(StudentProgress).where(StudentProgress.student_id == student_id)
        )
        return result.rowcount or 0

    def updated_before(self, cutoff: datetime) -> list[StudentProgress]:
        """Progress rows untouched since a cutoff.

        Args:
            cutoff: Retention cutoff.

        Returns:
            Matching rows.
        """
        return self.find(StudentProgress.updated_at < cutoff, order_by=StudentProgress.id)


class LearningSessionRepository(BaseRepository[LearningSession]):
    """Repository for LearningSession operations."""

    model = LearningSession

    def __init__(self, session: Session) -> None:
        """Initialize learning session repository.

        Args:
            session: SQLAlchemy session instance.
        """
        super().__init__(session)

    def for_student(self, student_id: int) -> list[LearningSession]:
        """Sessions of a student.

        Args:
            student_id: Student identifier.

        Returns:
            Sessions, oldest first.
        """
        return self.find(LearningSession.student_id == student_id, order_by=LearningSession.started_at)

    def delete_for_student(self, student_id: int) -> int:
        """Delete every session of a student.

        Args:
            student_id: Student identifier.

        Returns:
            Number of rows deleted.
        """
        result = self._session.execute(
            delete(LearningSession).where(LearningSession.student_id == student_id)
        )
        return result.rowcount or 0

    def started_before(self, cutoff: datetime) -> list[LearningSession]:
        """Sessions started before a cutoff.

        Args:
            cutoff: Retention cutoff.

        Returns:
            Matching sessions.
        """
        return self.find(LearningSession.started_at < cutoff, order_by=LearningSession.started_at)
