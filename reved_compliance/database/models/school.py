"""Platform entities acted upon by the compliance core.

Students, parents, learning progress and learning sessions.
"""

from datetime import date, datetime

from sqlalchemy import Date, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from reved_compliance.database.models.base import (
    Base,
    RetentionFlagsMixin,
    TimestampMixin,
    UTCDateTime,
)


class Student(TimestampMixin, RetentionFlagsMixin, Base):
    """Student account created from a verified parental consent.

    Attributes:
        id: Primary key.
        first_name: Given name.
        last_name: Family name.
        email: Optional login email.
        birth_date: Estimated birth date.
        grade_level: French school grade (CP ... Terminale).
        subject_area: Main subject followed.
        completion_rate: Share of exercises completed (0..1).
        completion_band: Generalized completion rate (low, medium, high).
        avg_score: Average exercise score (0..100).
        parent_email: Email of the consenting parent.
        consent_id: Consent that created the account.
        last_activity_at: Last learning activity.
        inactivity_warning_sent_at: When the inactivity warning went out.
        anonymized_at: When the record was anonymized.
    """

    __tablename__ = "students"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # Identity (PII)
    first_name: Mapped[str | None] = mapped_column(String(100))
    last_name: Mapped[str | None] = mapped_column(String(100))
    email: Mapped[str | None] = mapped_column(String(255))
    birth_date: Mapped[date | None] = mapped_column(Date)
    address: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(String(50))
    ip_address: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)

    # Learning statistics
    grade_level: Mapped[str | None] = mapped_column(String(20))
    subject_area: Mapped[str | None] = mapped_column(String(50))
    completion_rate: Mapped[float | None] = mapped_column(Float)
    completion_band: Mapped[str | None] = mapped_column(String(10))
    avg_score: Mapped[float | None] = mapped_column(Float)
    mascot: Mapped[str] = mapped_column(String(30), nullable=False, default="dragon")

    # Links
    parent_email: Mapped[str | None] = mapped_column(String(255), index=True)
    consent_id: Mapped[str | None] = mapped_column(String(36))

    # Lifecycle
    last_activity_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), index=True)
    inactivity_warning_sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    anonymized_at: Mapped[datetime | None] = mapped_column(UTCDateTime())

    @property
    def full_name(self) -> str:
        """Display name."""
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    def __repr__(self) -> str:
        """Return string representation."""
        return f"<Student(id={self.id}, grade='{self.grade_level}')>"


class Parent(TimestampMixin, RetentionFlagsMixin, Base):
    """Parent account.

    Attributes:
        id: Primary key.
        first_name: Given name.
        last_name: Family name.
        email: Contact email.
        last_activity_at: Last login.
        anonymized_at: When the record was anonymized.
    """

    __tablename__ = "parents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    first_name: Mapped[str | None] = mapped_column(String(100))
    last_name: Mapped[str | None] = mapped_column(String(100))
    email: Mapped[str | None] = mapped_column(String(255), index=True)
    address: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(String(50))
    ip_address: Mapped[str | None] = mapped_column(String(64))

    last_activity_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    anonymized_at: Mapped[datetime | None] = mapped_column(UTCDateTime())

    def __repr__(self) -> str:
        """Return string representation."""
        return f"<Parent(id={self.id})>"


class StudentProgress(TimestampMixin, Base):
    """Progress of a student on one competence.

    Attributes:
        id: Primary key.
        student_id: Owning student.
        competence_code: Curriculum competence code.
        score: Best score (0..100).
        attempts: Number of attempts.
        time_spent_seconds: Time spent on the competence.
    """

    __tablename__ = "student_progress"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    student_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True
    )
    competence_code: Mapped[str] = mapped_column(String(50), nullable=False)
    score: Mapped[float | None] = mapped_column(Float)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    time_spent_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        """Return string representation."""
        return f"<StudentProgress(student={self.student_id}, competence='{self.competence_code}')>"


class LearningSession(Base):
    """One learning session of a student.

    Attributes:
        id: Primary key.
        student_id: Owning student.
        started_at: Session start.
        ended_at: Session end.
        duration_seconds: Active duration.
        exercises_completed: Exercises finished during the session.
        device: Device description.
        ip_address: Client IP.
        user_agent: Client user agent.
    """

    __tablename__ = "learning_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    student_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("students.id", ondelete="CASCADE"), index=True
    )
    started_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    ended_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    duration_seconds: Mapped[int | None] = mapped_column(Integer)
    exercises_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    device: Mapped[str | None] = mapped_column(String(100))
    ip_address: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)

    def __repr__(self) -> str:
        """Return string representation."""
        return f"<LearningSession(id={self.id}, student={self.student_id})>"
