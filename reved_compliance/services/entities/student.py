"""Student handler: the student row plus progress and learning sessions."""

from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from reved_compliance.database.models import Student
from reved_compliance.database.repositories import (
    LearningSessionRepository,
    StudentProgressRepository,
    StudentRepository,
)
from reved_compliance.services.anonymization.strategies import (
    AnonymizationRule,
    AnonymizationStrategy,
    generalize_field,
)
from reved_compliance.services.entities.base import (
    AnonymizationOutcome,
    EligibleEntity,
    EntityHandler,
    EntityNotFoundError,
    parse_int_id,
    to_json_safe,
)

Strategy = AnonymizationStrategy


def eligible_from_student(student: Student) -> EligibleEntity:
    """Retention view of a student row."""
    return EligibleEntity(
        entity_type="student",
        entity_id=str(student.id),
        last_activity=student.last_activity_at or student.created_at,
        legal_hold=student.legal_hold,
        audit_flag=student.audit_flag,
        account_type=student.account_type,
        regulatory_retention=student.regulatory_retention,
    )


class StudentHandler(EntityHandler):
    """Students, with their progress rows and learning sessions."""

    entity_type = "student"
    table_name = "students"
    anonymizable = True
    rules = (
        AnonymizationRule("first_name", Strategy.SUBSTITUTE),
        AnonymizationRule("last_name", Strategy.SUBSTITUTE),
        AnonymizationRule("email", Strategy.HASH),
        AnonymizationRule("birth_date", Strategy.GENERALIZE),
        AnonymizationRule("address", Strategy.REMOVE),
        AnonymizationRule("phone", Strategy.MASK, preserve_format=True),
        AnonymizationRule("ip_address", Strategy.MASK),
        AnonymizationRule("user_agent", Strategy.REMOVE),
    )
    statistical_fields = ("grade_level", "completion_rate", "avg_score", "subject_area")

    def _load(self, session: Session, entity_id: str) -> Student:
        student = StudentRepository(session).get_by_id(parse_int_id(self.entity_type, entity_id))
        if student is None:
            raise self.not_found(entity_id)
        return student

    def find_eligible(self, session: Session, cutoff: datetime) -> list[EligibleEntity]:
        return [eligible_from_student(s) for s in StudentRepository(session).idle_before(cutoff)]

    def describe(self, session: Session, entity_id: str) -> EligibleEntity | None:
        try:
            return eligible_from_student(self._load(session, entity_id))
        except EntityNotFoundError:
            return None

    def anonymize(
        self,
        session: Session,
        entity_id: str,
        preserve_statistics: bool,
    ) -> AnonymizationOutcome:
        """Anonymize a student and process its related records.

        With preserve_statistics, progress rows are kept with time
        rounded down to the minute and sessions lose their network
        data; otherwise both are deleted.
        """
        student = self._load(session, entity_id)
        outcome = AnonymizationOutcome(contact=student.parent_email)

        self.apply_rules(student, preserve_statistics, outcome)
        outcome.records_processed += 1

        progress_repo = StudentProgressRepository(session)
        session_repo = LearningSessionRepository(session)
        if preserve_statistics:
            for row in progress_repo.for_student(student.id):
                row.time_spent_seconds = generalize_field(
                    row.time_spent_seconds, "time_spent_seconds"
                )
                outcome.records_processed += 1
            for learning_session in session_repo.for_student(student.id):
                learning_session.ip_address = None
                learning_session.user_agent = None
                outcome.records_processed += 1
        else:
            outcome.records_processed += progress_repo.delete_for_student(student.id)
            outcome.records_processed += session_repo.delete_for_student(student.id)

        student.anonymized_at = self._clock()
        return outcome

    def store_generalized(self, record: Any, field_name: str, value: Any) -> None:
        """Completion rates are kept as a band in their own column."""
        if field_name == "completion_rate":
            record.completion_band = value
            record.completion_rate = None
            return
        setattr(record, field_name, value)

    def delete(self, session: Session, entity_id: str) -> int:
        student = self._load(session, entity_id)
        removed = StudentProgressRepository(session).delete_for_student(student.id)
        removed += LearningSessionRepository(session).delete_for_student(student.id)
        StudentRepository(session).delete(student)
        return removed + 1

    def snapshot(self, session: Session, entity_id: str) -> dict[str, Any]:
        student = self._load(session, entity_id)
        return {
            "student": to_json_safe(student),
            "progress": [
                to_json_safe(row) for row in StudentProgressRepository(session).for_student(student.id)
            ],
            "sessions": [
                to_json_safe(row) for row in LearningSessionRepository(session).for_student(student.id)
            ],
        }
