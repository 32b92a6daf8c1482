"""Learning session handler."""

from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from reved_compliance.database.models import LearningSession, Student
from reved_compliance.database.repositories import LearningSessionRepository
from reved_compliance.services.anonymization.strategies import (
    AnonymizationRule,
    AnonymizationStrategy,
)
from reved_compliance.services.entities.base import (
    AnonymizationOutcome,
    EligibleEntity,
    EntityHandler,
    parse_int_id,
    to_json_safe,
)


def eligible_from_session(session: Session, learning_session: LearningSession) -> EligibleEntity:
    """Retention view of a session, with the owning student's flags."""
    student = session.get(Student, learning_session.student_id) if learning_session.student_id else None
    return EligibleEntity(
        entity_type="session",
        entity_id=str(learning_session.id),
        last_activity=learning_session.ended_at or learning_session.started_at,
        legal_hold=student.legal_hold if student else False,
        audit_flag=student.audit_flag if student else False,
        account_type=student.account_type if student else "standard",
        regulatory_retention=student.regulatory_retention if student else False,
    )


class SessionHandler(EntityHandler):
    """Learning sessions."""

    entity_type = "session"
    table_name = "learning_sessions"
    anonymizable = True
    rules = (
        AnonymizationRule("ip_address", AnonymizationStrategy.MASK),
        AnonymizationRule("user_agent", AnonymizationStrategy.REMOVE),
        AnonymizationRule("device", AnonymizationStrategy.REMOVE),
    )
    statistical_fields = ("duration_seconds",)

    def _load(self, session: Session, entity_id: str) -> LearningSession:
        learning_session = LearningSessionRepository(session).get_by_id(
            parse_int_id(self.entity_type, entity_id)
        )
        if learning_session is None:
            raise self.not_found(entity_id)
        return learning_session

    def find_eligible(self, session: Session, cutoff: datetime) -> list[EligibleEntity]:
        return [
            eligible_from_session(session, row)
            for row in LearningSessionRepository(session).started_before(cutoff)
        ]

    def describe(self, session: Session, entity_id: str) -> EligibleEntity | None:
        row = LearningSessionRepository(session).get_by_id(parse_int_id(self.entity_type, entity_id))
        return eligible_from_session(session, row) if row else None

    def anonymize(
        self,
        session: Session,
        entity_id: str,
        preserve_statistics: bool,
    ) -> AnonymizationOutcome:
        learning_session = self._load(session, entity_id)
        outcome = AnonymizationOutcome()
        self.apply_rules(learning_session, preserve_statistics, outcome)
        outcome.records_processed = 1
        return outcome

    def delete(self, session: Session, entity_id: str) -> int:
        LearningSessionRepository(session).delete(self._load(session, entity_id))
        return 1

    def snapshot(self, session: Session, entity_id: str) -> dict[str, Any]:
        return {"session": to_json_safe(self._load(session, entity_id))}
