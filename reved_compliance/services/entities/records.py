"""Handlers for records that are retained or removed, never anonymized.

Progress rows, consent records and audit entries.
"""

from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from reved_compliance.database.models import (
    AuditLogEntry,
    ParentalConsent,
    SecurityAlert,
    Student,
    StudentProgress,
)
from reved_compliance.database.repositories import (
    AuditLogRepository,
    ParentalConsentRepository,
    SecurityAlertRepository,
    StudentProgressRepository,
)
from reved_compliance.services.entities.base import (
    EligibleEntity,
    EntityHandler,
    parse_int_id,
    to_json_safe,
)

# =============================================================================
# PROGRESS
# =============================================================================


class ProgressHandler(EntityHandler):
    """Per-competence progress rows, flagged like their student."""

    entity_type = "progress"
    table_name = "student_progress"

    def _load(self, session: Session, entity_id: str) -> StudentProgress:
        row = StudentProgressRepository(session).get_by_id(parse_int_id(self.entity_type, entity_id))
        if row is None:
            raise self.not_found(entity_id)
        return row

    @staticmethod
    def _eligible(session: Session, row: StudentProgress) -> EligibleEntity:
        student = session.get(Student, row.student_id)
        return EligibleEntity(
            entity_type="progress",
            entity_id=str(row.id),
            last_activity=row.updated_at,
            legal_hold=student.legal_hold if student else False,
            audit_flag=student.audit_flag if student else False,
            account_type=student.account_type if student else "standard",
            regulatory_retention=student.regulatory_retention if student else False,
        )

    def find_eligible(self, session: Session, cutoff: datetime) -> list[EligibleEntity]:
        return [
            self._eligible(session, row)
            for row in StudentProgressRepository(session).updated_before(cutoff)
        ]

    def describe(self, session: Session, entity_id: str) -> EligibleEntity | None:
        row = StudentProgressRepository(session).get_by_id(parse_int_id(self.entity_type, entity_id))
        return self._eligible(session, row) if row else None

    def delete(self, session: Session, entity_id: str) -> int:
        StudentProgressRepository(session).delete(self._load(session, entity_id))
        return 1

    def snapshot(self, session: Session, entity_id: str) -> dict[str, Any]:
        return {"progress": to_json_safe(self._load(session, entity_id))}


# =============================================================================
# CONSENT
# =============================================================================


def eligible_from_consent(consent: ParentalConsent) -> EligibleEntity:
    """Retention view of a consent record."""
    return EligibleEntity(
        entity_type="consent",
        entity_id=consent.id,
        last_activity=consent.revoked_at or consent.verification_date or consent.created_at,
        legal_hold=consent.legal_hold,
        audit_flag=consent.audit_flag,
        account_type=consent.account_type,
        regulatory_retention=consent.regulatory_retention,
    )


class ConsentHandler(EntityHandler):
    """Parental consent records (proof of consent)."""

    entity_type = "consent"
    table_name = "parental_consents"

    def _load(self, session: Session, entity_id: str) -> ParentalConsent:
        consent = ParentalConsentRepository(session).get_by_id(entity_id)
        if consent is None:
            raise self.not_found(entity_id)
        return consent

    def find_eligible(self, session: Session, cutoff: datetime) -> list[EligibleEntity]:
        return [
            eligible_from_consent(consent)
            for consent in ParentalConsentRepository(session).created_before(cutoff)
        ]

    def describe(self, session: Session, entity_id: str) -> EligibleEntity | None:
        consent = ParentalConsentRepository(session).get_by_id(entity_id)
        return eligible_from_consent(consent) if consent else None

    def delete(self, session: Session, entity_id: str) -> int:
        ParentalConsentRepository(session).delete(self._load(session, entity_id))
        return 1

    def snapshot(self, session: Session, entity_id: str) -> dict[str, Any]:
        return {"consent": to_json_safe(self._load(session, entity_id))}


# =============================================================================
# AUDIT LOG
# =============================================================================


class AuditLogHandler(EntityHandler):
    """Audit entries; those cited by an open security alert are under audit."""

    entity_type = "audit_log"
    table_name = "audit_logs"

    def _load(self, session: Session, entity_id: str) -> AuditLogEntry:
        entry = AuditLogRepository(session).get_by_id(entity_id)
        if entry is None:
            raise self.not_found(entity_id)
        return entry

    @staticmethod
    def _under_audit(session: Session) -> set[str]:
        """Entry ids referenced by unresolved alerts."""
        alerts = SecurityAlertRepository(session).find(SecurityAlert.resolved.is_(False))
        return {entry_id for alert in alerts for entry_id in alert.audit_entries}

    @staticmethod
    def _eligible(entry: AuditLogEntry, under_audit: set[str]) -> EligibleEntity:
        return EligibleEntity(
            entity_type="audit_log",
            entity_id=entry.id,
            last_activity=entry.timestamp,
            audit_flag=entry.id in under_audit,
        )

    def find_eligible(self, session: Session, cutoff: datetime) -> list[EligibleEntity]:
        under_audit = self._under_audit(session)
        return [
            self._eligible(entry, under_audit)
            for entry in AuditLogRepository(session).older_than(cutoff)
        ]

    def describe(self, session: Session, entity_id: str) -> EligibleEntity | None:
        entry = AuditLogRepository(session).get_by_id(entity_id)
        return self._eligible(entry, self._under_audit(session)) if entry else None

    def delete(self, session: Session, entity_id: str) -> int:
        AuditLogRepository(session).delete(self._load(session, entity_id))
        return 1

    def snapshot(self, session: Session, entity_id: str) -> dict[str, Any]:
        return {"audit_entry": to_json_safe(self._load(session, entity_id))}
