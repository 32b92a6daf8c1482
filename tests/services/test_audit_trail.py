"""Tests for the audit trail service."""

from datetime import timedelta
from typing import Any

import pytest
from sqlalchemy import update
from structlog.testing import capture_logs

from reved_compliance.database.connection import DatabaseConnection
from reved_compliance.database.models import AuditLogEntry
from reved_compliance.runtime import ComplianceRuntime
from reved_compliance.services.audit import (
    AuditActionInput,
    AuditActionType,
    AuditEntityType,
    AuditQuery,
    AuditTrailService,
    Severity,
)
from reved_compliance.services.audit.trail import AuditEntryNotFoundError, redact_pii
from reved_compliance.services.crypto import CryptoGateway, is_envelope
from reved_compliance.services.errors import ValidationFailedError


def _student_create(student_id: str = "7", **overrides: Any) -> dict[str, Any]:
    action: dict[str, Any] = {
        "entity_type": "student",
        "entity_id": student_id,
        "action": "create",
        "user_id": "admin-1",
        "student_id": student_id,
        "details": {"first_name": "Léa", "grade_level": "CE2"},
        "ip_address": "192.168.1.23",
        "user_agent": "Mozilla/5.0",
    }
    action.update(overrides)
    return action


# =============================================================================
# WRITE
# =============================================================================


class TestLogAction:
    """Writing entries."""

    @staticmethod
    def test_sensitive_details_are_sealed(runtime: ComplianceRuntime, db: DatabaseConnection) -> None:
        audit_id = runtime.audit.log_action(_student_create())

        assert audit_id
        with db.session() as session:
            entry = session.get(AuditLogEntry, audit_id)
            assert entry.encrypted is True
            assert is_envelope(entry.details)
            assert entry.category == "data_modification"
            assert entry.severity == "medium"
            assert len(entry.checksum) == 64

    @staticmethod
    def test_non_sensitive_details_stay_plain(runtime: ComplianceRuntime, db: DatabaseConnection) -> None:
        audit_id = runtime.audit.log_action(
            AuditActionInput(
                entity_type=AuditEntityType.STUDENT,
                entity_id="7",
                action=AuditActionType.DELETE,
                details={"reason": "retention"},
            )
        )

        with db.session() as session:
            entry = session.get(AuditLogEntry, audit_id)
            assert entry.encrypted is False
            assert entry.details == {"reason": "retention"}

    @staticmethod
    def test_invalid_input_returns_empty_id(runtime: ComplianceRuntime) -> None:
        assert runtime.audit.log_action({"entity_type": "spaceship", "entity_id": "1", "action": "read"}) == ""
        assert runtime.audit.log_action(_student_create(entity_id="")) == ""

    @staticmethod
    def test_storage_failure_returns_empty_id(crypto: CryptoGateway) -> None:
        no_schema = DatabaseConnection("sqlite://", echo=False)
        service = AuditTrailService(no_schema, crypto)

        assert service.log_action(_student_create()) == ""
        no_schema.dispose()

    @staticmethod
    def test_correlation_id_is_stable_per_user(runtime: ComplianceRuntime, clock: Any) -> None:
        runtime.audit.log_action(_student_create(action="delete"))
        clock.advance(seconds=1)
        runtime.audit.log_action(_student_create(entity_id="8", student_id="8", action="delete"))
        clock.advance(seconds=1)
        runtime.audit.log_action(_student_create(action="delete", user_id="admin-2"))

        entries = runtime.audit.query_audit_logs({"action": "delete"}).entries
        by_user = {entry.user_id: entry.correlation_id for entry in entries}

        assert len(entries) == 3
        assert len({entry.correlation_id for entry in entries if entry.user_id == "admin-1"}) == 1
        assert by_user["admin-1"] != by_user["admin-2"]

    @staticmethod
    def test_correlation_ids_are_bounded(
        db: DatabaseConnection, crypto: CryptoGateway, clock: Any
    ) -> None:
        service = AuditTrailService(db, crypto, clock=clock, correlation_cache_size=2)

        def correlation(user_id: str) -> str:
            audit_id = service.log_action(_student_create(user_id=user_id))
            clock.advance(seconds=1)
            with db.session() as session:
                return session.get(AuditLogEntry, audit_id).correlation_id

        first = correlation("admin-1")
        assert correlation("admin-1") == first

        correlation("admin-2")
        correlation("admin-3")

        assert correlation("admin-1") != first

    @staticmethod
    @pytest.mark.parametrize(
        ("severity", "level"),
        [(Severity.LOW, "info"), (Severity.HIGH, "warning"), (Severity.CRITICAL, "error")],
    )
    def test_structured_event_level(runtime: ComplianceRuntime, severity: Severity, level: str) -> None:
        with capture_logs() as logs:
            runtime.audit.log_action(_student_create(action="delete", severity=severity))

        events = [log for log in logs if log["event"] == "audit_event"]
        assert len(events) == 1
        assert events[0]["log_level"] == level
        assert events[0]["component"] == "audit"
        assert events[0]["summary"] == "AUDIT: delete on student"


# =============================================================================
# INTEGRITY
# =============================================================================


class TestIntegrity:
    """Checksum verification."""

    @staticmethod
    def test_untouched_entry_is_valid(runtime: ComplianceRuntime) -> None:
        audit_id = runtime.audit.log_action(_student_create())

        report = runtime.audit.verify_audit_integrity(audit_id)

        assert report.valid is True
        assert report.tampering is False

    @staticmethod
    def test_tampering_is_detected(runtime: ComplianceRuntime, db: DatabaseConnection) -> None:
        audit_id = runtime.audit.log_action(_student_create(action="delete", details={"reason": "x"}))
        clean_id = runtime.audit.log_action(_student_create(action="delete", entity_id="8"))
        with db.session() as session:
            session.execute(
                update(AuditLogEntry).where(AuditLogEntry.id == audit_id).values(entity_id="999")
            )

        report = runtime.audit.verify_audit_integrity(audit_id)

        assert report.tampering is True
        assert report.stored_checksum != report.calculated_checksum
        assert runtime.audit.verify_all() == [audit_id]
        assert runtime.audit.verify_audit_integrity(clean_id).valid is True

    @staticmethod
    def test_unknown_entry(runtime: ComplianceRuntime) -> None:
        with pytest.raises(AuditEntryNotFoundError):
            runtime.audit.verify_audit_integrity("missing")


# =============================================================================
# SEARCH
# =============================================================================


class TestQuery:
    """Search and pagination."""

    @staticmethod
    def test_pagination_newest_first(runtime: ComplianceRuntime, clock: Any) -> None:
        ids = []
        for index in range(5):
            ids.append(
                runtime.audit.log_action(
                    {"entity_type": "exercise", "entity_id": str(index), "action": "update"}
                )
            )
            clock.advance(minutes=1)

        first_page = runtime.audit.query_audit_logs(AuditQuery(entity_type="exercise", limit=2))
        last_page = runtime.audit.query_audit_logs({"entity_type": "exercise", "limit": 2, "offset": 4})

        assert first_page.total == 5
        assert first_page.has_more is True
        assert [entry.id for entry in first_page.entries] == [ids[4], ids[3]]
        assert [entry.id for entry in last_page.entries] == [ids[0]]
        assert last_page.has_more is False

    @staticmethod
    def test_period_and_severity_filters(runtime: ComplianceRuntime, clock: Any) -> None:
        start = clock()
        runtime.audit.log_action({"entity_type": "exercise", "entity_id": "1", "action": "update"})
        clock.advance(hours=2)
        runtime.audit.log_action(
            {"entity_type": "exercise", "entity_id": "2", "action": "update", "severity": "high"}
        )

        in_first_hour = runtime.audit.query_audit_logs(
            {"start_date": start, "end_date": start + timedelta(hours=1)}
        )
        high_only = runtime.audit.query_audit_logs({"severity": ["high", "critical"]})

        assert [entry.entity_id for entry in in_first_hour.entries] == ["1"]
        assert [entry.entity_id for entry in high_only.entries] == ["2"]

    @staticmethod
    def test_details_decrypted_on_request(runtime: ComplianceRuntime) -> None:
        runtime.audit.log_action(_student_create())

        sealed = runtime.audit.query_audit_logs({"entity_type": "student"}).entries[0]
        opened = runtime.audit.query_audit_logs(
            {"entity_type": "student", "include_details": True}
        ).entries[0]

        assert is_envelope(sealed.details)
        assert opened.details == {"first_name": "Léa", "grade_level": "CE2"}

    @staticmethod
    @pytest.mark.parametrize(
        "filters",
        [
            {"start_date": "2025-03-04T00:00:00Z", "end_date": "2025-03-01T00:00:00Z"},
            {"limit": 0},
            {"limit": 1001},
            {"entity_type": "spaceship"},
        ],
    )
    def test_invalid_query(runtime: ComplianceRuntime, filters: dict[str, Any]) -> None:
        with pytest.raises(ValidationFailedError):
            runtime.audit.query_audit_logs(filters)


# =============================================================================
# STUDENT TRAIL
# =============================================================================


class TestStudentTrail:
    """Per-student trail and its anonymization."""

    @staticmethod
    def test_trail_is_decrypted_and_audited(runtime: ComplianceRuntime, clock: Any) -> None:
        runtime.audit.log_action(_student_create())
        clock.advance(minutes=1)
        runtime.audit.log_action(
            {"entity_type": "progress", "entity_id": "3", "action": "update", "student_id": "7"}
        )
        clock.advance(minutes=1)
        runtime.audit.log_action(_student_create(student_id="8", entity_id="8"))

        trail = runtime.audit.get_student_audit_trail("7", requested_by="admin-9")

        assert [record.entity_type for record in trail] == ["student", "progress"]
        assert trail[0].details == {"first_name": "Léa", "grade_level": "CE2"}
        reads = runtime.audit.query_audit_logs({"action": "read", "user_id": "admin-9"})
        assert reads.total == 1

    @staticmethod
    def test_anonymize_student_logs(runtime: ComplianceRuntime, clock: Any) -> None:
        create_id = runtime.audit.log_action(_student_create())
        clock.advance(minutes=1)
        plain_id = runtime.audit.log_action(
            _student_create(action="delete", details={"parent_email": "parent@example.com", "n": 1})
        )
        clock.advance(minutes=1)

        count = runtime.audit.anonymize_student_audit_logs("7", "consent_withdrawal")

        assert count == 2
        records = {
            record.id: record
            for record in runtime.audit.query_audit_logs({"student_id": "7", "include_details": True}).entries
        }
        assert records[create_id].details == {"first_name": "[ANONYMIZED]", "grade_level": "CE2"}
        assert records[plain_id].details == {"parent_email": "[ANONYMIZED]", "n": 1}
        assert records[create_id].ip_address is None
        assert records[plain_id].user_agent is None
        assert runtime.audit.verify_all() == []

    @staticmethod
    def test_redact_pii_is_recursive() -> None:
        redacted = redact_pii({"child": {"name": "Léa", "age": 8}, "emails": [{"email": "x@y.fr"}]})

        assert redacted == {"child": {"name": "[ANONYMIZED]", "age": 8}, "emails": [{"email": "[ANONYMIZED]"}]}
