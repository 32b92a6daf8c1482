"""Tests for the double opt-in parental consent workflow."""

from collections.abc import Callable
from datetime import date
from typing import Any

import pytest
from sqlalchemy import update

from reved_compliance.database.connection import DatabaseConnection
from reved_compliance.database.models import ParentalConsent, Student
from reved_compliance.database.repositories import StudentRepository
from reved_compliance.runtime import ComplianceRuntime
from reved_compliance.services.consent import (
    ConsentAlreadyPendingError,
    ConsentAlreadyProcessedError,
    ConsentAlreadyRevokedError,
    ConsentExpiredError,
    ConsentNotFoundError,
    ConsentOwnershipError,
    ConsentSequenceError,
    ConsentTokenInvalidError,
)
from reved_compliance.services.errors import ValidationFailedError

PARENT_EMAIL = "parent@example.com"


def _request(**overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "parent_email": PARENT_EMAIL,
        "parent_name": "Marie Martin",
        "child_name": "Léa Martin",
        "child_age": 8,
        "consent_types": ["data_processing", "progress_tracking"],
        "ip_address": "192.168.1.23",
        "user_agent": "Mozilla/5.0",
    }
    data.update(overrides)
    return data


def _token(notifier: Any, template: str) -> str:
    return notifier.last(template).variables["verification_url"].rsplit("/", 1)[1]


def _verify(runtime: ComplianceRuntime, notifier: Any, **overrides: Any) -> tuple[str, int]:
    """Run the whole double opt-in, returning (consent_id, student_id)."""
    initiation = runtime.consent.initiate_consent(_request(**overrides))
    runtime.consent.process_first_consent(_token(notifier, "parental-consent-first"))
    result = runtime.consent.process_second_consent(_token(notifier, "parental-consent-second"))
    return initiation.consent_id, result.student_id


# =============================================================================
# DOUBLE OPT-IN
# =============================================================================


class TestDoubleOptIn:
    """Initiation and both confirmations."""

    @staticmethod
    def test_full_flow_creates_student(
        runtime: ComplianceRuntime,
        db: DatabaseConnection,
        notifier: Any,
        clock: Any,
    ) -> None:
        initiation = runtime.consent.initiate_consent(_request(parent_email=" Parent@Example.com "))
        first_mail = notifier.last("parental-consent-first")

        assert first_mail.to == PARENT_EMAIL
        assert first_mail.variables["verification_url"].startswith(
            "https://app.revedkids.test/consent/verify/"
        )
        assert first_mail.variables["expiry_date"] == "10/03/2025"
        assert first_mail.variables["consent_types"] == (
            "Traitement des données personnelles, Suivi des progrès"
        )
        assert runtime.consent.get_consent_status(initiation.consent_id).status == "pending"

        clock.advance(hours=2)
        first = runtime.consent.process_first_consent(_token(notifier, "parental-consent-first"))
        assert first.requires_second_consent is True
        assert first.consent_id == initiation.consent_id

        clock.advance(hours=2)
        second = runtime.consent.process_second_consent(_token(notifier, "parental-consent-second"))

        assert notifier.templates == [
            "parental-consent-first",
            "parental-consent-second",
            "student-account-created",
        ]
        assert notifier.last("student-account-created").variables["grade_level"] == "CE2"
        assert notifier.last("student-account-created").variables["login_url"] == (
            "https://app.revedkids.test/login"
        )
        with db.session() as session:
            student = session.get(Student, second.student_id)
            assert student.first_name == "Léa"
            assert student.last_name == "Martin"
            assert student.grade_level == "CE2"
            assert student.birth_date == date(2017, 3, 3)
            assert student.parent_email == PARENT_EMAIL
            assert student.consent_id == initiation.consent_id

        status = runtime.consent.get_consent_status(initiation.consent_id)
        assert status.status == "verified"
        assert status.student_id == second.student_id
        assert status.verification_date == clock()

    @staticmethod
    def test_transitions_are_audited(runtime: ComplianceRuntime, notifier: Any) -> None:
        consent_id, student_id = _verify(runtime, notifier)

        entries = runtime.audit.query_audit_logs(
            {"entity_type": "parental_consent", "entity_id": consent_id}
        ).entries

        assert sorted(entry.action for entry in entries) == ["create", "first_consent", "verified"]
        verified = next(entry for entry in entries if entry.action == "verified")
        assert verified.student_id == str(student_id)

    @staticmethod
    @pytest.mark.parametrize(
        "overrides",
        [
            {"parent_email": "not-an-email"},
            {"parent_name": "M"},
            {"child_age": 2},
            {"child_age": 19},
            {"consent_types": []},
            {"consent_types": ["telepathy"]},
        ],
    )
    def test_invalid_request(runtime: ComplianceRuntime, notifier: Any, overrides: dict[str, Any]) -> None:
        with pytest.raises(ValidationFailedError):
            runtime.consent.initiate_consent(_request(**overrides))
        assert notifier.sent == []

    @staticmethod
    def test_one_pending_request_per_email(runtime: ComplianceRuntime, clock: Any) -> None:
        runtime.consent.initiate_consent(_request())

        with pytest.raises(ConsentAlreadyPendingError, match="déjà en cours"):
            runtime.consent.initiate_consent(_request(parent_email="PARENT@example.com"))

        clock.advance(days=8)
        assert runtime.consent.initiate_consent(_request()).consent_id

    @staticmethod
    def test_unknown_tokens(runtime: ComplianceRuntime) -> None:
        with pytest.raises(ConsentTokenInvalidError, match="invalide ou expiré"):
            runtime.consent.process_first_consent("nope")
        with pytest.raises(ConsentTokenInvalidError):
            runtime.consent.process_second_consent("nope")

    @staticmethod
    def test_replayed_tokens(runtime: ComplianceRuntime, notifier: Any) -> None:
        _verify(runtime, notifier)

        with pytest.raises(ConsentAlreadyProcessedError, match="déjà été traité"):
            runtime.consent.process_first_consent(_token(notifier, "parental-consent-first"))
        with pytest.raises(ConsentAlreadyProcessedError):
            runtime.consent.process_second_consent(_token(notifier, "parental-consent-second"))

    @staticmethod
    def test_second_step_requires_first(
        runtime: ComplianceRuntime,
        db: DatabaseConnection,
        make_consent: Callable[..., str],
    ) -> None:
        consent_id = make_consent()
        with db.session() as session:
            session.execute(
                update(ParentalConsent)
                .where(ParentalConsent.id == consent_id)
                .values(second_consent_token="forged-second-token")
            )

        with pytest.raises(ConsentSequenceError, match="première confirmation"):
            runtime.consent.process_second_consent("forged-second-token")

        with db.session() as session:
            assert StudentRepository(session).count() == 0


# =============================================================================
# EXPIRY
# =============================================================================


class TestExpiry:
    """Confirmation window."""

    @staticmethod
    def test_first_step_after_expiry(runtime: ComplianceRuntime, notifier: Any, clock: Any) -> None:
        initiation = runtime.consent.initiate_consent(_request())
        clock.advance(days=7, seconds=1)

        with pytest.raises(ConsentExpiredError, match="délai"):
            runtime.consent.process_first_consent(_token(notifier, "parental-consent-first"))

        assert runtime.consent.get_consent_status(initiation.consent_id).status == "expired"

    @staticmethod
    def test_second_step_after_expiry(
        runtime: ComplianceRuntime,
        db: DatabaseConnection,
        notifier: Any,
        clock: Any,
    ) -> None:
        runtime.consent.initiate_consent(_request())
        runtime.consent.process_first_consent(_token(notifier, "parental-consent-first"))
        clock.advance(days=8)

        with pytest.raises(ConsentExpiredError):
            runtime.consent.process_second_consent(_token(notifier, "parental-consent-second"))

        with db.session() as session:
            assert StudentRepository(session).count() == 0

    @staticmethod
    def test_expiry_is_applied_on_read(
        runtime: ComplianceRuntime,
        make_consent: Callable[..., str],
    ) -> None:
        consent_id = make_consent(age_days=8)

        assert runtime.consent.get_consent_status(consent_id).status == "expired"
        assert runtime.consent.get_consent_status("missing") is None

    @staticmethod
    def test_sweep(
        runtime: ComplianceRuntime,
        make_consent: Callable[..., str],
    ) -> None:
        stale_ids = [make_consent(age_days=10), make_consent(age_days=8)]
        fresh_id = make_consent(age_days=1)
        verified_id = make_consent(age_days=30, status="verified")

        assert runtime.consent.expire_stale_consents() == 2
        assert runtime.consent.expire_stale_consents() == 0
        assert [runtime.consent.get_consent_status(cid).status for cid in stale_ids] == [
            "expired",
            "expired",
        ]
        assert runtime.consent.get_consent_status(fresh_id).status == "pending"
        assert runtime.consent.get_consent_status(verified_id).status == "verified"


# =============================================================================
# REVOCATION
# =============================================================================


class TestRevocation:
    """Withdrawal of consent."""

    @staticmethod
    def test_revoking_verified_consent_anonymizes_student(
        runtime: ComplianceRuntime,
        db: DatabaseConnection,
        notifier: Any,
        clock: Any,
    ) -> None:
        consent_id, student_id = _verify(runtime, notifier)
        clock.advance(days=3)

        result = runtime.consent.revoke_consent(consent_id, "Parent@Example.com ", reason="déménagement")

        assert result.message == (
            "Consentement révoqué. Les données de votre enfant vont être anonymisées."
        )
        assert result.anonymization_job_id is not None
        job = runtime.anonymization.get_job_status(result.anonymization_job_id)
        assert job.reason == "consent_withdrawal"
        assert job.priority == "urgent"
        assert job.preserve_statistics is False
        assert job.status == "completed"

        with db.session() as session:
            student = session.get(Student, student_id)
            assert student.first_name == "Anonymous User"
            assert student.grade_level is None
            assert student.anonymized_at == clock()

        status = runtime.consent.get_consent_status(consent_id)
        assert status.status == "revoked"
        assert status.revoked_at == clock()
        assert notifier.templates[-1] == "student-account-created"

    @staticmethod
    def test_revoking_pending_consent(runtime: ComplianceRuntime, make_consent: Callable[..., str]) -> None:
        consent_id = make_consent()

        result = runtime.consent.revoke_consent(consent_id, PARENT_EMAIL)

        assert result.message == "Consentement révoqué."
        assert result.anonymization_job_id is None
        assert runtime.anonymization.get_job_statistics()["total"] == 0

    @staticmethod
    def test_revocation_errors(runtime: ComplianceRuntime, make_consent: Callable[..., str]) -> None:
        consent_id = make_consent()

        with pytest.raises(ConsentNotFoundError, match="introuvable"):
            runtime.consent.revoke_consent("missing", PARENT_EMAIL)
        with pytest.raises(ConsentOwnershipError, match="non autorisé"):
            runtime.consent.revoke_consent(consent_id, "someone@example.com")

        runtime.consent.revoke_consent(consent_id, PARENT_EMAIL)
        with pytest.raises(ConsentAlreadyRevokedError, match="déjà été révoqué"):
            runtime.consent.revoke_consent(consent_id, PARENT_EMAIL)

    @staticmethod
    def test_revocation_is_audited(runtime: ComplianceRuntime, notifier: Any) -> None:
        consent_id, student_id = _verify(runtime, notifier)

        runtime.consent.revoke_consent(consent_id, PARENT_EMAIL, reason="test")

        revoked = runtime.audit.query_audit_logs({"action": "revoked"}).entries
        assert len(revoked) == 1
        assert revoked[0].severity == "high"
        assert revoked[0].student_id == str(student_id)


# =============================================================================
# PROCESSING CHECKS
# =============================================================================


class TestProcessingValidity:
    """Consent coverage of a processing purpose."""

    @staticmethod
    def test_verified_consent_covers_its_purposes(runtime: ComplianceRuntime, notifier: Any) -> None:
        _, student_id = _verify(runtime, notifier)

        assert runtime.consent.is_consent_valid_for_processing(student_id, "progress_tracking") is True
        assert runtime.consent.is_consent_valid_for_processing(student_id, "marketing") is False
        assert runtime.consent.is_consent_valid_for_processing(student_id + 1, "progress_tracking") is False

    @staticmethod
    def test_consent_past_expiry_date(runtime: ComplianceRuntime, notifier: Any, clock: Any) -> None:
        _, student_id = _verify(runtime, notifier)
        clock.advance(days=8)

        assert runtime.consent.is_consent_valid_for_processing(student_id, "data_processing") is False

    @staticmethod
    def test_revoked_consent(runtime: ComplianceRuntime, notifier: Any) -> None:
        consent_id, student_id = _verify(runtime, notifier)
        runtime.consent.revoke_consent(consent_id, PARENT_EMAIL)

        assert runtime.consent.is_consent_valid_for_processing(student_id, "data_processing") is False
