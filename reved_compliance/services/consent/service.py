"""Double opt-in parental consent.

State machine of a consent record:

    pending --(first token)--> pending (first_consent_date set)
            --(second token)--> verified --> revoked
    pending --(read past expiry_date)--> expired
    pending --(revoke)--> revoked

A student account is created only on the transition to verified.
User-facing messages are in French.
"""

import uuid
from collections.abc import Mapping
from datetime import date, datetime, timedelta
from typing import Any

from pydantic import ValidationError

from reved_compliance.database.connection import DatabaseConnection
from reved_compliance.database.models import ParentalConsent, Student
from reved_compliance.database.repositories import ParentalConsentRepository, StudentRepository
from reved_compliance.monitoring.metrics import CONSENT_TRANSITIONS_TOTAL
from reved_compliance.services.anonymization import (
    AnonymizationConfig,
    AnonymizationReason,
    DuplicateJobError,
)
from reved_compliance.services.anonymization.engine import AnonymizationEngine
from reved_compliance.services.audit import (
    AuditActionInput,
    AuditActionType,
    AuditCategory,
    AuditEntityType,
    AuditTrailService,
    Severity,
)
from reved_compliance.services.consent.grades import grade_for_age
from reved_compliance.services.consent.schemas import (
    ConsentInitiation,
    ConsentRequest,
    ConsentState,
    ConsentStatus,
    FirstConsentResult,
    RevocationResult,
    SecondConsentResult,
    format_consent_types,
)
from reved_compliance.services.crypto import CryptoGateway
from reved_compliance.services.errors import ComplianceError, ValidationFailedError
from reved_compliance.services.notifications import Notifier
from reved_compliance.settings import ConsentSettings, settings
from reved_compliance.utils.clock import Clock, ensure_utc, utc_now
from reved_compliance.utils.logger import setup_logger

logger = setup_logger("services.consent")

DEFAULT_LAST_NAME = "Élève"

# =============================================================================
# EXCEPTIONS
# =============================================================================


class ConsentError(ComplianceError):
    """Base exception for consent errors."""


class ConsentAlreadyPendingError(ConsentError):
    """Raised when a pending consent already exists for the email."""

    def __init__(self) -> None:
        super().__init__("Un processus de consentement est déjà en cours pour cette adresse email")


class ConsentTokenInvalidError(ConsentError):
    """Raised when a confirmation token is unknown."""

    def __init__(self) -> None:
        super().__init__("Token de consentement invalide ou expiré")


class ConsentAlreadyProcessedError(ConsentError):
    """Raised when a confirmation step was already completed."""

    def __init__(self) -> None:
        super().__init__("Ce consentement a déjà été traité")


class ConsentExpiredError(ConsentError):
    """Raised when the confirmation window has closed."""

    def __init__(self) -> None:
        super().__init__("Le délai de consentement a expiré")


class ConsentSequenceError(ConsentError):
    """Raised when the second step comes before the first."""

    def __init__(self) -> None:
        super().__init__("La première confirmation n'a pas été effectuée")


class ConsentNotFoundError(ConsentError):
    """Raised when a consent does not exist."""

    def __init__(self) -> None:
        super().__init__("Consentement introuvable")


class ConsentOwnershipError(ConsentError):
    """Raised when the email does not own the consent."""

    def __init__(self) -> None:
        super().__init__("Email parental non autorisé pour ce consentement")


class ConsentAlreadyRevokedError(ConsentError):
    """Raised when a consent is revoked twice."""

    def __init__(self) -> None:
        super().__init__("Ce consentement a déjà été révoqué")


# =============================================================================
# HELPERS
# =============================================================================


def split_child_name(child_name: str) -> tuple[str, str]:
    """First word as first name, the rest as last name."""
    first, _, rest = child_name.strip().partition(" ")
    return first, rest.strip() or DEFAULT_LAST_NAME


def estimate_birth_date(today: date, age: int) -> date:
    """Today minus ``age`` years (Feb 29 falls back to Feb 28)."""
    try:
        return today.replace(year=today.year - age)
    except ValueError:
        return today.replace(year=today.year - age, day=28)


# =============================================================================
# SERVICE
# =============================================================================


class ParentalConsentService:
    """Drives the double opt-in parental consent workflow."""

    def __init__(
        self,
        database: DatabaseConnection,
        audit: AuditTrailService,
        anonymization: AnonymizationEngine,
        crypto: CryptoGateway,
        notifier: Notifier,
        clock: Clock = utc_now,
        config: ConsentSettings | None = None,
    ) -> None:
        """Initialize the consent service.

        Args:
            database: Database connection.
            audit: Audit trail.
            anonymization: Engine receiving withdrawal jobs.
            crypto: Token generator.
            notifier: Notification sender.
            clock: Time source.
            config: Consent settings (global settings when None).
        """
        self._db = database
        self._audit = audit
        self._anonymization = anonymization
        self._crypto = crypto
        self._notifier = notifier
        self._clock = clock
        self._config = config or settings.consent

    @staticmethod
    def _is_expired(consent: ParentalConsent, now: datetime) -> bool:
        return now > ensure_utc(consent.expiry_date)

    # =========================================================================
    # INITIATION
    # =========================================================================

    def initiate_consent(self, request: ConsentRequest | Mapping[str, Any]) -> ConsentInitiation:
        """Open a consent request and send the first confirmation email.

        Args:
            request: Parent's request.

        Returns:
            ConsentInitiation with the new consent id.

        Raises:
            ValidationFailedError: If the request is malformed.
            ConsentAlreadyPendingError: If an unexpired request is pending for the email.
            NotificationError: If the confirmation email cannot be sent.
        """
        try:
            data = (
                request
                if isinstance(request, ConsentRequest)
                else ConsentRequest.model_validate(request)
            )
        except ValidationError as e:
            raise ValidationFailedError.from_pydantic(e, "consent request") from e

        now = self._clock()
        expiry_date = now + timedelta(days=self._config.expiry_days)
        token = self._crypto.random_token()
        consent_types = [name.value for name in data.consent_types]

        with self._db.session() as session:
            repo = ParentalConsentRepository(session)
            pending = [
                consent
                for consent in repo.find_pending_by_email(data.parent_email)
                if not self._is_expired(consent, now)
            ]
            if pending:
                raise ConsentAlreadyPendingError()

            consent = repo.create(
                ParentalConsent(
                    id=str(uuid.uuid4()),
                    parent_email=data.parent_email,
                    parent_name=data.parent_name,
                    child_name=data.child_name,
                    child_age=data.child_age,
                    consent_types=consent_types,
                    status=ConsentState.PENDING.value,
                    first_consent_token=token,
                    expiry_date=expiry_date,
                    ip_address=data.ip_address,
                    user_agent=data.user_agent,
                    created_at=now,
                )
            )
            consent_id = consent.id

        CONSENT_TRANSITIONS_TOTAL.labels(status=ConsentState.PENDING.value).inc()
        self._audit.log_action(
            AuditActionInput(
                entity_type=AuditEntityType.PARENTAL_CONSENT,
                entity_id=consent_id,
                action=AuditActionType.CREATE,
                details={
                    "parent_email": data.parent_email,
                    "parent_name": data.parent_name,
                    "child_name": data.child_name,
                    "child_age": data.child_age,
                    "consent_types": consent_types,
                },
                ip_address=data.ip_address,
                user_agent=data.user_agent,
                severity=Severity.MEDIUM,
                category=AuditCategory.CONSENT_MANAGEMENT,
            )
        )
        self._notifier.notify(
            data.parent_email,
            "parental-consent-first",
            {
                "parent_name": data.parent_name,
                "child_name": data.child_name,
                "verification_url": f"{self._config.frontend_url}/consent/verify/{token}",
                "expiry_date": expiry_date.strftime("%d/%m/%Y"),
                "consent_types": format_consent_types(consent_types),
            },
        )

        logger.info(f"consent_initiated: {consent_id}")
        return ConsentInitiation(
            consent_id=consent_id,
            message=(
                "Demande de consentement enregistrée. Veuillez confirmer via "
                "l'email qui vient de vous être envoyé."
            ),
        )

    # =========================================================================
    # CONFIRMATION
    # =========================================================================

    def _expire(self, consent_id: str) -> None:
        """Mark a pending consent expired in its own transaction."""
        with self._db.session() as session:
            consent = ParentalConsentRepository(session).get_by_id(consent_id)
            if consent is not None and consent.status == ConsentState.PENDING:
                consent.status = ConsentState.EXPIRED.value
        CONSENT_TRANSITIONS_TOTAL.labels(status=ConsentState.EXPIRED.value).inc()
        logger.info(f"consent_expired: {consent_id}")

    def process_first_consent(
        self,
        token: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> FirstConsentResult:
        """Record the first confirmation and send the second email.

        Args:
            token: First consent token.
            ip_address: Client IP.
            user_agent: Client user agent.

        Returns:
            FirstConsentResult.

        Raises:
            ConsentTokenInvalidError: If the token is unknown.
            ConsentAlreadyProcessedError: If the step was already done.
            ConsentExpiredError: If the confirmation window has closed.
        """
        now = self._clock()
        expired_id: str | None = None

        with self._db.session() as session:
            consent = ParentalConsentRepository(session).get_by_first_token(token)
            if consent is None:
                raise ConsentTokenInvalidError()
            if consent.status != ConsentState.PENDING or consent.first_consent_date is not None:
                raise ConsentAlreadyProcessedError()
            if self._is_expired(consent, now):
                expired_id = consent.id
            else:
                second_token = self._crypto.random_token()
                consent.first_consent_date = now
                consent.second_consent_token = second_token
                consent_id = consent.id
                parent_email = consent.parent_email
                variables = {
                    "parent_name": consent.parent_name,
                    "child_name": consent.child_name,
                    "verification_url": (
                        f"{self._config.frontend_url}/consent/verify/{second_token}"
                    ),
                    "expiry_date": ensure_utc(consent.expiry_date).strftime("%d/%m/%Y"),
                    "consent_types": format_consent_types(consent.consent_types),
                }

        if expired_id is not None:
            self._expire(expired_id)
            raise ConsentExpiredError()

        CONSENT_TRANSITIONS_TOTAL.labels(status="first_consent").inc()
        self._audit.log_action(
            AuditActionInput(
                entity_type=AuditEntityType.PARENTAL_CONSENT,
                entity_id=consent_id,
                action=AuditActionType.FIRST_CONSENT,
                details={"step": 1},
                ip_address=ip_address,
                user_agent=user_agent,
                severity=Severity.MEDIUM,
            )
        )
        self._notifier.notify(parent_email, "parental-consent-second", variables)

        logger.info(f"consent_first_step: {consent_id}")
        return FirstConsentResult(
            consent_id=consent_id,
            message=(
                "Première confirmation enregistrée. Un second email de confirmation "
                "vous a été envoyé."
            ),
            requires_second_consent=True,
        )

    def process_second_consent(
        self,
        token: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> SecondConsentResult:
        """Verify the consent and create the student account.

        Args:
            token: Second consent token.
            ip_address: Client IP.
            user_agent: Client user agent.

        Returns:
            SecondConsentResult with the new student id.

        Raises:
            ConsentTokenInvalidError: If the token is unknown.
            ConsentAlreadyProcessedError: If the consent is no longer pending.
            ConsentExpiredError: If the confirmation window has closed.
            ConsentSequenceError: If the first step was not done.
        """
        now = self._clock()
        expired_id: str | None = None

        with self._db.session() as session:
            consent = ParentalConsentRepository(session).get_by_second_token(token)
            if consent is None:
                raise ConsentTokenInvalidError()
            if consent.status != ConsentState.PENDING or consent.second_consent_date is not None:
                raise ConsentAlreadyProcessedError()
            if self._is_expired(consent, now):
                expired_id = consent.id
            else:
                if consent.first_consent_date is None:
                    raise ConsentSequenceError()

                first_name, last_name = split_child_name(consent.child_name)
                grade_level = grade_for_age(consent.child_age)
                student = StudentRepository(session).create(
                    Student(
                        first_name=first_name,
                        last_name=last_name,
                        birth_date=estimate_birth_date(now.date(), consent.child_age),
                        grade_level=grade_level,
                        parent_email=consent.parent_email,
                        consent_id=consent.id,
                        last_activity_at=now,
                        created_at=now,
                    )
                )
                consent.status = ConsentState.VERIFIED.value
                consent.second_consent_date = now
                consent.verification_date = now
                consent.student_id = student.id

                consent_id = consent.id
                student_id = student.id
                parent_email = consent.parent_email
                variables = {
                    "parent_name": consent.parent_name,
                    "child_name": consent.child_name,
                    "grade_level": grade_level,
                    "login_url": f"{self._config.frontend_url}/login",
                }

        if expired_id is not None:
            self._expire(expired_id)
            raise ConsentExpiredError()

        CONSENT_TRANSITIONS_TOTAL.labels(status=ConsentState.VERIFIED.value).inc()
        self._audit.log_action(
            AuditActionInput(
                entity_type=AuditEntityType.PARENTAL_CONSENT,
                entity_id=consent_id,
                action=AuditActionType.VERIFIED,
                student_id=str(student_id),
                details={"step": 2, "student_id": student_id},
                ip_address=ip_address,
                user_agent=user_agent,
                severity=Severity.MEDIUM,
            )
        )
        self._notifier.notify(parent_email, "student-account-created", variables)

        logger.info(f"consent_verified: {consent_id} student={student_id}")
        return SecondConsentResult(
            consent_id=consent_id,
            student_id=student_id,
            message="Consentement vérifié. Le compte de votre enfant a été créé.",
        )

    # =========================================================================
    # REVOCATION
    # =========================================================================

    def revoke_consent(
        self,
        consent_id: str,
        parent_email: str,
        reason: str | None = None,
    ) -> RevocationResult:
        """Revoke a consent and anonymize the student it created.

        Args:
            consent_id: Consent identifier.
            parent_email: Email of the requesting parent.
            reason: Free-form revocation reason.

        Returns:
            RevocationResult with the anonymization job id, if any.

        Raises:
            ConsentNotFoundError: If the consent does not exist.
            ConsentOwnershipError: If the email does not own the consent.
            ConsentAlreadyRevokedError: If the consent is already revoked.
        """
        now = self._clock()
        with self._db.session() as session:
            consent = ParentalConsentRepository(session).get_by_id(consent_id)
            if consent is None:
                raise ConsentNotFoundError()
            if consent.parent_email.lower() != parent_email.strip().lower():
                raise ConsentOwnershipError()
            if consent.status == ConsentState.REVOKED:
                raise ConsentAlreadyRevokedError()

            was_verified = consent.status == ConsentState.VERIFIED
            student_id = consent.student_id
            consent.status = ConsentState.REVOKED.value
            consent.revoked_at = now
            consent.revocation_reason = reason

        CONSENT_TRANSITIONS_TOTAL.labels(status=ConsentState.REVOKED.value).inc()
        self._audit.log_action(
            AuditActionInput(
                entity_type=AuditEntityType.PARENTAL_CONSENT,
                entity_id=consent_id,
                action=AuditActionType.REVOKED,
                student_id=str(student_id) if student_id is not None else None,
                details={"reason": reason, "was_verified": was_verified},
                severity=Severity.HIGH,
            )
        )

        job_id = None
        if was_verified and student_id is not None:
            job_id = self._schedule_withdrawal(consent_id, student_id)

        logger.info(f"consent_revoked: {consent_id}")
        message = "Consentement révoqué."
        if job_id is not None:
            message += " Les données de votre enfant vont être anonymisées."
        return RevocationResult(consent_id=consent_id, message=message, anonymization_job_id=job_id)

    def _schedule_withdrawal(self, consent_id: str, student_id: int) -> str | None:
        """Queue the withdrawal anonymization of a student."""
        try:
            job_id = self._anonymization.schedule_anonymization(
                AnonymizationConfig(
                    entity_type="student",
                    entity_id=str(student_id),
                    reason=AnonymizationReason.CONSENT_WITHDRAWAL,
                    preserve_statistics=False,
                    immediate_execution=True,
                    notify_user=False,
                    requested_by=f"consent:{consent_id}",
                )
            )
        except DuplicateJobError:
            logger.warning(f"consent_withdrawal_job_exists: student={student_id}")
            return None

        self._audit.log_action(
            AuditActionInput(
                entity_type=AuditEntityType.STUDENT,
                entity_id=str(student_id),
                action=AuditActionType.ANONYMIZE,
                student_id=str(student_id),
                details={
                    "reason": AnonymizationReason.CONSENT_WITHDRAWAL.value,
                    "consent_id": consent_id,
                    "job_id": job_id,
                },
                severity=Severity.HIGH,
                category=AuditCategory.COMPLIANCE,
            )
        )
        return job_id

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_consent_status(self, consent_id: str) -> ConsentStatus | None:
        """Current view of a consent, expiring it if its window has closed.

        Args:
            consent_id: Consent identifier.

        Returns:
            ConsentStatus, or None when unknown.
        """
        now = self._clock()
        with self._db.session() as session:
            consent = ParentalConsentRepository(session).get_by_id(consent_id)
            if consent is None:
                return None
            expired = consent.status == ConsentState.PENDING and self._is_expired(consent, now)
            if expired:
                consent.status = ConsentState.EXPIRED.value
            view = ConsentStatus.from_model(consent)

        if expired:
            CONSENT_TRANSITIONS_TOTAL.labels(status=ConsentState.EXPIRED.value).inc()
            logger.info(f"consent_expired: {consent_id}")
        return view

    def is_consent_valid_for_processing(self, student_id: int, processing_type: str) -> bool:
        """Whether a student's consent covers a processing purpose.

        Args:
            student_id: Student identifier.
            processing_type: Consent type (e.g. progress_tracking).

        Returns:
            True if the latest consent is verified, covers the purpose and
            has not passed its expiry date.
        """
        now = self._clock()
        with self._db.session() as session:
            consent = ParentalConsentRepository(session).get_latest_for_student(student_id)
            if consent is None:
                return False
            return (
                consent.status == ConsentState.VERIFIED
                and processing_type in consent.consent_types
                and now <= ensure_utc(consent.expiry_date)
            )

    def expire_stale_consents(self) -> int:
        """Mark pending consents past their expiry date as expired.

        Returns:
            Number of consents expired.
        """
        now = self._clock()
        with self._db.session() as session:
            stale = ParentalConsentRepository(session).pending_expired(now)
            for consent in stale:
                consent.status = ConsentState.EXPIRED.value
            count = len(stale)

        if count:
            CONSENT_TRANSITIONS_TOTAL.labels(status=ConsentState.EXPIRED.value).inc(count)
            logger.info(f"stale_consents_expired: {count}")
        return count
