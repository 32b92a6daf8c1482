"""Parental consent repository."""

from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session

from reved_compliance.database.models import ParentalConsent
from reved_compliance.database.repositories.base import BaseRepository


class ParentalConsentRepository(BaseRepository[ParentalConsent]):
    """Repository for ParentalConsent operations."""

    model = ParentalConsent

    def __init__(self, session: Session) -> None:
        """Initialize parental consent repository.

        Args:
            session: SQLAlchemy session instance.
        """
        super().__init__(session)

    def find_pending_by_email(self, parent_email: str) -> list[ParentalConsent]:
        """Pending consents for a parent email (case-insensitive).

        Args:
            parent_email: Parent email.

        Returns:
            Pending consents.
        """
        return self.find(
            func.lower(ParentalConsent.parent_email) == parent_email.lower(),
            ParentalConsent.status == "pending",
        )

    def get_by_first_token(self, token: str) -> ParentalConsent | None:
        """Consent issued with a first confirmation token.

        Args:
            token: First consent token.

        Returns:
            Consent or None.
        """
        return self.get_by_field("first_consent_token", token)

    def get_by_second_token(self, token: str) -> ParentalConsent | None:
        """Consent issued with a second confirmation token.

        Args:
            token: Second consent token.

        Returns:
            Consent or None.
        """
        return self.get_by_field("second_consent_token", token)

    def get_latest_for_student(self, student_id: int) -> ParentalConsent | None:
        """Most recent consent linked to a student.

        Args:
            student_id: Student identifier.

        Returns:
            Consent or None.
        """
        matches = self.find(
            ParentalConsent.student_id == student_id,
            order_by=ParentalConsent.created_at.desc(),
            limit=1,
        )
        return matches[0] if matches else None

    def pending_expired(self, now: datetime) -> list[ParentalConsent]:
        """Pending consents whose confirmation window has closed.

        Args:
            now: Reference time.

        Returns:
            Stale pending consents.
        """
        return self.find(
            ParentalConsent.status == "pending",
            ParentalConsent.expiry_date < now,
        )

    def for_parent_email(self, parent_email: str) -> list[ParentalConsent]:
        """All consents of a parent (case-insensitive).

        Args:
            parent_email: Parent email.

        Returns:
            Consents, oldest first.
        """
        return self.find(
            func.lower(ParentalConsent.parent_email) == parent_email.lower(),
            order_by=ParentalConsent.created_at,
        )

    def created_before(self, cutoff: datetime) -> list[ParentalConsent]:
        """Consents created before a cutoff.

        Args:
            cutoff: Retention cutoff.

        Returns:
            Matching consents, oldest first.
        """
        return self.find(
            ParentalConsent.created_at < cutoff,
            order_by=ParentalConsent.created_at,
        )
