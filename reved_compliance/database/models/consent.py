"""ParentalConsent model.

Double opt-in consent record required before a minor's account exists.
"""

from datetime import datetime

from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from reved_compliance.database.models.base import (
    Base,
    JSONType,
    RetentionFlagsMixin,
    TimestampMixin,
    UTCDateTime,
)


class ParentalConsent(TimestampMixin, RetentionFlagsMixin, Base):
    """Parental consent record.

    Lifecycle: pending -> verified -> revoked, pending -> expired,
    pending -> revoked.

    Attributes:
        id: UUID primary key.
        parent_email: Email of the consenting parent (lowercased).
        parent_name: Parent display name.
        child_name: Child full name.
        child_age: Child age at request time.
        consent_types: Processing purposes consented to.
        status: Lifecycle status.
        first_consent_token: Token of the first confirmation email.
        second_consent_token: Token of the second confirmation email.
        first_consent_date: First confirmation time.
        second_consent_date: Second confirmation time.
        verification_date: Time the record became verified.
        expiry_date: End of the confirmation window.
        student_id: Student created on verification.
    """

    __tablename__ = "parental_consents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    # Parties
    parent_email: Mapped[str] = mapped_column(String(255), nullable=False)
    parent_name: Mapped[str] = mapped_column(String(100), nullable=False)
    child_name: Mapped[str] = mapped_column(String(100), nullable=False)
    child_age: Mapped[int] = mapped_column(Integer, nullable=False)
    consent_types: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)

    # State
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    first_consent_token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    second_consent_token: Mapped[str | None] = mapped_column(String(128), unique=True)
    first_consent_date: Mapped[datetime | None] = mapped_column(UTCDateTime())
    second_consent_date: Mapped[datetime | None] = mapped_column(UTCDateTime())
    verification_date: Mapped[datetime | None] = mapped_column(UTCDateTime())
    expiry_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    # Revocation
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    revocation_reason: Mapped[str | None] = mapped_column(Text)

    # Links and request context
    student_id: Mapped[int | None] = mapped_column(Integer, index=True)
    ip_address: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (Index("ix_parental_consents_email_status", "parent_email", "status"),)

    def __repr__(self) -> str:
        """Return string representation."""
        return f"<ParentalConsent(id='{self.id}', status='{self.status}')>"
