"""Parental consent schemas."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from reved_compliance.database.models import ParentalConsent

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$"


class ConsentState(StrEnum):
    """Lifecycle of a consent record."""

    PENDING = "pending"
    VERIFIED = "verified"
    EXPIRED = "expired"
    REVOKED = "revoked"


class ConsentType(StrEnum):
    """Processing purposes a parent can consent to."""

    DATA_PROCESSING = "data_processing"
    EDUCATIONAL_CONTENT = "educational_content"
    PROGRESS_TRACKING = "progress_tracking"
    COMMUNICATION = "communication"
    ANALYTICS = "analytics"
    MARKETING = "marketing"


CONSENT_TYPE_LABELS: dict[ConsentType, str] = {
    ConsentType.DATA_PROCESSING: "Traitement des données personnelles",
    ConsentType.EDUCATIONAL_CONTENT: "Contenu éducatif personnalisé",
    ConsentType.PROGRESS_TRACKING: "Suivi des progrès",
    ConsentType.COMMUNICATION: "Communications",
    ConsentType.ANALYTICS: "Analyses statistiques",
    ConsentType.MARKETING: "Communications marketing",
}


def format_consent_types(consent_types: list[str]) -> str:
    """French labels of consent types, comma separated."""
    return ", ".join(CONSENT_TYPE_LABELS.get(ConsentType(name), name) for name in consent_types)


class ConsentRequest(BaseModel):
    """Consent request submitted by a parent."""

    model_config = ConfigDict(str_strip_whitespace=True)

    parent_email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    parent_name: str = Field(min_length=2, max_length=100)
    child_name: str = Field(min_length=2, max_length=100)
    child_age: int = Field(ge=3, le=18)
    consent_types: list[ConsentType] = Field(min_length=1)
    ip_address: str | None = Field(default=None, max_length=64)
    user_agent: str | None = None

    @field_validator("parent_email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        """Store emails lowercased."""
        return value.lower()

    @field_validator("consent_types")
    @classmethod
    def dedupe_consent_types(cls, value: list[ConsentType]) -> list[ConsentType]:
        """Drop repeated purposes, keeping order."""
        return list(dict.fromkeys(value))


# =============================================================================
# RESULTS
# =============================================================================


@dataclass
class ConsentInitiation:
    """Outcome of a consent request."""

    consent_id: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dict."""
        return asdict(self)


@dataclass
class FirstConsentResult:
    """Outcome of the first confirmation."""

    consent_id: str
    message: str
    requires_second_consent: bool = True

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dict."""
        return asdict(self)


@dataclass
class SecondConsentResult:
    """Outcome of the second confirmation."""

    consent_id: str
    student_id: int
    message: str

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dict."""
        return asdict(self)


@dataclass
class RevocationResult:
    """Outcome of a revocation."""

    consent_id: str
    message: str
    anonymization_job_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dict."""
        return asdict(self)


@dataclass
class ConsentStatus:
    """Read-only view of a consent record (tokens excluded)."""

    id: str
    parent_email: str
    child_name: str
    child_age: int
    status: str
    consent_types: list[str] = field(default_factory=list)
    first_consent_date: datetime | None = None
    second_consent_date: datetime | None = None
    verification_date: datetime | None = None
    expiry_date: datetime | None = None
    revoked_at: datetime | None = None
    student_id: int | None = None

    @classmethod
    def from_model(cls, consent: ParentalConsent) -> "ConsentStatus":
        """Build a view from a stored consent."""
        return cls(
            id=consent.id,
            parent_email=consent.parent_email,
            child_name=consent.child_name,
            child_age=consent.child_age,
            status=consent.status,
            consent_types=list(consent.consent_types),
            first_consent_date=consent.first_consent_date,
            second_consent_date=consent.second_consent_date,
            verification_date=consent.verification_date,
            expiry_date=consent.expiry_date,
            revoked_at=consent.revoked_at,
            student_id=consent.student_id,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-friendly dict."""
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, datetime):
                data[key] = value.isoformat()
        return data
