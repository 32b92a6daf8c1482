"""Double opt-in parental consent workflow."""

from reved_compliance.services.consent.grades import grade_for_age
from reved_compliance.services.consent.schemas import (
    CONSENT_TYPE_LABELS,
    ConsentInitiation,
    ConsentRequest,
    ConsentState,
    ConsentStatus,
    ConsentType,
    FirstConsentResult,
    RevocationResult,
    SecondConsentResult,
    format_consent_types,
)
from reved_compliance.services.consent.service import (
    ConsentAlreadyPendingError,
    ConsentAlreadyProcessedError,
    ConsentAlreadyRevokedError,
    ConsentError,
    ConsentExpiredError,
    ConsentNotFoundError,
    ConsentOwnershipError,
    ConsentSequenceError,
    ConsentTokenInvalidError,
    ParentalConsentService,
)

__all__ = [
    # Service
    "ParentalConsentService",
    "grade_for_age",
    # Schemas
    "CONSENT_TYPE_LABELS",
    "ConsentInitiation",
    "ConsentRequest",
    "ConsentState",
    "ConsentStatus",
    "ConsentType",
    "FirstConsentResult",
    "RevocationResult",
    "SecondConsentResult",
    "format_consent_types",
    # Errors
    "ConsentError",
    "ConsentAlreadyPendingError",
    "ConsentAlreadyProcessedError",
    "ConsentAlreadyRevokedError",
    "ConsentExpiredError",
    "ConsentNotFoundError",
    "ConsentOwnershipError",
    "ConsentSequenceError",
    "ConsentTokenInvalidError",
]
