"""Base exceptions shared by the compliance services.

Each service module derives its own exceptions from these.
"""

from pydantic import ValidationError


class ComplianceError(Exception):
    """Base exception for compliance core errors."""


class ValidationFailedError(ComplianceError):
    """Raised when input fails validation, before any state change.

    Attributes:
        errors: Flattened pydantic error messages.
    """

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def from_pydantic(cls, exc: ValidationError, subject: str) -> "ValidationFailedError":
        """Build from a pydantic ValidationError.

        Args:
            exc: Original validation error.
            subject: What was being validated (for the message).

        Returns:
            ValidationFailedError with one message per failing field.
        """
        errors = [
            f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}" for err in exc.errors()
        ]
        return cls(f"Invalid {subject}: {'; '.join(errors)}", errors)


class PolicyViolationError(ComplianceError):
    """Raised when input is well-formed but breaks a legal rule."""


class CryptoError(ComplianceError):
    """Raised when encryption or decryption fails."""


class NotificationError(ComplianceError):
    """Raised when a notification could not be delivered."""
