"""Audit trail models.

AuditLogEntry is the tamper-evident record of every sensitive action.
SecurityAlert is raised by anomaly detection over those entries.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from reved_compliance.database.models.base import Base, JSONType, UTCDateTime


class AuditLogEntry(Base):
    """Append-only audit entry with an integrity checksum.

    Only the anonymization pass may rewrite an entry, and it must
    recompute the checksum when it does.

    Attributes:
        id: UUID primary key.
        entity_type: Kind of entity acted upon (student, parental_consent, ...).
        entity_id: Identifier of the entity.
        action: Audited action (read, create, verified, ...).
        user_id: Acting user, None for system actions.
        parent_id: Related parent, if any.
        student_id: Related student, if any.
        details: Structured payload, plaintext or encrypted envelope.
        ip_address: Caller IP address.
        user_agent: Caller user agent.
        timestamp: Time of the action (UTC).
        severity: low, medium, high or critical.
        category: Functional category of the action.
        correlation_id: Groups entries of one user.
        checksum: SHA-256 over the canonical fields.
        encrypted: Whether details hold an encrypted envelope.
    """

    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    # What happened
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # Who
    user_id: Mapped[str | None] = mapped_column(String(100), index=True)
    parent_id: Mapped[str | None] = mapped_column(String(100))
    student_id: Mapped[str | None] = mapped_column(String(100), index=True)

    # Payload
    details: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    ip_address: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)

    # Classification
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default="medium")
    category: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    correlation_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Integrity
    checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    encrypted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_audit_logs_entity_time", "entity_type", "entity_id", "timestamp"),
        Index("ix_audit_logs_ip_time", "ip_address", "timestamp"),
    )

    def __repr__(self) -> str:
        """Return string representation."""
        return (
            f"<AuditLogEntry(id='{self.id}', action='{self.action}', "
            f"entity='{self.entity_type}:{self.entity_id}')>"
        )


class SecurityAlert(Base):
    """Alert raised by the audit anomaly detector.

    Attributes:
        id: UUID primary key.
        type: Alert type (suspicious_access, multiple_failed_logins).
        severity: Alert severity.
        entity_type: Entity the alert is about.
        entity_id: Entity identifier (an IP address for login alerts).
        description: Human-readable description.
        detected_at: Detection time.
        audit_entries: Audit entry ids that triggered the alert.
        resolved: Whether an operator closed the alert.
    """

    __tablename__ = "security_alerts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    detected_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    audit_entries: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime())

    def __repr__(self) -> str:
        """Return string representation."""
        return (
            f"<SecurityAlert(type='{self.type}', severity='{self.severity}', "
            f"entity='{self.entity_type}:{self.entity_id}', resolved={self.resolved})>"
        )
