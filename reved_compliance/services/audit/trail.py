"""Audit trail service.

Append-only, tamper-evident record of every sensitive action:
- details of sensitive reads/writes on minors and parents are sealed,
- every entry carries a SHA-256 checksum over its canonical fields,
- anomaly detection runs after each write,
- writing never raises, so auditing cannot break the audited action.
"""

import json
import threading
import uuid
from collections.abc import Mapping
from datetime import datetime
from functools import lru_cache
from typing import Any

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from reved_compliance.database.connection import DatabaseConnection
from reved_compliance.database.models import AuditLogEntry
from reved_compliance.database.repositories import AuditFilterData, AuditLogRepository
from reved_compliance.monitoring.metrics import AUDIT_ENTRIES_TOTAL, AUDIT_WRITE_FAILURES_TOTAL
from reved_compliance.services.audit.anomalies import AnomalyDetector
from reved_compliance.services.audit.schemas import (
    AlertView,
    AuditActionInput,
    AuditActionType,
    AuditCategory,
    AuditEntityType,
    AuditQuery,
    AuditQueryResult,
    AuditRecord,
    IntegrityReport,
    Severity,
    requires_encryption,
)
from reved_compliance.services.crypto import CryptoGateway
from reved_compliance.services.errors import ComplianceError, CryptoError, ValidationFailedError
from reved_compliance.settings import settings
from reved_compliance.utils.clock import Clock, ensure_utc, utc_now
from reved_compliance.utils.logger import get_audit_logger, setup_logger

logger = setup_logger("services.audit")

ANONYMIZED_MARKER = "[ANONYMIZED]"

# Keys redacted from details by the anonymization pass
PII_DETAIL_KEYS = frozenset(
    {
        "name",
        "email",
        "parent_email",
        "child_name",
        "parent_name",
        "first_name",
        "last_name",
        "phone",
        "address",
    }
)


class AuditError(ComplianceError):
    """Base exception for audit trail errors."""


class AuditEntryNotFoundError(AuditError):
    """Raised when an audit entry does not exist."""


class AuditQueryError(AuditError):
    """Raised when the audit store cannot be queried."""


def redact_pii(value: Any) -> Any:
    """Replace PII keys with a marker, recursively.

    Args:
        value: Details payload.

    Returns:
        Copy with PII values replaced.
    """
    if isinstance(value, Mapping):
        return {
            key: ANONYMIZED_MARKER if key in PII_DETAIL_KEYS else redact_pii(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [redact_pii(item) for item in value]
    return value


def _new_correlation_id(user_id: str) -> str:
    return str(uuid.uuid4())


class AuditTrailService:
    """Writes, verifies, searches and anonymizes audit entries."""

    def __init__(
        self,
        database: DatabaseConnection,
        crypto: CryptoGateway,
        clock: Clock = utc_now,
        detector: AnomalyDetector | None = None,
        correlation_cache_size: int | None = None,
    ) -> None:
        """Initialize the audit trail.

        Args:
            database: Database connection.
            crypto: Crypto gateway for envelopes and checksums.
            clock: Time source.
            detector: Anomaly detector (built from settings when None).
            correlation_cache_size: Users whose correlation id is remembered
                (settings when None). The least recent user gets a new id.
        """
        self._db = database
        self._crypto = crypto
        self._clock = clock
        self._detector = detector or AnomalyDetector(database)
        self._correlations = lru_cache(
            maxsize=correlation_cache_size or settings.audit.correlation_cache_size
        )(_new_correlation_id)
        self._correlations_lock = threading.Lock()

    # =========================================================================
    # WRITE
    # =========================================================================

    def log_action(self, action: AuditActionInput | Mapping[str, Any]) -> str:
        """Record an action in the audit trail.

        Never raises: failures are logged and an empty id is returned.

        Args:
            action: Action to record (validated when given as a mapping).

        Returns:
            Id of the new entry, or "" if the write failed.
        """
        try:
            payload = (
                action
                if isinstance(action, AuditActionInput)
                else AuditActionInput.model_validate(action)
            )
            record = self._write(payload)
        except Exception as e:  # noqa: BLE001
            AUDIT_WRITE_FAILURES_TOTAL.inc()
            logger.error(f"audit_write_failed: {type(e).__name__}: {e}")
            return ""

        self._emit(record)
        self._detect(record)
        return record.id

    def _write(self, payload: AuditActionInput) -> AuditRecord:
        """Seal, checksum and persist one entry."""
        audit_id = str(uuid.uuid4())
        timestamp = self._clock()
        details = json.loads(json.dumps(payload.details, default=str))

        encrypted = requires_encryption(payload.action, payload.entity_type)
        stored_details = self._crypto.encrypt_envelope(details) if encrypted else details

        entry = AuditLogEntry(
            id=audit_id,
            entity_type=payload.entity_type.value,
            entity_id=payload.entity_id,
            action=payload.action.value,
            user_id=payload.user_id,
            parent_id=payload.parent_id,
            student_id=payload.student_id,
            details=stored_details,
            ip_address=payload.ip_address,
            user_agent=payload.user_agent,
            timestamp=timestamp,
            severity=payload.severity.value,
            category=AuditCategory(payload.category).value,
            correlation_id=self._correlation_id(payload.user_id),
            encrypted=encrypted,
            checksum="",
        )
        entry.checksum = self._checksum(entry)

        with self._db.session() as session:
            AuditLogRepository(session).create(entry)
            record = AuditRecord.from_model(entry)

        AUDIT_ENTRIES_TOTAL.labels(category=record.category, severity=record.severity).inc()
        return record

    def _correlation_id(self, user_id: str | None) -> str:
        """Stable correlation id per user, random for anonymous callers."""
        if user_id is None:
            return str(uuid.uuid4())
        with self._correlations_lock:
            return self._correlations(user_id)

    def _checksum(self, entry: AuditLogEntry) -> str:
        """SHA-256 over the canonical fields of an entry."""
        return self._crypto.checksum(
            {
                "id": entry.id,
                "entity_type": entry.entity_type,
                "entity_id": entry.entity_id,
                "action": entry.action,
                "user_id": entry.user_id,
                "timestamp": ensure_utc(entry.timestamp).isoformat(),
                "details": entry.details,
            }
        )

    @staticmethod
    def _emit(record: AuditRecord) -> None:
        """Emit the leveled structured log line of an entry."""
        log = get_audit_logger()
        fields = {
            "audit_id": record.id,
            "entity_type": record.entity_type,
            "entity_id": record.entity_id,
            "action": record.action,
            "user_id": record.user_id,
            "severity": record.severity,
            "category": record.category,
            "correlation_id": record.correlation_id,
        }
        summary = f"AUDIT: {record.action} on {record.entity_type}"
        if record.severity == Severity.CRITICAL:
            log.error("audit_event", summary=summary, **fields)
        elif record.severity == Severity.HIGH:
            log.warning("audit_event", summary=summary, **fields)
        else:
            log.info("audit_event", summary=summary, **fields)

    # =========================================================================
    # ANOMALY DETECTION
    # =========================================================================

    def detect_security_anomalies(self, entry: AuditRecord) -> list[AlertView]:
        """Run anomaly rules for an entry and report raised alerts.

        Each alert is notified on the structured stream and audited.

        Args:
            entry: Entry that was just written.

        Returns:
            Alerts raised.
        """
        alerts = self._detector.detect(entry)
        for alert in alerts:
            get_audit_logger("security").warning(
                "security_alert",
                summary=f"SECURITY ALERT: {alert.type}",
                alert_id=alert.id,
                alert_type=alert.type,
                severity=alert.severity,
                entity_type=alert.entity_type,
                entity_id=alert.entity_id,
                description=alert.description,
                audit_entries=len(alert.audit_entries),
            )
            self.log_action(
                AuditActionInput(
                    entity_type=AuditEntityType.SECURITY_ALERT,
                    entity_id=alert.id,
                    action=AuditActionType.CREATED,
                    details={
                        "type": alert.type,
                        "description": alert.description,
                        "target": f"{alert.entity_type}:{alert.entity_id}",
                        "audit_entries": alert.audit_entries,
                    },
                    severity=Severity(alert.severity),
                    category=AuditCategory.SECURITY,
                )
            )
        return alerts

    def _detect(self, record: AuditRecord) -> None:
        """Anomaly detection that never breaks the write path."""
        try:
            self.detect_security_anomalies(record)
        except Exception as e:  # noqa: BLE001
            logger.error(f"anomaly_detection_failed: {record.id}: {e}")

    # =========================================================================
    # INTEGRITY
    # =========================================================================

    def verify_audit_integrity(self, audit_id: str) -> IntegrityReport:
        """Recompute the checksum of an entry and compare.

        Args:
            audit_id: Entry id.

        Returns:
            IntegrityReport (tampering is reported, never corrected).

        Raises:
            AuditEntryNotFoundError: If the entry does not exist.
        """
        with self._db.session() as session:
            entry = AuditLogRepository(session).get_by_id(audit_id)
            if entry is None:
                raise AuditEntryNotFoundError(f"Audit entry not found: {audit_id}")
            calculated = self._checksum(entry)
            report = IntegrityReport(
                audit_id=audit_id,
                valid=self._crypto.secure_compare(entry.checksum, calculated),
                stored_checksum=entry.checksum,
                calculated_checksum=calculated,
            )

        if report.tampering:
            logger.error(f"audit_tampering_detected: {audit_id}")
        return report

    def verify_all(self, limit: int | None = None) -> list[str]:
        """Verify every entry (oldest first).

        Args:
            limit: Maximum number of entries to check.

        Returns:
            Ids of tampered entries.
        """
        tampered: list[str] = []
        with self._db.session() as session:
            entries = AuditLogRepository(session).find(order_by=AuditLogEntry.timestamp, limit=limit)
            for entry in entries:
                if not self._crypto.secure_compare(entry.checksum, self._checksum(entry)):
                    tampered.append(entry.id)

        logger.info(f"audit_verification_done: checked={len(entries)} tampered={len(tampered)}")
        return tampered

    # =========================================================================
    # SEARCH
    # =========================================================================

    def query_audit_logs(self, filters: AuditQuery | Mapping[str, Any] | None = None) -> AuditQueryResult:
        """Search the audit trail, newest first.

        Args:
            filters: Filters and pagination.

        Returns:
            Page of entries with total count and has_more flag.

        Raises:
            ValidationFailedError: If filters are malformed.
            AuditQueryError: If the store cannot be queried.
        """
        try:
            query = (
                filters if isinstance(filters, AuditQuery) else AuditQuery.model_validate(filters or {})
            )
        except ValidationError as e:
            raise ValidationFailedError.from_pydantic(e, "audit query") from e

        criteria: AuditFilterData = query.model_dump(
            exclude_none=True,
            exclude={"limit", "offset", "include_details"},
        )
        try:
            with self._db.session() as session:
                entries, total = AuditLogRepository(session).search(
                    criteria, limit=query.limit, offset=query.offset
                )
                records = [self._to_record(entry, query.include_details) for entry in entries]
        except SQLAlchemyError as e:
            logger.error(f"audit_query_failed: {e}")
            raise AuditQueryError("Failed to query audit logs") from e

        return AuditQueryResult(
            entries=records,
            total=total,
            has_more=query.offset + len(records) < total,
        )

    def _to_record(self, entry: AuditLogEntry, include_details: bool) -> AuditRecord:
        """Build a view, decrypting details on request."""
        if not (include_details and entry.encrypted):
            return AuditRecord.from_model(entry)
        try:
            return AuditRecord.from_model(entry, self._crypto.decrypt_envelope(entry.details))
        except CryptoError:
            logger.warning(f"audit_details_unreadable: {entry.id}")
            return AuditRecord.from_model(entry)

    def get_student_audit_trail(
        self,
        student_id: str,
        requested_by: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[AuditRecord]:
        """Decrypted audit trail of one student (the read is audited).

        Args:
            student_id: Student identifier.
            requested_by: User requesting the trail.
            start: Optional period start.
            end: Optional period end.

        Returns:
            Entries about the student, oldest first.
        """
        with self._db.session() as session:
            entries = AuditLogRepository(session).for_student(student_id)
            records = [
                self._to_record(entry, include_details=True)
                for entry in entries
                if (start is None or entry.timestamp >= start)
                and (end is None or entry.timestamp <= end)
            ]

        self.log_action(
            AuditActionInput(
                entity_type=AuditEntityType.STUDENT,
                entity_id=student_id,
                action=AuditActionType.READ,
                user_id=requested_by,
                student_id=student_id,
                details={"purpose": "audit_trail", "entries": len(records)},
                severity=Severity.LOW,
            )
        )
        return records

    # =========================================================================
    # ANONYMIZATION
    # =========================================================================

    def anonymize_student_audit_logs(self, student_id: str, reason: str) -> int:
        """Redact PII from every entry about a student.

        Strips network data, redacts details (re-sealing encrypted ones)
        and recomputes checksums.

        Args:
            student_id: Student identifier.
            reason: Why the trail is anonymized.

        Returns:
            Number of entries anonymized.
        """
        with self._db.session() as session:
            entries = AuditLogRepository(session).for_student(student_id)
            for entry in entries:
                self._anonymize_entry(entry)
            count = len(entries)

        self.log_action(
            AuditActionInput(
                entity_type=AuditEntityType.STUDENT,
                entity_id=student_id,
                action=AuditActionType.ANONYMIZE,
                student_id=student_id,
                details={"reason": reason, "entries_anonymized": count},
                severity=Severity.HIGH,
                category=AuditCategory.COMPLIANCE,
            )
        )
        logger.info(f"audit_trail_anonymized: student={student_id} entries={count}")
        return count

    def _anonymize_entry(self, entry: AuditLogEntry) -> None:
        """Redact one entry in place and refresh its checksum."""
        if entry.encrypted:
            try:
                details = self._crypto.decrypt_envelope(entry.details)
                entry.details = self._crypto.encrypt_envelope(redact_pii(details))
            except CryptoError:
                logger.warning(f"audit_details_unreadable: {entry.id}, replacing payload")
                entry.details = {"anonymized": ANONYMIZED_MARKER}
                entry.encrypted = False
        else:
            entry.details = redact_pii(entry.details)

        entry.ip_address = None
        entry.user_agent = None
        entry.checksum = self._checksum(entry)
