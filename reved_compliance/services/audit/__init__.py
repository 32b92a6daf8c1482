"""Tamper-evident audit trail, anomaly detection and compliance reports."""

from reved_compliance.services.audit.anomalies import AnomalyDetector, AnomalyRule, default_rules
from reved_compliance.services.audit.reports import ComplianceReport, ComplianceReporter
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
    categorize_action,
    requires_encryption,
)
from reved_compliance.services.audit.trail import (
    AuditEntryNotFoundError,
    AuditError,
    AuditQueryError,
    AuditTrailService,
    redact_pii,
)

__all__ = [
    # Service
    "AuditTrailService",
    "ComplianceReporter",
    "AnomalyDetector",
    "AnomalyRule",
    "default_rules",
    "redact_pii",
    # Schemas
    "AlertView",
    "AuditActionInput",
    "AuditActionType",
    "AuditCategory",
    "AuditEntityType",
    "AuditQuery",
    "AuditQueryResult",
    "AuditRecord",
    "ComplianceReport",
    "IntegrityReport",
    "Severity",
    "categorize_action",
    "requires_encryption",
    # Errors
    "AuditEntryNotFoundError",
    "AuditError",
    "AuditQueryError",
]
