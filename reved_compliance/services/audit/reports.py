"""Compliance reporting over the audit trail.

Aggregates a period of audit entries into a ComplianceReport and
optionally exports the entries as JSON or CSV.
"""

import csv
import json
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

from reved_compliance.database.connection import DatabaseConnection
from reved_compliance.database.models import AuditLogEntry
from reved_compliance.database.repositories import AuditLogRepository, SecurityAlertRepository
from reved_compliance.services.audit.schemas import (
    AuditActionInput,
    AuditActionType,
    AuditCategory,
    AuditEntityType,
    Severity,
)
from reved_compliance.services.audit.trail import AuditTrailService
from reved_compliance.services.errors import ValidationFailedError
from reved_compliance.settings import settings
from reved_compliance.utils.clock import Clock, utc_now
from reved_compliance.utils.logger import setup_logger

logger = setup_logger("services.audit.reports")

ExportFormat = Literal["json", "csv"]

JSON_INDENT = 2
TOP_ACTIONS = 10
ENCRYPTED_PLACEHOLDER = "[ENCRYPTED]"
CSV_COLUMNS = (
    "id",
    "timestamp",
    "entity_type",
    "entity_id",
    "action",
    "user_id",
    "student_id",
    "severity",
    "category",
    "details",
)


@dataclass
class ComplianceReport:
    """Audit activity summary for a period.

    Attributes:
        period_start: Period start.
        period_end: Period end.
        generated_at: Generation timestamp.
        total_actions: Entries in the period.
        actions_by_category: Entry count per category.
        top_actions: Most frequent actions (action, count).
        security_alerts: High and critical entries.
        open_alerts: Unresolved security alerts detected in the period.
        compliance_issues: Denied accesses per entity type.
        export_path: Exported file, if any.
    """

    period_start: datetime
    period_end: datetime
    generated_at: datetime
    total_actions: int = 0
    actions_by_category: dict[str, int] = field(default_factory=dict)
    top_actions: list[tuple[str, int]] = field(default_factory=list)
    security_alerts: int = 0
    open_alerts: int = 0
    compliance_issues: dict[str, int] = field(default_factory=dict)
    export_path: Path | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert report to dictionary for JSON export."""
        return {
            "period": {
                "start": self.period_start.isoformat(),
                "end": self.period_end.isoformat(),
            },
            "generated_at": self.generated_at.isoformat(),
            "total_actions": self.total_actions,
            "actions_by_category": self.actions_by_category,
            "top_actions": [{"action": a, "count": c} for a, c in self.top_actions],
            "security_alerts": self.security_alerts,
            "open_alerts": self.open_alerts,
            "compliance_issues": self.compliance_issues,
            "export_path": str(self.export_path) if self.export_path else None,
        }


class ComplianceReporter:
    """Builds compliance reports from the audit trail."""

    def __init__(
        self,
        database: DatabaseConnection,
        audit: AuditTrailService,
        clock: Clock = utc_now,
        reports_dir: Path | None = None,
    ) -> None:
        """Initialize the reporter.

        Args:
            database: Database connection.
            audit: Audit trail used to record report generation.
            clock: Time source.
            reports_dir: Export directory (settings reports dir when None).
        """
        self._db = database
        self._audit = audit
        self._clock = clock
        self._reports_dir = reports_dir

    def generate_compliance_report(
        self,
        start: datetime,
        end: datetime,
        entity_type: str | None = None,
        export_format: ExportFormat | None = None,
        generated_by: str | None = None,
    ) -> ComplianceReport:
        """Summarize audit activity for a period.

        Args:
            start: Period start.
            end: Period end.
            entity_type: Optional entity type filter.
            export_format: Also export the entries as json or csv.
            generated_by: User requesting the report.

        Returns:
            ComplianceReport.

        Raises:
            ValidationFailedError: If the period is inverted or the format unknown.
        """
        if start > end:
            raise ValidationFailedError("Invalid report period", ["start must precede end"])
        if export_format not in (None, "json", "csv"):
            raise ValidationFailedError("Invalid export format", [str(export_format)])

        report = ComplianceReport(period_start=start, period_end=end, generated_at=self._clock())
        with self._db.session() as session:
            entries = AuditLogRepository(session).in_period(start, end, entity_type)
            alerts = SecurityAlertRepository(session).in_period(start, end)
            self._summarize(report, entries)
            report.open_alerts = sum(1 for alert in alerts if not alert.resolved)
            rows = [self._export_row(entry) for entry in entries]

        if export_format is not None:
            report.export_path = self._export(rows, report, export_format)

        self._audit.log_action(
            AuditActionInput(
                entity_type=AuditEntityType.COMPLIANCE_REPORT,
                entity_id=report.generated_at.strftime("%Y%m%d%H%M%S"),
                action=AuditActionType.CREATED,
                user_id=generated_by,
                details={
                    "period_start": start.isoformat(),
                    "period_end": end.isoformat(),
                    "entity_type": entity_type,
                    "total_actions": report.total_actions,
                    "export_format": export_format,
                },
                severity=Severity.LOW,
                category=AuditCategory.COMPLIANCE,
            )
        )
        logger.info(
            f"compliance_report_generated: actions={report.total_actions} "
            f"alerts={report.security_alerts} open={report.open_alerts}"
        )
        return report

    @staticmethod
    def _summarize(report: ComplianceReport, entries: list[AuditLogEntry]) -> None:
        """Fill the counters of a report."""
        report.total_actions = len(entries)
        report.actions_by_category = dict(Counter(entry.category for entry in entries))
        report.top_actions = Counter(entry.action for entry in entries).most_common(TOP_ACTIONS)
        report.security_alerts = sum(
            1 for entry in entries if entry.severity in (Severity.HIGH, Severity.CRITICAL)
        )
        report.compliance_issues = dict(
            Counter(
                entry.entity_type
                for entry in entries
                if entry.action == AuditActionType.ACCESS_DENIED
            )
        )

    @staticmethod
    def _export_row(entry: AuditLogEntry) -> dict[str, Any]:
        """Flatten an entry for export, hiding sealed details."""
        return {
            "id": entry.id,
            "timestamp": entry.timestamp.isoformat(),
            "entity_type": entry.entity_type,
            "entity_id": entry.entity_id,
            "action": entry.action,
            "user_id": entry.user_id,
            "student_id": entry.student_id,
            "severity": entry.severity,
            "category": entry.category,
            "details": ENCRYPTED_PLACEHOLDER if entry.encrypted else entry.details,
        }

    def _export(
        self,
        rows: list[dict[str, Any]],
        report: ComplianceReport,
        export_format: ExportFormat,
    ) -> Path:
        """Write exported entries to the reports directory.

        Args:
            rows: Flattened entries.
            report: Report being generated.
            export_format: json or csv.

        Returns:
            Path of the written file.
        """
        output_dir = self._reports_dir or settings.paths.reports_dir
        output_dir.mkdir(parents=True, exist_ok=True)
        stamp = report.generated_at.strftime("%Y%m%d_%H%M%S")
        output_path = output_dir / f"audit_report_{stamp}.{export_format}"

        if export_format == "json":
            with output_path.open("w", encoding="utf-8") as f:
                json.dump(
                    {"report": report.to_dict(), "entries": rows},
                    f,
                    indent=JSON_INDENT,
                    ensure_ascii=False,
                    default=str,
                )
        else:
            with output_path.open("w", encoding="utf-8", newline="") as f:
                writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS)
                writer.writeheader()
                for row in rows:
                    details = row["details"]
                    writer.writerow(
                        {
                            **row,
                            "details": details
                            if isinstance(details, str)
                            else json.dumps(details, ensure_ascii=False, default=str),
                        }
                    )

        logger.info(f"audit_entries_exported: {len(rows)} -> {output_path}")
        return output_path
