"""Tests for compliance reports over the audit trail."""

import csv
import json
from datetime import timedelta
from typing import Any

import pytest

from reved_compliance.runtime import ComplianceRuntime
from reved_compliance.services.audit.reports import CSV_COLUMNS
from reved_compliance.services.errors import ValidationFailedError


@pytest.fixture
def activity(runtime: ComplianceRuntime, clock: Any) -> None:
    """A small mix of audited actions over one hour."""
    audit = runtime.audit
    audit.log_action(
        {
            "entity_type": "student",
            "entity_id": "7",
            "action": "create",
            "student_id": "7",
            "details": {"first_name": "Léa"},
        }
    )
    clock.advance(minutes=10)
    audit.log_action({"entity_type": "exercise", "entity_id": "3", "action": "update"})
    clock.advance(minutes=10)
    audit.log_action(
        {"entity_type": "student", "entity_id": "7", "action": "access_denied", "severity": "high"}
    )
    clock.advance(minutes=10)
    audit.log_action(
        {
            "entity_type": "user_session",
            "entity_id": "u1",
            "action": "access_denied",
            "severity": "critical",
            "details": {"reason": "bad password"},
        }
    )
    clock.advance(minutes=10)


class TestComplianceReport:
    """Counters over a period."""

    @staticmethod
    @pytest.mark.usefixtures("activity")
    def test_counters(runtime: ComplianceRuntime, clock: Any) -> None:
        end = clock()
        report = runtime.reporter.generate_compliance_report(end - timedelta(hours=1), end)

        assert report.total_actions == 4
        assert report.actions_by_category == {"data_modification": 2, "security": 2}
        assert report.top_actions[0] == ("access_denied", 2)
        assert report.security_alerts == 2
        assert report.open_alerts == 0
        assert report.compliance_issues == {"student": 1, "user_session": 1}
        assert report.export_path is None

    @staticmethod
    @pytest.mark.usefixtures("activity")
    def test_entity_type_filter(runtime: ComplianceRuntime, clock: Any) -> None:
        end = clock()
        report = runtime.reporter.generate_compliance_report(
            end - timedelta(hours=1), end, entity_type="student"
        )

        assert report.total_actions == 2
        assert report.compliance_issues == {"student": 1}

    @staticmethod
    @pytest.mark.usefixtures("activity")
    def test_report_generation_is_audited(runtime: ComplianceRuntime, clock: Any) -> None:
        end = clock()
        runtime.reporter.generate_compliance_report(end - timedelta(hours=1), end, generated_by="dpo")

        audited = runtime.audit.query_audit_logs({"entity_type": "compliance_report"})
        assert audited.total == 1
        assert audited.entries[0].user_id == "dpo"
        assert audited.entries[0].details["total_actions"] == 4

    @staticmethod
    def test_inverted_period_rejected(runtime: ComplianceRuntime, clock: Any) -> None:
        with pytest.raises(ValidationFailedError, match="period"):
            runtime.reporter.generate_compliance_report(clock(), clock() - timedelta(days=1))

    @staticmethod
    def test_unknown_format_rejected(runtime: ComplianceRuntime, clock: Any) -> None:
        with pytest.raises(ValidationFailedError, match="format"):
            runtime.reporter.generate_compliance_report(
                clock() - timedelta(days=1), clock(), export_format="xml"
            )


class TestExports:
    """JSON and CSV exports."""

    @staticmethod
    @pytest.mark.usefixtures("activity")
    def test_json_export(runtime: ComplianceRuntime, clock: Any) -> None:
        end = clock()
        report = runtime.reporter.generate_compliance_report(
            end - timedelta(hours=1), end, export_format="json"
        )

        assert report.export_path is not None
        assert report.export_path.name == f"audit_report_{end.strftime('%Y%m%d_%H%M%S')}.json"
        content = json.loads(report.export_path.read_text(encoding="utf-8"))
        assert content["report"]["total_actions"] == 4
        assert len(content["entries"]) == 4
        assert content["entries"][0]["details"] == "[ENCRYPTED]"
        assert content["entries"][3]["details"] == {"reason": "bad password"}

    @staticmethod
    @pytest.mark.usefixtures("activity")
    def test_csv_export(runtime: ComplianceRuntime, clock: Any) -> None:
        end = clock()
        report = runtime.reporter.generate_compliance_report(
            end - timedelta(hours=1), end, export_format="csv"
        )

        assert report.export_path is not None
        with report.export_path.open(encoding="utf-8", newline="") as f:
            reader = csv.DictReader(f)
            rows = list(reader)
            assert tuple(reader.fieldnames or ()) == CSV_COLUMNS

        assert len(rows) == 4
        assert rows[0]["details"] == "[ENCRYPTED]"
        assert json.loads(rows[3]["details"]) == {"reason": "bad password"}
