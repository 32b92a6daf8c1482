"""Tests for retention policies and the retention scheduler."""

from collections.abc import Callable
from datetime import timedelta
from typing import Any

import pytest

from reved_compliance.database.connection import DatabaseConnection
from reved_compliance.database.models import (
    DataRetentionLog,
    LearningSession,
    ParentalConsent,
    RetentionSchedule,
    Student,
)
from reved_compliance.database.repositories import (
    ArchivedRecordRepository,
    DataRetentionLogRepository,
    LearningSessionRepository,
    RetentionScheduleRepository,
)
from reved_compliance.runtime import ComplianceRuntime
from reved_compliance.services.crypto import CryptoGateway
from reved_compliance.services.errors import ValidationFailedError
from reved_compliance.services.retention import (
    PolicyExecutionResult,
    RetentionPolicyNotFoundError,
    RetentionPolicyViolationError,
)
from reved_compliance.settings import settings


def _policy(**overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "policy_name": "Session cleanup",
        "entity_type": "session",
        "retention_period_days": 90,
        "action": "delete",
        "notification_days": 0,
        "created_by": "dpo",
    }
    data.update(overrides)
    return data


def _student_policy(**overrides: Any) -> dict[str, Any]:
    data = _policy(
        policy_name="Student retention",
        entity_type="student",
        retention_period_days=365,
        action="anonymize",
    )
    data.update(overrides)
    return data


# =============================================================================
# POLICIES
# =============================================================================


class TestPolicyManagement:
    """Create, update and list policies."""

    @staticmethod
    @pytest.mark.parametrize(
        ("entity_type", "days"),
        [("student", 364), ("student", 1096), ("consent", 2554)],
    )
    def test_legal_bounds_rejected(runtime: ComplianceRuntime, entity_type: str, days: int) -> None:
        with pytest.raises(RetentionPolicyViolationError, match="Retention period too"):
            runtime.retention.create_retention_policy(
                _policy(entity_type=entity_type, retention_period_days=days)
            )

    @staticmethod
    @pytest.mark.parametrize(
        ("entity_type", "days"),
        [("student", 365), ("student", 1095), ("consent", 2555), ("session", 1)],
    )
    def test_legal_bounds_accepted(runtime: ComplianceRuntime, entity_type: str, days: int) -> None:
        view = runtime.retention.create_retention_policy(
            _policy(entity_type=entity_type, retention_period_days=days)
        )

        assert view.retention_period_days == days
        assert view.active is True
        assert view.records_processed == 0

    @staticmethod
    @pytest.mark.parametrize(
        "overrides",
        [
            {"policy_name": "x"},
            {"entity_type": "exercise"},
            {"retention_period_days": 0},
            {"retention_period_days": 10951},
            {"action": "shred"},
            {"notification_days": 400},
            {"exceptions": ["full_moon"]},
        ],
    )
    def test_malformed_policy(runtime: ComplianceRuntime, overrides: dict[str, Any]) -> None:
        with pytest.raises(ValidationFailedError):
            runtime.retention.create_retention_policy(_policy(**overrides))

    @staticmethod
    def test_creation_is_audited(runtime: ComplianceRuntime) -> None:
        view = runtime.retention.create_retention_policy(_policy(exceptions=["premium_account"] * 2))

        audited = runtime.audit.query_audit_logs({"entity_type": "retention_policy"})
        assert view.exceptions == ["premium_account"]
        assert audited.total == 1
        assert audited.entries[0].entity_id == view.id
        assert audited.entries[0].user_id == "dpo"

    @staticmethod
    def test_update_rechecks_bounds(runtime: ComplianceRuntime) -> None:
        view = runtime.retention.create_retention_policy(_student_policy())

        updated = runtime.retention.update_retention_policy(
            view.id, {"retention_period_days": 730, "priority": "high"}, updated_by="dpo"
        )

        assert updated.retention_period_days == 730
        assert updated.priority == "high"
        with pytest.raises(RetentionPolicyViolationError):
            runtime.retention.update_retention_policy(view.id, {"retention_period_days": 2000})

    @staticmethod
    @pytest.mark.parametrize(
        ("entity_type", "days"),
        [("consent", 2555), ("progress", 1095), ("audit_log", 2190)],
    )
    def test_anonymize_rejected_for_unsupported_type(
        runtime: ComplianceRuntime, entity_type: str, days: int
    ) -> None:
        with pytest.raises(ValidationFailedError, match="Invalid retention policy"):
            runtime.retention.create_retention_policy(
                _policy(entity_type=entity_type, retention_period_days=days, action="anonymize")
            )

        assert runtime.retention.list_retention_policies() == []

    @staticmethod
    def test_update_to_anonymize_rejected_for_unsupported_type(runtime: ComplianceRuntime) -> None:
        view = runtime.retention.create_retention_policy(
            _policy(entity_type="consent", retention_period_days=2555, action="archive")
        )

        with pytest.raises(ValidationFailedError):
            runtime.retention.update_retention_policy(view.id, {"action": "anonymize"})

        assert runtime.retention.list_retention_policies()[0].action == "archive"
        audited = runtime.audit.query_audit_logs({"entity_type": "retention_policy"})
        assert audited.total == 1

    @staticmethod
    def test_unknown_policy(runtime: ComplianceRuntime) -> None:
        with pytest.raises(RetentionPolicyNotFoundError):
            runtime.retention.update_retention_policy("missing", {"active": False})
        with pytest.raises(RetentionPolicyNotFoundError):
            runtime.retention.execute_single_policy("missing")

    @staticmethod
    def test_list_sorted_by_priority(runtime: ComplianceRuntime) -> None:
        runtime.retention.create_retention_policy(_policy(policy_name="low", priority="low"))
        runtime.retention.create_retention_policy(_policy(policy_name="critical", priority="critical"))
        inactive = runtime.retention.create_retention_policy(_policy(policy_name="medium"))
        runtime.retention.deactivate_retention_policy(inactive.id)

        names = [view.policy_name for view in runtime.retention.list_retention_policies()]
        active = [view.policy_name for view in runtime.retention.list_retention_policies(active_only=True)]

        assert names == ["critical", "medium", "low"]
        assert active == ["critical", "low"]

    @staticmethod
    def test_default_policies_installed_once(runtime: ComplianceRuntime) -> None:
        assert runtime.retention.ensure_default_policies() == 4
        assert runtime.retention.ensure_default_policies() == 0

        names = {view.policy_name for view in runtime.retention.list_retention_policies()}
        assert names == {
            "Student Data Retention",
            "Parent Consent Records",
            "Session Data Cleanup",
            "Audit Log Retention",
        }


# =============================================================================
# POLICY EXECUTION
# =============================================================================


class TestPolicyExecution:
    """Applying a policy to eligible entities."""

    @staticmethod
    def test_delete_session(
        runtime: ComplianceRuntime,
        db: DatabaseConnection,
        add_learning_data: Callable[..., list[int]],
    ) -> None:
        old_id = add_learning_data(None, days_ago=120)[0]
        recent_id = add_learning_data(None, days_ago=10)[0]
        policy = runtime.retention.create_retention_policy(_policy())

        result = runtime.retention.execute_single_policy(policy.id)

        assert result == PolicyExecutionResult(processed=1)
        with db.session() as session:
            assert session.get(LearningSession, old_id) is None
            assert session.get(LearningSession, recent_id) is not None
            logs = DataRetentionLogRepository(session).get_by_table("learning_sessions")
            assert [(log.operation_type, log.records_affected, log.status) for log in logs] == [
                ("delete", 1, "success")
            ]
        stored = runtime.retention.list_retention_policies()[0]
        assert stored.records_processed == 1
        assert stored.last_executed is not None

    @staticmethod
    def test_delete_student_cascades(
        runtime: ComplianceRuntime,
        db: DatabaseConnection,
        make_student: Callable[..., int],
        add_learning_data: Callable[..., list[int]],
    ) -> None:
        student_id = make_student(idle_days=400)
        session_ids = add_learning_data(student_id, sessions=2, days_ago=400)
        policy = runtime.retention.create_retention_policy(_student_policy(action="delete"))

        runtime.retention.execute_single_policy(policy.id)

        with db.session() as session:
            assert session.get(Student, student_id) is None
            assert all(session.get(LearningSession, sid) is None for sid in session_ids)

    @staticmethod
    def test_legal_hold_always_exempts(
        runtime: ComplianceRuntime,
        db: DatabaseConnection,
        make_student: Callable[..., int],
    ) -> None:
        student_id = make_student(idle_days=400, legal_hold=True)
        policy = runtime.retention.create_retention_policy(_student_policy(action="delete"))

        result = runtime.retention.execute_single_policy(policy.id)

        assert result == PolicyExecutionResult(exempted=1)
        with db.session() as session:
            assert session.get(Student, student_id) is not None

    @staticmethod
    def test_premium_exception(
        runtime: ComplianceRuntime,
        db: DatabaseConnection,
        make_student: Callable[..., int],
        add_learning_data: Callable[..., list[int]],
    ) -> None:
        premium_id = make_student(account_type="premium")
        premium_session = add_learning_data(premium_id, days_ago=120)[0]
        standard_session = add_learning_data(None, days_ago=120)[0]
        policy = runtime.retention.create_retention_policy(_policy(exceptions=["premium_account"]))

        result = runtime.retention.execute_single_policy(policy.id)

        assert result == PolicyExecutionResult(processed=1, exempted=1)
        with db.session() as session:
            assert session.get(LearningSession, premium_session) is not None
            assert session.get(LearningSession, standard_session) is None

    @staticmethod
    def test_notice_period(
        runtime: ComplianceRuntime,
        db: DatabaseConnection,
        notifier: Any,
        clock: Any,
        make_student: Callable[..., int],
    ) -> None:
        student_id = make_student(idle_days=400)
        policy = runtime.retention.create_retention_policy(_student_policy(notification_days=30))

        first = runtime.retention.execute_single_policy(policy.id)
        warning = notifier.last("retention-warning")
        second = runtime.retention.execute_single_policy(policy.id)

        assert first == PolicyExecutionResult(notified=1)
        assert warning.to == settings.notifications.compliance_email
        assert warning.variables["entity_id"] == str(student_id)
        assert warning.variables["scheduled_date"] == (clock() + timedelta(days=30)).strftime("%d/%m/%Y")
        assert second == PolicyExecutionResult()
        assert notifier.templates.count("retention-warning") == 1

        clock.advance(days=30)
        third = runtime.retention.execute_single_policy(policy.id)
        fourth = runtime.retention.execute_single_policy(policy.id)

        assert third == PolicyExecutionResult(processed=1)
        assert fourth == PolicyExecutionResult()
        with db.session() as session:
            student = session.get(Student, student_id)
            assert student.first_name == "Anonymous User"
            assert student.anonymized_at == clock()
        jobs = runtime.anonymization.get_job_statistics()
        assert jobs["completed"] == 1

    @staticmethod
    def test_notify_only_waits_out_notice(
        runtime: ComplianceRuntime,
        db: DatabaseConnection,
        notifier: Any,
        clock: Any,
        add_learning_data: Callable[..., list[int]],
    ) -> None:
        (session_id,) = add_learning_data(None, days_ago=120)
        policy = runtime.retention.create_retention_policy(
            _policy(action="notify_only", notification_days=30)
        )

        first = runtime.retention.execute_single_policy(policy.id)
        clock.advance(days=29)
        waiting = runtime.retention.execute_single_policy(policy.id)

        assert first == PolicyExecutionResult(notified=1)
        assert waiting == PolicyExecutionResult()
        assert notifier.templates == ["retention-warning"]

        clock.advance(days=1)
        due = runtime.retention.execute_single_policy(policy.id)

        assert due == PolicyExecutionResult(processed=1)
        assert notifier.templates == ["retention-warning", "retention-warning"]
        assert notifier.last("retention-warning").variables["due"] is True
        with db.session() as session:
            assert session.get(LearningSession, session_id) is not None
            logs = DataRetentionLogRepository(session).find(DataRetentionLog.operation_type == "notify_only")
            assert [(log.status, log.records_affected) for log in logs] == [("success", 1)]

    @staticmethod
    def test_anonymization_completes_only_after_job_ends(
        queued_runtime: ComplianceRuntime,
        queued_scheduler: Any,
        db: DatabaseConnection,
        monkeypatch: pytest.MonkeyPatch,
        make_student: Callable[..., int],
    ) -> None:
        student_id = make_student(idle_days=400)
        handler = queued_runtime.registry.get("student")
        original_anonymize = handler.anonymize

        def broken_anonymize(*args: Any, **kwargs: Any) -> Any:
            raise RuntimeError("vault unreachable")

        monkeypatch.setattr(handler, "anonymize", broken_anonymize)
        retention = queued_runtime.retention
        policy = retention.create_retention_policy(_student_policy())

        def state() -> tuple[list[str], RetentionSchedule]:
            with db.session() as session:
                logs = DataRetentionLogRepository(session).find(DataRetentionLog.table_name == "students")
                schedule = RetentionScheduleRepository(session).get_for(policy.id, "student", str(student_id))
                session.expunge(schedule)
                return [log.status for log in logs], schedule

        assert retention.execute_single_policy(policy.id) == PolicyExecutionResult()
        statuses, schedule = state()
        assert statuses == []
        assert schedule.completed is False
        assert schedule.anonymization_job_id is not None

        assert queued_scheduler.run_due() == 1
        assert retention.execute_single_policy(policy.id) == PolicyExecutionResult(failed=1)
        statuses, schedule = state()
        assert statuses == ["failed"]
        assert schedule.completed is False
        assert schedule.anonymization_job_id is None

        monkeypatch.setattr(handler, "anonymize", original_anonymize)
        assert retention.execute_single_policy(policy.id) == PolicyExecutionResult()
        assert queued_scheduler.run_due() == 1
        assert retention.execute_single_policy(policy.id) == PolicyExecutionResult(processed=1)
        statuses, schedule = state()
        assert sorted(statuses) == ["failed", "success"]
        assert schedule.completed is True
        with db.session() as session:
            assert session.get(Student, student_id).anonymized_at is not None
        assert retention.execute_single_policy(policy.id) == PolicyExecutionResult()
        assert queued_runtime.anonymization.get_job_statistics()["failed"] == 1

    @staticmethod
    def test_recent_activity_exception(
        runtime: ComplianceRuntime,
        db: DatabaseConnection,
        clock: Any,
        make_consent: Callable[..., str],
    ) -> None:
        revoked_id = make_consent(age_days=3000, status="revoked", revoked_at=clock() - timedelta(days=5))
        stale_id = make_consent(age_days=3000)
        policy = runtime.retention.create_retention_policy(
            _policy(
                entity_type="consent",
                retention_period_days=2555,
                exceptions=["recent_activity"],
            )
        )

        result = runtime.retention.execute_single_policy(policy.id)

        assert result == PolicyExecutionResult(processed=1, exempted=1)
        with db.session() as session:
            assert session.get(ParentalConsent, revoked_id) is not None
            assert session.get(ParentalConsent, stale_id) is None

    @staticmethod
    def test_archive_keeps_row(
        runtime: ComplianceRuntime,
        db: DatabaseConnection,
        crypto: CryptoGateway,
        make_consent: Callable[..., str],
    ) -> None:
        consent_id = make_consent(age_days=3000)
        policy = runtime.retention.create_retention_policy(
            _policy(entity_type="consent", retention_period_days=2555, action="archive")
        )

        result = runtime.retention.execute_single_policy(policy.id)

        assert result == PolicyExecutionResult(processed=1)
        with db.session() as session:
            assert session.get(ParentalConsent, consent_id) is not None
            archived = ArchivedRecordRepository(session).for_entity("consent", consent_id)
            assert len(archived) == 1
            assert archived[0].storage_tier == "cold_storage"
            assert archived[0].policy_id == policy.id
            snapshot = crypto.decrypt_envelope(archived[0].payload)
        assert snapshot["consent"]["child_name"] == "Léa Martin"

    @staticmethod
    def test_failure_is_isolated(
        runtime: ComplianceRuntime,
        db: DatabaseConnection,
        monkeypatch: pytest.MonkeyPatch,
        add_learning_data: Callable[..., list[int]],
    ) -> None:
        broken_id, healthy_id = add_learning_data(None, sessions=2, days_ago=120)
        handler = runtime.registry.get("session")
        original_delete = handler.delete

        def flaky_delete(session: Any, entity_id: str) -> int:
            if entity_id == str(broken_id):
                raise RuntimeError("disk full")
            return original_delete(session, entity_id)

        monkeypatch.setattr(handler, "delete", flaky_delete)
        policy = runtime.retention.create_retention_policy(_policy())

        result = runtime.retention.execute_single_policy(policy.id)

        assert result == PolicyExecutionResult(processed=1, failed=1)
        with db.session() as session:
            assert session.get(LearningSession, broken_id) is not None
            assert session.get(LearningSession, healthy_id) is None
            failed_logs = DataRetentionLogRepository(session).find(DataRetentionLog.status == "failed")
            assert [log.error_message for log in failed_logs] == ["RuntimeError: disk full"]
            schedules = RetentionScheduleRepository(session).find(
                RetentionSchedule.entity_id == str(broken_id)
            )
            assert schedules[0].errors == ["RuntimeError: disk full"]
            assert schedules[0].completed is False


# =============================================================================
# FULL RUN & MANUAL SCHEDULES
# =============================================================================


class TestRetentionRun:
    """Daily run over policies and manual schedules."""

    @staticmethod
    def test_summary(
        runtime: ComplianceRuntime,
        add_learning_data: Callable[..., list[int]],
    ) -> None:
        add_learning_data(None, sessions=2, days_ago=120)
        runtime.retention.create_retention_policy(_policy())
        runtime.retention.create_retention_policy(_policy(policy_name="Idle", active=False))

        summary = runtime.retention.execute_retention_policies()

        assert summary.to_dict() == {
            "policies_executed": 1,
            "records_processed": 2,
            "errors_encountered": 0,
            "manual_schedules_processed": 0,
        }
        audited = runtime.audit.query_audit_logs({"entity_type": "retention_execution"})
        assert audited.total == 1
        assert audited.entries[0].details["records_processed"] == 2

    @staticmethod
    def test_due_manual_schedule_applied(
        runtime: ComplianceRuntime,
        db: DatabaseConnection,
        clock: Any,
        add_learning_data: Callable[..., list[int]],
    ) -> None:
        due_id, later_id = add_learning_data(None, sessions=2)
        runtime.retention.schedule_retention(
            "session", str(due_id), "delete", clock() - timedelta(minutes=1), requested_by="dpo"
        )
        later = runtime.retention.schedule_retention(
            "session", str(later_id), "delete", clock() + timedelta(days=3)
        )

        summary = runtime.retention.execute_retention_policies()

        assert summary.manual_schedules_processed == 1
        assert summary.records_processed == 1
        with db.session() as session:
            assert LearningSessionRepository(session).get_by_id(due_id) is None
            assert LearningSessionRepository(session).get_by_id(later_id) is not None
        status = runtime.retention.get_retention_status("session", str(later_id))
        assert [schedule.id for schedule in status.scheduled_actions] == [later.id]

    @staticmethod
    def test_manual_schedule_respects_legal_hold(
        runtime: ComplianceRuntime,
        db: DatabaseConnection,
        clock: Any,
        make_student: Callable[..., int],
    ) -> None:
        student_id = make_student(legal_hold=True)
        runtime.retention.schedule_retention("student", str(student_id), "delete", clock())

        summary = runtime.retention.execute_retention_policies()

        assert summary.manual_schedules_processed == 0
        assert summary.errors_encountered == 0
        with db.session() as session:
            assert session.get(Student, student_id) is not None

    @staticmethod
    def test_manual_schedule_for_missing_entity(runtime: ComplianceRuntime, clock: Any) -> None:
        runtime.retention.schedule_retention("session", "999", "delete", clock())

        summary = runtime.retention.execute_retention_policies()

        assert summary.errors_encountered == 1
        assert summary.manual_schedules_processed == 0

    @staticmethod
    def test_manual_schedule_validation(runtime: ComplianceRuntime, clock: Any) -> None:
        with pytest.raises(ValidationFailedError):
            runtime.retention.schedule_retention("exercise", "1", "delete", clock())
        with pytest.raises(RetentionPolicyNotFoundError):
            runtime.retention.schedule_retention("session", "1", "delete", clock(), policy_id="missing")


# =============================================================================
# STATUS & REPORTING
# =============================================================================


class TestStatusAndReports:
    """Per-entity outlook, reports and counters."""

    @staticmethod
    def test_status_from_last_activity(
        runtime: ComplianceRuntime,
        clock: Any,
        make_student: Callable[..., int],
        make_consent: Callable[..., str],
    ) -> None:
        student_id = make_student(idle_days=100)
        runtime.retention.create_retention_policy(_student_policy())
        clock.advance(hours=1)

        status = runtime.retention.get_retention_status("student", str(student_id))

        assert len(status.applicable_policies) == 1
        assert status.scheduled_actions == []
        assert status.days_until_retention == 265
        assert status.can_extend_retention is False

        make_consent(status="verified", student_id=student_id)
        assert runtime.retention.get_retention_status("student", str(student_id)).can_extend_retention is True

    @staticmethod
    def test_status_of_unknown_type(runtime: ComplianceRuntime) -> None:
        status = runtime.retention.get_retention_status("exercise", "1")

        assert status.applicable_policies == []
        assert status.retention_date is None
        assert status.days_until_retention is None

    @staticmethod
    def test_report_compliant(
        runtime: ComplianceRuntime,
        clock: Any,
        add_learning_data: Callable[..., list[int]],
    ) -> None:
        add_learning_data(None, sessions=2, days_ago=120)
        runtime.retention.create_retention_policy(_policy())
        runtime.retention.execute_retention_policies()

        report = runtime.retention.generate_retention_report(clock() - timedelta(days=1), clock())

        assert report.compliance_status == "compliant"
        assert report.records_processed == 2
        assert report.by_action == {"delete": 2}
        assert report.by_table == {"learning_sessions": 2}
        assert report.policies_executed == ["Session cleanup"]
        assert report.recommendations[0] == "Continue monitoring retention policy effectiveness"

    @staticmethod
    @pytest.mark.parametrize(("broken", "expected"), [(1, "warning"), (2, "non_compliant")])
    def test_report_with_failures(
        runtime: ComplianceRuntime,
        clock: Any,
        monkeypatch: pytest.MonkeyPatch,
        add_learning_data: Callable[..., list[int]],
        broken: int,
        expected: str,
    ) -> None:
        session_ids = add_learning_data(None, sessions=2, days_ago=120)
        failing = {str(sid) for sid in session_ids[:broken]}
        handler = runtime.registry.get("session")
        original_delete = handler.delete

        def flaky_delete(session: Any, entity_id: str) -> int:
            if entity_id in failing:
                raise RuntimeError("locked")
            return original_delete(session, entity_id)

        monkeypatch.setattr(handler, "delete", flaky_delete)
        runtime.retention.create_retention_policy(_policy())
        runtime.retention.execute_retention_policies()

        report = runtime.retention.generate_retention_report(clock() - timedelta(days=1), clock())

        assert report.compliance_status == expected
        assert len(report.errors) == broken
        assert report.recommendations[0] == f"Investigate {broken} failed retention operations"

    @staticmethod
    def test_report_flags_overdue_schedules(
        runtime: ComplianceRuntime,
        db: DatabaseConnection,
        clock: Any,
        make_student: Callable[..., int],
    ) -> None:
        make_student(idle_days=400)
        policy = runtime.retention.create_retention_policy(_student_policy(notification_days=30))
        runtime.retention.execute_single_policy(policy.id)
        clock.advance(days=31)

        report = runtime.retention.generate_retention_report(clock() - timedelta(days=1), clock())

        assert report.compliance_status == "warning"
        assert report.recommendations[0] == "No retention policy ran during the period"
        assert "1 retention actions are past their scheduled date" in report.recommendations

    @staticmethod
    def test_inverted_report_period(runtime: ComplianceRuntime, clock: Any) -> None:
        with pytest.raises(ValidationFailedError):
            runtime.retention.generate_retention_report(clock(), clock() - timedelta(days=1))

    @staticmethod
    def test_statistics(runtime: ComplianceRuntime, clock: Any) -> None:
        runtime.retention.ensure_default_policies()
        session_policy = next(
            view for view in runtime.retention.list_retention_policies() if view.entity_type == "session"
        )
        runtime.retention.deactivate_retention_policy(session_policy.id)
        runtime.retention.schedule_retention("session", "1", "delete", clock() + timedelta(days=1))
        assert runtime.retention.get_retention_statistics() == {
            "total_policies": 4,
            "active_policies": 3,
            "pending_schedules": 1,
            "completed_schedules": 0,
        }
