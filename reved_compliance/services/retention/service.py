"""Retention policy scheduler.

Holds durable retention policies and applies them:
- entities past a policy horizon are found through the entity handlers,
- named exceptions (legal hold first) exempt entities,
- a warning is sent and a notice period observed before acting,
- the action (delete, anonymize, archive, notify_only) is applied,
  logged in data_retention_logs and audited.

A failure on one entity never aborts the batch.
"""

import json
import math
import uuid
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError

from reved_compliance.database.connection import DatabaseConnection
from reved_compliance.database.models import RetentionPolicy, RetentionSchedule
from reved_compliance.database.repositories import (
    ArchivedRecordRepository,
    DataRetentionLogRepository,
    ParentalConsentRepository,
    RetentionDetailsData,
    RetentionPolicyRepository,
    RetentionScheduleRepository,
)
from reved_compliance.monitoring.metrics import RETENTION_RECORDS_TOTAL
from reved_compliance.services.anonymization import (
    AnonymizationConfig,
    AnonymizationReason,
    DuplicateJobError,
    JobState,
    UnsupportedEntityTypeError,
)
from reved_compliance.services.anonymization.engine import AnonymizationEngine
from reved_compliance.services.audit import (
    AuditActionInput,
    AuditActionType,
    AuditCategory,
    AuditEntityType,
    AuditTrailService,
    Severity,
)
from reved_compliance.services.crypto import CryptoGateway
from reved_compliance.services.entities import EligibleEntity, EntityRegistry, build_registry
from reved_compliance.services.errors import (
    ComplianceError,
    PolicyViolationError,
    ValidationFailedError,
)
from reved_compliance.services.notifications import Notifier
from reved_compliance.services.retention.legal import requirement_for
from reved_compliance.services.retention.schemas import (
    EntityOutcome,
    ManualScheduleRequest,
    PolicyExecutionResult,
    PolicyView,
    RetentionAction,
    RetentionEntityType,
    RetentionException,
    RetentionPolicyCreate,
    RetentionPolicyUpdate,
    RetentionPriority,
    RetentionReport,
    RetentionRunSummary,
    RetentionStatus,
    ScheduleView,
)
from reved_compliance.settings import NotificationSettings, RetentionSettings, settings
from reved_compliance.utils.clock import Clock, ensure_utc, utc_now
from reved_compliance.utils.logger import setup_logger

logger = setup_logger("services.retention")

SYSTEM_USER = "system"
PRIORITY_ORDER = ("critical", "high", "medium", "low")
DEFAULT_RECOMMENDATIONS = (
    "Continue monitoring retention policy effectiveness",
    "Review policies quarterly for regulatory changes",
    "Ensure all policies have proper legal basis documentation",
)


class RetentionError(ComplianceError):
    """Base exception for retention errors."""


class RetentionPolicyNotFoundError(RetentionError):
    """Raised when a retention policy does not exist."""


class RetentionPolicyViolationError(PolicyViolationError):
    """Raised when a retention period breaks its legal bounds."""


def default_policies(notification_days: int = 30) -> list[RetentionPolicyCreate]:
    """Policies installed on an empty policy table.

    Args:
        notification_days: Notice period of every default policy.

    Returns:
        Default policy definitions.
    """
    return [
        RetentionPolicyCreate(
            policy_name="Student Data Retention",
            entity_type=RetentionEntityType.STUDENT,
            retention_period_days=1095,
            action=RetentionAction.ANONYMIZE,
            priority=RetentionPriority.MEDIUM,
            legal_basis="GDPR Article 5(1)(e) - Storage limitation",
            exceptions=[RetentionException.ACTIVE_LEGAL_CASE, RetentionException.RECENT_ACTIVITY],
            notification_days=notification_days,
            created_by=SYSTEM_USER,
        ),
        RetentionPolicyCreate(
            policy_name="Parent Consent Records",
            entity_type=RetentionEntityType.CONSENT,
            retention_period_days=2555,
            action=RetentionAction.ARCHIVE,
            priority=RetentionPriority.HIGH,
            legal_basis="Legal obligation for consent records",
            exceptions=[
                RetentionException.ACTIVE_LEGAL_CASE,
                RetentionException.REGULATORY_REQUIREMENT,
            ],
            notification_days=notification_days,
            created_by=SYSTEM_USER,
        ),
        RetentionPolicyCreate(
            policy_name="Session Data Cleanup",
            entity_type=RetentionEntityType.SESSION,
            retention_period_days=90,
            action=RetentionAction.DELETE,
            priority=RetentionPriority.LOW,
            legal_basis="Data minimization principle",
            notification_days=notification_days,
            created_by=SYSTEM_USER,
        ),
        RetentionPolicyCreate(
            policy_name="Audit Log Retention",
            entity_type=RetentionEntityType.AUDIT_LOG,
            retention_period_days=2190,
            action=RetentionAction.ARCHIVE,
            priority=RetentionPriority.HIGH,
            legal_basis="Regulatory compliance requirements",
            exceptions=[RetentionException.ONGOING_AUDIT, RetentionException.ACTIVE_LEGAL_CASE],
            notification_days=notification_days,
            created_by=SYSTEM_USER,
        ),
    ]


@dataclass(frozen=True)
class _Target:
    """Action to apply to one entity."""

    entity_type: str
    entity_id: str
    action: str
    policy_id: str | None
    executed_by: str
    retention_days: int | None = None


class RetentionService:
    """Creates retention policies and applies them to platform data."""

    def __init__(
        self,
        database: DatabaseConnection,
        audit: AuditTrailService,
        anonymization: AnonymizationEngine,
        crypto: CryptoGateway,
        notifier: Notifier,
        registry: EntityRegistry | None = None,
        clock: Clock = utc_now,
        config: RetentionSettings | None = None,
        notifications: NotificationSettings | None = None,
    ) -> None:
        """Initialize the retention service.

        Args:
            database: Database connection.
            audit: Audit trail.
            anonymization: Engine used by anonymize policies.
            crypto: Gateway sealing archived snapshots.
            notifier: Notification sender.
            registry: Entity handlers (all platform entities when None).
            clock: Time source.
            config: Retention settings (global settings when None).
            notifications: Mailbox settings (global settings when None).
        """
        self._db = database
        self._audit = audit
        self._anonymization = anonymization
        self._crypto = crypto
        self._notifier = notifier
        self._clock = clock
        self._registry = registry or build_registry(clock)
        self._config = config or settings.retention
        self._notifications = notifications or settings.notifications

    # =========================================================================
    # POLICIES
    # =========================================================================

    @staticmethod
    def _check_legal_bounds(entity_type: str, retention_period_days: int) -> None:
        """Reject periods outside the legal bounds of the entity type.

        Raises:
            RetentionPolicyViolationError: If the period is too short or too long.
        """
        requirement = requirement_for(entity_type)
        if requirement is None:
            return
        if retention_period_days < requirement.minimum_retention_days:
            raise RetentionPolicyViolationError(
                f"Retention period too short. Minimum required: "
                f"{requirement.minimum_retention_days} days"
            )
        maximum = requirement.maximum_retention_days
        if maximum is not None and retention_period_days > maximum:
            raise RetentionPolicyViolationError(
                f"Retention period too long. Maximum allowed: {maximum} days"
            )

    def _check_action_supported(self, entity_type: str, action: str) -> None:
        """Reject an anonymize action on a type that cannot be anonymized.

        Raises:
            ValidationFailedError: If the handler does not anonymize.
        """
        if action != RetentionAction.ANONYMIZE:
            return
        try:
            self._registry.anonymizer(entity_type)
        except UnsupportedEntityTypeError as e:
            raise ValidationFailedError(
                f"Invalid retention policy: {e}", [f"action: {e}"]
            ) from e

    def create_retention_policy(self, data: RetentionPolicyCreate | Mapping[str, Any]) -> PolicyView:
        """Validate, bound-check and persist a policy.

        Args:
            data: Policy definition.

        Returns:
            Created policy.

        Raises:
            ValidationFailedError: If the definition is malformed or anonymizes a
                type that cannot be anonymized.
            RetentionPolicyViolationError: If the period breaks legal bounds.
        """
        try:
            request = (
                data
                if isinstance(data, RetentionPolicyCreate)
                else RetentionPolicyCreate.model_validate(data)
            )
        except ValidationError as e:
            raise ValidationFailedError.from_pydantic(e, "retention policy") from e

        self._check_legal_bounds(request.entity_type, request.retention_period_days)
        self._check_action_supported(request.entity_type, request.action)

        with self._db.session() as session:
            policy = RetentionPolicyRepository(session).create(
                RetentionPolicy(
                    id=str(uuid.uuid4()),
                    policy_name=request.policy_name,
                    entity_type=request.entity_type.value,
                    retention_period_days=request.retention_period_days,
                    trigger_condition=request.trigger_condition.value,
                    action=request.action.value,
                    priority=request.priority.value,
                    active=request.active,
                    legal_basis=request.legal_basis,
                    exceptions=[name.value for name in request.exceptions],
                    notification_days=request.notification_days,
                    records_processed=0,
                    created_by=request.created_by,
                )
            )
            view = PolicyView.from_model(policy)

        self._audit.log_action(
            AuditActionInput(
                entity_type=AuditEntityType.RETENTION_POLICY,
                entity_id=view.id,
                action=AuditActionType.CREATE,
                user_id=request.created_by,
                details={
                    "policy_name": view.policy_name,
                    "entity_type": view.entity_type,
                    "retention_period_days": view.retention_period_days,
                    "action": view.action,
                    "legal_basis": view.legal_basis,
                },
                severity=Severity.MEDIUM,
                category=AuditCategory.COMPLIANCE,
            )
        )
        logger.info(f"retention_policy_created: {view.policy_name} ({view.id})")
        return view

    def update_retention_policy(
        self,
        policy_id: str,
        data: RetentionPolicyUpdate | Mapping[str, Any],
        updated_by: str | None = None,
    ) -> PolicyView:
        """Apply a partial update, re-checking legal bounds.

        Raises:
            ValidationFailedError: If the update is malformed or anonymizes a
                type that cannot be anonymized.
            RetentionPolicyNotFoundError: If the policy does not exist.
            RetentionPolicyViolationError: If the new period breaks legal bounds.
        """
        try:
            update = (
                data
                if isinstance(data, RetentionPolicyUpdate)
                else RetentionPolicyUpdate.model_validate(data)
            )
        except ValidationError as e:
            raise ValidationFailedError.from_pydantic(e, "retention policy update") from e

        changes = update.model_dump(exclude_unset=True, mode="json")
        with self._db.session() as session:
            policy = self._load_policy(RetentionPolicyRepository(session), policy_id)
            if "retention_period_days" in changes:
                self._check_legal_bounds(policy.entity_type, changes["retention_period_days"])
            if "action" in changes:
                self._check_action_supported(policy.entity_type, changes["action"])
            for name, value in changes.items():
                setattr(policy, name, value)
            view = PolicyView.from_model(policy)

        self._audit.log_action(
            AuditActionInput(
                entity_type=AuditEntityType.RETENTION_POLICY,
                entity_id=policy_id,
                action=AuditActionType.UPDATE,
                user_id=updated_by,
                details={"changes": changes},
                severity=Severity.MEDIUM,
                category=AuditCategory.COMPLIANCE,
            )
        )
        return view

    def deactivate_retention_policy(self, policy_id: str, updated_by: str | None = None) -> PolicyView:
        """Stop applying a policy."""
        return self.update_retention_policy(policy_id, RetentionPolicyUpdate(active=False), updated_by)

    def list_retention_policies(self, active_only: bool = False) -> list[PolicyView]:
        """Policies, highest priority first."""
        with self._db.session() as session:
            repo = RetentionPolicyRepository(session)
            policies = repo.active() if active_only else repo.find()
            views = [PolicyView.from_model(policy) for policy in policies]
        return sorted(views, key=lambda view: PRIORITY_ORDER.index(view.priority))

    def ensure_default_policies(self) -> int:
        """Install the default policies when no policy exists.

        Returns:
            Number of policies created.
        """
        with self._db.session() as session:
            existing = RetentionPolicyRepository(session).count()
        if existing:
            return 0

        created = 0
        for definition in default_policies(self._config.default_notification_days):
            self.create_retention_policy(definition)
            created += 1
        logger.info(f"default_retention_policies_installed: {created}")
        return created

    @staticmethod
    def _load_policy(repo: RetentionPolicyRepository, policy_id: str) -> RetentionPolicy:
        policy = repo.get_by_id(policy_id)
        if policy is None:
            raise RetentionPolicyNotFoundError(f"Retention policy not found: {policy_id}")
        return policy

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def execute_retention_policies(self) -> RetentionRunSummary:
        """Run every active policy, then due manual schedules.

        Returns:
            RetentionRunSummary.
        """
        summary = RetentionRunSummary()
        for view in self.list_retention_policies(active_only=True):
            try:
                result = self.execute_single_policy(view.id)
            except Exception as e:
                summary.errors_encountered += 1
                logger.exception(f"retention_policy_failed: {view.policy_name}")
                self._audit.log_action(
                    AuditActionInput(
                        entity_type=AuditEntityType.RETENTION_POLICY,
                        entity_id=view.id,
                        action=AuditActionType.FAILED,
                        details={"policy_name": view.policy_name, "error": str(e)},
                        severity=Severity.HIGH,
                        category=AuditCategory.COMPLIANCE,
                    )
                )
                continue
            summary.policies_executed += 1
            summary.records_processed += result.processed
            summary.errors_encountered += result.failed

        processed, failed = self._process_manual_schedules()
        summary.manual_schedules_processed = processed
        summary.records_processed += processed
        summary.errors_encountered += failed

        self._audit.log_action(
            AuditActionInput(
                entity_type=AuditEntityType.RETENTION_EXECUTION,
                entity_id=self._clock().strftime("%Y%m%d%H%M%S"),
                action=AuditActionType.COMPLETED,
                user_id=SYSTEM_USER,
                details=summary.to_dict(),
                severity=Severity.MEDIUM,
                category=AuditCategory.COMPLIANCE,
            )
        )
        logger.info(
            f"retention_run_done: policies={summary.policies_executed} "
            f"records={summary.records_processed} errors={summary.errors_encountered}"
        )
        return summary

    def execute_single_policy(self, policy_id: str) -> PolicyExecutionResult:
        """Apply one policy to every eligible entity.

        Args:
            policy_id: Policy identifier.

        Returns:
            PolicyExecutionResult.

        Raises:
            RetentionPolicyNotFoundError: If the policy does not exist.
            UnsupportedEntityTypeError: If no handler serves the entity type.
        """
        now = self._clock()
        with self._db.session() as session:
            policy = PolicyView.from_model(
                self._load_policy(RetentionPolicyRepository(session), policy_id)
            )
            handler = self._registry.get(policy.entity_type)
            cutoff = now - timedelta(days=policy.retention_period_days)
            schedules = RetentionScheduleRepository(session)
            done = schedules.completed_entity_ids(policy.id)
            awaiting = [
                self._policy_target(policy, schedule.entity_type, schedule.entity_id, schedule.action)
                for schedule in schedules.awaiting_anonymization(policy.id)
            ]
            skip = done | {target.entity_id for target in awaiting}
            candidates = [
                entity
                for entity in handler.find_eligible(session, cutoff)
                if entity.entity_id not in skip
            ]

        result = PolicyExecutionResult()
        for target in awaiting:
            try:
                result.record(self._run_action(target, now))
            except Exception as e:
                self._record_failure(target, e, now)
                result.record(EntityOutcome.FAILED)
        for entity in candidates:
            result.record(self._process_entity(policy, entity, now))

        with self._db.session() as session:
            stored = self._load_policy(RetentionPolicyRepository(session), policy_id)
            stored.last_executed = now
            stored.records_processed = stored.records_processed + result.processed

        logger.info(
            f"retention_policy_executed: {policy.policy_name} eligible={len(candidates)} "
            f"processed={result.processed} notified={result.notified} "
            f"exempted={result.exempted} failed={result.failed}"
        )
        return result

    def _process_entity(
        self,
        policy: PolicyView,
        entity: EligibleEntity,
        now: datetime,
    ) -> EntityOutcome:
        """Exceptions, notice, action and completion for one entity."""
        target = self._policy_target(policy, entity.entity_type, entity.entity_id)
        try:
            exemption = self._matching_exception(policy.exceptions, entity, now)
            if exemption is not None:
                self._record_exemption(target, exemption)
                return EntityOutcome.EXEMPTED

            if policy.notification_days > 0:
                notice = self._observe_notice(policy, target, now)
                if notice is not None:
                    return notice

            return self._run_action(target, now)
        except Exception as e:
            self._record_failure(target, e, now)
            return EntityOutcome.FAILED

    @staticmethod
    def _policy_target(
        policy: PolicyView,
        entity_type: str,
        entity_id: str,
        action: str | None = None,
    ) -> _Target:
        return _Target(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action or policy.action,
            policy_id=policy.id,
            executed_by=f"policy:{policy.policy_name}",
            retention_days=policy.retention_period_days,
        )

    def _run_action(self, target: _Target, now: datetime, schedule_id: str | None = None) -> EntityOutcome:
        """Apply the action and complete the schedule once it has taken effect."""
        records = self._apply_action(target, now, schedule_id)
        if records is None:
            return EntityOutcome.DEFERRED
        self._complete(target, records, now, schedule_id=schedule_id)
        return EntityOutcome.PROCESSED

    def _matching_exception(
        self,
        exceptions: list[str],
        entity: EligibleEntity,
        now: datetime,
    ) -> str | None:
        """First exception exempting an entity (legal hold always applies)."""
        names = [RetentionException.ACTIVE_LEGAL_CASE.value]
        names += [name for name in exceptions if name not in names]
        recent_since = now - timedelta(days=self._config.recent_activity_days)

        for name in names:
            if name == RetentionException.ACTIVE_LEGAL_CASE and entity.legal_hold:
                return name
            if name == RetentionException.ONGOING_AUDIT and entity.audit_flag:
                return name
            if name == RetentionException.PREMIUM_ACCOUNT and entity.account_type == "premium":
                return name
            if (
                name == RetentionException.RECENT_ACTIVITY
                and entity.last_activity is not None
                and ensure_utc(entity.last_activity) >= recent_since
            ):
                return name
            if name == RetentionException.REGULATORY_REQUIREMENT and entity.regulatory_retention:
                return name
        return None

    def _observe_notice(
        self,
        policy: PolicyView,
        target: _Target,
        now: datetime,
    ) -> EntityOutcome | None:
        """Send the warning once, then wait out the notice period.

        Returns:
            NOTIFIED when the warning was just sent, DEFERRED while the
            notice runs, None once it has elapsed.
        """
        with self._db.session() as session:
            schedule = self._policy_schedule(RetentionScheduleRepository(session), target, policy.priority)
            sent_at = schedule.notification_sent_at

        if sent_at is not None:
            if now < ensure_utc(sent_at) + timedelta(days=policy.notification_days):
                return EntityOutcome.DEFERRED
            return None

        due_date = now + timedelta(days=policy.notification_days)
        self._notifier.notify(
            self._notifications.compliance_email,
            "retention-warning",
            {
                "policy_name": policy.policy_name,
                "entity_type": target.entity_type,
                "entity_id": target.entity_id,
                "action": policy.action,
                "scheduled_date": due_date.strftime("%d/%m/%Y"),
            },
        )
        with self._db.session() as session:
            schedule = self._policy_schedule(RetentionScheduleRepository(session), target, policy.priority)
            schedule.notification_sent_at = now
            schedule.scheduled_date = due_date

        RETENTION_RECORDS_TOTAL.labels(action=policy.action, outcome="notified").inc()
        self._audit_outcome(
            target,
            AuditActionType.CREATED,
            {"outcome": "notified", "scheduled_date": due_date.isoformat()},
            Severity.LOW,
        )
        return EntityOutcome.NOTIFIED

    @staticmethod
    def _policy_schedule(
        repo: RetentionScheduleRepository,
        target: _Target,
        priority: str = "medium",
    ) -> RetentionSchedule:
        """Schedule row of an entity under a policy, created on first use."""
        schedule = repo.get_for(target.policy_id, target.entity_type, target.entity_id)
        if schedule is None:
            schedule = repo.create(
                RetentionSchedule(
                    id=str(uuid.uuid4()),
                    policy_id=target.policy_id,
                    entity_type=target.entity_type,
                    entity_id=target.entity_id,
                    action=target.action,
                    priority=priority,
                    source="policy",
                    completed=False,
                    errors=[],
                )
            )
        return schedule

    def _schedule_row(
        self,
        repo: RetentionScheduleRepository,
        target: _Target,
        schedule_id: str | None = None,
    ) -> RetentionSchedule:
        if schedule_id:
            schedule = repo.get_by_id(schedule_id)
            if schedule is None:
                raise RetentionError(f"Retention schedule not found: {schedule_id}")
            return schedule
        return self._policy_schedule(repo, target)

    def _apply_action(self, target: _Target, now: datetime, schedule_id: str | None = None) -> int | None:
        """Apply a retention action to one entity.

        Returns:
            Number of records affected, or None while an anonymization
            job is still pending.
        """
        handler = self._registry.get(target.entity_type)

        if target.action == RetentionAction.DELETE:
            with self._db.session() as session:
                return handler.delete(session, target.entity_id)

        if target.action == RetentionAction.ARCHIVE:
            with self._db.session() as session:
                payload = self._crypto.encrypt_envelope(handler.snapshot(session, target.entity_id))
                ArchivedRecordRepository(session).archive(
                    entity_type=target.entity_type,
                    entity_id=target.entity_id,
                    payload=payload,
                    policy_id=target.policy_id,
                    archived_at=now,
                )
            return 1

        if target.action == RetentionAction.ANONYMIZE:
            return self._settle_anonymization(target, schedule_id)

        self._notifier.notify(
            self._notifications.compliance_email,
            "retention-warning",
            {
                "entity_type": target.entity_type,
                "entity_id": target.entity_id,
                "action": target.action,
                "due": True,
            },
        )
        return 1

    def _settle_anonymization(self, target: _Target, schedule_id: str | None = None) -> int | None:
        """Start or follow the anonymization job of an entity.

        The job id is kept on the schedule until the job ends, so a job
        still queued on the broker is re-checked on the next run.

        Returns:
            Records anonymized once the job completed, None while it runs.

        Raises:
            RetentionError: If the job failed, was cancelled or vanished.
        """
        with self._db.session() as session:
            schedule = self._schedule_row(RetentionScheduleRepository(session), target, schedule_id)
            job_id = schedule.anonymization_job_id

        if job_id is None:
            job_id = self._start_anonymization(target)

        status = self._anonymization.get_job_status(job_id)
        if status is not None and status.status == JobState.COMPLETED:
            return max(1, status.affected_records)

        in_flight = status is not None and status.status in (JobState.PENDING, JobState.RUNNING)
        with self._db.session() as session:
            schedule = self._schedule_row(RetentionScheduleRepository(session), target, schedule_id)
            schedule.anonymization_job_id = job_id if in_flight else None

        if in_flight:
            logger.info(f"retention_anonymization_pending: {target.entity_type}:{target.entity_id} job={job_id}")
            return None
        state = status.status if status is not None else "missing"
        errors = "; ".join(status.errors) if status is not None else ""
        raise RetentionError(f"Anonymization job {job_id} {state}: {errors}")

    def _start_anonymization(self, target: _Target) -> str:
        """Schedule the anonymization job, or adopt the one already active."""
        try:
            return self._anonymization.schedule_anonymization(
                AnonymizationConfig(
                    entity_type=target.entity_type,
                    entity_id=target.entity_id,
                    reason=AnonymizationReason.RETENTION_POLICY,
                    preserve_statistics=True,
                    immediate_execution=True,
                    notify_user=False,
                    requested_by=target.executed_by[:100],
                )
            )
        except DuplicateJobError:
            active = self._anonymization.active_job_for(target.entity_type, target.entity_id)
            if active is None:
                raise
            logger.info(f"retention_anonymization_in_flight: {target.entity_type}:{target.entity_id}")
            return active.id

    def _complete(self, target: _Target, records: int, now: datetime, schedule_id: str | None = None) -> None:
        """Mark the schedule done, log the operation and audit it."""
        handler = self._registry.get(target.entity_type)
        criteria = RetentionDetailsData(entity_id=target.entity_id)
        if target.policy_id:
            criteria["policy_id"] = target.policy_id
        if target.retention_days is not None:
            criteria["retention_days"] = target.retention_days

        with self._db.session() as session:
            repo = RetentionScheduleRepository(session)
            schedule = self._schedule_row(repo, target, schedule_id)
            schedule.completed = True
            schedule.completed_at = now
            schedule.scheduled_date = schedule.scheduled_date or now
            DataRetentionLogRepository(session).log_operation(
                table_name=handler.table_name,
                operation_type=target.action,
                records_affected=records,
                executed_by=target.executed_by[:100],
                criteria=json.dumps(criteria),
                executed_at=now,
            )

        RETENTION_RECORDS_TOTAL.labels(action=target.action, outcome="processed").inc()
        self._audit.log_action(
            AuditActionInput(
                entity_type=AuditEntityType(target.entity_type),
                entity_id=target.entity_id,
                action=AuditActionType.DATA_RETENTION_APPLIED,
                user_id=SYSTEM_USER,
                student_id=target.entity_id if target.entity_type == "student" else None,
                details={
                    "action": target.action,
                    "policy_id": target.policy_id,
                    "records_affected": records,
                },
                severity=Severity.MEDIUM,
                category=AuditCategory.COMPLIANCE,
            )
        )

    def _record_exemption(self, target: _Target, exception: str) -> None:
        RETENTION_RECORDS_TOTAL.labels(action=target.action, outcome="exempted").inc()
        self._audit_outcome(
            target,
            AuditActionType.UPDATE,
            {"outcome": "exempted", "exception": exception},
            Severity.LOW,
        )

    def _record_failure(
        self,
        target: _Target,
        error: Exception,
        now: datetime,
        schedule_id: str | None = None,
    ) -> None:
        """Record a failed entity on its schedule, the log and the audit trail."""
        message = f"{type(error).__name__}: {error}"
        logger.error(f"retention_entity_failed: {target.entity_type}:{target.entity_id} {message}")
        try:
            table_name = self._registry.get(target.entity_type).table_name
            with self._db.session() as session:
                repo = RetentionScheduleRepository(session)
                schedule = self._schedule_row(repo, target, schedule_id)
                schedule.errors = [*schedule.errors, message]
                DataRetentionLogRepository(session).log_operation(
                    table_name=table_name,
                    operation_type=target.action,
                    records_affected=0,
                    executed_by=target.executed_by[:100],
                    status="failed",
                    error_message=message,
                    executed_at=now,
                )
        except Exception:
            logger.exception(f"retention_failure_not_recorded: {target.entity_type}:{target.entity_id}")

        RETENTION_RECORDS_TOTAL.labels(action=target.action, outcome="failed").inc()
        self._audit_outcome(
            target,
            AuditActionType.FAILED,
            {"outcome": "failed", "error": message},
            Severity.HIGH,
        )

    def _audit_outcome(
        self,
        target: _Target,
        action: AuditActionType,
        details: dict[str, Any],
        severity: Severity,
    ) -> None:
        self._audit.log_action(
            AuditActionInput(
                entity_type=AuditEntityType.RETENTION_SCHEDULE,
                entity_id=f"{target.policy_id or 'manual'}:{target.entity_type}:{target.entity_id}",
                action=action,
                user_id=SYSTEM_USER,
                details={"retention_action": target.action, **details},
                severity=severity,
                category=AuditCategory.COMPLIANCE,
            )
        )

    # =========================================================================
    # MANUAL SCHEDULES
    # =========================================================================

    def schedule_retention(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        scheduled_date: datetime,
        policy_id: str | None = None,
        priority: str = "medium",
        requested_by: str | None = None,
    ) -> ScheduleView:
        """Schedule a retention action for one entity.

        Raises:
            ValidationFailedError: If the request is malformed.
            RetentionPolicyNotFoundError: If the referenced policy does not exist.
        """
        try:
            request = ManualScheduleRequest(
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                scheduled_date=scheduled_date,
                policy_id=policy_id,
                priority=priority,
            )
        except ValidationError as e:
            raise ValidationFailedError.from_pydantic(e, "retention schedule") from e

        with self._db.session() as session:
            if request.policy_id:
                self._load_policy(RetentionPolicyRepository(session), request.policy_id)
            schedule = RetentionScheduleRepository(session).create(
                RetentionSchedule(
                    id=str(uuid.uuid4()),
                    policy_id=request.policy_id,
                    entity_type=request.entity_type.value,
                    entity_id=request.entity_id,
                    action=request.action.value,
                    priority=request.priority.value,
                    source="manual",
                    scheduled_date=ensure_utc(request.scheduled_date),
                    completed=False,
                    errors=[],
                )
            )
            view = ScheduleView.from_model(schedule)

        self._audit.log_action(
            AuditActionInput(
                entity_type=AuditEntityType.RETENTION_SCHEDULE,
                entity_id=view.id,
                action=AuditActionType.CREATE,
                user_id=requested_by,
                details={
                    "entity_type": view.entity_type,
                    "entity_id": view.entity_id,
                    "action": view.action,
                    "scheduled_date": ensure_utc(request.scheduled_date).isoformat(),
                },
                severity=Severity.MEDIUM,
                category=AuditCategory.COMPLIANCE,
            )
        )
        return view

    def _process_manual_schedules(self) -> tuple[int, int]:
        """Apply due manual schedules.

        Returns:
            Tuple (processed, failed).
        """
        now = self._clock()
        with self._db.session() as session:
            due = [
                (
                    schedule.id,
                    _Target(
                        entity_type=schedule.entity_type,
                        entity_id=schedule.entity_id,
                        action=schedule.action,
                        policy_id=schedule.policy_id,
                        executed_by="manual",
                    ),
                )
                for schedule in RetentionScheduleRepository(session).due_manual(now)
            ]

        processed = failed = 0
        for schedule_id, target in due:
            try:
                with self._db.session() as session:
                    entity = self._registry.get(target.entity_type).describe(session, target.entity_id)
                if entity is None:
                    raise RetentionError(f"{target.entity_type} not found: {target.entity_id}")
                if entity.legal_hold:
                    self._record_exemption(target, RetentionException.ACTIVE_LEGAL_CASE.value)
                    continue
                if self._run_action(target, now, schedule_id) == EntityOutcome.PROCESSED:
                    processed += 1
            except Exception as e:
                self._record_failure(target, e, now, schedule_id=schedule_id)
                failed += 1
        return processed, failed

    # =========================================================================
    # STATUS & REPORTING
    # =========================================================================

    def get_retention_status(self, entity_type: str, entity_id: str) -> RetentionStatus:
        """Retention outlook of one entity.

        Args:
            entity_type: Entity type.
            entity_id: Entity identifier.

        Returns:
            RetentionStatus.
        """
        now = self._clock()
        with self._db.session() as session:
            policies = [
                PolicyView.from_model(policy)
                for policy in RetentionPolicyRepository(session).for_entity_type(entity_type)
            ]
            schedules = [
                ScheduleView.from_model(schedule)
                for schedule in RetentionScheduleRepository(session).open_for_entity(
                    entity_type, entity_id
                )
            ]
            entity = (
                self._registry.get(entity_type).describe(session, entity_id)
                if entity_type in self._registry
                else None
            )
            can_extend = self._can_extend_retention(session, entity_type, entity_id)

        status = RetentionStatus(
            applicable_policies=policies,
            scheduled_actions=schedules,
            can_extend_retention=can_extend,
        )
        dated = [s.scheduled_date for s in schedules if s.scheduled_date is not None]
        if dated:
            status.retention_date = min(ensure_utc(d) for d in dated)
        elif policies and entity is not None and entity.last_activity is not None:
            shortest = min(policy.retention_period_days for policy in policies)
            status.retention_date = ensure_utc(entity.last_activity) + timedelta(days=shortest)

        if status.retention_date is not None:
            seconds = (status.retention_date - now).total_seconds()
            status.days_until_retention = math.ceil(seconds / 86400)
        return status

    @staticmethod
    def _can_extend_retention(session: Any, entity_type: str, entity_id: str) -> bool:
        """Extension needs a consent-extendable category and a verified consent."""
        requirement = requirement_for(entity_type)
        if requirement is None or not requirement.can_extend_with_consent:
            return False
        if entity_type != "student" or not entity_id.isdigit():
            return False
        consent = ParentalConsentRepository(session).get_latest_for_student(int(entity_id))
        return consent is not None and consent.status == "verified"

    def generate_retention_report(
        self,
        start: datetime,
        end: datetime,
        generated_by: str | None = None,
    ) -> RetentionReport:
        """Summarize retention activity over a period.

        Args:
            start: Period start.
            end: Period end.
            generated_by: User requesting the report.

        Returns:
            RetentionReport.

        Raises:
            ValidationFailedError: If the period is inverted.
        """
        if start > end:
            raise ValidationFailedError("Invalid report period", ["start must precede end"])

        report = RetentionReport(period_start=start, period_end=end, generated_at=self._clock())
        with self._db.session() as session:
            executed = RetentionPolicyRepository(session).executed_between(start, end)
            report.policies_executed = [policy.policy_name for policy in executed]
            logs = DataRetentionLogRepository(session).in_period(start, end)
            succeeded = [log for log in logs if log.status == "success"]
            report.records_processed = sum(log.records_affected or 0 for log in succeeded)
            by_action: Counter[str] = Counter()
            by_table: Counter[str] = Counter()
            for log in succeeded:
                by_action[log.operation_type] += log.records_affected or 0
                by_table[log.table_name] += log.records_affected or 0
            report.by_action = dict(by_action)
            report.by_table = dict(by_table)
            report.errors = [
                {"table": log.table_name, "operation": log.operation_type, "error": log.error_message or ""}
                for log in logs
                if log.status != "success"
            ]
            overdue = RetentionScheduleRepository(session).count(
                RetentionSchedule.completed.is_(False),
                RetentionSchedule.scheduled_date.is_not(None),
                RetentionSchedule.scheduled_date < report.generated_at,
            )

        report.compliance_status = self._assess_compliance(len(report.errors), len(logs), overdue)
        report.recommendations = self._recommendations(report, overdue)

        self._audit.log_action(
            AuditActionInput(
                entity_type=AuditEntityType.RETENTION_REPORT,
                entity_id=report.generated_at.strftime("%Y%m%d%H%M%S"),
                action=AuditActionType.CREATED,
                user_id=generated_by or SYSTEM_USER,
                details={
                    "period_start": start.isoformat(),
                    "period_end": end.isoformat(),
                    "records_processed": report.records_processed,
                    "compliance_status": report.compliance_status,
                },
                severity=Severity.LOW,
                category=AuditCategory.COMPLIANCE,
            )
        )
        logger.info(
            f"retention_report_generated: records={report.records_processed} "
            f"status={report.compliance_status}"
        )
        return report

    @staticmethod
    def _assess_compliance(errors: int, operations: int, overdue: int) -> str:
        """compliant without errors; non_compliant when most operations failed."""
        if errors == 0 and overdue == 0:
            return "compliant"
        if operations and errors * 2 > operations:
            return "non_compliant"
        return "warning"

    @staticmethod
    def _recommendations(report: RetentionReport, overdue: int) -> list[str]:
        recommendations = list(DEFAULT_RECOMMENDATIONS)
        if report.errors:
            recommendations.insert(0, f"Investigate {len(report.errors)} failed retention operations")
        if overdue:
            recommendations.insert(0, f"{overdue} retention actions are past their scheduled date")
        if not report.policies_executed:
            recommendations.insert(0, "No retention policy ran during the period")
        return recommendations

    def get_retention_statistics(self) -> dict[str, int]:
        """Counts of policies and schedules."""
        with self._db.session() as session:
            policy_repo = RetentionPolicyRepository(session)
            total = policy_repo.count()
            active = policy_repo.count(RetentionPolicy.active.is_(True))
            by_completion = RetentionScheduleRepository(session).count_by_completion()
        return {
            "total_policies": total,
            "active_policies": active,
            "pending_schedules": by_completion.get(False, 0),
            "completed_schedules": by_completion.get(True, 0),
        }
