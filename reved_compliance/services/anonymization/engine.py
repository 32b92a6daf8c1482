"""Anonymization engine.

Schedules durable anonymization jobs, executes them through the
entity handler registry and tracks their lifecycle:

    pending -> running -> completed | failed
    pending -> cancelled

Failures are recorded on the job and audited; jobs are never retried
automatically.
"""

import uuid
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError

from reved_compliance.database.connection import DatabaseConnection
from reved_compliance.database.models import AnonymizationJob
from reved_compliance.database.repositories import AnonymizationJobRepository, StudentRepository
from reved_compliance.monitoring.metrics import ANONYMIZATION_JOBS_PENDING, ANONYMIZATION_JOBS_TOTAL
from reved_compliance.services.anonymization.errors import DuplicateJobError, JobNotFoundError
from reved_compliance.services.anonymization.schemas import (
    AnonymizationConfig,
    AnonymizationReason,
    AnonymizationReport,
    InactivityCheckResult,
    JobState,
    JobStatus,
    priority_for,
)
from reved_compliance.services.anonymization.strategies import AnonymizationStrategy
from reved_compliance.services.audit import (
    AuditActionInput,
    AuditActionType,
    AuditCategory,
    AuditEntityType,
    AuditTrailService,
    Severity,
)
from reved_compliance.services.entities import EntityRegistry, build_registry
from reved_compliance.services.errors import NotificationError, ValidationFailedError
from reved_compliance.services.notifications import Notifier
from reved_compliance.services.scheduling import JobScheduler
from reved_compliance.settings import AnonymizationSettings, settings
from reved_compliance.utils.clock import Clock, ensure_utc, utc_now
from reved_compliance.utils.logger import setup_logger

logger = setup_logger("services.anonymization")

INTERRUPTED_ERROR = "interrupted by service restart"
EXECUTE_JOB_TASK = "anonymization.execute"


class AnonymizationEngine:
    """Schedules, executes and tracks anonymization jobs."""

    def __init__(
        self,
        database: DatabaseConnection,
        audit: AuditTrailService,
        scheduler: JobScheduler,
        notifier: Notifier,
        registry: EntityRegistry | None = None,
        clock: Clock = utc_now,
        config: AnonymizationSettings | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            database: Database connection.
            audit: Audit trail.
            scheduler: Dispatcher for job execution.
            notifier: Notification sender.
            registry: Entity handlers (all platform entities when None).
            clock: Time source.
            config: Inactivity settings (global settings when None).
        """
        self._db = database
        self._audit = audit
        self._scheduler = scheduler
        self._notifier = notifier
        self._clock = clock
        self._registry = registry or build_registry(clock)
        self._config = config or settings.anonymization
        self._scheduler.register(EXECUTE_JOB_TASK, self.execute_anonymization)

    # =========================================================================
    # SCHEDULING
    # =========================================================================

    def schedule_anonymization(self, config: AnonymizationConfig | Mapping[str, Any]) -> str:
        """Create a pending job and dispatch it.

        Args:
            config: Anonymization request.

        Returns:
            Id of the new job.

        Raises:
            ValidationFailedError: If the request is malformed.
            UnsupportedEntityTypeError: If the entity type cannot be anonymized.
            DuplicateJobError: If the target already has a pending or running job.
        """
        try:
            request = (
                config
                if isinstance(config, AnonymizationConfig)
                else AnonymizationConfig.model_validate(config)
            )
        except ValidationError as e:
            raise ValidationFailedError.from_pydantic(e, "anonymization request") from e

        self._registry.anonymizer(request.entity_type)
        scheduled_for = ensure_utc(request.scheduled_for) if request.scheduled_for else None
        priority = priority_for(request.reason)

        with self._db.session() as session:
            repo = AnonymizationJobRepository(session)
            active = repo.find_active_for(request.entity_type, request.entity_id)
            if active is not None:
                raise DuplicateJobError(
                    f"Job {active.id} is already {active.status} for "
                    f"{request.entity_type} {request.entity_id}"
                )
            job = repo.create(
                AnonymizationJob(
                    id=str(uuid.uuid4()),
                    entity_type=request.entity_type,
                    entity_id=request.entity_id,
                    reason=request.reason.value,
                    status=JobState.PENDING.value,
                    priority=priority.value,
                    progress=0,
                    affected_records=0,
                    anonymized_fields=[],
                    preserved_fields=[],
                    errors=[],
                    preserve_statistics=request.preserve_statistics,
                    notify_user=request.notify_user,
                    requested_by=request.requested_by,
                    scheduled_for=scheduled_for,
                    created_at=self._clock(),
                )
            )
            job_id = job.id

        ANONYMIZATION_JOBS_TOTAL.labels(status=JobState.PENDING.value).inc()
        ANONYMIZATION_JOBS_PENDING.inc()
        self._audit.log_action(
            AuditActionInput(
                entity_type=AuditEntityType.ANONYMIZATION_JOB,
                entity_id=job_id,
                action=AuditActionType.CREATE,
                user_id=request.requested_by,
                student_id=request.entity_id if request.entity_type == "student" else None,
                details={
                    "entity_type": request.entity_type,
                    "entity_id": request.entity_id,
                    "reason": request.reason.value,
                    "priority": priority.value,
                    "preserve_statistics": request.preserve_statistics,
                    "scheduled_for": scheduled_for.isoformat() if scheduled_for else None,
                },
                severity=Severity.HIGH,
                category=AuditCategory.COMPLIANCE,
            )
        )
        logger.info(
            f"anonymization_scheduled: {job_id} {request.entity_type}:{request.entity_id} "
            f"reason={request.reason.value} priority={priority.value}"
        )

        immediate = request.immediate_execution or scheduled_for is None
        self._dispatch(job_id, None if immediate else scheduled_for)
        return job_id

    def _dispatch(self, job_id: str, scheduled_for: datetime | None) -> None:
        """Hand a job to the scheduler, now or at its scheduled time."""
        if scheduled_for is None or scheduled_for <= self._clock():
            self._scheduler.run_now(EXECUTE_JOB_TASK, job_id)
        else:
            self._scheduler.run_at(scheduled_for, EXECUTE_JOB_TASK, job_id)

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def execute_anonymization(self, job_id: str) -> JobStatus:
        """Run a pending job to completion or failure.

        Jobs that are no longer pending (cancelled, already run) are left
        untouched.

        Args:
            job_id: Job identifier.

        Returns:
            Final job status.

        Raises:
            JobNotFoundError: If the job does not exist.
        """
        with self._db.session() as session:
            job = AnonymizationJobRepository(session).get_by_id(job_id)
            if job is None:
                raise JobNotFoundError(f"Anonymization job not found: {job_id}")
            if job.status != JobState.PENDING:
                logger.info(f"anonymization_skipped: {job_id} status={job.status}")
                return JobStatus.from_model(job)
            job.status = JobState.RUNNING.value
            job.started_at = self._clock()
            job.progress = 10
            target = (job.entity_type, job.entity_id, job.reason)
            preserve, notify = job.preserve_statistics, job.notify_user

        ANONYMIZATION_JOBS_PENDING.dec()
        ANONYMIZATION_JOBS_TOTAL.labels(status=JobState.RUNNING.value).inc()
        entity_type, entity_id, reason = target
        logger.info(f"anonymization_started: {job_id} {entity_type}:{entity_id}")

        try:
            handler = self._registry.anonymizer(entity_type)
            with self._db.session() as session:
                outcome = handler.anonymize(session, entity_id, preserve)
            if entity_type == "student":
                outcome.records_processed += self._audit.anonymize_student_audit_logs(
                    entity_id, reason
                )
        except Exception as e:
            return self._fail(job_id, entity_type, entity_id, e)

        with self._db.session() as session:
            job = AnonymizationJobRepository(session).get_by_id(job_id)
            job.status = JobState.COMPLETED.value
            job.progress = 100
            job.completed_at = self._clock()
            job.affected_records = outcome.records_processed
            job.anonymized_fields = list(outcome.anonymized_fields)
            job.preserved_fields = list(outcome.preserved_fields)
            status = JobStatus.from_model(job)
            duration = (ensure_utc(job.completed_at) - ensure_utc(job.started_at)).total_seconds()

        ANONYMIZATION_JOBS_TOTAL.labels(status=JobState.COMPLETED.value).inc()
        self._audit.log_action(
            AuditActionInput(
                entity_type=AuditEntityType.ANONYMIZATION_JOB,
                entity_id=job_id,
                action=AuditActionType.COMPLETED,
                details={
                    "entity_type": entity_type,
                    "entity_id": entity_id,
                    "affected_records": status.affected_records,
                    "anonymized_fields": status.anonymized_fields,
                    "preserved_fields": status.preserved_fields,
                    "duration_seconds": duration,
                },
                severity=Severity.HIGH,
                category=AuditCategory.COMPLIANCE,
            )
        )
        logger.info(
            f"anonymization_completed: {job_id} records={status.affected_records} "
            f"in {duration:.2f}s"
        )

        if notify and outcome.contact:
            self._notify_completion(outcome.contact, job_id, entity_type, reason)
        return status

    def _fail(self, job_id: str, entity_type: str, entity_id: str, error: Exception) -> JobStatus:
        """Record a job failure."""
        message = f"{type(error).__name__}: {error}"
        with self._db.session() as session:
            job = AnonymizationJobRepository(session).get_by_id(job_id)
            job.status = JobState.FAILED.value
            job.completed_at = self._clock()
            job.errors = [*job.errors, message]
            status = JobStatus.from_model(job)

        ANONYMIZATION_JOBS_TOTAL.labels(status=JobState.FAILED.value).inc()
        self._audit.log_action(
            AuditActionInput(
                entity_type=AuditEntityType.ANONYMIZATION_JOB,
                entity_id=job_id,
                action=AuditActionType.FAILED,
                details={"entity_type": entity_type, "entity_id": entity_id, "error": message},
                severity=Severity.CRITICAL,
                category=AuditCategory.COMPLIANCE,
            )
        )
        logger.error(f"anonymization_failed: {job_id} {message}")
        return status

    def _notify_completion(self, contact: str, job_id: str, entity_type: str, reason: str) -> None:
        """Tell the data subject, logging delivery failures."""
        try:
            self._notifier.notify(
                contact,
                "anonymization-completed",
                {"job_id": job_id, "entity_type": entity_type, "reason": reason},
            )
        except NotificationError as e:
            logger.warning(f"anonymization_notification_failed: {job_id}: {e}")

    # =========================================================================
    # JOB MANAGEMENT
    # =========================================================================

    def cancel_job(self, job_id: str, cancelled_by: str | None = None) -> bool:
        """Cancel a job that has not started.

        Args:
            job_id: Job identifier.
            cancelled_by: User cancelling the job.

        Returns:
            True if cancelled, False if unknown or no longer pending.
        """
        with self._db.session() as session:
            job = AnonymizationJobRepository(session).get_by_id(job_id)
            if job is None or job.status != JobState.PENDING:
                return False
            job.status = JobState.CANCELLED.value
            job.completed_at = self._clock()
            target = f"{job.entity_type}:{job.entity_id}"

        ANONYMIZATION_JOBS_PENDING.dec()
        ANONYMIZATION_JOBS_TOTAL.labels(status=JobState.CANCELLED.value).inc()
        self._audit.log_action(
            AuditActionInput(
                entity_type=AuditEntityType.ANONYMIZATION_JOB,
                entity_id=job_id,
                action=AuditActionType.FAILED,
                user_id=cancelled_by,
                details={"target": target, "cancelled": True},
                severity=Severity.MEDIUM,
                category=AuditCategory.COMPLIANCE,
            )
        )
        logger.info(f"anonymization_cancelled: {job_id}")
        return True

    def get_job_status(self, job_id: str) -> JobStatus | None:
        """Current view of a job, or None if unknown."""
        with self._db.session() as session:
            job = AnonymizationJobRepository(session).get_by_id(job_id)
            return JobStatus.from_model(job) if job else None

    def generate_anonymization_report(self, job_id: str) -> AnonymizationReport:
        """Report of one job: strategy applied per field and GDPR checks.

        Erased statistical fields report the remove strategy; fields
        without a rule of the entity type report unknown.

        Args:
            job_id: Job identifier.

        Returns:
            AnonymizationReport.

        Raises:
            JobNotFoundError: If the job does not exist.
        """
        status = self.get_job_status(job_id)
        if status is None:
            raise JobNotFoundError(f"Anonymization job not found: {job_id}")

        handler = self._registry.get(status.entity_type)
        strategies = {rule.field_name: rule.strategy.value for rule in handler.rules}
        strategies.update(
            (name, AnonymizationStrategy.REMOVE.value)
            for name in handler.statistical_fields
            if name not in strategies
        )
        return AnonymizationReport(
            job_id=status.id,
            entity_type=status.entity_type,
            entity_id=status.entity_id,
            reason=status.reason,
            status=status.status,
            executed_at=status.completed_at,
            records_processed=status.affected_records,
            fields_anonymized={
                name: strategies.get(name, "unknown") for name in status.anonymized_fields
            },
            preserved_data=list(status.preserved_fields),
            statistics_generated=status.preserve_statistics,
            compliance_checks={
                "gdpr_compliant": status.status == JobState.COMPLETED,
                "data_minimized": bool(status.anonymized_fields),
                "purpose_limitation": True,
                "accuracy_maintained": bool(status.preserved_fields),
            },
        )

    def active_job_for(self, entity_type: str, entity_id: str) -> JobStatus | None:
        """Pending or running job of a target, if any."""
        with self._db.session() as session:
            job = AnonymizationJobRepository(session).find_active_for(entity_type, entity_id)
            return JobStatus.from_model(job) if job else None

    def get_job_statistics(self) -> dict[str, int]:
        """Job counts per status (every status present)."""
        with self._db.session() as session:
            counts = AnonymizationJobRepository(session).count_by_status()
        stats = {state.value: counts.get(state.value, 0) for state in JobState}
        stats["total"] = sum(counts.values())
        return stats

    def recover_stale_jobs(self) -> dict[str, int]:
        """Startup recovery of jobs left behind by a previous process.

        Running jobs are failed; pending jobs are dispatched again, at
        their scheduled time when it lies in the future.

        Returns:
            Counts of failed and re-dispatched jobs.
        """
        with self._db.session() as session:
            repo = AnonymizationJobRepository(session)
            interrupted = repo.by_status(JobState.RUNNING.value)
            for job in interrupted:
                job.status = JobState.FAILED.value
                job.completed_at = self._clock()
                job.errors = [*job.errors, INTERRUPTED_ERROR]
            failed_ids = [job.id for job in interrupted]
            pending = [(job.id, job.scheduled_for) for job in repo.by_status(JobState.PENDING.value)]

        for job_id in failed_ids:
            ANONYMIZATION_JOBS_TOTAL.labels(status=JobState.FAILED.value).inc()
            self._audit.log_action(
                AuditActionInput(
                    entity_type=AuditEntityType.ANONYMIZATION_JOB,
                    entity_id=job_id,
                    action=AuditActionType.FAILED,
                    details={"error": INTERRUPTED_ERROR},
                    severity=Severity.HIGH,
                    category=AuditCategory.SYSTEM,
                )
            )

        ANONYMIZATION_JOBS_PENDING.set(len(pending))
        for job_id, scheduled_for in pending:
            self._dispatch(job_id, scheduled_for)

        logger.info(f"anonymization_recovery: failed={len(failed_ids)} redispatched={len(pending)}")
        return {"failed": len(failed_ids), "redispatched": len(pending)}

    # =========================================================================
    # INACTIVITY
    # =========================================================================

    def check_inactive_accounts(self) -> InactivityCheckResult:
        """Warn, then anonymize, students past the inactivity horizon.

        Returns:
            InactivityCheckResult.
        """
        result = InactivityCheckResult()
        if not self._config.enable_automatic_anonymization:
            logger.info("inactivity_check_disabled")
            return result

        now = self._clock()
        horizon = timedelta(days=self._config.student_inactivity_days)
        warning_lead = timedelta(days=self._config.warning_days_before_anonymization)

        with self._db.session() as session:
            candidates = [
                (str(s.id), s.last_activity_at, s.inactivity_warning_sent_at, s.parent_email)
                for s in StudentRepository(session).inactive_since(now - horizon + warning_lead)
            ]

        for student_id, last_activity, warned_at, parent_email in candidates:
            if now >= ensure_utc(last_activity) + horizon:
                if self._schedule_inactivity_job(student_id):
                    result.anonymizations_scheduled += 1
            elif warned_at is None and parent_email:
                if self._send_inactivity_warning(student_id, parent_email, last_activity + horizon):
                    result.warnings_sent += 1

        logger.info(
            f"inactivity_check_done: warnings={result.warnings_sent} "
            f"scheduled={result.anonymizations_scheduled}"
        )
        return result

    def _schedule_inactivity_job(self, student_id: str) -> bool:
        """Schedule an inactivity anonymization unless one is in flight."""
        try:
            self.schedule_anonymization(
                AnonymizationConfig(
                    entity_type="student",
                    entity_id=student_id,
                    reason=AnonymizationReason.INACTIVITY,
                    immediate_execution=True,
                    requested_by="system",
                )
            )
        except DuplicateJobError:
            logger.info(f"inactivity_job_already_active: student {student_id}")
            return False
        return True

    def _send_inactivity_warning(
        self,
        student_id: str,
        parent_email: str,
        anonymization_date: datetime,
    ) -> bool:
        """Send the one-time warning and record it."""
        try:
            self._notifier.notify(
                parent_email,
                "inactivity-warning",
                {
                    "student_id": student_id,
                    "anonymization_date": ensure_utc(anonymization_date).strftime("%d/%m/%Y"),
                },
            )
        except NotificationError as e:
            logger.warning(f"inactivity_warning_failed: student {student_id}: {e}")
            return False

        with self._db.session() as session:
            student = StudentRepository(session).get_by_id(int(student_id))
            student.inactivity_warning_sent_at = self._clock()

        self._audit.log_action(
            AuditActionInput(
                entity_type=AuditEntityType.STUDENT,
                entity_id=student_id,
                action=AuditActionType.UPDATE,
                student_id=student_id,
                details={
                    "inactivity_warning_sent": True,
                    "anonymization_date": ensure_utc(anonymization_date).isoformat(),
                },
                severity=Severity.LOW,
                category=AuditCategory.COMPLIANCE,
            )
        )
        return True
