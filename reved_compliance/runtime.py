"""Service wiring and background task registration.

Builds every compliance service around one database connection and
one scheduler, then registers the periodic tasks:

- retention execution (daily)
- retention report (weekly)
- inactivity check (daily)
- consent expiry sweep (hourly)
"""

from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

from reved_compliance.database.connection import DatabaseConnection, get_database
from reved_compliance.services.anonymization.engine import AnonymizationEngine
from reved_compliance.services.audit import (
    AnomalyDetector,
    AuditTrailService,
    ComplianceReporter,
)
from reved_compliance.services.consent import ParentalConsentService
from reved_compliance.services.crypto import CryptoGateway, get_crypto_gateway
from reved_compliance.services.entities import EntityRegistry, build_registry
from reved_compliance.services.notifications import Notifier, build_notifier
from reved_compliance.services.retention import RetentionReport, RetentionService
from reved_compliance.services.scheduling import CeleryScheduler, JobScheduler
from reved_compliance.settings import ConsentSettings, settings
from reved_compliance.utils.clock import Clock, utc_now
from reved_compliance.utils.logger import setup_logger, setup_structured_logging

logger = setup_logger("runtime")

RETENTION_TASK = "retention-execution"
RETENTION_REPORT_TASK = "retention-report"
INACTIVITY_TASK = "inactivity-check"
CONSENT_EXPIRY_TASK = "consent-expiry"


@dataclass
class ComplianceRuntime:
    """Every compliance service sharing one database and scheduler."""

    database: DatabaseConnection
    crypto: CryptoGateway
    notifier: Notifier
    scheduler: JobScheduler
    clock: Clock
    detector: AnomalyDetector
    audit: AuditTrailService
    reporter: ComplianceReporter
    registry: EntityRegistry
    anonymization: AnonymizationEngine
    retention: RetentionService
    consent: ParentalConsentService
    started: bool = field(default=False, init=False)

    def init_schema(self) -> int:
        """Create tables and the default retention policies.

        Returns:
            Number of default policies created.
        """
        self.database.init_schema()
        return self.retention.ensure_default_policies()

    def run_retention_report(self) -> RetentionReport:
        """Retention report over the last reporting interval."""
        now = self.clock()
        start = now - timedelta(days=settings.retention.report_interval_days)
        return self.retention.generate_retention_report(start, now)

    def start(self) -> None:
        """Recover jobs, install default policies and register periodic tasks."""
        if self.started:
            return

        setup_structured_logging()
        self.init_schema()

        recovered = self.anonymization.recover_stale_jobs()
        logger.info(f"stale_jobs_recovered: {recovered}")

        self.register_periodic_tasks()
        self.started = True
        logger.info("compliance_runtime_started")

    def register_periodic_tasks(self) -> None:
        """Hand the four periodic tasks to the scheduler."""
        self.scheduler.run_every(
            timedelta(hours=settings.retention.execution_interval_hours),
            self.retention.execute_retention_policies,
            RETENTION_TASK,
        )
        self.scheduler.run_every(
            timedelta(days=settings.retention.report_interval_days),
            self.run_retention_report,
            RETENTION_REPORT_TASK,
        )
        self.scheduler.run_every(
            timedelta(hours=settings.anonymization.inactivity_check_interval_hours),
            self.anonymization.check_inactive_accounts,
            INACTIVITY_TASK,
        )
        self.scheduler.run_every(
            timedelta(hours=settings.consent.expiry_check_interval_hours),
            self.consent.expire_stale_consents,
            CONSENT_EXPIRY_TASK,
        )

    def shutdown(self) -> None:
        """Stop background work and release resources."""
        self.scheduler.shutdown()
        close = getattr(self.notifier, "close", None)
        if callable(close):
            close()
        self.database.dispose()
        self.started = False
        logger.info("compliance_runtime_stopped")


def build_runtime(
    database: DatabaseConnection | None = None,
    crypto: CryptoGateway | None = None,
    notifier: Notifier | None = None,
    scheduler: JobScheduler | None = None,
    clock: Clock = utc_now,
    reports_dir: Path | None = None,
    consent_config: ConsentSettings | None = None,
) -> ComplianceRuntime:
    """Wire the compliance services.

    Args:
        database: Database connection (application-wide when None).
        crypto: Crypto gateway (application-wide when None).
        notifier: Notification sender (built from settings when None).
        scheduler: Job scheduler (Celery broker when None).
        clock: Time source shared by every service.
        reports_dir: Export directory of compliance reports.
        consent_config: Consent settings (global settings when None).

    Returns:
        ComplianceRuntime, not yet started.
    """
    database = database or get_database()
    crypto = crypto or get_crypto_gateway()
    notifier = notifier or build_notifier()
    scheduler = scheduler or CeleryScheduler()

    detector = AnomalyDetector(database)
    audit = AuditTrailService(database, crypto, clock=clock, detector=detector)
    registry = build_registry(clock)
    anonymization = AnonymizationEngine(
        database, audit, scheduler, notifier, registry=registry, clock=clock
    )

    return ComplianceRuntime(
        database=database,
        crypto=crypto,
        notifier=notifier,
        scheduler=scheduler,
        clock=clock,
        detector=detector,
        audit=audit,
        reporter=ComplianceReporter(database, audit, clock=clock, reports_dir=reports_dir),
        registry=registry,
        anonymization=anonymization,
        retention=RetentionService(
            database, audit, anonymization, crypto, notifier, registry=registry, clock=clock
        ),
        consent=ParentalConsentService(
            database, audit, anonymization, crypto, notifier, clock=clock, config=consent_config
        ),
    )
