"""Security anomaly detection over freshly written audit entries.

Rules:
- suspicious_access: more than N reads of one student within the window.
- multiple_failed_logins: more than N denied sessions from one IP within
  the window.

One burst raises one alert: no new alert of the same type is created
for an entity while an unresolved one exists inside the window.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from reved_compliance.database.connection import DatabaseConnection
from reved_compliance.database.models import SecurityAlert
from reved_compliance.database.repositories import AuditLogRepository, SecurityAlertRepository
from reved_compliance.monitoring.metrics import SECURITY_ALERTS_TOTAL
from reved_compliance.services.audit.schemas import AlertView, AuditRecord, Severity
from reved_compliance.settings import AuditSettings, settings
from reved_compliance.utils.logger import setup_logger

logger = setup_logger("services.audit.anomalies")


@dataclass(frozen=True)
class AnomalyRule:
    """Threshold rule evaluated after an audit write.

    Attributes:
        alert_type: Type of the raised alert.
        entity_type: Entity type the rule watches.
        action: Action the rule watches.
        threshold: Count that must be exceeded.
        window: Counting window.
        severity: Severity of the raised alert.
        by_ip: Count per caller IP instead of per entity.
    """

    alert_type: str
    entity_type: str
    action: str
    threshold: int
    window: timedelta
    severity: Severity
    by_ip: bool = False

    def matches(self, entry: AuditRecord) -> bool:
        """Whether the rule applies to an entry."""
        return entry.entity_type == self.entity_type and entry.action == self.action

    def describe(self, count: int) -> str:
        """Alert description for a given count."""
        hours = int(self.window.total_seconds() // 3600)
        if self.by_ip:
            return f"Multiple failed login attempts from the same IP ({count} in {hours}h)"
        return f"Unusual number of accesses to student data ({count} in {hours}h)"


def default_rules(config: AuditSettings | None = None) -> list[AnomalyRule]:
    """Rules built from the audit settings.

    Args:
        config: Audit settings (global settings when None).

    Returns:
        Anomaly rules.
    """
    config = config or settings.audit
    return [
        AnomalyRule(
            alert_type="suspicious_access",
            entity_type="student",
            action="read",
            threshold=config.suspicious_read_threshold,
            window=timedelta(hours=config.suspicious_read_window_hours),
            severity=Severity.MEDIUM,
        ),
        AnomalyRule(
            alert_type="multiple_failed_logins",
            entity_type="user_session",
            action="access_denied",
            threshold=config.failed_login_threshold,
            window=timedelta(hours=config.failed_login_window_hours),
            severity=Severity.HIGH,
            by_ip=True,
        ),
    ]


class AnomalyDetector:
    """Evaluates anomaly rules and persists the resulting alerts."""

    def __init__(
        self,
        database: DatabaseConnection,
        rules: list[AnomalyRule] | None = None,
    ) -> None:
        """Initialize the detector.

        Args:
            database: Database connection.
            rules: Rules to evaluate (defaults from settings).
        """
        self._db = database
        self._rules = rules if rules is not None else default_rules()

    def detect(self, entry: AuditRecord) -> list[AlertView]:
        """Evaluate every matching rule for a new entry.

        Args:
            entry: Entry that was just written.

        Returns:
            Alerts raised (empty when nothing is anomalous).
        """
        alerts: list[AlertView] = []
        for rule in self._rules:
            if not rule.matches(entry):
                continue
            if rule.by_ip and not entry.ip_address:
                continue
            alert = self._evaluate(rule, entry)
            if alert is not None:
                alerts.append(alert)
        return alerts

    def _evaluate(self, rule: AnomalyRule, entry: AuditRecord) -> AlertView | None:
        """Count entries in the window and raise an alert if needed."""
        since: datetime = entry.timestamp - rule.window
        subject_id = entry.ip_address if rule.by_ip else entry.entity_id

        with self._db.session() as session:
            audit_repo = AuditLogRepository(session)
            if rule.by_ip:
                ids = audit_repo.ids_for_ip_since(subject_id, rule.entity_type, rule.action, since)
            else:
                ids = audit_repo.ids_for_entity_since(
                    rule.entity_type, subject_id, rule.action, since
                )

            if len(ids) <= rule.threshold:
                return None

            alert_repo = SecurityAlertRepository(session)
            if alert_repo.find_open(rule.alert_type, rule.entity_type, subject_id, since):
                logger.debug(f"alert_already_open: {rule.alert_type} {subject_id}")
                return None

            alert = alert_repo.create(
                SecurityAlert(
                    id=str(uuid.uuid4()),
                    type=rule.alert_type,
                    severity=rule.severity.value,
                    entity_type=rule.entity_type,
                    entity_id=subject_id,
                    description=rule.describe(len(ids)),
                    detected_at=entry.timestamp,
                    audit_entries=ids,
                    resolved=False,
                )
            )
            view = AlertView.from_model(alert)

        SECURITY_ALERTS_TOTAL.labels(alert_type=rule.alert_type).inc()
        return view
