"""Prometheus metrics for the compliance core.

Counters are incremented by the services; exposition is left to the
hosting process (``prometheus_client.start_http_server`` in ``serve``).
"""

from prometheus_client import Counter, Gauge

# =============================================================================
# AUDIT METRICS
# =============================================================================

AUDIT_ENTRIES_TOTAL = Counter(
    "reved_audit_entries_total",
    "Audit entries written",
    ["category", "severity"],
)

AUDIT_WRITE_FAILURES_TOTAL = Counter(
    "reved_audit_write_failures_total",
    "Audit writes that failed and were swallowed",
)

SECURITY_ALERTS_TOTAL = Counter(
    "reved_security_alerts_total",
    "Security alerts raised by anomaly detection",
    ["alert_type"],
)

# =============================================================================
# ANONYMIZATION METRICS
# =============================================================================

ANONYMIZATION_JOBS_TOTAL = Counter(
    "reved_anonymization_jobs_total",
    "Anonymization job transitions",
    ["status"],
)

ANONYMIZATION_JOBS_PENDING = Gauge(
    "reved_anonymization_jobs_pending",
    "Anonymization jobs waiting for dispatch",
)

# =============================================================================
# RETENTION METRICS
# =============================================================================

RETENTION_RECORDS_TOTAL = Counter(
    "reved_retention_records_total",
    "Entities handled by retention policies",
    ["action", "outcome"],
)

# =============================================================================
# CONSENT METRICS
# =============================================================================

CONSENT_TRANSITIONS_TOTAL = Counter(
    "reved_consent_transitions_total",
    "Parental consent state transitions",
    ["status"],
)

# =============================================================================
# SCHEDULER METRICS
# =============================================================================

SCHEDULED_RUNS_SKIPPED_TOTAL = Counter(
    "reved_scheduled_runs_skipped_total",
    "Periodic runs skipped because the previous run was still active",
    ["task"],
)
