"""Compliance configuration settings.

Thresholds and intervals for the audit log, the anonymization engine,
the retention scheduler and the parental consent workflow.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AuditSettings(BaseSettings):
    """Audit log and anomaly detection configuration.

    Attributes:
        suspicious_read_threshold: Student reads tolerated per window.
        suspicious_read_window_hours: Window for the read counter.
        failed_login_threshold: Denied sessions tolerated per IP and window.
        failed_login_window_hours: Window for the denial counter.
        max_query_limit: Upper bound on query page size.
        correlation_cache_size: Users whose correlation id is kept in memory.
    """

    suspicious_read_threshold: int = Field(default=10, alias="AUDIT_SUSPICIOUS_READ_THRESHOLD")
    suspicious_read_window_hours: int = Field(default=24, alias="AUDIT_SUSPICIOUS_READ_WINDOW_HOURS")
    failed_login_threshold: int = Field(default=5, alias="AUDIT_FAILED_LOGIN_THRESHOLD")
    failed_login_window_hours: int = Field(default=1, alias="AUDIT_FAILED_LOGIN_WINDOW_HOURS")
    max_query_limit: int = Field(default=1000, alias="AUDIT_MAX_QUERY_LIMIT")
    correlation_cache_size: int = Field(default=10_000, ge=1, alias="AUDIT_CORRELATION_CACHE_SIZE")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class AnonymizationSettings(BaseSettings):
    """Inactivity-driven anonymization configuration.

    Attributes:
        student_inactivity_days: Inactivity horizon for students.
        parent_inactivity_days: Inactivity horizon for parents.
        admin_inactivity_days: Inactivity horizon for administrators.
        warning_days_before_anonymization: Lead time of the warning email.
        enable_automatic_anonymization: Run the daily inactivity sweep.
        preserve_educational_statistics: Default for new jobs.
        inactivity_check_interval_hours: Sweep interval.
    """

    student_inactivity_days: int = Field(default=730, alias="STUDENT_INACTIVITY_DAYS")
    parent_inactivity_days: int = Field(default=1095, alias="PARENT_INACTIVITY_DAYS")
    admin_inactivity_days: int = Field(default=1460, alias="ADMIN_INACTIVITY_DAYS")
    warning_days_before_anonymization: int = Field(
        default=30, alias="ANONYMIZATION_WARNING_DAYS"
    )
    enable_automatic_anonymization: bool = Field(default=True, alias="ENABLE_AUTO_ANONYMIZATION")
    preserve_educational_statistics: bool = Field(
        default=True, alias="PRESERVE_EDUCATIONAL_STATISTICS"
    )
    inactivity_check_interval_hours: int = Field(default=24, alias="INACTIVITY_CHECK_INTERVAL_HOURS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_warning_window(self) -> "AnonymizationSettings":
        """Warning lead time must fit inside the student horizon."""
        if self.warning_days_before_anonymization >= self.student_inactivity_days:
            raise ValueError("ANONYMIZATION_WARNING_DAYS must be below STUDENT_INACTIVITY_DAYS")
        return self


class RetentionSettings(BaseSettings):
    """Retention scheduler configuration.

    Attributes:
        execution_interval_hours: Interval of the policy run.
        report_interval_days: Interval of the retention report.
        recent_activity_days: Window of the recent_activity exception.
        default_notification_days: Notice period of the default policies.
    """

    execution_interval_hours: int = Field(default=24, alias="RETENTION_INTERVAL_HOURS")
    report_interval_days: int = Field(default=7, alias="RETENTION_REPORT_INTERVAL_DAYS")
    recent_activity_days: int = Field(default=30, alias="RETENTION_RECENT_ACTIVITY_DAYS")
    default_notification_days: int = Field(default=30, alias="RETENTION_NOTIFICATION_DAYS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class ConsentSettings(BaseSettings):
    """Parental consent workflow configuration.

    Attributes:
        expiry_days: Validity of a consent request.
        frontend_url: Base URL used to build verification links.
        expiry_check_interval_hours: Interval of the expiry sweep.
    """

    expiry_days: int = Field(default=7, alias="CONSENT_EXPIRY_DAYS")
    frontend_url: str = Field(default="http://localhost:3000", alias="FRONTEND_URL")
    expiry_check_interval_hours: int = Field(default=1, alias="CONSENT_EXPIRY_CHECK_HOURS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
