"""Background job settings.

Jobs are dispatched through a Celery broker. Eager mode runs every
job in the calling process, for local use without a broker.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulerSettings(BaseSettings):
    """Celery broker configuration.

    Attributes:
        broker_url: Celery broker.
        result_backend: Celery result backend.
        queue_name: Queue receiving compliance jobs.
        always_eager: Run jobs in-process instead of through the broker.
    """

    broker_url: str = Field(default="redis://localhost:6379/0", alias="CELERY_BROKER_URL")
    result_backend: str = Field(default="redis://localhost:6379/1", alias="CELERY_RESULT_BACKEND")
    queue_name: str = Field(default="compliance", alias="CELERY_QUEUE_NAME")
    always_eager: bool = Field(default=False, alias="CELERY_ALWAYS_EAGER")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
