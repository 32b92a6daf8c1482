"""Background dispatch: Celery transport and inline scheduler."""

from reved_compliance.services.scheduling.celery_backend import (
    RUN_JOB_TASK,
    CeleryScheduler,
    celery_app,
    create_celery_app,
)
from reved_compliance.services.scheduling.scheduler import (
    DeferredTask,
    InlineScheduler,
    JobScheduler,
    PeriodicTask,
    SingleFlight,
    UnknownTaskError,
    run_guarded,
)

__all__ = [
    "RUN_JOB_TASK",
    "CeleryScheduler",
    "DeferredTask",
    "InlineScheduler",
    "JobScheduler",
    "PeriodicTask",
    "SingleFlight",
    "UnknownTaskError",
    "celery_app",
    "create_celery_app",
    "run_guarded",
]
