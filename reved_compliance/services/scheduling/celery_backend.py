"""Celery transport for compliance jobs.

Every job travels as one generic task carrying the handler name and
its JSON arguments; the worker resolves the name against the handlers
registered by the services it built. Periodic tasks become beat
entries of the same task.

Worker (dev):
    export CELERY_BROKER_URL=redis://localhost:6379/0
    celery -A reved_compliance.services.scheduling.celery_backend:celery_app worker -B -l info
"""

from datetime import datetime, timedelta
from functools import partial
from typing import Any

from celery import Celery
from celery.signals import worker_process_init

from reved_compliance.services.scheduling.scheduler import (
    Handler,
    SingleFlight,
    Task,
    UnknownTaskError,
    run_guarded,
)
from reved_compliance.settings import SchedulerSettings, settings
from reved_compliance.utils.logger import setup_logger

logger = setup_logger("services.scheduling.celery")

RUN_JOB_TASK = "reved_compliance.run_job"

# Handlers of this process, filled by CeleryScheduler.register
TASK_HANDLERS: dict[str, Handler] = {}


def run_job(name: str, *args: Any) -> Any:
    """Run a registered handler inside the worker.

    Args:
        name: Handler name.
        *args: Handler arguments.

    Returns:
        Handler result, or None when it failed.

    Raises:
        UnknownTaskError: If no handler is registered under the name.
    """
    handler = TASK_HANDLERS.get(name)
    if handler is None:
        raise UnknownTaskError(f"No handler registered for task: {name}")
    return run_guarded(partial(handler, *args), name)


def create_celery_app(config: SchedulerSettings | None = None) -> Celery:
    """Build the Celery application with the job task registered.

    Args:
        config: Broker settings (global settings when None).

    Returns:
        Configured Celery app.
    """
    config = config or settings.scheduler
    app = Celery("reved_compliance", broker=config.broker_url, backend=config.result_backend)
    app.conf.update(
        task_default_queue=config.queue_name,
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        task_acks_late=True,
        task_ignore_result=True,
        worker_prefetch_multiplier=1,
        task_always_eager=config.always_eager,
        enable_utc=True,
        timezone="UTC",
        beat_schedule={},
    )
    app.task(name=RUN_JOB_TASK)(run_job)
    return app


celery_app = create_celery_app()


class CeleryScheduler:
    """JobScheduler dispatching through a Celery broker."""

    def __init__(self, app: Celery | None = None) -> None:
        """Initialize the scheduler.

        Args:
            app: Celery application (module app when None).
        """
        self._app = app or celery_app
        self._periodic: list[str] = []

    @property
    def app(self) -> Celery:
        """Underlying Celery application."""
        return self._app

    def register(self, name: str, handler: Handler) -> None:
        """Make a handler dispatchable under a name."""
        TASK_HANDLERS[name] = handler

    def _send(self, name: str, args: tuple[Any, ...], eta: datetime | None = None) -> None:
        if name not in TASK_HANDLERS:
            raise UnknownTaskError(f"No handler registered for task: {name}")
        self._app.tasks[RUN_JOB_TASK].apply_async(args=(name, *args), eta=eta)

    def run_now(self, name: str, *args: Any) -> None:
        """Enqueue a job for immediate execution."""
        self._send(name, args)
        logger.info(f"task_enqueued: {name}")

    def run_at(self, when: datetime, name: str, *args: Any) -> None:
        """Enqueue a job with an ETA."""
        self._send(name, args, eta=when)
        logger.info(f"task_deferred: {name} at {when.isoformat()}")

    def run_every(self, interval: timedelta, func: Task, name: str) -> None:
        """Register a task and add its beat entry."""
        self.register(name, SingleFlight(name, func))
        beat_schedule = dict(self._app.conf.beat_schedule or {})
        beat_schedule[name] = {
            "task": RUN_JOB_TASK,
            "schedule": interval.total_seconds(),
            "args": (name,),
        }
        self._app.conf.beat_schedule = beat_schedule
        if name not in self._periodic:
            self._periodic.append(name)
        logger.info(f"task_registered: {name} every {interval.total_seconds():.0f}s")

    def shutdown(self) -> None:
        """Remove the beat entries of this scheduler."""
        beat_schedule = dict(self._app.conf.beat_schedule or {})
        for name in self._periodic:
            beat_schedule.pop(name, None)
            TASK_HANDLERS.pop(name, None)
        self._app.conf.beat_schedule = beat_schedule
        self._periodic.clear()
        logger.info("scheduler_stopped")


# =============================================================================
# WORKER BOOTSTRAP
# =============================================================================


@worker_process_init.connect
def _init_worker_process(**_: Any) -> None:
    """Register handlers in worker processes that did not inherit them."""
    if TASK_HANDLERS:
        return
    from reved_compliance.runtime import build_runtime

    build_runtime(scheduler=CeleryScheduler()).register_periodic_tasks()
    logger.info(f"worker_handlers_registered: {sorted(TASK_HANDLERS)}")
