"""Background job dispatch.

``JobScheduler`` is the seam between the services and the transport.
Services register named handlers once, then dispatch them by name with
JSON-serializable arguments: immediately, at a given time, or at a
fixed interval. Periodic tasks are wrapped in :class:`SingleFlight` so
a slow run is never overlapped by the next tick.
"""

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from functools import partial
from typing import Any, Protocol

from reved_compliance.monitoring.metrics import SCHEDULED_RUNS_SKIPPED_TOTAL
from reved_compliance.services.errors import ComplianceError
from reved_compliance.utils.clock import Clock, utc_now
from reved_compliance.utils.logger import setup_logger

logger = setup_logger("services.scheduling")

Task = Callable[[], Any]
Handler = Callable[..., Any]


class UnknownTaskError(ComplianceError):
    """Raised when a job names a handler that was never registered."""


class JobScheduler(Protocol):
    """Dispatch facility used by the compliance services."""

    def register(self, name: str, handler: Handler) -> None:
        """Make a handler dispatchable under a name."""
        ...

    def run_now(self, name: str, *args: Any) -> None:
        """Run a registered handler as soon as possible."""
        ...

    def run_at(self, when: datetime, name: str, *args: Any) -> None:
        """Run a registered handler at a given time."""
        ...

    def run_every(self, interval: timedelta, func: Task, name: str) -> None:
        """Register a task and run it at a fixed interval."""
        ...

    def shutdown(self) -> None:
        """Stop dispatching and drop pending work."""
        ...


def run_guarded(func: Task, name: str) -> Any:
    """Run a background task, logging instead of propagating failures.

    Args:
        func: Task to run.
        name: Task name for logs.

    Returns:
        Task result, or None on failure.
    """
    try:
        return func()
    except Exception:
        logger.exception(f"task_failed: {name}")
        return None


class SingleFlight:
    """Skip-if-running guard around a task.

    Calls made while a previous call is still executing return None
    immediately instead of running concurrently.
    """

    def __init__(self, name: str, func: Task) -> None:
        """Wrap a task.

        Args:
            name: Task name for logs and metrics.
            func: Task to guard.
        """
        self.name = name
        self._func = func
        self._lock = threading.Lock()
        self.skipped = 0

    @property
    def running(self) -> bool:
        """Whether a call is in flight."""
        return self._lock.locked()

    def __call__(self) -> Any:
        """Run the task unless a previous call is still running."""
        if not self._lock.acquire(blocking=False):
            self.skipped += 1
            SCHEDULED_RUNS_SKIPPED_TOTAL.labels(task=self.name).inc()
            logger.warning(f"task_skipped_already_running: {self.name}")
            return None
        try:
            return self._func()
        finally:
            self._lock.release()


# =============================================================================
# INLINE SCHEDULER
# =============================================================================


@dataclass
class DeferredTask:
    """Job waiting for its time in an :class:`InlineScheduler`."""

    when: datetime
    name: str
    args: tuple[Any, ...] = ()


@dataclass
class PeriodicTask:
    """Task registered on an :class:`InlineScheduler`."""

    interval: timedelta
    flight: SingleFlight


@dataclass
class InlineScheduler:
    """Synchronous scheduler for one-shot commands and tests.

    ``run_now`` executes immediately in the calling thread; deferred
    and periodic tasks are kept until :meth:`run_due` or
    :meth:`run_periodic` is called.
    """

    clock: Clock = utc_now
    handlers: dict[str, Handler] = field(default_factory=dict)
    deferred: list[DeferredTask] = field(default_factory=list)
    periodic: dict[str, PeriodicTask] = field(default_factory=dict)

    def register(self, name: str, handler: Handler) -> None:
        """Make a handler dispatchable under a name."""
        self.handlers[name] = handler

    def _resolve(self, name: str) -> Handler:
        handler = self.handlers.get(name)
        if handler is None:
            raise UnknownTaskError(f"No handler registered for task: {name}")
        return handler

    def _execute(self, name: str, args: tuple[Any, ...]) -> Any:
        return run_guarded(partial(self._resolve(name), *args), name)

    def run_now(self, name: str, *args: Any) -> None:
        """Run a handler in the calling thread."""
        self._execute(name, args)

    def run_at(self, when: datetime, name: str, *args: Any) -> None:
        """Run now if due, keep for later otherwise."""
        self._resolve(name)
        if when <= self.clock():
            self.run_now(name, *args)
            return
        self.deferred.append(DeferredTask(when=when, name=name, args=args))

    def run_every(self, interval: timedelta, func: Task, name: str) -> None:
        """Register a periodic task without starting it."""
        flight = SingleFlight(name, func)
        self.handlers[name] = flight
        self.periodic[name] = PeriodicTask(interval=interval, flight=flight)

    def run_due(self) -> int:
        """Run deferred jobs whose time has come.

        Returns:
            Number of jobs run.
        """
        now = self.clock()
        due = [task for task in self.deferred if task.when <= now]
        self.deferred = [task for task in self.deferred if task.when > now]
        for task in due:
            self._execute(task.name, task.args)
        return len(due)

    def run_periodic(self, name: str) -> Any:
        """Run one registered periodic task through its guard.

        Args:
            name: Registered task name.

        Returns:
            Task result.
        """
        return run_guarded(self.periodic[name].flight, name)

    def shutdown(self) -> None:
        """Drop pending work."""
        self.deferred.clear()
        self.periodic.clear()

