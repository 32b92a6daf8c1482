"""Tests for job dispatch."""

from datetime import timedelta
from typing import Any

import pytest
from celery import Celery

from reved_compliance.services.scheduling import (
    RUN_JOB_TASK,
    CeleryScheduler,
    InlineScheduler,
    SingleFlight,
    UnknownTaskError,
    create_celery_app,
    run_guarded,
)
from reved_compliance.services.scheduling import celery_backend
from reved_compliance.settings import SchedulerSettings


def _boom(*_: Any) -> None:
    raise RuntimeError("boom")


@pytest.mark.unit
class TestGuards:
    """Failure isolation and overlap protection."""

    @staticmethod
    def test_run_guarded_returns_result() -> None:
        assert run_guarded(lambda: 42, "answer") == 42

    @staticmethod
    def test_run_guarded_swallows_failure() -> None:
        assert run_guarded(_boom, "boom") is None

    @staticmethod
    def test_single_flight_skips_reentrant_call() -> None:
        results: list[Any] = []

        def task() -> str:
            results.append(flight())
            return "done"

        flight = SingleFlight("reentrant", task)

        assert flight() == "done"
        assert results == [None]
        assert flight.skipped == 1
        assert flight.running is False

    @staticmethod
    def test_single_flight_releases_after_failure() -> None:
        flight = SingleFlight("failing", _boom)

        with pytest.raises(RuntimeError):
            flight()

        assert flight.running is False


@pytest.mark.unit
class TestInlineScheduler:
    """Synchronous dispatch driven by the test clock."""

    @staticmethod
    def test_run_now_executes_immediately(scheduler: InlineScheduler) -> None:
        calls: list[str] = []
        scheduler.register("record", calls.append)

        scheduler.run_now("record", "ran")

        assert calls == ["ran"]

    @staticmethod
    def test_run_now_isolates_failures(scheduler: InlineScheduler) -> None:
        scheduler.register("boom", _boom)

        scheduler.run_now("boom", 1)

    @staticmethod
    def test_unknown_name_is_rejected(scheduler: InlineScheduler, clock: Any) -> None:
        with pytest.raises(UnknownTaskError):
            scheduler.run_now("missing")
        with pytest.raises(UnknownTaskError):
            scheduler.run_at(clock() + timedelta(hours=1), "missing")

        assert scheduler.deferred == []

    @staticmethod
    def test_run_at_past_time_runs_now(scheduler: InlineScheduler, clock: Any) -> None:
        calls: list[str] = []
        scheduler.register("record", calls.append)

        scheduler.run_at(clock() - timedelta(minutes=1), "record", "ran")

        assert calls == ["ran"]
        assert scheduler.deferred == []

    @staticmethod
    def test_run_at_future_waits_for_run_due(scheduler: InlineScheduler, clock: Any) -> None:
        calls: list[str] = []
        scheduler.register("record", calls.append)
        scheduler.run_at(clock() + timedelta(hours=2), "record", "ran")

        assert scheduler.run_due() == 0
        clock.advance(hours=2)
        assert scheduler.run_due() == 1

        assert calls == ["ran"]
        assert scheduler.deferred == []

    @staticmethod
    def test_run_every_registers_without_running(scheduler: InlineScheduler) -> None:
        calls: list[str] = []

        scheduler.run_every(timedelta(hours=1), lambda: calls.append("tick"), "ticker")

        assert calls == []
        assert scheduler.periodic["ticker"].interval == timedelta(hours=1)
        scheduler.run_periodic("ticker")
        assert calls == ["tick"]

    @staticmethod
    def test_periodic_task_is_dispatchable_by_name(scheduler: InlineScheduler) -> None:
        calls: list[str] = []
        scheduler.run_every(timedelta(hours=1), lambda: calls.append("tick"), "ticker")

        scheduler.run_now("ticker")

        assert calls == ["tick"]

    @staticmethod
    def test_shutdown_drops_pending_work(scheduler: InlineScheduler, clock: Any) -> None:
        scheduler.register("noop", lambda: None)
        scheduler.run_at(clock() + timedelta(days=1), "noop")
        scheduler.run_every(timedelta(hours=1), lambda: None, "ticker")

        scheduler.shutdown()

        assert scheduler.deferred == []
        assert scheduler.periodic == {}


# =============================================================================
# CELERY
# =============================================================================


@pytest.fixture
def eager_app(monkeypatch: pytest.MonkeyPatch) -> Celery:
    """Eager Celery app over in-memory transports, with isolated handlers."""
    monkeypatch.setattr(celery_backend, "TASK_HANDLERS", {})
    return create_celery_app(
        SchedulerSettings(
            CELERY_BROKER_URL="memory://",
            CELERY_RESULT_BACKEND="cache+memory://",
            CELERY_QUEUE_NAME="compliance-test",
            CELERY_ALWAYS_EAGER=True,
        )
    )


@pytest.mark.unit
class TestCeleryScheduler:
    """Dispatch through the Celery job task."""

    @staticmethod
    def test_app_configuration(eager_app: Celery) -> None:
        assert eager_app.conf.task_default_queue == "compliance-test"
        assert eager_app.conf.task_serializer == "json"
        assert RUN_JOB_TASK in eager_app.tasks

    @staticmethod
    def test_run_now_executes_registered_handler(eager_app: Celery) -> None:
        calls: list[str] = []
        scheduler = CeleryScheduler(eager_app)
        scheduler.register("record", calls.append)

        scheduler.run_now("record", "job-1")

        assert calls == ["job-1"]

    @staticmethod
    def test_run_at_sends_eta(eager_app: Celery, monkeypatch: pytest.MonkeyPatch, clock: Any) -> None:
        sent: list[dict[str, Any]] = []
        task = eager_app.tasks[RUN_JOB_TASK]
        monkeypatch.setattr(task, "apply_async", lambda **kwargs: sent.append(kwargs))
        scheduler = CeleryScheduler(eager_app)
        scheduler.register("record", lambda job_id: None)
        when = clock() + timedelta(hours=3)

        scheduler.run_at(when, "record", "job-1")

        assert sent == [{"args": ("record", "job-1"), "eta": when}]

    @staticmethod
    def test_unknown_name_is_not_sent(eager_app: Celery) -> None:
        scheduler = CeleryScheduler(eager_app)

        with pytest.raises(UnknownTaskError):
            scheduler.run_now("missing")

    @staticmethod
    def test_worker_task_rejects_unknown_name(eager_app: Celery) -> None:
        with pytest.raises(UnknownTaskError):
            celery_backend.run_job("missing")

    @staticmethod
    def test_run_every_adds_beat_entry(eager_app: Celery) -> None:
        calls: list[str] = []
        scheduler = CeleryScheduler(eager_app)

        scheduler.run_every(timedelta(hours=1), lambda: calls.append("tick"), "ticker")

        assert eager_app.conf.beat_schedule["ticker"] == {
            "task": RUN_JOB_TASK,
            "schedule": 3600.0,
            "args": ("ticker",),
        }
        assert isinstance(celery_backend.TASK_HANDLERS["ticker"], SingleFlight)
        scheduler.run_now("ticker")
        assert calls == ["tick"]

    @staticmethod
    def test_shutdown_removes_beat_entries(eager_app: Celery) -> None:
        scheduler = CeleryScheduler(eager_app)
        scheduler.run_every(timedelta(hours=1), lambda: None, "ticker")

        scheduler.shutdown()

        assert "ticker" not in eager_app.conf.beat_schedule
        assert "ticker" not in celery_backend.TASK_HANDLERS
