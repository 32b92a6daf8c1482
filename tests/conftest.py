"""Fixtures pytest partagées pour le compliance core.

Every service runs over a throw-away SQLite file, a controllable clock,
an inline scheduler and a notifier that only records messages.
"""

import uuid
from collections.abc import Callable, Generator, Mapping
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from reved_compliance.database.connection import DatabaseConnection
from reved_compliance.database.models import (
    LearningSession,
    ParentalConsent,
    Student,
    StudentProgress,
)
from reved_compliance.database.repositories import (
    LearningSessionRepository,
    ParentalConsentRepository,
    StudentProgressRepository,
    StudentRepository,
)
from reved_compliance.runtime import ComplianceRuntime, build_runtime
from reved_compliance.services.crypto import CryptoGateway
from reved_compliance.services.errors import NotificationError
from reved_compliance.services.notifications import TEMPLATES
from reved_compliance.services.scheduling import DeferredTask, InlineScheduler
from reved_compliance.settings import ConsentSettings

START = datetime(2025, 3, 3, 9, 0, tzinfo=UTC)
PARENT_EMAIL = "parent@example.com"


# =============================================================================
# ENVIRONMENT
# =============================================================================


@pytest.fixture(autouse=True, scope="function")
def mock_env_for_tests(monkeypatch: pytest.MonkeyPatch) -> None:
    """Mock variables env pour tests reproductibles."""
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setenv("DEBUG", "false")
    monkeypatch.setenv("LOG_LEVEL", "INFO")
    monkeypatch.setenv("ENCRYPTION_KEY", "test_encryption_key_1234567890")
    monkeypatch.setenv("ENCRYPTION_SALT", "test-salt")
    monkeypatch.setenv("FRONTEND_URL", "https://app.revedkids.test")
    monkeypatch.delenv("MAIL_RELAY_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)


# =============================================================================
# TEST DOUBLES
# =============================================================================


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        """Move forward by a timedelta expressed as keyword arguments."""
        self.now += timedelta(**delta)
        return self.now


@dataclass
class SentMessage:
    """Message captured by RecordingNotifier."""

    to: str
    template: str
    variables: dict[str, Any]


@dataclass
class RecordingNotifier:
    """Notifier keeping every message instead of sending it."""

    sent: list[SentMessage] = field(default_factory=list)
    fail: bool = False

    def notify(self, to: str, template: str, variables: Mapping[str, Any]) -> None:
        if template not in TEMPLATES:
            raise NotificationError(f"Unknown notification template: {template}")
        if self.fail:
            raise NotificationError("relay down")
        self.sent.append(SentMessage(to=to, template=template, variables=dict(variables)))

    @property
    def templates(self) -> list[str]:
        """Templates sent, in order."""
        return [message.template for message in self.sent]

    def last(self, template: str) -> SentMessage:
        """Most recent message of a template."""
        return [message for message in self.sent if message.template == template][-1]


class QueuedScheduler(InlineScheduler):
    """Scheduler that never runs a job in the caller, like a broker.

    Every dispatched job waits for :meth:`run_due`.
    """

    def run_now(self, name: str, *args: Any) -> None:
        self._resolve(name)
        self.deferred.append(DeferredTask(when=self.clock(), name=name, args=args))

    def run_at(self, when: datetime, name: str, *args: Any) -> None:
        self._resolve(name)
        self.deferred.append(DeferredTask(when=when, name=name, args=args))


# =============================================================================
# CORE FIXTURES
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    """Horloge contrôlée, démarrant au 3 mars 2025."""
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def crypto() -> CryptoGateway:
    """Gateway with a cheap key derivation."""
    return CryptoGateway("test-secret-passphrase", "test-salt", iterations=1000)


@pytest.fixture
def db(tmp_path: Path) -> Generator[DatabaseConnection, None, None]:
    """Base SQLite jetable avec schéma créé."""
    database = DatabaseConnection(f"sqlite:///{tmp_path / 'compliance.db'}", echo=False)
    database.init_schema()
    yield database
    database.dispose()


@pytest.fixture
def scheduler(clock: FakeClock) -> InlineScheduler:
    return InlineScheduler(clock=clock)


@pytest.fixture
def runtime(
    db: DatabaseConnection,
    crypto: CryptoGateway,
    notifier: RecordingNotifier,
    scheduler: InlineScheduler,
    clock: FakeClock,
    tmp_path: Path,
) -> ComplianceRuntime:
    """Every service wired over the test doubles (schema only, no default policies)."""
    return build_runtime(
        database=db,
        crypto=crypto,
        notifier=notifier,
        scheduler=scheduler,
        clock=clock,
        reports_dir=tmp_path / "reports",
        consent_config=ConsentSettings(),
    )


@pytest.fixture
def queued_scheduler(clock: FakeClock) -> QueuedScheduler:
    return QueuedScheduler(clock=clock)


@pytest.fixture
def queued_runtime(
    db: DatabaseConnection,
    crypto: CryptoGateway,
    notifier: RecordingNotifier,
    queued_scheduler: QueuedScheduler,
    clock: FakeClock,
    tmp_path: Path,
) -> ComplianceRuntime:
    """Runtime whose jobs only run when the test drains the queue."""
    return build_runtime(
        database=db,
        crypto=crypto,
        notifier=notifier,
        scheduler=queued_scheduler,
        clock=clock,
        reports_dir=tmp_path / "reports",
        consent_config=ConsentSettings(),
    )


# =============================================================================
# DATA FACTORIES
# =============================================================================


@pytest.fixture
def make_student(db: DatabaseConnection, clock: FakeClock) -> Callable[..., int]:
    """Factory inserting a student, returning its id.

    ``idle_days`` backdates both creation and last activity.
    """

    def _make(idle_days: int = 0, **overrides: Any) -> int:
        moment = clock() - timedelta(days=idle_days)
        values: dict[str, Any] = {
            "first_name": "Léa",
            "last_name": "Martin",
            "email": "lea.martin@example.com",
            "birth_date": date(2016, 5, 14),
            "address": "12 rue des Lilas, Lyon",
            "phone": "06 12 34 56 78",
            "ip_address": "192.168.1.23",
            "user_agent": "Mozilla/5.0",
            "grade_level": "CE2",
            "subject_area": "mathematiques",
            "completion_rate": 0.6,
            "avg_score": 73.0,
            "parent_email": PARENT_EMAIL,
            "last_activity_at": moment,
            "created_at": moment,
        }
        values.update(overrides)
        with db.session() as session:
            return StudentRepository(session).create(Student(**values)).id

    return _make


@pytest.fixture
def add_learning_data(db: DatabaseConnection, clock: FakeClock) -> Callable[..., list[int]]:
    """Factory adding one progress row and sessions to a student.

    Returns:
        Ids of the learning sessions created.
    """

    def _add(student_id: int | None, sessions: int = 1, days_ago: int = 0) -> list[int]:
        started = clock() - timedelta(days=days_ago)
        with db.session() as session:
            if student_id is not None:
                StudentProgressRepository(session).create(
                    StudentProgress(
                        student_id=student_id,
                        competence_code="CE2.FR.L.1.1",
                        score=82.0,
                        attempts=3,
                        time_spent_seconds=125,
                    )
                )
            repo = LearningSessionRepository(session)
            return [
                repo.create(
                    LearningSession(
                        student_id=student_id,
                        started_at=started,
                        ended_at=started + timedelta(minutes=20),
                        duration_seconds=1205,
                        exercises_completed=4,
                        device="tablet",
                        ip_address="192.168.1.23",
                        user_agent="Mozilla/5.0",
                    )
                ).id
                for _ in range(sessions)
            ]

    return _add


@pytest.fixture
def make_consent(db: DatabaseConnection, clock: FakeClock) -> Callable[..., str]:
    """Factory inserting a consent record directly, returning its id."""

    def _make(age_days: int = 0, **overrides: Any) -> str:
        created = clock() - timedelta(days=age_days)
        values: dict[str, Any] = {
            "id": str(uuid.uuid4()),
            "parent_email": PARENT_EMAIL,
            "parent_name": "Marie Martin",
            "child_name": "Léa Martin",
            "child_age": 8,
            "consent_types": ["data_processing", "progress_tracking"],
            "status": "pending",
            "first_consent_token": uuid.uuid4().hex,
            "expiry_date": created + timedelta(days=7),
            "created_at": created,
        }
        values.update(overrides)
        with db.session() as session:
            return ParentalConsentRepository(session).create(ParentalConsent(**values)).id

    return _make
