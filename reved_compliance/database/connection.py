"""Database connection management with SQLAlchemy 2.0.

Provides transactional sync sessions over PostgreSQL (production)
or SQLite (local runs and tests).
"""

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from reved_compliance.database.models import Base
from reved_compliance.settings import settings
from reved_compliance.utils.logger import setup_logger

logger = setup_logger("database.connection")


class DatabaseConnection:
    """Manages the connection pool and session factory.

    One instance per database URL; the application-wide instance is
    obtained through :func:`get_database`.

    Example:
        ```python
        db = DatabaseConnection("sqlite:///compliance.db")
        with db.session() as session:
            result = session.execute(text("SELECT 1"))
        ```
    """

    def __init__(self, url: str | None = None, echo: bool | None = None) -> None:
        """Initialize engine and session factory.

        Args:
            url: SQLAlchemy URL (defaults to settings.database.sync_url).
            echo: Log SQL statements (defaults to settings.debug).
        """
        self._url = url or settings.database.sync_url
        self._engine = self._create_engine(self._url, settings.debug if echo is None else echo)
        self._session_factory = sessionmaker(
            bind=self._engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )

    @staticmethod
    def _create_engine(url: str, echo: bool) -> Engine:
        """Create SQLAlchemy engine with a pool suited to the backend.

        Args:
            url: SQLAlchemy URL.
            echo: Log SQL statements.

        Returns:
            Configured Engine.
        """
        if url.startswith("sqlite"):
            kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
            if url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
            engine = create_engine(url, echo=echo, **kwargs)
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)
            return engine

        return create_engine(
            url,
            poolclass=QueuePool,
            pool_size=settings.database.pool_size,
            max_overflow=settings.database.pool_overflow,
            pool_timeout=settings.database.pool_timeout,
            pool_pre_ping=True,
            echo=echo,
        )

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Provide a transactional session scope.

        Automatically commits on success, rolls back on exception,
        and closes the session when done.

        Yields:
            SQLAlchemy Session instance.

        Raises:
            Exception: Re-raises any exception after rollback.
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def init_schema(self) -> None:
        """Create every table registered on Base.metadata."""
        Base.metadata.create_all(self._engine)
        logger.info(f"schema_initialized: {len(Base.metadata.tables)} tables")

    def drop_schema(self) -> None:
        """Drop every table registered on Base.metadata."""
        Base.metadata.drop_all(self._engine)

    def check_connection(self) -> bool:
        """Test database connectivity with a simple query.

        Returns:
            True if connection successful, False otherwise.
        """
        try:
            with self.session() as session:
                session.execute(text("SELECT 1"))
            return True
        except Exception as e:  # noqa: BLE001
            logger.error(f"connection_check_failed: {e}")
            return False

    def dispose(self) -> None:
        """Dispose the connection pool and release resources."""
        self._engine.dispose()

    @property
    def engine(self) -> Engine:
        """Get the underlying engine."""
        return self._engine

    @property
    def url(self) -> str:
        """Get the connection URL."""
        return self._url


def _enable_sqlite_foreign_keys(dbapi_connection: Any, _: Any) -> None:
    """Turn on foreign key enforcement for each SQLite connection."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# =============================================================================
# MODULE-LEVEL CONVENIENCE FUNCTIONS
# =============================================================================

_db: DatabaseConnection | None = None


def get_database() -> DatabaseConnection:
    """Get the application-wide DatabaseConnection instance.

    Creates the instance on first call (lazy initialization).

    Returns:
        DatabaseConnection singleton instance.
    """
    global _db  # noqa: PLW0603
    if _db is None:
        _db = DatabaseConnection()
    return _db


def init_database() -> DatabaseConnection:
    """Initialize the application database and its schema.

    Returns:
        The initialized DatabaseConnection.
    """
    db = get_database()
    if db.check_connection():
        logger.info("database_connected")
        db.init_schema()
    else:
        logger.error("database_connection_failed")
    return db


def close_database() -> None:
    """Close the application connection pool."""
    global _db  # noqa: PLW0603
    if _db is not None:
        _db.dispose()
        _db = None
        logger.info("database_closed")
