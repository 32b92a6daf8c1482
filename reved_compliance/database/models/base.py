"""SQLAlchemy declarative base, column types and common mixins.

Provides the foundation for all ORM models with common
columns and behaviors.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime
from sqlalchemy.engine import Dialect
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from reved_compliance.utils.clock import ensure_utc, utc_now

# JSON payloads: JSONB on PostgreSQL, generic JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


class UTCDateTime(TypeDecorator[datetime]):
    """DateTime stored as naive UTC, returned as aware UTC.

    SQLite does not keep tzinfo, so values are normalized on the way
    in and re-tagged on the way out. Checksums computed over ISO
    timestamps stay stable across backends.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        """Normalize to naive UTC before storage."""
        if value is None:
            return None
        return ensure_utc(value).replace(tzinfo=None)

    def process_result_value(self, value: Any, dialect: Dialect) -> datetime | None:
        """Re-attach UTC after loading."""
        if value is None:
            return None
        return ensure_utc(value)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models.

    All models should inherit from this class to be part
    of the same metadata and support table creation.
    """

    pass


class TimestampMixin:
    """Mixin providing created_at and updated_at timestamps.

    Services set created_at explicitly when it drives a retention
    horizon; otherwise the insert time is used.
    """

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utc_now,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
    )


class RetentionFlagsMixin:
    """Flags evaluated by retention exception predicates."""

    legal_hold: Mapped[bool] = mapped_column(default=False, nullable=False)
    audit_flag: Mapped[bool] = mapped_column(default=False, nullable=False)
    account_type: Mapped[str] = mapped_column(default="standard", nullable=False)
    regulatory_retention: Mapped[bool] = mapped_column(default=False, nullable=False)
