"""
Base repository with generic CRUD operations.

Provides a reusable base class for all repositories with
common database operations.
"""

from datetime import date, datetime
from typing import Any, Generic, TypeVar

from sqlalchemy import ColumnElement, func, select
from sqlalchemy.orm import Session

from reved_compliance.database.models.base import Base

# Type alias for valid database field values
FieldValue = str | int | float | bool | date | datetime | None

# Primary keys are integers for platform entities, UUID strings elsewhere
EntityKey = int | str

# Generic type variable bound to Base model
ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """Generic repository providing common CRUD operations.

    Attributes:
        model: SQLAlchemy model class.
    """

    model: type[ModelT]

    def __init__(self, session: Session) -> None:
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy session instance.
        """
        self._session = session

    def get_by_id(self, entity_id: EntityKey) -> ModelT | None:
        """Retrieve entity by primary key.

        Args:
            entity_id: Primary key value.

        Returns:
            Entity instance or None if not found.
        """
        return self._session.get(self.model, entity_id)

    def get_by_field(self, field_name: str, value: FieldValue) -> ModelT | None:
        """Retrieve entity by a specific field value.

        Args:
            field_name: Name of the field to filter on.
            value: Value to match.

        Returns:
            Entity instance or None if not found.
        """
        field = getattr(self.model, field_name)
        stmt = select(self.model).where(field == value)
        return self._session.scalars(stmt).first()

    def find(
        self,
        *criteria: ColumnElement[bool],
        order_by: Any = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ModelT]:
        """Retrieve entities matching arbitrary criteria.

        Args:
            *criteria: SQLAlchemy boolean expressions, AND-ed together.
            order_by: Optional ordering clause.
            limit: Maximum number of results (None for all).
            offset: Number of results to skip.

        Returns:
            List of entity instances.
        """
        stmt = select(self.model).where(*criteria)
        if order_by is not None:
            stmt = stmt.order_by(order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)
        return list(self._session.scalars(stmt).all())

    def count(self, *criteria: ColumnElement[bool]) -> int:
        """Count entities, optionally filtered.

        Args:
            *criteria: SQLAlchemy boolean expressions, AND-ed together.

        Returns:
            Total count.
        """
        stmt = select(func.count()).select_from(self.model).where(*criteria)
        result = self._session.execute(stmt).scalar()
        return result or 0

    def create(self, entity: ModelT) -> ModelT:
        """Create a new entity.

        Args:
            entity: Entity instance to persist.

        Returns:
            Persisted entity with generated ID.
        """
        self._session.add(entity)
        self._session.flush()
        return entity

    def delete(self, entity: ModelT) -> None:
        """Delete an entity.

        Args:
            entity: Entity instance to delete.
        """
        self._session.delete(entity)
        self._session.flush()
