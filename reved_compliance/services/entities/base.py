"""Per-entity-type handlers shared by anonymization and retention.

A handler knows, for one entity type, how to find records past a
retention cutoff, how to anonymize one record with its rule table,
how to delete it (with dependants) and how to snapshot it for
archival.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar

from sqlalchemy import inspect
from sqlalchemy.orm import Session

from reved_compliance.database.models.base import Base
from reved_compliance.services.anonymization.errors import UnsupportedEntityTypeError
from reved_compliance.services.anonymization.strategies import (
    AnonymizationRule,
    apply_anonymization_strategy,
    generalize_field,
)
from reved_compliance.services.errors import ComplianceError
from reved_compliance.utils.clock import Clock, utc_now


class EntityNotFoundError(ComplianceError):
    """Raised when a handler cannot find the requested record."""


@dataclass
class EligibleEntity:
    """Record found past a retention cutoff, with its exception flags.

    Attributes:
        entity_type: Entity type.
        entity_id: Record identifier.
        last_activity: Last activity (creation time when unknown).
        legal_hold: Under an active legal case.
        audit_flag: Under an ongoing audit.
        account_type: Account type (standard, premium).
        regulatory_retention: Kept for a regulatory requirement.
    """

    entity_type: str
    entity_id: str
    last_activity: datetime | None
    legal_hold: bool = False
    audit_flag: bool = False
    account_type: str = "standard"
    regulatory_retention: bool = False


@dataclass
class AnonymizationOutcome:
    """What an anonymization pass changed."""

    records_processed: int = 0
    anonymized_fields: list[str] = field(default_factory=list)
    preserved_fields: list[str] = field(default_factory=list)
    contact: str | None = None


def to_json_safe(record: Base) -> dict[str, Any]:
    """Column values of a row as JSON-safe data.

    Args:
        record: ORM instance.

    Returns:
        Mapping column -> value (dates as ISO strings).
    """
    values = {attr.key: getattr(record, attr.key) for attr in inspect(record).mapper.column_attrs}
    return json.loads(json.dumps(values, default=str))


def parse_int_id(entity_type: str, entity_id: str) -> int:
    """Integer primary key from a string identifier.

    Raises:
        EntityNotFoundError: If the identifier is not an integer.
    """
    try:
        return int(entity_id)
    except ValueError as e:
        raise EntityNotFoundError(f"{entity_type} not found: {entity_id}") from e


class EntityHandler(ABC):
    """Retention and anonymization operations for one entity type."""

    entity_type: ClassVar[str]
    table_name: ClassVar[str]
    anonymizable: ClassVar[bool] = False
    rules: ClassVar[tuple[AnonymizationRule, ...]] = ()
    statistical_fields: ClassVar[tuple[str, ...]] = ()

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock

    @abstractmethod
    def find_eligible(self, session: Session, cutoff: datetime) -> list[EligibleEntity]:
        """Records whose last activity or creation precedes the cutoff."""

    @abstractmethod
    def describe(self, session: Session, entity_id: str) -> EligibleEntity | None:
        """Exception flags and last activity of one record, or None."""

    @abstractmethod
    def delete(self, session: Session, entity_id: str) -> int:
        """Delete a record and its dependants, returning rows removed."""

    @abstractmethod
    def snapshot(self, session: Session, entity_id: str) -> dict[str, Any]:
        """JSON-safe copy of a record and its dependants."""

    def anonymize(
        self,
        session: Session,
        entity_id: str,
        preserve_statistics: bool,
    ) -> AnonymizationOutcome:
        """Apply the rule table to a record and its dependants.

        Raises:
            UnsupportedEntityTypeError: If the entity type cannot be anonymized.
        """
        raise UnsupportedEntityTypeError(
            f"Anonymization not supported for entity type: {self.entity_type}"
        )

    def apply_rules(
        self,
        record: Any,
        preserve_statistics: bool,
        outcome: AnonymizationOutcome,
    ) -> None:
        """Apply field rules then statistical handling to one row.

        Args:
            record: ORM instance to mutate.
            preserve_statistics: Generalize statistical fields instead of erasing.
            outcome: Outcome collecting field names.
        """
        for rule in self.rules:
            value = getattr(record, rule.field_name)
            setattr(record, rule.field_name, apply_anonymization_strategy(value, rule))
            _append_once(outcome.anonymized_fields, rule.field_name)

        for name in self.statistical_fields:
            value = getattr(record, name)
            if preserve_statistics:
                self.store_generalized(record, name, generalize_field(value, name))
                _append_once(outcome.preserved_fields, name)
            else:
                self.store_generalized(record, name, None)
                _append_once(outcome.anonymized_fields, name)

    def store_generalized(self, record: Any, field_name: str, value: Any) -> None:
        """Write a generalized (or erased) statistical value."""
        setattr(record, field_name, value)

    def not_found(self, entity_id: str) -> EntityNotFoundError:
        """Error for a missing record."""
        return EntityNotFoundError(f"{self.entity_type} not found: {entity_id}")


def _append_once(values: list[str], name: str) -> None:
    if name not in values:
        values.append(name)
