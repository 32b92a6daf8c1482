"""Entity handler registry keyed by entity type."""

from collections.abc import Iterable

from reved_compliance.services.anonymization.errors import UnsupportedEntityTypeError
from reved_compliance.services.entities.base import EntityHandler
from reved_compliance.services.entities.parent import ParentHandler
from reved_compliance.services.entities.records import (
    AuditLogHandler,
    ConsentHandler,
    ProgressHandler,
)
from reved_compliance.services.entities.session import SessionHandler
from reved_compliance.services.entities.student import StudentHandler
from reved_compliance.utils.clock import Clock, utc_now


class EntityRegistry:
    """Lookup of handlers by entity type.

    Adding an entity type means registering one more handler.
    """

    def __init__(self, handlers: Iterable[EntityHandler]) -> None:
        self._handlers = {handler.entity_type: handler for handler in handlers}

    def __contains__(self, entity_type: object) -> bool:
        return entity_type in self._handlers

    @property
    def entity_types(self) -> list[str]:
        """Registered entity types."""
        return sorted(self._handlers)

    def get(self, entity_type: str) -> EntityHandler:
        """Handler of an entity type.

        Raises:
            UnsupportedEntityTypeError: If no handler is registered.
        """
        handler = self._handlers.get(entity_type)
        if handler is None:
            raise UnsupportedEntityTypeError(f"Unsupported entity type: {entity_type}")
        return handler

    def anonymizer(self, entity_type: str) -> EntityHandler:
        """Handler able to anonymize an entity type.

        Raises:
            UnsupportedEntityTypeError: If the type is unknown or not anonymizable.
        """
        handler = self.get(entity_type)
        if not handler.anonymizable:
            raise UnsupportedEntityTypeError(
                f"Anonymization not supported for entity type: {entity_type}"
            )
        return handler


def build_registry(clock: Clock = utc_now) -> EntityRegistry:
    """Registry with every platform entity handler.

    Args:
        clock: Time source used to stamp anonymization.

    Returns:
        EntityRegistry.
    """
    return EntityRegistry(
        [
            StudentHandler(clock),
            ParentHandler(clock),
            SessionHandler(clock),
            ProgressHandler(clock),
            ConsentHandler(clock),
            AuditLogHandler(clock),
        ]
    )
