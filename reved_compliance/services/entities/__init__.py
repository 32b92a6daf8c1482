"""Per-entity-type handlers used by anonymization and retention."""

from reved_compliance.services.entities.base import (
    AnonymizationOutcome,
    EligibleEntity,
    EntityHandler,
    EntityNotFoundError,
)
from reved_compliance.services.entities.registry import EntityRegistry, build_registry

__all__ = [
    "AnonymizationOutcome",
    "EligibleEntity",
    "EntityHandler",
    "EntityNotFoundError",
    "EntityRegistry",
    "build_registry",
]
