"""Persistence layer: connection, models and repositories."""

from reved_compliance.database.connection import (
    DatabaseConnection,
    close_database,
    get_database,
    init_database,
)

__all__ = [
    "DatabaseConnection",
    "close_database",
    "get_database",
    "init_database",
]
