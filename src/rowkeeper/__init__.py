"""Generic repository layer over PostgreSQL tables."""

from rowkeeper.db import Database, get_database
from rowkeeper.errors import (
    AmbiguousResultError,
    DatabaseConnectionError,
    DriverError,
    InvalidStateError,
    NotFoundError,
    RowkeeperError,
)
from rowkeeper.query import QueryHandle
from rowkeeper.repository import BaseRepository, UpsertResult

__all__ = [
    "AmbiguousResultError",
    "BaseRepository",
    "Database",
    "DatabaseConnectionError",
    "DriverError",
    "InvalidStateError",
    "NotFoundError",
    "QueryHandle",
    "RowkeeperError",
    "UpsertResult",
    "get_database",
]
