"""
Errors raised by rowkeeper.

Failures surfaced by the driver are not wrapped: they propagate as the
original psycopg exception, available here as DriverError.
"""

from typing import Any

import psycopg

DriverError = psycopg.Error


class RowkeeperError(Exception):
    """Base class for errors raised by this package."""


class DatabaseConnectionError(RowkeeperError):
    """The connection pool could not be established or is not open."""


class InvalidStateError(RowkeeperError):
    """A row failed the repository's strict model check."""


class NotFoundError(RowkeeperError):
    def __init__(self, table: str, where: dict[str, Any]):
        self.table = table
        self.where = where
        super().__init__(f"No row in {table} where {where!r}")


class AmbiguousResultError(RowkeeperError):
    def __init__(self, table: str, where: dict[str, Any], matches: int):
        self.table = table
        self.where = where
        self.matches = matches
        super().__init__(f"{matches} rows in {table} where {where!r}, expected exactly one")
