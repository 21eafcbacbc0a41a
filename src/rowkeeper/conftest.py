# src/rowkeeper/conftest.py
"""
Pytest configuration and shared fixtures.

Tests are co-located with implementation files using the *_test.py suffix.
Repository tests run against FakeDriver, an in-memory runner that
interprets QueryHandle state instead of compiling it to SQL.
"""

import os

# Set environment BEFORE importing any app modules
os.environ["ROWKEEPER_ENV"] = "test"

import copy
from typing import Any, Callable

import pytest

from rowkeeper.query import QueryHandle
from rowkeeper.query.builder import COUNT, DELETE, INSERT, SELECT, UPDATE
from rowkeeper.repository import BaseRepository

# =============================================================================
# Fake Driver
# =============================================================================


class FakeDriver:
    """
    In-memory stand-in for Database.run().

    Tables are lists of dicts. Every executed handle is recorded in
    `calls`; `fail_when` makes matching handles raise instead of running.
    """

    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self.calls: list[QueryHandle] = []
        self.fail_when: Callable[[QueryHandle], BaseException | None] | None = None

    def query_builder(self, table: str) -> QueryHandle:
        return QueryHandle(table, self)

    def seed(self, table: str, rows: list[dict]) -> None:
        self.tables.setdefault(table, []).extend(dict(r) for r in rows)

    def actions(self) -> list[str]:
        return [h.action for h in self.calls]

    async def run(self, handle: QueryHandle) -> Any:
        if handle.is_noop:
            return 0
        self.calls.append(handle)
        if self.fail_when is not None:
            error = self.fail_when(handle)
            if error is not None:
                raise error

        rows = self.tables.setdefault(handle.table, [])

        if handle.action == INSERT:
            rows.extend(dict(r) for r in handle.payload)
            return len(handle.payload)

        matched = [r for r in rows if self._matches(r, handle.filters)]

        if handle.action == UPDATE:
            for r in matched:
                r.update(handle.payload)
            return len(matched)

        if handle.action == DELETE:
            doomed = {id(r) for r in matched}
            self.tables[handle.table] = [r for r in rows if id(r) not in doomed]
            return len(matched)

        if handle.action == COUNT:
            if handle.count_column != "*":
                matched = [r for r in matched if r.get(handle.count_column) is not None]
            if handle.group_column:
                counts: dict[Any, int] = {}
                for r in matched:
                    value = r.get(handle.group_column)
                    counts[value] = counts.get(value, 0) + 1
                return [{handle.group_column: k, "count": v} for k, v in counts.items()]
            return len(matched)

        assert handle.action == SELECT
        for column, order in reversed(handle.ordering):
            matched = sorted(matched, key=lambda r: r[column], reverse=order == "desc")
        if handle.row_limit is not None:
            matched = matched[: handle.row_limit]
        result = [copy.deepcopy(r) for r in matched]
        if handle.single:
            return result[0] if result else None
        return result

    @staticmethod
    def _matches(row: dict, filters: list[tuple]) -> bool:
        for clause in filters:
            if clause[0] == "where":
                if any(row.get(k) != v for k, v in clause[1].items()):
                    return False
            elif clause[0] == "where_not":
                if any(row.get(k) == v for k, v in clause[1].items()):
                    return False
            elif row.get(clause[1]) not in clause[2]:
                return False
        return True


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def driver() -> FakeDriver:
    """Provide an empty FakeDriver."""
    return FakeDriver()


@pytest.fixture
def id_sequence():
    """Deterministic id factory: id-1, id-2, ..."""
    counter = iter(range(1, 1_000_000))
    return lambda: f"id-{next(counter)}"


@pytest.fixture
def make_repo(driver, id_sequence):
    """Factory for BaseRepository instances bound to the fake driver."""

    def factory(table: str = "items", pk_name: str | None = "id", **kwargs) -> BaseRepository:
        kwargs.setdefault("id_factory", id_sequence)
        return BaseRepository(driver.query_builder, table, pk_name=pk_name, **kwargs)

    return factory


@pytest.fixture
def repo(make_repo) -> BaseRepository:
    """Provide a BaseRepository for the items table keyed on id."""
    return make_repo()


@pytest.fixture
def sample_items(driver) -> list[dict]:
    """Seed three items with distinct codes and creation times."""
    from datetime import datetime

    rows = [
        {"id": "a", "code": "A", "kind": "tool", "createdAt": datetime(2024, 1, 1)},
        {"id": "b", "code": "B", "kind": "tool", "createdAt": datetime(2024, 1, 3)},
        {"id": "c", "code": "C", "kind": "part", "createdAt": datetime(2024, 1, 2)},
    ]
    driver.seed("items", rows)
    return rows
