import asyncio
import logging
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, NamedTuple

from rowkeeper.errors import AmbiguousResultError, InvalidStateError, NotFoundError
from rowkeeper.query import QueryHandle

logger = logging.getLogger(__name__)

Row = Mapping[str, Any]


def generate_id() -> str:
    """Default primary-key factory: a random 32 character hex string."""
    return uuid.uuid4().hex


class UpsertResult(NamedTuple):
    inserted: int
    updated: list[int]


class BaseRepository:
    """
    Generic data access for a single table.

    Subclasses (or direct instances) bind a table name and primary key;
    every operation builds a fresh handle from query_builder. Read and
    single-statement write operations return the handle unexecuted, so
    callers await it or bind it to a transaction first:

        users = BaseRepository(database.query_builder, "users", pk_name="id")
        rows = await users.retrieve_by({"active": True})
        await users.insert({"name": "Ada"}).transacting(tx)

    Operations composed of several statements are coroutines.
    """

    def __init__(
        self,
        query_builder: Callable[[str], QueryHandle],
        table_name: str,
        pk_name: str | None = None,
        entity: type | None = None,
        strict_model: bool = False,
        validator: Callable[[Any], bool] | None = None,
        id_factory: Callable[[], Any] = generate_id,
        created_at_column: str = "createdAt",
        updated_at_column: str = "updatedAt",
    ):
        if strict_model and validator is None and entity is None:
            raise ValueError("strict_model requires an entity type or a validator")

        self.query_builder = query_builder
        self.table_name = table_name
        self.pk_name = pk_name
        self.entity = entity
        self.strict_model = strict_model
        self.validator = validator or (lambda row: isinstance(row, entity))
        self.id_factory = id_factory
        self.created_at_column = created_at_column
        self.updated_at_column = updated_at_column

    @property
    def model(self) -> QueryHandle:
        """A fresh handle scoped to this repository's table."""
        return self.query_builder(self.table_name)

    def get_pk(self, row: Row | None) -> Any:
        """Primary key for row: its own when truthy, else a new one."""
        if self.pk_name and row is not None:
            return row.get(self.pk_name) or self.id_factory()
        return None

    # =========================================================================
    # Reads
    # =========================================================================

    def retrieve(self) -> QueryHandle:
        return self.model.select()

    def retrieve_by(self, where: Row) -> QueryHandle:
        return self.model.select().where(where)

    def retrieve_by_not(self, where: Row) -> QueryHandle:
        return self.model.select().where_not(where)

    def retrieve_in(self, column: str, values: Iterable[Any]) -> QueryHandle:
        return self.model.select().where_in(column, values)

    def find_by_pk(self, pk: Any) -> QueryHandle:
        """Resolves to the row whose primary key is pk, or None."""
        return self.model.where({self.pk_name or "id": pk}).first()

    async def find_unique_by(self, where: Row) -> dict[str, Any]:
        """
        The single row matching where.

        Raises:
            NotFoundError: no row matches
            AmbiguousResultError: more than one row matches
        """
        rows = await self.retrieve_by(where)
        if not rows:
            raise NotFoundError(self.table_name, dict(where))
        if len(rows) > 1:
            raise AmbiguousResultError(self.table_name, dict(where), len(rows))
        return rows[0]

    def find_last_one_by(self, where: Row) -> QueryHandle:
        """Resolves to the most recently created matching row, or None."""
        return self.retrieve_by(where).order_by(self.created_at_column, "desc").first()

    def find_last_one(self) -> QueryHandle:
        return self.retrieve().order_by(self.created_at_column, "desc").first()

    def group_by(self, column: str) -> QueryHandle:
        """Resolves to [{column: value, "count": n}, ...]."""
        return self.model.count().group_by(column)

    def count(self, column: str | None = None) -> QueryHandle:
        """Row count; only non-null values of column when one is given."""
        return self.model.count(column or "*")

    # =========================================================================
    # Writes
    # =========================================================================

    def get_tuple(self, row: Row) -> dict[str, Any]:
        """Row with its primary key filled in."""
        pk = self.get_pk(row)
        if pk is None:
            return dict(row)
        return {**row, self.pk_name: pk}

    def insert(self, row: Row) -> QueryHandle:
        self._check_model(row)
        return self.model.insert(self.get_tuple(row))

    def insert_many(self, rows: Iterable[Row]) -> QueryHandle:
        """
        Batched insert of rows in one statement.

        Every row is validated before the statement is built; an empty
        batch resolves to 0 without a round-trip.
        """
        rows = list(rows)
        for row in rows:
            self._check_model(row)
        return self.model.insert([self.get_tuple(row) for row in rows])

    def delete_by(self, where: Row) -> QueryHandle:
        return self.model.where(where).delete()

    def delete_in(self, column: str, values: Iterable[Any]) -> QueryHandle:
        return self.model.where_in(column, values).delete()

    def update_by(self, condition: Row, data: Row) -> QueryHandle:
        """Update rows matching condition; stamps the updated-at column."""
        values = {
            **data,
            self.updated_at_column: data.get(self.updated_at_column) or datetime.now(timezone.utc),
        }
        return self.model.update(values).where(condition)

    async def update_many(self, rows: Iterable[Row], key_column: str) -> list[int]:
        """
        One update per row, keyed on row[key_column], issued concurrently.

        The first failure propagates; updates already issued are not
        rolled back.
        """
        return list(
            await asyncio.gather(
                *(self.update_by({key_column: row[key_column]}, row) for row in rows)
            )
        )

    async def delete_and_insert_many(self, rows: Iterable[Row], key: str) -> int:
        """
        Replace the rows sharing key values with the incoming ones.

        The delete and the insert are independent statements: if the
        insert fails, the delete stays committed. Use
        delete_and_insert_many_in_transaction() when both must succeed
        or fail together.
        """
        rows = list(rows)
        insert = self.insert_many(rows)
        await self.delete_in(key, [row[key] for row in rows])
        return await insert

    async def delete_and_insert_many_in_transaction(self, rows: Iterable[Row], key: str, transaction) -> int:
        """Same as delete_and_insert_many(), bound to the caller's transaction."""
        rows = list(rows)
        insert = self.insert_many(rows).transacting(transaction)
        await self.delete_in(key, [row[key] for row in rows]).transacting(transaction)
        return await insert

    async def upsert_many(self, rows: Iterable[Row], key_column: str) -> UpsertResult:
        """
        Insert rows whose key_column value is new, update the others.

        Costs one read for the existing keys, one batched insert and one
        update per existing row. Insert and updates run concurrently and
        are not atomic as a whole.
        """
        rows = list(rows)
        if not rows:
            return UpsertResult(0, [])

        existing = await self.retrieve_in(key_column, dict.fromkeys(row[key_column] for row in rows))
        existing_by_key = defaultdict(list)
        for row in existing:
            existing_by_key[row[key_column]].append(row)

        to_insert, to_update = [], []
        for row in rows:
            if existing_by_key.get(row[key_column]):
                to_update.append(row)
            else:
                to_insert.append(row)

        logger.debug(
            "Upsert into %s on %s: %d to insert, %d to update",
            self.table_name,
            key_column,
            len(to_insert),
            len(to_update),
        )

        inserted, updated = await asyncio.gather(
            self.insert_many(to_insert),
            self.update_many(to_update, key_column),
        )
        return UpsertResult(inserted, updated)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _check_model(self, row: Any) -> None:
        if self.strict_model and not self.validator(row):
            raise InvalidStateError(
                f"Invalid state: {type(row).__name__} is not a valid row for {self.table_name}"
            )
