"""
Lazy, awaitable query handles.

A QueryHandle describes one statement against one table. Builder verbs
mutate the handle and return it so calls can be chained; nothing touches
the database until the handle is awaited, at which point it is compiled
to a psycopg.sql composable and handed to its runner.

Usage:
    rows = await db.query_builder("users").select().where({"active": True})
    user = await db.query_builder("users").where({"id": user_id}).first()
    n = await db.query_builder("users").where_in("id", ids).delete()
"""

from typing import Any, Iterable, Mapping, Protocol

from psycopg import sql

SELECT = "select"
INSERT = "insert"
UPDATE = "update"
DELETE = "delete"
COUNT = "count"


class Runner(Protocol):
    async def run(self, handle: "QueryHandle") -> Any: ...


class QueryHandle:
    """
    Statement description scoped to a single table.

    The public attributes are the handle's state; runners other than
    Database (test doubles, for instance) may interpret them directly
    instead of compiling to SQL.
    """

    def __init__(self, table: str, runner: Runner):
        self.table = table
        self.runner = runner
        self.action = SELECT
        self.columns: list[str] = []
        self.filters: list[tuple] = []
        self.ordering: list[tuple[str, str]] = []
        self.row_limit: int | None = None
        self.single = False
        self.payload: list[dict[str, Any]] | dict[str, Any] | None = None
        self.count_column = "*"
        self.group_column: str | None = None
        self.connection = None

    def __repr__(self) -> str:
        return f"<QueryHandle {self.action} {self.table}>"

    def __await__(self):
        return self.runner.run(self).__await__()

    # -------------------------------------------------------------------------
    # Builder verbs
    # -------------------------------------------------------------------------

    def select(self, *columns: str) -> "QueryHandle":
        self.action = SELECT
        self.columns = list(columns)
        return self

    def where(self, where: Mapping[str, Any]) -> "QueryHandle":
        """AND of column = value pairs; a None value matches NULL."""
        self.filters.append(("where", dict(where)))
        return self

    def where_not(self, where: Mapping[str, Any]) -> "QueryHandle":
        """AND of negated column = value pairs."""
        self.filters.append(("where_not", dict(where)))
        return self

    def where_in(self, column: str, values: Iterable[Any]) -> "QueryHandle":
        self.filters.append(("where_in", column, list(values)))
        return self

    def order_by(self, spec: str | Iterable[Mapping[str, str]], direction: str = "asc") -> "QueryHandle":
        """
        Order by a single column, or by a list of {"column", "order"} specs.
        """
        specs = [{"column": spec, "order": direction}] if isinstance(spec, str) else spec
        for item in specs:
            order = item.get("order", "asc").lower()
            if order not in ("asc", "desc"):
                raise ValueError(f"Invalid sort order: {order}")
            self.ordering.append((item["column"], order))
        return self

    def limit(self, n: int) -> "QueryHandle":
        self.row_limit = n
        return self

    def first(self) -> "QueryHandle":
        """Resolve to the first matching row, or None."""
        self.single = True
        self.row_limit = 1
        return self

    def insert(self, rows: Mapping[str, Any] | Iterable[Mapping[str, Any]]) -> "QueryHandle":
        self.action = INSERT
        if isinstance(rows, Mapping):
            rows = [rows]
        self.payload = [dict(row) for row in rows]
        return self

    def update(self, data: Mapping[str, Any]) -> "QueryHandle":
        if not data:
            raise ValueError(f"Empty update for {self.table}")
        self.action = UPDATE
        self.payload = dict(data)
        return self

    def delete(self) -> "QueryHandle":
        self.action = DELETE
        return self

    def count(self, column: str = "*") -> "QueryHandle":
        self.action = COUNT
        self.count_column = column
        return self

    def group_by(self, column: str) -> "QueryHandle":
        self.group_column = column
        return self

    def transacting(self, connection) -> "QueryHandle":
        """Run on the caller's connection instead of a pooled one."""
        self.connection = connection
        return self

    # -------------------------------------------------------------------------
    # Compilation
    # -------------------------------------------------------------------------

    @property
    def is_noop(self) -> bool:
        """An insert with no rows resolves to 0 without touching the database."""
        return self.action == INSERT and not self.payload

    def compile(self) -> tuple[sql.Composed, list[Any]]:
        """Return the statement and its positional parameters."""
        params: list[Any] = []
        table = sql.Identifier(self.table)

        if self.action == INSERT:
            return self._compile_insert(table, params), params

        if self.action == UPDATE:
            assignments = []
            for column, value in self.payload.items():
                assignments.append(sql.SQL("{} = {}").format(sql.Identifier(column), sql.Placeholder()))
                params.append(value)
            parts = [sql.SQL("UPDATE {} SET {}").format(table, sql.SQL(", ").join(assignments))]
        elif self.action == DELETE:
            parts = [sql.SQL("DELETE FROM {}").format(table)]
        elif self.action == COUNT:
            counted = sql.SQL("*") if self.count_column == "*" else sql.Identifier(self.count_column)
            if self.group_column:
                parts = [
                    sql.SQL("SELECT {}, COUNT({}) AS {} FROM {}").format(
                        sql.Identifier(self.group_column), counted, sql.Identifier("count"), table
                    )
                ]
            else:
                parts = [sql.SQL("SELECT COUNT({}) AS {} FROM {}").format(counted, sql.Identifier("count"), table)]
        else:
            columns = sql.SQL(", ").join(map(sql.Identifier, self.columns)) if self.columns else sql.SQL("*")
            parts = [sql.SQL("SELECT {} FROM {}").format(columns, table)]

        conditions = self._compile_filters(params)
        if conditions:
            parts.append(sql.SQL("WHERE {}").format(sql.SQL(" AND ").join(conditions)))

        if self.action in (SELECT, COUNT):
            if self.group_column:
                parts.append(sql.SQL("GROUP BY {}").format(sql.Identifier(self.group_column)))
            if self.ordering:
                parts.append(
                    sql.SQL("ORDER BY {}").format(
                        sql.SQL(", ").join(
                            sql.SQL("{} {}").format(sql.Identifier(column), sql.SQL(order.upper()))
                            for column, order in self.ordering
                        )
                    )
                )
            if self.row_limit is not None:
                parts.append(sql.SQL("LIMIT {}").format(sql.Placeholder()))
                params.append(self.row_limit)

        return sql.SQL(" ").join(parts), params

    def _compile_insert(self, table: sql.Identifier, params: list[Any]) -> sql.Composed:
        # Union of columns in first-seen order; rows lacking one get DEFAULT
        columns: list[str] = []
        for row in self.payload:
            columns.extend(column for column in row if column not in columns)

        tuples = []
        for row in self.payload:
            values = []
            for column in columns:
                if column in row:
                    values.append(sql.Placeholder())
                    params.append(row[column])
                else:
                    values.append(sql.DEFAULT)
            tuples.append(sql.SQL("({})").format(sql.SQL(", ").join(values)))

        return sql.SQL("INSERT INTO {} ({}) VALUES {}").format(
            table,
            sql.SQL(", ").join(map(sql.Identifier, columns)),
            sql.SQL(", ").join(tuples),
        )

    def _compile_filters(self, params: list[Any]) -> list[sql.Composable]:
        conditions = []
        for clause in self.filters:
            kind = clause[0]
            if kind == "where_in":
                _, column, values = clause
                if not values:
                    conditions.append(sql.SQL("FALSE"))
                    continue
                conditions.append(
                    sql.SQL("{} IN ({})").format(
                        sql.Identifier(column), sql.SQL(", ").join(sql.Placeholder() for _ in values)
                    )
                )
                params.extend(values)
                continue

            negate = sql.SQL("NOT ") if kind == "where_not" else sql.SQL("")
            for column, value in clause[1].items():
                if value is None:
                    conditions.append(sql.SQL("{}{} IS NULL").format(negate, sql.Identifier(column)))
                else:
                    conditions.append(
                        sql.SQL("{}{} = {}").format(negate, sql.Identifier(column), sql.Placeholder())
                    )
                    params.append(value)

        return conditions
