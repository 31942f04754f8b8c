"""
Fluent, parameterized SQL statement builder.

A ``QueryBuilder`` accumulates the plan for one table (columns, conditions,
joins, grouping, ordering, paging, locking) and renders it into a single
psycopg statement with ``%s`` placeholders when a terminal method runs.

Usage:
    rows = await (
        QueryBuilder("users")
        .select("id", "email")
        .where("status", "=", "active")
        .or_where("role_id", "=", 1)
        .order_by("created_at", "DESC")
        .limit(20)
        .get()
    )

Table and column names are interpolated, never bound: only pass trusted
identifiers. Values always travel as bindings.

Every statement runs on the first available of: the connection the builder
was bound to, the ambient transaction connection, a pooled connection.
"""

from __future__ import annotations

import math
from typing import Any, Generic, List, Mapping, Optional, Sequence, Tuple, TypeVar

from psycopg import AsyncConnection

from clinic_orm.errors import QueryError
from clinic_orm.infrastructure.connection import (
    ConnectionProvider,
    StatementResult,
    get_provider,
    run_statement,
)
from clinic_orm.orm.transaction import active_connection
from clinic_orm.orm.types import (
    DIRECTIONS,
    OPERATORS,
    Condition,
    Connector,
    JoinClause,
    JoinKind,
    PaginationResult,
)
from clinic_orm.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T", bound=Mapping[str, Any])


async def execute_raw(
    sql: str,
    params: Sequence[Any] = (),
    connection: Optional[AsyncConnection] = None,
    provider: Optional[ConnectionProvider] = None,
) -> StatementResult:
    """
    Execute hand-written SQL with the builder's connection resolution.

    Raw statements see no soft-delete filter or default scope; whoever writes
    one takes responsibility for those conventions.
    """
    conn = connection or active_connection()
    if conn is not None:
        return await run_statement(conn, sql, tuple(params))
    return await (provider or get_provider()).execute(sql, tuple(params))


def _check_operator(operator: str) -> str:
    normalized = operator.upper()
    if normalized not in OPERATORS:
        raise QueryError(f"Unsupported operator: {operator!r}")
    return normalized


class QueryBuilder(Generic[T]):
    """
    Mutable statement constructor for one table.

    Fluent methods return the same instance. State survives terminal calls so
    one builder can serve a count followed by a page fetch (see ``paginate``).
    """

    def __init__(
        self,
        table: str,
        connection: Optional[AsyncConnection] = None,
        provider: Optional[ConnectionProvider] = None,
    ) -> None:
        self.table = table
        self.connection = connection
        self.provider = provider
        self.columns: List[str] = ["*"]
        self.is_distinct = False
        self.conditions: List[Condition] = []
        self.joins: List[JoinClause] = []
        self.groups: List[str] = []
        self.havings: List[Tuple[str, str, Any]] = []
        self.orders: List[str] = []
        self.limit_value: Optional[int] = None
        self.offset_value: Optional[int] = None
        self.lock_clause: Optional[str] = None

    # --- Selection & modifiers ---

    def select(self, *columns: str) -> "QueryBuilder[T]":
        self.columns = list(columns) if columns else ["*"]
        return self

    def distinct(self) -> "QueryBuilder[T]":
        self.is_distinct = True
        return self

    # --- Filtering ---

    def where(self, column: str, operator: str, value: Any) -> "QueryBuilder[T]":
        self.conditions.append(
            Condition("basic", column, _check_operator(operator), value, connector="AND")
        )
        return self

    def or_where(self, column: str, operator: str, value: Any) -> "QueryBuilder[T]":
        self.conditions.append(
            Condition("basic", column, _check_operator(operator), value, connector="OR")
        )
        return self

    def where_in(self, column: str, values: Sequence[Any]) -> "QueryBuilder[T]":
        self.conditions.append(Condition("in", column, "IN", list(values)))
        return self

    def where_not_in(self, column: str, values: Sequence[Any]) -> "QueryBuilder[T]":
        self.conditions.append(Condition("not_in", column, "NOT IN", list(values)))
        return self

    def where_null(self, column: str) -> "QueryBuilder[T]":
        self.conditions.append(Condition("null", column, "IS NULL"))
        return self

    def where_not_null(self, column: str) -> "QueryBuilder[T]":
        self.conditions.append(Condition("not_null", column, "IS NOT NULL"))
        return self

    def where_raw(
        self, sql: str, bindings: Sequence[Any] = (), connector: Connector = "AND"
    ) -> "QueryBuilder[T]":
        self.conditions.append(
            Condition("raw", value=sql, bindings=tuple(bindings), connector=connector)
        )
        return self

    # --- Joins ---

    def join(
        self, table: str, first: str, operator: str, second: str, kind: JoinKind = "INNER"
    ) -> "QueryBuilder[T]":
        self.joins.append(JoinClause(kind, table, f"{first} {operator} {second}"))
        return self

    def left_join(self, table: str, first: str, operator: str, second: str) -> "QueryBuilder[T]":
        return self.join(table, first, operator, second, "LEFT")

    def right_join(self, table: str, first: str, operator: str, second: str) -> "QueryBuilder[T]":
        return self.join(table, first, operator, second, "RIGHT")

    # --- Ordering & grouping ---

    def group_by(self, *columns: str) -> "QueryBuilder[T]":
        self.groups.extend(columns)
        return self

    def having(self, column: str, operator: str, value: Any) -> "QueryBuilder[T]":
        self.havings.append((column, _check_operator(operator), value))
        return self

    def order_by(self, column: str, direction: str = "ASC") -> "QueryBuilder[T]":
        normalized = direction.upper()
        if normalized not in DIRECTIONS:
            raise QueryError(f"Unsupported order direction: {direction!r}")
        self.orders.append(f"{column} {normalized}")
        return self

    def limit(self, value: int) -> "QueryBuilder[T]":
        self.limit_value = value
        return self

    def offset(self, value: int) -> "QueryBuilder[T]":
        self.offset_value = value
        return self

    # --- Row locking ---

    def lock_for_update(self) -> "QueryBuilder[T]":
        self.lock_clause = "FOR UPDATE"
        return self

    def shared_lock(self) -> "QueryBuilder[T]":
        self.lock_clause = "FOR SHARE"
        return self

    # --- Rendering ---

    def _compile_where(self) -> Tuple[str, List[Any]]:
        parts: List[str] = []
        values: List[Any] = []

        for index, cond in enumerate(self.conditions):
            prefix = "WHERE" if index == 0 else cond.connector

            if cond.kind == "basic":
                parts.append(f"{prefix} {cond.column} {cond.operator} %s")
                values.append(cond.value)
            elif cond.kind in ("in", "not_in"):
                if not cond.value:
                    # IN () is invalid SQL, so render its constant truth value
                    parts.append(f"{prefix} {'1 = 0' if cond.kind == 'in' else '1 = 1'}")
                else:
                    placeholders = ", ".join(["%s"] * len(cond.value))
                    parts.append(f"{prefix} {cond.column} {cond.operator} ({placeholders})")
                    values.extend(cond.value)
            elif cond.kind in ("null", "not_null"):
                parts.append(f"{prefix} {cond.column} {cond.operator}")
            else:
                parts.append(f"{prefix} {cond.value}")
                values.extend(cond.bindings)

        if not parts:
            return "", []
        return " " + " ".join(parts), values

    def _compile_select(
        self, columns: str, *, aggregate: bool = False, keep_distinct: bool = False
    ) -> Tuple[str, List[Any]]:
        distinct = "DISTINCT " if self.is_distinct and (keep_distinct or not aggregate) else ""
        sql = f"SELECT {distinct}{columns} FROM {self.table}"

        for join in self.joins:
            sql += f" {join.kind} JOIN {join.table} ON {join.on}"

        where_sql, values = self._compile_where()
        sql += where_sql

        if self.groups:
            sql += f" GROUP BY {', '.join(self.groups)}"

        if self.havings:
            sql += " HAVING " + " AND ".join(f"{col} {op} %s" for col, op, _ in self.havings)
            values.extend(value for _, _, value in self.havings)

        if aggregate:
            return sql, values

        if self.orders:
            sql += f" ORDER BY {', '.join(self.orders)}"
        if self.limit_value is not None:
            sql += f" LIMIT {int(self.limit_value)}"
        if self.offset_value is not None:
            sql += f" OFFSET {int(self.offset_value)}"
        if self.lock_clause:
            sql += f" {self.lock_clause}"

        return sql, values

    def to_sql(self) -> Tuple[str, List[Any]]:
        """Render the SELECT statement and its bindings without running it."""
        return self._compile_select(", ".join(self.columns))

    def dump(self) -> "QueryBuilder[T]":
        sql, values = self.to_sql()
        log.debug("query dump", extra={"sql": sql, "params": values})
        return self

    # --- Execution ---

    async def _execute(self, sql: str, values: Sequence[Any]) -> StatementResult:
        return await execute_raw(sql, values, connection=self.connection, provider=self.provider)

    async def get(self) -> List[T]:
        sql, values = self.to_sql()
        result = await self._execute(sql, values)
        return result.rows  # type: ignore[return-value]

    async def first(self) -> Optional[T]:
        """Fetch one row. Leaves ``LIMIT 1`` on the builder."""
        rows = await self.limit(1).get()
        return rows[0] if rows else None

    # --- Aggregates ---

    async def count(self, column: str = "*") -> int:
        return int(await self._aggregate("COUNT", column))

    async def sum(self, column: str) -> Any:
        return await self._aggregate("SUM", column)

    async def avg(self, column: str) -> Any:
        return await self._aggregate("AVG", column)

    async def min(self, column: str) -> Any:
        return await self._aggregate("MIN", column)

    async def max(self, column: str) -> Any:
        return await self._aggregate("MAX", column)

    def _compile_row_count(self) -> Tuple[str, List[Any]]:
        """
        COUNT(*) over the rows ``get()`` would return.

        A distinct or grouped select yields fewer rows than the table holds,
        so it is counted as a subquery.
        """
        if self.is_distinct or self.groups:
            inner, values = self._compile_select(
                ", ".join(self.columns), aggregate=True, keep_distinct=True
            )
            return f"SELECT COUNT(*) AS aggregate FROM ({inner}) AS sub", values
        return self._compile_select("COUNT(*) AS aggregate", aggregate=True)

    async def _aggregate(self, function: str, column: str) -> Any:
        if function == "COUNT" and column == "*":
            sql, values = self._compile_row_count()
        else:
            target = f"DISTINCT {column}" if self.is_distinct else column
            sql, values = self._compile_select(f"{function}({target}) AS aggregate", aggregate=True)

        result = await self._execute(sql, values)
        if not result.rows:
            return 0
        value = result.rows[0].get("aggregate")
        return value if value is not None else 0

    # --- Pagination ---

    async def paginate(self, page: int = 1, per_page: int = 15) -> PaginationResult[T]:
        """
        Count matching rows, then fetch one page of them.

        ``page`` is 1-based. Leaves LIMIT/OFFSET set on the builder.
        """
        if page < 1:
            raise QueryError(f"Page numbers start at 1, got {page}")
        if per_page < 0:
            raise QueryError(f"Page size must not be negative, got {per_page}")

        total = await self.count()
        rows = await self.limit(per_page).offset((page - 1) * per_page).get()

        return {
            "data": rows,
            "meta": {
                "total": total,
                "per_page": per_page,
                "current_page": page,
                "last_page": math.ceil(total / per_page) if per_page else 0,
            },
        }

    # --- Writes ---

    async def insert(self, data: Mapping[str, Any], returning: Optional[str] = "id") -> Any:
        """
        Insert one row and return the generated ``returning`` column.

        Pass ``returning=None`` for tables without a generated key.
        """
        columns = list(data.keys())
        if columns:
            placeholders = ", ".join(["%s"] * len(columns))
            sql = f"INSERT INTO {self.table} ({', '.join(columns)}) VALUES ({placeholders})"
        else:
            sql = f"INSERT INTO {self.table} DEFAULT VALUES"
        if returning:
            sql += f" RETURNING {returning}"

        result = await self._execute(sql, [data[col] for col in columns])
        if not returning or not result.rows:
            return None
        return result.rows[0][returning]

    async def insert_many(self, rows: Sequence[Mapping[str, Any]]) -> int:
        """
        Bulk insert rows sharing the first row's columns.

        Large batches can exceed the server's message size; chunk them before
        calling this.
        """
        if not rows:
            return 0

        columns = list(rows[0].keys())
        expected = set(columns)
        row_placeholder = "(" + ", ".join(["%s"] * len(columns)) + ")"
        values: List[Any] = []

        for index, row in enumerate(rows):
            if set(row.keys()) != expected:
                raise QueryError(
                    f"Row {index} columns {sorted(row.keys())} do not match {sorted(columns)}"
                )
            values.extend(row[col] for col in columns)

        sql = (
            f"INSERT INTO {self.table} ({', '.join(columns)}) "
            f"VALUES {', '.join([row_placeholder] * len(rows))}"
        )
        result = await self._execute(sql, values)
        return result.rowcount

    async def update(self, data: Mapping[str, Any]) -> int:
        if not data:
            raise QueryError(f"Nothing to update on {self.table}")

        set_clause = ", ".join(f"{col} = %s" for col in data)
        where_sql, where_values = self._compile_where()
        sql = f"UPDATE {self.table} SET {set_clause}{where_sql}"

        result = await self._execute(sql, [*data.values(), *where_values])
        return result.rowcount

    async def delete(self) -> int:
        where_sql, where_values = self._compile_where()
        result = await self._execute(f"DELETE FROM {self.table}{where_sql}", where_values)
        return result.rowcount


__all__ = ["QueryBuilder", "execute_raw"]
