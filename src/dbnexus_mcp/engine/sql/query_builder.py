"""Query builder for structured CRUD and table browsing.

This module generates parameterized SQL statements for insert, update, delete
and paged select operations. Identifiers are quoted by the dialect strategy and
every value is bound as a parameter.

Example:
    builder = QueryBuilder(DatabaseEngine.POSTGRESQL, type_hints={"id": "int4"})

    sql, params = builder.update(
        "tasks",
        RowIdentifier(columns=["id"], values=["7"]),
        [CellUpdate(column="name", value="Task 1")],
    )
    # -> UPDATE "tasks" SET "name" = $1 WHERE "id" = $2::text::int4
    # -> ["Task 1", "7"]
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from ..exceptions import InvalidRequestError
from ..models import CellUpdate, FilterCondition, FilterOperator, RowIdentifier, SortState
from .backend import DatabaseEngine
from .dialect import get_strategy

# Comparison operators that bind one value
COMPARISON_OPERATORS: dict[FilterOperator, str] = {
    FilterOperator.EQUALS: "=",
    FilterOperator.NOT_EQUALS: "<>",
    FilterOperator.GREATER_THAN: ">",
    FilterOperator.LESS_THAN: "<",
    FilterOperator.GREATER_THAN_OR_EQUAL: ">=",
    FilterOperator.LESS_THAN_OR_EQUAL: "<=",
}

# Pattern operators: (negated, prefix wildcard, suffix wildcard)
LIKE_OPERATORS: dict[FilterOperator, tuple[bool, bool, bool]] = {
    FilterOperator.CONTAINS: (False, True, True),
    FilterOperator.NOT_CONTAINS: (True, True, True),
    FilterOperator.STARTS_WITH: (False, False, True),
    FilterOperator.ENDS_WITH: (False, True, False),
}

LIKE_ESCAPE = "!"


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so the value matches literally."""
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", f"{LIKE_ESCAPE}%")
        .replace("_", f"{LIKE_ESCAPE}_")
    )


class QueryBuilder:
    """Builds parameterized SQL for one engine.

    Attributes:
        engine: Target database engine
        strategy: Dialect strategy for quoting and placeholders
        type_hints: Column name -> native type, used for PostgreSQL cast hints
    """

    def __init__(self, engine: DatabaseEngine, type_hints: Mapping[str, str] | None = None):
        """Initialize query builder.

        Args:
            engine: Target database engine
            type_hints: Native column types from a prior schema probe
        """
        self.engine = engine
        self.strategy = get_strategy(engine)
        self.type_hints = dict(type_hints or {})

    def _q(self, name: str) -> str:
        return self.strategy.quote_identifier(name)

    def _bind(self, params: list[Any], value: Any, column: str | None = None) -> str:
        """Append a value and return its placeholder."""
        params.append(value)
        native = self.type_hints.get(column) if column is not None else None
        return self.strategy.placeholder(len(params), native)

    # ========================================================================
    # CRUD
    # ========================================================================

    def insert(self, table: str, values: Mapping[str, str | None]) -> tuple[str, list[Any]]:
        """Build INSERT.

        Args:
            table: Table name
            values: Column -> value; an empty mapping inserts a row of defaults

        Returns:
            Tuple of (sql, params)
        """
        if not values:
            if self.engine == DatabaseEngine.MARIADB:
                return f"INSERT INTO {self._q(table)} () VALUES ()", []
            return f"INSERT INTO {self._q(table)} DEFAULT VALUES", []

        params: list[Any] = []
        columns = [self._q(column) for column in values]
        placeholders = [self._bind(params, value, column) for column, value in values.items()]
        sql = (
            f"INSERT INTO {self._q(table)} ({', '.join(columns)}) "
            f"VALUES ({', '.join(placeholders)})"
        )
        return sql, params

    def update(
        self, table: str, identifier: RowIdentifier, updates: Sequence[CellUpdate]
    ) -> tuple[str, list[Any]]:
        """Build UPDATE ... SET ... WHERE <identifier>.

        Raises:
            InvalidRequestError: If there are no updates or no identifier columns
        """
        if not updates:
            raise InvalidRequestError(f"UPDATE on '{table}' requires at least one column update")

        params: list[Any] = []
        set_clauses = [
            f"{self._q(update.column)} = {self._bind(params, update.value, update.column)}"
            for update in updates
        ]
        where = self._build_where(table, identifier, params)
        return f"UPDATE {self._q(table)} SET {', '.join(set_clauses)} WHERE {where}", params

    def delete(self, table: str, identifier: RowIdentifier) -> tuple[str, list[Any]]:
        """Build DELETE ... WHERE <identifier>.

        Raises:
            InvalidRequestError: If the identifier has no columns
        """
        params: list[Any] = []
        where = self._build_where(table, identifier, params)
        return f"DELETE FROM {self._q(table)} WHERE {where}", params

    def _build_where(self, table: str, identifier: RowIdentifier, params: list[Any]) -> str:
        """Build the identifier predicate; None values compile to IS NULL."""
        if not identifier.columns:
            raise InvalidRequestError(f"Row identifier for '{table}' has no columns")

        clauses = []
        for column, value in identifier.pairs():
            if value is None:
                clauses.append(f"{self._q(column)} IS NULL")
            else:
                clauses.append(f"{self._q(column)} = {self._bind(params, value, column)}")
        return " AND ".join(clauses)

    # ========================================================================
    # Browsing
    # ========================================================================

    def select_page(
        self,
        table: str,
        filters: Sequence[FilterCondition] = (),
        sort: SortState | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[str, list[Any]]:
        """Build SELECT * with filters, ordering and LIMIT/OFFSET.

        Returns:
            Tuple of (sql, params); limit and offset are the last two params
        """
        params: list[Any] = []
        sql = f"SELECT * FROM {self._q(table)}"
        where = self._filter_clause(filters, params)
        if where:
            sql += f" WHERE {where}"
        if sort is not None:
            sql += f" ORDER BY {self._q(sort.column)} {sort.direction.upper()}"
        sql += f" LIMIT {self._bind(params, limit)} OFFSET {self._bind(params, offset)}"
        return sql, params

    def count(self, table: str, filters: Sequence[FilterCondition] = ()) -> tuple[str, list[Any]]:
        """Build SELECT COUNT(*) with the same filters as select_page."""
        params: list[Any] = []
        sql = f"SELECT COUNT(*) FROM {self._q(table)}"
        where = self._filter_clause(filters, params)
        if where:
            sql += f" WHERE {where}"
        return sql, params

    def _filter_clause(self, filters: Sequence[FilterCondition], params: list[Any]) -> str:
        clauses = [
            self._filter_predicate(condition, params) for condition in filters if condition.enabled
        ]
        return " AND ".join(clauses)

    def _filter_predicate(self, condition: FilterCondition, params: list[Any]) -> str:
        column = self._q(condition.column)
        operator = condition.operator
        value = condition.value

        if operator == FilterOperator.IS_NULL:
            return f"{column} IS NULL"
        if operator == FilterOperator.IS_NOT_NULL:
            return f"{column} IS NOT NULL"

        if value is None:
            if operator == FilterOperator.EQUALS:
                return f"{column} IS NULL"
            if operator == FilterOperator.NOT_EQUALS:
                return f"{column} IS NOT NULL"
            raise InvalidRequestError(
                f"Filter '{operator.value}' on '{condition.column}' requires a value"
            )

        if operator in LIKE_OPERATORS:
            negated, leading, trailing = LIKE_OPERATORS[operator]
            pattern = f"{'%' if leading else ''}{escape_like(value)}{'%' if trailing else ''}"
            target = f"CAST({column} AS TEXT)" if self.strategy.cast_hints else column
            keyword = "NOT LIKE" if negated else "LIKE"
            return f"{target} {keyword} {self._bind(params, pattern)} ESCAPE '{LIKE_ESCAPE}'"

        symbol = COMPARISON_OPERATORS[operator]
        return f"{column} {symbol} {self._bind(params, value, condition.column)}"
