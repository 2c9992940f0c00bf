"""DDL generation from dialect-neutral column descriptions.

Turns ColumnSchema/ForeignKeyInput lists into CREATE TABLE statements for each
engine, plus the DROP, truncate and duplicate statements used by the table
operations. Every identifier goes through the dialect's quote function.

Example:
    sql = generate_create_table(
        "users",
        [
            ColumnSchema(name="id", type_name="INTEGER", is_primary_key=True,
                         is_auto_increment=True, is_nullable=False),
            ColumnSchema(name="email", type_name="VARCHAR(255)", is_unique=True,
                         is_nullable=False),
        ],
        [],
        DatabaseEngine.POSTGRESQL,
    )
    # CREATE TABLE "users" ("id" SERIAL PRIMARY KEY, "email" VARCHAR(255) NOT NULL UNIQUE)
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from ..exceptions import InvalidRequestError
from ..models import ColumnSchema, ForeignKeyInput
from .backend import DatabaseEngine
from .dialect import DialectStrategy, get_strategy

# Defaults emitted without quoting
SQL_KEYWORD_DEFAULTS = frozenset(
    {"CURRENT_TIMESTAMP", "CURRENT_DATE", "CURRENT_TIME", "NULL", "TRUE", "FALSE"}
)

# Marker some clients store as the default of auto-increment columns
AUTO_INCREMENT_MARKER = "AUTO_INCREMENT"

NUMERIC_LITERAL = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")


def render_default(value: str) -> str:
    """Render a default value: numbers and SQL keywords verbatim, text quoted."""
    stripped = value.strip()
    if NUMERIC_LITERAL.match(stripped):
        return stripped
    if stripped.upper().removesuffix("()") in SQL_KEYWORD_DEFAULTS:
        return stripped
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def _emits_default(value: str | None) -> bool:
    if value is None or value == "":
        return False
    if "nextval(" in value.lower() or "::" in value:
        return False
    return value.strip().upper() != AUTO_INCREMENT_MARKER


def column_sql(column: ColumnSchema, strategy: DialectStrategy) -> str:
    """Generate one column definition."""
    type_name = column.type_name.strip()
    serial = strategy.serial_type_for(type_name) if column.is_auto_increment else None

    parts = [strategy.quote_identifier(column.name)]
    if serial or type_name:
        parts.append(serial or type_name)

    if column.is_primary_key:
        parts.append("PRIMARY KEY")
        if column.is_auto_increment and strategy.auto_increment_keyword:
            if strategy.engine != DatabaseEngine.SQLITE or type_name.upper() == "INTEGER":
                parts.append(strategy.auto_increment_keyword)
    elif column.is_auto_increment and strategy.engine == DatabaseEngine.MARIADB:
        parts.append(strategy.auto_increment_keyword or "AUTO_INCREMENT")

    if serial is None:
        if not column.is_nullable and not column.is_primary_key:
            parts.append("NOT NULL")
    if column.is_unique and not column.is_primary_key:
        parts.append("UNIQUE")

    default = column.default_value
    if serial is None and default is not None and _emits_default(default):
        parts.append(f"DEFAULT {render_default(default)}")

    return " ".join(parts)


def foreign_key_sql(fk: ForeignKeyInput, strategy: DialectStrategy) -> str:
    """Generate one table-level FOREIGN KEY clause."""
    q = strategy.quote_identifier
    return (
        f"FOREIGN KEY ({q(fk.column)}) REFERENCES {q(fk.ref_table)}({q(fk.ref_column)}) "
        f"ON DELETE {fk.on_delete} ON UPDATE {fk.on_update}"
    )


@dataclass
class TableDefinition:
    """Table to be created.

    Attributes:
        name: Table name
        columns: Columns in declaration order
        foreign_keys: Foreign keys, emitted after the columns in declared order
    """

    name: str
    columns: list[ColumnSchema]
    foreign_keys: list[ForeignKeyInput] = field(default_factory=list)

    def validate(self, engine: DatabaseEngine) -> None:
        """Raise InvalidRequestError when the definition cannot be compiled.

        SQLite accepts columns declared without a type; the server engines do not.
        """
        if not self.name.strip():
            raise InvalidRequestError("Table name is required")
        if not self.columns:
            raise InvalidRequestError("At least one column is required")
        untyped = [c.name for c in self.columns if not c.type_name.strip()]
        if untyped and engine != DatabaseEngine.SQLITE:
            raise InvalidRequestError(f"Columns without a type: {', '.join(untyped)}")
        names = [c.name for c in self.columns]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise InvalidRequestError(f"Duplicate column names: {', '.join(duplicates)}")
        for fk in self.foreign_keys:
            if fk.column not in names:
                raise InvalidRequestError(
                    f"Foreign key column '{fk.column}' is not a column of '{self.name}'"
                )

    def to_create_sql(self, engine: DatabaseEngine) -> str:
        """Generate CREATE TABLE for the specified engine."""
        self.validate(engine)
        strategy = get_strategy(engine)
        definitions = [column_sql(c, strategy) for c in self.columns]
        definitions.extend(foreign_key_sql(fk, strategy) for fk in self.foreign_keys)
        return f"CREATE TABLE {strategy.quote_identifier(self.name)} ({', '.join(definitions)})"


def generate_create_table(
    name: str,
    columns: list[ColumnSchema],
    foreign_keys: list[ForeignKeyInput],
    engine: DatabaseEngine,
) -> str:
    """Generate CREATE TABLE from column and foreign key descriptions.

    Args:
        name: Table name
        columns: Columns in declaration order
        foreign_keys: Table-level foreign keys
        engine: Target engine

    Returns:
        A single CREATE TABLE statement

    Raises:
        InvalidRequestError: If the name is empty, there are no columns, or a
            foreign key names an unknown column
    """
    return TableDefinition(name, list(columns), list(foreign_keys)).to_create_sql(engine)


def generate_drop_table(name: str, engine: DatabaseEngine) -> str:
    return f"DROP TABLE {get_strategy(engine).quote_identifier(name)}"


def generate_truncate_table(name: str, engine: DatabaseEngine) -> str:
    """TRUNCATE TABLE, or DELETE FROM on SQLite which has no TRUNCATE."""
    return get_strategy(engine).truncate_statement(name)


def generate_duplicate_table(
    source: str, new_name: str, include_data: bool, engine: DatabaseEngine
) -> str:
    """Copy a table's columns, and optionally its rows, into a new table.

    Constraints and indexes are not copied.
    """
    q = get_strategy(engine).quote_identifier
    sql = f"CREATE TABLE {q(new_name)} AS SELECT * FROM {q(source)}"
    if not include_data:
        sql += " WHERE 1=0"
    return sql
