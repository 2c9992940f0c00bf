"""Schema introspection normalized across engines.

PostgreSQL and MariaDB are read from information_schema with one joined query
per table; SQLite from its pragma table functions, with foreign keys, unique
indexes and the AUTOINCREMENT keyword looked up in separate calls. Results are
normalized into ColumnSchema values so callers never branch on the engine.

Table names are always bound parameters.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from typing import Any

from ..exceptions import TableNotFoundError
from ..models import ColumnSchema, ForeignKeyInput, ForeignKeyRef
from .backend import BackendConnection, DatabaseBackendBase, DatabaseEngine
from .dialect import (
    SQLITE_PRIMARY_KEY_COLUMNS,
    SQLITE_TABLE_SQL,
    SQLITE_UNIQUE_INDEX_COLUMNS,
    get_strategy,
)

logger = logging.getLogger(__name__)

# 'text' optionally followed by one or more ::type casts
_QUOTED_DEFAULT = re.compile(r"^'((?:[^']|'')*)'(?:::[\w\s\".\[\]()]+)*$", re.DOTALL)
_NULL_DEFAULT = re.compile(r"^NULL(?:::[\w\s\".\[\]()]+)*$", re.IGNORECASE)


def _text(value: Any) -> str | None:
    """Catalog values may arrive as bytes from some MySQL servers."""
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8")
    return str(value)


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().upper() in ("YES", "TRUE", "1")
    return bool(value)


def normalize_default(value: Any) -> str | None:
    """Normalize catalog default text.

    Quoted literals are unquoted ('x' -> x, 'x'::text -> x) and NULL markers
    become None. Expressions are returned unchanged.
    """
    text = _text(value)
    if text is None:
        return None
    stripped = text.strip()
    if _NULL_DEFAULT.match(stripped):
        return None
    match = _QUOTED_DEFAULT.match(stripped)
    if match:
        return match.group(1).replace("''", "'")
    return stripped


class SchemaIntrospector:
    """Reads table metadata through a backend.

    Example:
        introspector = SchemaIntrospector(backend)
        tables = await introspector.list_tables()
        columns = await introspector.get_table_schema("users")
    """

    def __init__(self, backend: DatabaseBackendBase):
        self.backend = backend
        self.engine = backend.dialect
        self.strategy = get_strategy(backend.dialect)

    async def list_databases(self) -> list[str]:
        """List databases on the server; SQLite reports its attached schemas ('main')."""
        result = await self.backend.query(self.strategy.catalog.list_databases)
        return [_text(row[0]) or "" for row in result.rows]

    async def list_tables(self) -> list[str]:
        """List user tables in the current database/schema, sorted by name."""
        result = await self.backend.query(self.strategy.catalog.list_tables)
        return [_text(row[0]) or "" for row in result.rows]

    async def get_columns(self, table: str) -> list[str]:
        """List column names in declaration order.

        Raises:
            TableNotFoundError: If the table has no columns
        """
        result = await self.backend.query(self.strategy.catalog.columns, (table,))
        if not result.rows:
            raise TableNotFoundError(table)
        return [_text(row[0]) or "" for row in result.rows]

    async def get_table_schema(self, table: str) -> list[ColumnSchema]:
        """Describe every column of a table in declaration order.

        Raises:
            TableNotFoundError: If the table has no columns
        """
        async with self.backend.connection() as conn:
            if self.engine == DatabaseEngine.SQLITE:
                columns = await self._sqlite_schema(conn, table)
            elif self.engine == DatabaseEngine.POSTGRESQL:
                columns = await self._postgres_schema(conn, table)
            else:
                columns = await self._mariadb_schema(conn, table)

        if not columns:
            raise TableNotFoundError(table)
        logger.debug(f"Introspected {len(columns)} columns of {table}")
        return columns

    async def get_foreign_keys(self, table: str) -> list[ForeignKeyInput]:
        """List foreign keys declared on a table, one entry per column pair."""
        async with self.backend.connection() as conn:
            if self.engine == DatabaseEngine.SQLITE:
                rows = await self._sqlite_foreign_keys(conn, table)
            else:
                rows = (await conn.run(self.strategy.catalog.foreign_keys, (table,))).rows
        return [
            ForeignKeyInput(
                column=_text(row[0]) or "",
                ref_table=_text(row[1]) or "",
                ref_column=_text(row[2]) or "",
                on_delete=_text(row[3]) or "NO ACTION",
                on_update=_text(row[4]) or "NO ACTION",
            )
            for row in rows
        ]

    async def get_native_types(self, table: str) -> dict[str, str]:
        """Column name -> server type name, for engines that use cast hints.

        Returns an empty mapping for engines without cast hints.
        """
        if not self.strategy.cast_hints:
            return {}
        columns = await self.get_table_schema(table)
        return {c.name: c.native_type for c in columns if c.native_type}

    # ========================================================================
    # Engine-specific readers
    # ========================================================================

    async def _sqlite_foreign_keys(
        self, conn: BackendConnection, table: str
    ) -> list[tuple[str, str, str, str, str]]:
        """Foreign key rows with every target column filled in.

        A reference written without a column ("REFERENCES parent") targets the
        parent's primary key; pragma_foreign_key_list reports it as NULL, so the
        seq-th primary-key column of the parent is substituted.
        """
        result = await conn.run(self.strategy.catalog.foreign_keys, (table,))
        primary_keys: dict[str, list[str]] = {}
        rows = []
        for src, ref_table, ref_column, on_delete, on_update, seq in result.rows:
            if ref_column is None:
                if ref_table not in primary_keys:
                    pk = await conn.run(SQLITE_PRIMARY_KEY_COLUMNS, (ref_table,))
                    primary_keys[ref_table] = [row[0] for row in pk.rows]
                pk_columns = primary_keys[ref_table]
                if seq >= len(pk_columns):
                    logger.warning(
                        f"Skipping foreign key {table}.{src}: "
                        f"'{ref_table}' has no primary key to reference"
                    )
                    continue
                ref_column = pk_columns[seq]
            rows.append((src, ref_table, ref_column, on_delete, on_update))
        return rows

    async def _sqlite_schema(self, conn: BackendConnection, table: str) -> list[ColumnSchema]:
        info = await conn.run(self.strategy.catalog.table_schema, (table,))
        if not info.rows:
            return []

        references: dict[str, ForeignKeyRef] = {}
        for src, ref_table, ref_column, _, _ in await self._sqlite_foreign_keys(conn, table):
            references.setdefault(src, ForeignKeyRef(table=ref_table, column=ref_column))

        index_rows = await conn.run(SQLITE_UNIQUE_INDEX_COLUMNS, (table,))
        index_sizes = Counter(index_name for index_name, _ in index_rows.rows)
        unique_columns = {
            col for index_name, col in index_rows.rows if index_sizes[index_name] == 1
        }

        table_sql = await conn.run(SQLITE_TABLE_SQL, (table,))
        create_sql = _text(table_sql.rows[0][0]) if table_sql.rows else None
        has_autoincrement = create_sql is not None and "AUTOINCREMENT" in create_sql.upper()
        pk_count = sum(1 for row in info.rows if row[4])

        columns = []
        for name, type_name, notnull, default, pk in info.rows:
            is_pk = bool(pk)
            columns.append(
                ColumnSchema(
                    name=name,
                    type_name=type_name or "",
                    is_nullable=not notnull and not is_pk,
                    is_primary_key=is_pk,
                    is_auto_increment=(
                        is_pk
                        and pk_count == 1
                        and has_autoincrement
                        and (type_name or "").upper() == "INTEGER"
                    ),
                    is_unique=name in unique_columns and not is_pk,
                    default_value=normalize_default(default),
                    foreign_key=references.get(name),
                )
            )
        return columns

    async def _postgres_schema(self, conn: BackendConnection, table: str) -> list[ColumnSchema]:
        result = await conn.run(self.strategy.catalog.table_schema, (table,))
        columns = []
        for (
            name,
            data_type,
            udt_name,
            formatted_type,
            is_nullable,
            default,
            is_identity,
            is_pk,
            is_unique,
            fk_table,
            fk_column,
        ) in result.rows:
            # format_type keeps length, precision and scale: varchar(40), numeric(10,2)
            type_name = formatted_type or (
                udt_name if data_type in ("USER-DEFINED", "ARRAY") else data_type
            )

            raw_default = _text(default)
            is_serial = raw_default is not None and "nextval(" in raw_default.lower()
            columns.append(
                ColumnSchema(
                    name=name,
                    type_name=type_name,
                    is_nullable=_flag(is_nullable) and not is_pk,
                    is_primary_key=bool(is_pk),
                    is_auto_increment=is_serial or _flag(is_identity),
                    is_unique=bool(is_unique) and not is_pk,
                    # Sequence defaults are implied by the auto-increment flag
                    default_value=None if is_serial else normalize_default(raw_default),
                    foreign_key=(
                        ForeignKeyRef(table=fk_table, column=fk_column)
                        if fk_table and fk_column
                        else None
                    ),
                    native_type=udt_name,
                )
            )
        return columns

    async def _mariadb_schema(self, conn: BackendConnection, table: str) -> list[ColumnSchema]:
        result = await conn.run(self.strategy.catalog.table_schema, (table,))
        columns: dict[str, ColumnSchema] = {}
        for row in result.rows:
            name, column_type, is_nullable, key, default, extra, ref_table, ref_column = row
            name = _text(name) or ""
            if name in columns:
                # One row per referenced key; the first reference wins
                continue
            key = (_text(key) or "").upper()
            is_pk = key == "PRI"
            columns[name] = ColumnSchema(
                name=name,
                type_name=_text(column_type) or "",
                is_nullable=_flag(is_nullable) and not is_pk,
                is_primary_key=is_pk,
                is_auto_increment="auto_increment" in (_text(extra) or "").lower(),
                is_unique=key == "UNI",
                default_value=normalize_default(default),
                foreign_key=(
                    ForeignKeyRef(table=_text(ref_table) or "", column=_text(ref_column) or "")
                    if ref_table and ref_column
                    else None
                ),
            )
        return list(columns.values())
