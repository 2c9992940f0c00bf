"""Per-dialect strategy table.

Every fact that differs between SQLite, PostgreSQL and MariaDB/MySQL lives in
one DialectStrategy value: identifier quoting, placeholder syntax, escaping in
literals, serial type names, coercion probes and catalog queries. Components
take a strategy instead of re-deriving the dialect from connection strings.

Example:
    strategy = get_strategy(classify_connection_string("postgres://db/app"))
    strategy.quote_identifier('my"table')  # '"my""table"'
    strategy.placeholder(1, "int4")  # '$1::text::int4'
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from ..exceptions import UnsupportedDialectError
from .backend import DatabaseEngine
from .coercion import EMBEDDED_PROBES, SERVER_PROBES, Probe

# Connection-string scheme -> engine
CONNECTION_PREFIXES: dict[str, DatabaseEngine] = {
    "sqlite": DatabaseEngine.SQLITE,
    "postgres": DatabaseEngine.POSTGRESQL,
    "postgresql": DatabaseEngine.POSTGRESQL,
    "mysql": DatabaseEngine.MARIADB,
    "mariadb": DatabaseEngine.MARIADB,
}

SESSION_PREFIX = "session:"

_BARE_TYPE_NAME = re.compile(r"^[a-z_][a-z0-9_]*$")


def classify_connection_string(url: str) -> DatabaseEngine:
    """Map a connection string to its engine by scheme prefix.

    Raises:
        UnsupportedDialectError: If the prefix names no supported engine
    """
    scheme, sep, _ = url.partition(":")
    engine = CONNECTION_PREFIXES.get(scheme.strip().lower()) if sep else None
    if engine is None:
        raise UnsupportedDialectError(url)
    return engine


@dataclass(frozen=True)
class CatalogQueries:
    """Catalog statements.

    list_databases and list_tables take no parameters; the others take the
    table name as their only parameter.
    """

    list_databases: str
    list_tables: str
    columns: str
    table_schema: str
    foreign_keys: str


@dataclass(frozen=True)
class DialectStrategy:
    """Dialect-specific constants and rendering rules.

    Attributes:
        engine: Engine this strategy describes
        quote_char: Identifier quote character
        numbered_placeholders: Use $1, $2 ... instead of ?
        backslash_escapes: Backslash escapes the next character inside literals
        cast_hints: Bound values are sent as text and cast to the column type
        serial_types: Integer type name -> serial keyword for auto-increment columns
        auto_increment_keyword: Column suffix for auto-increment, if any
        probes: Ordered coercion probes for result cells
        truncate_template: Statement that empties a table ({table} is quoted)
        catalog: Introspection statements
        text_types: Native types that accept text parameters without a cast
    """

    engine: DatabaseEngine
    quote_char: str
    numbered_placeholders: bool
    backslash_escapes: bool
    cast_hints: bool
    probes: tuple[Probe, ...]
    truncate_template: str
    catalog: CatalogQueries
    auto_increment_keyword: str | None = None
    serial_types: dict[str, str] = field(default_factory=dict)
    text_types: frozenset[str] = frozenset()

    def quote_identifier(self, name: str) -> str:
        """Quote an identifier, doubling any embedded quote character."""
        q = self.quote_char
        return f"{q}{name.replace(q, q + q)}{q}"

    def placeholder(self, index: int, native_type: str | None = None) -> str:
        """Render the placeholder for the index-th (1-based) bound value.

        Args:
            index: 1-based parameter position
            native_type: Column's native type, used for cast hints

        Returns:
            "?" or "$n", with "::text::<type>" appended for non-text native
            types when the dialect needs cast hints
        """
        if not self.numbered_placeholders:
            return "?"
        marker = f"${index}"
        if self.cast_hints and native_type and native_type.lower() not in self.text_types:
            type_name = native_type
            if not _BARE_TYPE_NAME.match(native_type):
                type_name = self.quote_identifier(native_type)
            marker = f"{marker}::text::{type_name}"
        return marker

    def serial_type_for(self, type_name: str) -> str | None:
        """Return the serial keyword replacing an auto-increment integer type."""
        return self.serial_types.get(type_name.strip().lower())

    def truncate_statement(self, table: str) -> str:
        return self.truncate_template.format(table=self.quote_identifier(table))


# ============================================================================
# Catalog queries
# ============================================================================

_SQLITE_CATALOG = CatalogQueries(
    list_databases="SELECT name FROM pragma_database_list WHERE name <> 'temp' ORDER BY seq",
    list_tables=(
        "SELECT name FROM sqlite_master "
        "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
    ),
    columns="SELECT name FROM pragma_table_info(?) ORDER BY cid",
    table_schema=(
        'SELECT name, type, "notnull", dflt_value, pk FROM pragma_table_info(?) ORDER BY cid'
    ),
    foreign_keys=(
        'SELECT "from", "table", "to", on_delete, on_update, seq '
        "FROM pragma_foreign_key_list(?) ORDER BY id, seq"
    ),
)

# Unique single-column indexes and the table's CREATE statement are SQLite-only
# lookups used by the introspector alongside the pragma queries.
SQLITE_UNIQUE_INDEX_COLUMNS = (
    "SELECT il.name, ii.name FROM pragma_index_list(?) AS il "
    'JOIN pragma_index_info(il.name) AS ii WHERE il."unique" = 1'
)
SQLITE_TABLE_SQL = "SELECT sql FROM sqlite_master WHERE type = 'table' AND name = ?"
# Primary-key columns in key order; targets of references that name no column
SQLITE_PRIMARY_KEY_COLUMNS = "SELECT name FROM pragma_table_info(?) WHERE pk > 0 ORDER BY pk"

_POSTGRES_CATALOG = CatalogQueries(
    list_databases=(
        "SELECT datname::text FROM pg_database WHERE datistemplate = false ORDER BY datname"
    ),
    list_tables=(
        "SELECT table_name FROM information_schema.tables "
        "WHERE table_schema = current_schema() AND table_type = 'BASE TABLE' "
        "ORDER BY table_name"
    ),
    columns=(
        "SELECT column_name FROM information_schema.columns "
        "WHERE table_schema = current_schema() AND table_name = $1 "
        "ORDER BY ordinal_position"
    ),
    table_schema="""
SELECT
    c.column_name,
    c.data_type,
    c.udt_name,
    format_type(a.atttypid, a.atttypmod) AS formatted_type,
    c.is_nullable,
    c.column_default,
    c.is_identity,
    COALESCE(bool_or(tc.constraint_type = 'PRIMARY KEY'), false) AS is_primary_key,
    COALESCE(bool_or(tc.constraint_type = 'UNIQUE'), false) AS is_unique,
    max(ccu.table_name) FILTER (WHERE tc.constraint_type = 'FOREIGN KEY') AS fk_table,
    max(ccu.column_name) FILTER (WHERE tc.constraint_type = 'FOREIGN KEY') AS fk_column
FROM information_schema.columns c
JOIN pg_catalog.pg_attribute a
    ON a.attrelid = (quote_ident(c.table_schema) || '.' || quote_ident(c.table_name))::regclass
    AND a.attname = c.column_name
LEFT JOIN information_schema.key_column_usage kcu
    ON kcu.table_schema = c.table_schema
    AND kcu.table_name = c.table_name
    AND kcu.column_name = c.column_name
LEFT JOIN information_schema.table_constraints tc
    ON tc.constraint_schema = kcu.constraint_schema
    AND tc.constraint_name = kcu.constraint_name
LEFT JOIN information_schema.constraint_column_usage ccu
    ON ccu.constraint_schema = tc.constraint_schema
    AND ccu.constraint_name = tc.constraint_name
    AND tc.constraint_type = 'FOREIGN KEY'
WHERE c.table_schema = current_schema() AND c.table_name = $1
GROUP BY c.ordinal_position, c.column_name, c.data_type, c.udt_name,
    a.atttypid, a.atttypmod, c.is_nullable, c.column_default, c.is_identity
ORDER BY c.ordinal_position
""",
    foreign_keys="""
SELECT kcu.column_name, ccu.table_name, ccu.column_name, rc.delete_rule, rc.update_rule
FROM information_schema.table_constraints tc
JOIN information_schema.key_column_usage kcu
    ON kcu.constraint_schema = tc.constraint_schema
    AND kcu.constraint_name = tc.constraint_name
JOIN information_schema.referential_constraints rc
    ON rc.constraint_schema = tc.constraint_schema
    AND rc.constraint_name = tc.constraint_name
JOIN information_schema.constraint_column_usage ccu
    ON ccu.constraint_schema = rc.unique_constraint_schema
    AND ccu.constraint_name = rc.unique_constraint_name
WHERE tc.constraint_type = 'FOREIGN KEY'
    AND tc.table_schema = current_schema()
    AND tc.table_name = $1
ORDER BY tc.constraint_name, kcu.ordinal_position
""",
)

_MARIADB_CATALOG = CatalogQueries(
    list_databases=(
        "SELECT SCHEMA_NAME FROM information_schema.SCHEMATA "
        "WHERE SCHEMA_NAME NOT IN ('information_schema', 'mysql', 'performance_schema', 'sys') "
        "ORDER BY SCHEMA_NAME"
    ),
    list_tables=(
        "SELECT TABLE_NAME FROM information_schema.TABLES "
        "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_TYPE = 'BASE TABLE' "
        "ORDER BY TABLE_NAME"
    ),
    columns=(
        "SELECT COLUMN_NAME FROM information_schema.COLUMNS "
        "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = ? "
        "ORDER BY ORDINAL_POSITION"
    ),
    table_schema="""
SELECT
    c.COLUMN_NAME,
    c.COLUMN_TYPE,
    c.IS_NULLABLE,
    c.COLUMN_KEY,
    c.COLUMN_DEFAULT,
    c.EXTRA,
    k.REFERENCED_TABLE_NAME,
    k.REFERENCED_COLUMN_NAME
FROM information_schema.COLUMNS c
LEFT JOIN information_schema.KEY_COLUMN_USAGE k
    ON k.TABLE_SCHEMA = c.TABLE_SCHEMA
    AND k.TABLE_NAME = c.TABLE_NAME
    AND k.COLUMN_NAME = c.COLUMN_NAME
    AND k.REFERENCED_TABLE_NAME IS NOT NULL
WHERE c.TABLE_SCHEMA = DATABASE() AND c.TABLE_NAME = ?
ORDER BY c.ORDINAL_POSITION
""",
    foreign_keys="""
SELECT k.COLUMN_NAME, k.REFERENCED_TABLE_NAME, k.REFERENCED_COLUMN_NAME,
    r.DELETE_RULE, r.UPDATE_RULE
FROM information_schema.KEY_COLUMN_USAGE k
JOIN information_schema.REFERENTIAL_CONSTRAINTS r
    ON r.CONSTRAINT_SCHEMA = k.CONSTRAINT_SCHEMA
    AND r.CONSTRAINT_NAME = k.CONSTRAINT_NAME
WHERE k.TABLE_SCHEMA = DATABASE()
    AND k.TABLE_NAME = ?
    AND k.REFERENCED_TABLE_NAME IS NOT NULL
ORDER BY k.CONSTRAINT_NAME, k.ORDINAL_POSITION
""",
)


# ============================================================================
# Strategy table
# ============================================================================

STRATEGIES: dict[DatabaseEngine, DialectStrategy] = {
    DatabaseEngine.SQLITE: DialectStrategy(
        engine=DatabaseEngine.SQLITE,
        quote_char='"',
        numbered_placeholders=False,
        backslash_escapes=False,
        cast_hints=False,
        probes=EMBEDDED_PROBES,
        truncate_template="DELETE FROM {table}",
        catalog=_SQLITE_CATALOG,
        auto_increment_keyword="AUTOINCREMENT",
    ),
    DatabaseEngine.POSTGRESQL: DialectStrategy(
        engine=DatabaseEngine.POSTGRESQL,
        quote_char='"',
        numbered_placeholders=True,
        backslash_escapes=False,
        cast_hints=True,
        probes=SERVER_PROBES,
        truncate_template="TRUNCATE TABLE {table}",
        catalog=_POSTGRES_CATALOG,
        serial_types={
            "smallint": "SMALLSERIAL",
            "int2": "SMALLSERIAL",
            "integer": "SERIAL",
            "int": "SERIAL",
            "int4": "SERIAL",
            "bigint": "BIGSERIAL",
            "int8": "BIGSERIAL",
        },
        text_types=frozenset(
            {
                "text",
                "varchar",
                "character varying",
                "bpchar",
                "character",
                "char",
                "name",
                "unknown",
            }
        ),
    ),
    DatabaseEngine.MARIADB: DialectStrategy(
        engine=DatabaseEngine.MARIADB,
        quote_char="`",
        numbered_placeholders=False,
        backslash_escapes=True,
        cast_hints=False,
        probes=SERVER_PROBES,
        truncate_template="TRUNCATE TABLE {table}",
        catalog=_MARIADB_CATALOG,
        auto_increment_keyword="AUTO_INCREMENT",
    ),
}


def get_strategy(engine: DatabaseEngine) -> DialectStrategy:
    """Return the strategy for an engine."""
    return STRATEGIES[engine]
