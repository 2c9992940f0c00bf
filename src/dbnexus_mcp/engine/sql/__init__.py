"""SQL engine: backends, dialect strategies, statement splitting and builders.

This package provides a uniform interface for SQLite, PostgreSQL and
MariaDB/MySQL: pooled backends that execute single statements, a dialect
strategy table, a script splitter, result coercion to display strings,
schema introspection and DDL/CRUD builders.

Usage:
    from dbnexus_mcp.engine.sql import ConnectionConfig, connect_backend

    backend = await connect_backend(ConnectionConfig.from_connection_string("sqlite:app.db"))
    async with backend.connection() as conn:
        raw = await conn.run("SELECT * FROM users WHERE id = ?", ("1",))
    await backend.disconnect()
"""

from .backend import (
    BackendConnection,
    ConnectionConfig,
    DatabaseBackendBase,
    DatabaseEngine,
    Params,
    RawResult,
)
from .coercion import (
    Probe,
    ProbeCapable,
    ProbeMismatch,
    ResultRow,
    coerce_cell,
    coerce_result,
    coerce_rows,
)
from .dialect import DialectStrategy, classify_connection_string, get_strategy
from .introspection import SchemaIntrospector
from .mariadb_backend import MariaDBBackend
from .model import (
    generate_create_table,
    generate_drop_table,
    generate_duplicate_table,
    generate_truncate_table,
)
from .param_converter import ParamConverter
from .postgres_backend import PostgresBackend
from .query_builder import QueryBuilder
from .splitter import split_sql_statements
from .sqlite_backend import SqliteBackend

BACKENDS: dict[DatabaseEngine, type[DatabaseBackendBase]] = {
    DatabaseEngine.SQLITE: SqliteBackend,
    DatabaseEngine.POSTGRESQL: PostgresBackend,
    DatabaseEngine.MARIADB: MariaDBBackend,
}


def create_backend(engine: DatabaseEngine) -> DatabaseBackendBase:
    """Instantiate an unconnected backend for an engine."""
    return BACKENDS[engine]()


async def connect_backend(config: ConnectionConfig) -> DatabaseBackendBase:
    """Create a backend for config.dialect and open its pool.

    Raises:
        SqlConnectionError: If the pool cannot be opened
    """
    backend = create_backend(config.dialect)
    await backend.connect(config)
    return backend


__all__ = [
    # Core types
    "BackendConnection",
    "ConnectionConfig",
    "DatabaseBackendBase",
    "DatabaseEngine",
    "Params",
    "RawResult",
    # Dialects
    "DialectStrategy",
    "classify_connection_string",
    "get_strategy",
    # Scripts and results
    "split_sql_statements",
    "Probe",
    "ProbeCapable",
    "ProbeMismatch",
    "ResultRow",
    "coerce_cell",
    "coerce_result",
    "coerce_rows",
    # Schema and builders
    "SchemaIntrospector",
    "QueryBuilder",
    "generate_create_table",
    "generate_drop_table",
    "generate_duplicate_table",
    "generate_truncate_table",
    "ParamConverter",
    # Backends
    "SqliteBackend",
    "PostgresBackend",
    "MariaDBBackend",
    "create_backend",
    "connect_backend",
]
