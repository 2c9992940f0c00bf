"""PostgreSQL database backend implementation.

This module provides the PostgreSQL backend, using asyncpg for native async
operation with connection pooling.

Features:
    - Native async driver (asyncpg)
    - Connection pooling with configurable size
    - SSL/TLS via sslmode strings (disable, prefer, require, verify-ca, verify-full)
    - Statements prepared before execution to report column and type names
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import asyncpg

from ..exceptions import ConstraintViolationError, SqlConnectionError, SqlQueryError
from .backend import (
    BackendConnection,
    ConnectionConfig,
    DatabaseBackendBase,
    DatabaseEngine,
    Params,
    RawResult,
)

logger = logging.getLogger(__name__)


def parse_affected_rows(status: str | None) -> int:
    """Parse affected row count from a PostgreSQL command status.

    Result format: "COMMAND [OID] COUNT"
    Examples:
        - "INSERT 0 1" -> 1
        - "UPDATE 5" -> 5
        - "DELETE 3" -> 3
        - "CREATE TABLE" -> 0

    Args:
        status: PostgreSQL command status string

    Returns:
        Number of affected rows
    """
    if not status:
        return 0

    parts = status.split()
    if len(parts) >= 2 and parts[-1].isdigit():
        return int(parts[-1])
    return 0


def ssl_argument(ssl: bool | str) -> bool | str | None:
    """Translate ConnectionConfig.ssl to asyncpg's ssl argument."""
    if isinstance(ssl, str):
        return ssl.lower()
    return True if ssl else None


class PostgresConnection(BackendConnection):
    """A connection acquired from the asyncpg pool."""

    def __init__(self, conn: asyncpg.Connection) -> None:
        self._conn = conn

    async def run(self, sql: str, params: Params = None) -> RawResult:
        """Prepare and execute one statement.

        Raises:
            ConstraintViolationError: On integrity constraint violations (SQLSTATE 23xxx)
            SqlQueryError: On any other server or argument error
        """
        args = tuple(params) if params else ()
        try:
            stmt = await self._conn.prepare(sql)
            records = await stmt.fetch(*args)
        except asyncpg.IntegrityConstraintViolationError as e:
            raise ConstraintViolationError(f"Query failed: {e}") from e
        except (asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            raise SqlQueryError(f"Query failed: {e}") from e

        attributes = stmt.get_attributes()
        if attributes:
            return RawResult(
                columns=[attr.name for attr in attributes],
                column_types=[attr.type.name for attr in attributes],
                rows=[tuple(record) for record in records],
            )
        return RawResult(affected_rows=parse_affected_rows(stmt.get_statusmsg()))

    async def begin(self) -> None:
        await self._control("BEGIN")

    async def commit(self) -> None:
        await self._control("COMMIT")

    async def rollback(self) -> None:
        if self._conn.is_in_transaction():
            await self._control("ROLLBACK")

    async def _control(self, statement: str) -> None:
        try:
            await self._conn.execute(statement)
        except (asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            raise SqlQueryError(f"{statement} failed: {e}") from e
        logger.debug(f"PostgreSQL {statement}")


class PostgresBackend(DatabaseBackendBase):
    """PostgreSQL backend using asyncpg with connection pooling.

    Attributes:
        dialect: DatabaseEngine.POSTGRESQL

    Example:
        backend = PostgresBackend()
        await backend.connect(ConnectionConfig(
            dialect=DatabaseEngine.POSTGRESQL,
            host="localhost",
            port=5432,
            database="mydb",
            username="user",
            password="pass"
        ))
        result = await backend.query("SELECT * FROM users WHERE id = $1::text::int4", ("42",))
        await backend.disconnect()
    """

    dialect = DatabaseEngine.POSTGRESQL

    def __init__(self) -> None:
        """Initialize PostgreSQL backend."""
        self._pool: asyncpg.Pool | None = None
        self._config: ConnectionConfig | None = None

    async def connect(self, config: ConnectionConfig) -> None:
        """Create connection pool.

        Pool settings:
            - min_size: 1
            - max_size: config.pool_size
            - max_inactive_connection_lifetime: 300s
            - command_timeout: config.timeout

        Args:
            config: Connection configuration

        Raises:
            SqlConnectionError: If connection fails
        """
        self._config = config
        pool_args: dict[str, Any] = {
            "host": config.host,
            "port": config.port,
            "database": config.database,
            "user": config.username,
            "password": config.password,
            "ssl": ssl_argument(config.ssl),
            "min_size": 1,
            "max_size": config.pool_size,
            "max_inactive_connection_lifetime": 300,
            "command_timeout": config.timeout,
            "timeout": config.connect_timeout,
        }
        try:
            self._pool = await asyncpg.create_pool(**pool_args)
        except (OSError, TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            raise SqlConnectionError(f"Connection failed: {e}") from e

        logger.debug(f"Connected to PostgreSQL: {config.describe()}")

    async def disconnect(self) -> None:
        """Close connection pool gracefully.

        Waits for all connections to be released before closing.
        """
        if self._pool is None:
            return
        await self._pool.close()
        self._pool = None
        logger.debug("Disconnected from PostgreSQL")

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[BackendConnection]:
        """Acquire one pooled connection until the block exits."""
        self._ensure_connected()
        assert self._pool is not None
        pool = self._pool
        try:
            conn = await pool.acquire()
        except (OSError, TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            raise SqlConnectionError(f"Connection failed: {e}") from e
        try:
            yield PostgresConnection(conn)
        finally:
            # Release resets any transaction left open by the borrower
            await pool.release(conn)

    @property
    def is_connected(self) -> bool:
        return self._pool is not None
