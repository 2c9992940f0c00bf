"""SQLite database backend implementation.

This module provides the SQLite backend, using the stdlib sqlite3 module with
asyncio run_in_executor for async operation.

Features:
    - Bounded pool of connections (a single shared connection for :memory:)
    - Autocommit mode; transactions are explicit BEGIN/COMMIT
    - WAL mode for file databases
    - Automatic busy_timeout for lock contention handling
    - Foreign key enforcement enabled
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

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

_STORAGE_CLASSES: dict[type, str] = {
    int: "INTEGER",
    float: "REAL",
    str: "TEXT",
    bytes: "BLOB",
    type(None): "NULL",
}


def _is_memory_path(path: str) -> bool:
    return path == ":memory:" or path.startswith("file::memory:")


async def _in_executor(fn: Any, *args: Any) -> Any:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, fn, *args)


class SqliteConnection(BackendConnection):
    """A pooled sqlite3 connection; every call runs in the default executor."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    async def run(self, sql: str, params: Params = None) -> RawResult:
        """Execute one statement.

        Raises:
            ConstraintViolationError: On sqlite3.IntegrityError
            SqlQueryError: On any other sqlite3 error
        """

        def _run() -> RawResult:
            cursor = self._conn.execute(sql, tuple(params) if params else ())
            try:
                if cursor.description:
                    columns = [desc[0] for desc in cursor.description]
                    rows = cursor.fetchall()
                    types = [_STORAGE_CLASSES.get(type(v), "") for v in rows[0]] if rows else []
                    return RawResult(columns=columns, column_types=types, rows=rows)
                return RawResult(affected_rows=max(cursor.rowcount, 0))
            finally:
                cursor.close()

        try:
            return await _in_executor(_run)
        except sqlite3.IntegrityError as e:
            raise ConstraintViolationError(f"Query failed: {e}") from e
        except sqlite3.Error as e:
            raise SqlQueryError(f"Query failed: {e}") from e

    async def begin(self) -> None:
        await self._control("BEGIN")

    async def commit(self) -> None:
        await self._control("COMMIT")

    async def rollback(self) -> None:
        if self._conn.in_transaction:
            await self._control("ROLLBACK")

    async def _control(self, statement: str) -> None:
        try:
            await _in_executor(self._conn.execute, statement)
        except sqlite3.Error as e:
            raise SqlQueryError(f"{statement} failed: {e}") from e
        logger.debug(f"SQLite {statement}")


class SqliteBackend(DatabaseBackendBase):
    """SQLite backend using stdlib sqlite3 with async executor.

    Connections are opened in autocommit mode (isolation_level=None) so that
    scripts take effect statement by statement and transaction() issues its
    own BEGIN/COMMIT.

    Attributes:
        dialect: DatabaseEngine.SQLITE
        DEFAULT_PRAGMAS: Default PRAGMA settings applied on connection

    Example:
        backend = SqliteBackend()
        await backend.connect(ConnectionConfig(
            dialect=DatabaseEngine.SQLITE,
            path="/data/app.db"
        ))
        result = await backend.query("SELECT * FROM users WHERE id = ?", ("42",))
        await backend.disconnect()
    """

    dialect = DatabaseEngine.SQLITE

    DEFAULT_PRAGMAS: dict[str, str | int] = {
        "journal_mode": "WAL",
        "busy_timeout": 30000,
        "synchronous": "NORMAL",
        "foreign_keys": "ON",
    }

    def __init__(self) -> None:
        """Initialize SQLite backend."""
        self._pool: asyncio.Queue[sqlite3.Connection] | None = None
        self._connections: list[sqlite3.Connection] = []
        self._config: ConnectionConfig | None = None

    async def connect(self, config: ConnectionConfig) -> None:
        """Open the connection pool.

        Creates the database file and parent directories if they don't exist.
        Applies DEFAULT_PRAGMAS, with busy_timeout taken from config.timeout.

        Args:
            config: Connection configuration with path

        Raises:
            SqlConnectionError: If the database cannot be opened
        """
        self._config = config
        path = config.path
        if path is None:
            raise SqlConnectionError("SQLite requires 'path' parameter")

        in_memory = _is_memory_path(path)
        size = 1 if in_memory else max(config.pool_size, 1)

        pragmas = {**self.DEFAULT_PRAGMAS}
        if in_memory:
            pragmas.pop("journal_mode")
        if config.timeout:
            pragmas["busy_timeout"] = config.timeout * 1000

        def _open() -> sqlite3.Connection:
            if not in_memory and not path.startswith("file:"):
                Path(path).parent.mkdir(parents=True, exist_ok=True)

            conn = sqlite3.connect(
                path,
                check_same_thread=False,
                isolation_level=None,
                uri=path.startswith("file:"),
            )
            for pragma, value in pragmas.items():
                try:
                    conn.execute(f"PRAGMA {pragma}={value}")
                except sqlite3.Error as e:
                    logger.warning(f"Failed to set PRAGMA {pragma}={value}: {e}")
            return conn

        pool: asyncio.Queue[sqlite3.Connection] = asyncio.Queue(maxsize=size)
        try:
            for _ in range(size):
                conn = await _in_executor(_open)
                self._connections.append(conn)
                pool.put_nowait(conn)
        except (sqlite3.Error, OSError) as e:
            self._close_all()
            raise SqlConnectionError(f"Connection failed: {e}") from e

        self._pool = pool
        logger.debug(f"Connected to SQLite database: {path} (pool size {size})")

    async def disconnect(self) -> None:
        """Close every pooled connection.

        Safe to call multiple times or if not connected.
        """
        if self._pool is None:
            return
        await _in_executor(self._close_all)
        self._pool = None
        logger.debug("Disconnected from SQLite database")

    def _close_all(self) -> None:
        for conn in self._connections:
            conn.close()
        self._connections.clear()

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[BackendConnection]:
        """Borrow one connection until the block exits.

        A transaction left open by the borrower is rolled back before the
        connection returns to the pool.
        """
        self._ensure_connected()
        assert self._pool is not None
        pool = self._pool
        conn = await pool.get()
        try:
            yield SqliteConnection(conn)
        finally:
            if conn.in_transaction:
                logger.warning("Rolling back transaction left open on pooled SQLite connection")
                await _in_executor(conn.execute, "ROLLBACK")
            pool.put_nowait(conn)

    @property
    def is_connected(self) -> bool:
        return self._pool is not None
