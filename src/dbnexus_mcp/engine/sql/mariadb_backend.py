"""MariaDB/MySQL database backend implementation.

This module provides the MariaDB backend, using aiomysql for native async
operation with connection pooling.

Features:
    - Native async driver (aiomysql)
    - Connection pooling with configurable size
    - Autocommit by default; transaction() issues explicit BEGIN/COMMIT
    - Column type names from pymysql's FIELD_TYPE table
    - Compatible with MySQL 5.7+ and MariaDB 10.2+
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import aiomysql
import pymysql
from pymysql.constants import FIELD_TYPE

from ..exceptions import ConstraintViolationError, SqlConnectionError, SqlQueryError
from .backend import (
    BackendConnection,
    ConnectionConfig,
    DatabaseBackendBase,
    DatabaseEngine,
    Params,
    RawResult,
)
from .param_converter import ParamConverter

logger = logging.getLogger(__name__)


def _field_type_names() -> dict[int, str]:
    names: dict[int, str] = {}
    for name, code in vars(FIELD_TYPE).items():
        if name.isupper() and isinstance(code, int):
            # CHAR and INTERVAL alias TINY and ENUM; keep the first name
            names.setdefault(code, name)
    return names


FIELD_TYPE_NAMES = _field_type_names()


class MariaDBConnection(BackendConnection):
    """A connection acquired from the aiomysql pool."""

    def __init__(self, conn: aiomysql.Connection, converter: ParamConverter) -> None:
        self._conn = conn
        self._converter = converter

    async def run(self, sql: str, params: Params = None) -> RawResult:
        """Execute one statement.

        Parameterized statements are converted from ? to %s; statements
        without parameters are sent verbatim.

        Raises:
            ConstraintViolationError: On pymysql IntegrityError
            SqlQueryError: On any other MySQL error
        """
        args = tuple(params) if params else None
        statement = self._converter.convert(sql) if args else sql
        try:
            async with self._conn.cursor() as cursor:
                await cursor.execute(statement, args)
                if cursor.description:
                    rows = await cursor.fetchall()
                    return RawResult(
                        columns=[desc[0] for desc in cursor.description],
                        column_types=[
                            FIELD_TYPE_NAMES.get(desc[1], "UNKNOWN") for desc in cursor.description
                        ],
                        rows=[tuple(row) for row in rows],
                    )
                return RawResult(affected_rows=max(cursor.rowcount, 0))
        except pymysql.err.IntegrityError as e:
            raise ConstraintViolationError(f"Query failed: {e}") from e
        except pymysql.err.MySQLError as e:
            raise SqlQueryError(f"Query failed: {e}") from e

    async def begin(self) -> None:
        await self._conn.begin()
        logger.debug("MariaDB BEGIN")

    async def commit(self) -> None:
        try:
            await self._conn.commit()
        except pymysql.err.MySQLError as e:
            raise SqlQueryError(f"COMMIT failed: {e}") from e
        logger.debug("MariaDB COMMIT")

    async def rollback(self) -> None:
        try:
            await self._conn.rollback()
        except pymysql.err.MySQLError as e:
            raise SqlQueryError(f"ROLLBACK failed: {e}") from e
        logger.debug("MariaDB ROLLBACK")


class MariaDBBackend(DatabaseBackendBase):
    """MariaDB/MySQL backend using aiomysql with connection pooling.

    Attributes:
        dialect: DatabaseEngine.MARIADB

    Example:
        backend = MariaDBBackend()
        await backend.connect(ConnectionConfig(
            dialect=DatabaseEngine.MARIADB,
            host="localhost",
            port=3306,
            database="mydb",
            username="user",
            password="pass"
        ))
        result = await backend.query("SELECT * FROM users WHERE id = ?", ("42",))
        await backend.disconnect()
    """

    dialect = DatabaseEngine.MARIADB

    def __init__(self) -> None:
        """Initialize MariaDB backend."""
        self._pool: aiomysql.Pool | None = None
        self._config: ConnectionConfig | None = None
        self._converter = ParamConverter()

    async def connect(self, config: ConnectionConfig) -> None:
        """Create connection pool.

        Pool settings:
            - minsize: 1
            - maxsize: config.pool_size
            - pool_recycle: 300s (prevent stale connections)
            - connect_timeout: config.connect_timeout

        Args:
            config: Connection configuration

        Raises:
            SqlConnectionError: If connection fails
        """
        self._config = config

        # aiomysql accepts True for SSL with default settings
        ssl_context = None
        if config.ssl and str(config.ssl).lower() not in ("disable", "disabled", "false"):
            ssl_context = True

        try:
            self._pool = await aiomysql.create_pool(
                host=config.host,
                port=config.port or 3306,
                db=config.database,
                user=config.username,
                password=config.password or "",
                ssl=ssl_context,
                minsize=1,
                maxsize=config.pool_size,
                pool_recycle=300,
                connect_timeout=config.connect_timeout,
                autocommit=True,
                charset="utf8mb4",
            )
        except (OSError, TimeoutError, pymysql.err.MySQLError) as e:
            raise SqlConnectionError(f"Connection failed: {e}") from e

        logger.debug(f"Connected to MariaDB: {config.describe()}")

    async def disconnect(self) -> None:
        """Close connection pool gracefully.

        Waits for all connections to be released before closing.
        """
        if self._pool is None:
            return
        self._pool.close()
        await self._pool.wait_closed()
        self._pool = None
        logger.debug("Disconnected from MariaDB")

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[BackendConnection]:
        """Acquire one pooled connection until the block exits."""
        self._ensure_connected()
        assert self._pool is not None
        pool = self._pool
        try:
            conn = await pool.acquire()
        except (OSError, TimeoutError, pymysql.err.MySQLError) as e:
            raise SqlConnectionError(f"Connection failed: {e}") from e
        try:
            yield MariaDBConnection(conn, self._converter)
        finally:
            pool.release(conn)

    @property
    def is_connected(self) -> bool:
        return self._pool is not None
