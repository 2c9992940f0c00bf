"""Tests for the database backends and placeholder conversion.

SQLite runs for real against temporary files. PostgreSQL and MariaDB
connections are exercised through small fakes standing in for the driver's
connection objects, so no server is required.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import asyncpg
import pymysql
import pytest

from dbnexus_mcp.engine.exceptions import (
    ConstraintViolationError,
    SqlConnectionError,
    SqlQueryError,
)
from dbnexus_mcp.engine.sql import (
    ConnectionConfig,
    DatabaseEngine,
    ParamConverter,
    SqliteBackend,
)
from dbnexus_mcp.engine.sql.mariadb_backend import FIELD_TYPE_NAMES, MariaDBConnection
from dbnexus_mcp.engine.sql.postgres_backend import (
    PostgresConnection,
    parse_affected_rows,
    ssl_argument,
)

# ============================================================================
# ParamConverter Tests
# ============================================================================


class TestParamConverter:
    """Tests for MariaDB placeholder conversion."""

    def test_qmark_to_format(self) -> None:
        """Test ? placeholders become %s."""
        result = ParamConverter().convert("SELECT * FROM users WHERE id = ? AND status = ?")
        assert result == "SELECT * FROM users WHERE id = %s AND status = %s"

    def test_percent_doubled(self) -> None:
        """Test literal percent signs are doubled for pyformat."""
        result = ParamConverter().convert("SELECT * FROM t WHERE a = ? AND b LIKE '10%'")
        assert result == "SELECT * FROM t WHERE a = %s AND b LIKE '10%%'"

    def test_quoted_question_marks_untouched(self) -> None:
        """Test question marks inside literals and identifiers are not placeholders."""
        result = ParamConverter().convert("SELECT `rate?`, 'why?' FROM t WHERE id = ?")
        assert result == "SELECT `rate?`, 'why?' FROM t WHERE id = %s"

    def test_backslash_escaped_quote(self) -> None:
        """Test a backslash-escaped quote does not end the literal."""
        result = ParamConverter().convert(r"SELECT 'it\'s?' FROM t WHERE id = ?")
        assert result == r"SELECT 'it\'s?' FROM t WHERE id = %s"

    def test_no_placeholders(self) -> None:
        """Test SQL without placeholders passes through unchanged."""
        sql = "SELECT * FROM users"
        assert ParamConverter().convert(sql) == sql


# ============================================================================
# SQLite Backend Tests
# ============================================================================


@pytest.fixture
async def sqlite_backend(tmp_path: Path) -> AsyncGenerator[SqliteBackend, None]:
    """Connected SQLite backend on a temporary file."""
    backend = SqliteBackend()
    await backend.connect(
        ConnectionConfig(dialect=DatabaseEngine.SQLITE, path=str(tmp_path / "test.db"))
    )
    await backend.execute(
        "CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT NOT NULL UNIQUE, age INTEGER)"
    )
    yield backend
    await backend.disconnect()


class TestSqliteBackend:
    """Tests for SQLite backend."""

    async def test_connect_creates_parent_directories(self, tmp_path: Path) -> None:
        """Test connect creates missing parent directories."""
        backend = SqliteBackend()
        path = tmp_path / "nested" / "dir" / "db.sqlite"
        await backend.connect(ConnectionConfig(dialect=DatabaseEngine.SQLITE, path=str(path)))
        try:
            assert backend.is_connected
            assert path.exists()
        finally:
            await backend.disconnect()
        assert not backend.is_connected

    async def test_disconnect_twice_is_safe(self, sqlite_backend: SqliteBackend) -> None:
        """Test disconnect can be called twice."""
        await sqlite_backend.disconnect()
        await sqlite_backend.disconnect()
        assert not sqlite_backend.is_connected

    async def test_query_before_connect(self) -> None:
        """Test queries before connect raise RuntimeError."""
        with pytest.raises(RuntimeError, match="Not connected"):
            await SqliteBackend().query("SELECT 1")

    async def test_execute_and_query(self, sqlite_backend: SqliteBackend) -> None:
        """Test execute reports affected rows and query returns typed rows."""
        affected = await sqlite_backend.execute(
            "INSERT INTO users (name, age) VALUES (?, ?)", ("Alice", "30")
        )
        assert affected == 1

        result = await sqlite_backend.query("SELECT id, name, age FROM users")
        assert result.columns == ["id", "name", "age"]
        # Column affinity stores the text '30' as an integer
        assert result.rows == [(1, "Alice", 30)]
        assert result.column_types == ["INTEGER", "TEXT", "INTEGER"]

    async def test_empty_result_has_columns(self, sqlite_backend: SqliteBackend) -> None:
        """Test an empty result still carries its column names."""
        result = await sqlite_backend.query("SELECT * FROM users")
        assert result.columns == ["id", "name", "age"]
        assert result.rows == []

    async def test_insert_affected_rows(self, sqlite_backend: SqliteBackend) -> None:
        """Test an INSERT reports one affected row and no result set."""
        result = await sqlite_backend.query("INSERT INTO users (name) VALUES ('Bob')")
        assert result.affected_rows == 1
        assert result.rows == []

    async def test_syntax_error(self, sqlite_backend: SqliteBackend) -> None:
        """Test a syntax error raises SqlQueryError."""
        with pytest.raises(SqlQueryError, match="Query failed"):
            await sqlite_backend.query("SELEC 1")

    async def test_constraint_violation(self, sqlite_backend: SqliteBackend) -> None:
        """Test a UNIQUE violation raises ConstraintViolationError."""
        await sqlite_backend.execute("INSERT INTO users (name) VALUES ('Alice')")
        with pytest.raises(ConstraintViolationError):
            await sqlite_backend.execute("INSERT INTO users (name) VALUES ('Alice')")

    async def test_transaction_commits(self, sqlite_backend: SqliteBackend) -> None:
        """Test a transaction block commits on exit."""
        async with sqlite_backend.transaction() as conn:
            await conn.run("INSERT INTO users (name) VALUES ('a')")
            await conn.run("INSERT INTO users (name) VALUES ('b')")
        result = await sqlite_backend.query("SELECT COUNT(*) FROM users")
        assert result.rows == [(2,)]

    async def test_transaction_rolls_back(self, sqlite_backend: SqliteBackend) -> None:
        """Test a failing transaction block rolls back."""
        with pytest.raises(ConstraintViolationError):
            async with sqlite_backend.transaction() as conn:
                await conn.run("INSERT INTO users (name) VALUES ('a')")
                await conn.run("INSERT INTO users (name) VALUES ('a')")
        result = await sqlite_backend.query("SELECT COUNT(*) FROM users")
        assert result.rows == [(0,)]

    async def test_open_transaction_rolled_back_on_return(
        self, sqlite_backend: SqliteBackend
    ) -> None:
        """Test a transaction left open is rolled back when the connection returns."""
        async with sqlite_backend.connection() as conn:
            await conn.begin()
            await conn.run("INSERT INTO users (name) VALUES ('a')")
        result = await sqlite_backend.query("SELECT COUNT(*) FROM users")
        assert result.rows == [(0,)]

    async def test_foreign_keys_enforced(self, sqlite_backend: SqliteBackend) -> None:
        """Test foreign keys are enforced."""
        await sqlite_backend.execute(
            "CREATE TABLE posts (id INTEGER PRIMARY KEY, "
            "user_id INTEGER REFERENCES users(id))"
        )
        with pytest.raises(ConstraintViolationError):
            await sqlite_backend.execute("INSERT INTO posts (user_id) VALUES (99)")

    async def test_memory_database_shares_one_connection(self) -> None:
        """Every borrow of :memory: sees the same database."""
        backend = SqliteBackend()
        await backend.connect(
            ConnectionConfig(dialect=DatabaseEngine.SQLITE, path=":memory:", pool_size=4)
        )
        try:
            await backend.execute("CREATE TABLE t (x INTEGER)")
            await backend.execute("INSERT INTO t VALUES (1)")
            result = await backend.query("SELECT x FROM t")
            assert result.rows == [(1,)]
        finally:
            await backend.disconnect()

    async def test_unopenable_path(self, tmp_path: Path) -> None:
        """Test an unopenable path raises SqlConnectionError."""
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        backend = SqliteBackend()
        with pytest.raises(SqlConnectionError):
            await backend.connect(
                ConnectionConfig(dialect=DatabaseEngine.SQLITE, path=str(blocker / "db.sqlite"))
            )


# ============================================================================
# PostgreSQL Tests
# ============================================================================


class FakeStatement:
    """Prepared statement stand-in for asyncpg."""

    def __init__(self, records: list[tuple[Any, ...]], attributes: list[Any], status: str):
        self.records = records
        self.attributes = attributes
        self.status = status
        self.args: tuple[Any, ...] = ()

    async def fetch(self, *args: Any) -> list[tuple[Any, ...]]:
        self.args = args
        return self.records

    def get_attributes(self) -> list[Any]:
        return self.attributes

    def get_statusmsg(self) -> str:
        return self.status


class FakePgConnection:
    """asyncpg connection stand-in recording prepared SQL."""

    def __init__(self, statement: FakeStatement | None = None, error: Exception | None = None):
        self.statement = statement
        self.error = error
        self.prepared: list[str] = []
        self.executed: list[str] = []
        self.in_transaction = False

    async def prepare(self, sql: str) -> FakeStatement:
        self.prepared.append(sql)
        if self.error is not None:
            raise self.error
        assert self.statement is not None
        return self.statement

    async def execute(self, sql: str) -> str:
        self.executed.append(sql)
        self.in_transaction = sql == "BEGIN"
        return sql

    def is_in_transaction(self) -> bool:
        return self.in_transaction


def pg_attr(name: str, type_name: str) -> Any:
    return SimpleNamespace(name=name, type=SimpleNamespace(name=type_name))


class TestPostgresHelpers:
    """Status parsing and SSL translation."""

    @pytest.mark.parametrize(
        ("status", "count"),
        [("INSERT 0 1", 1), ("UPDATE 5", 5), ("DELETE 3", 3), ("CREATE TABLE", 0), (None, 0)],
    )
    def test_parse_affected_rows(self, status: str | None, count: int) -> None:
        """Test affected row counts are parsed from command status."""
        assert parse_affected_rows(status) == count

    def test_ssl_argument(self) -> None:
        """Test ssl settings map to asyncpg arguments."""
        assert ssl_argument("Require") == "require"
        assert ssl_argument(True) is True
        assert ssl_argument(False) is None


class TestPostgresConnection:
    """Result shaping and error mapping on a pooled asyncpg connection."""

    async def test_rows_with_type_names(self) -> None:
        """Test rows come back with PostgreSQL type names."""
        statement = FakeStatement(
            records=[(1, "alice")],
            attributes=[pg_attr("id", "int4"), pg_attr("name", "text")],
            status="SELECT 1",
        )
        conn = PostgresConnection(FakePgConnection(statement))
        result = await conn.run("SELECT id, name FROM users WHERE id = $1::text::int4", ["1"])
        assert result.columns == ["id", "name"]
        assert result.column_types == ["int4", "text"]
        assert result.rows == [(1, "alice")]
        assert statement.args == ("1",)

    async def test_command_status(self) -> None:
        """Test commands report the count from their status."""
        statement = FakeStatement(records=[], attributes=[], status="UPDATE 4")
        result = await PostgresConnection(FakePgConnection(statement)).run("UPDATE t SET a = 1")
        assert result.columns == []
        assert result.affected_rows == 4

    async def test_integrity_error(self) -> None:
        """Test integrity errors raise ConstraintViolationError."""
        fake = FakePgConnection(error=asyncpg.UniqueViolationError("duplicate key"))
        with pytest.raises(ConstraintViolationError, match="duplicate key"):
            await PostgresConnection(fake).run("INSERT INTO t VALUES (1)")

    async def test_server_error(self) -> None:
        """Test other driver errors raise SqlQueryError."""
        fake = FakePgConnection(error=asyncpg.InterfaceError("bad argument"))
        with pytest.raises(SqlQueryError, match="Query failed: bad argument"):
            await PostgresConnection(fake).run("SELECT $1", [object()])

    async def test_rollback_only_inside_transaction(self) -> None:
        """Test rollback is skipped outside a transaction."""
        fake = FakePgConnection()
        conn = PostgresConnection(fake)
        await conn.rollback()
        assert fake.executed == []

        await conn.begin()
        await conn.rollback()
        assert fake.executed == ["BEGIN", "ROLLBACK"]


# ============================================================================
# MariaDB Tests
# ============================================================================


class FakeCursor:
    """aiomysql cursor stand-in."""

    def __init__(
        self,
        description: list[tuple[Any, ...]] | None = None,
        rows: list[tuple[Any, ...]] | None = None,
        rowcount: int = 0,
        error: Exception | None = None,
    ):
        self.description = description
        self.rows = rows or []
        self.rowcount = rowcount
        self.lastrowid = 0
        self.error = error
        self.calls: list[tuple[str, Any]] = []

    async def __aenter__(self) -> FakeCursor:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None

    async def execute(self, sql: str, args: Any = None) -> None:
        self.calls.append((sql, args))
        if self.error is not None:
            raise self.error

    async def fetchall(self) -> list[tuple[Any, ...]]:
        return self.rows


class FakeMySQLConnection:
    def __init__(self, cursor: FakeCursor):
        self._cursor = cursor

    def cursor(self) -> FakeCursor:
        return self._cursor


class TestMariaDBConnection:
    """Placeholder conversion and result shaping on aiomysql connections."""

    def make(self, cursor: FakeCursor) -> MariaDBConnection:
        return MariaDBConnection(
            FakeMySQLConnection(cursor), ParamConverter()
        )

    async def test_parameterized_statement_converted(self) -> None:
        """Test parameterized statements are converted to pyformat."""
        cursor = FakeCursor(rowcount=1)
        await self.make(cursor).run("UPDATE t SET a = ? WHERE b LIKE '5%'", ["x"])
        assert cursor.calls == [("UPDATE t SET a = %s WHERE b LIKE '5%%'", ("x",))]

    async def test_plain_statement_sent_verbatim(self) -> None:
        """Test statements without parameters are not converted."""
        cursor = FakeCursor()
        await self.make(cursor).run("SELECT '100%'")
        assert cursor.calls == [("SELECT '100%'", None)]

    async def test_type_names_from_field_types(self) -> None:
        """Test type names come from MySQL field type codes."""
        cursor = FakeCursor(
            description=[("id", 3), ("name", 253), ("weird", 999)],
            rows=[(1, "a", None)],
        )
        result = await self.make(cursor).run("SELECT * FROM t")
        assert result.columns == ["id", "name", "weird"]
        assert result.column_types == ["LONG", "VAR_STRING", "UNKNOWN"]
        assert result.rows == [(1, "a", None)]

    def test_field_type_aliases(self) -> None:
        """Test field type codes map to their names."""
        assert FIELD_TYPE_NAMES[1] == "TINY"
        assert FIELD_TYPE_NAMES[246] == "NEWDECIMAL"

    async def test_affected_rows(self) -> None:
        """Test commands report the cursor row count."""
        result = await self.make(FakeCursor(rowcount=3)).run("DELETE FROM t")
        assert result.affected_rows == 3

    async def test_integrity_error(self) -> None:
        """Test integrity errors raise ConstraintViolationError."""
        cursor = FakeCursor(error=pymysql.err.IntegrityError(1062, "Duplicate entry"))
        with pytest.raises(ConstraintViolationError):
            await self.make(cursor).run("INSERT INTO t VALUES (1)")

    async def test_other_error(self) -> None:
        """Test other MySQL errors raise SqlQueryError."""
        cursor = FakeCursor(error=pymysql.err.ProgrammingError(1064, "syntax"))
        with pytest.raises(SqlQueryError, match="Query failed"):
            await self.make(cursor).run("SELEC 1")
