"""Database operations exposed to MCP tools.

DatabaseService is the single entry point the tool layer calls. Every operation
takes a connection descriptor (raw connection string or session id), resolves
it to a pooled backend and runs dialect-correct SQL produced by the splitter or
the builders. Result sets pass through the value coercion engine, so callers
only ever see strings.

Each operation borrows at most one connection at a time. Schema lookups needed
for PostgreSQL cast hints run before the main statement's connection is
borrowed, so a single-connection pool (SQLite :memory:) never waits on itself.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from .connections import ConnectionStore, build_connection_string
from .exceptions import DbNexusError, InvalidRequestError, SqlQueryError
from .models import (
    BatchChange,
    CellUpdate,
    ColumnSchema,
    DeleteChange,
    FilterCondition,
    ForeignKeyInput,
    InsertChange,
    PageResult,
    QueryResult,
    RowIdentifier,
    SortState,
    UpdateChange,
)
from .secrets import SecretProvider
from .sessions import ConnectionResolver, SessionRegistry, is_session_id
from .sql import (
    DatabaseBackendBase,
    QueryBuilder,
    SchemaIntrospector,
    coerce_result,
    generate_create_table,
    generate_drop_table,
    generate_duplicate_table,
    generate_truncate_table,
    get_strategy,
    split_sql_statements,
)

logger = logging.getLogger(__name__)


def _tag_statement(error: SqlQueryError, index: int) -> SqlQueryError:
    """Copy a statement error, annotated with its 1-based script position."""
    return type(error)(error.message, statement_index=index)


def _safe_file_stem(table: str) -> str:
    return table.replace("/", "_").replace("\\", "_")


def order_by_references(references: dict[str, set[str]]) -> list[str]:
    """Order tables so every referenced table precedes the tables referencing it.

    Ties resolve by table name. Self references and references to tables outside
    the mapping are ignored. Tables caught in a reference cycle are appended in
    name order after everything that could be ordered.

    Args:
        references: Table name -> names of the tables it references
    """
    tables = sorted(references)
    in_degree = {table: 0 for table in tables}
    dependents: dict[str, list[str]] = {table: [] for table in tables}
    for table in tables:
        for parent in sorted(references[table]):
            if parent == table or parent not in in_degree:
                continue
            dependents[parent].append(table)
            in_degree[table] += 1

    queue = deque(table for table in tables if in_degree[table] == 0)
    ordered: list[str] = []
    while queue:
        current = queue.popleft()
        ordered.append(current)
        for dependent in dependents[current]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)

    if len(ordered) != len(tables):
        placed = set(ordered)
        remaining = [table for table in tables if table not in placed]
        logger.warning(f"Reference cycle between tables: {', '.join(remaining)}")
        ordered.extend(remaining)
    return ordered


class DatabaseService:
    """Executes scripts, schema requests and CRUD against any descriptor.

    Args:
        resolver: Turns descriptors into connected backends
        store: Saved connection metadata, used by open_session
        secrets: Credential provider for saved connections
    """

    def __init__(
        self,
        resolver: ConnectionResolver,
        store: ConnectionStore,
        secrets: SecretProvider,
    ) -> None:
        self.resolver = resolver
        self.store = store
        self.secrets = secrets

    @property
    def registry(self) -> SessionRegistry:
        return self.resolver.registry

    async def _backend(self, descriptor: str) -> DatabaseBackendBase:
        if not descriptor or not descriptor.strip():
            raise InvalidRequestError("Connection descriptor is required")
        return await self.resolver.resolve(descriptor.strip())

    async def _builders(
        self, backend: DatabaseBackendBase, tables: Sequence[str]
    ) -> dict[str, QueryBuilder]:
        """One QueryBuilder per table, each carrying that table's native type hints.

        Hints are keyed by column name only, so tables never share a builder.
        """
        introspector = SchemaIntrospector(backend)
        cast_hints = get_strategy(backend.dialect).cast_hints
        builders: dict[str, QueryBuilder] = {}
        for table in dict.fromkeys(tables):
            hints = await introspector.get_native_types(table) if cast_hints else {}
            builders[table] = QueryBuilder(backend.dialect, hints)
        return builders

    async def _builder(self, backend: DatabaseBackendBase, table: str) -> QueryBuilder:
        return (await self._builders(backend, [table]))[table]

    # ========================================================================
    # Scripts
    # ========================================================================

    async def execute_script(self, descriptor: str, sql: str) -> list[QueryResult]:
        """Run a multi-statement script in order on one connection.

        There is no implicit transaction: statements that succeeded before a
        failure keep their effects.

        Returns:
            One QueryResult per statement, in script order

        Raises:
            SqlQueryError: For the first failing statement, tagged with its
                1-based index
        """
        backend = await self._backend(descriptor)
        strategy = get_strategy(backend.dialect)
        statements = split_sql_statements(sql, backslash_escapes=strategy.backslash_escapes)
        logger.debug(f"Executing script of {len(statements)} statements on {backend.dialect.value}")

        results: list[QueryResult] = []
        async with backend.connection() as conn:
            for index, statement in enumerate(statements, start=1):
                try:
                    raw = await conn.run(statement)
                except SqlQueryError as e:
                    logger.info(f"Script stopped at statement {index}/{len(statements)}")
                    raise _tag_statement(e, index) from e
                results.append(coerce_result(raw, strategy.probes))
        return results

    # ========================================================================
    # Schema
    # ========================================================================

    async def list_databases(self, descriptor: str) -> list[str]:
        backend = await self._backend(descriptor)
        return await SchemaIntrospector(backend).list_databases()

    async def list_tables(self, descriptor: str) -> list[str]:
        backend = await self._backend(descriptor)
        return await SchemaIntrospector(backend).list_tables()

    async def get_columns(self, descriptor: str, table: str) -> list[str]:
        backend = await self._backend(descriptor)
        return await SchemaIntrospector(backend).get_columns(table)

    async def get_table_schema(self, descriptor: str, table: str) -> list[ColumnSchema]:
        backend = await self._backend(descriptor)
        return await SchemaIntrospector(backend).get_table_schema(table)

    async def create_table(
        self,
        descriptor: str,
        table: str,
        columns: Sequence[ColumnSchema],
        foreign_keys: Sequence[ForeignKeyInput] = (),
    ) -> None:
        backend = await self._backend(descriptor)
        sql = generate_create_table(table, list(columns), list(foreign_keys), backend.dialect)
        await backend.execute(sql)
        logger.info(f"Created table {table}")

    async def drop_table(self, descriptor: str, table: str) -> None:
        backend = await self._backend(descriptor)
        await backend.execute(generate_drop_table(table, backend.dialect))
        logger.info(f"Dropped table {table}")

    async def truncate_table(self, descriptor: str, table: str) -> None:
        backend = await self._backend(descriptor)
        await backend.execute(generate_truncate_table(table, backend.dialect))
        logger.info(f"Truncated table {table}")

    async def duplicate_table(
        self, descriptor: str, source: str, new_name: str, include_data: bool = True
    ) -> None:
        if not new_name.strip():
            raise InvalidRequestError("New table name is required")
        backend = await self._backend(descriptor)
        await backend.execute(
            generate_duplicate_table(source, new_name, include_data, backend.dialect)
        )
        logger.info(f"Duplicated table {source} to {new_name} (data={include_data})")

    # ========================================================================
    # Browsing
    # ========================================================================

    async def fetch_page(
        self,
        descriptor: str,
        table: str,
        page: int = 1,
        page_size: int = 100,
        filters: Sequence[FilterCondition] = (),
        sort: SortState | None = None,
    ) -> PageResult:
        """Fetch one page of rows with the total count of matching rows.

        Raises:
            InvalidRequestError: If page or page_size is below 1
        """
        if page < 1:
            raise InvalidRequestError(f"page must be >= 1, got {page}")
        if page_size < 1:
            raise InvalidRequestError(f"page_size must be >= 1, got {page_size}")

        backend = await self._backend(descriptor)
        builder = await self._builder(backend, table)
        count_sql, count_params = builder.count(table, filters)
        page_sql, page_params = builder.select_page(
            table, filters, sort, limit=page_size, offset=(page - 1) * page_size
        )

        async with backend.connection() as conn:
            total = await conn.run(count_sql, count_params)
            raw = await conn.run(page_sql, page_params)

        total_count = int(total.rows[0][0]) if total.rows else 0
        rows = coerce_result(raw, get_strategy(backend.dialect).probes)
        return PageResult(rows=rows, total_count=total_count)

    # ========================================================================
    # CRUD
    # ========================================================================

    async def insert_record(
        self, descriptor: str, table: str, values: dict[str, str | None]
    ) -> int:
        backend = await self._backend(descriptor)
        builder = await self._builder(backend, table)
        sql, params = builder.insert(table, values)
        return await backend.execute(sql, params)

    async def update_record(
        self,
        descriptor: str,
        table: str,
        identifier: RowIdentifier,
        updates: Sequence[CellUpdate],
    ) -> int:
        backend = await self._backend(descriptor)
        builder = await self._builder(backend, table)
        sql, params = builder.update(table, identifier, updates)
        return await backend.execute(sql, params)

    async def delete_record(self, descriptor: str, table: str, identifier: RowIdentifier) -> int:
        backend = await self._backend(descriptor)
        builder = await self._builder(backend, table)
        sql, params = builder.delete(table, identifier)
        return await backend.execute(sql, params)

    async def apply_batch(self, descriptor: str, changes: Sequence[BatchChange]) -> int:
        """Apply inserts, updates and deletes in one transaction.

        The first failing change rolls back the whole batch.

        Returns:
            Total affected rows
        """
        if not changes:
            return 0

        backend = await self._backend(descriptor)
        builders = await self._builders(backend, [change.table_name for change in changes])
        statements = [
            self._compile_change(builders[change.table_name], change) for change in changes
        ]

        affected = 0
        async with backend.transaction() as conn:
            for index, (sql, params) in enumerate(statements, start=1):
                try:
                    result = await conn.run(sql, params)
                except SqlQueryError as e:
                    logger.info(f"Batch rolled back at change {index}/{len(statements)}")
                    raise _tag_statement(e, index) from e
                affected += result.affected_rows
        logger.debug(f"Batch of {len(statements)} changes affected {affected} rows")
        return affected

    @staticmethod
    def _compile_change(builder: QueryBuilder, change: BatchChange) -> tuple[str, list[Any]]:
        if isinstance(change, InsertChange):
            return builder.insert(change.table_name, change.insert_values)
        if isinstance(change, UpdateChange):
            return builder.update(change.table_name, change.identifier, change.updates)
        if isinstance(change, DeleteChange):
            return builder.delete(change.table_name, change.identifier)
        raise InvalidRequestError(f"Unknown operation: {type(change).__name__}")

    # ========================================================================
    # Sessions
    # ========================================================================

    async def open_session(self, connection_id: str, database: str | None = None) -> str:
        """Open a backend for a saved connection and register it as a session.

        Raises:
            ConnectionNotFoundError: If the connection id is unknown
            SecretNotFoundError: If the profile's credential cannot be resolved
            SqlConnectionError: If the database cannot be reached
        """
        profile = await self.store.get_connection(connection_id)
        password = profile.password
        if profile.credential_id:
            password = await self.secrets.get_secret(profile.credential_id)

        selected = database or profile.database
        url = build_connection_string(
            profile.engine,
            profile.host,
            profile.port,
            selected,
            profile.username,
            password,
            profile.ssl_mode,
        )
        backend = await self.resolver.pool.open(url)
        return self.registry.create(connection_id, selected, backend)

    async def close_session(self, session_id: str) -> None:
        session = self.registry.remove(session_id)
        await session.backend.disconnect()

    async def verify_connection(self, descriptor: str) -> str:
        """Check that a descriptor reaches a live database.

        Raw connection strings are opened on a throwaway backend that is not
        cached.

        Returns:
            The engine name
        """
        if not descriptor or not descriptor.strip():
            raise InvalidRequestError("Connection descriptor is required")
        descriptor = descriptor.strip()

        if is_session_id(descriptor):
            backend = self.registry.resolve(descriptor).backend
            await backend.query("SELECT 1")
            return backend.dialect.value

        backend = await self.resolver.pool.open(descriptor)
        try:
            await backend.query("SELECT 1")
        finally:
            await backend.disconnect()
        return backend.dialect.value

    # ========================================================================
    # Schema files
    # ========================================================================

    async def export_schema(self, descriptor: str, directory: str | Path) -> list[Path]:
        """Write one CREATE TABLE file per table into a directory.

        Files are numbered (001_users.sql, 002_posts.sql) so that file-name order
        creates referenced tables before the tables whose foreign keys need them,
        which is the order import_schema runs them in.

        Returns:
            Paths of the written files, in creation order
        """
        backend = await self._backend(descriptor)
        introspector = SchemaIntrospector(backend)
        target = Path(directory).expanduser()
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise InvalidRequestError(f"Cannot create export directory {target}: {e}") from e

        statements: dict[str, str] = {}
        references: dict[str, set[str]] = {}
        for table in await introspector.list_tables():
            columns = await introspector.get_table_schema(table)
            foreign_keys = await introspector.get_foreign_keys(table)
            statements[table] = generate_create_table(
                table, columns, foreign_keys, backend.dialect
            )
            references[table] = {fk.ref_table for fk in foreign_keys}

        written: list[Path] = []
        for position, table in enumerate(order_by_references(references), start=1):
            path = target / f"{position:03d}_{_safe_file_stem(table)}.sql"
            try:
                path.write_text(f"{statements[table]};\n", encoding="utf-8")
            except OSError as e:
                raise InvalidRequestError(f"Cannot write {path}: {e}") from e
            written.append(path)

        logger.info(f"Exported {len(written)} tables to {target}")
        return written

    async def import_schema(self, descriptor: str, directory: str | Path) -> list[str]:
        """Run every *.sql file of a directory in file-name order.

        Stops at the first failing file. Files that already ran are not rolled
        back.

        Returns:
            Names of the files that ran
        """
        source = Path(directory).expanduser()
        if not source.is_dir():
            raise InvalidRequestError(f"Import directory does not exist: {source}")

        files = sorted(source.glob("*.sql"), key=lambda p: p.name)
        imported: list[str] = []
        for path in files:
            try:
                script = path.read_text(encoding="utf-8")
            except OSError as e:
                raise InvalidRequestError(f"Cannot read {path}: {e}") from e
            try:
                await self.execute_script(descriptor, script)
            except DbNexusError as e:
                logger.info(f"Import stopped at {path.name} after {len(imported)} files")
                if isinstance(e, SqlQueryError):
                    raise type(e)(f"{path.name}: {e.message}") from e
                raise
            imported.append(path.name)

        logger.info(f"Imported {len(imported)} schema files from {source}")
        return imported
