"""MCP tool implementations for database access.

This module contains all MCP tool function implementations that expose the
DatabaseService to MCP clients.

Following official Anthropic MCP Python SDK patterns:
- Tool functions decorated with @mcp.tool()
- Flat parameter signatures with Annotated types for validation
- Type hints for automatic schema generation
- Async functions for all tools
- Clear docstrings (become tool descriptions)

Every tool returns a JSON-compatible dict. Failures are reported as
{"status": "failure", "error": <message>, "error_kind": <kind>}.
"""

import logging
from typing import Annotated, Any, Literal

from mcp.types import ToolAnnotations
from pydantic import Field

from .context import AppContextType
from .engine import (
    BatchChange,
    CellUpdate,
    ColumnSchema,
    DatabaseService,
    DbNexusError,
    FilterCondition,
    ForeignKeyInput,
    RowIdentifier,
    SortState,
)
from .formatting import (
    format_database_list_markdown,
    format_page_markdown,
    format_script_results_markdown,
    format_table_list_markdown,
    format_table_schema_markdown,
    query_result_to_dict,
)
from .server import mcp

logger = logging.getLogger(__name__)

ConnectionArg = Annotated[
    str,
    Field(
        description=(
            "Connection string (sqlite:PATH, postgres://..., mysql://..., mariadb://...) "
            "or a session id returned by open_session"
        ),
        min_length=1,
        max_length=4096,
    ),
]
TableArg = Annotated[str, Field(description="Table name", min_length=1, max_length=255)]
FormatArg = Annotated[Literal["json", "markdown"], Field(description="Output format")]

CONTEXT_UNAVAILABLE = {
    "status": "failure",
    "error": "Server context not available. Tool requires context to access resources.",
}


def _service(ctx: AppContextType) -> DatabaseService | None:
    if ctx is None:
        return None
    return ctx.request_context.lifespan_context.service


# =============================================================================
# Scripts
# =============================================================================


@mcp.tool(
    annotations=ToolAnnotations(
        title="Execute SQL Script",
        readOnlyHint=False,
        destructiveHint=True,
        idempotentHint=False,
        openWorldHint=True,
    )
)
async def execute_script(
    connection: ConnectionArg,
    sql: Annotated[
        str,
        Field(description="One or more SQL statements separated by ';'", min_length=1),
    ],
    format: FormatArg = "json",  # noqa: A002
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Run SQL statements in order. Stops at the first failing statement (no rollback)."""
    service = _service(ctx)
    if service is None:
        return CONTEXT_UNAVAILABLE
    try:
        results = await service.execute_script(connection, sql)
    except DbNexusError as e:
        return e.to_response()

    if format == "markdown":
        return {"status": "success", "markdown": format_script_results_markdown(results)}
    return {"status": "success", "results": [query_result_to_dict(r) for r in results]}


# =============================================================================
# Schema
# =============================================================================


@mcp.tool(
    annotations=ToolAnnotations(
        title="List Databases",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=True,
    )
)
async def list_databases(
    connection: ConnectionArg,
    format: FormatArg = "json",  # noqa: A002
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """List databases on the server, without system schemas.

    Pass a name to open_session(database=...) to work in it. SQLite reports its
    attached schemas, normally just "main".
    """
    service = _service(ctx)
    if service is None:
        return CONTEXT_UNAVAILABLE
    try:
        databases = await service.list_databases(connection)
    except DbNexusError as e:
        return e.to_response()

    if format == "markdown":
        return {"status": "success", "markdown": format_database_list_markdown(databases)}
    return {"status": "success", "databases": databases}


@mcp.tool(
    annotations=ToolAnnotations(
        title="List Tables",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=True,
    )
)
async def list_tables(
    connection: ConnectionArg,
    format: FormatArg = "json",  # noqa: A002
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """List tables in the current database or schema."""
    service = _service(ctx)
    if service is None:
        return CONTEXT_UNAVAILABLE
    try:
        tables = await service.list_tables(connection)
    except DbNexusError as e:
        return e.to_response()

    if format == "markdown":
        return {"status": "success", "markdown": format_table_list_markdown(tables)}
    return {"status": "success", "tables": tables}


@mcp.tool(
    annotations=ToolAnnotations(
        title="Get Columns",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=True,
    )
)
async def get_columns(
    connection: ConnectionArg,
    table: TableArg,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """List a table's column names in declaration order."""
    service = _service(ctx)
    if service is None:
        return CONTEXT_UNAVAILABLE
    try:
        columns = await service.get_columns(connection, table)
    except DbNexusError as e:
        return e.to_response()
    return {"status": "success", "table": table, "columns": columns}


@mcp.tool(
    annotations=ToolAnnotations(
        title="Get Table Schema",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=True,
    )
)
async def get_table_schema(
    connection: ConnectionArg,
    table: TableArg,
    format: FormatArg = "json",  # noqa: A002
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Describe a table: types, nullability, keys, defaults and foreign keys."""
    service = _service(ctx)
    if service is None:
        return CONTEXT_UNAVAILABLE
    try:
        columns = await service.get_table_schema(connection, table)
    except DbNexusError as e:
        return e.to_response()

    if format == "markdown":
        return {"status": "success", "markdown": format_table_schema_markdown(table, columns)}
    return {
        "status": "success",
        "table": table,
        "columns": [c.model_dump(mode="json") for c in columns],
    }


@mcp.tool(
    annotations=ToolAnnotations(
        title="Create Table",
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=False,
        openWorldHint=True,
    )
)
async def create_table(
    connection: ConnectionArg,
    table: TableArg,
    columns: Annotated[
        list[ColumnSchema],
        Field(description="Columns in declaration order", min_length=1),
    ],
    foreign_keys: Annotated[
        list[ForeignKeyInput] | None,
        Field(description="Table-level foreign keys"),
    ] = None,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Create a table from column definitions."""
    service = _service(ctx)
    if service is None:
        return CONTEXT_UNAVAILABLE
    try:
        await service.create_table(connection, table, columns, foreign_keys or [])
    except DbNexusError as e:
        return e.to_response()
    return {"status": "success", "table": table}


@mcp.tool(
    annotations=ToolAnnotations(
        title="Drop Table",
        readOnlyHint=False,
        destructiveHint=True,
        idempotentHint=False,
        openWorldHint=True,
    )
)
async def drop_table(
    connection: ConnectionArg,
    table: TableArg,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Drop a table."""
    service = _service(ctx)
    if service is None:
        return CONTEXT_UNAVAILABLE
    try:
        await service.drop_table(connection, table)
    except DbNexusError as e:
        return e.to_response()
    return {"status": "success", "table": table}


@mcp.tool(
    annotations=ToolAnnotations(
        title="Truncate Table",
        readOnlyHint=False,
        destructiveHint=True,
        idempotentHint=True,
        openWorldHint=True,
    )
)
async def truncate_table(
    connection: ConnectionArg,
    table: TableArg,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Delete every row of a table."""
    service = _service(ctx)
    if service is None:
        return CONTEXT_UNAVAILABLE
    try:
        await service.truncate_table(connection, table)
    except DbNexusError as e:
        return e.to_response()
    return {"status": "success", "table": table}


@mcp.tool(
    annotations=ToolAnnotations(
        title="Duplicate Table",
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=False,
        openWorldHint=True,
    )
)
async def duplicate_table(
    connection: ConnectionArg,
    table: TableArg,
    new_name: Annotated[str, Field(description="Name of the copy", min_length=1, max_length=255)],
    include_data: Annotated[bool, Field(description="Copy rows as well as columns")] = True,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Copy a table's columns (and optionally rows). Constraints are not copied."""
    service = _service(ctx)
    if service is None:
        return CONTEXT_UNAVAILABLE
    try:
        await service.duplicate_table(connection, table, new_name, include_data)
    except DbNexusError as e:
        return e.to_response()
    return {"status": "success", "table": new_name, "source": table}


# =============================================================================
# Browsing
# =============================================================================


@mcp.tool(
    annotations=ToolAnnotations(
        title="Fetch Page",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=True,
    )
)
async def fetch_page(
    connection: ConnectionArg,
    table: TableArg,
    page: Annotated[int, Field(description="1-based page number", ge=1)] = 1,
    page_size: Annotated[int, Field(description="Rows per page", ge=1, le=10000)] = 100,
    filters: Annotated[
        list[FilterCondition] | None,
        Field(description="Predicates combined with AND; disabled ones are ignored"),
    ] = None,
    sort: Annotated[SortState | None, Field(description="Sort column and direction")] = None,
    format: FormatArg = "json",  # noqa: A002
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Browse a table one page at a time, with filters, sorting and the total row count."""
    service = _service(ctx)
    if service is None:
        return CONTEXT_UNAVAILABLE
    try:
        result = await service.fetch_page(connection, table, page, page_size, filters or [], sort)
    except DbNexusError as e:
        return e.to_response()

    if format == "markdown":
        return {
            "status": "success",
            "markdown": format_page_markdown(table, result, page, page_size),
        }
    return {
        "status": "success",
        "page": page,
        "page_size": page_size,
        "total_count": result.total_count,
        **query_result_to_dict(result.rows),
    }


# =============================================================================
# CRUD
# =============================================================================


@mcp.tool(
    annotations=ToolAnnotations(
        title="Insert Record",
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=False,
        openWorldHint=True,
    )
)
async def insert_record(
    connection: ConnectionArg,
    table: TableArg,
    values: Annotated[
        dict[str, str | int | float | bool | None],
        Field(description="Column -> value (null for NULL); empty inserts defaults"),
    ],
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Insert one row."""
    service = _service(ctx)
    if service is None:
        return CONTEXT_UNAVAILABLE
    text_values = {k: None if v is None else _text(v) for k, v in values.items()}
    try:
        affected = await service.insert_record(connection, table, text_values)
    except DbNexusError as e:
        return e.to_response()
    return {"status": "success", "affected_rows": affected}


@mcp.tool(
    annotations=ToolAnnotations(
        title="Update Record",
        readOnlyHint=False,
        destructiveHint=True,
        idempotentHint=True,
        openWorldHint=True,
    )
)
async def update_record(
    connection: ConnectionArg,
    table: TableArg,
    identifier: Annotated[
        RowIdentifier, Field(description="Columns and values locating the row")
    ],
    updates: Annotated[list[CellUpdate], Field(description="New column values", min_length=1)],
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Update the row(s) matching an identifier."""
    service = _service(ctx)
    if service is None:
        return CONTEXT_UNAVAILABLE
    try:
        affected = await service.update_record(connection, table, identifier, updates)
    except DbNexusError as e:
        return e.to_response()
    return {"status": "success", "affected_rows": affected}


@mcp.tool(
    annotations=ToolAnnotations(
        title="Delete Record",
        readOnlyHint=False,
        destructiveHint=True,
        idempotentHint=True,
        openWorldHint=True,
    )
)
async def delete_record(
    connection: ConnectionArg,
    table: TableArg,
    identifier: Annotated[
        RowIdentifier, Field(description="Columns and values locating the row")
    ],
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Delete the row(s) matching an identifier."""
    service = _service(ctx)
    if service is None:
        return CONTEXT_UNAVAILABLE
    try:
        affected = await service.delete_record(connection, table, identifier)
    except DbNexusError as e:
        return e.to_response()
    return {"status": "success", "affected_rows": affected}


@mcp.tool(
    annotations=ToolAnnotations(
        title="Apply Batch",
        readOnlyHint=False,
        destructiveHint=True,
        idempotentHint=False,
        openWorldHint=True,
    )
)
async def apply_batch(
    connection: ConnectionArg,
    changes: Annotated[
        list[BatchChange],
        Field(description="INSERT/UPDATE/DELETE changes applied in one transaction"),
    ],
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Apply several row changes atomically. Any failure rolls back the whole batch."""
    service = _service(ctx)
    if service is None:
        return CONTEXT_UNAVAILABLE
    try:
        affected = await service.apply_batch(connection, changes)
    except DbNexusError as e:
        return e.to_response()
    return {"status": "success", "affected_rows": affected, "changes": len(changes)}


# =============================================================================
# Sessions
# =============================================================================


@mcp.tool(
    annotations=ToolAnnotations(
        title="Open Session",
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=False,
        openWorldHint=True,
    )
)
async def open_session(
    connection_id: Annotated[
        str, Field(description="Saved connection id", min_length=1, max_length=255)
    ],
    database: Annotated[
        str | None, Field(description="Database to select instead of the saved one")
    ] = None,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Open a saved connection and return a session id usable as the connection argument."""
    service = _service(ctx)
    if service is None:
        return CONTEXT_UNAVAILABLE
    try:
        session_id = await service.open_session(connection_id, database)
    except DbNexusError as e:
        return e.to_response()
    return {"status": "success", "session_id": session_id}


@mcp.tool(
    annotations=ToolAnnotations(
        title="Close Session",
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=False,
        openWorldHint=False,
    )
)
async def close_session(
    session_id: Annotated[str, Field(description="Session id from open_session", min_length=1)],
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Close a session and its connection pool."""
    service = _service(ctx)
    if service is None:
        return CONTEXT_UNAVAILABLE
    try:
        await service.close_session(session_id)
    except DbNexusError as e:
        return e.to_response()
    return {"status": "success", "session_id": session_id}


@mcp.tool(
    annotations=ToolAnnotations(
        title="List Sessions",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def list_sessions(*, ctx: AppContextType) -> dict[str, Any]:
    """List open sessions."""
    if ctx is None:
        return CONTEXT_UNAVAILABLE
    registry = ctx.request_context.lifespan_context.registry
    return {"status": "success", "sessions": [s.to_dict() for s in registry.list_sessions()]}


@mcp.tool(
    annotations=ToolAnnotations(
        title="List Saved Connections",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def list_connections(*, ctx: AppContextType) -> dict[str, Any]:
    """List saved connections (passwords are never returned)."""
    if ctx is None:
        return CONTEXT_UNAVAILABLE
    store = ctx.request_context.lifespan_context.connection_store
    try:
        profiles = store.list_connections()
    except DbNexusError as e:
        return e.to_response()
    return {
        "status": "success",
        "connections": [p.model_dump(mode="json") for p in profiles],
    }


@mcp.tool(
    annotations=ToolAnnotations(
        title="Verify Connection",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=True,
    )
)
async def verify_connection(
    connection: ConnectionArg,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Check that a connection string or session reaches a live database."""
    service = _service(ctx)
    if service is None:
        return CONTEXT_UNAVAILABLE
    try:
        engine = await service.verify_connection(connection)
    except DbNexusError as e:
        return e.to_response()
    return {"status": "success", "engine": engine}


# =============================================================================
# Schema files
# =============================================================================


@mcp.tool(
    annotations=ToolAnnotations(
        title="Export Schema",
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=True,
    )
)
async def export_schema(
    connection: ConnectionArg,
    directory: Annotated[
        str, Field(description="Directory for the <table>.sql files", min_length=1)
    ],
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Write one CREATE TABLE file per table into a directory."""
    service = _service(ctx)
    if service is None:
        return CONTEXT_UNAVAILABLE
    try:
        paths = await service.export_schema(connection, directory)
    except DbNexusError as e:
        return e.to_response()
    return {"status": "success", "files": [str(p) for p in paths]}


@mcp.tool(
    annotations=ToolAnnotations(
        title="Import Schema",
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=False,
        openWorldHint=True,
    )
)
async def import_schema(
    connection: ConnectionArg,
    directory: Annotated[str, Field(description="Directory of *.sql files", min_length=1)],
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Run every *.sql file of a directory in name order. Stops at the first failure."""
    service = _service(ctx)
    if service is None:
        return CONTEXT_UNAVAILABLE
    try:
        imported = await service.import_schema(connection, directory)
    except DbNexusError as e:
        return e.to_response()
    return {"status": "success", "files": imported}


def _text(value: str | int | float | bool) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
