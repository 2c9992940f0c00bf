"""Shared formatting utilities for MCP tool responses.

Markdown renderings of query results and schema descriptions, used by tools
that accept format="markdown". JSON responses are built from the pydantic
models directly.
"""

from typing import Any

from .engine.models import ColumnSchema, PageResult, QueryResult

# =============================================================================
# Markdown Formatting Utilities
# =============================================================================


def _escape_cell(value: str) -> str:
    return value.replace("|", "\\|").replace("\n", " ")


def format_query_result_markdown(result: QueryResult) -> str:
    """Format one result set as a markdown table.

    Args:
        result: Coerced result set

    Returns:
        Markdown table, or a short note for statements without rows
    """
    if not result.columns:
        return "_No rows returned_"

    header = "| " + " | ".join(_escape_cell(c) for c in result.columns) + " |"
    divider = "| " + " | ".join("---" for _ in result.columns) + " |"
    body = ["| " + " | ".join(_escape_cell(cell) for cell in row) + " |" for row in result.rows]
    return "\n".join([header, divider, *body])


def format_script_results_markdown(results: list[QueryResult]) -> str:
    """Format every statement's result, one section per statement."""
    if not results:
        return "No statements executed"

    sections = []
    for index, result in enumerate(results, start=1):
        sections.append(f"### Statement {index} ({len(result.rows)} rows)")
        sections.append("")
        sections.append(format_query_result_markdown(result))
        sections.append("")
    return "\n".join(sections).rstrip()


def format_page_markdown(table: str, page: PageResult, page_number: int, page_size: int) -> str:
    first = (page_number - 1) * page_size + 1 if page.rows.rows else 0
    last = first + len(page.rows.rows) - 1 if page.rows.rows else 0
    return (
        f"## {table}: rows {first}-{last} of {page.total_count}\n\n"
        f"{format_query_result_markdown(page.rows)}"
    )


def _name_list_markdown(title: str, names: list[str]) -> str:
    if not names:
        return f"No {title.lower()} found"

    header = f"## {title} ({len(names)})"
    return header + "\n\n" + "\n".join(f"- {name}" for name in names)


def format_database_list_markdown(databases: list[str]) -> str:
    """Format database names as a markdown list."""
    return _name_list_markdown("Databases", databases)


def format_table_list_markdown(tables: list[str]) -> str:
    """Format table names as a markdown list."""
    return _name_list_markdown("Tables", tables)


def format_table_schema_markdown(table: str, columns: list[ColumnSchema]) -> str:
    """Format a table description as markdown.

    Args:
        table: Table name
        columns: Introspected columns in declaration order

    Returns:
        Markdown table with one line per column
    """
    lines = [
        f"# Table: {table}",
        "",
        "| Column | Type | Nullable | Key | Default | References |",
        "| --- | --- | --- | --- | --- | --- |",
    ]
    for column in columns:
        keys = []
        if column.is_primary_key:
            keys.append("PK")
        if column.is_unique:
            keys.append("UNIQUE")
        if column.is_auto_increment:
            keys.append("AUTO")
        reference = (
            f"{column.foreign_key.table}.{column.foreign_key.column}" if column.foreign_key else ""
        )
        lines.append(
            f"| {column.name} | {column.type_name} | {'yes' if column.is_nullable else 'no'} "
            f"| {' '.join(keys)} | {_escape_cell(column.default_value or '')} | {reference} |"
        )
    return "\n".join(lines)


# =============================================================================
# JSON Formatting Utilities
# =============================================================================


def query_result_to_dict(result: QueryResult) -> dict[str, Any]:
    return {"columns": result.columns, "rows": result.rows, "row_count": len(result.rows)}


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    # Markdown formatters
    "format_query_result_markdown",
    "format_script_results_markdown",
    "format_page_markdown",
    "format_table_list_markdown",
    "format_table_schema_markdown",
    # JSON formatters
    "query_result_to_dict",
]
