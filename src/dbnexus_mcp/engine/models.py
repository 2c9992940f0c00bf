"""Dialect-neutral data model shared by the engine and the MCP tools.

All models are Pydantic v2 models so tool arguments are validated on entry
and results serialize to JSON-compatible dicts with model_dump().

Cell values travel as text: callers may pass numbers or booleans, which are
converted to their string form, and None means SQL NULL.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    field_validator,
    model_validator,
)

# ===========================================================================
# Schema
# ===========================================================================

ReferentialAction = Literal["CASCADE", "SET NULL", "SET DEFAULT", "RESTRICT", "NO ACTION"]


class ForeignKeyRef(BaseModel):
    """Column referenced by a foreign key."""

    table: str
    column: str


class ColumnSchema(BaseModel):
    """One column as reported by introspection or supplied to CREATE TABLE."""

    name: str = Field(min_length=1, description="Column name")
    type_name: str = Field(default="", description="Declared type name, e.g. VARCHAR(255)")
    is_nullable: bool = True
    is_primary_key: bool = False
    is_auto_increment: bool = False
    is_unique: bool = False
    default_value: str | None = Field(
        default=None, description="Default value text (unquoted literal or expression)"
    )
    foreign_key: ForeignKeyRef | None = None
    native_type: str | None = Field(
        default=None,
        description="Server-side type name used for parameter casts (PostgreSQL udt_name)",
    )


def _normalize_action(value: Any) -> Any:
    if isinstance(value, str):
        return " ".join(value.replace("_", " ").split()).upper()
    return value


class ForeignKeyInput(BaseModel):
    """User-supplied foreign key for CREATE TABLE."""

    column: str = Field(min_length=1, description="Source column in the new table")
    ref_table: str = Field(min_length=1, description="Referenced table")
    ref_column: str = Field(min_length=1, description="Referenced column")
    on_delete: ReferentialAction = "NO ACTION"
    on_update: ReferentialAction = "NO ACTION"

    _normalize_on_delete = field_validator("on_delete", mode="before")(_normalize_action)
    _normalize_on_update = field_validator("on_update", mode="before")(_normalize_action)


# ===========================================================================
# Results
# ===========================================================================


class QueryResult(BaseModel):
    """Tabular result with every cell rendered as display text."""

    columns: list[str] = Field(default_factory=list)
    rows: list[list[str]] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_row_widths(self) -> QueryResult:
        width = len(self.columns)
        for index, row in enumerate(self.rows):
            if len(row) != width:
                raise ValueError(f"Row {index} has {len(row)} cells, expected {width}")
        return self


class PageResult(BaseModel):
    """One page of table rows plus the filtered row count."""

    rows: QueryResult
    total_count: int = Field(ge=0)


# ===========================================================================
# Browsing
# ===========================================================================


class FilterOperator(str, Enum):
    """Comparison operators available to table filters."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"


class FilterCondition(BaseModel):
    """A single WHERE predicate on one column."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str | None = None
    enabled: bool = True
    column: str = Field(min_length=1)
    operator: FilterOperator
    value: str | None = None


class SortState(BaseModel):
    """ORDER BY on one column."""

    column: str = Field(min_length=1)
    direction: Literal["asc", "desc"] = "asc"

    @field_validator("direction", mode="before")
    @classmethod
    def _lower_direction(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value


# ===========================================================================
# CRUD
# ===========================================================================


class RowIdentifier(BaseModel):
    """Column/value pairs that locate one row (usually the primary key)."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    columns: list[str]
    values: list[str | None]

    @model_validator(mode="after")
    def _check_lengths(self) -> RowIdentifier:
        if len(self.columns) != len(self.values):
            raise ValueError(
                f"Identifier has {len(self.columns)} columns but {len(self.values)} values"
            )
        return self

    def pairs(self) -> list[tuple[str, str | None]]:
        return list(zip(self.columns, self.values, strict=True))


class CellUpdate(BaseModel):
    """New value for one column."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    column: str = Field(min_length=1)
    value: str | None = None


def _upper_operation(value: Any) -> Any:
    return value.upper() if isinstance(value, str) else value


class InsertChange(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    operation: Literal["INSERT"] = "INSERT"
    table_name: str = Field(min_length=1)
    insert_values: dict[str, str | None] = Field(default_factory=dict)

    _upper = field_validator("operation", mode="before")(_upper_operation)


class UpdateChange(BaseModel):
    operation: Literal["UPDATE"] = "UPDATE"
    table_name: str = Field(min_length=1)
    identifier: RowIdentifier
    updates: list[CellUpdate]

    _upper = field_validator("operation", mode="before")(_upper_operation)


class DeleteChange(BaseModel):
    operation: Literal["DELETE"] = "DELETE"
    table_name: str = Field(min_length=1)
    identifier: RowIdentifier

    _upper = field_validator("operation", mode="before")(_upper_operation)


def _change_tag(value: Any) -> str | None:
    if isinstance(value, dict):
        operation = value.get("operation")
    else:
        operation = getattr(value, "operation", None)
    return operation.upper() if isinstance(operation, str) else None


BatchChange = Annotated[
    Union[
        Annotated[InsertChange, Tag("INSERT")],
        Annotated[UpdateChange, Tag("UPDATE")],
        Annotated[DeleteChange, Tag("DELETE")],
    ],
    Discriminator(_change_tag),
]
"""One unit of work inside a batch, tagged by its operation."""
