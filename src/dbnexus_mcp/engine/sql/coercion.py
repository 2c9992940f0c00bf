"""Result cell coercion to display strings.

Drivers hand back cells of types that are not known until runtime. Each cell is
rendered by trying an ordered list of probes and using the first decoding that
succeeds; a cell no probe accepts degrades to an ERR[<type>] marker instead of
failing the call.

Probe order:
    TEXT, INT64, INT32, FLOAT64, BOOL, DATE, DATETIME_NAIVE, DATETIME_UTC,
    DECIMAL (server dialects only), BINARY, NULLABLE_TEXT
"""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from ..models import QueryResult

if TYPE_CHECKING:
    from .backend import RawResult

_INT64_MIN, _INT64_MAX = -(2**63), 2**63 - 1
_INT32_MIN, _INT32_MAX = -(2**31), 2**31 - 1


class Probe(Enum):
    """One candidate decoding of a result cell."""

    TEXT = "text"
    INT64 = "int64"
    INT32 = "int32"
    FLOAT64 = "float64"
    BOOL = "bool"
    DATE = "date"
    DATETIME_NAIVE = "datetime_naive"
    DATETIME_UTC = "datetime_utc"
    DECIMAL = "decimal"
    BINARY = "binary"
    NULLABLE_TEXT = "nullable_text"


SERVER_PROBES: tuple[Probe, ...] = tuple(Probe)
EMBEDDED_PROBES: tuple[Probe, ...] = tuple(p for p in Probe if p is not Probe.DECIMAL)


class ProbeMismatch(Exception):
    """Raised by try_as when a cell cannot be decoded as the requested probe."""


class ProbeCapable(Protocol):
    """Row that can attempt a typed decoding of each of its cells."""

    def column_names(self) -> list[str]: ...

    def type_name(self, index: int) -> str: ...

    def try_as(self, index: int, probe: Probe) -> Any:
        """Return the cell decoded as probe, or raise ProbeMismatch."""
        ...


# ============================================================================
# Decoding
# ============================================================================


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    raise ProbeMismatch


def _as_int(low: int, high: int) -> Callable[[Any], int]:
    def extract(value: Any) -> int:
        if isinstance(value, int) and not isinstance(value, bool) and low <= value <= high:
            return value
        raise ProbeMismatch

    return extract


def _as_float(value: Any) -> float:
    if isinstance(value, float):
        return value
    raise ProbeMismatch


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    raise ProbeMismatch


def _as_date(value: Any) -> date:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    raise ProbeMismatch


def _as_naive_datetime(value: Any) -> datetime:
    if isinstance(value, datetime) and value.tzinfo is None:
        return value
    raise ProbeMismatch


def _as_utc_datetime(value: Any) -> datetime:
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(UTC)
    raise ProbeMismatch


def _as_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    raise ProbeMismatch


def _as_binary(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    raise ProbeMismatch


def _as_nullable_text(value: Any) -> str | None:
    if value is None or isinstance(value, str):
        return value
    raise ProbeMismatch


_EXTRACTORS: dict[Probe, Callable[[Any], Any]] = {
    Probe.TEXT: _as_text,
    Probe.INT64: _as_int(_INT64_MIN, _INT64_MAX),
    Probe.INT32: _as_int(_INT32_MIN, _INT32_MAX),
    Probe.FLOAT64: _as_float,
    Probe.BOOL: _as_bool,
    Probe.DATE: _as_date,
    Probe.DATETIME_NAIVE: _as_naive_datetime,
    Probe.DATETIME_UTC: _as_utc_datetime,
    Probe.DECIMAL: _as_decimal,
    Probe.BINARY: _as_binary,
    Probe.NULLABLE_TEXT: _as_nullable_text,
}


# ============================================================================
# Rendering
# ============================================================================


def render_float(value: float) -> str:
    """Render a float in positional notation, dropping a trailing ".0"."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    text = repr(value)
    if "e" in text:
        text = format(Decimal(text), "f")
    if text.endswith(".0"):
        text = text[:-2]
    return text


def _render_binary(value: bytes) -> str:
    try:
        return value.decode("utf-8")
    except UnicodeDecodeError:
        return f"<BINARY {len(value)} bytes>"


_RENDERERS: dict[Probe, Callable[[Any], str]] = {
    Probe.TEXT: str,
    Probe.INT64: str,
    Probe.INT32: str,
    Probe.FLOAT64: render_float,
    Probe.BOOL: lambda v: "true" if v else "false",
    Probe.DATE: lambda v: v.isoformat(),
    Probe.DATETIME_NAIVE: lambda v: v.isoformat(sep=" "),
    Probe.DATETIME_UTC: lambda v: f"{v.replace(tzinfo=None).isoformat(sep=' ')} UTC",
    Probe.DECIMAL: lambda v: format(v, "f"),
    Probe.BINARY: _render_binary,
    Probe.NULLABLE_TEXT: lambda v: "NULL" if v is None else v,
}


# ============================================================================
# Rows
# ============================================================================


class ResultRow:
    """A driver row with the probe capability used by coerce_cell.

    Attributes:
        values: Cell values as decoded by the driver
        names: Column names shared by every row of the result
        types: Declared/driver type name per column
    """

    __slots__ = ("values", "names", "types")

    def __init__(self, values: Sequence[Any], names: list[str], types: list[str]) -> None:
        self.values = values
        self.names = names
        self.types = types

    def column_names(self) -> list[str]:
        return self.names

    def type_name(self, index: int) -> str:
        if index < len(self.types) and self.types[index]:
            return self.types[index]
        return type(self.values[index]).__name__

    def try_as(self, index: int, probe: Probe) -> Any:
        return _EXTRACTORS[probe](self.values[index])


def coerce_cell(row: ProbeCapable, index: int, probes: Sequence[Probe]) -> str:
    """Render one cell with the first probe that accepts it.

    Never raises for undecodable values; returns ERR[<type name>] instead.
    """
    for probe in probes:
        try:
            value = row.try_as(index, probe)
        except ProbeMismatch:
            continue
        return _RENDERERS[probe](value)
    return f"ERR[{row.type_name(index)}]"


def coerce_rows(rows: Sequence[ProbeCapable], probes: Sequence[Probe]) -> QueryResult:
    """Render every cell of a result set.

    Column names are taken from the first row; an empty result yields empty
    columns and rows.
    """
    if not rows:
        return QueryResult(columns=[], rows=[])

    columns = list(rows[0].column_names())
    width = len(columns)
    rendered = [[coerce_cell(row, i, probes) for i in range(width)] for row in rows]
    return QueryResult(columns=columns, rows=rendered)


def coerce_result(raw: RawResult, probes: Sequence[Probe]) -> QueryResult:
    """Wrap a backend's raw rows in ResultRow and render them."""
    rows = [ResultRow(values, raw.columns, raw.column_types) for values in raw.rows]
    return coerce_rows(rows, probes)
