"""Multi-statement script splitting.

Splits a SQL script on top-level semicolons without parsing SQL. A single
left-to-right scan tracks whether the cursor is inside a quoted literal, a
line comment or a block comment; semicolons only terminate statements outside
all three. Comments and literals are copied verbatim so each emitted statement
remains executable.

Example:
    split_sql_statements("SELECT 'a;b'; SELECT 2")
    # ["SELECT 'a;b'", "SELECT 2"]
"""

from __future__ import annotations

from enum import Enum

QUOTE_CHARS = frozenset({"'", '"', "`"})


class _Mode(Enum):
    NORMAL = "normal"
    QUOTED = "quoted"
    LINE_COMMENT = "line_comment"
    BLOCK_COMMENT = "block_comment"


def split_sql_statements(script: str, backslash_escapes: bool = False) -> list[str]:
    """Split a script into individual statements.

    Args:
        script: SQL text containing zero or more statements
        backslash_escapes: Treat backslash inside a quoted literal as escaping
            the following character (MariaDB/MySQL)

    Returns:
        Trimmed, non-empty statements in script order, without the
        terminating semicolons. Unterminated quotes and comments run to the
        end of the input.
    """
    statements: list[str] = []
    current: list[str] = []
    mode = _Mode.NORMAL
    quote_char = ""
    length = len(script)
    i = 0

    def flush() -> None:
        text = "".join(current).strip()
        if text:
            statements.append(text)
        current.clear()

    while i < length:
        c = script[i]
        nxt = script[i + 1] if i + 1 < length else ""

        if mode is _Mode.LINE_COMMENT:
            current.append(c)
            if c == "\n":
                mode = _Mode.NORMAL
            i += 1
            continue

        if mode is _Mode.BLOCK_COMMENT:
            current.append(c)
            if c == "*" and nxt == "/":
                current.append(nxt)
                mode = _Mode.NORMAL
                i += 2
                continue
            i += 1
            continue

        if mode is _Mode.QUOTED:
            current.append(c)
            if backslash_escapes and c == "\\":
                if nxt:
                    current.append(nxt)
                    i += 2
                    continue
            elif c == quote_char:
                if nxt == quote_char:
                    # Doubled quote is a literal quote character
                    current.append(nxt)
                    i += 2
                    continue
                mode = _Mode.NORMAL
            i += 1
            continue

        if c == "-" and nxt == "-":
            current.append("--")
            mode = _Mode.LINE_COMMENT
            i += 2
        elif c == "/" and nxt == "*":
            current.append("/*")
            mode = _Mode.BLOCK_COMMENT
            i += 2
        elif c in QUOTE_CHARS:
            current.append(c)
            quote_char = c
            mode = _Mode.QUOTED
            i += 1
        elif c == ";":
            flush()
            i += 1
        else:
            current.append(c)
            i += 1

    flush()
    return statements
