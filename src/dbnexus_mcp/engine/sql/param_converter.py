"""Placeholder conversion for the aiomysql pyformat paramstyle.

Statements are built with ? placeholders. aiomysql runs every parameterized
statement through Python %-formatting, so before execution:

    - ? outside quoted text becomes %s
    - every literal % becomes %%

Quoted identifiers and string literals are left intact apart from % doubling,
so a column named `rate?` or a LIKE pattern containing % survive conversion.
"""

from __future__ import annotations

_QUOTES = frozenset({"'", '"', "`"})


class ParamConverter:
    """Converts ? placeholders to %s for MariaDB.

    Example:
        converter = ParamConverter()
        converter.convert("SELECT * FROM t WHERE a = ? AND b LIKE '10%'")
        # "SELECT * FROM t WHERE a = %s AND b LIKE '10%%'"
    """

    def convert(self, sql: str) -> str:
        """Convert ? placeholders in sql to %s, doubling literal %.

        Backslash escapes inside quoted text are honored, as MariaDB does by
        default.
        """
        out: list[str] = []
        quote = ""
        i = 0
        while i < len(sql):
            c = sql[i]
            if c == "%":
                out.append("%%")
            elif quote:
                out.append(c)
                if c == "\\" and i + 1 < len(sql):
                    i += 1
                    out.append(sql[i] if sql[i] != "%" else "%%")
                elif c == quote:
                    quote = ""
            elif c in _QUOTES:
                quote = c
                out.append(c)
            elif c == "?":
                out.append("%s")
            else:
                out.append(c)
            i += 1
        return "".join(out)
