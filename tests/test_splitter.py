"""Tests for multi-statement script splitting."""

from __future__ import annotations

import pytest

from dbnexus_mcp.engine.sql import split_sql_statements


class TestStatementBoundaries:
    """Semicolons split statements only at top level."""

    def test_two_statements(self) -> None:
        """Test two statements split on the semicolon."""
        assert split_sql_statements("SELECT 1; SELECT 2") == ["SELECT 1", "SELECT 2"]

    def test_semicolon_inside_literal(self) -> None:
        """A semicolon inside single quotes does not end the statement."""
        result = split_sql_statements("SELECT 'a;b'; SELECT 3", False)
        assert result == ["SELECT 'a;b'", "SELECT 3"]

    def test_semicolon_inside_line_comment(self) -> None:
        """A semicolon inside a line comment does not end the statement."""
        result = split_sql_statements("SELECT 1; -- c;\n SELECT 2", False)
        assert len(result) == 2
        assert result[0] == "SELECT 1"
        assert result[1].endswith("SELECT 2")

    def test_semicolon_inside_block_comment(self) -> None:
        """Test a semicolon inside a block comment does not split."""
        result = split_sql_statements("SELECT /* ; */ 1; SELECT 2")
        assert result == ["SELECT /* ; */ 1", "SELECT 2"]

    def test_quoted_identifiers(self) -> None:
        """Double quotes and backticks protect semicolons in identifiers."""
        script = 'SELECT "a;b" FROM t; SELECT `c;d` FROM u'
        assert split_sql_statements(script) == ['SELECT "a;b" FROM t', "SELECT `c;d` FROM u"]

    def test_doubled_quote_stays_inside_literal(self) -> None:
        """Test a doubled quote does not close the literal."""
        script = "INSERT INTO t VALUES ('it''s; fine'); SELECT 1"
        assert split_sql_statements(script) == [
            "INSERT INTO t VALUES ('it''s; fine')",
            "SELECT 1",
        ]

    def test_empty_statements_dropped(self) -> None:
        """Test empty and whitespace-only statements are dropped."""
        assert split_sql_statements(";;  ; SELECT 1;;\n") == ["SELECT 1"]

    def test_empty_script(self) -> None:
        """Test an empty script gives no statements."""
        assert split_sql_statements("") == []
        assert split_sql_statements("   \n ") == []

    def test_trailing_statement_without_semicolon(self) -> None:
        """Test the last statement needs no semicolon."""
        assert split_sql_statements("SELECT 1;\nSELECT 2\n") == ["SELECT 1", "SELECT 2"]

    def test_unterminated_literal_runs_to_end(self) -> None:
        """Test an unterminated literal swallows the rest of the script."""
        assert split_sql_statements("SELECT 'abc; def") == ["SELECT 'abc; def"]


class TestBackslashEscapes:
    """Backslash escapes are honored only when requested (MariaDB)."""

    def test_backslash_escaped_quote(self) -> None:
        """Test a backslash-escaped quote does not close the literal."""
        script = r"SELECT 'a\';b'; SELECT 2"
        assert split_sql_statements(script, backslash_escapes=True) == [
            r"SELECT 'a\';b'",
            "SELECT 2",
        ]

    def test_backslash_is_literal_without_escapes(self) -> None:
        """Standard SQL: the backslash does not escape, so the quote closes the literal."""
        script = r"SELECT 'a\'; SELECT 2"
        assert split_sql_statements(script, backslash_escapes=False) == [
            r"SELECT 'a\'",
            "SELECT 2",
        ]


class TestResplit:
    """Rejoining split output and splitting again is stable."""

    @pytest.mark.parametrize(
        "script",
        [
            "SELECT 1; SELECT 2",
            "CREATE TABLE t (a TEXT DEFAULT 'x;y'); INSERT INTO t VALUES ('q')",
            "SELECT 1 /* note; */; SELECT \"col;name\" FROM t",
        ],
    )
    def test_resplit_is_idempotent(self, script: str) -> None:
        """Test rejoining and resplitting gives the same statements."""
        first = split_sql_statements(script)
        assert split_sql_statements("; ".join(first)) == first
