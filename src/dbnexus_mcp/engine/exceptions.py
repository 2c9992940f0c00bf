"""Error taxonomy for database operations.

Every failure that crosses the tool boundary is a DbNexusError carrying a
human-readable message and an ErrorKind, so callers can branch on the kind
instead of matching message text.

Exception Hierarchy:
    DbNexusError (base)
    ├── SqlConnectionError (unreachable host, auth failure)
    │   └── UnsupportedDialectError (unknown connection-string prefix)
    ├── SqlQueryError (statement failed)
    │   └── ConstraintViolationError (unique/foreign-key/not-null violation)
    ├── NotFoundError
    │   ├── SessionNotFoundError
    │   ├── TableNotFoundError
    │   └── ConnectionNotFoundError
    └── InvalidRequestError (malformed caller input)
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Coarse error classes exposed to callers."""

    CONNECTION = "connection"
    STATEMENT = "statement"
    CONSTRAINT = "constraint"
    NOT_FOUND = "not_found"
    UNSUPPORTED_DIALECT = "unsupported_dialect"
    INVALID_REQUEST = "invalid_request"


class DbNexusError(Exception):
    """Base exception for all database operation errors."""

    kind: ErrorKind = ErrorKind.STATEMENT

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_response(self) -> dict[str, str]:
        """Render the error as a tool failure payload."""
        return {"status": "failure", "error": self.message, "error_kind": self.kind.value}


class SqlConnectionError(DbNexusError):
    """Failed to establish database connection."""

    kind = ErrorKind.CONNECTION


class UnsupportedDialectError(SqlConnectionError):
    """Connection string prefix does not name a supported database."""

    kind = ErrorKind.UNSUPPORTED_DIALECT

    def __init__(self, descriptor: str) -> None:
        self.descriptor = descriptor
        scheme = descriptor.split(":", 1)[0] if ":" in descriptor else descriptor
        super().__init__(
            f"Unsupported database type '{scheme}'. "
            "Only sqlite:, postgres:, postgresql:, mysql: and mariadb: are supported."
        )


class SqlQueryError(DbNexusError):
    """SQL execution failed.

    Attributes:
        statement_index: 1-based position of the failing statement inside a
            script, when the error was raised while running one.
    """

    kind = ErrorKind.STATEMENT

    def __init__(self, message: str, statement_index: int | None = None) -> None:
        self.statement_index = statement_index
        if statement_index is not None:
            message = f"Statement {statement_index} failed: {message}"
        super().__init__(message)


class ConstraintViolationError(SqlQueryError):
    """Statement rejected by an integrity constraint."""

    kind = ErrorKind.CONSTRAINT


class NotFoundError(DbNexusError):
    """Requested object does not exist."""

    kind = ErrorKind.NOT_FOUND


class SessionNotFoundError(NotFoundError):
    """Session id is not registered (expired or never created)."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session expired or invalid: {session_id}")


class TableNotFoundError(NotFoundError):
    """Introspected table does not exist."""

    def __init__(self, table: str) -> None:
        self.table = table
        super().__init__(f"Table '{table}' not found")


class ConnectionNotFoundError(NotFoundError):
    """Connection id is not present in the connection store."""

    def __init__(self, connection_id: str) -> None:
        self.connection_id = connection_id
        super().__init__(f"Connection not found: {connection_id}")


class InvalidRequestError(DbNexusError):
    """Caller supplied an operation payload that cannot be compiled."""

    kind = ErrorKind.INVALID_REQUEST
