"""Multi-dialect database engine core.

Key Components:

- DatabaseService: Caller-facing operations (scripts, schema, paging, CRUD, sessions)
- SessionRegistry: Process-lifetime map of session ids to open backends
- BackendPool: One cached backend per raw connection string
- ConnectionResolver: Descriptor (session id or connection string) -> backend
- YamlConnectionStore: Saved connection profiles from a YAML catalog
- EnvVarSecretProvider: Connection passwords from DBNEXUS_SECRET_* variables
- sql: Backends, dialect strategies, splitter, coercion, introspection, builders
- models: Pydantic v2 request/response models
- exceptions: DbNexusError hierarchy with ErrorKind

Architecture:
- Every per-engine fact lives in one DialectStrategy table (sql.dialect)
- Values cross the boundary as str | None; result cells are coerced to strings
- Identifiers are always quoted by the strategy; values are always bound
- Scripts run sequentially on one borrowed connection without a transaction
- Batch CRUD runs inside one transaction
"""

from .connections import (
    ConnectionProfile,
    ConnectionStore,
    YamlConnectionStore,
    build_connection_string,
)
from .exceptions import (
    ConnectionNotFoundError,
    ConstraintViolationError,
    DbNexusError,
    ErrorKind,
    InvalidRequestError,
    NotFoundError,
    SessionNotFoundError,
    SqlConnectionError,
    SqlQueryError,
    TableNotFoundError,
    UnsupportedDialectError,
)
from .models import (
    BatchChange,
    CellUpdate,
    ColumnSchema,
    DeleteChange,
    FilterCondition,
    FilterOperator,
    ForeignKeyInput,
    ForeignKeyRef,
    InsertChange,
    PageResult,
    QueryResult,
    RowIdentifier,
    SortState,
    UpdateChange,
)
from .secrets import EnvVarSecretProvider, SecretProvider
from .service import DatabaseService
from .sessions import BackendPool, ConnectionResolver, Session, SessionRegistry

__all__ = [
    # Service
    "DatabaseService",
    # Sessions
    "BackendPool",
    "ConnectionResolver",
    "Session",
    "SessionRegistry",
    # Collaborators
    "ConnectionProfile",
    "ConnectionStore",
    "YamlConnectionStore",
    "build_connection_string",
    "SecretProvider",
    "EnvVarSecretProvider",
    # Models
    "BatchChange",
    "CellUpdate",
    "ColumnSchema",
    "DeleteChange",
    "FilterCondition",
    "FilterOperator",
    "ForeignKeyInput",
    "ForeignKeyRef",
    "InsertChange",
    "PageResult",
    "QueryResult",
    "RowIdentifier",
    "SortState",
    "UpdateChange",
    # Errors
    "ConnectionNotFoundError",
    "ConstraintViolationError",
    "DbNexusError",
    "ErrorKind",
    "InvalidRequestError",
    "NotFoundError",
    "SessionNotFoundError",
    "SqlConnectionError",
    "SqlQueryError",
    "TableNotFoundError",
    "UnsupportedDialectError",
]
