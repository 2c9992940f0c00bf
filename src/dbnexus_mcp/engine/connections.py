"""Connection metadata store and connection-string construction.

Saved connections are read from a YAML catalog. The store is read-only: it
resolves a connection id to a ConnectionProfile, and the session layer combines
the profile with a password from the credential provider to build a connection
string.

Catalog file location priority:
1. Explicit path passed to YamlConnectionStore
2. DBNEXUS_CONNECTIONS environment variable
3. Standard location: ~/.dbnexus/connections.yml
4. Empty catalog (if no file found)

Example catalog:
```yaml
version: "1.0"

connections:
  warehouse:
    name: Analytics warehouse
    engine: postgres
    host: db.internal
    port: 5432
    database: analytics
    username: reporter
    credential_id: warehouse      # password from DBNEXUS_SECRET_WAREHOUSE
    ssl_mode: require

  local:
    engine: sqlite
    host: ~/data/local.db         # file path for SQLite

  legacy-shop:
    connection_string: "mysql://shop:pw@localhost:3306/shop"
```

Entries in the older single-string form are upgraded to profiles in memory when
the catalog loads. Credentials embedded in such strings are kept on the profile
and used when the session opens.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import quote

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import ConnectionNotFoundError, InvalidRequestError
from .sql.backend import DEFAULT_PORTS, ConnectionConfig, DatabaseEngine
from .sql.dialect import CONNECTION_PREFIXES

logger = logging.getLogger(__name__)

URL_SCHEMES: dict[DatabaseEngine, str] = {
    DatabaseEngine.POSTGRESQL: "postgres",
    DatabaseEngine.MARIADB: "mysql",
}


def build_connection_string(
    engine: DatabaseEngine,
    host: str,
    port: int | None = None,
    database: str | None = None,
    username: str | None = None,
    password: str | None = None,
    ssl_mode: str | None = None,
) -> str:
    """Build a connection string from its parts.

    For SQLite the host is the database file path and every other part is
    ignored. Credentials and the database name are percent-encoded.

    Example:
        >>> build_connection_string(DatabaseEngine.POSTGRESQL, "db", 5432, "app", "u", "p@ss")
        'postgres://u:p%40ss@db:5432/app'
    """
    if engine == DatabaseEngine.SQLITE:
        return f"sqlite://{host}"

    url = f"{URL_SCHEMES[engine]}://"
    if username is not None:
        url += quote(username, safe="")
        if password is not None:
            url += f":{quote(password, safe='')}"
        url += "@"

    url += f"{host}:{port if port is not None else DEFAULT_PORTS[engine]}"
    if database:
        url += f"/{quote(database, safe='')}"
    if ssl_mode:
        url += f"?sslmode={quote(ssl_mode, safe='')}"
    return url


# ===========================================================================
# Models
# ===========================================================================


class ConnectionProfile(BaseModel):
    """A saved connection, without its password."""

    id: str = Field(description="Connection id used by open_session")
    name: str | None = Field(default=None, description="Display name")
    engine: DatabaseEngine = Field(description="sqlite, postgres(ql), mysql or mariadb")
    host: str = Field(min_length=1, description="Server host, or file path for SQLite")
    port: int | None = Field(default=None, ge=1, le=65535)
    database: str | None = None
    username: str | None = None
    credential_id: str | None = Field(
        default=None, description="Key passed to the credential provider for the password"
    )
    ssl_mode: str | None = None
    password: str | None = Field(
        default=None,
        exclude=True,
        repr=False,
        description="Password carried over from a legacy connection string",
    )

    @field_validator("engine", mode="before")
    @classmethod
    def _parse_engine(cls, value: Any) -> Any:
        if isinstance(value, str):
            engine = CONNECTION_PREFIXES.get(value.strip().lower())
            if engine is None:
                raise ValueError(f"Unknown engine '{value}'")
            return engine
        return value

    @field_validator("host")
    @classmethod
    def _expand_sqlite_home(cls, value: str) -> str:
        return os.path.expanduser(value) if value.startswith("~") else value

    @classmethod
    def from_connection_string(
        cls, connection_id: str, url: str, name: str | None = None
    ) -> ConnectionProfile:
        """Upgrade a legacy single-string entry to a profile.

        Raises:
            UnsupportedDialectError: If the string's prefix names no supported engine
            ValueError: If the string is malformed
        """
        config = ConnectionConfig.from_connection_string(url)
        if config.dialect == DatabaseEngine.SQLITE:
            return cls(id=connection_id, name=name, engine=config.dialect, host=config.path or "")
        return cls(
            id=connection_id,
            name=name,
            engine=config.dialect,
            host=config.host or "localhost",
            port=config.port,
            database=config.database,
            username=config.username,
            password=config.password,
            ssl_mode=config.ssl if isinstance(config.ssl, str) else None,
        )


class ConnectionCatalog(BaseModel):
    """Root model of the connections YAML file."""

    version: str = Field(default="1.0", description="Catalog schema version")
    connections: dict[str, ConnectionProfile] = Field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> ConnectionCatalog:
        """Validate a parsed YAML document, upgrading legacy entries."""
        entries = raw.get("connections") or {}
        if not isinstance(entries, dict):
            raise ValueError("'connections' must be a mapping of id to connection")

        profiles: dict[str, ConnectionProfile] = {}
        for connection_id, entry in entries.items():
            connection_id = str(connection_id)
            if not isinstance(entry, dict):
                raise ValueError(f"Connection '{connection_id}' must be a mapping")
            if "connection_string" in entry:
                profiles[connection_id] = ConnectionProfile.from_connection_string(
                    connection_id, entry["connection_string"], name=entry.get("name")
                )
                logger.info(f"Upgraded legacy connection entry '{connection_id}'")
            else:
                profiles[connection_id] = ConnectionProfile(id=connection_id, **entry)

        return cls(version=str(raw.get("version", "1.0")), connections=profiles)


# ===========================================================================
# Stores
# ===========================================================================


class ConnectionStore(Protocol):
    """Read access to saved connection metadata."""

    async def get_connection(self, connection_id: str) -> ConnectionProfile:
        """Raises ConnectionNotFoundError for unknown ids."""
        ...


class YamlConnectionStore:
    """Connection store backed by a YAML catalog file.

    The catalog is loaded once, on first access, and cached.

    Usage:
        store = YamlConnectionStore()
        profile = await store.get_connection("warehouse")
    """

    def __init__(self, config_path: str | Path | None = None):
        """Initialize the store with an optional explicit catalog path.

        Args:
            config_path: Explicit path to the catalog file (optional).
                If not provided, uses environment variable or standard location.
        """
        self._catalog: ConnectionCatalog | None = None
        self._explicit_path = Path(config_path).expanduser() if config_path else None

    def get_config_path(self) -> Path | None:
        """Determine catalog path using priority order.

        Returns:
            Path to catalog file, or None if no file exists
        """
        if self._explicit_path:
            if self._explicit_path.exists():
                return self._explicit_path
            logger.warning(f"Explicit connections catalog does not exist: {self._explicit_path}")
            return None

        env_path_str = os.getenv("DBNEXUS_CONNECTIONS")
        if env_path_str:
            env_path = Path(env_path_str).expanduser()
            if env_path.exists():
                return env_path
            logger.warning(f"DBNEXUS_CONNECTIONS path does not exist: {env_path}")
            return None

        standard_path = Path.home() / ".dbnexus" / "connections.yml"
        if standard_path.exists():
            return standard_path

        return None

    def load(self) -> ConnectionCatalog:
        """Load and validate the catalog (cached after the first call).

        Raises:
            InvalidRequestError: If the file is not valid YAML or fails validation
        """
        if self._catalog is not None:
            return self._catalog

        config_path = self.get_config_path()
        if config_path is None:
            logger.info("No connections catalog found; only raw connection strings can be used")
            self._catalog = ConnectionCatalog()
            return self._catalog

        logger.info(f"Loading connections catalog from: {config_path}")
        try:
            with open(config_path, encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
            if not isinstance(raw, dict):
                raise ValueError("Catalog file must contain a YAML dictionary")
            catalog = ConnectionCatalog.from_raw(raw)
        except (yaml.YAMLError, ValidationError, ValueError) as e:
            raise InvalidRequestError(f"Failed to load connections from {config_path}: {e}") from e

        logger.info(f"Loaded {len(catalog.connections)} connections")
        self._catalog = catalog
        return catalog

    async def get_connection(self, connection_id: str) -> ConnectionProfile:
        """Resolve a connection id.

        Raises:
            ConnectionNotFoundError: If the id is not in the catalog
        """
        profile = self.load().connections.get(connection_id)
        if profile is None:
            raise ConnectionNotFoundError(connection_id)
        return profile

    def list_connections(self) -> list[ConnectionProfile]:
        return list(self.load().connections.values())
