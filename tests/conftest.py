"""Shared test configuration for dbnexus-mcp tests.

Configures test environment including:
- Test secrets for credential resolution tests
- A DatabaseService wired to an in-memory session registry and backend pool
- File-backed SQLite connection strings under pytest's tmp_path
"""

from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest
from test_secrets import setup_test_secrets as _setup_secrets
from test_secrets import teardown_test_secrets as _teardown_secrets

from dbnexus_mcp.engine import (
    BackendPool,
    ConnectionResolver,
    DatabaseService,
    EnvVarSecretProvider,
    SessionRegistry,
    YamlConnectionStore,
)


@pytest.fixture(scope="session", autouse=True)
def setup_test_secrets() -> Iterator[None]:
    """Configure DBNEXUS_SECRET_* variables for all tests.

    Secret values defined in test_secrets.py (single source of truth).
    """
    _setup_secrets()
    yield
    _teardown_secrets()


@pytest.fixture
def sqlite_url(tmp_path: Path) -> str:
    """Connection string for a fresh SQLite file."""
    return f"sqlite:{tmp_path / 'app.db'}"


@pytest.fixture
def connections_file(tmp_path: Path) -> Path:
    """Connections catalog with one SQLite profile and one legacy entry."""
    path = tmp_path / "connections.yml"
    path.write_text(
        f"""
version: "1.0"
connections:
  local:
    name: Local file
    engine: sqlite
    host: {tmp_path / 'saved.db'}
  legacy:
    connection_string: "sqlite:{tmp_path / 'legacy.db'}"
  warehouse:
    engine: postgres
    host: db.internal
    database: analytics
    username: reporter
    credential_id: warehouse
    ssl_mode: require
""",
        encoding="utf-8",
    )
    return path


@pytest.fixture
async def service(connections_file: Path) -> AsyncIterator[DatabaseService]:
    """DatabaseService with its own registry and pool, closed after the test."""
    registry = SessionRegistry()
    pool = BackendPool({"pool_size": 2})
    svc = DatabaseService(
        ConnectionResolver(registry, pool),
        YamlConnectionStore(connections_file),
        EnvVarSecretProvider(),
    )
    yield svc
    await registry.close_all()
    await pool.close_all()
