"""Tests for the connection catalog and connection-string construction."""

from __future__ import annotations

from pathlib import Path

import pytest

from dbnexus_mcp.engine.connections import (
    ConnectionCatalog,
    ConnectionProfile,
    YamlConnectionStore,
    build_connection_string,
)
from dbnexus_mcp.engine.exceptions import ConnectionNotFoundError, InvalidRequestError
from dbnexus_mcp.engine.sql import ConnectionConfig, DatabaseEngine


class TestBuildConnectionString:
    """Connection strings assembled from profile parts."""

    def test_postgres(self) -> None:
        """Test a PostgreSQL URL with the password percent-encoded."""
        url = build_connection_string(DatabaseEngine.POSTGRESQL, "db", 5432, "app", "u", "p@ss")
        assert url == "postgres://u:p%40ss@db:5432/app"

    def test_default_port_and_ssl(self) -> None:
        """Test the default port and ssl mode land in the URL."""
        url = build_connection_string(
            DatabaseEngine.MARIADB, "db", database="shop", username="shop", ssl_mode="require"
        )
        assert url == "mysql://shop@db:3306/shop?sslmode=require"

    def test_no_credentials(self) -> None:
        """Test a URL without user or database."""
        assert build_connection_string(DatabaseEngine.POSTGRESQL, "db") == "postgres://db:5432"

    def test_sqlite_uses_host_as_path(self) -> None:
        """Test SQLite profiles use the host field as the file path."""
        url = build_connection_string(DatabaseEngine.SQLITE, "/var/data/app.db", 1, "ignored")
        assert url == "sqlite:///var/data/app.db"
        assert ConnectionConfig.from_connection_string(url).path == "/var/data/app.db"

    def test_special_characters_survive_parsing(self) -> None:
        """Reserved characters in credentials parse back to the original values."""
        password = "wh-p@ss:word/#?"
        url = build_connection_string(
            DatabaseEngine.POSTGRESQL, "db.internal", 6432, "my db", "re:porter", password
        )
        config = ConnectionConfig.from_connection_string(url)
        assert config.host == "db.internal"
        assert config.port == 6432
        assert config.database == "my db"
        assert config.username == "re:porter"
        assert config.password == password


class TestConnectionProfile:
    """Profile validation."""

    @pytest.mark.parametrize(
        ("engine", "expected"),
        [
            ("postgres", DatabaseEngine.POSTGRESQL),
            ("PostgreSQL", DatabaseEngine.POSTGRESQL),
            ("mysql", DatabaseEngine.MARIADB),
            ("mariadb", DatabaseEngine.MARIADB),
            ("sqlite", DatabaseEngine.SQLITE),
        ],
    )
    def test_engine_names(self, engine: str, expected: DatabaseEngine) -> None:
        """Test engine aliases normalize to DatabaseEngine."""
        profile = ConnectionProfile(id="x", engine=engine, host="h")
        assert profile.engine == expected

    def test_unknown_engine(self) -> None:
        """Test an unknown engine name is rejected."""
        with pytest.raises(ValueError, match="Unknown engine"):
            ConnectionProfile(id="x", engine="oracle", host="h")

    def test_port_range(self) -> None:
        """Test ports outside 1-65535 are rejected."""
        with pytest.raises(ValueError):
            ConnectionProfile(id="x", engine="postgres", host="h", port=70000)

    def test_home_expanded(self) -> None:
        """Test a leading ~ in a SQLite path is expanded."""
        profile = ConnectionProfile(id="x", engine="sqlite", host="~/data.db")
        assert profile.host == str(Path.home() / "data.db")

    def test_legacy_upgrade_keeps_credentials(self) -> None:
        """Test a legacy connection string upgrades to a full profile."""
        profile = ConnectionProfile.from_connection_string(
            "shop", "mysql://shop:pw@localhost:3307/shop?sslmode=require"
        )
        assert profile.engine == DatabaseEngine.MARIADB
        assert profile.port == 3307
        assert profile.username == "shop"
        assert profile.password == "pw"
        assert profile.ssl_mode == "require"

    def test_password_not_serialized(self) -> None:
        """Test the password stays out of dumps and repr."""
        profile = ConnectionProfile.from_connection_string("p", "postgres://u:secret@h/db")
        assert "password" not in profile.model_dump()
        assert "secret" not in repr(profile)


class TestConnectionCatalog:
    """Catalog parsing."""

    def test_from_raw(self) -> None:
        """Test a raw mapping builds a catalog of profiles."""
        catalog = ConnectionCatalog.from_raw(
            {
                "version": 2,
                "connections": {
                    "a": {"engine": "sqlite", "host": "a.db"},
                    "b": {"connection_string": "postgres://u@h/db", "name": "B"},
                },
            }
        )
        assert catalog.version == "2"
        assert catalog.connections["a"].id == "a"
        assert catalog.connections["b"].name == "B"
        assert catalog.connections["b"].engine == DatabaseEngine.POSTGRESQL

    def test_entries_must_be_mappings(self) -> None:
        """Test a bare string entry is rejected."""
        with pytest.raises(ValueError, match="must be a mapping"):
            ConnectionCatalog.from_raw({"connections": {"a": "sqlite:a.db"}})


class TestYamlConnectionStore:
    """Catalog file loading."""

    async def test_load_catalog(self, connections_file: Path, tmp_path: Path) -> None:
        """Test profiles load from the YAML file."""
        store = YamlConnectionStore(connections_file)
        local = await store.get_connection("local")
        assert local.engine == DatabaseEngine.SQLITE
        assert local.host == str(tmp_path / "saved.db")
        assert local.name == "Local file"

        warehouse = await store.get_connection("warehouse")
        assert warehouse.credential_id == "warehouse"
        assert warehouse.ssl_mode == "require"

        assert sorted(p.id for p in store.list_connections()) == ["legacy", "local", "warehouse"]

    async def test_legacy_entry_upgraded(self, connections_file: Path, tmp_path: Path) -> None:
        """Test connection_string entries become profiles."""
        legacy = await YamlConnectionStore(connections_file).get_connection("legacy")
        assert legacy.engine == DatabaseEngine.SQLITE
        assert legacy.host == str(tmp_path / "legacy.db")

    async def test_unknown_id(self, connections_file: Path) -> None:
        """Test an unknown connection id raises ConnectionNotFoundError."""
        with pytest.raises(ConnectionNotFoundError, match="Connection not found: ghost"):
            await YamlConnectionStore(connections_file).get_connection("ghost")

    def test_explicit_path_priority(
        self, connections_file: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test an explicit path wins over the environment variable."""
        other = tmp_path / "other.yml"
        other.write_text("connections: {}\n")
        monkeypatch.setenv("DBNEXUS_CONNECTIONS", str(other))
        assert YamlConnectionStore(connections_file).get_config_path() == connections_file

    def test_env_path(
        self, connections_file: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test DBNEXUS_CONNECTIONS selects the catalog file."""
        monkeypatch.setenv("DBNEXUS_CONNECTIONS", str(connections_file))
        assert YamlConnectionStore().get_config_path() == connections_file

    def test_missing_files_give_empty_catalog(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test no catalog file anywhere gives an empty catalog."""
        monkeypatch.delenv("DBNEXUS_CONNECTIONS", raising=False)
        monkeypatch.setenv("HOME", str(tmp_path))
        store = YamlConnectionStore()
        assert store.get_config_path() is None
        assert store.list_connections() == []

    def test_explicit_missing_path(self, tmp_path: Path) -> None:
        """Test a missing explicit path gives an empty catalog."""
        store = YamlConnectionStore(tmp_path / "absent.yml")
        assert store.get_config_path() is None
        assert store.load().connections == {}

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        """Test malformed YAML raises InvalidRequestError."""
        path = tmp_path / "bad.yml"
        path.write_text("connections: [unclosed\n")
        with pytest.raises(InvalidRequestError, match="Failed to load connections"):
            YamlConnectionStore(path).load()

    def test_invalid_entry(self, tmp_path: Path) -> None:
        """Test an entry failing validation raises InvalidRequestError."""
        path = tmp_path / "bad.yml"
        path.write_text("connections:\n  a:\n    engine: sqlite\n")
        with pytest.raises(InvalidRequestError):
            YamlConnectionStore(path).load()

    def test_catalog_cached(self, connections_file: Path) -> None:
        """Test the catalog is read once per store."""
        store = YamlConnectionStore(connections_file)
        first = store.load()
        connections_file.write_text("connections: {}\n")
        assert store.load() is first
