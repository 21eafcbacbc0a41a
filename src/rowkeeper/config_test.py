"""
Unit tests for configuration loading.

Run with: pytest src/rowkeeper/config_test.py -v
"""

import pytest

from rowkeeper.config import DatabaseConfig


class TestDatabaseConfigFromEnv:
    """Tests for DatabaseConfig.from_env()"""

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("DB_HOST", "db.internal")
        monkeypatch.setenv("DB_PORT", "6543")
        monkeypatch.setenv("DB_USER", "app")
        monkeypatch.setenv("DB_PASSWORD", "secret")
        monkeypatch.setenv("DB_NAME", "inventory")
        monkeypatch.setenv("DB_POOL_MIN", "1")
        monkeypatch.setenv("DB_POOL_MAX", "20")
        monkeypatch.delenv("DB_CONNECT_TIMEOUT", raising=False)

        cfg = DatabaseConfig.from_env()

        assert cfg == DatabaseConfig(
            host="db.internal",
            user="app",
            password="secret",
            database="inventory",
            port=6543,
            pool_min=1,
            pool_max=20,
        )

    def test_defaults(self, monkeypatch):
        for name in ("DB_PORT", "DB_POOL_MIN", "DB_POOL_MAX", "DB_CONNECT_TIMEOUT"):
            monkeypatch.delenv(name, raising=False)

        cfg = DatabaseConfig.from_env()

        assert cfg.port == 5432
        assert cfg.pool_min == 2
        assert cfg.pool_max == 10
        assert cfg.connect_timeout == 10.0


class TestMissingFields:
    """Tests for DatabaseConfig.missing_fields()"""

    @pytest.mark.parametrize("host,user,database,expected", [
        ("h", "u", "d", []),
        (None, "u", "d", ["host"]),
        ("h", "", "d", ["user"]),
        (None, None, None, ["host", "user", "database"]),
    ])
    def test_missing_fields(self, host, user, database, expected):
        cfg = DatabaseConfig(host=host, user=user, password=None, database=database)

        assert cfg.missing_fields() == expected
