"""
Shared fixtures: in-memory database migrated with the real schema.
"""
import pytest

from milkbank.config import EngineSettings
from milkbank.db import MEMORY_DB, apply_migrations, open_connection


@pytest.fixture
def conn():
    """Fresh in-memory database with every migration applied."""
    connection = open_connection(MEMORY_DB)
    apply_migrations(connection)
    yield connection
    connection.close()


@pytest.fixture
def settings():
    return EngineSettings()


@pytest.fixture
def milkbank_home(tmp_path, monkeypatch):
    """Point data/ and logs/ at a temporary directory."""
    monkeypatch.setenv("MILKBANK_HOME", str(tmp_path))
    return tmp_path
