"""Shared fixtures: a fresh SQLite database per test.

Every test that asks for `db` gets its own file under tmp_path, the schema
applied, and three users: `admin` (global admin), `alice` and `bob`.
"""
import sys
import os
import pytest

# Add server/ to path so the modelhub package can be imported with relative imports intact
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from modelhub import repository
from modelhub.config import get_settings
from modelhub.database import get_db, init_schema, reset_engine
from modelhub.permissions import get_permission_engine


@pytest.fixture
def db(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'modelhub.db'}")
    monkeypatch.setenv("AZURE_SQL_SERVER", "")
    monkeypatch.setenv("DEFAULT_ADMIN", "admin")
    get_settings.cache_clear()
    get_permission_engine.cache_clear()
    reset_engine()
    init_schema()
    with get_db() as cursor:
        repository.insert_user(cursor, "admin", email="admin@example.com", admin=True,
                               created_by="system")
        repository.insert_user(cursor, "alice", email="alice@example.com", fname="Alice")
        repository.insert_user(cursor, "bob", email="bob@example.com", fname="Bob")
    yield
    reset_engine()
    get_permission_engine.cache_clear()
    get_settings.cache_clear()


@pytest.fixture
def engine(db):
    """The process-wide permission engine, rebuilt for this test's database."""
    return get_permission_engine()
