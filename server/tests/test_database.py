"""Tests for the database layer.

Covers:
- Transient error detection (driver errors and wrapped PersistenceFailure)
- retry_on_transient: retries, gives up with PersistenceFailure, passes others
- get_db: commit, rollback, driver errors wrapped, domain errors untouched
- Engine selection: SQLite URL vs Azure SQL
- init_schema is idempotent
"""
import sys
import os
import sqlite3
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from unittest.mock import patch, MagicMock
from modelhub import database, repository
from modelhub.config import get_settings
from modelhub.database import (
    get_db, init_schema, is_transient_error, reset_engine, retry_on_transient,
)
from modelhub.errors import PersistenceFailure, ResourceNotFound


class TestTransientDetection:

    def test_sqlite_lock_is_transient(self):
        assert is_transient_error(sqlite3.OperationalError("database is locked"))

    def test_azure_code_is_transient(self):
        assert is_transient_error(sqlite3.OperationalError("[08S01] Communication link failure"))

    def test_other_driver_error_is_not_transient(self):
        assert not is_transient_error(sqlite3.IntegrityError("UNIQUE constraint failed"))

    def test_non_db_error_is_not_transient(self):
        assert not is_transient_error(ValueError("database is locked"))

    def test_wrapped_cause_is_inspected(self):
        wrapped = PersistenceFailure(cause=sqlite3.OperationalError("database is locked"))
        assert is_transient_error(wrapped)

    def test_persistence_failure_without_cause(self):
        assert not is_transient_error(PersistenceFailure("Database unavailable"))


class TestRetryOnTransient:

    @patch("modelhub.database.time.sleep")
    def test_succeeds_after_transient_failures(self, mock_sleep):
        func = MagicMock(side_effect=[
            sqlite3.OperationalError("database is locked"),
            sqlite3.OperationalError("database is locked"),
            "ok",
        ])
        assert retry_on_transient(max_retries=3)(func)() == "ok"
        assert func.call_count == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [0.5, 1.0]

    @patch("modelhub.database.time.sleep")
    def test_gives_up_with_persistence_failure(self, mock_sleep):
        func = MagicMock(side_effect=sqlite3.OperationalError("database is locked"))
        with pytest.raises(PersistenceFailure):
            retry_on_transient(max_retries=2)(func)()
        assert func.call_count == 3

    @patch("modelhub.database.time.sleep")
    def test_domain_errors_pass_through(self, mock_sleep):
        func = MagicMock(side_effect=ResourceNotFound("gone"))
        with pytest.raises(ResourceNotFound):
            retry_on_transient()(func)()
        assert func.call_count == 1
        mock_sleep.assert_not_called()

    @patch("modelhub.database.time.sleep")
    def test_delay_is_capped(self, mock_sleep):
        func = MagicMock(side_effect=[sqlite3.OperationalError("database is locked")] * 3 + ["ok"])
        retry_on_transient(max_retries=3, base_delay=4.0, max_delay=5.0)(func)()
        assert [c.args[0] for c in mock_sleep.call_args_list] == [4.0, 5.0, 5.0]


class TestGetDb:

    def test_commits_on_success(self, db):
        with get_db() as cursor:
            repository.insert_user(cursor, "carol")
        with get_db() as cursor:
            assert repository.user_exists(cursor, "carol")

    def test_rolls_back_on_error(self, db):
        with pytest.raises(ResourceNotFound):
            with get_db() as cursor:
                repository.insert_user(cursor, "carol")
                raise ResourceNotFound("abort")
        with get_db() as cursor:
            assert not repository.user_exists(cursor, "carol")

    def test_driver_error_becomes_persistence_failure(self, db):
        with pytest.raises(PersistenceFailure) as exc_info:
            with get_db() as cursor:
                repository.insert_user(cursor, "alice")  # duplicate primary key
        assert isinstance(exc_info.value.cause, sqlite3.IntegrityError)


class TestEngineSelection:

    def setup_method(self):
        get_settings.cache_clear()
        reset_engine()

    def teardown_method(self):
        reset_engine()
        get_settings.cache_clear()

    def test_sqlite_url_used_by_default(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'x.db'}")
        monkeypatch.setenv("AZURE_SQL_SERVER", "")
        with patch("modelhub.database.create_engine") as mock_create:
            database._get_engine()
        url = mock_create.call_args[0][0]
        assert url.startswith("sqlite:///")
        assert mock_create.call_args[1]["connect_args"]["check_same_thread"] is False

    def test_azure_sql_uses_token_creator(self, monkeypatch):
        monkeypatch.setenv("AZURE_SQL_SERVER", "test-server.database.windows.net")
        with patch("modelhub.database.create_engine") as mock_create:
            database._get_engine()
        assert mock_create.call_args[0][0] == "mssql+pyodbc://"
        kwargs = mock_create.call_args[1]
        assert kwargs["creator"] is database._create_raw_connection
        assert kwargs["pool_size"] == database.POOL_SIZE
        assert kwargs["pool_pre_ping"] is True

    def test_engine_is_cached(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'x.db'}")
        monkeypatch.setenv("AZURE_SQL_SERVER", "")
        with patch("modelhub.database.create_engine", return_value=MagicMock()) as mock_create:
            first = database._get_engine()
            second = database._get_engine()
        assert first is second
        mock_create.assert_called_once()


class TestInitSchema:

    def test_applying_twice_is_harmless(self, db):
        init_schema()  # tables already exist
        with get_db() as cursor:
            assert repository.user_exists(cursor, "alice")
