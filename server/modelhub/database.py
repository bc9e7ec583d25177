"""ModelHub Server - Database Connection

Provides connection pooling via SQLAlchemy and DB-API cursors for the
repository layer. All SQL is plain '?'-parameterised SQL that runs on both
SQLite (development, tests) and Azure SQL (production, via pyodbc).

Pool configuration (Azure SQL):
- pool_size=5, max_overflow=15 → total max 20 connections
- pool_pre_ping=True → detects stale connections after SQL auto-pause
- pool_recycle=1800 → recycle before Azure's 30-min idle kill
"""

import os
import sqlite3
import struct
import threading
import time
from contextlib import contextmanager
from functools import wraps
from typing import Generator, Any

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import QueuePool

from .config import get_settings
from .errors import PersistenceFailure
from .logging_config import get_logger

logger = get_logger(__name__)

# Azure SQL transient error codes
TRANSIENT_SQL_ERRORS = {
    "08S01",   # Communication link failure
    "08001",   # Unable to connect to server
    "40613",   # Database not currently available (auto-pause resume)
    "40197",   # Service error processing request
    "40501",   # Service busy
    "49918",   # Not enough resources
    "4060",    # Cannot open database (during failover)
    "40001",   # Deadlock victim
    "10054",   # Connection forcibly closed (TCP reset)
    "database is locked",  # SQLite writer contention
}

# Pool configuration
POOL_SIZE = 5
MAX_OVERFLOW = 15
POOL_TIMEOUT = 30
POOL_RECYCLE = 1800

# Retry configuration (read paths only)
MAX_RETRIES = 3
BASE_DELAY = 0.5        # seconds
MAX_DELAY = 10.0        # seconds

SCHEMA_PATH = os.path.join(os.path.dirname(__file__), "..", "schema.sql")

# Module-level engine (lazy init)
_engine = None
_engine_lock = threading.Lock()


def _create_raw_connection():
    """Create a raw pyodbc connection with Azure AD token auth."""
    import pyodbc
    from azure.identity import DefaultAzureCredential

    settings = get_settings()

    credential = DefaultAzureCredential()
    token_bytes = credential.get_token(
        "https://database.windows.net/.default"
    ).token.encode("UTF-16-LE")
    token_struct = struct.pack(f'<I{len(token_bytes)}s', len(token_bytes), token_bytes)

    conn_str = (
        f"DRIVER={{ODBC Driver 18 for SQL Server}};"
        f"SERVER={settings.azure_sql_server};"
        f"DATABASE={settings.azure_sql_database};"
        f"Encrypt=yes;TrustServerCertificate=no;"
    )

    SQL_COPT_SS_ACCESS_TOKEN = 1256
    return pyodbc.connect(conn_str, attrs_before={SQL_COPT_SS_ACCESS_TOKEN: token_struct})


def _build_engine():
    settings = get_settings()
    if settings.uses_azure_sql:
        engine = create_engine(
            "mssql+pyodbc://",
            creator=_create_raw_connection,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            pool_pre_ping=True,
        )
        logger.info(
            "Database pool configured",
            extra={
                "backend": "azure-sql",
                "pool_size": POOL_SIZE,
                "max_total": POOL_SIZE + MAX_OVERFLOW,
            }
        )
        return engine

    url = settings.database_url
    connect_args = {}
    if url.startswith("sqlite"):
        # Pooled connections move between request threads
        connect_args = {"check_same_thread": False, "timeout": 30}
    engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)
    logger.info("Database engine configured", extra={"backend": engine.dialect.name})
    return engine


def _get_engine():
    """Get or create the SQLAlchemy engine."""
    global _engine
    if _engine is None:
        with _engine_lock:
            if _engine is None:
                _engine = _build_engine()
    return _engine


def reset_engine() -> None:
    """Dispose the pooled engine; the next get_db() builds a new one from settings."""
    global _engine
    with _engine_lock:
        if _engine is not None:
            _engine.dispose()
        _engine = None


def is_db_error(exception: Exception) -> bool:
    """True for driver-level errors (sqlite3, pyodbc, SQLAlchemy wrappers)."""
    if isinstance(exception, (sqlite3.Error, SQLAlchemyError)):
        return True
    return type(exception).__module__ == "pyodbc"


def is_transient_error(exception: Exception) -> bool:
    """Check if a database error is transient and worth retrying."""
    if isinstance(exception, PersistenceFailure) and exception.cause is not None:
        exception = exception.cause
    if not is_db_error(exception):
        return False
    error_str = str(exception)
    return any(code in error_str for code in TRANSIENT_SQL_ERRORS)


def retry_on_transient(max_retries: int = MAX_RETRIES, base_delay: float = BASE_DELAY, max_delay: float = MAX_DELAY):
    """
    Retry read-only operations on transient SQL errors with exponential backoff.

    Delays: 0.5s -> 1.0s -> 2.0s (capped at max_delay). Raises
    PersistenceFailure once retries are exhausted. Never decorate a mutation
    with this.
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    if not is_transient_error(e):
                        raise  # Non-transient errors pass through immediately
                    if attempt == max_retries:
                        logger.error(
                            "Database operation failed after %d attempts: %s",
                            attempt + 1, e, exc_info=True
                        )
                        raise PersistenceFailure(
                            "Database temporarily unavailable. Please try again in a moment.",
                            cause=e,
                        ) from e
                    delay = min(base_delay * (2 ** attempt), max_delay)
                    logger.warning(
                        "Transient database error (attempt %d/%d): %s: %s. Retrying in %.1fs",
                        attempt + 1, max_retries + 1, type(e).__name__, e, delay
                    )
                    time.sleep(delay)
        return wrapper
    return decorator


@contextmanager
def get_db() -> Generator[Any, None, None]:
    """Context manager yielding a DB-API cursor; one transaction per block.

    Commits on success and rolls back on any error. Driver errors are
    re-raised as PersistenceFailure; domain errors pass through untouched.
    """
    engine = _get_engine()
    try:
        conn = engine.raw_connection()
    except Exception as e:
        if is_db_error(e):
            raise PersistenceFailure("Database unavailable", cause=e) from e
        raise
    cursor = conn.cursor()
    try:
        yield cursor
        conn.commit()
    except Exception as e:
        conn.rollback()
        if is_db_error(e):
            logger.error("Database transaction rolled back: %s: %s", type(e).__name__, e)
            raise PersistenceFailure(cause=e) from e
        raise
    finally:
        cursor.close()
        conn.close()  # Returns connection to pool (not a real close)


def test_connection() -> bool:
    """Test database connectivity for health checks."""
    with get_db() as cursor:
        cursor.execute("SELECT 1")
        return True


def row_to_dict(cursor: Any, row: Any) -> dict:
    """Convert a DB-API row to a dictionary."""
    if row is None:
        return None
    columns = [column[0] for column in cursor.description]
    return dict(zip(columns, row))


def rows_to_list(cursor: Any, rows: list) -> list[dict]:
    """Convert multiple DB-API rows to a list of dictionaries."""
    columns = [column[0] for column in cursor.description]
    return [dict(zip(columns, row)) for row in rows]


def init_schema(schema_path: str = SCHEMA_PATH) -> None:
    """Apply schema.sql. Idempotent - ignores 'already exists' errors."""
    with open(schema_path, "r") as f:
        schema_sql = f.read()

    engine = _get_engine()
    conn = engine.raw_connection()
    try:
        cursor = conn.cursor()
        for raw_statement in schema_sql.split(";"):
            # Strip comment lines so a leading comment doesn't hide the statement
            lines = [ln for ln in raw_statement.split("\n") if not ln.strip().startswith("--")]
            statement = "\n".join(lines).strip()
            if not statement:
                continue
            try:
                cursor.execute(statement)
            except Exception as e:
                if is_db_error(e) and "already" in str(e).lower():
                    continue
                raise
        conn.commit()
        cursor.close()
    finally:
        conn.close()
    logger.info("Schema applied from '%s'", schema_path)
