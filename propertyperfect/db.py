"""
Database utilities for PropertyPerfect Backend.
Provides connection management, common query helpers and the schema bootstrap.

All functions raise meaningful exceptions on failure - no silent failures.

Usage:
    from propertyperfect.db import transaction, fetch_one, Tables

    # Transaction with automatic commit/rollback
    with transaction() as cur:
        cur.execute(f"INSERT INTO {Tables.ENHANCEMENT_JOBS} (...) VALUES (...) RETURNING *", (...))
        job = fetch_one(cur)
        cur.execute(f"UPDATE {Tables.USERS} SET credit_balance = credit_balance - 1 WHERE id = %s", (user_id,))
"""

import os
from contextlib import contextmanager
from typing import Optional, Any, Dict, List

import psycopg
from psycopg.rows import dict_row

# Module-level constants read straight from the environment (no config import here)
_DATABASE_URL = os.getenv("DATABASE_URL", "").strip()
if _DATABASE_URL.startswith("postgres://"):
    _DATABASE_URL = _DATABASE_URL.replace("postgres://", "postgresql://", 1)
_HAS_DATABASE = bool(_DATABASE_URL)
_DB_CONNECT_TIMEOUT = int(os.getenv("DB_CONNECT_TIMEOUT", "5"))
_APP_SCHEMA = os.getenv("APP_SCHEMA", "public").strip() or "public"


# ─────────────────────────────────────────────────────────────
# Custom Exceptions
# ─────────────────────────────────────────────────────────────
class DatabaseError(Exception):
    """Base exception for database errors."""
    pass


class DatabaseNotConfiguredError(DatabaseError):
    """Raised when database is not configured but an operation requires it."""
    def __init__(self, message: str = "Database is not configured"):
        super().__init__(message)


class DatabaseConnectionError(DatabaseError):
    """Raised when unable to connect to the database."""
    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.original_error = original_error


class DatabaseQueryError(DatabaseError):
    """Raised when a query fails."""
    def __init__(self, message: str, query: str = None, original_error: Exception = None):
        super().__init__(message)
        self.query = query
        self.original_error = original_error


class DatabaseIntegrityError(DatabaseError):
    """Raised on constraint violations (unique, check, etc.)."""
    def __init__(self, message: str, constraint: str = None, original_error: Exception = None):
        super().__init__(message)
        self.constraint = constraint
        self.original_error = original_error


# ─────────────────────────────────────────────────────────────
# Connection State
# ─────────────────────────────────────────────────────────────
USE_DB = _HAS_DATABASE

print(f"[DB] DATABASE_URL configured: {_HAS_DATABASE}, schema: {_APP_SCHEMA}")


# ─────────────────────────────────────────────────────────────
# Connection Management
# ─────────────────────────────────────────────────────────────
def _create_connection():
    """
    Create a new database connection.
    Internal function - raises exceptions on failure.
    """
    if not _DATABASE_URL:
        raise DatabaseNotConfiguredError("DATABASE_URL is not set")

    try:
        conn = psycopg.connect(
            _DATABASE_URL,
            connect_timeout=_DB_CONNECT_TIMEOUT,
            row_factory=dict_row,
        )
        with conn.cursor() as cur:
            cur.execute(f"SET search_path TO {_APP_SCHEMA}, public;")
        return conn
    except psycopg.OperationalError as e:
        raise DatabaseConnectionError(f"Failed to connect to database: {e}", original_error=e)
    except Exception as e:
        raise DatabaseConnectionError(f"Unexpected error connecting to database: {e}", original_error=e)


@contextmanager
def transaction():
    """
    Context manager for database transactions.
    Automatically commits on success, rolls back on exception.
    Yields a cursor with dict_row factory.

    Raises:
        DatabaseNotConfiguredError: If database is not configured
        DatabaseConnectionError: If connection fails
        DatabaseQueryError: If a query fails
        DatabaseIntegrityError: On constraint violations

    Usage:
        with transaction() as cur:
            cur.execute("INSERT INTO enhancement_jobs (...) VALUES (...)", (...))
            cur.execute("UPDATE users SET credit_balance = credit_balance - 1 WHERE id = %s", (uid,))
        # Auto-committed here if no exception
    """
    conn = _create_connection()
    try:
        with conn.cursor() as cur:
            yield cur
        conn.commit()
    except psycopg.errors.UniqueViolation as e:
        conn.rollback()
        constraint = getattr(e.diag, 'constraint_name', None)
        raise DatabaseIntegrityError(
            f"Unique constraint violation: {e}",
            constraint=constraint,
            original_error=e
        )
    except psycopg.errors.CheckViolation as e:
        conn.rollback()
        constraint = getattr(e.diag, 'constraint_name', None)
        raise DatabaseIntegrityError(
            f"Check constraint violation: {e}",
            constraint=constraint,
            original_error=e
        )
    except psycopg.Error as e:
        conn.rollback()
        raise DatabaseQueryError(f"Database error: {e}", original_error=e)
    except Exception:
        conn.rollback()
        raise
    finally:
        try:
            conn.close()
        except Exception:
            pass


# ─────────────────────────────────────────────────────────────
# Cursor Helpers (for use within transaction blocks)
# ─────────────────────────────────────────────────────────────
def fetch_one(cur) -> Optional[Dict[str, Any]]:
    """
    Fetch one row from cursor as dict.
    Returns None if no rows available.
    """
    row = cur.fetchone()
    if row is None:
        return None
    if isinstance(row, dict):
        return row
    if cur.description:
        columns = [desc[0] for desc in cur.description]
        return dict(zip(columns, row))
    return None


def fetch_all(cur) -> List[Dict[str, Any]]:
    """
    Fetch all rows from cursor as list of dicts.
    Returns empty list if no rows.
    """
    rows = cur.fetchall()
    if not rows:
        return []
    if isinstance(rows[0], dict):
        return list(rows)
    if cur.description:
        columns = [desc[0] for desc in cur.description]
        return [dict(zip(columns, row)) for row in rows]
    return []


def fetch_scalar(cur) -> Any:
    """
    Fetch a single scalar value from cursor.
    Returns None if no rows.
    """
    row = cur.fetchone()
    if row is None:
        return None
    if isinstance(row, dict):
        return next(iter(row.values()), None)
    return row[0] if row else None


# ─────────────────────────────────────────────────────────────
# Standalone Query Helpers (open their own transaction)
# ─────────────────────────────────────────────────────────────
def query_one(sql: str, params: tuple = None) -> Optional[Dict[str, Any]]:
    """
    Execute a query and return one row as dict.
    Opens its own transaction.

    Usage:
        user = query_one("SELECT * FROM users WHERE id = %s", (user_id,))
    """
    with transaction() as cur:
        cur.execute(sql, params or ())
        return fetch_one(cur)


def query_all(sql: str, params: tuple = None) -> List[Dict[str, Any]]:
    """
    Execute a query and return all rows as list of dicts.
    Opens its own transaction.
    """
    with transaction() as cur:
        cur.execute(sql, params or ())
        return fetch_all(cur)


def query_scalar(sql: str, params: tuple = None) -> Any:
    """Execute a query and return the first column of the first row."""
    with transaction() as cur:
        cur.execute(sql, params or ())
        return fetch_scalar(cur)


def execute(sql: str, params: tuple = None) -> int:
    """
    Execute a statement and return affected row count.
    Opens its own transaction.
    """
    with transaction() as cur:
        cur.execute(sql, params or ())
        return cur.rowcount


def execute_returning(sql: str, params: tuple = None) -> Optional[Dict[str, Any]]:
    """
    Execute an INSERT/UPDATE with RETURNING clause.
    Opens its own transaction.

    Usage:
        job = execute_returning(
            "UPDATE enhancement_jobs SET status = 'failed' WHERE id = %s RETURNING *",
            (job_id,)
        )
    """
    with transaction() as cur:
        cur.execute(sql, params or ())
        return fetch_one(cur)


# ─────────────────────────────────────────────────────────────
# Schema-aware Table References
# ─────────────────────────────────────────────────────────────
class Tables:
    """Table name constants with schema prefixes."""
    USERS = f"{_APP_SCHEMA}.users"
    CREDIT_LEDGER = f"{_APP_SCHEMA}.credit_ledger"
    ENHANCEMENT_JOBS = f"{_APP_SCHEMA}.enhancement_jobs"
    PURCHASES = f"{_APP_SCHEMA}.purchases"
    APP_SETTINGS = f"{_APP_SCHEMA}.app_settings"


# ─────────────────────────────────────────────────────────────
# Utility Functions
# ─────────────────────────────────────────────────────────────
def verify_connection() -> bool:
    """
    Test database connectivity.
    Returns True if connected, False otherwise.
    Does not raise exceptions.
    """
    if not USE_DB:
        return False
    try:
        result = query_one("SELECT 1 AS ok")
        return result is not None and result.get("ok") == 1
    except DatabaseError:
        return False


def init_db() -> bool:
    """
    Initialize database connection and verify connectivity.
    Called at app startup.
    Returns True if database is ready.

    Raises:
        DatabaseConnectionError: If database is configured but connection fails
    """
    if not _HAS_DATABASE:
        print("[DB] DATABASE_URL not set - running without database")
        return False

    try:
        if verify_connection():
            print("[DB] Database connection verified successfully")
            ensure_schema()
            return True
        raise DatabaseConnectionError("Connection test query failed")
    except DatabaseError as e:
        print(f"[DB] ERROR: {e}")
        raise


_SCHEMA_STATEMENTS = [
    f"""
    CREATE TABLE IF NOT EXISTS {Tables.USERS} (
        id TEXT PRIMARY KEY,
        email TEXT,
        first_name TEXT,
        last_name TEXT,
        credit_balance INTEGER NOT NULL DEFAULT 0,
        plan TEXT NOT NULL DEFAULT 'free',
        preferences JSONB NOT NULL DEFAULT '{{}}'::jsonb,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        deleted_at TIMESTAMPTZ,
        CONSTRAINT users_credit_balance_nonnegative CHECK (credit_balance >= 0)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {Tables.CREDIT_LEDGER} (
        id BIGSERIAL PRIMARY KEY,
        user_id TEXT NOT NULL,
        entry_type TEXT NOT NULL,
        amount INTEGER NOT NULL,
        ref_type TEXT,
        ref_id TEXT,
        balance_after INTEGER,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    f"""
    CREATE INDEX IF NOT EXISTS idx_credit_ledger_user_created
    ON {Tables.CREDIT_LEDGER} (user_id, created_at DESC)
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {Tables.ENHANCEMENT_JOBS} (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'processing',
        original_image_url TEXT NOT NULL,
        prompt TEXT,
        preset TEXT,
        enhanced_image_url TEXT,
        error_message TEXT,
        credits_used INTEGER NOT NULL DEFAULT 1,
        provider TEXT,
        model TEXT,
        is_multi_turn BOOLEAN NOT NULL DEFAULT FALSE,
        processing_ms INTEGER,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        completed_at TIMESTAMPTZ,
        CONSTRAINT enhancement_jobs_status_check
            CHECK (status IN ('processing', 'completed', 'failed'))
    )
    """,
    f"""
    CREATE INDEX IF NOT EXISTS idx_enhancement_jobs_user_created
    ON {Tables.ENHANCEMENT_JOBS} (user_id, created_at DESC)
    """,
    f"""
    CREATE INDEX IF NOT EXISTS idx_enhancement_jobs_created
    ON {Tables.ENHANCEMENT_JOBS} (created_at)
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {Tables.PURCHASES} (
        id BIGSERIAL PRIMARY KEY,
        user_id TEXT NOT NULL,
        plan_type TEXT,
        credits_purchased INTEGER NOT NULL,
        amount_cents INTEGER NOT NULL DEFAULT 0,
        currency TEXT NOT NULL DEFAULT 'usd',
        stripe_session_id TEXT NOT NULL,
        customer_email TEXT,
        purchased_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    # Webhook idempotency key
    f"""
    CREATE UNIQUE INDEX IF NOT EXISTS uq_purchases_stripe_session
    ON {Tables.PURCHASES} (stripe_session_id)
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {Tables.APP_SETTINGS} (
        key TEXT PRIMARY KEY,
        value JSONB NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
]


def ensure_schema() -> None:
    """
    Ensure the application tables and indexes exist.
    Called at app startup after connection is verified.
    """
    try:
        with transaction() as cur:
            for statement in _SCHEMA_STATEMENTS:
                cur.execute(statement)
        print(f"[DB] Schema ensured ({len(_SCHEMA_STATEMENTS)} statements)")
    except DatabaseError as e:
        # Log but don't fail startup - DB user may lack DDL permissions on a managed schema
        print(f"[DB] Warning: Could not ensure schema: {e}")


__all__ = [
    "dict_row",
    "USE_DB",
    "DatabaseError",
    "DatabaseNotConfiguredError",
    "DatabaseConnectionError",
    "DatabaseQueryError",
    "DatabaseIntegrityError",
    "transaction",
    "fetch_one",
    "fetch_all",
    "fetch_scalar",
    "query_one",
    "query_all",
    "query_scalar",
    "execute",
    "execute_returning",
    "Tables",
    "verify_connection",
    "init_db",
    "ensure_schema",
]
