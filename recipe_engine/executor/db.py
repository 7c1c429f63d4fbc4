"""Database layer for the recipe executor.

Supports two backends:
- PostgreSQL (production, set RECIPE_DATABASE_URL)
- SQLite (local development and tests, default)

Uses raw SQL via psycopg2 (Postgres) or sqlite3 (SQLite).
No ORM. Statements are written with %s placeholders and adapted
to ? for SQLite.

Thread-safety: Postgres uses a ThreadedConnectionPool. SQLite uses
per-call connections with check_same_thread=False, so each execution
worker thread gets its own connection.
"""

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)

# Database URL: postgres://... for Postgres, or empty for SQLite
DATABASE_URL = os.environ.get("RECIPE_DATABASE_URL", "")

# SQLite default path
SQLITE_PATH = Path(
    os.environ.get("RECIPE_SQLITE_PATH") or Path(__file__).parent / "recipe_engine.db"
)


def _json_dumps(data: Any) -> Optional[str]:
    """Serialize data to JSON string for storage."""
    if data is None:
        return None
    return json.dumps(data, ensure_ascii=False, default=str)


def _json_loads(text: Any) -> Any:
    """Deserialize JSON string from storage."""
    if text is None or text == "":
        return None
    if isinstance(text, (dict, list)):
        return text  # Already parsed (Postgres JSONB)
    return json.loads(text)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _normalize_timestamps(row: dict) -> dict:
    """Convert datetime objects to ISO strings (Postgres returns datetimes)."""
    for key, val in row.items():
        if isinstance(val, datetime):
            row[key] = val.isoformat()
    return row


class Database:
    """Connection factory plus a small `execute` helper.

    Args:
        url: postgres://... DSN, or empty to use SQLite.
        sqlite_path: SQLite file used when url is empty.
    """

    def __init__(self, url: str = DATABASE_URL, sqlite_path: Union[str, Path, None] = None):
        self.url = url or ""
        self.sqlite_path = Path(sqlite_path) if sqlite_path else SQLITE_PATH
        self._pg_pool = None
        self._initialized = False

    @property
    def is_postgres(self) -> bool:
        return self.url.startswith("postgres")

    def _get_pg_pool(self):
        """Get or create the Postgres connection pool (lazy)."""
        if self._pg_pool is None:
            import psycopg2.pool
            self._pg_pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=1,
                maxconn=5,
                dsn=self.url,
            )
            logger.info("PostgreSQL connection pool initialized (1-5 connections)")
        return self._pg_pool

    @contextmanager
    def get_connection(self):
        """Get a database connection (Postgres or SQLite).

        Usage:
            with db.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(...)
                conn.commit()
        """
        if self.is_postgres:
            pool = self._get_pg_pool()
            conn = pool.getconn()
            try:
                yield conn
            finally:
                pool.putconn(conn)
        else:
            conn = sqlite3.connect(str(self.sqlite_path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA foreign_keys=ON")
            try:
                yield conn
            finally:
                conn.close()

    def execute(self, sql: str, params: tuple = (), fetch: str = "none") -> Any:
        """Execute a SQL statement.

        Args:
            sql: SQL statement with %s placeholders
            params: Parameters tuple
            fetch: "none", "one", "all"

        Returns:
            Affected row count for "none", dict for "one", list[dict] for "all"
        """
        adapted_sql = sql if self.is_postgres else sql.replace("%s", "?")

        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(adapted_sql, params)

            if fetch == "one":
                row = cursor.fetchone()
                if row is None:
                    return None
                if self.is_postgres:
                    columns = [desc[0] for desc in cursor.description]
                    return _normalize_timestamps(dict(zip(columns, row)))
                return dict(row)
            elif fetch == "all":
                rows = cursor.fetchall()
                if self.is_postgres:
                    columns = [desc[0] for desc in cursor.description]
                    return [_normalize_timestamps(dict(zip(columns, r))) for r in rows]
                return [dict(r) for r in rows]

            conn.commit()
            return cursor.rowcount

    def init_db(self) -> None:
        """Create tables if they don't exist."""
        if self._initialized:
            return

        ddl = _POSTGRES_DDL if self.is_postgres else _SQLITE_DDL
        with self.get_connection() as conn:
            cursor = conn.cursor()
            if self.is_postgres:
                cursor.execute(ddl)
            else:
                cursor.executescript(ddl)
            conn.commit()

        self._initialized = True
        backend = "PostgreSQL" if self.is_postgres else f"SQLite ({self.sqlite_path})"
        logger.info(f"Recipe database initialized: {backend}")


_POSTGRES_DDL = """
CREATE TABLE IF NOT EXISTS recipes (
    id VARCHAR(64) PRIMARY KEY,
    preset_key VARCHAR(100),
    name VARCHAR(200) NOT NULL,
    workspace_id VARCHAR(64),
    definition JSONB NOT NULL,
    created_at TIMESTAMP DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS executions (
    id VARCHAR(64) PRIMARY KEY,
    recipe_id VARCHAR(64) NOT NULL REFERENCES recipes(id),
    user_id VARCHAR(64),
    workspace_id VARCHAR(64),
    notify_chat_id VARCHAR(64),
    status VARCHAR(20) NOT NULL DEFAULT 'pending',
    current_step INTEGER DEFAULT 0,
    progress INTEGER DEFAULT 0,
    input_data JSONB DEFAULT '{}',
    total_cost_cents INTEGER DEFAULT 0,
    cost_breakdown JSONB DEFAULT '[]',
    confidence_score INTEGER,
    warning_flag VARCHAR(50),
    preview_hash VARCHAR(32),
    error_message TEXT,
    created_at TIMESTAMP DEFAULT NOW(),
    started_at TIMESTAMP,
    finished_at TIMESTAMP
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_executions_preview
    ON executions(preview_hash);

CREATE TABLE IF NOT EXISTS step_results (
    execution_id VARCHAR(64) NOT NULL REFERENCES executions(id),
    step_index INTEGER NOT NULL,
    status VARCHAR(20) NOT NULL DEFAULT 'running',
    input_preview TEXT,
    output_preview TEXT,
    output_full JSONB,
    input_hash VARCHAR(64),
    output_hash VARCHAR(64),
    run_id VARCHAR(64),
    provider_response_id VARCHAR(200),
    error_message TEXT,
    started_at TIMESTAMP,
    finished_at TIMESTAMP,
    PRIMARY KEY (execution_id, step_index)
);

CREATE TABLE IF NOT EXISTS runs (
    id VARCHAR(64) PRIMARY KEY,
    execution_id VARCHAR(64),
    step_index INTEGER,
    type VARCHAR(20) NOT NULL,
    provider VARCHAR(50) NOT NULL,
    model VARCHAR(100) NOT NULL,
    status VARCHAR(20) NOT NULL DEFAULT 'running',
    provider_job_id VARCHAR(200),
    error_message TEXT,
    created_at TIMESTAMP DEFAULT NOW(),
    finished_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS usage_events (
    id SERIAL PRIMARY KEY,
    run_id VARCHAR(64) NOT NULL REFERENCES runs(id),
    provider VARCHAR(50) NOT NULL,
    model VARCHAR(100) NOT NULL,
    units JSONB DEFAULT '{}',
    latency_ms INTEGER DEFAULT 0,
    cost_cents INTEGER DEFAULT 0,
    created_at TIMESTAMP DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_usage_events_run ON usage_events(run_id);

CREATE TABLE IF NOT EXISTS files (
    id VARCHAR(64) PRIMARY KEY,
    run_id VARCHAR(64) REFERENCES runs(id),
    kind VARCHAR(20) NOT NULL,
    mime VARCHAR(100),
    size INTEGER DEFAULT 0,
    storage_key VARCHAR(500) NOT NULL,
    created_at TIMESTAMP DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS publish_integrations (
    workspace_id VARCHAR(64) PRIMARY KEY,
    base_url VARCHAR(500) NOT NULL,
    adapter_type VARCHAR(20) NOT NULL DEFAULT 'jsonapi',
    auth_type VARCHAR(20) NOT NULL DEFAULT 'basic',
    credentials_enc TEXT,
    default_content_type VARCHAR(100) DEFAULT 'article',
    body_format VARCHAR(100) DEFAULT 'basic_html',
    publish_mode VARCHAR(20) DEFAULT 'draft',
    is_enabled BOOLEAN DEFAULT TRUE
);
"""

_SQLITE_DDL = """
CREATE TABLE IF NOT EXISTS recipes (
    id TEXT PRIMARY KEY,
    preset_key TEXT,
    name TEXT NOT NULL,
    workspace_id TEXT,
    definition TEXT NOT NULL,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS executions (
    id TEXT PRIMARY KEY,
    recipe_id TEXT NOT NULL REFERENCES recipes(id),
    user_id TEXT,
    workspace_id TEXT,
    notify_chat_id TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    current_step INTEGER DEFAULT 0,
    progress INTEGER DEFAULT 0,
    input_data TEXT DEFAULT '{}',
    total_cost_cents INTEGER DEFAULT 0,
    cost_breakdown TEXT DEFAULT '[]',
    confidence_score INTEGER,
    warning_flag TEXT,
    preview_hash TEXT UNIQUE,
    error_message TEXT,
    created_at TEXT,
    started_at TEXT,
    finished_at TEXT
);

CREATE TABLE IF NOT EXISTS step_results (
    execution_id TEXT NOT NULL REFERENCES executions(id),
    step_index INTEGER NOT NULL,
    status TEXT NOT NULL DEFAULT 'running',
    input_preview TEXT,
    output_preview TEXT,
    output_full TEXT,
    input_hash TEXT,
    output_hash TEXT,
    run_id TEXT,
    provider_response_id TEXT,
    error_message TEXT,
    started_at TEXT,
    finished_at TEXT,
    PRIMARY KEY (execution_id, step_index)
);

CREATE TABLE IF NOT EXISTS runs (
    id TEXT PRIMARY KEY,
    execution_id TEXT,
    step_index INTEGER,
    type TEXT NOT NULL,
    provider TEXT NOT NULL,
    model TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'running',
    provider_job_id TEXT,
    error_message TEXT,
    created_at TEXT,
    finished_at TEXT
);

CREATE TABLE IF NOT EXISTS usage_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id TEXT NOT NULL REFERENCES runs(id),
    provider TEXT NOT NULL,
    model TEXT NOT NULL,
    units TEXT DEFAULT '{}',
    latency_ms INTEGER DEFAULT 0,
    cost_cents INTEGER DEFAULT 0,
    created_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_usage_events_run ON usage_events(run_id);

CREATE TABLE IF NOT EXISTS files (
    id TEXT PRIMARY KEY,
    run_id TEXT REFERENCES runs(id),
    kind TEXT NOT NULL,
    mime TEXT,
    size INTEGER DEFAULT 0,
    storage_key TEXT NOT NULL,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS publish_integrations (
    workspace_id TEXT PRIMARY KEY,
    base_url TEXT NOT NULL,
    adapter_type TEXT NOT NULL DEFAULT 'jsonapi',
    auth_type TEXT NOT NULL DEFAULT 'basic',
    credentials_enc TEXT,
    default_content_type TEXT DEFAULT 'article',
    body_format TEXT DEFAULT 'basic_html',
    publish_mode TEXT DEFAULT 'draft',
    is_enabled INTEGER DEFAULT 1
);
"""
