"""SQLite database setup and schema management.

The database lives at ``{project_root}/.codevolve/evolution.db``. Each table
keeps the full record as a JSON ``payload`` column plus the handful of
scalar columns needed for filtering, counting and ordering.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

SCHEMA_VERSION = 1

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS analysis_results (
    id            TEXT PRIMARY KEY,
    analysis_type TEXT NOT NULL,
    severity      TEXT NOT NULL,
    analyzed_at   TEXT NOT NULL,
    payload       TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS suggestions (
    id               TEXT PRIMARY KEY,
    analysis_id      TEXT NOT NULL DEFAULT '',
    status           TEXT NOT NULL,
    priority_rank    INTEGER NOT NULL,
    confidence       REAL NOT NULL,
    automation_level TEXT NOT NULL,
    created_at       TEXT NOT NULL,
    seq              INTEGER NOT NULL DEFAULT 0,
    payload          TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS executions (
    id            TEXT PRIMARY KEY,
    suggestion_id TEXT NOT NULL,
    status        TEXT NOT NULL,
    executed_by   TEXT NOT NULL,
    started_at    TEXT NOT NULL,
    completed_at  TEXT,
    payload       TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS feedback (
    id            TEXT PRIMARY KEY,
    suggestion_id TEXT NOT NULL,
    user_id       TEXT NOT NULL,
    action        TEXT NOT NULL,
    rating        INTEGER NOT NULL,
    created_at    TEXT NOT NULL,
    payload       TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS canary_models (
    id         TEXT PRIMARY KEY,
    status     TEXT NOT NULL,
    created_at TEXT NOT NULL,
    payload    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS canary_deployments (
    id         TEXT PRIMARY KEY,
    canary_id  TEXT NOT NULL,
    started_at TEXT NOT NULL,
    payload    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS model_comparisons (
    id         TEXT PRIMARY KEY,
    canary_id  TEXT NOT NULL,
    created_at TEXT NOT NULL,
    payload    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS evolution_settings (
    tenant     TEXT PRIMARY KEY,
    updated_at TEXT NOT NULL,
    payload    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS evolution_events (
    id         TEXT PRIMARY KEY,
    tenant     TEXT NOT NULL,
    severity   TEXT NOT NULL,
    created_at TEXT NOT NULL,
    payload    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS evolution_metrics (
    id         TEXT PRIMARY KEY,
    tenant     TEXT NOT NULL,
    created_at TEXT NOT NULL,
    payload    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS schema_meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_analysis_ts ON analysis_results(analyzed_at);
CREATE INDEX IF NOT EXISTS idx_suggestions_status ON suggestions(status);
CREATE INDEX IF NOT EXISTS idx_suggestions_created ON suggestions(created_at);
CREATE INDEX IF NOT EXISTS idx_executions_suggestion ON executions(suggestion_id);
CREATE INDEX IF NOT EXISTS idx_executions_status ON executions(status, started_at);
CREATE INDEX IF NOT EXISTS idx_feedback_suggestion ON feedback(suggestion_id);
CREATE INDEX IF NOT EXISTS idx_canary_status ON canary_models(status);
CREATE INDEX IF NOT EXISTS idx_comparisons_canary ON model_comparisons(canary_id);
CREATE INDEX IF NOT EXISTS idx_events_tenant ON evolution_events(tenant, created_at);
CREATE INDEX IF NOT EXISTS idx_metrics_tenant ON evolution_metrics(tenant, created_at);
"""


def get_connection(db_path: Path) -> sqlite3.Connection:
    """Open a connection with the pragmas every caller expects."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), timeout=10)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: Path) -> None:
    """Create tables and record the schema version."""
    conn = get_connection(db_path)
    try:
        conn.executescript(SCHEMA_SQL)
        conn.execute(
            "INSERT OR REPLACE INTO schema_meta (key, value) VALUES ('version', ?)",
            (str(SCHEMA_VERSION),),
        )
        conn.commit()
    finally:
        conn.close()
