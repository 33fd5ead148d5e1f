"""Schema for the dokan_sync local store.

Holds the SQL schema, schema version, and the table allowlist.
"""

import logging
import sqlite3

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

ALLOWED_TABLES = frozenset(
    {
        "schema_version",
        "cached_entities",
        "pending_mutations",
        "sync_meta",
    }
)


def validate_table_name(table: str) -> str:
    """Validate table name against allowlist to prevent SQL injection."""
    if table not in ALLOWED_TABLES:
        raise ValueError(f"Invalid table name: {table}")
    return table


SCHEMA = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Local mirror of remote records, one row per (record_type, record_id)
CREATE TABLE IF NOT EXISTS cached_entities (
    record_type TEXT NOT NULL,
    record_id TEXT NOT NULL,
    owner_scope TEXT NOT NULL,
    payload TEXT NOT NULL,  -- JSON of the remote row
    cached_at TEXT NOT NULL,
    PRIMARY KEY (record_type, record_id)
);
CREATE INDEX IF NOT EXISTS idx_cached_type_owner ON cached_entities(record_type, owner_scope);

-- Writes made locally that the remote system has not confirmed yet
CREATE TABLE IF NOT EXISTS pending_mutations (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,  -- insertion order, breaks enqueued_at ties
    mutation_id TEXT NOT NULL UNIQUE,
    record_type TEXT NOT NULL,
    record_id TEXT NOT NULL,
    operation TEXT NOT NULL,  -- create, update, delete
    owner_scope TEXT NOT NULL,
    payload TEXT NOT NULL,  -- JSON payload to apply
    enqueued_at TEXT NOT NULL,
    reconciled INTEGER NOT NULL DEFAULT 0,  -- 0 = pending, 1 = confirmed remotely
    -- Retry tracking
    attempt_count INTEGER NOT NULL DEFAULT 0,
    last_error TEXT,
    last_attempt_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_mutations_reconciled ON pending_mutations(reconciled);
CREATE INDEX IF NOT EXISTS idx_mutations_order ON pending_mutations(enqueued_at, seq);
CREATE INDEX IF NOT EXISTS idx_mutations_record ON pending_mutations(record_type, record_id);

-- Sync metadata (last sync time and similar)
CREATE TABLE IF NOT EXISTS sync_meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


def init_db(conn: sqlite3.Connection) -> None:
    """Create tables if needed and record the schema version."""
    conn.executescript(SCHEMA)

    row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
    if row is None:
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
    elif row[0] != SCHEMA_VERSION:
        logger.info(f"Updating local schema version {row[0]} -> {SCHEMA_VERSION}")
        conn.execute("UPDATE schema_version SET version = ?", (SCHEMA_VERSION,))
