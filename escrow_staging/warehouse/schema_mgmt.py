"""
Schema management for the staging tables.

Creates the cursor, lock, resource index, revision log, registrar and upload
queue tables.
"""

from .connection import DatabaseConnectionPool

DDL_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS escrow_cursor (
        tld TEXT NOT NULL,
        cursor_type TEXT NOT NULL,
        position TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        PRIMARY KEY (tld, cursor_type)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS deposit_lock (
        lock_name TEXT PRIMARY KEY,
        owner TEXT NOT NULL,
        acquired_at TIMESTAMPTZ NOT NULL,
        expires_at TIMESTAMPTZ NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS resource_index (
        resource_key TEXT PRIMARY KEY,
        kind TEXT NOT NULL,
        tld TEXT,
        shard INTEGER NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS resource_index_shard_idx ON resource_index (shard, resource_key)",
    """
    CREATE TABLE IF NOT EXISTS resource_revision (
        resource_key TEXT NOT NULL REFERENCES resource_index (resource_key),
        commit_time TIMESTAMPTZ NOT NULL,
        deleted BOOLEAN NOT NULL DEFAULT FALSE,
        data JSONB NOT NULL,
        PRIMARY KEY (resource_key, commit_time)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS registrar (
        registrar_id TEXT PRIMARY KEY,
        data JSONB NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS upload_task (
        task_id BIGSERIAL PRIMARY KEY,
        task_type TEXT NOT NULL,
        tld TEXT NOT NULL,
        mode TEXT NOT NULL,
        watermark TIMESTAMPTZ NOT NULL,
        enqueued_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (tld, mode, watermark)
    )
    """,
]

TABLES = [
    "upload_task",
    "registrar",
    "resource_revision",
    "resource_index",
    "deposit_lock",
    "escrow_cursor",
]


class SchemaManager:
    """
    Creates and truncates the staging tables.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    def create_tables(self) -> None:
        """Create every staging table that does not exist yet."""
        with self.pool.transaction() as conn:
            with conn.cursor() as cur:
                for statement in DDL_STATEMENTS:
                    cur.execute(statement)

    def truncate_tables(self) -> None:
        """Remove all rows from the staging tables (tests and local resets)."""
        with self.pool.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(f"TRUNCATE TABLE {', '.join(TABLES)} CASCADE")
