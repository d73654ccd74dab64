"""SQLite migrations for the operation history."""

from __future__ import annotations

import aiosqlite

SCHEMA_VERSION = 1


async def apply_migrations(conn: aiosqlite.Connection) -> None:
    """Create the history schema if missing and set schema version."""
    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version INTEGER PRIMARY KEY
        )
        """
    )

    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS operations (
            id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL,
            kind TEXT NOT NULL,
            status TEXT NOT NULL,
            message TEXT,
            error TEXT,
            created_at TEXT NOT NULL,
            started_at TEXT,
            finished_at TEXT
        )
        """
    )

    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS operation_events (
            id TEXT PRIMARY KEY,
            type TEXT NOT NULL,
            project_id TEXT,
            operation_id TEXT,
            payload TEXT NOT NULL,
            timestamp TEXT NOT NULL
        )
        """
    )

    await conn.execute("DELETE FROM schema_migrations")
    await conn.execute("INSERT INTO schema_migrations(version) VALUES (?)", (SCHEMA_VERSION,))
    await conn.commit()
