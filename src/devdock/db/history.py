"""Async SQLite log of background operations and their events."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path

import aiosqlite

from devdock.db.migrations import apply_migrations
from devdock.models.events import DashboardEvent, EventType
from devdock.models.operation import Operation, OperationKind, OperationStatus


class OperationHistory:
    """Durable record of operations, independent of the push channel."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(self._db_path)
        conn.row_factory = aiosqlite.Row
        try:
            await apply_migrations(conn)
            yield conn
        finally:
            await conn.close()

    async def upsert_operation(self, operation: Operation) -> None:
        async with self.connection() as conn:
            await conn.execute(
                """
                INSERT INTO operations(
                    id,
                    project_id,
                    kind,
                    status,
                    message,
                    error,
                    created_at,
                    started_at,
                    finished_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    status=excluded.status,
                    message=excluded.message,
                    error=excluded.error,
                    started_at=excluded.started_at,
                    finished_at=excluded.finished_at
                """,
                (
                    operation.id,
                    operation.project_id,
                    operation.kind.value,
                    operation.status.value,
                    operation.message,
                    operation.error,
                    operation.created_at.isoformat(),
                    _iso(operation.started_at),
                    _iso(operation.finished_at),
                ),
            )
            await conn.commit()

    async def get_operation(self, operation_id: str) -> Operation | None:
        async with self.connection() as conn:
            cursor = await conn.execute("SELECT * FROM operations WHERE id = ?", (operation_id,))
            row = await cursor.fetchone()
        if row is None:
            return None
        return self._operation_from_row(row)

    async def list_operations(self, *, project_id: str | None = None) -> list[Operation]:
        query = "SELECT * FROM operations"
        params: tuple[str, ...] = ()
        if project_id:
            query += " WHERE project_id = ?"
            params = (project_id,)
        query += " ORDER BY created_at ASC"
        async with self.connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
        return [self._operation_from_row(row) for row in rows]

    async def append_event(self, event: DashboardEvent) -> None:
        async with self.connection() as conn:
            await conn.execute(
                """
                INSERT INTO operation_events(id, type, project_id, operation_id, payload, timestamp)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    event.id,
                    event.type.value,
                    event.project_id,
                    event.operation_id,
                    json.dumps(event.payload, default=str),
                    event.timestamp.isoformat(),
                ),
            )
            await conn.commit()

    async def list_events(
        self,
        *,
        project_id: str | None = None,
        operation_id: str | None = None,
        event_type: EventType | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[DashboardEvent]:
        query = "SELECT * FROM operation_events WHERE 1 = 1"
        params: list[str] = []

        if project_id:
            query += " AND project_id = ?"
            params.append(project_id)

        if operation_id:
            query += " AND operation_id = ?"
            params.append(operation_id)

        if event_type:
            query += " AND type = ?"
            params.append(event_type.value)

        if since:
            query += " AND timestamp >= ?"
            params.append(since.isoformat())

        if until:
            query += " AND timestamp <= ?"
            params.append(until.isoformat())

        query += " ORDER BY timestamp ASC"

        async with self.connection() as conn:
            cursor = await conn.execute(query, tuple(params))
            rows = await cursor.fetchall()

        return [self._event_from_row(row) for row in rows]

    @staticmethod
    def _operation_from_row(row: aiosqlite.Row) -> Operation:
        return Operation(
            id=str(row["id"]),
            project_id=str(row["project_id"]),
            kind=OperationKind(str(row["kind"])),
            status=OperationStatus(str(row["status"])),
            message=row["message"],
            error=row["error"],
            created_at=datetime.fromisoformat(str(row["created_at"])),
            started_at=_parse(row["started_at"]),
            finished_at=_parse(row["finished_at"]),
        )

    @staticmethod
    def _event_from_row(row: aiosqlite.Row) -> DashboardEvent:
        return DashboardEvent(
            id=str(row["id"]),
            type=EventType(str(row["type"])),
            project_id=row["project_id"],
            operation_id=row["operation_id"],
            payload=json.loads(str(row["payload"])),
            timestamp=datetime.fromisoformat(str(row["timestamp"])),
        )


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None
