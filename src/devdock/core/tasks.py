"""Background operations with typed status and cancellation."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

import structlog

from devdock.core.events import EventBus
from devdock.db.history import OperationHistory
from devdock.errors import ConflictError, DevdockError, NotFoundError
from devdock.models.events import DashboardEvent, EventType
from devdock.models.operation import Operation, OperationKind, OperationStatus

logger = structlog.get_logger(__name__)

type OperationFn = Callable[["OperationContext"], Awaitable[str | None]]


class OperationContext:
    """Handle given to a running operation for progress reporting."""

    def __init__(self, manager: TaskManager, operation: Operation) -> None:
        self._manager = manager
        self.operation = operation

    @property
    def project_id(self) -> str:
        return self.operation.project_id

    async def step(self, name: str) -> None:
        await self._manager.emit(self.operation, EventType.OPERATION_STEP, {"step": name})

    async def log(self, message: str, **extra: Any) -> None:
        await self._manager.emit(
            self.operation, EventType.OPERATION_LOG, {"message": message, **extra}
        )

    def output(self, stream: str, line: str) -> None:
        """Forward one line of command output to subscribers only."""
        self._manager.bus.command_output(
            self.operation.project_id, stream, line, operation_id=self.operation.id
        )


class TaskManager:
    """Run at most one operation per project and record every transition.

    The operation history is the source of truth for progress; the event bus
    only observes transitions. Finished operations are only kept in memory when
    there is no history to read them back from.
    """

    def __init__(self, bus: EventBus, history: OperationHistory | None = None) -> None:
        self.bus = bus
        self._history = history
        self._operations: dict[str, Operation] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._active: dict[str, str] = {}

    def active_for(self, project_id: str) -> Operation | None:
        operation_id = self._active.get(project_id)
        return self._operations.get(operation_id) if operation_id else None

    async def submit(
        self, project_id: str, kind: OperationKind, fn: OperationFn
    ) -> Operation:
        running = self.active_for(project_id)
        if running is not None:
            msg = f"Operation {running.kind.value} already in progress for project"
            raise ConflictError(msg, operation_id=running.id)

        operation = Operation(project_id=project_id, kind=kind)
        self._operations[operation.id] = operation
        self._active[project_id] = operation.id
        await self._persist(operation)
        self._tasks[operation.id] = asyncio.create_task(
            self._run(operation, fn), name=f"devdock-{kind.value}-{operation.id}"
        )
        logger.info("operation_submitted", operation=operation.id, kind=kind.value)
        return operation.model_copy()

    async def get(self, operation_id: str) -> Operation:
        operation = self._operations.get(operation_id)
        if operation is not None:
            return operation.model_copy()
        if self._history is not None:
            stored = await self._history.get_operation(operation_id)
            if stored is not None:
                return stored
        msg = f"Operation not found: {operation_id}"
        raise NotFoundError(msg)

    async def list(self, project_id: str | None = None) -> list[Operation]:
        if self._history is not None:
            stored = {op.id: op for op in await self._history.list_operations(project_id=project_id)}
        else:
            stored = {}
        for operation in self._operations.values():
            if project_id is None or operation.project_id == project_id:
                stored[operation.id] = operation.model_copy()
        return sorted(stored.values(), key=lambda op: op.created_at)

    async def cancel(self, operation_id: str) -> Operation:
        operation = self._operations.get(operation_id)
        if operation is None:
            return await self.get(operation_id)
        task = self._tasks.get(operation_id)
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])
        # A task cancelled before its first step never reaches its own cleanup.
        self._tasks.pop(operation_id, None)
        if not operation.status.finished:
            await self._finish(operation, OperationStatus.CANCELLED, error="cancelled")
        return operation.model_copy()

    async def wait(self, operation_id: str) -> Operation:
        task = self._tasks.get(operation_id)
        if task is not None:
            await asyncio.wait([task])
        return await self.get(operation_id)

    async def shutdown(self) -> None:
        for operation_id, task in list(self._tasks.items()):
            if not task.done():
                await self.cancel(operation_id)

    async def emit(
        self, operation: Operation, event_type: EventType, payload: dict[str, Any]
    ) -> None:
        event = DashboardEvent(
            type=event_type,
            project_id=operation.project_id,
            operation_id=operation.id,
            payload=payload,
        )
        if self._history is not None:
            await self._history.append_event(event)
        self.bus.publish(event)

    async def _run(self, operation: Operation, fn: OperationFn) -> None:
        operation.status = OperationStatus.RUNNING
        operation.started_at = datetime.now(UTC)
        await self._persist(operation)
        await self.emit(operation, EventType.OPERATION_STEP, {"step": "started"})

        context = OperationContext(self, operation)
        try:
            message = await fn(context)
        except asyncio.CancelledError:
            await self._finish(operation, OperationStatus.CANCELLED, error="cancelled")
            raise
        except DevdockError as exc:
            logger.warning("operation_failed", operation=operation.id, error=exc.message)
            await self._finish(operation, OperationStatus.FAILED, error=exc.message)
        except Exception as exc:
            logger.exception("operation_crashed", operation=operation.id)
            await self._finish(operation, OperationStatus.FAILED, error=str(exc))
        else:
            await self._finish(operation, OperationStatus.SUCCEEDED, message=message)
        finally:
            self._tasks.pop(operation.id, None)

    async def _finish(
        self,
        operation: Operation,
        status: OperationStatus,
        *,
        message: str | None = None,
        error: str | None = None,
    ) -> None:
        if operation.status.finished:
            return
        operation.status = status
        operation.message = message
        operation.error = error
        operation.finished_at = datetime.now(UTC)
        if self._active.get(operation.project_id) == operation.id:
            del self._active[operation.project_id]
        await self._persist(operation)
        await self.emit(
            operation,
            EventType.OPERATION_COMPLETE,
            {"status": status.value, "message": message, "error": error},
        )
        if self._history is not None:
            self._operations.pop(operation.id, None)
        logger.info("operation_finished", operation=operation.id, status=status.value)

    async def _persist(self, operation: Operation) -> None:
        if self._history is None:
            return
        await self._history.upsert_operation(operation)
