"""Background operation routes."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from devdock.api.deps import get_history, get_task_manager
from devdock.api.schemas.operations import EventsResponse, OperationResponse, OperationsResponse
from devdock.core.tasks import TaskManager
from devdock.db.history import OperationHistory

router = APIRouter(prefix="/api/v1/operations", tags=["operations"])


@router.get("", response_model=OperationsResponse)
async def list_operations(
    project_id: str | None = None,
    tasks: TaskManager = Depends(get_task_manager),
) -> OperationsResponse:
    return OperationsResponse(data=await tasks.list(project_id))


@router.get("/{operation_id}", response_model=OperationResponse)
async def get_operation(
    operation_id: str, tasks: TaskManager = Depends(get_task_manager)
) -> OperationResponse:
    return OperationResponse(data=await tasks.get(operation_id))


@router.post("/{operation_id}/cancel", response_model=OperationResponse)
async def cancel_operation(
    operation_id: str, tasks: TaskManager = Depends(get_task_manager)
) -> OperationResponse:
    return OperationResponse(data=await tasks.cancel(operation_id))


@router.get("/{operation_id}/events", response_model=EventsResponse)
async def list_operation_events(
    operation_id: str,
    since: datetime | None = Query(default=None),
    until: datetime | None = Query(default=None),
    tasks: TaskManager = Depends(get_task_manager),
    history: OperationHistory = Depends(get_history),
) -> EventsResponse:
    await tasks.get(operation_id)
    events = await history.list_events(operation_id=operation_id, since=since, until=until)
    return EventsResponse(data=events)
