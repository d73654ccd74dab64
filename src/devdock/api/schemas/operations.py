"""Operation API schemas."""

from __future__ import annotations

from pydantic import BaseModel

from devdock.models.events import DashboardEvent
from devdock.models.operation import Operation


class OperationResponse(BaseModel):
    success: bool = True
    data: Operation


class OperationsResponse(BaseModel):
    """Collection of operations, oldest first."""

    success: bool = True
    data: list[Operation]


class EventsResponse(BaseModel):
    success: bool = True
    data: list[DashboardEvent]
