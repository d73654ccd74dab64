"""Push-channel events broadcast to dashboard clients."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Event categories pushed over the WebSocket channel."""

    PROJECT_UPDATE = "project_update"
    COMMAND_OUTPUT = "command_output"
    OPERATION_LOG = "operation_log"
    OPERATION_STEP = "operation_step"
    OPERATION_COMPLETE = "operation_complete"


class DashboardEvent(BaseModel):
    """One event observed by the push channel and the operation history."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    type: EventType
    project_id: str | None = None
    operation_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
