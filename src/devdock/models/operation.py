"""Background operation records."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field


class OperationStatus(str, Enum):
    """Typed status of a background operation."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def finished(self) -> bool:
        return self in {
            OperationStatus.SUCCEEDED,
            OperationStatus.FAILED,
            OperationStatus.CANCELLED,
        }


class OperationKind(str, Enum):
    CREATE = "create"
    START = "start"
    STOP = "stop"
    REBUILD = "rebuild"


class Operation(BaseModel):
    """A start/stop/create/rebuild request running in the background."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    project_id: str
    kind: OperationKind
    status: OperationStatus = OperationStatus.PENDING
    message: str | None = None
    error: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    finished_at: datetime | None = None
