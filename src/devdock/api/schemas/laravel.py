"""Laravel and service-control API schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ArtisanRequest(BaseModel):
    command: str = Field(min_length=1)
    args: list[str] = Field(default_factory=list)


class QueueStartRequest(BaseModel):
    """Options passed through to `queue:work`."""

    queue: str = "default"
    timeout: int = Field(default=60, ge=1)
    tries: int = Field(default=3, ge=1)


class CacheClearRequest(BaseModel):
    types: list[str] = Field(default_factory=lambda: ["all"])


class MigrateRequest(BaseModel):
    fresh: bool = False
    seed: bool = False


class SupervisorConfigRequest(BaseModel):
    config: str
