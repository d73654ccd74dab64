"""Terminal API schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class CreateTerminalRequest(BaseModel):
    project_id: str


class TerminalExecRequest(BaseModel):
    command: str = Field(min_length=1)
