"""Dependency check API schemas."""

from __future__ import annotations

from pydantic import BaseModel


class InstallCommandRequest(BaseModel):
    """Pick one of the platform's install methods; the first one when omitted."""

    method: str | None = None
