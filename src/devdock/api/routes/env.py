"""Standalone `.env` routes kept for clients that address them by project id."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from devdock.api.deps import get_project_manager
from devdock.api.routes.common import ok
from devdock.api.schemas.projects import EnvUpdateRequest
from devdock.core.project_manager import ProjectManager

router = APIRouter(prefix="/api/v1/env", tags=["env"])


@router.get("/{project_id}")
async def get_env(
    project_id: str, manager: ProjectManager = Depends(get_project_manager)
) -> dict[str, Any]:
    return ok({"content": await manager.get_env(project_id)})


@router.put("/{project_id}")
async def put_env(
    project_id: str,
    request: EnvUpdateRequest,
    manager: ProjectManager = Depends(get_project_manager),
) -> dict[str, Any]:
    await manager.write_env(project_id, request.content)
    return ok(message=".env file updated successfully")
