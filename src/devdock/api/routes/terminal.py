"""Terminal session routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, status

from devdock.api.deps import get_project_manager, get_terminal_manager
from devdock.api.routes.common import ok
from devdock.api.schemas.terminal import CreateTerminalRequest, TerminalExecRequest
from devdock.core.project_manager import ProjectManager
from devdock.core.terminal import TerminalManager

router = APIRouter(prefix="/api/v1/terminal", tags=["terminal"])


@router.post("/create", status_code=status.HTTP_201_CREATED)
async def create_session(
    request: CreateTerminalRequest,
    manager: ProjectManager = Depends(get_project_manager),
    terminals: TerminalManager = Depends(get_terminal_manager),
) -> dict[str, Any]:
    session = await terminals.create(await manager.get(request.project_id))
    return ok(session.as_dict())


@router.post("/{session_id}/exec")
async def exec_command(
    session_id: str,
    request: TerminalExecRequest,
    terminals: TerminalManager = Depends(get_terminal_manager),
) -> dict[str, Any]:
    result = await terminals.exec(session_id, request.command)
    return {"success": result["success"], "data": {"output": result["output"]}}


@router.delete("/{session_id}")
async def close_session(
    session_id: str, terminals: TerminalManager = Depends(get_terminal_manager)
) -> dict[str, Any]:
    terminals.close(session_id)
    return ok()
