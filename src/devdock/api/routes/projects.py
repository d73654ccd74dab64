"""Project routes."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, Query, status

from devdock.api.deps import get_project_manager
from devdock.api.routes.common import ok
from devdock.api.schemas.projects import (
    CheckPortsRequest,
    CreateProjectRequest,
    EnvUpdateRequest,
    ProjectResponse,
    ProjectsResponse,
    UpdateProjectRequest,
)
from devdock.core.project_manager import CreateProjectInput, ProjectManager

router = APIRouter(prefix="/api/v1/projects", tags=["projects"])


@router.get("", response_model=ProjectsResponse)
async def list_projects(manager: ProjectManager = Depends(get_project_manager)) -> ProjectsResponse:
    return ProjectsResponse(data=await manager.list())


@router.post("", status_code=status.HTTP_201_CREATED, response_model=ProjectResponse)
async def create_project(
    request: CreateProjectRequest,
    manager: ProjectManager = Depends(get_project_manager),
) -> ProjectResponse:
    project, operation = await manager.create(
        CreateProjectInput(
            name=request.name,
            template=request.template,
            config=request.config,
            ports=request.ports,
        )
    )
    return ProjectResponse(data=project, operation=operation.model_dump(mode="json"))


@router.post("/check-ports")
async def check_ports(
    request: CheckPortsRequest,
    manager: ProjectManager = Depends(get_project_manager),
) -> dict[str, Any]:
    conflicts = await manager.check_ports(request.ports, exclude_id=request.exclude_project_id)
    return ok({"conflicts": [asdict(item) for item in conflicts], "available": not conflicts})


@router.post("/discover", response_model=ProjectsResponse)
async def discover_projects(
    manager: ProjectManager = Depends(get_project_manager),
) -> ProjectsResponse:
    return ProjectsResponse(data=await manager.discover())


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: str, manager: ProjectManager = Depends(get_project_manager)
) -> ProjectResponse:
    return ProjectResponse(data=await manager.get(project_id))


@router.put("/{project_id}", response_model=ProjectResponse)
async def update_project(
    project_id: str,
    request: UpdateProjectRequest,
    manager: ProjectManager = Depends(get_project_manager),
) -> ProjectResponse:
    changes: dict[str, Any] = {}
    if "custom_domain" in request.model_fields_set:
        changes["custom_domain"] = request.custom_domain
    project = await manager.update(
        project_id,
        ports=request.ports,
        regenerate_docker=request.regenerate_docker,
        **changes,
    )
    return ProjectResponse(data=project)


@router.delete("/{project_id}")
async def delete_project(
    project_id: str,
    manager: ProjectManager = Depends(get_project_manager),
) -> dict[str, Any]:
    project = await manager.delete(project_id)
    return ok({"id": project.id, "name": project.name}, message="Project deleted")


@router.post("/{project_id}/start", status_code=status.HTTP_202_ACCEPTED)
async def start_project(
    project_id: str, manager: ProjectManager = Depends(get_project_manager)
) -> dict[str, Any]:
    operation = await manager.start(project_id)
    return ok(operation.model_dump(mode="json"))


@router.post("/{project_id}/stop", status_code=status.HTTP_202_ACCEPTED)
async def stop_project(
    project_id: str, manager: ProjectManager = Depends(get_project_manager)
) -> dict[str, Any]:
    operation = await manager.stop(project_id)
    return ok(operation.model_dump(mode="json"))


@router.post("/{project_id}/rebuild", status_code=status.HTTP_202_ACCEPTED)
async def rebuild_project(
    project_id: str, manager: ProjectManager = Depends(get_project_manager)
) -> dict[str, Any]:
    operation = await manager.rebuild(project_id)
    return ok(operation.model_dump(mode="json"))


@router.get("/{project_id}/status")
async def project_status(
    project_id: str, manager: ProjectManager = Depends(get_project_manager)
) -> dict[str, Any]:
    report = await manager.status(project_id)
    return ok(report.as_dict())


@router.get("/{project_id}/logs")
@router.get("/{project_id}/logs/{container}")
async def project_logs(
    project_id: str,
    container: str | None = None,
    lines: int = Query(default=200, ge=1, le=10000),
    manager: ProjectManager = Depends(get_project_manager),
) -> dict[str, Any]:
    logs = await manager.logs(project_id, container, lines=lines)
    return ok({"logs": logs, "container": container or "app"})


@router.get("/{project_id}/env")
async def read_env(
    project_id: str, manager: ProjectManager = Depends(get_project_manager)
) -> dict[str, Any]:
    return ok({"content": await manager.get_env(project_id)})


@router.put("/{project_id}/env")
async def write_env(
    project_id: str,
    request: EnvUpdateRequest,
    manager: ProjectManager = Depends(get_project_manager),
) -> dict[str, Any]:
    await manager.write_env(project_id, request.content)
    return ok(message=".env file updated successfully")
