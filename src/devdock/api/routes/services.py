"""Service overview and control routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from devdock.api.deps import get_project_manager, get_service_monitor
from devdock.api.routes.common import ok
from devdock.core.project_manager import ProjectManager
from devdock.core.services import ServiceMonitor

router = APIRouter(prefix="/api/v1/services", tags=["services"])


@router.get("/status")
async def all_services(
    manager: ProjectManager = Depends(get_project_manager),
    monitor: ServiceMonitor = Depends(get_service_monitor),
) -> dict[str, Any]:
    return ok(await monitor.overview_all(await manager.list()))


@router.get("/{project_id}")
async def project_services(
    project_id: str,
    manager: ProjectManager = Depends(get_project_manager),
    monitor: ServiceMonitor = Depends(get_service_monitor),
) -> dict[str, Any]:
    return ok(await monitor.overview(await manager.get(project_id)))


@router.get("/{project_id}/health")
async def project_health(
    project_id: str,
    manager: ProjectManager = Depends(get_project_manager),
    monitor: ServiceMonitor = Depends(get_service_monitor),
) -> dict[str, Any]:
    return ok(await monitor.health(await manager.require_laravel(project_id)))


@router.get("/{project_id}/metrics")
async def project_metrics(
    project_id: str,
    manager: ProjectManager = Depends(get_project_manager),
    monitor: ServiceMonitor = Depends(get_service_monitor),
) -> dict[str, Any]:
    return ok(await monitor.metrics(await manager.require_laravel(project_id)))


@router.post("/{project_id}/{service}/{action}")
async def control_service(
    project_id: str,
    service: str,
    action: str,
    manager: ProjectManager = Depends(get_project_manager),
    monitor: ServiceMonitor = Depends(get_service_monitor),
) -> dict[str, Any]:
    project = await manager.require_laravel(project_id)
    return ok(await monitor.control(project, service, action))
