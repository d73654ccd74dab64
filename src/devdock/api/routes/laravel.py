"""Laravel routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from devdock.api.deps import get_laravel_manager
from devdock.api.routes.common import ok
from devdock.api.schemas.laravel import (
    ArtisanRequest,
    CacheClearRequest,
    MigrateRequest,
    QueueStartRequest,
    SupervisorConfigRequest,
)
from devdock.core.laravel import LaravelManager

router = APIRouter(prefix="/api/v1/laravel/{project_id}", tags=["laravel"])


@router.get("/status")
async def laravel_status(
    project_id: str, laravel: LaravelManager = Depends(get_laravel_manager)
) -> dict[str, Any]:
    return ok(await laravel.status(project_id))


@router.post("/artisan")
async def run_artisan(
    project_id: str,
    request: ArtisanRequest,
    laravel: LaravelManager = Depends(get_laravel_manager),
) -> dict[str, Any]:
    return ok(await laravel.artisan(project_id, request.command, request.args))


@router.get("/queue/status")
async def queue_status(
    project_id: str, laravel: LaravelManager = Depends(get_laravel_manager)
) -> dict[str, Any]:
    return ok(await laravel.queue_status(project_id))


@router.post("/queue/start")
async def queue_start(
    project_id: str,
    request: QueueStartRequest,
    laravel: LaravelManager = Depends(get_laravel_manager),
) -> dict[str, Any]:
    return ok(
        await laravel.queue_start(
            project_id, queue=request.queue, timeout=request.timeout, tries=request.tries
        )
    )


@router.post("/queue/stop")
async def queue_stop(
    project_id: str, laravel: LaravelManager = Depends(get_laravel_manager)
) -> dict[str, Any]:
    return ok(await laravel.queue_stop(project_id))


@router.get("/queue/jobs")
async def queue_jobs(
    project_id: str,
    status: str = "all",
    limit: int = Query(default=50, ge=1, le=1000),
    laravel: LaravelManager = Depends(get_laravel_manager),
) -> dict[str, Any]:
    return ok(await laravel.queue_jobs(project_id, status=status, limit=limit))


@router.post("/cache/clear")
async def clear_cache(
    project_id: str,
    request: CacheClearRequest,
    laravel: LaravelManager = Depends(get_laravel_manager),
) -> dict[str, Any]:
    return ok(await laravel.clear_cache(project_id, request.types))


@router.post("/migrate")
async def migrate(
    project_id: str,
    request: MigrateRequest,
    laravel: LaravelManager = Depends(get_laravel_manager),
) -> dict[str, Any]:
    return ok(await laravel.migrate(project_id, fresh=request.fresh, seed=request.seed))


@router.get("/logs")
async def laravel_logs(
    project_id: str,
    type: str = "laravel",
    lines: int = Query(default=100, ge=1, le=10000),
    laravel: LaravelManager = Depends(get_laravel_manager),
) -> dict[str, Any]:
    return ok(await laravel.logs(project_id, kind=type, lines=lines))


@router.get("/schedule/status")
async def schedule_status(
    project_id: str, laravel: LaravelManager = Depends(get_laravel_manager)
) -> dict[str, Any]:
    return ok(await laravel.schedule_status(project_id))


@router.post("/schedule/run")
async def schedule_run(
    project_id: str, laravel: LaravelManager = Depends(get_laravel_manager)
) -> dict[str, Any]:
    return ok(await laravel.schedule_run(project_id))


@router.get("/supervisor/status")
async def supervisor_status(
    project_id: str, laravel: LaravelManager = Depends(get_laravel_manager)
) -> dict[str, Any]:
    return ok(await laravel.supervisor_status(project_id))


@router.get("/supervisor/config")
async def supervisor_config(
    project_id: str, laravel: LaravelManager = Depends(get_laravel_manager)
) -> dict[str, Any]:
    return ok({"config": await laravel.supervisor_config(project_id)})


@router.put("/supervisor/config")
async def save_supervisor_config(
    project_id: str,
    request: SupervisorConfigRequest,
    laravel: LaravelManager = Depends(get_laravel_manager),
) -> dict[str, Any]:
    return ok(await laravel.save_supervisor_config(project_id, request.config))


@router.post("/supervisor/program/{program}/toggle")
async def supervisor_toggle(
    project_id: str, program: str, laravel: LaravelManager = Depends(get_laravel_manager)
) -> dict[str, Any]:
    return ok(await laravel.supervisor_toggle(project_id, program))


@router.post("/supervisor/program/{program}/restart")
async def supervisor_restart(
    project_id: str, program: str, laravel: LaravelManager = Depends(get_laravel_manager)
) -> dict[str, Any]:
    return ok(await laravel.supervisor_restart(project_id, program))


@router.post("/supervisor/restart")
async def supervisor_restart_all(
    project_id: str, laravel: LaravelManager = Depends(get_laravel_manager)
) -> dict[str, Any]:
    return ok(await laravel.supervisor_restart_all(project_id))
