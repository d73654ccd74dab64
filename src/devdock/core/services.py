"""Per-project service overview, health and control for Laravel stacks."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Any

import structlog

from devdock.core.docker_manager import DockerManager
from devdock.core.executor import CommandResult
from devdock.core.introspection import (
    AppHealth,
    CacheStatus,
    DatabaseStatus,
    LaravelIntrospector,
    QueueStatus,
    ScheduleStatus,
    health_score,
)
from devdock.core.status import ComposeOutputError, ContainerState, parse_compose_ps
from devdock.errors import ExternalToolError, ValidationError
from devdock.models.project import ProjectRecord, ProjectStatus, Template

logger = structlog.get_logger(__name__)

WATCHED_SERVICES = ("app", "db", "redis", "nginx")
QUEUE_WORK = ["php", "artisan", "queue:work", "--sleep=3", "--tries=3", "--max-time=3600"]
QUEUE_RESTART = ["php", "artisan", "queue:restart"]
SCHEDULE_RUN = ["php", "artisan", "schedule:run"]
CONTROL_TIMEOUT = 30.0


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


def container_flags(containers: list[ContainerState]) -> dict[str, bool]:
    """Running flag per watched compose service; absent services count as down."""
    by_service = {container.service: container.running for container in containers}
    return {service: by_service.get(service, False) for service in WATCHED_SERVICES}


def parse_stats(text: str) -> list[dict[str, str]]:
    rows = []
    for line in text.splitlines():
        parts = [part.strip() for part in line.split("\t")]
        if len(parts) < 3 or parts[0] in {"", "NAME"}:
            continue
        rows.append({"name": parts[0], "cpu": parts[1], "memory": parts[2]})
    return rows


class ServiceMonitor:
    def __init__(
        self,
        docker: DockerManager,
        introspector: LaravelIntrospector,
        *,
        restart_delay: float = 2.0,
    ) -> None:
        self._docker = docker
        self._introspector = introspector
        self._restart_delay = restart_delay

    async def containers(self, project: ProjectRecord) -> list[ContainerState]:
        result = await self._docker.ps(project)
        if not result.success:
            raise ExternalToolError(f"Failed to list containers: {result.error_text()}", result)
        try:
            return parse_compose_ps(result.stdout)
        except ComposeOutputError as exc:
            raise ExternalToolError(str(exc), result) from exc

    async def overview(self, project: ProjectRecord) -> dict[str, Any]:
        """Container flags plus queue, scheduler, database, cache and app signals."""
        overview: dict[str, Any] = {"project": project.name, "timestamp": _timestamp()}
        try:
            flags = container_flags(await self.containers(project))
        except ExternalToolError as exc:
            logger.warning("service_overview_failed", project=project.name, error=exc.message)
            flags = dict.fromkeys(WATCHED_SERVICES, False)
            overview["error"] = exc.message
        overview["containers"] = flags

        if flags["app"]:
            queue, schedule, database, cache, app = await asyncio.gather(
                self._introspector.queue(project),
                self._introspector.schedule(project),
                self._introspector.database(project),
                self._introspector.cache(project),
                self._introspector.app_health(project),
            )
        else:
            queue, schedule = QueueStatus(), ScheduleStatus()
            database, cache = DatabaseStatus(), CacheStatus()
            app = AppHealth(port=project.ports.get("app"))

        overview.update(
            queue=queue.as_dict(),
            scheduler=schedule.as_dict(),
            database=database.as_dict(),
            cache=cache.as_dict(),
            laravel=app.as_dict(),
            health=health_score(flags, app, database, cache),
        )
        return overview

    async def overview_all(self, projects: list[ProjectRecord]) -> dict[str, dict[str, Any]]:
        watched = [
            project
            for project in projects
            if project.template is Template.LARAVEL and project.status is ProjectStatus.RUNNING
        ]
        overviews = await asyncio.gather(*(self.overview(project) for project in watched))
        return {project.id: item for project, item in zip(watched, overviews, strict=True)}

    async def health(self, project: ProjectRecord) -> dict[str, Any]:
        overview = await self.overview(project)
        queue, database = overview["queue"], overview["database"]
        cache, laravel = overview["cache"], overview["laravel"]
        return {
            "overall": overview["health"],
            "services": {
                "containers": overview["containers"],
                "queue": {
                    "status": "running" if queue["enabled"] else "stopped",
                    "healthy": queue["healthy"],
                },
                "database": {
                    "status": "connected" if database["connected"] else "disconnected",
                    "healthy": database["healthy"],
                },
                "cache": {"status": cache["driver"], "healthy": cache["healthy"]},
                "laravel": {
                    "status": "responding" if laravel["responding"] else "not responding",
                    "healthy": laravel["healthy"],
                },
            },
            "timestamp": overview["timestamp"],
        }

    async def metrics(self, project: ProjectRecord) -> dict[str, Any]:
        names = [container.name for container in await self.containers(project)]
        stats: list[dict[str, str]] = []
        if names:
            result = await self._docker.stats(names)
            if not result.success:
                raise ExternalToolError(f"Failed to read container stats: {result.error_text()}", result)
            stats = parse_stats(result.stdout)
        queue = await self._introspector.queue(project)
        return {
            "containers": stats,
            "queue": {"workers": queue.workers, "jobs": queue.as_dict()["jobs"]},
            "timestamp": _timestamp(),
        }

    async def control(self, project: ProjectRecord, service: str, action: str) -> dict[str, Any]:
        """Start, stop or restart queue workers, or run the scheduler once."""
        if service == "queue":
            if action not in {"start", "stop", "restart"}:
                msg = f"Unknown queue action: {action}"
                raise ValidationError(msg)
            if action in {"stop", "restart"}:
                result = await self._exec(project, QUEUE_RESTART)
            if action == "restart":
                await asyncio.sleep(self._restart_delay)
            if action in {"start", "restart"}:
                result = await self._exec(project, QUEUE_WORK, detach=True)
        elif service == "scheduler":
            if action != "run":
                msg = f"Unknown scheduler action: {action}"
                raise ValidationError(msg)
            result = await self._exec(project, SCHEDULE_RUN)
        else:
            msg = f"Unknown service: {service}"
            raise ValidationError(msg)

        logger.info("service_control", project=project.name, service=service, action=action)
        return {
            "service": service,
            "action": action,
            "output": result.stdout,
            "error": result.stderr or None,
            "timestamp": _timestamp(),
        }

    async def _exec(
        self, project: ProjectRecord, command: list[str], *, detach: bool = False
    ) -> CommandResult:
        result = await self._docker.exec(
            project, "app", command, detach=detach, timeout=CONTROL_TIMEOUT
        )
        if not result.success:
            raise ExternalToolError(f"{' '.join(command)} failed: {result.error_text()}", result)
        return result
