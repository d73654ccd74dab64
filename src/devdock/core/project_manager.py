"""Project lifecycle management."""

from __future__ import annotations

import asyncio
import re
import shlex
import shutil
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Any

import structlog

from devdock.core.docker_manager import DockerManager
from devdock.core.events import EventBus
from devdock.core.executor import CommandResult
from devdock.core.ports import HostPortProbe, PortAllocator, PortConflict, port_classes, validate_port
from devdock.core.scaffold import ProjectScaffolder
from devdock.core.status import StatusPoller, StatusReport
from devdock.core.tasks import OperationContext, TaskManager
from devdock.db.json_file import write_text_atomic
from devdock.db.projects import ProjectStore
from devdock.errors import ConflictError, ExternalToolError, NotFoundError, ValidationError
from devdock.models.operation import Operation, OperationKind
from devdock.models.project import ProjectConfig, ProjectRecord, ProjectStatus, Template

logger = structlog.get_logger(__name__)

NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
ARTISAN_TIMEOUT = 30.0
SYSTEM_PORT_OWNER = "System/Other Process"

_UNSET: Any = object()


@dataclass(slots=True)
class CreateProjectInput:
    """Input payload for project creation."""

    name: str
    template: Template
    config: ProjectConfig = field(default_factory=ProjectConfig)
    ports: dict[str, int] = field(default_factory=dict)


def validate_name(name: str) -> str:
    if not NAME_PATTERN.fullmatch(name):
        msg = "Project name can only contain letters, numbers, hyphens, and underscores"
        raise ValidationError(msg)
    return name


def detect_template(path: Path) -> Template:
    src = path / "src"
    if (src / "package.json").exists() and not (src / "artisan").exists():
        return Template.NODEJS
    return Template.LARAVEL


class ProjectManager:
    """Create, drive and inspect registered projects.

    Long-running steps (create, start, stop, rebuild) run as background
    operations through `TaskManager`, which allows one at a time per project.
    Synchronous mutations that touch project files (`update` with compose
    regeneration, `write_env`) are refused while an operation is active and
    otherwise run under the store's writer lock.
    """

    def __init__(
        self,
        store: ProjectStore,
        *,
        projects_dir: Path,
        allocator: PortAllocator,
        scaffolder: ProjectScaffolder,
        docker: DockerManager,
        poller: StatusPoller,
        tasks: TaskManager,
        bus: EventBus,
        probe: HostPortProbe | None = None,
    ) -> None:
        self._store = store
        self._projects_dir = projects_dir
        self._allocator = allocator
        self._scaffolder = scaffolder
        self._docker = docker
        self._poller = poller
        self._tasks = tasks
        self._bus = bus
        self._probe = probe

    async def create(self, payload: CreateProjectInput) -> tuple[ProjectRecord, Operation]:
        validate_name(payload.name)
        path = (self._projects_dir / payload.name).resolve()

        async with self._store.transaction() as records:
            if any(record.name == payload.name for record in records):
                msg = "Project name already exists"
                raise ValidationError(msg, name=payload.name)
            if path.exists() and any(path.iterdir()):
                msg = f"Directory already exists and is not empty: {path}"
                raise ConflictError(msg)
            ports = self._allocator.allocate(
                records, payload.template, payload.config.services, payload.ports
            )
            project = ProjectRecord(
                name=payload.name,
                template=payload.template,
                path=path,
                ports=ports,
                config=payload.config,
                status=ProjectStatus.CREATING,
                progress="Initializing",
            )
            records.append(project)

        logger.info("project_registered", project=project.name, ports=project.ports)
        self._broadcast(project)
        operation = await self._tasks.submit(
            project.id, OperationKind.CREATE, partial(self._run_create, project.id)
        )
        return project, operation

    async def list(self) -> list[ProjectRecord]:
        return await self._store.list()

    async def get(self, project_id: str) -> ProjectRecord:
        project = await self._store.get(project_id)
        if project is None:
            msg = f"Project not found: {project_id}"
            raise NotFoundError(msg)
        return project

    async def require_laravel(self, project_id: str) -> ProjectRecord:
        project = await self._store.get(project_id)
        if project is None or project.template is not Template.LARAVEL:
            msg = "Laravel project not found"
            raise NotFoundError(msg, project_id=project_id)
        return project

    async def update(
        self,
        project_id: str,
        *,
        ports: Mapping[str, int] | None = None,
        custom_domain: str | None = _UNSET,
        regenerate_docker: bool = False,
    ) -> ProjectRecord:
        """Change ports or domain; with `regenerate_docker`, rewrite the compose file too."""
        self._ensure_idle(project_id)
        async with self._store.transaction() as records:
            project = next((r for r in records if r.id == project_id), None)
            if project is None:
                msg = f"Project not found: {project_id}"
                raise NotFoundError(msg)

            if ports:
                self._check_port_change(records, project, ports)
                project.ports = {**project.ports, **ports}
            if custom_domain is not _UNSET:
                project.custom_domain = custom_domain
            project.touch()
            if regenerate_docker and ports:
                self._scaffolder.regenerate_compose(project)
            updated = project.model_copy(deep=True)

        self._broadcast(updated)
        return updated

    async def delete(self, project_id: str) -> ProjectRecord:
        project = await self.get(project_id)
        self._ensure_idle(project_id)

        if project.compose_file.exists():
            try:
                await self._docker.down(project)
            except ExternalToolError as exc:
                logger.warning("project_stop_before_delete_failed", project=project.name, error=exc.message)
        if project.path.exists():
            try:
                await asyncio.to_thread(shutil.rmtree, project.path)
            except OSError as exc:
                logger.warning("project_directory_not_removed", project=project.name, error=str(exc))

        deleted = await self._store.delete(project_id)
        self._bus.project_update(project_id, {"id": project_id, "deleted": True})
        return deleted

    async def start(self, project_id: str) -> Operation:
        await self.get(project_id)
        return await self._tasks.submit(
            project_id, OperationKind.START, partial(self._run_start, project_id)
        )

    async def stop(self, project_id: str) -> Operation:
        await self.get(project_id)
        return await self._tasks.submit(
            project_id, OperationKind.STOP, partial(self._run_stop, project_id)
        )

    async def rebuild(self, project_id: str) -> Operation:
        await self.get(project_id)
        return await self._tasks.submit(
            project_id, OperationKind.REBUILD, partial(self._run_rebuild, project_id)
        )

    async def status(self, project_id: str) -> StatusReport:
        await self.get(project_id)
        return await self._poller.refresh(project_id)

    async def check_ports(
        self, ports: Mapping[str, int], *, exclude_id: str | None = None
    ) -> list[PortConflict]:
        """Report registry conflicts plus host processes found by `lsof`."""
        for port in ports.values():
            validate_port(port)
        conflicts = self._allocator.conflicts(await self._store.list(), ports, exclude_id=exclude_id)
        if self._probe is not None:
            for service, port in ports.items():
                if await self._probe.in_use(port):
                    conflicts.append(PortConflict(service, port, SYSTEM_PORT_OWNER))
        return conflicts

    async def get_env(self, project_id: str) -> str:
        project = await self.get(project_id)
        try:
            return project.env_file.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            msg = ".env file not found"
            raise NotFoundError(msg, project_id=project_id) from exc

    async def write_env(self, project_id: str, content: str) -> ProjectRecord:
        self._ensure_idle(project_id)
        async with self._store.transaction() as records:
            project = next((r for r in records if r.id == project_id), None)
            if project is None:
                msg = f"Project not found: {project_id}"
                raise NotFoundError(msg)
            await asyncio.to_thread(write_text_atomic, project.env_file, content)
            project.touch()
            updated = project.model_copy(deep=True)
        logger.info("project_env_updated", project=updated.name)
        return updated

    async def logs(self, project_id: str, container: str | None = None, *, lines: int = 200) -> str:
        project = await self.get(project_id)
        return await self._docker.container_logs(f"{project.name}_{container or 'app'}", lines=lines)

    async def artisan(
        self, project_id: str, command: str, args: Sequence[str] = ()
    ) -> CommandResult:
        project = await self.require_laravel(project_id)
        argv = ["php", "artisan", *shlex.split(command), *args]
        logger.info("artisan_command", project=project.name, command=" ".join(argv))
        result = await self._docker.exec(project, "app", argv, timeout=ARTISAN_TIMEOUT)
        await self._store.update(project_id, ProjectRecord.touch)
        if not result.success:
            raise ExternalToolError(f"Artisan command failed: {result.error_text()}", result)
        return result

    async def discover(self) -> list[ProjectRecord]:
        """Register project directories that hold a compose file but no record."""
        if not self._projects_dir.is_dir():
            return []
        candidates = sorted(
            path.resolve()
            for path in self._projects_dir.iterdir()
            if path.is_dir() and (path / "docker-compose.yml").exists()
        )

        discovered: list[ProjectRecord] = []
        async with self._store.transaction() as records:
            known = {record.name for record in records}
            for path in candidates:
                if path.name in known or not NAME_PATTERN.fullmatch(path.name):
                    continue
                template = detect_template(path)
                project = ProjectRecord(
                    name=path.name,
                    template=template,
                    path=path,
                    ports=self._allocator.allocate(records, template, []),
                    status=ProjectStatus.STOPPED,
                    discovered=True,
                )
                records.append(project)
                discovered.append(project.model_copy(deep=True))

        for project in discovered:
            logger.info("project_discovered", project=project.name, template=project.template.value)
            await self._poller.refresh(project.id)
        return [await self.get(project.id) for project in discovered]

    async def _run_create(self, project_id: str, ctx: OperationContext) -> str:
        async def progress(message: str) -> None:
            await self._set(project_id, progress=message)
            await ctx.step(message)

        async def scaffold(project: ProjectRecord) -> None:
            await self._scaffolder.scaffold(project, on_progress=progress, on_output=ctx.output)

        await self._transition(project_id, ProjectStatus.CREATING, scaffold, ProjectStatus.READY)
        return "Project created"

    async def _run_start(self, project_id: str, ctx: OperationContext) -> str:
        async def start(project: ProjectRecord) -> None:
            await ctx.step("Starting containers")
            await self._docker.start(project, on_output=ctx.output)

        await self._transition(project_id, ProjectStatus.STARTING, start, ProjectStatus.RUNNING)
        return "Project started"

    async def _run_stop(self, project_id: str, ctx: OperationContext) -> str:
        async def stop(project: ProjectRecord) -> None:
            await ctx.step("Stopping containers")
            await self._docker.down(project, on_output=ctx.output)

        await self._transition(project_id, ProjectStatus.STOPPING, stop, ProjectStatus.STOPPED)
        return "Project stopped"

    async def _run_rebuild(self, project_id: str, ctx: OperationContext) -> str:
        async def rebuild(project: ProjectRecord) -> None:
            await ctx.step("Rebuilding containers without cache")
            await self._docker.rebuild(project, on_output=ctx.output)

        await self._transition(project_id, ProjectStatus.STARTING, rebuild, ProjectStatus.RUNNING)
        return "Project rebuilt"

    async def _transition(
        self,
        project_id: str,
        during: ProjectStatus,
        action: Callable[[ProjectRecord], Awaitable[None]],
        success: ProjectStatus,
    ) -> None:
        """Run `action` with the project in `during`; leave it in `success` or `error`."""
        project = await self._set(project_id, status=during, error=None)
        try:
            await action(project)
        except asyncio.CancelledError:
            await self._set(project_id, status=ProjectStatus.ERROR, progress=None, error="Operation cancelled")
            raise
        except Exception as exc:
            error = getattr(exc, "message", None) or str(exc)
            await self._set(project_id, status=ProjectStatus.ERROR, progress=None, error=error)
            raise
        await self._set(project_id, status=success, progress=None, error=None)

    async def _set(self, project_id: str, **changes: Any) -> ProjectRecord:
        def apply(record: ProjectRecord) -> None:
            for key, value in changes.items():
                setattr(record, key, value)
            record.touch()

        project = await self._store.update(project_id, apply)
        self._broadcast(project)
        return project

    def _ensure_idle(self, project_id: str) -> None:
        running = self._tasks.active_for(project_id)
        if running is not None:
            msg = f"Operation {running.kind.value} in progress for this project"
            raise ConflictError(msg, operation_id=running.id)

    def _check_port_change(
        self, records: list[ProjectRecord], project: ProjectRecord, ports: Mapping[str, int]
    ) -> None:
        allowed = set(port_classes(project.template, project.config.services))
        unknown = sorted(set(ports) - allowed)
        if unknown:
            msg = f"Unknown port names for this project: {', '.join(unknown)}"
            raise ValidationError(msg)
        for port in ports.values():
            validate_port(port)
        conflicts = self._allocator.conflicts(records, ports, exclude_id=project.id)
        if conflicts:
            first = conflicts[0]
            msg = f"Port {first.port} is already in use by project {first.conflicting_project}"
            raise ConflictError(msg, service=first.service, port=first.port)
        merged = {**project.ports, **ports}
        if len(set(merged.values())) != len(merged):
            msg = "Ports within a project must be distinct"
            raise ValidationError(msg)

    def _broadcast(self, project: ProjectRecord) -> None:
        self._bus.project_update(project.id, project.model_dump(mode="json"))
