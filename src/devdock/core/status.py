"""Derive project status from `docker compose ps` output."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

import structlog

from devdock.core.docker_manager import DockerManager
from devdock.core.events import EventBus
from devdock.db.projects import ProjectStore
from devdock.errors import NotFoundError
from devdock.models.project import ProjectRecord, ProjectStatus

logger = structlog.get_logger(__name__)

type StatusOutcome = Literal[
    "ok", "compose_missing", "docker_unavailable", "command_failed", "parse_failure"
]

DAEMON_DOWN_MARKERS = (
    "cannot connect to the docker daemon",
    "is the docker daemon running",
    "error during connect",
)

TRANSIENT_STATUSES = frozenset(
    {ProjectStatus.CREATING, ProjectStatus.STARTING, ProjectStatus.STOPPING}
)


class ComposeOutputError(ValueError):
    """`docker compose ps` printed nothing that parses as a container."""


@dataclass(slots=True)
class ContainerState:
    """One container row from `docker compose ps`."""

    name: str
    service: str
    state: str
    health: str | None = None
    ports: str = ""

    @property
    def running(self) -> bool:
        return self.state == "running"

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "service": self.service,
            "state": self.state,
            "health": self.health,
            "ports": self.ports,
        }


@dataclass(slots=True)
class StatusReport:
    """Result of checking one project; `status` is `None` when it could not be derived."""

    project_id: str
    outcome: StatusOutcome
    status: ProjectStatus | None = None
    containers: list[ContainerState] = field(default_factory=list)
    detail: str | None = None
    checked_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def running(self) -> int:
        return sum(1 for container in self.containers if container.running)

    @property
    def total(self) -> int:
        return len(self.containers)

    @property
    def partial(self) -> bool:
        return 0 < self.running < self.total

    def as_dict(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "outcome": self.outcome,
            "status": self.status.value if self.status else None,
            "partial": self.partial,
            "running": self.running,
            "total": self.total,
            "containers": [container.as_dict() for container in self.containers],
            "detail": self.detail,
            "checked_at": self.checked_at.isoformat(),
        }


def _container(item: dict[str, Any]) -> ContainerState:
    return ContainerState(
        name=str(item.get("Name", "")),
        service=str(item.get("Service", "")),
        state=str(item.get("State", "")).lower(),
        health=item.get("Health") or None,
        ports=str(item.get("Ports", "")),
    )


def parse_compose_ps(text: str) -> list[ContainerState]:
    """Parse JSON-lines (or a single JSON array) and skip lines that are not JSON.

    Raises `ComposeOutputError` when the output is non-empty but nothing in it
    parses as a container.
    """
    stripped = text.strip()
    if not stripped:
        return []

    if stripped.startswith("["):
        try:
            items = json.loads(stripped)
        except json.JSONDecodeError:
            items = None
        if isinstance(items, list):
            return [_container(item) for item in items if isinstance(item, dict)]

    containers: list[ContainerState] = []
    skipped = 0
    for line in stripped.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            item = json.loads(line)
        except json.JSONDecodeError:
            skipped += 1
            continue
        if isinstance(item, dict):
            containers.append(_container(item))
        elif isinstance(item, list):
            containers.extend(_container(entry) for entry in item if isinstance(entry, dict))
        else:
            skipped += 1

    if not containers and skipped:
        msg = f"No container rows in compose output ({skipped} unparsable lines)"
        raise ComposeOutputError(msg)
    if skipped:
        logger.debug("compose_ps_lines_skipped", skipped=skipped)
    return containers


def aggregate_status(containers: list[ContainerState]) -> ProjectStatus:
    """Any running container counts as running; partial state is reported through counts."""
    if any(container.running for container in containers):
        return ProjectStatus.RUNNING
    return ProjectStatus.STOPPED


class StatusPoller:
    """Refresh persisted project status from the container runtime."""

    def __init__(self, store: ProjectStore, docker: DockerManager, bus: EventBus) -> None:
        self._store = store
        self._docker = docker
        self._bus = bus

    async def check(self, project: ProjectRecord) -> StatusReport:
        if not project.compose_file.exists():
            return StatusReport(
                project_id=project.id,
                outcome="compose_missing",
                detail=f"{project.compose_file} does not exist",
            )

        result = await self._docker.ps(project)
        if result.failure == "not_found":
            return StatusReport(
                project_id=project.id, outcome="docker_unavailable", detail=result.error_text()
            )
        if not result.success:
            text = result.error_text()
            outcome: StatusOutcome = (
                "docker_unavailable"
                if any(marker in text.lower() for marker in DAEMON_DOWN_MARKERS)
                else "command_failed"
            )
            return StatusReport(project_id=project.id, outcome=outcome, detail=text)

        try:
            containers = parse_compose_ps(result.stdout)
        except ComposeOutputError as exc:
            return StatusReport(project_id=project.id, outcome="parse_failure", detail=str(exc))

        return StatusReport(
            project_id=project.id,
            outcome="ok",
            status=aggregate_status(containers),
            containers=containers,
        )

    async def refresh(self, project_id: str) -> StatusReport:
        """Check one project and persist what was derived."""
        project = await self._store.get(project_id)
        if project is None:
            msg = f"Project not found: {project_id}"
            raise NotFoundError(msg)

        report = await self.check(project)
        if report.outcome != "ok":
            logger.warning(
                "project_status_unavailable",
                project=project.name,
                outcome=report.outcome,
                detail=report.detail,
            )

        changed = False

        def apply(record: ProjectRecord) -> None:
            nonlocal changed
            record.last_checked = report.checked_at
            if report.status is None or record.status in TRANSIENT_STATUSES:
                return
            containers = {c.name: c.state for c in report.containers}
            status = report.status
            if status is ProjectStatus.STOPPED and record.status is ProjectStatus.READY:
                status = ProjectStatus.READY
            changed = record.status is not status or record.containers != containers
            record.status = status
            record.containers = containers

        updated = await self._store.update(project_id, apply)
        if changed:
            self._bus.project_update(updated.id, updated.model_dump(mode="json"))
        return report

    async def refresh_all(self) -> list[StatusReport]:
        reports: list[StatusReport] = []
        for project in await self._store.list():
            try:
                reports.append(await self.refresh(project.id))
            except NotFoundError:
                logger.debug("project_vanished_during_poll", project=project.name)
        return reports

    async def run_forever(self, interval: float) -> None:
        logger.info("status_poller_started", interval=interval)
        while True:
            try:
                await self.refresh_all()
            except Exception:
                logger.exception("status_poll_failed")
            await asyncio.sleep(interval)
