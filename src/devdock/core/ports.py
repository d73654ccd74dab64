"""Port allocation across registered projects."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

import structlog

from devdock.core.executor import CommandExecutor
from devdock.errors import ConflictError, ValidationError
from devdock.models.project import AddonService, ProjectRecord, Template

logger = structlog.get_logger(__name__)

APP_BASELINES: dict[Template, int] = {
    Template.LARAVEL: 8000,
    Template.NODEJS: 3000,
}

SERVICE_BASELINES: dict[str, int] = {
    "db": 3306,
    "vite": 5173,
    AddonService.REDIS.value: 6379,
    AddonService.PHPMYADMIN.value: 8080,
    AddonService.MAILHOG.value: 8025,
}

TEMPLATE_PORT_CLASSES: dict[Template, tuple[str, ...]] = {
    Template.LARAVEL: ("app", "db", "vite"),
    Template.NODEJS: ("app", "db"),
}

MAX_PORT = 65535


@dataclass(slots=True)
class PortConflict:
    """A requested port already held by another project or process."""

    service: str
    port: int
    conflicting_project: str


def port_classes(template: Template, services: Iterable[AddonService]) -> list[str]:
    enabled = {AddonService(service) for service in services}
    classes = list(TEMPLATE_PORT_CLASSES[template])
    classes.extend(service.value for service in AddonService if service in enabled)
    return classes


def baseline(template: Template, port_class: str) -> int:
    if port_class == "app":
        return APP_BASELINES[template]
    return SERVICE_BASELINES[port_class]


def validate_port(port: int) -> int:
    if not 1 <= port <= MAX_PORT:
        msg = f"Port must be between 1 and {MAX_PORT}: {port}"
        raise ValidationError(msg)
    return port


class PortAllocator:
    """Pick the next free integer above each service baseline.

    Only registered projects are consulted. Callers must run `allocate` inside
    the store transaction that persists the result so two creations cannot
    observe the same free port.
    """

    def used_ports(
        self, records: Iterable[ProjectRecord], *, exclude_id: str | None = None
    ) -> dict[int, str]:
        used: dict[int, str] = {}
        for record in records:
            if record.id == exclude_id:
                continue
            for port in record.ports.values():
                used[port] = record.name
        return used

    def allocate(
        self,
        records: Iterable[ProjectRecord],
        template: Template,
        services: Iterable[AddonService],
        custom: Mapping[str, int] | None = None,
    ) -> dict[str, int]:
        classes = port_classes(template, services)
        requested = dict(custom or {})
        unknown = sorted(set(requested) - set(classes))
        if unknown:
            msg = f"Unknown port names for this project: {', '.join(unknown)}"
            raise ValidationError(msg)

        used = self.used_ports(records)
        for name, port in requested.items():
            validate_port(port)
            if port in used:
                msg = f"Port {port} is already in use by project {used[port]}"
                raise ConflictError(msg, service=name, port=port)
        if len(set(requested.values())) != len(requested):
            msg = "Custom ports must be distinct"
            raise ValidationError(msg)

        taken = set(used) | set(requested.values())
        ports: dict[str, int] = {}
        for port_class in classes:
            if port_class in requested:
                ports[port_class] = requested[port_class]
                continue
            candidate = baseline(template, port_class)
            while candidate in taken:
                candidate += 1
            if candidate > MAX_PORT:
                msg = f"No free port left for {port_class}"
                raise ConflictError(msg)
            taken.add(candidate)
            ports[port_class] = candidate

        logger.debug("ports_allocated", template=template.value, ports=ports)
        return ports

    def conflicts(
        self,
        records: Iterable[ProjectRecord],
        ports: Mapping[str, int],
        *,
        exclude_id: str | None = None,
    ) -> list[PortConflict]:
        used = self.used_ports(records, exclude_id=exclude_id)
        return [
            PortConflict(service=name, port=port, conflicting_project=used[port])
            for name, port in ports.items()
            if port in used
        ]


class HostPortProbe:
    """Best-effort check whether some host process listens on a port."""

    def __init__(self, executor: CommandExecutor, *, timeout: float = 2.0) -> None:
        self._executor = executor
        self._timeout = timeout

    async def in_use(self, port: int) -> bool | None:
        """Return `None` when the check itself cannot run."""
        result = await self._executor.run(["lsof", "-i", f":{port}"], timeout=self._timeout)
        if result.failure in {"not_found", "timeout", "error"}:
            return None
        return result.success and bool(result.stdout.strip())
