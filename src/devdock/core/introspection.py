"""Best-effort Laravel runtime signals scraped from CLI output.

Everything here parses human-readable text from tools whose output format is
not stable. Callers depend on the `LaravelIntrospector` protocol so a structured
source can replace `ArtisanIntrospector` without touching them.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

import httpx
import structlog

from devdock.core.docker_manager import DockerManager
from devdock.models.project import ProjectRecord

logger = structlog.get_logger(__name__)

JOB_COUNT_PATTERNS = {
    state: re.compile(rf"(\d+)\s+{state}", re.IGNORECASE)
    for state in ("pending", "processing", "failed")
}
NEXT_DUE = re.compile(r"\.*\s*Next Due:\s*(?P<next>.+)$", re.IGNORECASE)
DB_SIZE = re.compile(r"\d+(?:\.\d+)?")

FAILED_JOB_LIMIT = 10


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class QueueStatus:
    workers: int = 0
    pending: int = 0
    processing: int = 0
    failed: int = 0
    error: str | None = None

    @property
    def enabled(self) -> bool:
        return self.workers > 0

    @property
    def healthy(self) -> bool:
        return self.enabled and self.failed < FAILED_JOB_LIMIT

    def as_dict(self) -> dict[str, Any]:
        return {
            "workers": self.workers,
            "jobs": {"pending": self.pending, "processing": self.processing, "failed": self.failed},
            "enabled": self.enabled,
            "healthy": self.healthy,
            "error": self.error,
        }


@dataclass(slots=True)
class ScheduleEntry:
    command: str
    next_run: str | None = None


@dataclass(slots=True)
class ScheduleStatus:
    schedules: list[ScheduleEntry] = field(default_factory=list)
    error: str | None = None
    checked_at: datetime = field(default_factory=_now)

    @property
    def enabled(self) -> bool:
        return bool(self.schedules)

    def as_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "healthy": self.enabled,
            "count": len(self.schedules),
            "schedules": [asdict(entry) for entry in self.schedules],
            "error": self.error,
            "last_check": self.checked_at.isoformat(),
        }


@dataclass(slots=True)
class DatabaseStatus:
    connected: bool = False
    size_mb: float | None = None
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "connected": self.connected,
            "size_mb": self.size_mb,
            "healthy": self.connected,
            "error": self.error,
        }


@dataclass(slots=True)
class CacheStatus:
    redis_available: bool = False

    @property
    def driver(self) -> str:
        return "redis" if self.redis_available else "file"

    def as_dict(self) -> dict[str, Any]:
        return {"driver": self.driver, "redis_available": self.redis_available, "healthy": True}


@dataclass(slots=True)
class AppHealth:
    port: int | None
    http_code: int = 0
    error: str | None = None

    @property
    def responding(self) -> bool:
        return 200 <= self.http_code < 500

    def as_dict(self) -> dict[str, Any]:
        return {
            "responding": self.responding,
            "http_code": self.http_code,
            "port": self.port,
            "healthy": self.responding,
            "error": self.error,
        }


def parse_queue_monitor(text: str) -> dict[str, int]:
    """Extract job counts from `artisan queue:monitor` text such as `3 pending`."""
    counts = dict.fromkeys(JOB_COUNT_PATTERNS, 0)
    for line in text.splitlines():
        for state, pattern in JOB_COUNT_PATTERNS.items():
            match = pattern.search(line)
            if match:
                counts[state] = int(match.group(1))
    return counts


def parse_schedule_list(text: str) -> list[ScheduleEntry]:
    entries: list[ScheduleEntry] = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line or ("artisan" not in line and "command" not in line.lower()):
            continue
        next_run = None
        match = NEXT_DUE.search(line)
        if match:
            next_run = match.group("next").strip()
            line = line[: match.start()].strip()
        entries.append(ScheduleEntry(command=line, next_run=next_run))
    return entries


def count_queue_workers(ps_output: str) -> int:
    return sum(
        1 for line in ps_output.splitlines() if "queue:work" in line and "grep" not in line
    )


def health_score(
    containers: dict[str, bool],
    app: AppHealth,
    database: DatabaseStatus,
    cache: CacheStatus,
) -> dict[str, Any]:
    """Share of running containers and healthy subsystems, as 0-100 with a label."""
    total = len(containers) + 3
    healthy = sum(containers.values()) + sum((app.responding, database.connected, True))
    score = round(healthy / total * 100)
    if score >= 90:
        label = "excellent"
    elif score >= 70:
        label = "good"
    elif score >= 50:
        label = "warning"
    else:
        label = "critical"
    return {"score": score, "status": label, "total_services": total, "healthy_services": healthy}


class LaravelIntrospector(Protocol):
    async def queue(self, project: ProjectRecord) -> QueueStatus: ...

    async def schedule(self, project: ProjectRecord) -> ScheduleStatus: ...

    async def database(self, project: ProjectRecord) -> DatabaseStatus: ...

    async def cache(self, project: ProjectRecord) -> CacheStatus: ...

    async def app_health(self, project: ProjectRecord) -> AppHealth: ...


class ArtisanIntrospector:
    """Read signals by exec-ing artisan, mysql and redis-cli inside the containers."""

    def __init__(self, docker: DockerManager, *, timeout: float = 5.0) -> None:
        self._docker = docker
        self._timeout = timeout

    async def queue(self, project: ProjectRecord) -> QueueStatus:
        ps = await self._docker.exec(project, "app", ["ps", "aux"], timeout=self._timeout)
        if not ps.success:
            return QueueStatus(error=ps.error_text())
        status = QueueStatus(workers=count_queue_workers(ps.stdout))

        monitor = await self._docker.exec(
            project, "app", ["php", "artisan", "queue:monitor", "default"], timeout=self._timeout
        )
        if monitor.success:
            counts = parse_queue_monitor(monitor.stdout)
            status.pending = counts["pending"]
            status.processing = counts["processing"]
            status.failed = counts["failed"]
        else:
            logger.debug("queue_monitor_unavailable", project=project.name)
        return status

    async def schedule(self, project: ProjectRecord) -> ScheduleStatus:
        result = await self._docker.exec(
            project, "app", ["php", "artisan", "schedule:list"], timeout=self._timeout
        )
        if not result.success:
            return ScheduleStatus(error=result.error_text())
        return ScheduleStatus(schedules=parse_schedule_list(result.stdout))

    async def database(self, project: ProjectRecord) -> DatabaseStatus:
        mysql = ["mysql", "-u", "root", "-ppassword", "-e"]
        ping = await self._docker.exec(
            project, "db", [*mysql, "SELECT 1 AS connected"], timeout=self._timeout
        )
        if not ping.success or "connected" not in ping.stdout:
            return DatabaseStatus(error=ping.error_text() if not ping.success else None)

        size_query = (
            "SELECT ROUND(SUM(data_length + index_length) / 1024 / 1024, 1) AS size_mb "
            f"FROM information_schema.tables WHERE table_schema='{project.name}'"
        )
        size = await self._docker.exec(project, "db", [*mysql, size_query], timeout=self._timeout)
        size_mb = None
        if size.success:
            match = DB_SIZE.search(size.stdout.replace("size_mb", ""))
            size_mb = float(match.group(0)) if match else None
        return DatabaseStatus(connected=True, size_mb=size_mb)

    async def cache(self, project: ProjectRecord) -> CacheStatus:
        result = await self._docker.exec(project, "redis", ["redis-cli", "ping"], timeout=self._timeout)
        return CacheStatus(redis_available=result.success and result.stdout.strip() == "PONG")

    async def app_health(self, project: ProjectRecord) -> AppHealth:
        port = project.ports.get("app")
        if port is None:
            return AppHealth(port=None, error="no app port allocated")
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(f"http://localhost:{port}")
        except httpx.HTTPError as exc:
            return AppHealth(port=port, error=str(exc) or type(exc).__name__)
        return AppHealth(port=port, http_code=response.status_code)
