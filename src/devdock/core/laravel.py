"""Laravel-specific operations run through `docker compose exec` in the app container."""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

import structlog

from devdock.core.docker_manager import DockerManager
from devdock.core.executor import CommandResult
from devdock.core.introspection import LaravelIntrospector
from devdock.core.project_manager import ProjectManager
from devdock.core.services import ServiceMonitor
from devdock.db.json_file import write_text_atomic
from devdock.errors import ExternalToolError, NotFoundError, ValidationError
from devdock.models.project import ProjectRecord

logger = structlog.get_logger(__name__)

CACHE_COMMANDS = {
    "all": "optimize:clear",
    "config": "config:clear",
    "view": "view:clear",
    "route": "route:clear",
    "cache": "cache:clear",
}
LOG_SERVICES = {"nginx": "nginx", "mysql": "db", "redis": "redis", "all": None}
QUEUE_NAME = re.compile(r"^[A-Za-z0-9_,.:-]+$")
MIGRATE_TIMEOUT = 60.0
COMMAND_TIMEOUT = 30.0
SUPERVISOR_TIMEOUT = 15.0
PROGRAM_NAME = re.compile(r"^[A-Za-z0-9_.:-]+$")
SUPERVISOR_LINE = re.compile(
    r"^(\S+)\s+(RUNNING|STOPPED|STARTING|STOPPING|BACKOFF|EXITED|FATAL|UNKNOWN)\s*(.*)$"
)
FAILED_STATES = {"FATAL", "EXITED", "BACKOFF"}


def parse_supervisor_status(text: str) -> list[dict[str, Any]]:
    """Parse `supervisorctl status` lines such as `php-fpm RUNNING pid 12, uptime 0:01:02`."""
    programs: list[dict[str, Any]] = []
    for line in text.splitlines():
        match = SUPERVISOR_LINE.match(line.strip())
        if not match:
            continue
        name, state, details = match.groups()
        pid = re.search(r"pid (\d+)", details)
        uptime = re.search(r"uptime (.+)", details)
        programs.append(
            {
                "name": name,
                "state": state,
                "pid": int(pid.group(1)) if pid else None,
                "uptime": uptime.group(1).strip() if uptime else None,
            }
        )
    return programs


def supervisor_stats(programs: Sequence[dict[str, Any]]) -> dict[str, int]:
    return {
        "total": len(programs),
        "running": sum(1 for program in programs if program["state"] == "RUNNING"),
        "stopped": sum(1 for program in programs if program["state"] == "STOPPED"),
        "failed": sum(1 for program in programs if program["state"] in FAILED_STATES),
    }


def _accepted_exit_codes(action: str, stdout: str) -> set[int]:
    # status exits 3 when any program is not running; start/stop/restart exit 7
    # when the program is already in the requested state.
    if action == "status":
        return {0, 3}
    if action in {"start", "stop", "restart"} and stdout.strip():
        return {0, 7}
    return {0}


class LaravelManager:
    """Queue, cache, migration, log, scheduler and supervisor actions for Laravel projects."""

    def __init__(
        self,
        projects: ProjectManager,
        docker: DockerManager,
        introspector: LaravelIntrospector,
        monitor: ServiceMonitor,
    ) -> None:
        self._projects = projects
        self._docker = docker
        self._introspector = introspector
        self._monitor = monitor

    async def status(self, project_id: str) -> dict[str, Any]:
        project = await self._projects.require_laravel(project_id)
        return await self._monitor.overview(project)

    async def artisan(self, project_id: str, command: str, args: Sequence[str] = ()) -> dict[str, Any]:
        result = await self._projects.artisan(project_id, command, args)
        return {
            "output": result.stdout,
            "error": result.stderr or None,
            "command": " ".join(["php", "artisan", command, *args]),
        }

    async def queue_status(self, project_id: str) -> dict[str, Any]:
        project = await self._projects.require_laravel(project_id)
        return (await self._introspector.queue(project)).as_dict()

    async def queue_start(
        self, project_id: str, *, queue: str = "default", timeout: int = 60, tries: int = 3
    ) -> dict[str, Any]:
        if not QUEUE_NAME.fullmatch(queue):
            msg = f"Invalid queue name: {queue}"
            raise ValidationError(msg)
        project = await self._projects.require_laravel(project_id)
        await self._artisan(
            project,
            [
                "queue:work",
                f"--queue={queue}",
                f"--timeout={timeout}",
                f"--tries={tries}",
                "--sleep=3",
            ],
            detach=True,
        )
        logger.info("queue_worker_started", project=project.name, queue=queue)
        return {
            "message": f"Queue worker started for queue: {queue}",
            "queue": queue,
            "timeout": timeout,
            "tries": tries,
        }

    async def queue_stop(self, project_id: str) -> dict[str, Any]:
        project = await self._projects.require_laravel(project_id)
        await self._artisan(project, ["queue:restart"])
        logger.info("queue_workers_stopped", project=project.name)
        return {"message": "All queue workers stopped"}

    async def queue_jobs(self, project_id: str, *, status: str = "all", limit: int = 50) -> dict[str, Any]:
        project = await self._projects.require_laravel(project_id)
        command = ["queue:failed"] if status == "failed" else ["queue:monitor", "default"]
        result = await self._artisan(project, command)
        try:
            return {"status": status, "jobs": json.loads(result.stdout)}
        except ValueError:
            lines = [line for line in result.stdout.splitlines() if line.strip()]
            return {"status": status, "jobs": lines[:limit]}

    async def clear_cache(self, project_id: str, kinds: Sequence[str] = ("all",)) -> dict[str, Any]:
        unknown = sorted(set(kinds) - CACHE_COMMANDS.keys())
        if unknown:
            msg = f"Unknown cache type: {', '.join(unknown)}"
            raise ValidationError(msg, allowed=sorted(CACHE_COMMANDS))
        project = await self._projects.require_laravel(project_id)

        results: dict[str, dict[str, Any]] = {}
        for kind in kinds:
            result = await self._docker.exec(
                project, "app", ["php", "artisan", CACHE_COMMANDS[kind]], timeout=COMMAND_TIMEOUT
            )
            if result.success:
                results[kind] = {"success": True, "output": result.stdout.strip()}
            else:
                results[kind] = {"success": False, "error": result.error_text()}
        return {"success": all(item["success"] for item in results.values()), "results": results}

    async def migrate(self, project_id: str, *, fresh: bool = False, seed: bool = False) -> dict[str, Any]:
        project = await self._projects.require_laravel(project_id)
        if fresh:
            command = ["migrate:fresh", "--force", *(["--seed"] if seed else [])]
            kind = "fresh+seed" if seed else "fresh"
        else:
            command = ["migrate", "--force", *(["--seed"] if seed else [])]
            kind = "normal+seed" if seed else "normal"
        result = await self._artisan(project, command, timeout=MIGRATE_TIMEOUT)
        logger.info("migrations_ran", project=project.name, type=kind)
        return {"output": result.stdout, "error": result.stderr or None, "type": kind}

    async def logs(self, project_id: str, *, kind: str = "laravel", lines: int = 100) -> dict[str, Any]:
        if kind != "laravel" and kind not in LOG_SERVICES:
            msg = f"Unknown log type: {kind}"
            raise ValidationError(msg)
        project = await self._projects.require_laravel(project_id)
        if kind == "laravel":
            result = await self._docker.exec(
                project,
                "app",
                ["tail", "-n", str(lines), "storage/logs/laravel.log"],
                timeout=COMMAND_TIMEOUT,
            )
            if not result.success:
                raise ExternalToolError(f"Failed to read Laravel log: {result.error_text()}", result)
            text = result.stdout
        else:
            text = await self._docker.logs(project, service=LOG_SERVICES[kind], lines=lines)
        return {
            "type": kind,
            "logs": [line for line in text.splitlines() if line.strip()],
            "timestamp": datetime.now(UTC).isoformat(),
        }

    async def schedule_status(self, project_id: str) -> dict[str, Any]:
        project = await self._projects.require_laravel(project_id)
        return (await self._introspector.schedule(project)).as_dict()

    async def schedule_run(self, project_id: str) -> dict[str, Any]:
        project = await self._projects.require_laravel(project_id)
        result = await self._artisan(project, ["schedule:run"])
        return {
            "output": result.stdout,
            "error": result.stderr or None,
            "timestamp": datetime.now(UTC).isoformat(),
        }

    async def supervisor_status(self, project_id: str) -> dict[str, Any]:
        project = await self._projects.require_laravel(project_id)
        try:
            result = await self._supervisorctl(project, "status")
        except ExternalToolError as exc:
            logger.warning("supervisor_status_failed", project=project.name, error=exc.message)
            return {"programs": [], "stats": supervisor_stats([]), "error": exc.message}
        programs = parse_supervisor_status(result.stdout)
        return {"programs": programs, "stats": supervisor_stats(programs)}

    async def supervisor_config(self, project_id: str) -> str:
        project = await self._projects.require_laravel(project_id)
        path = project.docker_path / "supervisor.conf"
        try:
            return await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError as exc:
            msg = "Supervisor configuration not found"
            raise NotFoundError(msg, path=str(path)) from exc

    async def save_supervisor_config(self, project_id: str, content: str) -> dict[str, Any]:
        """Write `docker/supervisor.conf` and ask the running supervisord to pick it up."""
        if not content.strip():
            msg = "Supervisor configuration cannot be empty"
            raise ValidationError(msg)
        project = await self._projects.require_laravel(project_id)
        path = project.docker_path / "supervisor.conf"
        await asyncio.to_thread(write_text_atomic, path, content)

        reloaded = True
        try:
            await self._supervisorctl(project, "reread")
            await self._supervisorctl(project, "update")
        except ExternalToolError as exc:
            logger.warning("supervisor_reload_failed", project=project.name, error=exc.message)
            reloaded = False
        logger.info("supervisor_config_saved", project=project.name, reloaded=reloaded)
        return {"message": "Supervisor configuration saved", "reloaded": reloaded}

    async def supervisor_toggle(self, project_id: str, program: str) -> dict[str, Any]:
        _validate_program(program)
        project = await self._projects.require_laravel(project_id)
        current = await self._supervisorctl(project, "status", program)
        action = "stop" if "RUNNING" in current.stdout else "start"
        result = await self._supervisorctl(project, action, program)
        return _program_outcome(program, action, result)

    async def supervisor_restart(self, project_id: str, program: str) -> dict[str, Any]:
        _validate_program(program)
        project = await self._projects.require_laravel(project_id)
        result = await self._supervisorctl(project, "restart", program)
        return _program_outcome(program, "restart", result)

    async def supervisor_restart_all(self, project_id: str) -> dict[str, Any]:
        project = await self._projects.require_laravel(project_id)
        result = await self._supervisorctl(project, "restart", "all")
        logger.info("supervisor_restarted", project=project.name)
        return {"message": "All supervisor programs restarted", "output": result.stdout.strip()}

    async def _supervisorctl(self, project: ProjectRecord, action: str, *args: str) -> CommandResult:
        result = await self._docker.exec(
            project, "app", ["supervisorctl", action, *args], timeout=SUPERVISOR_TIMEOUT
        )
        if result.exit_code not in _accepted_exit_codes(action, result.stdout):
            msg = f"supervisorctl {action} failed: {result.error_text()}"
            raise ExternalToolError(msg, result)
        return result

    async def _artisan(
        self,
        project: ProjectRecord,
        command: list[str],
        *,
        detach: bool = False,
        timeout: float = COMMAND_TIMEOUT,
    ) -> CommandResult:
        result = await self._docker.exec(
            project, "app", ["php", "artisan", *command], detach=detach, timeout=timeout
        )
        if not result.success:
            msg = f"php artisan {command[0]} failed: {result.error_text()}"
            raise ExternalToolError(msg, result)
        return result


def _validate_program(program: str) -> None:
    if not PROGRAM_NAME.fullmatch(program):
        msg = f"Invalid supervisor program name: {program}"
        raise ValidationError(msg)


def _program_outcome(program: str, action: str, result: CommandResult) -> dict[str, Any]:
    output = result.stdout.strip()
    done = result.exit_code == 0
    past = {"start": "started", "stop": "stopped", "restart": "restarted"}[action]
    return {
        "success": done,
        "program": program,
        "action": action,
        "output": output,
        "exit_code": result.exit_code,
        "message": f"Program {program} {past}" if done else f"Could not {action} {program}: {output}",
    }
