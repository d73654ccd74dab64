"""docker compose operations for one project directory."""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from devdock.core.executor import CommandExecutor, CommandResult, OutputCallback
from devdock.errors import ExternalToolError
from devdock.models.project import ProjectRecord

logger = structlog.get_logger(__name__)


class DockerManager:
    """Thin wrapper around the docker and docker compose CLIs."""

    def __init__(
        self,
        executor: CommandExecutor,
        *,
        compose_command: Sequence[str] = ("docker", "compose"),
        probe_timeout: float = 5.0,
    ) -> None:
        self._executor = executor
        self._compose_command = tuple(compose_command)
        self._probe_timeout = probe_timeout

    def compose(self, *args: str) -> list[str]:
        return [*self._compose_command, *args]

    async def up(
        self, project: ProjectRecord, *, build: bool = False, on_output: OutputCallback | None = None
    ) -> CommandResult:
        args = self.compose("up", "-d", *(["--build"] if build else []))
        return await self._executor.require(
            args, "Failed to start containers", cwd=project.path, on_output=on_output
        )

    async def down(
        self,
        project: ProjectRecord,
        *,
        volumes: bool = False,
        remove_orphans: bool = False,
        on_output: OutputCallback | None = None,
    ) -> CommandResult:
        args = self.compose("down")
        if volumes:
            args.append("--volumes")
        if remove_orphans:
            args.append("--remove-orphans")
        return await self._executor.require(
            args, "Failed to stop containers", cwd=project.path, on_output=on_output
        )

    async def build(
        self,
        project: ProjectRecord,
        *,
        no_cache: bool = False,
        on_output: OutputCallback | None = None,
    ) -> CommandResult:
        args = self.compose("build", *(["--no-cache"] if no_cache else []))
        return await self._executor.require(
            args, "Failed to build containers", cwd=project.path, on_output=on_output
        )

    async def start(
        self, project: ProjectRecord, *, on_output: OutputCallback | None = None
    ) -> CommandResult:
        """`up -d --build`, falling back to an uncached build when that fails."""
        try:
            return await self.up(project, build=True, on_output=on_output)
        except ExternalToolError as exc:
            logger.warning("compose_up_failed_retrying_without_cache", project=project.name, error=exc.message)
        await self.build(project, no_cache=True, on_output=on_output)
        return await self.up(project, on_output=on_output)

    async def rebuild(
        self, project: ProjectRecord, *, on_output: OutputCallback | None = None
    ) -> CommandResult:
        await self.down(project, volumes=True, remove_orphans=True, on_output=on_output)
        await self.build(project, no_cache=True, on_output=on_output)
        return await self.up(project, on_output=on_output)

    async def ps(self, project: ProjectRecord) -> CommandResult:
        return await self._executor.run(
            self.compose("ps", "--all", "--format", "json"),
            cwd=project.path,
            timeout=self._probe_timeout * 2,
        )

    async def logs(self, project: ProjectRecord, *, service: str | None = None, lines: int = 100) -> str:
        args = self.compose("logs", "--no-color", f"--tail={lines}")
        if service:
            args.append(service)
        result = await self._executor.run(args, cwd=project.path, timeout=30)
        if not result.success:
            raise ExternalToolError(f"Failed to read logs: {result.error_text()}", result)
        return result.output or "No logs available"

    async def container_logs(self, container: str, *, lines: int = 200) -> str:
        result = await self._executor.run(
            ["docker", "logs", f"--tail={lines}", container], timeout=30
        )
        if not result.success:
            raise ExternalToolError(f"Container logs not available: {result.error_text()}", result)
        return result.output or "No logs available"

    async def exec(
        self,
        project: ProjectRecord,
        service: str,
        command: Sequence[str],
        *,
        detach: bool = False,
        timeout: float | None = None,
        on_output: OutputCallback | None = None,
    ) -> CommandResult:
        args = self.compose("exec", "-d" if detach else "-T", service, *command)
        return await self._executor.run(
            args, cwd=project.path, timeout=timeout, on_output=on_output
        )

    async def container_exec(
        self, container: str, command: str, *, timeout: float | None = 30.0
    ) -> CommandResult:
        return await self._executor.run(
            ["docker", "exec", container, "bash", "-c", command], timeout=timeout
        )

    async def stats(self, containers: Sequence[str]) -> CommandResult:
        return await self._executor.run(
            ["docker", "stats", "--no-stream", "--format", "{{.Name}}\t{{.CPUPerc}}\t{{.MemUsage}}", *containers],
            timeout=self._probe_timeout * 2,
        )

    async def container_state(self, container: str) -> str | None:
        result = await self._executor.run(
            ["docker", "inspect", "-f", "{{.State.Status}}", container],
            timeout=self._probe_timeout,
        )
        if not result.success:
            return None
        return result.stdout.strip() or None

    async def container_running(self, container: str) -> bool:
        return await self.container_state(container) == "running"

    async def daemon_running(self) -> bool:
        result = await self._executor.run(["docker", "info"], timeout=self._probe_timeout)
        return result.success
