"""ngrok tunnels held by an owning manager for the life of the process."""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel

from devdock.core.executor import CommandExecutor, terminate_process
from devdock.core.ports import validate_port
from devdock.db.json_file import JsonFile
from devdock.errors import ExternalToolError, InvalidCredentialsError, NotFoundError, ValidationError

logger = structlog.get_logger(__name__)

PUBLIC_URL = re.compile(r"https://[^\s\"]+\.ngrok(?:-free)?\.(?:app|io|dev)")
INSTALL_INSTRUCTIONS = {
    "title": "Ngrok Installation Required",
    "steps": [
        "Visit https://ngrok.com/download",
        "Download ngrok for your platform",
        "Extract and move it to a directory on PATH (e.g. /usr/local/bin)",
        "Or use a package manager: brew install ngrok (macOS) or snap install ngrok (Linux)",
    ],
    "note": "ngrok is required to create secure tunnels to your local development server.",
}


class NgrokConfig(BaseModel):
    """Contents of `ngrok-config.json`; the token itself lives in ngrok's own config."""

    is_authenticated: bool = False
    authenticated_at: datetime | None = None


@dataclass(slots=True)
class Tunnel:
    id: str
    port: int
    public_url: str
    protocol: str = "http"
    region: str | None = "us"
    subdomain: str | None = None
    status: str = "active"
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def local_url(self) -> str:
        return f"http://localhost:{self.port}"

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "port": self.port,
            "public_url": self.public_url,
            "protocol": self.protocol,
            "region": self.region,
            "subdomain": self.subdomain,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
            "local_url": self.local_url,
        }


class TunnelManager:
    """Start, list and stop ngrok processes; nothing survives a restart."""

    def __init__(
        self,
        executor: CommandExecutor,
        config_file: Path,
        *,
        startup_timeout: float = 30.0,
    ) -> None:
        self._executor = executor
        self._file = JsonFile(config_file)
        try:
            self._config = NgrokConfig.model_validate(self._file.read(default={}))
        except ValueError:
            logger.warning("ngrok_config_invalid", path=str(config_file))
            self._config = NgrokConfig()
        self._startup_timeout = startup_timeout
        self._tunnels: dict[str, Tunnel] = {}
        self._processes: dict[str, asyncio.subprocess.Process] = {}
        self._watchers: dict[str, asyncio.Task[None]] = {}

    @property
    def installed(self) -> bool:
        return self._executor.which("ngrok") is not None

    @property
    def is_authenticated(self) -> bool:
        return self._config.is_authenticated

    def status(self) -> dict[str, Any]:
        installed = self.installed
        return {
            "installed": installed,
            "is_authenticated": self._config.is_authenticated,
            "active_tunnels": [tunnel.as_dict() for tunnel in self._tunnels.values()],
            "tunnel_count": len(self._tunnels),
            "install_instructions": None if installed else INSTALL_INSTRUCTIONS,
        }

    def list(self) -> list[Tunnel]:
        return list(self._tunnels.values())

    async def authenticate(self, auth_token: str) -> None:
        if not auth_token:
            msg = "Auth token is required"
            raise ValidationError(msg)
        self._require_installed()
        await self._executor.require(
            ["ngrok", "config", "add-authtoken", auth_token], "Failed to authenticate ngrok"
        )
        self._config = NgrokConfig(is_authenticated=True, authenticated_at=datetime.now(UTC))
        self._file.write(self._config.model_dump(mode="json"))
        logger.info("ngrok_authenticated")

    async def create(
        self,
        port: int,
        *,
        subdomain: str | None = None,
        region: str | None = "us",
        protocol: str = "http",
    ) -> Tunnel:
        validate_port(port)
        self._require_installed()
        if not self._config.is_authenticated:
            msg = "Ngrok authentication required"
            raise InvalidCredentialsError(msg, hint="Set the ngrok auth token first")

        tunnel_id = f"tunnel-{port}-{int(datetime.now(UTC).timestamp() * 1000)}"
        args = ["ngrok", protocol, str(port)]
        if subdomain:
            args.extend(["--subdomain", subdomain])
        if region:
            args.extend(["--region", region])
        args.extend(["--log", "stdout"])

        logger.info("ngrok_starting", command=" ".join(args))
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            msg = f"Failed to start ngrok: {exc}"
            raise ExternalToolError(msg) from exc

        try:
            public_url = await asyncio.wait_for(self._await_url(process), self._startup_timeout)
        except TimeoutError as exc:
            await terminate_process(process)
            msg = "Ngrok tunnel creation timed out"
            raise ExternalToolError(msg) from exc
        except BaseException:
            await terminate_process(process)
            raise

        tunnel = Tunnel(
            id=tunnel_id,
            port=port,
            public_url=public_url,
            protocol=protocol,
            region=region,
            subdomain=subdomain,
        )
        self._tunnels[tunnel_id] = tunnel
        self._processes[tunnel_id] = process
        self._watchers[tunnel_id] = asyncio.create_task(
            self._watch(tunnel_id, process), name=f"devdock-{tunnel_id}"
        )
        logger.info("ngrok_tunnel_created", tunnel=tunnel_id, url=public_url)
        return tunnel

    async def stop(self, tunnel_id: str) -> None:
        process = self._processes.get(tunnel_id)
        if process is None:
            msg = f"Tunnel not found: {tunnel_id}"
            raise NotFoundError(msg)
        await terminate_process(process)
        watcher = self._watchers.get(tunnel_id)
        if watcher is not None:
            await asyncio.wait([watcher])
        self._forget(tunnel_id)
        logger.info("ngrok_tunnel_stopped", tunnel=tunnel_id)

    async def stop_all(self) -> int:
        stopped = 0
        for tunnel_id in list(self._processes):
            await self.stop(tunnel_id)
            stopped += 1
        return stopped

    def _require_installed(self) -> None:
        if not self.installed:
            msg = "Ngrok is not installed"
            raise ValidationError(msg, install_instructions=INSTALL_INSTRUCTIONS)

    @staticmethod
    async def _await_url(process: asyncio.subprocess.Process) -> str:
        assert process.stdout is not None
        tail: list[str] = []
        async for raw in process.stdout:
            line = raw.decode("utf-8", errors="replace")
            match = PUBLIC_URL.search(line)
            if match:
                return match.group(0)
            tail = [*tail[-9:], line.strip()]
        await process.wait()
        msg = f"Ngrok exited with code {process.returncode}: {' '.join(tail)}"
        raise ExternalToolError(msg, exit_code=process.returncode)

    async def _watch(self, tunnel_id: str, process: asyncio.subprocess.Process) -> None:
        if process.stdout is not None:
            async for _ in process.stdout:
                pass
        code = await process.wait()
        logger.info("ngrok_process_exited", tunnel=tunnel_id, exit_code=code)
        self._forget(tunnel_id)

    def _forget(self, tunnel_id: str) -> None:
        tunnel = self._tunnels.pop(tunnel_id, None)
        if tunnel is not None:
            tunnel.status = "stopped"
        self._processes.pop(tunnel_id, None)
        self._watchers.pop(tunnel_id, None)

