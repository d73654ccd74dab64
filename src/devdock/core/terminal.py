"""One-shot command sessions inside a project's app container."""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from devdock.core.docker_manager import DockerManager
from devdock.errors import NotFoundError, ValidationError
from devdock.models.project import ProjectRecord

logger = structlog.get_logger(__name__)

SESSION_TTL = timedelta(hours=1)
EXEC_TIMEOUT = 30.0


@dataclass(slots=True)
class TerminalSession:
    id: str
    project_id: str
    container: str
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_used: datetime = field(default_factory=lambda: datetime.now(UTC))

    def as_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.id,
            "project_id": self.project_id,
            "container_name": self.container,
            "created_at": self.created_at.isoformat(),
        }


class TerminalManager:
    """Track sessions; each `exec` runs `bash -c` via `docker exec`."""

    def __init__(self, docker: DockerManager, *, ttl: timedelta = SESSION_TTL) -> None:
        self._docker = docker
        self._ttl = ttl
        self._sessions: dict[str, TerminalSession] = {}

    async def create(self, project: ProjectRecord) -> TerminalSession:
        self._expire()
        container = f"{project.name}_app"
        if await self._docker.container_state(container) is None:
            msg = "Container is not running. Please start the project first."
            raise ValidationError(msg, container_name=container)
        session = TerminalSession(
            id=f"terminal_{secrets.token_hex(8)}", project_id=project.id, container=container
        )
        self._sessions[session.id] = session
        logger.info("terminal_session_created", session=session.id, container=container)
        return session

    def get(self, session_id: str) -> TerminalSession:
        self._expire()
        session = self._sessions.get(session_id)
        if session is None:
            msg = "Terminal session not found"
            raise NotFoundError(msg)
        return session

    async def exec(self, session_id: str, command: str) -> dict[str, Any]:
        session = self.get(session_id)
        session.last_used = datetime.now(UTC)
        result = await self._docker.container_exec(
            session.container, command.rstrip("\n"), timeout=EXEC_TIMEOUT
        )
        if not result.success:
            return {"output": f"Error: {result.error_text()}", "success": False}
        output = result.stdout
        if result.stderr:
            output += f"\nSTDERR: {result.stderr}"
        return {"output": output, "success": True}

    def close(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is None:
            msg = "Terminal session not found"
            raise NotFoundError(msg)
        logger.info("terminal_session_closed", session=session_id)

    def _expire(self) -> None:
        now = datetime.now(UTC)
        for session_id in [key for key, item in self._sessions.items() if now - item.last_used > self._ttl]:
            del self._sessions[session_id]
            logger.info("terminal_session_expired", session=session_id)
