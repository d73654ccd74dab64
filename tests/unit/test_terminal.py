from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from devdock.core.docker_manager import DockerManager
from devdock.core.terminal import TerminalManager
from devdock.errors import NotFoundError, ValidationError
from tests.support.fakes import FakeExecutor, make_record


@pytest.mark.asyncio
async def test_terminal_session_runs_commands(tmp_path: Path) -> None:
    executor = FakeExecutor()
    executor.on("docker", "inspect", stdout="running\n")
    executor.on("docker", "exec", stdout="total 4\n", stderr="warning: x\n")
    terminals = TerminalManager(DockerManager(executor))

    session = await terminals.create(make_record(tmp_path))
    assert session.id.startswith("terminal_")
    assert session.as_dict()["container_name"] == "demo_app"

    result = await terminals.exec(session.id, "ls -la\n")
    assert result == {"output": "total 4\n\nSTDERR: warning: x\n", "success": True}
    assert executor.calls[-1] == ["docker", "exec", "demo_app", "bash", "-c", "ls -la"]


@pytest.mark.asyncio
async def test_terminal_reports_command_failure(tmp_path: Path) -> None:
    executor = FakeExecutor()
    executor.on("docker", "inspect", stdout="running\n")
    executor.on("docker", "exec", exit_code=127, stderr="bash: nope: command not found")
    terminals = TerminalManager(DockerManager(executor))
    session = await terminals.create(make_record(tmp_path))

    result = await terminals.exec(session.id, "nope")
    assert result == {"output": "Error: bash: nope: command not found", "success": False}


@pytest.mark.asyncio
async def test_terminal_requires_container(tmp_path: Path) -> None:
    executor = FakeExecutor()
    executor.on("docker", "inspect", exit_code=1, stderr="No such object: demo_app")
    terminals = TerminalManager(DockerManager(executor))
    with pytest.raises(ValidationError):
        await terminals.create(make_record(tmp_path))


@pytest.mark.asyncio
async def test_terminal_close_and_expiry(tmp_path: Path) -> None:
    executor = FakeExecutor()
    executor.on("docker", "inspect", stdout="running\n")
    terminals = TerminalManager(DockerManager(executor), ttl=timedelta(minutes=5))

    closed = await terminals.create(make_record(tmp_path))
    terminals.close(closed.id)
    with pytest.raises(NotFoundError):
        terminals.close(closed.id)

    idle = await terminals.create(make_record(tmp_path))
    idle.last_used -= timedelta(minutes=10)
    with pytest.raises(NotFoundError):
        terminals.get(idle.id)
