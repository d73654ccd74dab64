from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from devdock.core.tunnels import TunnelManager
from devdock.errors import ExternalToolError, InvalidCredentialsError, NotFoundError, ValidationError
from tests.support.fakes import FakeExecutor


class _FakeNgrok:
    def __init__(self, lines: list[str], *, exit_code: int | None = None) -> None:
        self.stdout = asyncio.StreamReader()
        for line in lines:
            self.stdout.feed_data(line.encode("utf-8"))
        self.returncode: int | None = None
        self._exited = asyncio.Event()
        if exit_code is not None:
            self._exit(exit_code)

    def _exit(self, code: int) -> None:
        self.returncode = code
        self.stdout.feed_eof()
        self._exited.set()

    def terminate(self) -> None:
        self._exit(-15)

    def kill(self) -> None:
        self._exit(-9)

    async def wait(self) -> int:
        await self._exited.wait()
        assert self.returncode is not None
        return self.returncode


def _patch_spawn(monkeypatch, lines: list[str], **kwargs: int) -> tuple[list[list[str]], list[_FakeNgrok]]:  # type: ignore[no-untyped-def]
    spawned: list[list[str]] = []
    processes: list[_FakeNgrok] = []

    async def fake_exec(*args, **options):  # type: ignore[no-untyped-def]
        del options
        spawned.append(list(args))
        process = _FakeNgrok(lines, **kwargs)
        processes.append(process)
        return process

    monkeypatch.setattr("devdock.core.tunnels.asyncio.create_subprocess_exec", fake_exec)
    return spawned, processes


async def _authenticated(tmp_path: Path, *, startup_timeout: float = 30.0) -> TunnelManager:
    manager = TunnelManager(
        FakeExecutor(installed={"ngrok"}),
        tmp_path / "ngrok-config.json",
        startup_timeout=startup_timeout,
    )
    await manager.authenticate("token-123")
    return manager


@pytest.mark.asyncio
async def test_authenticate_persists_flag_only(tmp_path: Path) -> None:
    executor = FakeExecutor(installed={"ngrok"})
    config = tmp_path / "ngrok-config.json"
    manager = TunnelManager(executor, config)
    assert manager.is_authenticated is False

    await manager.authenticate("token-123")

    assert executor.calls == [["ngrok", "config", "add-authtoken", "token-123"]]
    assert TunnelManager(executor, config).is_authenticated is True
    assert "token-123" not in config.read_text(encoding="utf-8")

    with pytest.raises(ValidationError):
        await manager.authenticate("")


@pytest.mark.asyncio
async def test_status_when_not_installed(tmp_path: Path) -> None:
    manager = TunnelManager(FakeExecutor(), tmp_path / "ngrok-config.json")
    status = manager.status()
    assert status["installed"] is False
    assert status["install_instructions"]["title"] == "Ngrok Installation Required"
    with pytest.raises(ValidationError):
        await manager.create(8000)


@pytest.mark.asyncio
async def test_create_requires_authentication(tmp_path: Path) -> None:
    manager = TunnelManager(FakeExecutor(installed={"ngrok"}), tmp_path / "ngrok-config.json")
    with pytest.raises(InvalidCredentialsError) as exc_info:
        await manager.create(8000)
    assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_create_list_and_stop_tunnel(monkeypatch, tmp_path: Path) -> None:
    spawned, _ = _patch_spawn(
        monkeypatch,
        [
            "t=2024 lvl=info msg=\"starting web service\"\n",
            "t=2024 lvl=info msg=\"started tunnel\" url=https://a1b2.ngrok-free.app\n",
        ],
    )
    manager = await _authenticated(tmp_path)

    tunnel = await manager.create(8000, subdomain="demo", region="eu")

    assert spawned == [
        ["ngrok", "http", "8000", "--subdomain", "demo", "--region", "eu", "--log", "stdout"]
    ]
    assert tunnel.public_url == "https://a1b2.ngrok-free.app"
    assert tunnel.local_url == "http://localhost:8000"
    assert [item.id for item in manager.list()] == [tunnel.id]
    assert manager.status()["tunnel_count"] == 1

    await manager.stop(tunnel.id)
    assert manager.list() == []
    assert tunnel.status == "stopped"
    with pytest.raises(NotFoundError):
        await manager.stop(tunnel.id)


@pytest.mark.asyncio
async def test_create_fails_when_ngrok_exits_early(monkeypatch, tmp_path: Path) -> None:
    _patch_spawn(monkeypatch, ["ERROR: authentication failed\n"], exit_code=1)
    manager = await _authenticated(tmp_path)

    with pytest.raises(ExternalToolError) as exc_info:
        await manager.create(8000)

    assert exc_info.value.extra["exit_code"] == 1
    assert "authentication failed" in exc_info.value.message
    assert manager.list() == []


@pytest.mark.asyncio
async def test_create_times_out_without_url(monkeypatch, tmp_path: Path) -> None:
    _patch_spawn(monkeypatch, ["starting...\n"])
    manager = await _authenticated(tmp_path, startup_timeout=0.1)

    with pytest.raises(ExternalToolError) as exc_info:
        await manager.create(8000)
    assert "timed out" in exc_info.value.message


@pytest.mark.asyncio
async def test_exited_process_is_forgotten_and_stop_all(monkeypatch, tmp_path: Path) -> None:
    _, processes = _patch_spawn(monkeypatch, ["url=https://x.ngrok.io\n"])
    manager = await _authenticated(tmp_path)

    await manager.create(8000)
    await manager.create(8001, region=None)
    await manager.create(8002)
    assert len(manager.list()) == 3

    processes[0].terminate()

    async def settled() -> None:
        while len(manager.list()) != 2:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(settled(), 1)
    assert [tunnel.port for tunnel in manager.list()] == [8001, 8002]

    assert await manager.stop_all() == 2
    assert manager.list() == []
