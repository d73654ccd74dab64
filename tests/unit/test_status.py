from __future__ import annotations

import json
from pathlib import Path

import pytest

from devdock.core.docker_manager import DockerManager
from devdock.core.events import EventBus
from devdock.core.status import (
    ComposeOutputError,
    StatusPoller,
    aggregate_status,
    parse_compose_ps,
)
from devdock.db.projects import ProjectStore
from devdock.models.events import EventType
from devdock.models.project import ProjectStatus
from tests.support.fakes import FakeExecutor, compose_ps_line, make_record


def test_parse_compose_ps_json_lines_and_array() -> None:
    lines = "\n".join([compose_ps_line("app"), compose_ps_line("db", "exited")])
    containers = parse_compose_ps(lines)
    assert [(c.name, c.service, c.state) for c in containers] == [
        ("demo_app", "app", "running"),
        ("demo_db", "db", "exited"),
    ]

    array = json.dumps([{"Name": "demo_app", "Service": "app", "State": "Running"}])
    assert parse_compose_ps(array)[0].running


def test_parse_compose_ps_skips_noise_but_rejects_garbage() -> None:
    noisy = "WARN[0000] something odd\n" + compose_ps_line("app")
    assert len(parse_compose_ps(noisy)) == 1
    assert parse_compose_ps("   ") == []
    with pytest.raises(ComposeOutputError):
        parse_compose_ps("not json at all\nstill not")


def test_aggregate_status_counts_any_running_container() -> None:
    containers = parse_compose_ps("\n".join([compose_ps_line("app"), compose_ps_line("db", "exited")]))
    assert aggregate_status(containers) is ProjectStatus.RUNNING
    assert aggregate_status(containers[1:]) is ProjectStatus.STOPPED
    assert aggregate_status([]) is ProjectStatus.STOPPED


async def _poller(tmp_path: Path, executor: FakeExecutor) -> tuple[StatusPoller, ProjectStore, EventBus]:
    store = ProjectStore(tmp_path / "projects.json")
    bus = EventBus()
    return StatusPoller(store, DockerManager(executor), bus), store, bus


@pytest.mark.asyncio
async def test_refresh_persists_running_and_reports_partial(tmp_path: Path) -> None:
    executor = FakeExecutor()
    executor.on(
        "docker", "compose", "ps",
        stdout="\n".join([compose_ps_line("app"), compose_ps_line("db", "exited")]),
    )
    poller, store, bus = await _poller(tmp_path, executor)
    subscription = bus.subscribe()
    project = await store.add(make_record(tmp_path, status=ProjectStatus.STOPPED))

    report = await poller.refresh(project.id)

    assert report.outcome == "ok"
    assert report.partial
    assert (report.running, report.total) == (1, 2)
    stored = await store.get(project.id)
    assert stored is not None
    assert stored.status is ProjectStatus.RUNNING
    assert stored.containers == {"demo_app": "running", "demo_db": "exited"}
    assert stored.last_checked is not None
    assert subscription.queue.get_nowait().type is EventType.PROJECT_UPDATE


@pytest.mark.asyncio
async def test_refresh_leaves_transient_and_ready_status(tmp_path: Path) -> None:
    executor = FakeExecutor()
    executor.on("docker", "compose", "ps", stdout="")
    poller, store, _ = await _poller(tmp_path, executor)

    starting = await store.add(make_record(tmp_path, "busy", status=ProjectStatus.STARTING))
    ready = await store.add(make_record(tmp_path, "fresh", status=ProjectStatus.READY))

    await poller.refresh_all()

    assert (await store.get(starting.id)).status is ProjectStatus.STARTING  # type: ignore[union-attr]
    assert (await store.get(ready.id)).status is ProjectStatus.READY  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_refresh_does_not_persist_when_status_unknown(tmp_path: Path) -> None:
    executor = FakeExecutor()
    executor.on(
        "docker", "compose", "ps",
        exit_code=1,
        stderr="Cannot connect to the Docker daemon at unix:///var/run/docker.sock",
    )
    poller, store, bus = await _poller(tmp_path, executor)
    subscription = bus.subscribe()
    project = await store.add(make_record(tmp_path, status=ProjectStatus.RUNNING))
    missing = await store.add(make_record(tmp_path, "nocompose", with_compose=False))

    report = await poller.refresh(project.id)
    assert report.outcome == "docker_unavailable"
    assert report.status is None
    assert (await store.get(project.id)).status is ProjectStatus.RUNNING  # type: ignore[union-attr]

    missing_report = await poller.refresh(missing.id)
    assert missing_report.outcome == "compose_missing"
    assert subscription.queue.empty()


@pytest.mark.asyncio
async def test_refresh_reports_parse_failure(tmp_path: Path) -> None:
    executor = FakeExecutor()
    executor.on("docker", "compose", "ps", stdout="garbage")
    poller, store, _ = await _poller(tmp_path, executor)
    project = await store.add(make_record(tmp_path, status=ProjectStatus.RUNNING))

    report = await poller.refresh(project.id)
    assert report.outcome == "parse_failure"
    assert report.as_dict()["status"] is None
