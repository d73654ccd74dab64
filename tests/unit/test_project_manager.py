from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from devdock.api.deps import AppContainer
from devdock.core.project_manager import CreateProjectInput, detect_template
from devdock.errors import ConflictError, ExternalToolError, NotFoundError, ValidationError
from devdock.models.operation import OperationStatus
from devdock.models.project import AddonService, ProjectConfig, ProjectStatus, Template
from tests.support.fakes import FakeExecutor, compose_ps_line, make_container


async def _create(container: AppContainer, name: str = "shop", **kwargs: object):  # type: ignore[no-untyped-def]
    project, operation = await container.projects.create(
        CreateProjectInput(name=name, template=Template.NODEJS, **kwargs)  # type: ignore[arg-type]
    )
    finished = await container.tasks.wait(operation.id)
    return await container.projects.get(project.id), finished


@pytest.mark.asyncio
async def test_create_nodejs_project_scaffolds_files(tmp_path: Path) -> None:
    executor = FakeExecutor()
    container = make_container(tmp_path, executor)

    project, operation = await _create(
        container, config=ProjectConfig(services=[AddonService.REDIS])
    )

    assert operation.status is OperationStatus.SUCCEEDED
    assert project.status is ProjectStatus.READY
    assert project.progress is None
    assert project.ports == {"app": 3000, "db": 3306, "redis": 6379}

    package = json.loads((project.src_path / "package.json").read_text(encoding="utf-8"))
    assert package["name"] == "shop"
    assert "shop" in (project.src_path / "index.js").read_text(encoding="utf-8")
    compose = project.compose_file.read_text(encoding="utf-8")
    assert "shop_redis" in compose
    assert "{{" not in compose
    env = project.env_file.read_text(encoding="utf-8")
    assert "APP_NAME=shop" in env
    assert "REDIS_HOST=redis" in env

    assert executor.ran("npm", "install")
    assert executor.cwds[executor.calls.index(["npm", "install"])] == project.src_path

    events = await container.history.list_events(operation_id=operation.id)
    steps = [event.payload.get("step") for event in events]
    assert "Setting up Docker" in steps


@pytest.mark.asyncio
async def test_create_validates_name_and_uniqueness(tmp_path: Path) -> None:
    container = make_container(tmp_path)
    with pytest.raises(ValidationError):
        await container.projects.create(CreateProjectInput(name="bad name", template=Template.NODEJS))

    await _create(container)
    with pytest.raises(ValidationError) as exc_info:
        await container.projects.create(CreateProjectInput(name="shop", template=Template.NODEJS))
    assert exc_info.value.message == "Project name already exists"
    assert exc_info.value.status_code == 400

    occupied = container.settings.projects_dir / "taken"
    occupied.mkdir(parents=True)
    (occupied / "README").write_text("x", encoding="utf-8")
    with pytest.raises(ConflictError):
        await container.projects.create(CreateProjectInput(name="taken", template=Template.NODEJS))


@pytest.mark.asyncio
async def test_second_project_gets_next_free_ports(tmp_path: Path) -> None:
    container = make_container(tmp_path)
    first, _ = await _create(container, "one")
    second, _ = await _create(container, "two")
    assert first.ports == {"app": 3000, "db": 3306}
    assert second.ports == {"app": 3001, "db": 3307}


@pytest.mark.asyncio
async def test_concurrent_creates_get_disjoint_ports(tmp_path: Path) -> None:
    container = make_container(tmp_path)

    created = await asyncio.gather(
        *(
            container.projects.create(CreateProjectInput(name=f"app{index}", template=Template.NODEJS))
            for index in range(8)
        )
    )
    for _, operation in created:
        await container.tasks.wait(operation.id)

    port_sets = [set(project.ports.values()) for project, _ in created]
    for index, ports in enumerate(port_sets):
        for other in port_sets[index + 1 :]:
            assert ports.isdisjoint(other)
    assert set().union(*port_sets) == set(range(3000, 3008)) | set(range(3306, 3314))
    assert len(await container.projects.list()) == 8


@pytest.mark.asyncio
async def test_laravel_redis_block_follows_enabled_services(tmp_path: Path) -> None:
    container = make_container(tmp_path)

    with_redis, operation = await container.projects.create(
        CreateProjectInput(
            name="demo",
            template=Template.LARAVEL,
            config=ProjectConfig(services=[AddonService.REDIS]),
        )
    )
    assert (await container.tasks.wait(operation.id)).status is OperationStatus.SUCCEEDED
    assert with_redis.ports == {"app": 8000, "db": 3306, "vite": 5173, "redis": 6379}
    compose = with_redis.compose_file.read_text(encoding="utf-8")
    assert "  redis:\n" in compose
    assert "supervisor.conf" in compose
    assert "[program:laravel-queue]" in (with_redis.docker_path / "supervisor.conf").read_text(
        encoding="utf-8"
    )
    assert "{{" not in compose

    plain, operation = await container.projects.create(
        CreateProjectInput(name="plain", template=Template.LARAVEL)
    )
    await container.tasks.wait(operation.id)
    assert plain.ports == {"app": 8001, "db": 3307, "vite": 5174}
    assert "  redis:\n" not in plain.compose_file.read_text(encoding="utf-8")


@pytest.mark.asyncio
async def test_failed_laravel_scaffold_marks_error(tmp_path: Path) -> None:
    executor = FakeExecutor()
    executor.on("composer", "create-project", exit_code=1, stderr="Could not resolve host")
    container = make_container(tmp_path, executor)

    project, operation = await container.projects.create(
        CreateProjectInput(name="blog", template=Template.LARAVEL)
    )
    finished = await container.tasks.wait(operation.id)

    assert finished.status is OperationStatus.FAILED
    assert "Could not resolve host" in (finished.error or "")
    stored = await container.projects.get(project.id)
    assert stored.status is ProjectStatus.ERROR
    assert stored.ports == {"app": 8000, "db": 3306, "vite": 5173}


@pytest.mark.asyncio
async def test_start_and_stop_drive_compose(tmp_path: Path) -> None:
    executor = FakeExecutor()
    container = make_container(tmp_path, executor)
    project, _ = await _create(container)

    started = await container.tasks.wait((await container.projects.start(project.id)).id)
    assert started.status is OperationStatus.SUCCEEDED
    assert (await container.projects.get(project.id)).status is ProjectStatus.RUNNING
    assert executor.ran("docker", "compose", "up", "-d", "--build")

    stopped = await container.tasks.wait((await container.projects.stop(project.id)).id)
    assert stopped.status is OperationStatus.SUCCEEDED
    assert (await container.projects.get(project.id)).status is ProjectStatus.STOPPED
    assert executor.ran("docker", "compose", "down")


@pytest.mark.asyncio
async def test_start_retries_without_cache(tmp_path: Path) -> None:
    executor = FakeExecutor()
    executor.on("docker", "compose", "up", "-d", "--build", exit_code=1, stderr="layer failed")
    container = make_container(tmp_path, executor)
    project, _ = await _create(container)

    started = await container.tasks.wait((await container.projects.start(project.id)).id)

    assert started.status is OperationStatus.SUCCEEDED
    assert executor.ran("docker", "compose", "build", "--no-cache")
    assert executor.calls[-1] == ["docker", "compose", "up", "-d"]


@pytest.mark.asyncio
async def test_lifecycle_calls_conflict_while_busy(tmp_path: Path) -> None:
    container = make_container(tmp_path)
    project, operation = await container.projects.create(
        CreateProjectInput(name="busy", template=Template.NODEJS)
    )

    with pytest.raises(ConflictError):
        await container.projects.start(project.id)
    with pytest.raises(ConflictError):
        await container.projects.write_env(project.id, "A=1\n")
    with pytest.raises(ConflictError):
        await container.projects.update(project.id, ports={"app": 4000})

    await container.tasks.wait(operation.id)


@pytest.mark.asyncio
async def test_update_ports_checks_conflicts_and_regenerates(tmp_path: Path) -> None:
    container = make_container(tmp_path)
    first, _ = await _create(container, "one")
    second, _ = await _create(container, "two")

    with pytest.raises(ConflictError):
        await container.projects.update(second.id, ports={"app": first.ports["app"]})
    with pytest.raises(ValidationError):
        await container.projects.update(second.id, ports={"vite": 5173})
    with pytest.raises(ValidationError):
        await container.projects.update(second.id, ports={"app": second.ports["db"]})

    updated = await container.projects.update(
        second.id, ports={"app": 4100}, custom_domain="two.test", regenerate_docker=True
    )
    assert updated.ports["app"] == 4100
    assert updated.custom_domain == "two.test"
    assert '"4100:3000"' in updated.compose_file.read_text(encoding="utf-8")

    cleared = await container.projects.update(second.id, custom_domain=None)
    assert cleared.custom_domain is None
    assert cleared.ports["app"] == 4100


@pytest.mark.asyncio
async def test_env_read_and_write(tmp_path: Path) -> None:
    container = make_container(tmp_path)
    project, _ = await _create(container)

    assert "APP_NAME=shop" in await container.projects.get_env(project.id)
    await container.projects.write_env(project.id, "APP_NAME=renamed\n")
    assert await container.projects.get_env(project.id) == "APP_NAME=renamed\n"

    project.env_file.unlink()
    with pytest.raises(NotFoundError):
        await container.projects.get_env(project.id)


@pytest.mark.asyncio
async def test_status_and_logs(tmp_path: Path) -> None:
    executor = FakeExecutor()
    executor.on("docker", "compose", "ps", stdout=compose_ps_line("app", project="shop"))
    executor.on("docker", "logs", stdout="listening on 3000\n")
    container = make_container(tmp_path, executor)
    project, _ = await _create(container)

    report = await container.projects.status(project.id)
    assert report.status is ProjectStatus.RUNNING
    assert (await container.projects.get(project.id)).status is ProjectStatus.RUNNING

    assert await container.projects.logs(project.id) == "listening on 3000"
    assert executor.calls[-1] == ["docker", "logs", "--tail=200", "shop_app"]
    await container.projects.logs(project.id, "db", lines=5)
    assert executor.calls[-1] == ["docker", "logs", "--tail=5", "shop_db"]

    executor.on("docker", "logs", exit_code=1, stderr="No such container: shop_nope")
    with pytest.raises(ExternalToolError):
        await container.projects.logs(project.id, "nope")


@pytest.mark.asyncio
async def test_artisan_requires_laravel_project(tmp_path: Path) -> None:
    container = make_container(tmp_path)
    project, _ = await _create(container)
    with pytest.raises(NotFoundError):
        await container.projects.artisan(project.id, "migrate")


@pytest.mark.asyncio
async def test_check_ports_reports_registry_and_host_conflicts(tmp_path: Path) -> None:
    executor = FakeExecutor()
    executor.on("lsof", "-i", ":5432", stdout="postgres 1 user TCP *:5432 (LISTEN)\n")
    executor.on("lsof", "-i", ":3000", exit_code=1)
    container = make_container(tmp_path, executor)
    await _create(container, "one")

    conflicts = await container.projects.check_ports({"app": 3000, "db": 5432})
    assert [(c.service, c.conflicting_project) for c in conflicts] == [
        ("app", "one"),
        ("db", "System/Other Process"),
    ]
    with pytest.raises(ValidationError):
        await container.projects.check_ports({"app": 0})


@pytest.mark.asyncio
async def test_delete_removes_directory_and_record(tmp_path: Path) -> None:
    executor = FakeExecutor()
    container = make_container(tmp_path, executor)
    project, _ = await _create(container)

    deleted = await container.projects.delete(project.id)

    assert deleted.id == project.id
    assert not project.path.exists()
    assert executor.ran("docker", "compose", "down")
    with pytest.raises(NotFoundError):
        await container.projects.get(project.id)


@pytest.mark.asyncio
async def test_discover_registers_unknown_directories(tmp_path: Path) -> None:
    container = make_container(tmp_path)
    legacy = container.settings.projects_dir / "legacy"
    (legacy / "src").mkdir(parents=True)
    (legacy / "docker-compose.yml").write_text("services: {}\n", encoding="utf-8")
    (legacy / "src" / "package.json").write_text("{}", encoding="utf-8")
    (container.settings.projects_dir / "notes").mkdir()

    discovered = await container.projects.discover()

    assert [project.name for project in discovered] == ["legacy"]
    assert discovered[0].template is Template.NODEJS
    assert discovered[0].discovered is True
    assert discovered[0].status is ProjectStatus.STOPPED
    assert discovered[0].ports == {"app": 3000, "db": 3306}
    assert await container.projects.discover() == []


def test_detect_template(tmp_path: Path) -> None:
    (tmp_path / "src").mkdir()
    assert detect_template(tmp_path) is Template.LARAVEL
    (tmp_path / "src" / "package.json").write_text("{}", encoding="utf-8")
    assert detect_template(tmp_path) is Template.NODEJS
    (tmp_path / "src" / "artisan").write_text("", encoding="utf-8")
    assert detect_template(tmp_path) is Template.LARAVEL
