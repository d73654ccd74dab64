from pathlib import Path

from devdock.models.events import DashboardEvent, EventType
from devdock.models.operation import Operation, OperationKind, OperationStatus
from devdock.models.project import AddonService, ProjectConfig, ProjectRecord, ProjectStatus, Template


def test_project_defaults_and_paths(tmp_path: Path) -> None:
    project = ProjectRecord(name="demo", template=Template.LARAVEL, path=tmp_path / "demo")
    assert project.status == ProjectStatus.CREATING
    assert project.config.services == []
    assert project.src_path == tmp_path / "demo" / "src"
    assert project.docker_path == tmp_path / "demo" / "docker"
    assert project.compose_file == tmp_path / "demo" / "docker-compose.yml"
    assert project.env_file == tmp_path / "demo" / "src" / ".env"


def test_project_touch_updates_activity(tmp_path: Path) -> None:
    project = ProjectRecord(name="demo", template=Template.NODEJS, path=tmp_path)
    before = project.last_activity
    project.touch()
    assert project.last_activity >= before


def test_project_round_trips_through_json(tmp_path: Path) -> None:
    project = ProjectRecord(
        name="demo",
        template=Template.LARAVEL,
        path=tmp_path / "demo",
        ports={"app": 8000},
        config=ProjectConfig(services=[AddonService.REDIS]),
    )
    restored = ProjectRecord.model_validate(project.model_dump(mode="json"))
    assert restored == project
    assert restored.config.has(AddonService.REDIS)
    assert not restored.config.has(AddonService.MAILHOG)


def test_operation_finished_states() -> None:
    operation = Operation(project_id="p1", kind=OperationKind.START)
    assert operation.status is OperationStatus.PENDING
    assert not operation.status.finished
    assert OperationStatus.CANCELLED.finished
    assert OperationStatus.SUCCEEDED.finished


def test_dashboard_event_serializes_type_value() -> None:
    event = DashboardEvent(type=EventType.PROJECT_UPDATE, project_id="p1")
    assert event.model_dump(mode="json")["type"] == "project_update"
