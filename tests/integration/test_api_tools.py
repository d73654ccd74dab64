from pathlib import Path

from fastapi.testclient import TestClient

from devdock.api.app import create_app
from tests.support.fakes import FakeExecutor, make_settings


def test_dependency_routes(tmp_path: Path) -> None:
    executor = FakeExecutor(installed={"docker"})
    executor.on("docker", "--version", stdout="Docker version 24.0.7\n")
    with TestClient(create_app(make_settings(tmp_path), executor=executor)) as client:
        report = client.get("/api/v1/dependencies/check").json()["data"]
        docker = next(dep for dep in report["dependencies"] if dep["key"] == "docker")
        assert docker["version"] == "Docker version 24.0.7"
        assert report["status"]["missing"] > 0
        assert {item["port"] for item in report["ports"]} >= {3000, 8000}

        command = client.post("/api/v1/dependencies/install/git", json={}).json()["data"]
        assert command["dependency"] == "git"
        bad = client.post("/api/v1/dependencies/install/git", json={"method": "pacman"})
        assert bad.status_code == 400
        assert "available_methods" in bad.json()

        fixes = client.post("/api/v1/dependencies/fix").json()["data"]["fixes"]
        assert "Node.js not installed" in [fix["issue"] for fix in fixes]
    assert not executor.ran("sudo", "apt-get")


def test_template_routes(tmp_path: Path) -> None:
    with TestClient(create_app(make_settings(tmp_path), executor=FakeExecutor())) as client:
        templates = client.get("/api/v1/templates").json()["data"]
        assert {template["id"] for template in templates} == {"laravel", "nodejs"}

        stubs = client.get("/api/v1/templates/nodejs/stubs").json()["data"]
        assert stubs

        missing = client.get("/api/v1/templates/rails")
        assert missing.status_code == 404
        assert missing.json()["success"] is False


def test_laravel_and_service_routes_need_laravel_project(tmp_path: Path) -> None:
    with TestClient(create_app(make_settings(tmp_path), executor=FakeExecutor())) as client:
        missing = client.get("/api/v1/laravel/nope/queue/status")
        assert missing.status_code == 404
        assert missing.json() == {
            "success": False,
            "error": "Laravel project not found",
            "project_id": "nope",
        }
        assert client.post("/api/v1/laravel/nope/cache/clear", json={}).status_code == 404
        assert client.get("/api/v1/laravel/nope/supervisor/status").status_code == 404
        assert client.post("/api/v1/laravel/nope/supervisor/program/php-fpm/restart").status_code == 404
        assert (
            client.put("/api/v1/laravel/nope/supervisor/config", json={"config": "[x]"}).status_code
            == 404
        )
        assert client.get("/api/v1/services/nope/health").status_code == 404
        assert client.get("/api/v1/services/status").json() == {"success": True, "data": {}}


def test_terminal_route_requires_project(tmp_path: Path) -> None:
    with TestClient(create_app(make_settings(tmp_path), executor=FakeExecutor())) as client:
        response = client.post("/api/v1/terminal/create", json={"project_id": "nope"})
        assert response.status_code == 404
        assert client.delete("/api/v1/terminal/terminal_missing").status_code == 404
