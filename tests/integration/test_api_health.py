from pathlib import Path

from fastapi.testclient import TestClient

from devdock.api.app import create_app
from tests.support.fakes import FakeExecutor, make_settings


def test_health_endpoint(tmp_path: Path) -> None:
    with TestClient(create_app(make_settings(tmp_path), executor=FakeExecutor())) as client:
        response = client.get("/api/v1/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "projects": 0, "subscribers": 0}


def test_websocket_subscribe_logs(tmp_path: Path) -> None:
    with TestClient(create_app(make_settings(tmp_path), executor=FakeExecutor())) as client:
        with client.websocket_connect("/api/v1/ws") as websocket:
            websocket.send_text("not json")
            websocket.send_json({"type": "subscribe_logs", "project_id": "abc"})
            assert websocket.receive_json() == {"type": "subscribed", "project_id": "abc"}
            assert client.get("/api/v1/health").json()["subscribers"] == 1
