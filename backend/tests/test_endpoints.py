"""Tests for the HTTP endpoints, CORS and static file serving."""
import pytest
from fastapi.testclient import TestClient

from talkeos.config import AppConfig, get_config
from talkeos.main import app, create_app


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_rooms_empty(client):
    assert client.get("/rooms").json() == {"rooms": []}


def test_history_of_unknown_room_is_empty(client):
    response = client.get("/chat/nowhere/history")
    assert response.status_code == 200
    assert response.json() == {"roomId": "nowhere", "messages": []}


@pytest.mark.parametrize("limit", [0, 101, -5])
def test_history_limit_validated(client, limit):
    response = client.get(f"/chat/r1/history?limit={limit}")
    assert response.status_code == 422


def test_client_config(client):
    app.dependency_overrides[get_config] = lambda: AppConfig(
        client={"features": {"dark_mode": True}, "connection": {"max_reconnect_attempts": 2}}
    )
    try:
        body = client.get("/config/client").json()
    finally:
        app.dependency_overrides.pop(get_config, None)

    assert body["features"]["dark_mode"] is True
    assert body["features"]["typing_indicators"] is True
    assert body["connection"]["max_reconnect_attempts"] == 2
    assert body["room"]["default_id"] == "default"
    assert body["ui"]["typing_timeout"] == 3000


def test_cors_preflight_allowed():
    cors_app = create_app(AppConfig(server={"cors": {"origins": ["https://chat.example"]}}))
    with TestClient(cors_app) as test_client:
        response = test_client.options(
            "/health",
            headers={
                "Origin": "https://chat.example",
                "Access-Control-Request-Method": "GET",
            },
        )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "https://chat.example"


def test_cors_disabled():
    plain_app = create_app(AppConfig(server={"cors": {"enabled": False}}))
    with TestClient(plain_app) as test_client:
        response = test_client.get("/health", headers={"Origin": "https://chat.example"})
    assert "access-control-allow-origin" not in response.headers


def test_static_files_served(tmp_path):
    (tmp_path / "index.html").write_text("<h1>Talkeos</h1>", encoding="utf-8")
    static_app = create_app(AppConfig(static_dir=str(tmp_path)))

    with TestClient(static_app) as test_client:
        index = test_client.get("/")
        health = test_client.get("/health")

    assert index.status_code == 200
    assert "Talkeos" in index.text
    # API routes win over the static mount.
    assert health.json() == {"status": "ok"}


def test_websocket_available_alongside_static_files(tmp_path):
    (tmp_path / "index.html").write_text("<h1>Talkeos</h1>", encoding="utf-8")
    static_app = create_app(AppConfig(static_dir=str(tmp_path)))

    with TestClient(static_app) as test_client:
        with test_client.websocket_connect("/ws?room=static&username=alice") as ws:
            assert ws.receive_json()["type"] == "welcome"
