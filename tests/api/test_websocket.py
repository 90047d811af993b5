"""Socket endpoint tests (FastAPI TestClient; lifespan runs inside the context manager)."""

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from reelsync.infrastructure.security.jwt import create_access_token
from reelsync.main import app


@pytest.fixture
def sync_client() -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client


def _socket_url(token: str) -> str:
    return f"/socket.io?token={token}"


def test_socket_without_token_is_closed_with_policy_violation(sync_client: TestClient) -> None:
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with sync_client.websocket_connect("/socket.io") as ws:
            ws.receive_json()
    assert exc_info.value.code == 1008


def test_socket_with_invalid_token_is_closed(sync_client: TestClient) -> None:
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with sync_client.websocket_connect(_socket_url("not-a-jwt")) as ws:
            ws.receive_json()
    assert exc_info.value.code == 1008


def test_socket_greets_and_answers_ping(sync_client: TestClient, token: str) -> None:
    with sync_client.websocket_connect(_socket_url(token)) as ws:
        hello = ws.receive_json()
        assert hello["event"] == "connected"
        assert hello["data"]["transport"] == "websocket"
        assert hello["data"]["sid"]

        ws.send_text("not json")
        ws.send_json({"event": "ping", "data": {}})
        assert ws.receive_json() == {"event": "pong", "data": {}}


def test_status_counts_open_sessions(sync_client: TestClient, token: str) -> None:
    with sync_client.websocket_connect(_socket_url(token)) as first:
        first.receive_json()
        with sync_client.websocket_connect(_socket_url(token)) as second:
            second.receive_json()
            response = sync_client.get("/api/v1/ws/status")
            assert response.json() == {"total_connections": 2, "path": "/socket.io"}

    assert sync_client.get("/api/v1/ws/status").json()["total_connections"] == 0


def test_published_change_reaches_every_session(sync_client: TestClient, token: str, auth_headers: dict) -> None:
    other_token = create_access_token({"sub": "user-2", "role": "Editor"})
    with sync_client.websocket_connect(_socket_url(token)) as first:
        first.receive_json()
        with sync_client.websocket_connect(_socket_url(other_token)) as second:
            second.receive_json()

            response = sync_client.post(
                "/api/v1/changes",
                json={"event": "comment:created", "data": {"id": "c1", "projectId": "p1"}},
                headers=auth_headers,
            )

            assert response.status_code == 202
            assert response.json() == {"accepted": True, "connections": 2}
            expected = {"event": "comment:created", "data": {"id": "c1", "projectId": "p1"}}
            assert first.receive_json() == expected
            assert second.receive_json() == expected
