"""
tests.test_api
~~~~~~~~~~~~~~

REST 与 WebSocket 接口集成测试。

使用 ``TestClient`` 走完整的 lifespan，把流水线中的 Gemini 生成器替换为
``FakeGenerator``，不发起任何外部请求。
"""
from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from counsel_relay.core.config import settings
from counsel_relay.core.logging import connection_id_ctx_var
from counsel_relay.main import app
from counsel_relay.schemas.events import HistoryEntry
from counsel_relay.services.relay_server import RelayServer

from conftest import FakeGenerator


@pytest.fixture()
def fake_generator() -> FakeGenerator:
    return FakeGenerator(default="听起来这件事让你很难受。")


@pytest.fixture()
def client(fake_generator: FakeGenerator) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        app.state.relay_server.pipeline.generator = fake_generator
        yield test_client


def _relay() -> RelayServer:
    return app.state.relay_server


def _enter(client: TestClient, name: str, role: str, room: str) -> str:
    """以一个新浏览器的身份入场（不携带之前的会话 Cookie）。"""
    client.cookies.clear()
    response = client.post("/api/enter", json={"name": name, "role": role, "room": room})
    assert response.status_code == 200
    return response.json()["data"]["token"]


class TestRoomEndpoints:
    """测试房间与入场接口。"""

    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["pending_drafts"] == 0

    def test_create_room(self, client: TestClient) -> None:
        response = client.post("/api/rooms")

        assert response.status_code == 200
        room_id = response.json()["data"]["room_id"]
        assert room_id in _relay().registry

    def test_enter_sets_cookie_and_returns_token(self, client: TestClient) -> None:
        response = client.post("/api/enter", json={"name": " A ", "role": "client", "room": "R7"})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["name"] == "A"
        assert data["role"] == "client"
        assert response.cookies.get(settings.SESSION_COOKIE_NAME) == data["token"]
        assert _relay().sessions.get(data["token"]) == {"name": "A", "role": "client", "room": "R7"}

    def test_enter_with_blank_name_is_rejected(self, client: TestClient) -> None:
        response = client.post("/api/enter", json={"name": "   ", "role": "client", "room": "R7"})

        assert response.status_code == 400
        assert response.json()["code"] == 400

    def test_enter_with_unknown_role_is_rejected(self, client: TestClient) -> None:
        response = client.post("/api/enter", json={"name": "A", "role": "admin", "room": "R7"})

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == 400
        assert body["data"] is None
        assert "role" in body["msg"]

    def test_enter_without_body_fields_is_rejected(self, client: TestClient) -> None:
        response = client.post("/api/enter", json={"name": "A"})

        assert response.status_code == 400
        assert response.json()["code"] == 400

    def test_repeat_enter_revokes_previous_token(self, client: TestClient) -> None:
        first = _enter(client, "A", "client", "R7")

        response = client.post("/api/enter", json={"name": "A", "role": "client", "room": "R8"})

        second = response.json()["data"]["token"]
        assert _relay().sessions.get(first) is None
        assert _relay().sessions.get(second) == {"name": "A", "role": "client", "room": "R8"}
        assert len(_relay().sessions) == 1

    def test_room_info(self, client: TestClient) -> None:
        _enter(client, "A", "client", "R7")

        response = client.get("/api/rooms/R7")

        data = response.json()["data"]
        assert data == {"room_id": "R7", "online_count": 0, "has_client": False, "has_counselor": False}

    def test_unknown_room_is_404(self, client: TestClient) -> None:
        response = client.get("/api/rooms/nope")

        assert response.status_code == 404
        assert response.json()["msg"] == "房间不存在"


class TestHistoryEndpoint:
    """测试房间历史的访问控制。"""

    def _seed(self) -> None:
        room = _relay().registry.ensure("R7")
        room.history.append(HistoryEntry(role="client", name="A", text="I feel worthless"))
        room.history.append(HistoryEntry(role="ai", text="draft"))
        room.history.append(HistoryEntry(role="counselor", name="Kim", text="That sounds really hard"))

    def test_requires_session(self, client: TestClient) -> None:
        self._seed()

        assert client.get("/api/rooms/R7/history").status_code == 403

    def test_other_room_is_forbidden(self, client: TestClient) -> None:
        self._seed()
        token = _enter(client, "B", "client", "R8")

        assert client.get(f"/api/rooms/R7/history?token={token}").status_code == 403

    def test_client_does_not_see_drafts(self, client: TestClient) -> None:
        self._seed()
        _enter(client, "A", "client", "R7")

        data = client.get("/api/rooms/R7/history").json()["data"]

        assert [m["role"] for m in data["messages"]] == ["client", "counselor"]
        assert data["total"] == 2

    def test_counselor_sees_drafts_with_limit(self, client: TestClient) -> None:
        self._seed()
        token = _enter(client, "Kim", "counselor", "R7")

        data = client.get(f"/api/rooms/R7/history?token={token}&limit=2").json()["data"]

        assert [m["role"] for m in data["messages"]] == ["ai", "counselor"]


class TestWebSocketRelay:
    """测试完整的 WebSocket 咨询流程。"""

    def test_client_message_draft_and_final(self, client: TestClient, fake_generator: FakeGenerator) -> None:
        client_token = _enter(client, "A", "client", "R7")
        counselor_token = _enter(client, "Kim", "counselor", "R7")

        with client.websocket_connect(f"/ws?token={client_token}") as client_ws:
            assert client_ws.receive_json()["event"] == "system"
            with client.websocket_connect(f"/ws?token={counselor_token}") as counselor_ws:
                assert counselor_ws.receive_json()["event"] == "system"
                assert client_ws.receive_json()["event"] == "system"

                client_ws.send_json({"event": "client_message", "data": "I feel worthless"})

                for ws in (client_ws, counselor_ws):
                    message = ws.receive_json()
                    assert message["event"] == "message"
                    assert message["data"]["text"] == "I feel worthless"
                    assert message["data"]["role"] == "client"

                draft = counselor_ws.receive_json()
                assert draft == {
                    "event": "ai_draft",
                    "data": {"text": fake_generator.default, "ts": draft["data"]["ts"]},
                }

                counselor_ws.send_json({"event": "counselor_send_final", "data": "That sounds really hard"})

                final = client_ws.receive_json()
                assert final["event"] == "message"
                assert final["data"]["role"] == "counselor"
                assert final["data"]["text"] == "That sounds really hard"

    def test_session_cookie_identifies_connection(self, client: TestClient) -> None:
        _enter(client, "A", "client", "R7")

        with client.websocket_connect("/ws") as ws:
            notice = ws.receive_json()

        assert notice["event"] == "system"
        assert "A" in notice["data"]["text"]

    def test_legacy_join_event(self, client: TestClient) -> None:
        client.cookies.clear()

        with client.websocket_connect("/ws") as ws:
            ws.send_json({"event": "join", "data": {"name": "A", "room": "R9", "role": "client"}})
            notice = ws.receive_json()

        assert notice["event"] == "system"
        assert "A" in notice["data"]["text"]

    def test_disconnect_clears_membership(self, client: TestClient) -> None:
        token = _enter(client, "Kim", "counselor", "R7")

        with client.websocket_connect(f"/ws?token={token}") as ws:
            ws.receive_json()
            assert _relay().registry.get("R7").info().has_counselor is True

        assert client.get("/api/rooms/R7").json()["data"]["online_count"] == 0

    def test_join_runs_with_connection_id_in_log_context(self, client: TestClient) -> None:
        """入场日志所在的上下文已带上连接 ID。"""
        token = _enter(client, "A", "client", "R7")
        relay = _relay()
        seen: list[tuple[str, str]] = []
        original_join = relay.join

        def spy_join(session, identity):  # type: ignore[no-untyped-def]
            seen.append((connection_id_ctx_var.get(), session.connection_id))
            return original_join(session, identity)

        relay.join = spy_join  # type: ignore[method-assign]
        with client.websocket_connect(f"/ws?token={token}") as ws:
            ws.receive_json()

        assert len(seen) == 1
        assert seen[0][0] == seen[0][1]
