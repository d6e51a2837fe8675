"""
End-to-end tests for the HTTP routes and the push channel, run through
FastAPI's TestClient against an in-memory store.
"""
import pytest
from typing import Any, Dict

from fastapi.testclient import TestClient

from livechat.api.websocket import PushChannelHandler
from livechat.main import create_app
from livechat.models.events import CLIENT_ENVELOPE_TYPES
from livechat.session import InMemorySessionStore

pytestmark = pytest.mark.integration

API = "/api"


@pytest.fixture
def app_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def client(test_settings, app_store):
    app = create_app(test_settings, store=app_store)
    with TestClient(app) as test_client:
        yield test_client


def receive_until(ws, event_type: str, limit: int = 10) -> Dict[str, Any]:
    """Read frames until one of ``event_type`` arrives."""
    for _ in range(limit):
        frame = ws.receive_json()
        if frame["type"] == event_type:
            return frame
    raise AssertionError(f"No {event_type} frame within {limit} frames")


def escalate(client, session_id: str, **body):
    payload = {"sessionId": session_id, "userEmail": "user@example.com", "messages": []}
    payload.update(body)
    return client.post(f"{API}/chatbot/escalate", json=payload)


# ===========================
# Health / info
# ===========================

def test_health_endpoints(client):
    assert client.get("/health").json()["status"] == "healthy"
    assert client.get("/health/live").json()["status"] == "alive"

    ready = client.get("/health/ready").json()
    assert ready["status"] == "healthy"
    assert ready["services"]["session_store"] == "healthy"


def test_root_reports_store(client):
    data = client.get("/").json()
    assert data["session_management"]["store_type"] == "InMemorySessionStore"
    assert data["endpoints"]["websocket"] == "/ws/chat"


# ===========================
# Escalation
# ===========================

def test_offline_escalation_scenario(client):
    """No admin online: pending, nobody notified, delayed-reply notice."""
    response = escalate(
        client,
        "chat-http-1",
        messages=[{"sender": "user", "text": "I need help"}, {"sender": "bot", "text": "One moment"}]
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "pending_admin"
    assert body["adminOnline"] is False
    assert body["escalated"] is True
    assert body["notifiedAdmins"] == 0
    assert "user@example.com" in body["escalationMessage"]


def test_escalation_repeat_is_idempotent(client):
    first = escalate(client, "chat-http-2").json()
    second = escalate(client, "chat-http-2").json()

    assert second["escalated"] is False
    assert second["escalationMessage"] == first["escalationMessage"]

    poll = client.get(f"{API}/chatbot/admin-response/chat-http-2").json()
    assert len(poll["messages"]) == 1


def test_escalation_requires_contact(client):
    response = client.post(f"{API}/chatbot/escalate", json={"sessionId": "chat-http-3"})

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "contact_required"


def test_invalid_payloads_are_rejected(client):
    assert escalate(client, "bad id").status_code == 422
    assert escalate(client, "chat-http-4", userEmail="nope").status_code == 422
    response = client.post(f"{API}/chatbot/send-to-admin", json={"sessionId": "chat-http-4", "message": "   "})
    assert response.status_code == 422


def test_escalating_resolved_session_conflicts(client):
    escalate(client, "chat-http-5")
    client.post(f"{API}/admin/chat-sessions/chat-http-5/close", json={"adminId": "admin-1"})

    response = escalate(client, "chat-http-5")
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "session_resolved"


# ===========================
# HTTP fallback send / poll
# ===========================

def test_send_to_admin_and_poll(client):
    escalate(client, "chat-http-6")
    cursor = client.get(f"{API}/chatbot/admin-response/chat-http-6").json()["messages"][-1]["id"]

    sent = client.post(
        f"{API}/chatbot/send-to-admin",
        json={"sessionId": "chat-http-6", "message": "still waiting"}
    )
    assert sent.status_code == 202
    message = sent.json()["message"]
    assert message["sender"] == "user"

    poll = client.get(
        f"{API}/chatbot/admin-response/chat-http-6",
        params={"lastMessageId": cursor}
    ).json()
    assert poll["hasNewMessages"] is True
    assert [m["id"] for m in poll["messages"]] == [message["id"]]
    assert poll["sessionStatus"] == "pending_admin"

    admin_only = client.get(
        f"{API}/chatbot/admin-response/chat-http-6",
        params={"sender": "admin"}
    ).json()
    assert admin_only["hasNewMessages"] is False


def test_send_to_unknown_session(client):
    response = client.post(
        f"{API}/chatbot/send-to-admin",
        json={"sessionId": "chat-ghost", "message": "hello?"}
    )
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "session_not_found"


def test_send_over_length_limit(client, test_settings):
    escalate(client, "chat-http-7")
    response = client.post(
        f"{API}/chatbot/send-to-admin",
        json={"sessionId": "chat-http-7", "message": "x" * (test_settings.max_message_length + 1)}
    )
    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "invalid_message"


# ===========================
# Presence
# ===========================

def test_admin_heartbeat_and_status(client):
    assert client.get(f"{API}/chatbot/admin-status").json() == {"isOnline": False, "onlineAdmins": []}

    response = client.post(f"{API}/chatbot/admin-heartbeat", json={"adminId": "admin-1"})
    assert response.status_code == 204

    status = client.get(f"{API}/chatbot/admin-status").json()
    assert status == {"isOnline": True, "onlineAdmins": ["admin-1"]}

    escalation = escalate(client, "chat-http-8").json()
    assert escalation["adminOnline"] is True


# ===========================
# Admin routes
# ===========================

def test_admin_session_lifecycle(client):
    escalate(client, "chat-http-9")

    listed = client.get(f"{API}/admin/chat-sessions").json()
    assert [s["id"] for s in listed] == ["chat-http-9"]
    assert listed[0]["status"] == "pending_admin"

    reply = client.post(
        f"{API}/admin/chat-sessions/chat-http-9/respond",
        json={"adminId": "admin-1", "message": "Hello from support"}
    )
    assert reply.status_code == 200
    assert reply.json()["session"]["assignedAdminId"] == "admin-1"
    assert reply.json()["session"]["status"] == "active"

    stale = client.post(
        f"{API}/admin/chat-sessions/chat-http-9/respond",
        json={"adminId": "admin-2", "message": "Me too"}
    )
    assert stale.status_code == 409
    assert stale.json()["detail"]["code"] == "stale_assignment"

    closed = client.post(f"{API}/admin/chat-sessions/chat-http-9/close", json={"adminId": "admin-1"})
    assert closed.status_code == 200
    assert closed.json()["session"]["status"] == "resolved"

    assert client.get(f"{API}/admin/chat-sessions").json() == []
    everything = client.get(f"{API}/admin/chat-sessions", params={"includeResolved": "true"}).json()
    assert [s["id"] for s in everything] == ["chat-http-9"]

    detail = client.get(f"{API}/admin/chat-sessions/chat-http-9").json()
    assert detail["status"] == "resolved"
    assert [m["sender"] for m in detail["messages"]] == ["bot", "admin", "admin"]


def test_awaiting_reply_lists_offline_requests(client):
    escalate(client, "chat-http-10")
    client.post(f"{API}/chatbot/send-to-admin", json={"sessionId": "chat-http-10", "message": "hello?"})

    waiting = client.get(f"{API}/admin/awaiting-reply")
    assert waiting.status_code == 200
    assert [s["id"] for s in waiting.json()] == ["chat-http-10"]
    assert waiting.json()[0]["unreadCount"] == 2
    assert waiting.json()[0]["awaitingSince"] is not None

    client.post(
        f"{API}/admin/chat-sessions/chat-http-10/respond",
        json={"adminId": "admin-1", "message": "Sorry for the wait"}
    )
    assert client.get(f"{API}/admin/awaiting-reply").json() == []


def test_admin_session_not_found(client):
    response = client.get(f"{API}/admin/chat-sessions/chat-ghost")
    assert response.status_code == 404


# ===========================
# Push channel
# ===========================

def test_dispatch_table_covers_every_envelope(client):
    handler: PushChannelHandler = client.app.state.push_handler
    assert set(handler.handlers) == set(CLIENT_ENVELOPE_TYPES)


def test_malformed_frames_keep_connection_open(client):
    with client.websocket_connect("/ws/chat") as ws:
        assert ws.receive_json()["type"] == "connected"

        ws.send_text("not json at all")
        error = ws.receive_json()
        assert error["type"] == "error"
        assert error["data"]["code"] == "invalid_frame"

        ws.send_text("   ")
        ws.send_json({"type": "user_message", "data": {"sessionId": "chat-ghost", "text": "hi"}})
        error = ws.receive_json()
        assert error["data"]["code"] == "session_not_found"

        ws.send_json({"type": "join_user_session", "data": {"sessionId": "chat-ws-0"}})
        assert ws.receive_json()["type"] == "session_data"


def test_admin_join_and_reply_reaches_user(client):
    """Admin joins a pending session and replies: active, assigned, pushed to the user."""
    escalate(client, "chat-ws-1")

    with client.websocket_connect("/ws/chat") as user_ws, client.websocket_connect("/ws/chat") as admin_ws:
        receive_until(user_ws, "connected")
        receive_until(admin_ws, "connected")

        user_ws.send_json({"type": "join_user_session", "data": {"sessionId": "chat-ws-1"}})
        assert receive_until(user_ws, "session_data")["data"]["status"] == "pending_admin"

        admin_ws.send_json({"type": "join_admin_session", "data": {"adminId": "admin-1", "sessionId": "chat-ws-1"}})
        snapshot = receive_until(admin_ws, "session_data")["data"]
        assert snapshot["status"] == "active"
        assert snapshot["assignedAdminId"] == "admin-1"

        admin_ws.send_json({
            "type": "admin_message",
            "data": {"sessionId": "chat-ws-1", "adminId": "admin-1", "text": "How can I help?"}
        })
        pushed = receive_until(user_ws, "admin_message")
        assert pushed["data"]["text"] == "How can I help?"
        confirmed = receive_until(admin_ws, "message_sent")
        assert confirmed["data"]["id"] == pushed["data"]["id"]

        user_ws.send_json({"type": "user_message", "data": {"sessionId": "chat-ws-1", "text": "My ticket is broken"}})
        forwarded = receive_until(admin_ws, "new_user_message")
        assert forwarded["data"]["text"] == "My ticket is broken"
        assert receive_until(user_ws, "message_sent")["data"]["id"] == forwarded["data"]["id"]


def test_escalation_request_pushed_to_admin_feed(client):
    with client.websocket_connect("/ws/chat") as admin_ws:
        receive_until(admin_ws, "connected")
        admin_ws.send_json({"type": "join_admin_session", "data": {"adminId": "admin-1"}})
        assert receive_until(admin_ws, "active_sessions")["data"]["sessions"] == []

        body = escalate(client, "chat-ws-2").json()
        assert body["adminOnline"] is True
        assert body["notifiedAdmins"] == 1

        request = receive_until(admin_ws, "escalation_request")
        assert request["data"]["id"] == "chat-ws-2"
        sessions = receive_until(admin_ws, "active_sessions")["data"]["sessions"]
        assert [s["id"] for s in sessions] == ["chat-ws-2"]


def test_push_drop_then_http_fallback_then_reconnect(client):
    """Messages sent over HTTP while push is down show up exactly once in the next snapshot."""
    escalate(client, "chat-ws-3")

    with client.websocket_connect("/ws/chat") as ws:
        receive_until(ws, "connected")
        ws.send_json({"type": "join_user_session", "data": {"sessionId": "chat-ws-3"}})
        receive_until(ws, "session_data")

    sent_ids = []
    for text in ("first while offline", "second while offline"):
        response = client.post(
            f"{API}/chatbot/send-to-admin",
            json={"sessionId": "chat-ws-3", "message": text}
        )
        assert response.status_code == 202
        sent_ids.append(response.json()["message"]["id"])

    with client.websocket_connect("/ws/chat") as ws:
        receive_until(ws, "connected")
        ws.send_json({"type": "join_user_session", "data": {"sessionId": "chat-ws-3"}})
        snapshot = receive_until(ws, "session_data")["data"]

    ids = [m["id"] for m in snapshot["messages"]]
    for message_id in sent_ids:
        assert ids.count(message_id) == 1
    assert ids == sorted(ids)


def test_user_cannot_message_resolved_session_over_push(client):
    escalate(client, "chat-ws-4")
    client.post(f"{API}/admin/chat-sessions/chat-ws-4/close", json={"adminId": "admin-1"})

    with client.websocket_connect("/ws/chat") as ws:
        receive_until(ws, "connected")
        ws.send_json({"type": "user_message", "data": {"sessionId": "chat-ws-4", "text": "hello?"}})
        error = receive_until(ws, "error")
        assert error["data"]["code"] == "session_resolved"


def test_close_pushes_notice_to_connected_user(client, test_settings):
    escalate(client, "chat-ws-5")

    with client.websocket_connect("/ws/chat") as ws:
        receive_until(ws, "connected")
        ws.send_json({"type": "join_user_session", "data": {"sessionId": "chat-ws-5"}})
        receive_until(ws, "session_data")

        client.post(f"{API}/admin/chat-sessions/chat-ws-5/close", json={"adminId": "admin-1"})

        notice = receive_until(ws, "admin_message")
        assert notice["data"]["text"] == test_settings.session_closed_notice
        final = receive_until(ws, "session_data")
        assert final["data"]["status"] == "resolved"
