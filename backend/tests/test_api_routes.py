"""
API tests: sessions, webhooks, messages and logs routes against in-memory
services (fake protocol client, mocked webhook transport, temp database).
"""

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from app import create_app
from services.message_service import MessageService
from services.session_manager import SessionManager
from services.webhook_config_store import WebhookConfigStore
from services.webhook_dispatcher import WebhookDispatcher

HOOK_URL = "https://hooks.example.com/wa"


@pytest.fixture
def webhook_requests():
    return []


@pytest.fixture
def services(fake_protocol_client, push, session_dir, event_log, webhook_requests):
    def hook(request):
        webhook_requests.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True})

    dispatcher = WebhookDispatcher(
        WebhookConfigStore(session_dir),
        event_log=event_log,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(hook)),
    )
    manager = SessionManager(fake_protocol_client, push, dispatcher=dispatcher,
                             event_log=event_log, session_dir=session_dir)
    return {
        "session_manager": manager,
        "webhook_dispatcher": dispatcher,
        "message_service": MessageService(manager, event_log=event_log, push=push),
        "event_log": event_log,
    }


@pytest.fixture
def client(services):
    app = create_app()
    for name, service in services.items():
        setattr(app.state, name, service)

    with TestClient(app) as test_client:
        yield test_client
        test_client.portal.call(services["session_manager"].shutdown)


def create(client, session_id="sales"):
    response = client.post("/api/sessions", json={"sessionId": session_id})
    assert response.status_code == 200
    return response.json()


class TestHealth:

    def test_health(self, client):
        create(client)
        data = client.get("/api/health").json()
        assert data["status"] == "healthy"
        assert data["sessions"] == 1
        assert data["connected"] == 0


class TestSessions:

    def test_create_list_get(self, client):
        body = create(client)
        assert body["data"] == {"id": "sales", "status": "connecting", "user": None}

        listing = client.get("/api/sessions").json()
        assert [s["id"] for s in listing["data"]] == ["sales"]
        assert listing["data"][0] == {"id": "sales", "status": "connecting", "user": None}

        detail = client.get("/api/sessions/sales").json()
        assert detail["data"]["qr"] is None

    def test_invalid_session_id(self, client):
        response = client.post("/api/sessions", json={"sessionId": "bad id!"})
        assert response.status_code == 422
        assert response.json()["success"] is False

    def test_unknown_session(self, client):
        assert client.get("/api/sessions/ghost").status_code == 404
        assert client.post("/api/sessions/ghost/logout").status_code == 404

        response = client.delete("/api/sessions/ghost")
        assert response.status_code == 404
        assert response.json() == {"success": False, "message": "Session not found"}

    def test_logout_and_delete(self, client, fake_protocol_client):
        create(client)

        assert client.post("/api/sessions/sales/logout").json()["success"] is True
        assert fake_protocol_client.last_handle.logged_out is True

        assert client.delete("/api/sessions/sales").status_code == 200
        assert client.get("/api/sessions").json()["data"] == []


class TestWebhooks:

    def test_configure_and_read(self, client):
        response = client.post("/api/webhook/sales", json={
            "webhookUrl": HOOK_URL, "events": ["messages.upsert"],
        })
        assert response.status_code == 200
        assert response.json()["data"] == {"webhookUrl": HOOK_URL, "events": ["messages.upsert"]}

        listing = client.get("/api/webhook").json()
        assert listing["data"] == [{"sessionId": "sales", "url": HOOK_URL, "events": ["messages.upsert"]}]
        assert "connection.update" in listing["availableEvents"]

        assert client.get("/api/webhook/sales").json()["data"]["webhookUrl"] == HOOK_URL
        assert client.get("/api/webhook/other").json()["data"]["webhookUrl"] is None

    def test_validation(self, client):
        unknown = client.post("/api/webhook/sales", json={"webhookUrl": HOOK_URL, "events": ["nope"]})
        assert unknown.status_code == 400
        assert "nope" in unknown.json()["message"]

        bad_url = client.post("/api/webhook/sales", json={"webhookUrl": "ftp://x", "events": []})
        assert bad_url.status_code == 400

    def test_empty_url_removes(self, client):
        client.post("/api/webhook/sales", json={"webhookUrl": HOOK_URL})
        client.post("/api/webhook/sales", json={"webhookUrl": ""})

        assert client.get("/api/webhook").json()["data"] == []
        assert client.delete("/api/webhook/sales").status_code == 404

    def test_delete(self, client):
        client.post("/api/webhook/sales", json={"webhookUrl": HOOK_URL})
        assert client.delete("/api/webhook/sales").status_code == 200
        assert client.get("/api/webhook").json()["data"] == []

    def test_test_endpoint_ignores_filter(self, client, webhook_requests, event_log):
        assert client.post("/api/webhook/sales/test").status_code == 404

        client.post("/api/webhook/sales", json={"webhookUrl": HOOK_URL, "events": ["call"]})
        body = client.post("/api/webhook/sales/test").json()

        assert body["success"] is True
        assert body["data"]["event"] == "webhook.test"
        assert webhook_requests[0]["event"] == "webhook.test"
        assert event_log.count_webhook_history(session_id="sales") == 1


class TestMessages:

    def test_send_text_and_status(self, client, fake_protocol_client):
        create(client)

        response = client.post("/api/messages/send-text", json={
            "sessionId": "sales", "chatId": "15551234567", "text": "hello",
        })
        assert response.status_code == 200
        body = response.json()
        assert body["messageId"] == "MSG1"
        assert body["recipient"] == "15551234567@s.whatsapp.net"
        assert fake_protocol_client.last_handle.sent[0][1] == {"text": "hello"}

        status = client.get("/api/messages/status/MSG1").json()
        assert status["status"] == "sent"
        assert status["sessionId"] == "sales"
        assert client.get("/api/messages/status/nope").status_code == 404

    def test_unknown_session_is_404(self, client):
        response = client.post("/api/messages/send-text", json={
            "sessionId": "ghost", "chatId": "15551234567", "text": "hello",
        })
        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_not_connected_is_409(self, client, fake_protocol_client):
        fake_protocol_client.fail = True
        create(client)

        response = client.post("/api/messages/typing/start", json={
            "sessionId": "sales", "chatId": "15551234567",
        })
        assert response.status_code == 409

    def test_bad_media_is_400(self, client):
        create(client)

        missing = client.post("/api/messages/send-image", json={"sessionId": "sales", "chatId": "1"})
        assert missing.status_code == 400

        invalid = client.post("/api/messages/send-document", json={
            "sessionId": "sales", "chatId": "1", "document": "%%%not-base64%%%",
        })
        assert invalid.status_code == 400

    def test_typing(self, client, fake_protocol_client):
        create(client)
        payload = {"sessionId": "sales", "chatId": "15551234567"}

        assert client.post("/api/messages/typing/start", json=payload).status_code == 200
        assert client.post("/api/messages/typing/stop", json=payload).status_code == 200
        assert [p for p, _ in fake_protocol_client.last_handle.presence] == ["composing", "paused"]


class TestLogs:

    def test_outgoing_log_and_status_patch(self, client):
        create(client)
        client.post("/api/messages/send-text", json={
            "sessionId": "sales", "chatId": "15551234567", "text": "hello",
        })

        page = client.get("/api/logs/outgoing", params={"sessionId": "sales"}).json()
        assert page["pagination"]["total"] == 1
        assert page["data"][0]["message_id"] == "MSG1"

        forward = client.patch("/api/logs/outgoing/MSG1", json={"status": "read"}).json()
        assert forward["changed"] == 1
        backward = client.patch("/api/logs/outgoing/MSG1", json={"status": "delivered"}).json()
        assert backward["changed"] == 0

        assert client.patch("/api/logs/outgoing/nope", json={"status": "read"}).status_code == 404
        assert client.patch("/api/logs/outgoing/MSG1", json={"status": "seen"}).status_code == 422

        cleared = client.delete("/api/logs/outgoing").json()
        assert cleared["deleted"] == 1

    def test_events_and_webhook_history(self, client, event_log):
        event_log.log_event("sales", "connection", "Status changed to connected")
        event_log.log_webhook("sales", "call", HOOK_URL, False, error="timeout")

        events = client.get("/api/logs/events", params={"eventType": "connection", "limit": 5}).json()
        assert events["pagination"]["limit"] == 5
        assert events["data"][0]["message"] == "Status changed to connected"

        history = client.get("/api/logs/webhook").json()
        assert history["data"][0]["error"] == "timeout"
        assert client.delete("/api/logs/webhook").json()["deleted"] == 1

    def test_settings(self, client):
        assert client.get("/api/logs/settings").json()["data"]["retention_days"] == "30"

        updated = client.post("/api/logs/settings", json={"retention_days": 7, "logging_enabled": False}).json()
        assert updated["data"]["retention_days"] == "7"
        assert updated["data"]["logging_enabled"] == "false"

        assert client.post("/api/logs/settings", json={}).status_code == 400
        assert client.post("/api/logs/settings", json={"max_records": 0}).status_code == 422

    def test_manual_cleanup(self, client):
        body = client.post("/api/logs/cleanup").json()
        assert body["success"] is True
        assert set(body["deleted"]) == {"outgoing_messages", "live_events", "webhook_history"}

    def test_event_log_not_ready(self, services):
        app = create_app()
        for name, service in services.items():
            setattr(app.state, name, service)
        app.state.event_log = None

        with TestClient(app) as test_client:
            response = test_client.get("/api/logs/events")

        assert response.status_code == 503
        assert response.json()["success"] is False
