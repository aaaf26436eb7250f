"""
Tests for the WhatsApp bridge adapter: event parsing and the REST side of
BridgeClient / BridgeHandle.
"""

import base64
import json

import httpx
import pytest

from whatsapp_bridge.client import BridgeClient, BridgeHandle, ProtocolError, close_quietly
from whatsapp_bridge.events import (
    Call,
    ConnectionUpdate,
    MessageReceiptUpdate,
    MessagesUpdate,
    MessagesUpsert,
    WEBHOOK_EVENT_CATEGORIES,
    parse_event,
)


class TestParseEvent:

    def test_connection_update(self):
        event = parse_event("connection.update", {
            "connection": "close",
            "lastDisconnect": {"statusCode": "401"},
        })
        assert isinstance(event, ConnectionUpdate)
        assert event.connection == "close"
        assert event.status_code == 401
        assert event.is_logged_out is True

    def test_connection_update_with_qr(self):
        event = parse_event("connection.update", {"qr": "2@abc", "qrImage": "data:image/png;base64,xyz"})
        assert event.qr == "2@abc"
        assert event.qr_image == "data:image/png;base64,xyz"
        assert event.status_code is None

    def test_messages(self):
        upsert = parse_event("messages.upsert", {"type": "append", "messages": {"key": {"id": "A"}}})
        assert isinstance(upsert, MessagesUpsert)
        assert upsert.type == "append"
        assert upsert.messages == [{"key": {"id": "A"}}]

        update = parse_event("messages.update", [{"key": {"id": "A"}, "update": {"status": 3}}])
        assert isinstance(update, MessagesUpdate)
        assert len(update.updates) == 1

        receipts = parse_event("message-receipt.update", None)
        assert isinstance(receipts, MessageReceiptUpdate)
        assert receipts.receipts == []

    def test_passthrough_and_unknown(self):
        call = parse_event("call", [{"from": "1@s.whatsapp.net"}])
        assert isinstance(call, Call)
        assert call.payload == [{"from": "1@s.whatsapp.net"}]

        assert parse_event("creds.update", {}) is None
        assert len(WEBHOOK_EVENT_CATEGORIES) == 12


class Bridge:
    """MockTransport handler standing in for the bridge REST API."""

    def __init__(self, routes=None):
        self.requests = []
        self.routes = routes or {}

    def __call__(self, request: httpx.Request):
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, request.url.path, body, request.headers))
        result = self.routes.get(request.url.path, {})
        if isinstance(result, httpx.Response):
            return result
        return httpx.Response(200, json=result)


def make_client(bridge, api_secret="s3cret"):
    client = BridgeClient("http://bridge.local:8080/", api_secret=api_secret)
    client.client = httpx.AsyncClient(base_url=client.api_url, transport=httpx.MockTransport(bridge))
    return client


class TestBridgeClient:

    def test_urls_and_headers(self):
        client = BridgeClient("https://bridge.local/", api_secret="s3cret")
        assert client.events_url("sales") == "wss://bridge.local/api/sessions/sales/events"
        assert client.headers == {"Authorization": "Bearer s3cret"}
        assert BridgeClient("http://bridge.local").headers == {}

    @pytest.mark.asyncio
    async def test_connect(self):
        bridge = Bridge()
        client = make_client(bridge)

        handle = await client.connect("sales", "/data/sessions/sales")

        assert isinstance(handle, BridgeHandle)
        method, path, body, headers = bridge.requests[0]
        assert (method, path) == ("POST", "/api/sessions/sales/connect")
        assert body == {"authDir": "/data/sessions/sales"}
        assert headers["authorization"] == "Bearer s3cret"

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        bridge = Bridge({"/api/sessions/sales/connect": httpx.Response(503, text="bridge busy")})
        client = make_client(bridge)

        with pytest.raises(ProtocolError, match="503"):
            await client.connect("sales", "/tmp/sales")

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused")

        client = BridgeClient("http://bridge.local")
        client.client = httpx.AsyncClient(base_url=client.api_url, transport=httpx.MockTransport(refuse))

        with pytest.raises(ProtocolError):
            await client.request("POST", "/api/sessions/sales/connect")


class TestBridgeHandle:

    @pytest.mark.asyncio
    async def test_send_returns_message_id(self):
        bridge = Bridge({"/api/sessions/sales/messages": {"messageId": "3EB0ABC"}})
        handle = BridgeHandle(make_client(bridge), "sales")

        message_id = await handle.send("1@s.whatsapp.net", {"text": "hi"})

        assert message_id == "3EB0ABC"
        assert bridge.requests[0][2] == {"jid": "1@s.whatsapp.net", "content": {"text": "hi"}}

    @pytest.mark.asyncio
    async def test_send_falls_back_to_key_id(self):
        bridge = Bridge({"/api/sessions/sales/messages": {"key": {"id": "3EB0DEF"}}})
        handle = BridgeHandle(make_client(bridge), "sales")

        assert await handle.send("1@s.whatsapp.net", {"text": "hi"}) == "3EB0DEF"

    @pytest.mark.asyncio
    async def test_presence_and_logout(self):
        bridge = Bridge()
        handle = BridgeHandle(make_client(bridge), "sales")

        await handle.send_presence("composing", "1@s.whatsapp.net")
        await handle.logout()

        assert [(m, p) for m, p, _, _ in bridge.requests] == [
            ("POST", "/api/sessions/sales/presence"),
            ("POST", "/api/sessions/sales/logout"),
        ]
        assert bridge.requests[0][2] == {"presence": "composing", "jid": "1@s.whatsapp.net"}

    @pytest.mark.asyncio
    async def test_download_media(self):
        encoded = base64.b64encode(b"\x89PNG").decode()
        bridge = Bridge({"/api/sessions/sales/media": {"data": encoded}})
        handle = BridgeHandle(make_client(bridge), "sales")

        assert await handle.download_media({"key": {"id": "A"}}) == b"\x89PNG"

    @pytest.mark.asyncio
    async def test_disconnect_tolerates_bridge_errors(self):
        bridge = Bridge({"/api/sessions/sales/disconnect": httpx.Response(500)})
        handle = BridgeHandle(make_client(bridge), "sales")

        await handle.disconnect()
        await close_quietly(handle)
        await close_quietly(None)

        assert bridge.requests[-1][1] == "/api/sessions/sales/disconnect"
