"""
WhatsApp protocol capability interface and the bridge sidecar adapter.

The gateway never speaks the WhatsApp wire protocol itself. A session asks a
ProtocolClient for a connection and gets back a ProtocolHandle, which exposes
the ordered event stream and the handful of actions the gateway needs.

BridgeClient implements the interface against the WhatsApp bridge sidecar:
- REST calls (connect, send, presence, media, logout) over httpx
- the per-session event stream over a WebSocket (websockets)
"""

import asyncio
import base64
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Optional

import httpx
import websockets
from websockets.exceptions import ConnectionClosed

from whatsapp_bridge.events import ConnectionUpdate, ProtocolEvent, parse_event

logger = logging.getLogger(__name__)


class ProtocolError(Exception):
    """Raised when the bridge rejects a request or cannot be reached."""
    pass


class ProtocolHandle(ABC):
    """One live connection for one session."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        self.user: Optional[Dict[str, Any]] = None

    @abstractmethod
    def events(self) -> AsyncIterator[ProtocolEvent]:
        """Ordered stream of protocol events. Ends when the connection is gone."""

    @abstractmethod
    async def send(self, jid: str, content: Dict[str, Any]) -> Optional[str]:
        """Send a message and return the provider message id."""

    @abstractmethod
    async def send_presence(self, presence: str, jid: str) -> None:
        pass

    @abstractmethod
    async def download_media(self, message: Dict[str, Any]) -> Optional[bytes]:
        pass

    @abstractmethod
    async def logout(self) -> None:
        """Unlink the device on the far end."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the transport, keeping credentials."""


class ProtocolClient(ABC):
    @abstractmethod
    async def connect(self, session_id: str, auth_dir: str) -> ProtocolHandle:
        pass


class BridgeHandle(ProtocolHandle):
    """ProtocolHandle backed by the bridge sidecar."""

    def __init__(self, client: "BridgeClient", session_id: str):
        super().__init__(session_id)
        self._client = client
        self._websocket = None
        self._closed = False

    @property
    def _base(self) -> str:
        return f"/api/sessions/{self.session_id}"

    async def events(self) -> AsyncIterator[ProtocolEvent]:
        url = self._client.events_url(self.session_id)
        logger.info(f"[{self.session_id}] Opening bridge event stream {url}")

        self._websocket = await websockets.connect(
            url,
            additional_headers=self._client.headers,
            ping_interval=30,
            ping_timeout=10,
            close_timeout=5
        )
        try:
            async for raw in self._websocket:
                try:
                    frame = json.loads(raw)
                except (TypeError, ValueError):
                    logger.warning(f"[{self.session_id}] Ignoring non-JSON bridge frame")
                    continue

                event = parse_event(frame.get("event", ""), frame.get("data"))
                if event is None:
                    continue

                if isinstance(event, ConnectionUpdate) and event.connection == "open":
                    self.user = event.user

                yield event
        except ConnectionClosed as e:
            if not self._closed:
                logger.warning(f"[{self.session_id}] Bridge event stream closed: {e}")
        finally:
            await self._close_websocket()

    async def send(self, jid: str, content: Dict[str, Any]) -> Optional[str]:
        result = await self._client.request("POST", f"{self._base}/messages", {
            "jid": jid,
            "content": content,
        })
        key = result.get("key") or {}
        return result.get("messageId") or key.get("id")

    async def send_presence(self, presence: str, jid: str) -> None:
        await self._client.request("POST", f"{self._base}/presence", {
            "presence": presence,
            "jid": jid,
        })

    async def download_media(self, message: Dict[str, Any]) -> Optional[bytes]:
        result = await self._client.request("POST", f"{self._base}/media", {"message": message})
        data = result.get("data")
        if not data:
            return None
        return base64.b64decode(data)

    async def logout(self) -> None:
        await self._client.request("POST", f"{self._base}/logout")

    async def disconnect(self) -> None:
        self._closed = True
        await self._close_websocket()
        try:
            await self._client.request("POST", f"{self._base}/disconnect")
        except ProtocolError as e:
            logger.debug(f"[{self.session_id}] Bridge disconnect failed: {e}")

    async def _close_websocket(self):
        if self._websocket is not None:
            websocket, self._websocket = self._websocket, None
            try:
                await websocket.close()
            except Exception:
                logger.debug(f"[{self.session_id}] Error closing bridge websocket", exc_info=True)


class BridgeClient(ProtocolClient):
    """
    ProtocolClient for the WhatsApp bridge sidecar.

    Args:
        api_url: Bridge base URL (e.g. http://127.0.0.1:8080)
        api_secret: Optional bearer token the bridge expects
        timeout: Per-request timeout in seconds
    """

    def __init__(self, api_url: str, api_secret: Optional[str] = None, timeout: float = 30.0):
        self.api_url = api_url.rstrip("/")
        self.api_secret = api_secret
        self.client = httpx.AsyncClient(base_url=self.api_url, timeout=timeout)

    @property
    def headers(self) -> Dict[str, str]:
        headers = {}
        if self.api_secret:
            headers["Authorization"] = f"Bearer {self.api_secret}"
        return headers

    def events_url(self, session_id: str) -> str:
        ws_base = self.api_url.replace("https://", "wss://", 1).replace("http://", "ws://", 1)
        return f"{ws_base}/api/sessions/{session_id}/events"

    async def request(self, method: str, path: str, payload: Optional[dict] = None) -> dict:
        try:
            response = await self.client.request(method, path, json=payload, headers=self.headers)
        except httpx.HTTPError as e:
            raise ProtocolError(f"Bridge request {method} {path} failed: {e}") from e

        if response.status_code >= 400:
            raise ProtocolError(
                f"Bridge request {method} {path} returned {response.status_code}: {response.text[:200]}"
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}

    async def connect(self, session_id: str, auth_dir: str) -> ProtocolHandle:
        logger.info(f"[{session_id}] Requesting bridge connection (auth dir: {auth_dir})")
        await self.request("POST", f"/api/sessions/{session_id}/connect", {"authDir": auth_dir})
        return BridgeHandle(self, session_id)

    async def close(self):
        await self.client.aclose()


async def close_quietly(handle: Optional[ProtocolHandle]):
    """Disconnect a handle, logging instead of raising."""
    if handle is None:
        return
    try:
        await asyncio.wait_for(handle.disconnect(), timeout=10)
    except Exception as e:
        logger.debug(f"[{handle.session_id}] Error during disconnect: {e}")
