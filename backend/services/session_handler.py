"""
Session Handler
One WhatsApp session: connection lifecycle, reconnect backoff and event fan-out.

States: disconnected -> connecting -> connected, or back to disconnected
(retry scheduled), failed, logged_out or error.

Each protocol event is processed in order by a single consumer task per
connection, then fanned out to:
- the push channel (room "session:<id>" or global)
- the audit log (fire-and-forget, written off the event loop)
- the webhook dispatcher
"""

import asyncio
import logging
import os
import shutil
from datetime import datetime
from typing import Any, Dict, Optional

import settings
from whatsapp_bridge.client import ProtocolClient, ProtocolHandle, close_quietly
from whatsapp_bridge.events import (
    DELIVERY_STATUS_MAP,
    LOGGED_OUT_STATUS_CODE,
    ConnectionUpdate,
    MessageReceiptUpdate,
    MessagesUpdate,
    MessagesUpsert,
    ProtocolEvent,
)

logger = logging.getLogger(__name__)

RECONNECT_BASE_DELAY_MS = 1000
RECONNECT_MAX_DELAY_MS = 10000

STATUS_DISCONNECTED = "disconnected"
STATUS_CONNECTING = "connecting"
STATUS_CONNECTED = "connected"
STATUS_FAILED = "failed"
STATUS_LOGGED_OUT = "logged_out"
STATUS_ERROR = "error"


def reconnect_delay_ms(retry_count: int) -> int:
    """Backoff before reconnect attempt `retry_count` (1-based): 1s, 2s, 4s, 8s, then 10s."""
    return min(RECONNECT_BASE_DELAY_MS * 2 ** (retry_count - 1), RECONNECT_MAX_DELAY_MS)


def session_room(session_id: str) -> str:
    return f"session:{session_id}"


class SessionHandler:
    """
    Owns one protocol connection for one session.

    Args:
        session_id: Operator-chosen session id
        protocol_client: Opens connections (BridgeClient in production)
        push: Push channel with an async emit(event, data, room=None)
        dispatcher: WebhookDispatcher (optional)
        event_log: EventLogService (optional, usually bound after startup)
        media_handler: MediaHandler for inbound media (optional)
        session_dir: Root directory for per-session credentials
        max_retries: Reconnect attempts before giving up with "failed"
    """

    def __init__(
        self,
        session_id: str,
        protocol_client: ProtocolClient,
        push,
        dispatcher=None,
        event_log=None,
        media_handler=None,
        session_dir: str = settings.SESSION_DIR,
        max_retries: int = settings.MAX_RECONNECT_RETRIES,
    ):
        self.session_id = session_id
        self.protocol_client = protocol_client
        self.push = push
        self.dispatcher = dispatcher
        self.event_log = event_log
        self.media_handler = media_handler
        self.max_retries = max_retries

        self.status = STATUS_DISCONNECTED
        self.handle: Optional[ProtocolHandle] = None
        self.user: Optional[Dict[str, Any]] = None
        self.qr: Optional[str] = None
        self.retry_count = 0
        self.is_reconnecting = False
        # Bumped by logout()/disconnect(); a connect that finishes under an
        # older generation is closed instead of adopted
        self._generation = 0

        self.auth_dir = os.path.join(session_dir, session_id)
        os.makedirs(self.auth_dir, exist_ok=True)

        self._consumer_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._background_tasks = set()

    @property
    def room(self) -> str:
        return session_room(self.session_id)

    def to_dict(self) -> dict:
        return {"id": self.session_id, "status": self.status, "user": self.user}

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self):
        """Open a new connection unless an attempt is already in progress."""
        if self.is_reconnecting:
            logger.info(f"Session {self.session_id} is already reconnecting, skipping...")
            return

        self.is_reconnecting = True
        generation = self._generation
        await self.update_status(STATUS_CONNECTING)

        try:
            os.makedirs(self.auth_dir, exist_ok=True)
            handle = await self.protocol_client.connect(self.session_id, self.auth_dir)
        except Exception as e:
            if generation != self._generation:
                logger.debug(f"Ignoring connect error for stopped session {self.session_id}: {e}")
                return
            self.is_reconnecting = False
            logger.error(f"Error starting session {self.session_id}: {e}", exc_info=True)
            await self.update_status(STATUS_ERROR)
            return

        if generation != self._generation:
            logger.info(f"Session {self.session_id} was stopped while connecting, dropping connection")
            await close_quietly(handle)
            return

        self.handle = handle
        self._consumer_task = asyncio.create_task(self._consume(handle))

    async def _consume(self, handle: ProtocolHandle):
        """Process one connection's event stream in order."""
        closed = False
        try:
            async for event in handle.events():
                await self.handle_event(event)
                if isinstance(event, ConnectionUpdate) and event.connection == "close":
                    closed = True
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Event stream error for session {self.session_id}: {e}", exc_info=True)

        # Stream ended without a close event: treat as a transient close
        if not closed and self.handle is handle:
            logger.warning(f"Event stream for session {self.session_id} ended without close event")
            await self._handle_close(status_code=None)

    async def _reconnect_after(self, delay_ms: int):
        await asyncio.sleep(delay_ms / 1000)
        try:
            await self.start()
        finally:
            if self._reconnect_task is asyncio.current_task():
                self._reconnect_task = None

    def _cancel_reconnect(self):
        task = self._reconnect_task
        self._reconnect_task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _cancel_consumer(self):
        task = self._consumer_task
        self._consumer_task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def logout(self):
        """
        Unlink the session and close the connection.

        Safe to call in any state. Cancels a pending reconnect.
        """
        self._generation += 1
        self.is_reconnecting = False
        self.retry_count = 0
        self._cancel_reconnect()
        self._cancel_consumer()

        handle, self.handle = self.handle, None
        if handle is not None:
            try:
                await handle.logout()
            except Exception as e:
                logger.debug(f"Ignoring logout error for {self.session_id}: {e}")
            await close_quietly(handle)

        self.user = None
        self.qr = None
        await self.update_status(STATUS_DISCONNECTED)

    async def disconnect(self):
        """Close the connection but keep credentials (application shutdown)."""
        self._generation += 1
        self.is_reconnecting = False
        self._cancel_reconnect()
        self._cancel_consumer()

        handle, self.handle = self.handle, None
        await close_quietly(handle)
        self.status = STATUS_DISCONNECTED

    def clear_session_folder(self):
        """Delete stored credentials so the next start pairs from scratch."""
        try:
            if os.path.exists(self.auth_dir):
                shutil.rmtree(self.auth_dir)
                logger.info(f"Session folder cleared: {self.auth_dir}")
        except OSError as e:
            logger.error(f"Failed to clear session folder: {e}")

    # =========================================================================
    # Event handling
    # =========================================================================

    async def handle_event(self, event: ProtocolEvent):
        try:
            if isinstance(event, ConnectionUpdate):
                await self._on_connection_update(event)
            elif isinstance(event, MessagesUpsert):
                await self._on_messages_upsert(event)
            elif isinstance(event, MessagesUpdate):
                await self._on_messages_update(event)
            elif isinstance(event, MessageReceiptUpdate):
                await self._on_receipt_update(event)
            else:
                await self._dispatch(event.category, event.payload)
        except Exception as e:
            logger.error(f"Error handling {event.category} for {self.session_id}: {e}", exc_info=True)

    async def _on_connection_update(self, event: ConnectionUpdate):
        await self._dispatch(event.category, event.payload)

        if event.qr:
            self.qr = event.qr_image or event.qr
            qr_data = {"sessionId": self.session_id, "qr": self.qr}
            await self._emit("session:qr", qr_data, room=self.room)
            # Also global: the dashboard may not have subscribed yet
            await self._emit("session:qr", qr_data)
            await self._emit("session:update", {"id": self.session_id, "status": "scan_qr"})
            logger.info(f"QR code emitted for session {self.session_id}")

        if event.connection == "close":
            await self._handle_close(event.status_code)
        elif event.connection == "open":
            self.is_reconnecting = False
            self.retry_count = 0
            self.user = event.user or (self.handle.user if self.handle else None)
            self.qr = None
            logger.info(f"Session {self.session_id} connected")
            await self.update_status(STATUS_CONNECTED)
            await self._emit("session:ready", {"sessionId": self.session_id, "user": self.user}, room=self.room)

    async def _handle_close(self, status_code: Optional[int]):
        self.is_reconnecting = False
        self.handle = None
        should_reconnect = status_code != LOGGED_OUT_STATUS_CODE

        logger.info(
            f"Connection closed for {self.session_id}. Status: {status_code}, "
            f"Reconnecting: {should_reconnect}"
        )
        await self.update_status(STATUS_DISCONNECTED)
        self._cancel_reconnect()

        if should_reconnect and self.retry_count < self.max_retries:
            self.retry_count += 1
            delay = reconnect_delay_ms(self.retry_count)
            logger.info(
                f"Reconnecting {self.session_id} in {delay}ms "
                f"(attempt {self.retry_count}/{self.max_retries})"
            )
            self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))
        elif self.retry_count >= self.max_retries:
            logger.error(f"Max retries reached for {self.session_id}")
            await self.update_status(STATUS_FAILED)
            self.retry_count = 0
        else:
            logger.info(f"Session {self.session_id} logged out, clearing session folder for fresh QR")
            self.clear_session_folder()
            await self.update_status(STATUS_LOGGED_OUT)
            self.retry_count = 0

    async def _on_messages_upsert(self, event: MessagesUpsert):
        if event.type != "notify":
            return

        for msg in event.messages:
            key = msg.get("key") or {}
            remote_jid = key.get("remoteJid") or ""
            is_group = remote_jid.endswith("@g.us")

            # One webhook per message
            await self._dispatch(event.category, {
                "type": event.type,
                "messages": [msg],
                "isGroup": is_group,
                "chatType": "group" if is_group else "private",
            })

            if key.get("fromMe"):
                continue

            media_path = None
            if self.media_handler is not None and self.handle is not None:
                media_path = await self.media_handler.save_media(self.session_id, self.handle, msg)

            received = {"sessionId": self.session_id, "message": msg, "media": media_path}
            await self._emit("message:received", received, room=self.room)
            await self._emit("message:received", received)

            sender = remote_jid.split("@")[0]
            message_type = next(iter(msg.get("message") or {}), "unknown")
            text = f"Msg from {sender} ({message_type})"
            if media_path:
                text += " [MEDIA SAVED]"
            await self.log_event("message", text, {"from": sender, "type": message_type, "mediaPath": media_path})

    async def _on_messages_update(self, event: MessagesUpdate):
        for update in event.updates:
            raw_status = (update.get("update") or {}).get("status")
            if not raw_status:
                continue
            try:
                status = DELIVERY_STATUS_MAP.get(int(raw_status), "pending")
            except (TypeError, ValueError):
                continue
            message_id = (update.get("key") or {}).get("id")
            await self._emit_message_status(message_id, status)

        await self._dispatch(event.category, event.payload)

    async def _on_receipt_update(self, event: MessageReceiptUpdate):
        for receipt in event.receipts:
            info = receipt.get("receipt") or {}
            if not (info.get("readTimestamp") or info.get("receiptTimestamp")):
                continue
            message_id = (receipt.get("key") or {}).get("id")
            if message_id:
                await self._emit_message_status(message_id, "read")

        await self._dispatch(event.category, event.payload)

    async def _emit_message_status(self, message_id: Optional[str], status: str):
        await self._emit("message:status", {
            "sessionId": self.session_id,
            "messageId": message_id,
            "status": status,
            "timestamp": int(datetime.utcnow().timestamp() * 1000),
        })
        if self.event_log is not None and message_id:
            self._spawn(asyncio.to_thread(self.event_log.update_message_status, message_id, status))

    async def _dispatch(self, category: str, data: Any):
        if self.dispatcher is None:
            return
        try:
            outcome = await self.dispatcher.send(self.session_id, category, data)
        except Exception as e:
            logger.error(f"[Webhook] Dispatch of {category} failed for {self.session_id}: {e}", exc_info=True)
            return

        if outcome is not None:
            logger.info(f"[Webhook] Sent {category}: {'SUCCESS' if outcome.success else 'FAILED'}")
            await self._emit("webhook:sent", outcome.to_dict())

    # =========================================================================
    # Status, push and audit
    # =========================================================================

    async def update_status(self, status: str):
        self.status = status
        await self._emit("session:status", {"sessionId": self.session_id, "status": status})
        await self.log_event("connection", f"Status changed to {status}", {"status": status})

    async def log_event(self, event_type: str, text: str, data: Optional[dict] = None):
        """Push an event:log entry and persist it in the background."""
        await self._emit("event:log", {
            "type": event_type,
            "sessionId": self.session_id,
            "text": text,
            "timestamp": datetime.utcnow().isoformat() + "Z",
        })
        if self.event_log is not None:
            self._spawn(asyncio.to_thread(self.event_log.log_event, self.session_id, event_type, text, data))

    async def _emit(self, event: str, data: dict, room: Optional[str] = None):
        try:
            await self.push.emit(event, data, room=room)
        except Exception as e:
            logger.warning(f"Failed to push {event} for {self.session_id}: {e}")

    def _spawn(self, coro):
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task):
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background log write failed for {self.session_id}: {error}")

    async def flush(self):
        """Wait for pending audit writes."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)
