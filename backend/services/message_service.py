"""
Message Service
Sends outgoing messages through a session's connection and records each
attempt in the outgoing message log.
"""

import asyncio
import base64
import logging
import re
from datetime import datetime
from typing import Any, Dict, Optional

from services.errors import SessionNotConnectedError, SessionNotFoundError

logger = logging.getLogger(__name__)

DATA_URL_PREFIX = re.compile(r"^data:[^;]+;base64,")


def to_jid(chat_id: str) -> str:
    """Phone numbers without a domain are personal chats."""
    chat_id = (chat_id or "").strip()
    return chat_id if "@" in chat_id else f"{chat_id}@s.whatsapp.net"


def strip_data_url(value: str) -> str:
    """Accept both data URLs and raw base64, returning raw base64."""
    raw = DATA_URL_PREFIX.sub("", value.strip())
    # Validate early so a bad payload is a 400, not a bridge error
    base64.b64decode(raw, validate=True)
    return raw


class MessageService:
    def __init__(self, session_manager, event_log=None, push=None):
        self.session_manager = session_manager
        self.event_log = event_log
        self.push = push

    def set_event_log(self, event_log):
        self.event_log = event_log

    def _get_handle(self, session_id: str):
        handler = self.session_manager.get_session(session_id)
        if handler is None:
            raise SessionNotFoundError(session_id)
        if handler.handle is None:
            raise SessionNotConnectedError(session_id)
        return handler.handle

    async def _send(self, session_id: str, chat_id: str, message_type: str,
                    content: Dict[str, Any], summary: str, endpoint: str) -> dict:
        jid = to_jid(chat_id)
        try:
            handle = self._get_handle(session_id)
            message_id = await handle.send(jid, content)
        except Exception as e:
            logger.error(f"Failed to send {message_type} via {session_id} to {jid}: {e}")
            await self._record(
                session_id=session_id,
                recipient=jid,
                message_type=message_type,
                content=summary,
                status="failed",
                api_endpoint=endpoint,
                api_status=500,
                error=str(e),
            )
            raise

        logger.info(f"Sent {message_type} via {session_id} to {jid} (id={message_id})")
        await self._record(
            session_id=session_id,
            recipient=jid,
            message_type=message_type,
            content=summary,
            message_id=message_id,
            status="sent",
            api_endpoint=endpoint,
            api_status=200,
            api_response={"success": True},
        )

        if self.push is not None:
            try:
                await self.push.emit("outgoing:message", {
                    "session_id": session_id,
                    "recipient": jid,
                    "message_type": message_type,
                    "content": summary,
                    "message_id": message_id,
                    "api_endpoint": endpoint,
                    "api_status": 200,
                    "status": "sent",
                    "created_at": datetime.utcnow().isoformat() + "Z",
                })
            except Exception as e:
                logger.warning(f"Failed to push outgoing:message: {e}")

        return {"messageId": message_id, "recipient": jid}

    async def _record(self, **fields):
        if self.event_log is None:
            return
        try:
            await asyncio.to_thread(self.event_log.log_outgoing_message, **fields)
        except Exception as e:
            logger.error(f"Failed to record outgoing message: {e}", exc_info=True)

    # =========================================================================
    # Operations
    # =========================================================================

    async def send_text(self, session_id: str, chat_id: str, text: str,
                        quoted_message_id: Optional[str] = None) -> dict:
        content: Dict[str, Any] = {"text": text}
        if quoted_message_id:
            content["quoted"] = {
                "key": {"remoteJid": to_jid(chat_id), "id": quoted_message_id, "fromMe": False}
            }
        return await self._send(session_id, chat_id, "text", content, text, "/api/messages/send-text")

    async def send_image(self, session_id: str, chat_id: str, image: Optional[str] = None,
                         image_url: Optional[str] = None, caption: Optional[str] = None) -> dict:
        if image:
            source = {"base64": strip_data_url(image)}
        elif image_url:
            source = {"url": image_url}
        else:
            raise ValueError("No image provided (base64 or imageUrl)")

        content = {"image": source, "caption": caption or ""}
        return await self._send(session_id, chat_id, "image", content,
                                caption or "[image]", "/api/messages/send-image")

    async def send_document(self, session_id: str, chat_id: str, document: Optional[str] = None,
                            document_url: Optional[str] = None, filename: Optional[str] = None,
                            mimetype: Optional[str] = None, caption: Optional[str] = None) -> dict:
        if document:
            source = {"base64": strip_data_url(document)}
        elif document_url:
            source = {"url": document_url}
        else:
            raise ValueError("No document provided (base64 or documentUrl)")

        file_name = filename or "document.pdf"
        content = {
            "document": source,
            "mimetype": mimetype or "application/pdf",
            "fileName": file_name,
        }
        if caption:
            content["caption"] = caption
        return await self._send(session_id, chat_id, "document", content,
                                file_name, "/api/messages/send-document")

    async def send_location(self, session_id: str, chat_id: str, latitude: float, longitude: float,
                            address: Optional[str] = None) -> dict:
        content = {
            "location": {
                "degreesLatitude": latitude,
                "degreesLongitude": longitude,
                "address": address,
            }
        }
        summary = address or f"{latitude},{longitude}"
        return await self._send(session_id, chat_id, "location", content,
                                summary, "/api/messages/send-location")

    async def send_presence(self, session_id: str, chat_id: str, presence: str):
        """Typing indicator: presence is "composing" (start) or "paused" (stop)."""
        handle = self._get_handle(session_id)
        await handle.send_presence(presence, to_jid(chat_id))

    def get_message_status(self, message_id: str) -> Optional[dict]:
        if self.event_log is None:
            return None
        return self.event_log.get_message_by_message_id(message_id)
