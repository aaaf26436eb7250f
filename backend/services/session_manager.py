"""
Session Manager
Owns every SessionHandler, restores them from the registry at startup and
exposes create/get/list/delete to the API.
"""

import asyncio
import logging
import os
import shutil
from typing import Dict, List, Optional

import settings
from services.session_handler import STATUS_CONNECTED, SessionHandler
from services.session_registry import SessionRegistry
from whatsapp_bridge.client import ProtocolClient

logger = logging.getLogger(__name__)


class SessionManager:
    """Manages SessionHandler instances for all known sessions."""

    def __init__(
        self,
        protocol_client: ProtocolClient,
        push,
        dispatcher=None,
        event_log=None,
        media_handler=None,
        session_dir: str = settings.SESSION_DIR,
        max_retries: int = settings.MAX_RECONNECT_RETRIES,
    ):
        self.protocol_client = protocol_client
        self.push = push
        self.dispatcher = dispatcher
        self.event_log = event_log
        self.media_handler = media_handler
        self.session_dir = session_dir
        self.max_retries = max_retries
        self.sessions: Dict[str, SessionHandler] = {}

        os.makedirs(self.session_dir, exist_ok=True)
        self.registry = SessionRegistry(self.session_dir)
        self._load_sessions()

    def _load_sessions(self):
        session_ids = self.registry.load()
        logger.info(f"Found {len(session_ids)} saved sessions.")
        for session_id in session_ids:
            logger.info(f"Restoring session: {session_id}")
            self.sessions[session_id] = self._new_handler(session_id)

    def _new_handler(self, session_id: str) -> SessionHandler:
        return SessionHandler(
            session_id=session_id,
            protocol_client=self.protocol_client,
            push=self.push,
            dispatcher=self.dispatcher,
            event_log=self.event_log,
            media_handler=self.media_handler,
            session_dir=self.session_dir,
            max_retries=self.max_retries,
        )

    def _save_sessions(self):
        self.registry.save(list(self.sessions.keys()))

    async def start_all(self):
        """Start every restored session."""
        handlers = list(self.sessions.values())
        await asyncio.gather(*(handler.start() for handler in handlers))
        logger.info(f"Started {len(handlers)} restored session(s)")

    def set_event_log(self, event_log):
        """Bind the audit log store to the manager and every existing handler."""
        self.event_log = event_log
        for session_id, handler in self.sessions.items():
            handler.event_log = event_log
            logger.info(f"Event log wired for session: {session_id}")

    async def create_session(self, session_id: str, start_immediately: bool = True) -> SessionHandler:
        """Create a session, replacing (logging out) any existing one with the same id."""
        existing = self.sessions.pop(session_id, None)
        if existing is not None:
            logger.info(f"Session {session_id} already exists, restarting...")
            await existing.logout()

        handler = self._new_handler(session_id)
        self.sessions[session_id] = handler
        self._save_sessions()

        if start_immediately:
            await handler.start()

        await self._emit("session:created", {"sessionId": session_id})
        return handler

    def get_session(self, session_id: str) -> Optional[SessionHandler]:
        return self.sessions.get(session_id)

    def get_all_sessions(self) -> List[dict]:
        return [handler.to_dict() for handler in self.sessions.values()]

    def get_connected_sessions(self) -> List[SessionHandler]:
        return [handler for handler in self.sessions.values() if handler.status == STATUS_CONNECTED]

    async def delete_session(self, session_id: str) -> bool:
        """Log out, forget and wipe a session. Returns False if it does not exist."""
        handler = self.sessions.get(session_id)
        if handler is None:
            return False

        await handler.logout()
        del self.sessions[session_id]
        self._save_sessions()

        session_path = os.path.join(self.session_dir, session_id)
        if os.path.exists(session_path):
            shutil.rmtree(session_path, ignore_errors=True)

        if self.dispatcher is not None:
            self.dispatcher.remove_webhook_config(session_id)

        await self._emit("session:deleted", {"sessionId": session_id})
        logger.info(f"Session {session_id} deleted")
        return True

    async def shutdown(self):
        """Close every connection without logging out; credentials are kept."""
        for handler in list(self.sessions.values()):
            await handler.disconnect()
            await handler.flush()
        logger.info("All sessions disconnected")

    async def _emit(self, event: str, data: dict):
        try:
            await self.push.emit(event, data)
        except Exception as e:
            logger.warning(f"Failed to push {event}: {e}")
