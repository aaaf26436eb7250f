"""WebSocket Connection Manager for real-time session events"""
from fastapi import WebSocket
from typing import List, Dict, Any, Optional, Set
import logging

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Manages WebSocket connections for the live event channel.

    Every message is JSON {"type": <event>, "data": {...}}. Clients join
    per-session rooms ("session:<id>") to receive room-scoped events such as
    QR codes and inbound messages; everything else is broadcast.
    """

    def __init__(self):
        self.active_connections: List[WebSocket] = []
        # room -> subscribed connections
        self.rooms: Dict[str, Set[WebSocket]] = {}

        self.logger = logging.getLogger(__name__)

    async def connect(self, websocket: WebSocket):
        """Accept new WebSocket connection."""
        await websocket.accept()
        self.active_connections.append(websocket)
        self.logger.info(f"New WebSocket connection. Total: {len(self.active_connections)}")

    def disconnect(self, websocket: WebSocket):
        """Remove WebSocket connection and its room memberships."""
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)

        for room in list(self.rooms.keys()):
            self.rooms[room].discard(websocket)
            # Clean up empty rooms
            if not self.rooms[room]:
                del self.rooms[room]

        self.logger.info(f"WebSocket disconnected. Total: {len(self.active_connections)}")

    def join(self, websocket: WebSocket, room: str):
        self.rooms.setdefault(room, set()).add(websocket)
        self.logger.debug(f"Client joined {room} ({len(self.rooms[room])} in room)")

    def leave(self, websocket: WebSocket, room: str):
        if room in self.rooms:
            self.rooms[room].discard(websocket)
            if not self.rooms[room]:
                del self.rooms[room]

    async def handle_client_message(self, websocket: WebSocket, message: Dict[str, Any]):
        """Process a message sent by a client (subscribe, unsubscribe, ping)."""
        message_type = message.get("type")
        session_id = message.get("sessionId")

        if message_type == "subscribe" and session_id:
            self.join(websocket, f"session:{session_id}")
            await self.send_to_client(websocket, {"type": "subscribed", "data": {"sessionId": session_id}})
        elif message_type == "unsubscribe" and session_id:
            self.leave(websocket, f"session:{session_id}")
            await self.send_to_client(websocket, {"type": "unsubscribed", "data": {"sessionId": session_id}})
        elif message_type == "ping":
            await self.send_to_client(websocket, {"type": "pong", "data": {}})
        else:
            self.logger.debug(f"Ignoring client message: {message_type}")

    async def emit(self, event: str, data: Dict[str, Any], room: Optional[str] = None):
        """Send {type, data} to a room, or to every client when room is None."""
        message = {"type": event, "data": data}
        if room is None:
            await self.broadcast(message)
        else:
            await self._send_many(list(self.rooms.get(room, ())), message)

    async def broadcast(self, message: Dict[str, Any]):
        """Broadcast message to all connected clients"""
        if not self.active_connections:
            return  # No clients connected
        await self._send_many(list(self.active_connections), message)

    async def _send_many(self, connections: List[WebSocket], message: Dict[str, Any]):
        disconnected = []
        for connection in connections:
            try:
                await connection.send_json(message)
                self.logger.debug(f"Sent: {message.get('type')}")
            except Exception as e:
                self.logger.error(f"Error sending to client: {e}")
                disconnected.append(connection)

        # Clean up disconnected clients
        for conn in disconnected:
            self.disconnect(conn)

    async def send_to_client(self, websocket: WebSocket, message: Dict[str, Any]):
        """Send message to specific client"""
        try:
            await websocket.send_json(message)
        except Exception as e:
            self.logger.error(f"Error sending to client: {e}")
            self.disconnect(websocket)

    def get_connection_count(self) -> int:
        """Get number of active connections"""
        return len(self.active_connections)


# Global connection manager instance
manager = ConnectionManager()
