"""
WhatsApp bridge integration.

Exposes the protocol capability interface consumed by session handlers and
the typed events a connection yields.
"""

from .client import BridgeClient, BridgeHandle, ProtocolClient, ProtocolError, ProtocolHandle
from .events import (
    ConnectionUpdate,
    MessageReceiptUpdate,
    MessagesUpdate,
    MessagesUpsert,
    ProtocolEvent,
    parse_event,
)

__all__ = [
    "BridgeClient",
    "BridgeHandle",
    "ProtocolClient",
    "ProtocolError",
    "ProtocolHandle",
    "ConnectionUpdate",
    "MessageReceiptUpdate",
    "MessagesUpdate",
    "MessagesUpsert",
    "ProtocolEvent",
    "parse_event",
]
