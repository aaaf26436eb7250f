"""
Typed protocol events emitted by a WhatsApp connection.

Every event the bridge forwards is wrapped in one of the ProtocolEvent
variants below. The session handler dispatches on the concrete type; the
original payload is kept in `payload` so it can be forwarded to webhooks
unchanged.
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Type

# Disconnect status code the protocol uses for "logged out from the phone"
LOGGED_OUT_STATUS_CODE = 401

# Numeric delivery statuses carried by messages.update
DELIVERY_STATUS_MAP = {
    1: "pending",
    2: "sent",
    3: "delivered",
    4: "read",
}


@dataclass
class ProtocolEvent:
    """Base event: a category name plus the raw payload."""
    category: ClassVar[str] = ""
    payload: Any = None


@dataclass
class ConnectionUpdate(ProtocolEvent):
    category: ClassVar[str] = "connection.update"
    connection: Optional[str] = None  # "connecting" | "open" | "close"
    qr: Optional[str] = None
    qr_image: Optional[str] = None  # data URL, when the bridge renders one
    status_code: Optional[int] = None
    user: Optional[Dict[str, Any]] = None

    @property
    def is_logged_out(self) -> bool:
        return self.status_code == LOGGED_OUT_STATUS_CODE


@dataclass
class MessagesUpsert(ProtocolEvent):
    category: ClassVar[str] = "messages.upsert"
    type: str = "notify"
    messages: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class MessagesUpdate(ProtocolEvent):
    category: ClassVar[str] = "messages.update"
    updates: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class MessagesDelete(ProtocolEvent):
    category: ClassVar[str] = "messages.delete"


@dataclass
class MessageReceiptUpdate(ProtocolEvent):
    category: ClassVar[str] = "message-receipt.update"
    receipts: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class PresenceUpdate(ProtocolEvent):
    category: ClassVar[str] = "presence.update"


@dataclass
class ChatsUpsert(ProtocolEvent):
    category: ClassVar[str] = "chats.upsert"


@dataclass
class ChatsUpdate(ProtocolEvent):
    category: ClassVar[str] = "chats.update"


@dataclass
class ContactsUpsert(ProtocolEvent):
    category: ClassVar[str] = "contacts.upsert"


@dataclass
class GroupsUpsert(ProtocolEvent):
    category: ClassVar[str] = "groups.upsert"


@dataclass
class GroupParticipantsUpdate(ProtocolEvent):
    category: ClassVar[str] = "group-participants.update"


@dataclass
class Call(ProtocolEvent):
    category: ClassVar[str] = "call"


EVENT_TYPES: Dict[str, Type[ProtocolEvent]] = {
    cls.category: cls
    for cls in (
        ConnectionUpdate,
        MessagesUpsert,
        MessagesUpdate,
        MessagesDelete,
        MessageReceiptUpdate,
        PresenceUpdate,
        ChatsUpsert,
        ChatsUpdate,
        ContactsUpsert,
        GroupsUpsert,
        GroupParticipantsUpdate,
        Call,
    )
}

# Categories forwarded to webhooks, in the order the dashboard lists them
WEBHOOK_EVENT_CATEGORIES = list(EVENT_TYPES.keys())


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def parse_event(category: str, payload: Any) -> Optional[ProtocolEvent]:
    """
    Build the typed event for a raw (category, payload) pair.

    Returns None for categories the gateway does not handle (e.g. creds.update,
    which the bridge persists on its own).
    """
    event_cls = EVENT_TYPES.get(category)
    if event_cls is None:
        return None

    if event_cls is ConnectionUpdate:
        data = payload or {}
        last_disconnect = data.get("lastDisconnect") or {}
        status_code = data.get("statusCode", last_disconnect.get("statusCode"))
        return ConnectionUpdate(
            payload=payload,
            connection=data.get("connection"),
            qr=data.get("qr"),
            qr_image=data.get("qrImage"),
            status_code=int(status_code) if status_code is not None else None,
            user=data.get("user"),
        )

    if event_cls is MessagesUpsert:
        data = payload or {}
        return MessagesUpsert(
            payload=payload,
            type=data.get("type", "notify"),
            messages=_as_list(data.get("messages")),
        )

    if event_cls is MessagesUpdate:
        return MessagesUpdate(payload=payload, updates=_as_list(payload))

    if event_cls is MessageReceiptUpdate:
        return MessageReceiptUpdate(payload=payload, receipts=_as_list(payload))

    return event_cls(payload=payload)
