"""
Fake WhatsApp protocol connection for session tests.

FakeHandle.events() yields whatever the test pushes with push_event(); end()
finishes the stream without a close event.
"""
import asyncio
import pytest

from whatsapp_bridge.client import ProtocolClient, ProtocolHandle
from whatsapp_bridge.events import ConnectionUpdate

_END = object()


class FakeHandle(ProtocolHandle):
    def __init__(self, session_id: str):
        super().__init__(session_id)
        self.queue = asyncio.Queue()
        self.sent = []
        self.presence = []
        self.media = b"fake-media"
        self.logged_out = False
        self.disconnected = False
        self.send_error = None
        self._counter = 0

    def push_event(self, event):
        self.queue.put_nowait(event)

    def open(self, user=None):
        self.push_event(ConnectionUpdate(
            payload={"connection": "open"},
            connection="open",
            user=user or {"id": "15550001111:1@s.whatsapp.net", "name": "Test"},
        ))

    def close(self, status_code=500):
        self.push_event(ConnectionUpdate(
            payload={"connection": "close", "statusCode": status_code},
            connection="close",
            status_code=status_code,
        ))

    def end(self):
        self.queue.put_nowait(_END)

    async def events(self):
        while True:
            event = await self.queue.get()
            if event is _END:
                return
            yield event

    async def send(self, jid, content):
        if self.send_error:
            raise self.send_error
        self._counter += 1
        message_id = f"MSG{self._counter}"
        self.sent.append((jid, content, message_id))
        return message_id

    async def send_presence(self, presence, jid):
        self.presence.append((presence, jid))

    async def download_media(self, message):
        return self.media

    async def logout(self):
        self.logged_out = True

    async def disconnect(self):
        self.disconnected = True


class FakeProtocolClient(ProtocolClient):
    def __init__(self):
        self.handles = []
        self.connect_calls = []
        self.fail = False
        # Set to an asyncio.Event to hold connect() until the test releases it
        self.gate = None

    async def connect(self, session_id, auth_dir):
        self.connect_calls.append((session_id, auth_dir))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise ConnectionError("bridge unreachable")
        handle = FakeHandle(session_id)
        self.handles.append(handle)
        return handle

    @property
    def last_handle(self):
        return self.handles[-1] if self.handles else None


async def settle(rounds: int = 20):
    """Let background tasks (consumers, reconnects) run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def fake_protocol_client():
    return FakeProtocolClient()


def emitted(push, event, room=None):
    """Payloads pushed for an event (room=None means global emits only)"""
    return [
        c.args[1] for c in push.emit.call_args_list
        if c.args[0] == event and c.kwargs.get("room") == room
    ]
