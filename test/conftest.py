"""
Shared fakes for the signaling and orchestration tests.
"""
import asyncio
import json

import pytest

from core.config import SessionConfig
from webrtc.engine import EncoderParameters


VIDEO_SDP = "\r\n".join([
    "v=0",
    "o=- 1 1 IN IP4 0.0.0.0",
    "s=-",
    "t=0 0",
    "m=audio 9 UDP/TLS/RTP/SAVPF 111",
    "c=IN IP4 0.0.0.0",
    "a=mid:0",
    "m=video 9 UDP/TLS/RTP/SAVPF 96",
    "c=IN IP4 0.0.0.0",
    "a=mid:1",
    "a=rtpmap:96 VP8/90000",
    "",
])


class FakeTrack:
    def __init__(self, kind):
        self.kind = kind
        self.id = f"{kind}-track"
        self.stopped = False

    def stop(self):
        self.stopped = True


class FakeSender:
    def __init__(self, track):
        self.track = track


class FakePeerConnection:
    def __init__(self):
        self.local = None
        self.remote = None
        self.candidates = []
        self.senders = []
        self.closed = False
        self.state = "new"
        self.ice_callback = None
        self.track_callback = None


class FakeEngine:
    """Records every call the orchestrator makes against the engine."""

    def __init__(self):
        self.connections = []
        self.encoder_updates = []
        self.fail_offer = False
        self.fail_remote = False
        self.stats = []

    def create(self):
        pc = FakePeerConnection()
        self.connections.append(pc)
        return pc

    def add_local_track(self, pc, track):
        sender = FakeSender(track)
        pc.senders.append(sender)
        return sender

    async def create_offer(self, pc):
        if self.fail_offer:
            raise RuntimeError("offer failed")
        return VIDEO_SDP

    async def create_answer(self, pc):
        return VIDEO_SDP

    async def set_local_description(self, pc, kind, sdp):
        pc.local = (kind, sdp)

    def local_description(self, pc):
        return pc.local[1] if pc.local else None

    async def set_remote_description(self, pc, kind, sdp):
        if self.fail_remote:
            raise ValueError("bad description")
        pc.remote = (kind, sdp)

    def has_remote_description(self, pc):
        return pc.remote is not None

    async def add_ice_candidate(self, pc, candidate):
        if candidate == "bad":
            raise ValueError("bad candidate")
        pc.candidates.append(candidate)

    def get_encoder_parameters(self, sender):
        return EncoderParameters()

    async def set_encoder_parameters(self, sender, parameters):
        self.encoder_updates.append((sender, parameters))
        return True

    async def get_stats(self, pc):
        return self.stats

    def connection_state(self, pc):
        return pc.state

    def on_ice_state_change(self, pc, callback):
        pc.ice_callback = callback

    def on_track(self, pc, callback):
        pc.track_callback = callback

    async def close(self, pc):
        pc.closed = True
        pc.state = "closed"


class FakeWebSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self):
        self.sent = []
        self.closed = False
        self._incoming = asyncio.Queue()

    async def send(self, data):
        if self.closed:
            raise ConnectionError("socket closed")
        self.sent.append(json.loads(data))

    async def close(self):
        self.closed = True
        self._incoming.put_nowait(None)

    def feed(self, message):
        self._incoming.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def drop(self):
        """Simulate the relay closing the connection."""
        self._incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item


class FakeConnector:
    def __init__(self):
        self.urls = []
        self.sockets = []
        self.failures = 0

    async def __call__(self, url):
        self.urls.append(url)
        if self.failures:
            self.failures -= 1
            raise OSError("connection refused")
        ws = FakeWebSocket()
        self.sockets.append(ws)
        return ws


async def settle(rounds: int = 10):
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def config():
    return SessionConfig(
        signaling_url="ws://relay.test:8443",
        reconnect_delay=0.05,
        encoder_optimize_delay=0.01,
        stats_interval=60.0,
    )


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def connector():
    return FakeConnector()
