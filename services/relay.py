"""
Relay stream directory and forwarding rules.

The relay assigns each transport connection a peer id, tracks which peer
sends each stream and which viewers want it, and forwards point-to-point
signaling messages. It holds no media and does no I/O: every operation
returns the outbound messages for the transport layer to deliver.
"""
import dataclasses
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

from core.exceptions import DirectoryError
from core.logging import LoggerMixin, debug_log
from core.validation_utils import ValidationUtils
from messaging.codec import OfferRequest, Seed, SignalingMessage
from webrtc.state import Role


@dataclass
class PeerRecord:
    peer_id: str
    stream_id: Optional[str] = None
    role: Optional[Role] = None


@dataclass
class StreamEntry:
    sender_peer_id: Optional[str] = None
    waiting_viewers: Set[str] = field(default_factory=set)

    def is_empty(self) -> bool:
        return self.sender_peer_id is None and not self.waiting_viewers


@dataclass(frozen=True)
class Outbound:
    """A message the transport must deliver to ``target``."""
    target: str
    message: SignalingMessage


class RelayServer(LoggerMixin):
    """Directory of streams and peers plus the relay forwarding function."""

    def __init__(self, id_factory: Callable[[], str] = lambda: str(uuid.uuid4())):
        super().__init__()
        self.id_factory = id_factory
        self.peers: Dict[str, PeerRecord] = {}
        self.streams: Dict[str, StreamEntry] = {}

    def on_connect(self) -> str:
        """Allocate a peer id for a new transport connection."""
        peer_id = self.id_factory()
        while peer_id in self.peers:
            peer_id = self.id_factory()
        self.peers[peer_id] = PeerRecord(peer_id)
        debug_log("✅ [Relay] New connection", {"peer_id": peer_id, "peers": len(self.peers)})
        return peer_id

    def handle(self, peer_id: str, message: SignalingMessage) -> List[Outbound]:
        """Single entry point for inbound messages from ``peer_id``."""
        if isinstance(message, Seed):
            return self.on_seed(peer_id, message.stream_id)
        if isinstance(message, OfferRequest) and message.stream_id:
            return self.on_offer_request(peer_id, message.stream_id)
        if getattr(message, 'uuid', None):
            return self.on_relay(peer_id, message)

        self.log_warning("⚠️ [Relay] Unhandled message", {
            "peer_id": peer_id,
            "kind": type(message).__name__
        })
        return []

    def on_seed(self, peer_id: str, stream_id: str) -> List[Outbound]:
        """Register ``peer_id`` as the sender of ``stream_id`` (last seed wins)."""
        try:
            record = self._assign(peer_id, Role.SENDER, stream_id)
        except DirectoryError as e:
            self.log_warning("⚠️ [Relay] Seed rejected", {"error": str(e), **e.details})
            return []

        if not ValidationUtils.is_stream_id(stream_id):
            self.log_debug("🎥 [Relay] Stream id not in generated form", {"stream_id": stream_id})

        entry = self.streams.setdefault(stream_id, StreamEntry())
        if entry.sender_peer_id not in (None, peer_id):
            self.log_warning("⚠️ [Relay] Sender replaced", {
                "stream_id": stream_id,
                "previous": entry.sender_peer_id,
                "current": peer_id
            })
        entry.sender_peer_id = peer_id
        entry.waiting_viewers.discard(peer_id)

        debug_log("🎥 [Relay] Sender seeding stream", {
            "peer_id": record.peer_id,
            "stream_id": stream_id,
            "waiting_viewers": len(entry.waiting_viewers)
        })

        return [
            Outbound(peer_id, OfferRequest(uuid=viewer_id))
            for viewer_id in entry.waiting_viewers
            if viewer_id in self.peers
        ]

    def on_offer_request(self, peer_id: str, stream_id: str) -> List[Outbound]:
        """Register ``peer_id`` as a viewer of ``stream_id`` and prompt its sender."""
        try:
            self._assign(peer_id, Role.VIEWER, stream_id)
        except DirectoryError as e:
            self.log_warning("⚠️ [Relay] Stream request rejected", {"error": str(e), **e.details})
            return []

        entry = self.streams.setdefault(stream_id, StreamEntry())
        entry.waiting_viewers.add(peer_id)

        sender_id = entry.sender_peer_id
        if sender_id is None or sender_id not in self.peers:
            debug_log("⏳ [Relay] Sender not online yet, viewer queued", {
                "peer_id": peer_id,
                "stream_id": stream_id
            })
            return []

        debug_log("📺 [Relay] Asking sender to create offer", {
            "sender": sender_id,
            "viewer": peer_id,
            "stream_id": stream_id
        })
        return [Outbound(sender_id, OfferRequest(uuid=peer_id))]

    def on_relay(self, from_id: str, message: SignalingMessage) -> List[Outbound]:
        """Forward a point-to-point message to its target with the source rewritten."""
        target = getattr(message, 'uuid', None)
        if not target:
            self.log_warning("⚠️ [Relay] Relay message without target", {"peer_id": from_id})
            return []
        if target not in self.peers:
            self.log_warning("⚠️ [Relay] Target not found", {"from": from_id, "target": target})
            return []

        changes = {'uuid': from_id}
        if 'stream_id' in {f.name for f in dataclasses.fields(message)}:
            changes['stream_id'] = None
        forwarded = dataclasses.replace(message, **changes)

        debug_log("🔄 [Relay] Relay", {
            "from": from_id,
            "to": target,
            "kind": type(message).__name__
        })
        return [Outbound(target, forwarded)]

    def on_disconnect(self, peer_id: str):
        record = self.peers.pop(peer_id, None)
        if record is None:
            return
        self._leave_stream(record)
        debug_log("❌ [Relay] Disconnected", {"peer_id": peer_id, "peers": len(self.peers)})

    def _assign(self, peer_id: str, role: Role, stream_id: str) -> PeerRecord:
        record = self.peers.get(peer_id)
        if record is None:
            raise DirectoryError("Unknown peer", {"peer_id": peer_id})
        if record.role is not None and record.role != role:
            raise DirectoryError("Role is fixed for the connection", {
                "peer_id": peer_id,
                "role": record.role.value,
                "requested": role.value
            })

        if record.stream_id is not None and record.stream_id != stream_id:
            self._leave_stream(record)

        record.role = role
        record.stream_id = stream_id
        return record

    def _leave_stream(self, record: PeerRecord):
        entry = self.streams.get(record.stream_id) if record.stream_id else None
        if entry is None:
            return
        entry.waiting_viewers.discard(record.peer_id)
        if entry.sender_peer_id == record.peer_id:
            entry.sender_peer_id = None
        if entry.is_empty():
            del self.streams[record.stream_id]

    def get_status(self) -> Dict[str, object]:
        return {
            'peers': len(self.peers),
            'streams': {
                stream_id: {
                    'sender': entry.sender_peer_id,
                    'viewers': len(entry.waiting_viewers)
                }
                for stream_id, entry in self.streams.items()
            }
        }
