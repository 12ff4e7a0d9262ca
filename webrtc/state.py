"""
Roles, statuses and per-peer negotiation state.
"""
import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Set


class Role(str, Enum):
    SENDER = "sender"
    VIEWER = "viewer"


class SessionStatus(str, Enum):
    """Statuses surfaced to the embedding application."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    STREAMING = "streaming"
    FAILED = "failed"


class PeerPhase(str, Enum):
    NEW = "new"
    OFFER_SENT = "offer_sent"
    ANSWER_SENT = "answer_sent"
    REMOTE_DESCRIPTION_SET = "remote_description_set"
    CONNECTED = "connected"
    FAILED = "failed"
    CLOSED = "closed"


@dataclass
class PeerConnectionState:
    """Engine instance and negotiation phase for one remote peer."""
    peer_id: str
    pc: Any
    phase: PeerPhase = PeerPhase.NEW
    video_senders: List[Any] = field(default_factory=list)
    tasks: Set[asyncio.Task] = field(default_factory=set)

    def cancel_tasks(self):
        for task in list(self.tasks):
            if not task.done():
                task.cancel()
        self.tasks.clear()
