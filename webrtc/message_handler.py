"""
Inbound signaling message handling and routing.
"""
from typing import Optional, Union

from core.exceptions import MessageError
from core.logging import LoggerMixin, debug_log
from messaging.codec import (
    Candidate,
    Candidates,
    Description,
    MessageCodec,
    OfferRequest,
    SignalingMessage,
    UuidAssign,
)
from webrtc.peer_manager import ConnectionOrchestrator
from webrtc.state import Role


class SignalingMessageHandler(LoggerMixin):
    """Parses relay messages and routes them to the orchestrator by kind and role."""

    def __init__(self, orchestrator: ConnectionOrchestrator):
        super().__init__()
        self.orchestrator = orchestrator
        self.local_peer_id: Optional[str] = None

    async def handle_message(self, raw: Union[str, bytes], role: Optional[Role]) -> Optional[SignalingMessage]:
        """Handle one inbound frame. Malformed frames are logged and dropped."""
        try:
            message = MessageCodec.parse(raw)
        except MessageError as e:
            self.log_warning("⚠️ [Signaling] Bad signaling message", {
                "error": str(e),
                "message": raw[:200] if isinstance(raw, (str, bytes)) else str(raw)[:200]
            })
            return None

        try:
            await self._route_message(message, role)
        except Exception as e:
            self.log_error("❌ [Signaling] Error handling message", {
                "kind": type(message).__name__,
                "error": str(e),
                "error_type": type(e).__name__
            })
        return message

    async def _route_message(self, message: SignalingMessage, role: Optional[Role]):
        if isinstance(message, UuidAssign):
            self.local_peer_id = message.uuid
            debug_log("🆔 [Signaling] Peer id assigned", {"peer_id": message.uuid})
            return

        remote_id = message.uuid or self.local_peer_id

        if isinstance(message, Description):
            if message.kind == "offer" and role == Role.VIEWER:
                debug_log("📥 [Signaling] Received offer", {"remote_id": remote_id})
                await self.orchestrator.handle_offer(remote_id, message.sdp)
            elif message.kind == "answer" and role == Role.SENDER:
                debug_log("📥 [Signaling] Received answer", {"remote_id": remote_id})
                await self.orchestrator.handle_answer(remote_id, message.sdp)
            else:
                self._ignore(message, role)

        elif isinstance(message, OfferRequest):
            if role == Role.SENDER and message.uuid:
                debug_log("📥 [Signaling] Viewer requesting stream, creating offer", {"remote_id": remote_id})
                await self.orchestrator.create_offer(remote_id)
            else:
                self._ignore(message, role)

        elif isinstance(message, Candidate):
            await self.orchestrator.handle_candidate(remote_id, message.candidate)

        elif isinstance(message, Candidates):
            for candidate in message.candidates:
                await self.orchestrator.handle_candidate(remote_id, candidate)

        else:
            self._ignore(message, role)

    def _ignore(self, message: SignalingMessage, role: Optional[Role]):
        self.log_debug("🔇 [Signaling] Message ignored for role", {
            "kind": type(message).__name__,
            "role": role.value if role else None
        })
