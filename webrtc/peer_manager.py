"""
WebRTC peer connection orchestration.

One ``ConnectionOrchestrator`` drives one engine instance per remote peer
through offer/answer/ICE exchange. Remote candidates are only applied once the
peer's remote description is committed; earlier ones wait in a FIFO buffer.
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from core.config import SessionConfig
from core.logging import LoggerMixin, debug_log
from messaging.codec import Description, SignalingMessage
from webrtc.candidate_buffer import CandidateBuffers
from webrtc.engine import PeerConnectionEngine
from webrtc.media import LocalMedia
from webrtc.sdp import annotate_bandwidth
from webrtc.state import PeerConnectionState, PeerPhase, Role, SessionStatus
from webrtc.stats import INBOUND_RTP, OUTBOUND_RTP, StatsSampler


CONNECTED_ICE_STATES = ("connected", "completed")


class ConnectionOrchestrator(LoggerMixin):
    """Manages per-remote-peer connections and their negotiation lifecycle."""

    def __init__(self, engine: PeerConnectionEngine, config: SessionConfig,
                 send: Callable[[SignalingMessage], Awaitable[Any]],
                 local_media: Callable[[], Optional[LocalMedia]] = lambda: None):
        super().__init__()
        self.engine = engine
        self.config = config
        self.send = send
        self.local_media = local_media

        self.role: Optional[Role] = None
        self.stream_id: Optional[str] = None

        self.peers: Dict[str, PeerConnectionState] = {}
        self.candidate_buffers = CandidateBuffers()
        self.stats_sampler: Optional[StatsSampler] = None
        self._release_tasks: Set[asyncio.Task] = set()

        self.callbacks: Dict[str, Set[Callable]] = {
            'status': set(),
            'error': set(),
            'remote_track': set(),
            'stats': set()
        }

    def add_callback(self, event: str, callback: Callable):
        """Add a callback for orchestrator events."""
        if event in self.callbacks:
            self.callbacks[event].add(callback)

    def remove_callback(self, event: str, callback: Callable):
        if event in self.callbacks:
            self.callbacks[event].discard(callback)

    # ── Sender side ──────────────────────────────────────────

    async def create_offer(self, remote_id: str):
        """A viewer asked for the stream: build and send it an offer."""
        state = await self._create_peer_connection(remote_id)

        media = self.local_media()
        if media:
            for track in media.tracks:
                sender = self.engine.add_local_track(state.pc, track)
                if track.kind == "video":
                    state.video_senders.append(sender)
        else:
            self.log_warning("⚠️ [PeerManager] Creating offer without local media", {"remote_id": remote_id})

        try:
            offer_sdp = await self.engine.create_offer(state.pc)
            await self.engine.set_local_description(
                state.pc, "offer", annotate_bandwidth(offer_sdp, self.config.target_bitrate_kbps)
            )
            if not self._is_current(state):
                return
            await self.send(Description("offer", self._local_sdp(state), remote_id, self.stream_id))
            state.phase = PeerPhase.OFFER_SENT
        except Exception as e:
            await self._abort(state, "createOffer failed", e)
            return

        debug_log("📤 [PeerManager] Offer sent", {"remote_id": remote_id})
        await self.flush_candidates(remote_id)

        for sender in state.video_senders:
            self._spawn(state, self._optimize_sender_later(state, sender))

    async def handle_answer(self, remote_id: str, sdp: str):
        state = self.peers.get(remote_id)
        if state is None:
            self.log_debug("🔗 [PeerManager] Answer without prior offer ignored", {"remote_id": remote_id})
            return

        try:
            await self.engine.set_remote_description(state.pc, "answer", sdp)
        except Exception as e:
            if state.phase == PeerPhase.OFFER_SENT:
                await self._abort(state, "handleAnswer failed", e)
            else:
                # stale or duplicate answer, the negotiated connection stays up
                self.log_error("❌ [PeerManager] handleAnswer failed", {
                    "remote_id": remote_id,
                    "phase": state.phase.value,
                    "error": str(e)
                })
            return

        state.phase = PeerPhase.REMOTE_DESCRIPTION_SET
        debug_log("🔗 [PeerManager] Remote description set", {"remote_id": remote_id})
        await self.flush_candidates(remote_id)

    # ── Viewer side ──────────────────────────────────────────

    async def handle_offer(self, remote_id: str, sdp: str):
        state = await self._create_peer_connection(remote_id)

        try:
            await self.engine.set_remote_description(state.pc, "offer", sdp)
            state.phase = PeerPhase.REMOTE_DESCRIPTION_SET

            answer_sdp = await self.engine.create_answer(state.pc)
            await self.engine.set_local_description(
                state.pc, "answer", annotate_bandwidth(answer_sdp, self.config.target_bitrate_kbps)
            )
            if not self._is_current(state):
                return
            await self.send(Description("answer", self._local_sdp(state), remote_id, self.stream_id))
            state.phase = PeerPhase.ANSWER_SENT
        except Exception as e:
            await self._abort(state, "handleOffer failed", e)
            return

        debug_log("📤 [PeerManager] Answer sent", {"remote_id": remote_id})
        await self.flush_candidates(remote_id)

    # ── ICE ──────────────────────────────────────────────────

    async def handle_candidate(self, remote_id: str, candidate: Any):
        state = self.peers.get(remote_id)
        if state is not None and self.engine.has_remote_description(state.pc):
            await self._apply_candidate(state, candidate)
        else:
            self.candidate_buffers.push(remote_id, candidate)
            self.log_debug("🧊 [PeerManager] Candidate buffered", {
                "remote_id": remote_id,
                "pending": self.candidate_buffers.pending(remote_id)
            })

    async def flush_candidates(self, remote_id: str):
        """Apply buffered candidates in arrival order once the remote description is set."""
        state = self.peers.get(remote_id)
        if state is None or not self.engine.has_remote_description(state.pc):
            return

        for candidate in self.candidate_buffers.drain(remote_id):
            await self._apply_candidate(state, candidate)

    async def _apply_candidate(self, state: PeerConnectionState, candidate: Any):
        try:
            await self.engine.add_ice_candidate(state.pc, candidate)
        except Exception as e:
            self.log_warning("⚠️ [PeerManager] addIceCandidate error", {
                "remote_id": state.peer_id,
                "error": str(e)
            })

    # ── Lifecycle ────────────────────────────────────────────

    async def _create_peer_connection(self, remote_id: str) -> PeerConnectionState:
        existing = self.peers.pop(remote_id, None)
        if existing is not None:
            await self._close_state(existing)

        pc = self.engine.create()
        state = PeerConnectionState(peer_id=remote_id, pc=pc)
        self.peers[remote_id] = state

        self.engine.on_ice_state_change(pc, lambda ice_state: self._on_ice_state(state, ice_state))
        self.engine.on_track(pc, lambda track: self._on_remote_track(state, track))

        self._start_stats(state)

        debug_log("🔗 [PeerManager] Peer connection created", {
            "remote_id": remote_id,
            "replaced": existing is not None,
            "peer_count": len(self.peers)
        })
        return state

    def _on_ice_state(self, state: PeerConnectionState, ice_state: str):
        if not self._is_current(state):
            return

        debug_log("🔗 [PeerManager] ICE connection state changed", {
            "remote_id": state.peer_id,
            "ice_state": ice_state
        })

        if ice_state in CONNECTED_ICE_STATES:
            state.phase = PeerPhase.CONNECTED
            self._notify('status', SessionStatus.STREAMING)
        elif ice_state == "failed":
            state.phase = PeerPhase.FAILED
            self._notify('status', SessionStatus.FAILED)
            self._notify('error', "Connection failed, check network")
            self._release_later(state)
        elif ice_state == "disconnected":
            self._notify('status', SessionStatus.DISCONNECTED)
        elif ice_state == "closed":
            state.phase = PeerPhase.CLOSED
            self._release_later(state)

    def _release_later(self, state: PeerConnectionState):
        """Close a dead connection outside the engine's event callback."""
        task = asyncio.create_task(self._release(state))
        self._release_tasks.add(task)
        task.add_done_callback(self._release_tasks.discard)

    async def _release(self, state: PeerConnectionState):
        if not self._is_current(state):
            return
        await self.close_peer(state.peer_id)
        debug_log("🧹 [PeerManager] Released dead peer connection", {
            "remote_id": state.peer_id,
            "phase": state.phase.value,
            "peer_count": len(self.peers)
        })

    def _on_remote_track(self, state: PeerConnectionState, track):
        if not self._is_current(state):
            return
        debug_log("🎬 [PeerManager] Remote track received", {
            "remote_id": state.peer_id,
            "kind": track.kind
        })
        self._notify('remote_track', state.peer_id, track)

    def _start_stats(self, state: PeerConnectionState):
        if self.stats_sampler is not None:
            self.stats_sampler.stop()

        rtp_type = OUTBOUND_RTP if self.role == Role.SENDER else INBOUND_RTP
        self.stats_sampler = StatsSampler(
            self.engine,
            state.pc,
            self.config.stats_interval,
            on_sample=lambda snapshot: self._notify('stats', snapshot),
            rtp_type=rtp_type
        )
        self.stats_sampler.start()

    async def _optimize_sender_later(self, state: PeerConnectionState, sender):
        # Give the engine time to build its send pipeline
        await asyncio.sleep(self.config.encoder_optimize_delay)
        if not self._is_current(state):
            return

        parameters = self.engine.get_encoder_parameters(sender)
        parameters.max_bitrate = self.config.target_bitrate_bps
        parameters.scale_resolution_down_by = 1
        parameters.degradation_preference = self.config.degradation_preference

        try:
            applied = await self.engine.set_encoder_parameters(sender, parameters)
        except Exception as e:
            self.log_warning("⚠️ [PeerManager] setParameters failed", {
                "remote_id": state.peer_id,
                "error": str(e)
            })
            return

        self.log_info("⚙️ [PeerManager] Sender optimized", {
            "remote_id": state.peer_id,
            "bitrate_kbps": self.config.target_bitrate_kbps,
            "degradation": self.config.degradation_preference,
            "seeded_encoder": applied
        })

    def _spawn(self, state: PeerConnectionState, coro):
        task = asyncio.create_task(coro)
        state.tasks.add(task)
        task.add_done_callback(state.tasks.discard)

    async def _abort(self, state: PeerConnectionState, reason: str, error: Exception):
        self.log_error(f"❌ [PeerManager] {reason}", {
            "remote_id": state.peer_id,
            "error": str(error),
            "error_type": type(error).__name__
        })
        state.phase = PeerPhase.FAILED
        if self._is_current(state):
            await self.close_peer(state.peer_id)

    async def _close_state(self, state: PeerConnectionState):
        state.cancel_tasks()
        if self.stats_sampler is not None and self.stats_sampler.pc is state.pc:
            self.stats_sampler.stop()
            self.stats_sampler = None
        if state.phase != PeerPhase.FAILED:
            state.phase = PeerPhase.CLOSED
        try:
            await self.engine.close(state.pc)
        except Exception as e:
            self.log_warning("⚠️ [PeerManager] Error closing peer connection", {
                "remote_id": state.peer_id,
                "error": str(e)
            })

    async def close_peer(self, remote_id: str):
        """Close one remote peer's connection and drop its buffered candidates."""
        state = self.peers.pop(remote_id, None)
        self.candidate_buffers.discard(remote_id)
        if state is not None:
            await self._close_state(state)

    async def close_all(self):
        """Close every engine instance."""
        states = list(self.peers.values())
        self.peers.clear()
        for state in states:
            await self._close_state(state)
        debug_log("🔌 [PeerManager] All peer connections closed", {"closed": len(states)})

    def clear(self):
        """Drop buffered candidates and stop stats polling."""
        self.candidate_buffers.clear()
        if self.stats_sampler is not None:
            self.stats_sampler.stop()
            self.stats_sampler = None

    # ── Helpers ──────────────────────────────────────────────

    def _is_current(self, state: PeerConnectionState) -> bool:
        return self.peers.get(state.peer_id) is state

    def _local_sdp(self, state: PeerConnectionState) -> str:
        # The engine may re-serialize the committed body, so annotate what is sent too
        return annotate_bandwidth(self.engine.local_description(state.pc) or "", self.config.target_bitrate_kbps)

    def _notify(self, event: str, *args):
        """Notify all callbacks for an event."""
        for callback in list(self.callbacks.get(event, ())):
            try:
                callback(*args)
            except Exception as e:
                self.log_error("Error in orchestrator callback", {
                    "event": event,
                    "error": str(e)
                })

    def get_status(self) -> Dict[str, Any]:
        return {
            'role': self.role.value if self.role else None,
            'peers': {peer_id: state.phase.value for peer_id, state in self.peers.items()},
            'buffered_candidates': len(self.candidate_buffers),
            'stats_polling': bool(self.stats_sampler and self.stats_sampler.running)
        }
