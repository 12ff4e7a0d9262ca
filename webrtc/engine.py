"""
Peer-connection engine backed by aiortc.

The orchestrator drives peer connections only through this adapter so the
negotiation state machine stays independent of the engine's object model.
"""
import dataclasses
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from aiortc import RTCConfiguration, RTCPeerConnection, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp

from core.exceptions import NegotiationError
from core.logging import LoggerMixin


@dataclass
class EncoderParameters:
    """Send-side encoding parameters for one track."""
    max_bitrate: Optional[int] = None
    scale_resolution_down_by: Optional[float] = None
    degradation_preference: Optional[str] = None


class PeerConnectionEngine(LoggerMixin):
    """Creates and drives aiortc peer connections."""

    def __init__(self, rtc_config: Optional[RTCConfiguration] = None):
        super().__init__()
        self.rtc_config = rtc_config
        self._encoder_parameters: Dict[int, EncoderParameters] = {}

    def create(self) -> RTCPeerConnection:
        return RTCPeerConnection(configuration=self.rtc_config)

    def add_local_track(self, pc: RTCPeerConnection, track):
        """Attach a local track send-only and return its sender."""
        transceiver = pc.addTransceiver(track, direction="sendonly")
        return transceiver.sender

    async def create_offer(self, pc: RTCPeerConnection) -> str:
        offer = await pc.createOffer()
        return offer.sdp

    async def create_answer(self, pc: RTCPeerConnection) -> str:
        answer = await pc.createAnswer()
        return answer.sdp

    async def set_local_description(self, pc: RTCPeerConnection, kind: str, sdp: str):
        await pc.setLocalDescription(RTCSessionDescription(sdp=sdp, type=kind))

    def local_description(self, pc: RTCPeerConnection) -> Optional[str]:
        description = pc.localDescription
        return description.sdp if description else None

    async def set_remote_description(self, pc: RTCPeerConnection, kind: str, sdp: str):
        await pc.setRemoteDescription(RTCSessionDescription(sdp=sdp, type=kind))

    def has_remote_description(self, pc: RTCPeerConnection) -> bool:
        return pc.remoteDescription is not None

    async def add_ice_candidate(self, pc: RTCPeerConnection, candidate: Any):
        """Apply a browser-style candidate (``{"candidate", "sdpMid", "sdpMLineIndex"}``)."""
        if isinstance(candidate, str):
            candidate = {"candidate": candidate}
        if not isinstance(candidate, dict):
            raise NegotiationError("Unsupported candidate payload", {"type": type(candidate).__name__})

        line = candidate.get("candidate") or ""
        if not line:
            # end-of-candidates marker
            return

        if line.startswith("candidate:"):
            line = line.split(":", 1)[1]

        try:
            ice_candidate = candidate_from_sdp(line)
        except (AssertionError, IndexError, ValueError) as e:
            raise NegotiationError("Malformed ICE candidate", {"candidate": line, "error": str(e)}) from e

        ice_candidate.sdpMid = candidate.get("sdpMid")
        ice_candidate.sdpMLineIndex = candidate.get("sdpMLineIndex")
        await pc.addIceCandidate(ice_candidate)

    def get_encoder_parameters(self, sender) -> EncoderParameters:
        parameters = self._encoder_parameters.get(id(sender))
        if parameters is None:
            parameters = EncoderParameters()
        return dataclasses.replace(parameters)

    async def set_encoder_parameters(self, sender, parameters: EncoderParameters) -> bool:
        """Record parameters for a sender and seed its encoder's bitrate.

        Best effort only: aiortc clamps ``target_bitrate`` and later retunes it
        from its own bandwidth estimate, so the recorded parameters are the
        requested ceiling, not the live encoder rate. Returns ``True`` when the
        value was written to an encoder and ``False`` when the sender has not
        built one yet.
        """
        self._encoder_parameters[id(sender)] = dataclasses.replace(parameters)

        encoder = getattr(sender, "_RTCRtpSender__encoder", None)
        if encoder is None or not hasattr(encoder, "target_bitrate"):
            return False

        if parameters.max_bitrate:
            encoder.target_bitrate = parameters.max_bitrate
        return True

    async def get_stats(self, pc: RTCPeerConnection) -> List[Dict[str, Any]]:
        report = await pc.getStats()
        return [dataclasses.asdict(stats) for stats in report.values()]

    def connection_state(self, pc: RTCPeerConnection) -> str:
        return pc.connectionState

    def on_ice_state_change(self, pc: RTCPeerConnection, callback: Callable[[str], Any]):
        @pc.on("iceconnectionstatechange")
        async def on_ice_connection_state_change():
            result = callback(pc.iceConnectionState)
            if hasattr(result, "__await__"):
                await result

    def on_track(self, pc: RTCPeerConnection, callback: Callable[[Any], Any]):
        @pc.on("track")
        def on_remote_track(track):
            callback(track)

    async def close(self, pc: RTCPeerConnection):
        for sender in pc.getSenders():
            self._encoder_parameters.pop(id(sender), None)
        await pc.close()
