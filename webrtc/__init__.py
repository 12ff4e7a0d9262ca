"""
WebRTC module for FollowCam.
Handles signaling sessions, peer connection negotiation, capture and stats.
"""

from .candidate_buffer import CandidateBuffer, CandidateBuffers
from .engine import PeerConnectionEngine, EncoderParameters
from .media import MediaCapture, LocalMedia
from .message_handler import SignalingMessageHandler
from .peer_manager import ConnectionOrchestrator
from .sdp import annotate_bandwidth
from .signaling import SignalingSession, generate_stream_id
from .state import Role, SessionStatus, PeerPhase, PeerConnectionState
from .stats import StatsSampler, StatsSnapshot, SamplerState, parse_stats

__all__ = [
    'CandidateBuffer',
    'CandidateBuffers',
    'PeerConnectionEngine',
    'EncoderParameters',
    'MediaCapture',
    'LocalMedia',
    'SignalingMessageHandler',
    'ConnectionOrchestrator',
    'annotate_bandwidth',
    'SignalingSession',
    'generate_stream_id',
    'Role',
    'SessionStatus',
    'PeerPhase',
    'PeerConnectionState',
    'StatsSampler',
    'StatsSnapshot',
    'SamplerState',
    'parse_stats',
]
