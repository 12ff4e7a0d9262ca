"""
Service layer for FollowCam.
Contains the relay stream directory.
"""

from .relay import RelayServer, PeerRecord, StreamEntry, Outbound

__all__ = [
    'RelayServer',
    'PeerRecord',
    'StreamEntry',
    'Outbound',
]
