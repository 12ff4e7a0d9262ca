"""
Messaging module for FollowCam.
Contains the signaling wire codec and message types.
"""

from .codec import (
    MessageCodec,
    SignalingMessage,
    UuidAssign,
    Seed,
    OfferRequest,
    Description,
    Candidate,
    Candidates,
)

__all__ = [
    'MessageCodec',
    'SignalingMessage',
    'UuidAssign',
    'Seed',
    'OfferRequest',
    'Description',
    'Candidate',
    'Candidates',
]
