"""
Core module for FollowCam.
Contains configuration, logging, and common utilities.
"""

from .config import RelayConfig, SessionConfig, VideoConstraints, AudioConstraints
from .logging import setup_logging, debug_log, LoggerMixin
from .exceptions import (
    FollowCamError,
    SignalingError,
    MessageError,
    DirectoryError,
    NegotiationError,
    CaptureError,
)

__all__ = [
    'RelayConfig',
    'SessionConfig',
    'VideoConstraints',
    'AudioConstraints',
    'setup_logging',
    'debug_log',
    'LoggerMixin',
    'FollowCamError',
    'SignalingError',
    'MessageError',
    'DirectoryError',
    'NegotiationError',
    'CaptureError',
]
