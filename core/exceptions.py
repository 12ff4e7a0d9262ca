"""
Custom exception classes for the FollowCam signaling stack.
"""


class FollowCamError(Exception):
    """Base exception for FollowCam."""
    
    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.details = details or {}
    
    def __str__(self):
        if self.details:
            return f"{super().__str__()} - {self.details}"
        return super().__str__()


class SignalingError(FollowCamError):
    """Raised when the transport to the relay fails."""
    pass


class MessageError(FollowCamError):
    """Raised when a signaling message cannot be parsed or serialized."""
    pass


class DirectoryError(FollowCamError):
    """Raised when a peer violates the relay directory protocol."""
    pass


class NegotiationError(FollowCamError):
    """Raised when an offer/answer/candidate step fails."""
    pass


class CaptureError(FollowCamError):
    """Raised when no media capture constraint set could be satisfied."""
    pass
