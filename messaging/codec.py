"""
Wire codec for FollowCam signaling messages.

Messages are JSON objects exchanged over the relay WebSocket:

- ``{"UUID"}``: identity assignment, sent once by the relay right after connect
- ``{"request": "seed", "streamID"}``: sender announces a stream
- ``{"request": "offerSDP", "streamID"}``: viewer requests a stream; without
  ``streamID`` (and with ``UUID`` set to the viewer) it is the relay's prompt
  asking a sender to create an offer
- ``{"description": {"type", "sdp"}, "UUID", "streamID"}``: offer/answer
- ``{"candidate", "UUID", "streamID"}`` / ``{"candidates": [...], "UUID"}``: ICE
"""
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

from core.exceptions import MessageError
from core.validation_utils import ValidationUtils


REQUEST_SEED = "seed"
REQUEST_OFFER = "offerSDP"


@dataclass(frozen=True)
class UuidAssign:
    uuid: str


@dataclass(frozen=True)
class Seed:
    stream_id: str
    uuid: Optional[str] = None


@dataclass(frozen=True)
class OfferRequest:
    stream_id: Optional[str] = None
    uuid: Optional[str] = None


@dataclass(frozen=True)
class Description:
    kind: str  # "offer" | "answer"
    sdp: str
    uuid: Optional[str] = None
    stream_id: Optional[str] = None


@dataclass(frozen=True)
class Candidate:
    candidate: Any
    uuid: Optional[str] = None
    stream_id: Optional[str] = None


@dataclass(frozen=True)
class Candidates:
    candidates: Tuple[Any, ...]
    uuid: Optional[str] = None
    stream_id: Optional[str] = None


SignalingMessage = Union[UuidAssign, Seed, OfferRequest, Description, Candidate, Candidates]


def _with_routing(payload: Dict[str, Any], message: SignalingMessage) -> Dict[str, Any]:
    uuid = getattr(message, 'uuid', None)
    stream_id = getattr(message, 'stream_id', None)
    if uuid is not None:
        payload['UUID'] = uuid
    if stream_id is not None:
        payload['streamID'] = stream_id
    return payload


class MessageCodec:
    """Serializes and parses the signaling message union."""

    @staticmethod
    def to_dict(message: SignalingMessage) -> Dict[str, Any]:
        """Build the wire object for a message."""
        if isinstance(message, UuidAssign):
            return {'UUID': message.uuid}
        if isinstance(message, Seed):
            return _with_routing({'request': REQUEST_SEED}, message)
        if isinstance(message, OfferRequest):
            return _with_routing({'request': REQUEST_OFFER}, message)
        if isinstance(message, Description):
            return _with_routing({'description': {'type': message.kind, 'sdp': message.sdp}}, message)
        if isinstance(message, Candidate):
            return _with_routing({'candidate': message.candidate}, message)
        if isinstance(message, Candidates):
            return _with_routing({'candidates': list(message.candidates)}, message)
        raise MessageError("Unsupported message type", {"type": type(message).__name__})

    @staticmethod
    def serialize(message: SignalingMessage) -> str:
        return json.dumps(MessageCodec.to_dict(message))

    @staticmethod
    def from_dict(data: Any) -> SignalingMessage:
        """Build a message from a decoded wire object."""
        if not isinstance(data, dict):
            raise MessageError("Signaling message must be a JSON object", {"type": type(data).__name__})

        for key in ('UUID', 'streamID'):
            error = ValidationUtils.validate_optional_string(data, key)
            if error:
                raise MessageError(error, {"keys": list(data.keys())})

        uuid = data.get('UUID')
        stream_id = data.get('streamID')

        if 'description' in data:
            error = ValidationUtils.validate_description(data['description'])
            if error:
                raise MessageError(error)
            description = data['description']
            return Description(description['type'], description['sdp'], uuid, stream_id)

        if 'candidate' in data:
            if data['candidate'] is None:
                raise MessageError("Candidate payload is empty")
            return Candidate(data['candidate'], uuid, stream_id)

        if 'candidates' in data:
            if not isinstance(data['candidates'], list):
                raise MessageError("Candidates payload must be a list")
            return Candidates(tuple(data['candidates']), uuid, stream_id)

        request = data.get('request')
        if request == REQUEST_SEED:
            if stream_id is None:
                raise MessageError("Seed request without streamID")
            return Seed(stream_id, uuid)
        if request == REQUEST_OFFER:
            return OfferRequest(stream_id, uuid)
        if request is not None:
            raise MessageError("Unknown request", {"request": request})

        if uuid is not None and set(data.keys()) == {'UUID'}:
            return UuidAssign(uuid)

        raise MessageError("Unrecognized signaling message", {"keys": list(data.keys())})

    @staticmethod
    def parse(raw: Union[str, bytes]) -> SignalingMessage:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise MessageError("Failed to parse message as JSON", {"error": str(e)}) from e
        return MessageCodec.from_dict(data)
