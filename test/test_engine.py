"""
Tests for the aiortc-backed peer connection engine.
"""
from types import SimpleNamespace

import pytest
from aiortc import RTCConfiguration
from aiortc.mediastreams import VideoStreamTrack

from core.exceptions import NegotiationError
from webrtc.engine import EncoderParameters, PeerConnectionEngine


@pytest.fixture
async def engine_and_pc():
    engine = PeerConnectionEngine(RTCConfiguration(iceServers=[]))
    pc = engine.create()
    yield engine, pc
    await engine.close(pc)


async def test_offer_contains_sendonly_video(engine_and_pc):
    engine, pc = engine_and_pc
    sender = engine.add_local_track(pc, VideoStreamTrack())

    sdp = await engine.create_offer(pc)

    assert sender.track.kind == "video"
    assert "m=video" in sdp
    assert "a=sendonly" in sdp
    assert not engine.has_remote_description(pc)
    assert engine.local_description(pc) is None


async def test_end_of_candidates_is_skipped(engine_and_pc):
    engine, pc = engine_and_pc
    await engine.add_ice_candidate(pc, {"candidate": "", "sdpMid": "0", "sdpMLineIndex": 0})
    await engine.add_ice_candidate(pc, "")


@pytest.mark.parametrize("candidate", ["candidate:garbage", {"candidate": "1 1 udp"}, 42])
async def test_malformed_candidate_raises(engine_and_pc, candidate):
    engine, pc = engine_and_pc
    with pytest.raises(NegotiationError):
        await engine.add_ice_candidate(pc, candidate)


async def test_encoder_parameters_are_copied():
    engine = PeerConnectionEngine()
    sender = SimpleNamespace()

    parameters = engine.get_encoder_parameters(sender)
    assert parameters == EncoderParameters()

    parameters.max_bitrate = 12_000_000
    assert engine.get_encoder_parameters(sender).max_bitrate is None

    # no encoder built yet
    assert await engine.set_encoder_parameters(sender, parameters) is False
    stored = engine.get_encoder_parameters(sender)
    assert stored == parameters
    assert stored is not parameters


async def test_encoder_bitrate_is_pushed_when_encoder_exists():
    engine = PeerConnectionEngine()
    encoder = SimpleNamespace(target_bitrate=500_000)
    sender = SimpleNamespace(_RTCRtpSender__encoder=encoder)

    applied = await engine.set_encoder_parameters(sender, EncoderParameters(max_bitrate=12_000_000))

    assert applied
    assert encoder.target_bitrate == 12_000_000

    # the engine retunes from its bandwidth estimate; the requested ceiling is kept
    encoder.target_bitrate = 250_000
    assert engine.get_encoder_parameters(sender).max_bitrate == 12_000_000
