"""
Tests for the per-peer offer/answer/ICE orchestration.
"""
import asyncio

import pytest

from messaging.codec import Description
from webrtc.peer_manager import ConnectionOrchestrator
from webrtc.state import PeerPhase, Role, SessionStatus

from conftest import FakeTrack, VIDEO_SDP, settle


class Outbox:
    def __init__(self):
        self.messages = []

    async def __call__(self, message):
        self.messages.append(message)
        return True


class Media:
    def __init__(self, *tracks):
        self.tracks = list(tracks)


@pytest.fixture
def outbox():
    return Outbox()


@pytest.fixture
async def orchestrator(engine, config, outbox):
    orchestrator = ConnectionOrchestrator(engine, config, outbox,
                                          local_media=lambda: Media(FakeTrack("video"), FakeTrack("audio")))
    orchestrator.stream_id = "abcdefgh"
    yield orchestrator
    await orchestrator.close_all()
    orchestrator.clear()


async def test_sender_offer_flow(orchestrator, engine, outbox):
    orchestrator.role = Role.SENDER
    await orchestrator.create_offer("viewer-1")

    pc = engine.connections[0]
    assert [sender.track.kind for sender in pc.senders] == ["video", "audio"]
    assert pc.local[0] == "offer"
    assert "b=AS:12000" in pc.local[1]

    assert len(outbox.messages) == 1
    offer = outbox.messages[0]
    assert isinstance(offer, Description)
    assert (offer.kind, offer.uuid, offer.stream_id) == ("offer", "viewer-1", "abcdefgh")
    assert "b=AS:12000" in offer.sdp
    assert orchestrator.peers["viewer-1"].phase == PeerPhase.OFFER_SENT


async def test_sender_optimizes_video_encoder_after_delay(orchestrator, engine):
    orchestrator.role = Role.SENDER
    await orchestrator.create_offer("viewer-1")
    assert engine.encoder_updates == []

    await asyncio.sleep(0.05)

    assert len(engine.encoder_updates) == 1
    sender, parameters = engine.encoder_updates[0]
    assert sender.track.kind == "video"
    assert parameters.max_bitrate == 12_000_000
    assert parameters.scale_resolution_down_by == 1
    assert parameters.degradation_preference == "maintain-resolution"


async def test_closing_peer_cancels_pending_optimization(orchestrator, engine):
    orchestrator.role = Role.SENDER
    await orchestrator.create_offer("viewer-1")
    await orchestrator.close_peer("viewer-1")

    await asyncio.sleep(0.05)
    assert engine.encoder_updates == []
    assert engine.connections[0].closed


async def test_new_offer_request_replaces_connection(orchestrator, engine):
    orchestrator.role = Role.SENDER
    await orchestrator.create_offer("viewer-1")
    await orchestrator.create_offer("viewer-1")

    first, second = engine.connections
    assert first.closed
    assert not second.closed
    assert orchestrator.peers["viewer-1"].pc is second


async def test_answer_without_offer_is_ignored(orchestrator, engine, outbox):
    orchestrator.role = Role.SENDER
    await orchestrator.handle_answer("stranger", VIDEO_SDP)

    assert engine.connections == []
    assert outbox.messages == []


async def test_answer_commits_remote_and_flushes(orchestrator, engine):
    orchestrator.role = Role.SENDER
    await orchestrator.create_offer("viewer-1")
    await orchestrator.handle_candidate("viewer-1", "c1")
    await orchestrator.handle_candidate("viewer-1", "c2")

    pc = engine.connections[0]
    assert pc.candidates == []

    await orchestrator.handle_answer("viewer-1", VIDEO_SDP)

    assert pc.remote == ("answer", VIDEO_SDP)
    assert pc.candidates == ["c1", "c2"]
    assert orchestrator.peers["viewer-1"].phase == PeerPhase.REMOTE_DESCRIPTION_SET

    await orchestrator.handle_candidate("viewer-1", "c3")
    assert pc.candidates == ["c1", "c2", "c3"]


async def test_viewer_candidates_before_offer_applied_in_order_once(orchestrator, engine, outbox):
    orchestrator.role = Role.VIEWER
    candidates = [f"cand-{i}" for i in range(5)]
    for candidate in candidates:
        await orchestrator.handle_candidate("sender-1", candidate)

    await orchestrator.handle_offer("sender-1", VIDEO_SDP)

    pc = engine.connections[0]
    assert pc.remote == ("offer", VIDEO_SDP)
    assert pc.candidates == candidates
    assert orchestrator.candidate_buffers.pending("sender-1") == 0

    await orchestrator.flush_candidates("sender-1")
    assert pc.candidates == candidates

    answer = outbox.messages[0]
    assert (answer.kind, answer.uuid, answer.stream_id) == ("answer", "sender-1", "abcdefgh")
    assert "b=AS:12000" in answer.sdp
    assert pc.local[0] == "answer"
    assert orchestrator.peers["sender-1"].phase == PeerPhase.ANSWER_SENT


async def test_flush_without_connection_is_noop(orchestrator):
    await orchestrator.handle_candidate("p", "c1")
    await orchestrator.flush_candidates("p")
    await orchestrator.flush_candidates("unknown")

    assert orchestrator.candidate_buffers.pending("p") == 1


async def test_bad_candidate_is_not_fatal(orchestrator, engine):
    orchestrator.role = Role.VIEWER
    await orchestrator.handle_candidate("sender-1", "c1")
    await orchestrator.handle_candidate("sender-1", "bad")
    await orchestrator.handle_candidate("sender-1", "c2")
    await orchestrator.handle_offer("sender-1", VIDEO_SDP)

    assert engine.connections[0].candidates == ["c1", "c2"]


async def test_offer_failure_aborts_only_that_peer(orchestrator, engine, outbox):
    orchestrator.role = Role.SENDER
    await orchestrator.create_offer("viewer-1")

    engine.fail_offer = True
    await orchestrator.create_offer("viewer-2")

    assert "viewer-2" not in orchestrator.peers
    assert engine.connections[1].closed
    assert orchestrator.peers["viewer-1"].phase == PeerPhase.OFFER_SENT
    assert len(outbox.messages) == 1


async def test_bad_remote_offer_aborts(orchestrator, engine, outbox):
    orchestrator.role = Role.VIEWER
    engine.fail_remote = True
    await orchestrator.handle_offer("sender-1", "garbage")

    assert orchestrator.peers == {}
    assert outbox.messages == []


async def test_ice_state_transitions_are_reported(orchestrator, engine):
    statuses, errors = [], []
    orchestrator.add_callback('status', statuses.append)
    orchestrator.add_callback('error', errors.append)
    orchestrator.role = Role.VIEWER
    await orchestrator.handle_offer("sender-1", VIDEO_SDP)
    pc = engine.connections[0]

    pc.ice_callback("checking")
    pc.ice_callback("completed")
    assert orchestrator.peers["sender-1"].phase == PeerPhase.CONNECTED
    pc.ice_callback("disconnected")
    pc.ice_callback("failed")

    assert statuses == [SessionStatus.STREAMING, SessionStatus.DISCONNECTED, SessionStatus.FAILED]
    assert errors == ["Connection failed, check network"]
    state = orchestrator.peers["sender-1"]
    assert state.phase == PeerPhase.FAILED

    await settle()
    assert orchestrator.peers == {}
    assert pc.closed
    assert state.phase == PeerPhase.FAILED
    # no automatic rebuild
    assert len(engine.connections) == 1


async def test_duplicate_answer_keeps_live_connection(orchestrator, engine):
    orchestrator.role = Role.SENDER
    await orchestrator.create_offer("viewer-1")
    await orchestrator.handle_answer("viewer-1", VIDEO_SDP)
    pc = engine.connections[0]
    pc.ice_callback("connected")

    engine.fail_remote = True
    await orchestrator.handle_answer("viewer-1", VIDEO_SDP)

    assert orchestrator.peers["viewer-1"].pc is pc
    assert orchestrator.peers["viewer-1"].phase == PeerPhase.CONNECTED
    assert not pc.closed


async def test_rejected_first_answer_aborts_peer(orchestrator, engine):
    orchestrator.role = Role.SENDER
    await orchestrator.create_offer("viewer-1")

    engine.fail_remote = True
    await orchestrator.handle_answer("viewer-1", "garbage")

    assert orchestrator.peers == {}
    assert engine.connections[0].closed


async def test_failed_and_closed_connections_are_released(orchestrator, engine):
    orchestrator.role = Role.SENDER
    for i in range(5):
        await orchestrator.create_offer(f"viewer-{i}")
        await orchestrator.handle_candidate(f"viewer-{i}", "late")

    for i, pc in enumerate(engine.connections):
        pc.ice_callback("failed" if i % 2 else "closed")
    await settle()

    assert orchestrator.peers == {}
    assert all(pc.closed for pc in engine.connections)
    assert len(orchestrator.candidate_buffers) == 0


async def test_events_from_replaced_connection_are_ignored(orchestrator, engine):
    statuses = []
    orchestrator.add_callback('status', statuses.append)
    orchestrator.role = Role.VIEWER
    await orchestrator.handle_offer("sender-1", VIDEO_SDP)
    await orchestrator.handle_offer("sender-1", VIDEO_SDP)

    engine.connections[0].ice_callback("connected")
    assert statuses == []


async def test_remote_track_is_surfaced(orchestrator, engine):
    tracks = []
    orchestrator.add_callback('remote_track', lambda peer_id, track: tracks.append((peer_id, track.kind)))
    orchestrator.role = Role.VIEWER
    await orchestrator.handle_offer("sender-1", VIDEO_SDP)

    engine.connections[0].track_callback(FakeTrack("video"))
    assert tracks == [("sender-1", "video")]


async def test_callback_errors_do_not_escape(orchestrator, engine):
    def broken(_status):
        raise RuntimeError("ui crashed")

    orchestrator.add_callback('status', broken)
    orchestrator.role = Role.VIEWER
    await orchestrator.handle_offer("sender-1", VIDEO_SDP)
    engine.connections[0].ice_callback("connected")


async def test_close_all_and_clear(orchestrator, engine):
    orchestrator.role = Role.SENDER
    await orchestrator.create_offer("viewer-1")
    await orchestrator.create_offer("viewer-2")
    await orchestrator.handle_candidate("viewer-3", "c1")

    await orchestrator.close_all()
    orchestrator.clear()
    await settle()

    assert all(pc.closed for pc in engine.connections)
    assert orchestrator.peers == {}
    assert len(orchestrator.candidate_buffers) == 0
    assert orchestrator.stats_sampler is None
