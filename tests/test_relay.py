"""
Tests for the signaling relay.
"""
import pytest

from callhub.calls import SignalingRelay
from callhub.models.events import PeerToggleAudio, RelayedAnswer, RelayedCandidate, RelayedOffer

OFFER = {"type": "offer", "sdp": "v=0\r\no=- 4611731400430051336 2 IN IP4 127.0.0.1\r\n"}


@pytest.fixture
def room(relay):
    relay.join("call_1", "h-alice", "alice")
    relay.join("call_1", "h-bob", "bob")
    return relay


@pytest.mark.unit
@pytest.mark.asyncio
async def test_relay_forwards_payload_unchanged(room, sink):
    delivered = await room.relay("call_1", "webrtc:offer", OFFER, "alice", "h-alice")

    assert delivered == 1
    event = sink.last("h-bob")
    assert isinstance(event, RelayedOffer)
    assert event.payload == OFFER
    assert event.from_id == "alice"
    assert event.session_id == "call_1"
    # Never echoed back to the sender
    assert sink.to("h-alice") == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_relay_kinds_map_to_event_types(room, sink):
    await room.relay("call_1", "webrtc:answer", {"type": "answer", "sdp": "x"}, "bob", "h-bob")
    await room.relay("call_1", "webrtc:ice-candidate", {"candidate": "c", "sdpMid": "0"}, "bob", "h-bob")

    events = sink.to("h-alice")
    assert isinstance(events[0], RelayedAnswer)
    assert isinstance(events[1], RelayedCandidate)
    assert events[1].payload == {"candidate": "c", "sdpMid": "0"}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_relay_preserves_order(room, sink):
    for i in range(5):
        await room.relay("call_1", "webrtc:ice-candidate", {"candidate": str(i)}, "alice", "h-alice")

    assert [e.payload["candidate"] for e in sink.to("h-bob")] == ["0", "1", "2", "3", "4"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_relay_is_scoped_to_room(room, sink):
    room.join("call_2", "h-carol", "carol")
    room.join("call_2", "h-dave", "dave")

    await room.relay("call_1", "webrtc:offer", OFFER, "alice", "h-alice")

    assert sink.to("h-carol") == []
    assert sink.to("h-dave") == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_relay_from_non_member_is_dropped(room, sink):
    delivered = await room.relay("call_1", "webrtc:offer", OFFER, "mallory", "h-mallory")

    assert delivered == 0
    assert sink.sent == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_relay_without_room(relay, sink):
    assert await relay.relay("call_missing", "webrtc:offer", OFFER, "alice", "h-alice") is None
    assert sink.sent == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_relay_unknown_kind(room):
    with pytest.raises(ValueError):
        await room.relay("call_1", "webrtc:renegotiate", OFFER, "alice", "h-alice")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_relay_to_vanished_handle(room, sink):
    sink.closed.add("h-bob")

    delivered = await room.relay("call_1", "webrtc:offer", OFFER, "alice", "h-alice")

    assert delivered == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_broadcast_excludes_sender(room, sink):
    event = PeerToggleAudio(session_id="call_1", user_id="alice", enabled=False)

    assert await room.broadcast("call_1", event, "h-alice") == 1
    assert sink.last("h-bob") == event
    assert sink.to("h-alice") == []

    assert await room.broadcast("call_missing", event, "h-alice") is None
    assert await room.broadcast("call_1", event, "h-mallory") == 0


@pytest.mark.unit
def test_leave_all_reports_rooms(relay):
    relay.join("call_1", "h-alice", "alice")
    relay.join("call_2", "h-alice", "alice")
    relay.join("call_2", "h-bob", "bob")

    left = relay.leave_all("h-alice")

    assert sorted(left) == ["call_1", "call_2"]
    assert relay.members("call_2") == {"h-bob": "bob"}
    assert relay.leave_all("h-alice") == []


@pytest.mark.unit
def test_close_removes_room(relay):
    relay.join("call_1", "h-alice", "alice")
    assert relay.has_room("call_1")
    assert relay.room_count() == 1

    relay.close("call_1")
    relay.close("call_1")

    assert not relay.has_room("call_1")
    assert relay.members("call_1") == {}


@pytest.mark.unit
def test_members_returns_copy(relay):
    relay.join("call_1", "h-alice", "alice")

    members = relay.members("call_1")
    members["h-mallory"] = "mallory"

    assert relay.members("call_1") == {"h-alice": "alice"}


@pytest.mark.unit
def test_relay_instance_is_independent(sink):
    first = SignalingRelay(sink)
    second = SignalingRelay(sink)
    first.join("call_1", "h-alice", "alice")

    assert not second.has_room("call_1")
