"""
Tests for the call lifecycle coordinator.
"""
import asyncio

import pytest

from callhub.calls import CallError, CalleeOfflineError, SessionNotFoundError
from callhub.models.events import (
    CallAccepted,
    CallEnded,
    CallInitiated,
    CallMissed,
    CallRejected,
    IncomingCall,
)
from callhub.session import CallStatus


async def _ring(coordinator, caller="alice", callee="bob", handle="h-alice", context_ref=None):
    return await coordinator.initiate(caller, handle, callee, context_ref)


# ===========================
# Initiate
# ===========================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_initiate_notifies_caller_and_callee(coordinator, sink, in_memory_store):
    session = await _ring(coordinator, context_ref="booking-1009")

    initiated = sink.last("h-alice")
    assert isinstance(initiated, CallInitiated)
    assert initiated.session_id == session.session_id
    assert initiated.callee_id == "bob"
    assert initiated.callee_online is True

    incoming = sink.last("h-bob")
    assert isinstance(incoming, IncomingCall)
    assert incoming.caller_id == "alice"
    assert incoming.caller_name == "Alice Agent"
    assert incoming.caller_avatar == "https://cdn.example.com/alice.png"
    assert incoming.context_ref == "booking-1009"

    stored = await in_memory_store.get(session.session_id)
    assert stored.status == CallStatus.RINGING
    assert coordinator.pending_timers() == 1
    assert coordinator.relay.members(session.session_id) == {"h-alice": "alice"}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_initiate_rings_every_callee_handle(coordinator, presence, sink):
    presence.register("bob", "h-bob-phone")
    presence.register("alice", "h-alice-tab2")

    await _ring(coordinator)

    assert sink.types_to("h-bob") == ["call:incoming"]
    assert sink.types_to("h-bob-phone") == ["call:incoming"]
    assert sink.types_to("h-alice") == ["call:initiated"]
    # Only the requesting tab hears about its own call
    assert sink.to("h-alice-tab2") == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_initiate_self_call_refused(coordinator, sink):
    with pytest.raises(CallError) as exc_info:
        await _ring(coordinator, callee="alice")

    assert exc_info.value.message == "Cannot call yourself"
    assert sink.sent == []
    assert coordinator.pending_timers() == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_initiate_offline_callee_keeps_ringing(coordinator, sink):
    session = await _ring(coordinator, callee="carol")

    initiated = sink.last("h-alice")
    assert initiated.callee_online is False
    assert session.status == CallStatus.RINGING
    assert coordinator.pending_timers() == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_initiate_offline_callee_fail_fast(make_coordinator, sink, in_memory_store):
    coordinator = make_coordinator(fail_fast_offline=True)

    with pytest.raises(CalleeOfflineError) as exc_info:
        await _ring(coordinator, callee="carol")

    assert exc_info.value.message == "User is offline"
    assert (await in_memory_store.get_stats())["total_sessions"] == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_initiate_without_profile(coordinator, presence, sink):
    presence.register("dave", "h-dave")

    await coordinator.initiate("dave", "h-dave", "bob", None)

    incoming = sink.last("h-bob")
    assert incoming.caller_id == "dave"
    assert incoming.caller_name is None


# ===========================
# Accept / End
# ===========================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_accept_then_end(coordinator, sink, clock, metrics):
    session = await _ring(coordinator)
    sink.clear()

    clock.advance(3)
    accepted = await coordinator.accept(session.session_id, "bob", "h-bob")

    assert accepted.status == CallStatus.ACTIVE
    assert accepted.started_at == clock.now
    assert coordinator.pending_timers() == 0
    assert isinstance(sink.last("h-alice"), CallAccepted)
    assert isinstance(sink.last("h-bob"), CallAccepted)
    assert set(coordinator.relay.members(session.session_id)) == {"h-alice", "h-bob"}

    clock.advance(47)
    ended = await coordinator.end(session.session_id, "alice")

    assert ended.status == CallStatus.ENDED
    assert ended.duration_seconds == 47
    assert sink.last("h-bob") == CallEnded(session_id=session.session_id, duration_seconds=47)
    assert sink.last("h-alice").duration_seconds == 47
    assert not coordinator.relay.has_room(session.session_id)
    assert metrics.call_counts == {"initiated": 1, "accepted": 1, "ended": 1}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_accept_reaches_every_handle_of_both_parties(coordinator, presence, sink):
    presence.register("bob", "h-bob-phone")
    session = await _ring(coordinator)
    sink.clear()

    await coordinator.accept(session.session_id, "bob", "h-bob-phone")

    for handle in ("h-alice", "h-bob", "h-bob-phone"):
        assert sink.types_to(handle) == ["call:accepted"]

    # Only the answering device joins the room
    assert set(coordinator.relay.members(session.session_id)) == {"h-alice", "h-bob-phone"}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_accept_by_non_callee_is_noop(coordinator, presence, sink, in_memory_store):
    presence.register("carol", "h-carol")
    session = await _ring(coordinator)
    sink.clear()

    assert await coordinator.accept(session.session_id, "carol", "h-carol") is None
    assert await coordinator.accept(session.session_id, "alice", "h-alice") is None

    assert sink.sent == []
    assert (await in_memory_store.get(session.session_id)).status == CallStatus.RINGING
    assert coordinator.pending_timers() == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_accept_unknown_session(coordinator):
    with pytest.raises(SessionNotFoundError) as exc_info:
        await coordinator.accept("call_missing", "bob", "h-bob")

    assert exc_info.value.message == "Call not found"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_accept_twice_second_is_noop(coordinator, sink):
    session = await _ring(coordinator)
    await coordinator.accept(session.session_id, "bob", "h-bob")
    sink.clear()

    assert await coordinator.accept(session.session_id, "bob", "h-bob") is None
    assert sink.sent == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_end_while_ringing_is_noop(coordinator, sink, in_memory_store):
    session = await _ring(coordinator)
    sink.clear()

    assert await coordinator.end(session.session_id, "alice") is None
    assert sink.sent == []
    assert (await in_memory_store.get(session.session_id)).status == CallStatus.RINGING


@pytest.mark.unit
@pytest.mark.asyncio
async def test_end_by_outsider_is_noop(coordinator, sink):
    session = await _ring(coordinator)
    await coordinator.accept(session.session_id, "bob", "h-bob")
    sink.clear()

    assert await coordinator.end(session.session_id, "carol") is None
    assert sink.sent == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_terminal_status_is_final(coordinator, sink, in_memory_store):
    session = await _ring(coordinator)
    await coordinator.accept(session.session_id, "bob", "h-bob")
    await coordinator.end(session.session_id, "bob")
    sink.clear()

    assert await coordinator.end(session.session_id, "alice") is None
    assert await coordinator.accept(session.session_id, "bob", "h-bob") is None
    assert await coordinator.reject(session.session_id, "bob") is None
    assert await coordinator.cancel(session.session_id, "alice") is None
    assert await coordinator.expire(session.session_id) is None

    assert sink.sent == []
    assert (await in_memory_store.get(session.session_id)).status == CallStatus.ENDED


# ===========================
# Reject / Cancel / Miss
# ===========================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_reject(coordinator, sink, in_memory_store):
    session = await _ring(coordinator)
    sink.clear()

    rejected = await coordinator.reject(session.session_id, "bob")

    assert rejected.status == CallStatus.REJECTED
    assert rejected.duration_seconds == 0
    assert isinstance(sink.last("h-alice"), CallRejected)
    assert isinstance(sink.last("h-bob"), CallRejected)
    assert coordinator.pending_timers() == 0
    assert not coordinator.relay.has_room(session.session_id)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_rejected_call_is_not_overridden_by_late_expiry(coordinator, sink, in_memory_store, clock):
    session = await _ring(coordinator)
    await coordinator.reject(session.session_id, "bob")
    sink.clear()

    clock.advance(61)
    assert await coordinator.expire(session.session_id) is None

    stored = await in_memory_store.get(session.session_id)
    assert stored.status == CallStatus.REJECTED
    assert "call:missed" not in sink.types_to("h-alice")
    assert "call:missed" not in sink.types_to("h-bob")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_reject_before_short_ring_timeout_stays_rejected(make_coordinator, sink, in_memory_store):
    coordinator = make_coordinator(ring_timeout_seconds=0.05)
    session = await _ring(coordinator)
    await coordinator.reject(session.session_id, "bob")

    await asyncio.sleep(0.3)

    assert (await in_memory_store.get(session.session_id)).status == CallStatus.REJECTED
    assert "call:missed" not in sink.types_to("h-alice")
    assert "call:missed" not in sink.types_to("h-bob")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_reject_by_caller_is_noop(coordinator, sink):
    session = await _ring(coordinator)
    sink.clear()

    assert await coordinator.reject(session.session_id, "alice") is None
    assert sink.sent == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cancel_by_caller(coordinator, sink, clock):
    session = await _ring(coordinator)
    sink.clear()

    clock.advance(4)
    cancelled = await coordinator.cancel(session.session_id, "alice")

    assert cancelled.status == CallStatus.ENDED
    assert cancelled.started_at is None
    assert cancelled.ended_at == clock.now
    assert cancelled.duration_seconds == 0
    assert sink.last("h-bob") == CallEnded(session_id=session.session_id, duration_seconds=0)
    assert coordinator.pending_timers() == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cancel_by_callee_is_noop(coordinator, sink):
    session = await _ring(coordinator)
    sink.clear()

    assert await coordinator.cancel(session.session_id, "bob") is None
    assert sink.sent == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_ring_timeout_marks_missed(make_coordinator, sink, in_memory_store, metrics):
    coordinator = make_coordinator(ring_timeout_seconds=0.05)
    session = await _ring(coordinator)
    sink.clear()

    await asyncio.sleep(0.3)

    stored = await in_memory_store.get(session.session_id)
    assert stored.status == CallStatus.MISSED
    assert isinstance(sink.last("h-alice"), CallMissed)
    assert isinstance(sink.last("h-bob"), CallMissed)
    assert coordinator.pending_timers() == 0
    assert metrics.call_counts.get("missed") == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_accepted_call_never_times_out(make_coordinator, sink, in_memory_store):
    coordinator = make_coordinator(ring_timeout_seconds=0.05)
    session = await _ring(coordinator)
    await coordinator.accept(session.session_id, "bob", "h-bob")

    await asyncio.sleep(0.3)

    assert (await in_memory_store.get(session.session_id)).status == CallStatus.ACTIVE
    assert "call:missed" not in sink.types_to("h-alice")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_accept_racing_timeout_has_one_winner(coordinator, sink, in_memory_store):
    session = await _ring(coordinator)
    sink.clear()

    results = await asyncio.gather(
        coordinator.accept(session.session_id, "bob", "h-bob"),
        coordinator.expire(session.session_id)
    )

    winners = [r for r in results if r is not None]
    assert len(winners) == 1

    final = await in_memory_store.get(session.session_id)
    assert final.status == winners[0].status
    expected = "call:accepted" if final.status == CallStatus.ACTIVE else "call:missed"
    assert sink.types_to("h-alice") == [expected]
    assert sink.types_to("h-bob") == [expected]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_concurrent_accepts_from_two_devices(coordinator, presence, sink):
    presence.register("bob", "h-bob-phone")
    session = await _ring(coordinator)
    sink.clear()

    results = await asyncio.gather(
        coordinator.accept(session.session_id, "bob", "h-bob"),
        coordinator.accept(session.session_id, "bob", "h-bob-phone")
    )

    assert sum(r is not None for r in results) == 1
    assert sink.types_to("h-alice") == ["call:accepted"]


# ===========================
# Disconnect Handling
# ===========================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_disconnect_ends_active_call(coordinator, presence, sink, clock, in_memory_store):
    session = await _ring(coordinator)
    await coordinator.accept(session.session_id, "bob", "h-bob")
    sink.clear()

    clock.advance(10)
    presence.unregister("bob", "h-bob")
    await coordinator.handle_disconnect("bob", "h-bob")

    stored = await in_memory_store.get(session.session_id)
    assert stored.status == CallStatus.ENDED
    assert stored.duration_seconds == 10
    assert sink.last("h-alice") == CallEnded(session_id=session.session_id, duration_seconds=10)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_disconnect_of_caller_cancels_ringing_call(coordinator, presence, sink, in_memory_store):
    session = await _ring(coordinator)
    sink.clear()

    presence.unregister("alice", "h-alice")
    await coordinator.handle_disconnect("alice", "h-alice")

    assert (await in_memory_store.get(session.session_id)).status == CallStatus.ENDED
    assert isinstance(sink.last("h-bob"), CallEnded)
    assert coordinator.pending_timers() == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_disconnect_outside_any_room_changes_nothing(coordinator, presence, sink, in_memory_store):
    presence.register("bob", "h-bob-phone")
    session = await _ring(coordinator)
    await coordinator.accept(session.session_id, "bob", "h-bob")
    sink.clear()

    # The second device never joined the room
    await coordinator.handle_disconnect("bob", "h-bob-phone")

    assert (await in_memory_store.get(session.session_id)).status == CallStatus.ACTIVE
    assert sink.sent == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_disconnect_keeps_call_when_disabled(make_coordinator, sink, in_memory_store):
    coordinator = make_coordinator(end_on_disconnect=False)
    session = await _ring(coordinator)
    await coordinator.accept(session.session_id, "bob", "h-bob")

    await coordinator.handle_disconnect("bob", "h-bob")

    assert (await in_memory_store.get(session.session_id)).status == CallStatus.ACTIVE
    assert coordinator.relay.members(session.session_id) == {"h-alice": "alice"}


# ===========================
# Restart Recovery
# ===========================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_resume_rearms_ringing_and_ends_active(make_coordinator, in_memory_store, clock):
    ringing = await in_memory_store.create("alice", "bob")
    active = await in_memory_store.create("alice", "carol")
    await in_memory_store.transition(active.session_id, CallStatus.ACTIVE, {"started_at": clock()})

    clock.advance(30)
    coordinator = make_coordinator(ring_timeout_seconds=60.0)
    result = await coordinator.resume()

    assert result == {"rearmed": 1, "ended": 1}
    assert coordinator.pending_timers() == 1
    assert (await in_memory_store.get(ringing.session_id)).status == CallStatus.RINGING

    stale = await in_memory_store.get(active.session_id)
    assert stale.status == CallStatus.ENDED
    assert stale.duration_seconds == 30


@pytest.mark.unit
@pytest.mark.asyncio
async def test_resume_expires_overdue_ringing_calls(make_coordinator, in_memory_store, clock):
    ringing = await in_memory_store.create("alice", "bob")
    clock.advance(120)

    coordinator = make_coordinator(ring_timeout_seconds=60.0)
    await coordinator.resume()
    await asyncio.sleep(0.05)

    assert (await in_memory_store.get(ringing.session_id)).status == CallStatus.MISSED


@pytest.mark.unit
@pytest.mark.asyncio
async def test_shutdown_cancels_timers(coordinator):
    await _ring(coordinator)
    assert coordinator.pending_timers() == 1

    await coordinator.shutdown()

    assert coordinator.pending_timers() == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_check_online(coordinator):
    assert coordinator.check_online("alice") is True
    assert coordinator.check_online("carol") is False
