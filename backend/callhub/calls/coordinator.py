"""
Call lifecycle coordinator.

Owns every status transition of a call session:

    ringing -> active      accept  (callee only)
    ringing -> rejected    reject  (callee only)
    ringing -> missed      ring timeout
    ringing -> ended       cancel  (caller only)
    active  -> ended       end     (either participant)

Terminal statuses (ended, missed, rejected) are final. An action that does
not apply to the current status, or comes from the wrong participant, is a
silent no-op. Each read-check-write runs under the session's lock, and the
notifications for a transition are sent before the lock is released so the
two parties observe transitions in order.
"""
import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from pydantic import BaseModel

from .errors import CallError, CalleeOfflineError, SessionNotFoundError
from .locks import SessionLockManager
from .notifier import EventSink
from .presence import PresenceRegistry
from .relay import SignalingRelay
from ..models.events import (
    CallAccepted,
    CallEnded,
    CallInitiated,
    CallMissed,
    CallRejected,
    IncomingCall,
)
from ..services.user_directory import UserDirectory
from ..session.session_store import CallSessionStore
from ..session.validators import CallSession, CallStatus
from ..utils.telemetry import MetricsCollector, metrics_collector

logger = logging.getLogger(__name__)


class CallCoordinator:
    """
    Authoritative call state machine.

    Built once per process and shared by every connection. Collaborators
    are injected so tests can substitute a recording sink, an in-memory
    store and a fake clock.
    """

    def __init__(
        self,
        store: CallSessionStore,
        presence: PresenceRegistry,
        relay: SignalingRelay,
        sink: EventSink,
        users: Optional[UserDirectory] = None,
        locks: Optional[SessionLockManager] = None,
        ring_timeout_seconds: float = 60.0,
        clock: Optional[Callable[[], datetime]] = None,
        fail_fast_offline: bool = False,
        end_on_disconnect: bool = True,
        metrics: Optional[MetricsCollector] = None
    ):
        """
        Initialize the coordinator.

        Args:
            store: Call record persistence
            presence: Online identities and their handles
            relay: Signaling rooms
            sink: Outbound event delivery
            users: Directory used to enrich call:incoming with caller profile
            locks: Per-session locks (a process-local manager by default)
            ring_timeout_seconds: Time a call may ring before it is missed
            clock: Source of timestamps (defaults to utcnow)
            fail_fast_offline: Refuse to ring an identity with no connection
            end_on_disconnect: End or cancel a call when a member handle drops
            metrics: Metrics collector
        """
        self.store = store
        self.presence = presence
        self.relay = relay
        self.sink = sink
        self.users = users
        self.locks = locks or SessionLockManager()
        self.ring_timeout_seconds = ring_timeout_seconds
        self.fail_fast_offline = fail_fast_offline
        self.end_on_disconnect = end_on_disconnect
        self.metrics = metrics or metrics_collector
        self._clock = clock or datetime.utcnow
        self._timers: Dict[str, asyncio.Task] = {}

    # ===========================
    # Lifecycle operations
    # ===========================

    async def initiate(
        self,
        caller_id: str,
        caller_handle: str,
        callee_id: str,
        context_ref: Optional[str] = None
    ) -> CallSession:
        """
        Start ringing ``callee_id``.

        The requesting handle receives call:initiated; every handle of the
        callee receives call:incoming.

        Raises:
            CallError: Calling yourself
            CalleeOfflineError: Callee offline with fail-fast enabled
        """
        if caller_id == callee_id:
            raise CallError("Cannot call yourself")

        callee_online = self.presence.is_online(callee_id)
        if not callee_online and self.fail_fast_offline:
            raise CalleeOfflineError(callee_id)

        session = await self.store.create(caller_id, callee_id, context_ref)
        session_id = session.session_id

        self._start_timer(session_id, self.ring_timeout_seconds)
        self.relay.join(session_id, caller_handle, caller_id)

        logger.info(
            f"Call {session_id}: {caller_id} -> {callee_id} "
            f"(callee {'online' if callee_online else 'offline'})"
        )

        await self.sink.send(caller_handle, CallInitiated(
            session_id=session_id,
            callee_id=callee_id,
            callee_online=callee_online
        ))

        caller_name, caller_avatar = await self._caller_profile(caller_id)
        await self.sink.send_many(self.presence.handles_for(callee_id), IncomingCall(
            session_id=session_id,
            caller_id=caller_id,
            caller_name=caller_name,
            caller_avatar=caller_avatar,
            context_ref=session.context_ref
        ))

        self.metrics.record_call("initiated")
        return session

    async def accept(self, session_id: str, identity: str, handle: str) -> Optional[CallSession]:
        """
        Callee answers a ringing call.

        Returns:
            Updated session, or None when the accept did not apply

        Raises:
            SessionNotFoundError: Unknown session id
        """
        async with self.locks.hold(session_id):
            session = await self._require(session_id)
            if session.status != CallStatus.RINGING or identity != session.callee_id:
                self._ignored("accept", session, identity)
                return None

            self._cancel_timer(session_id)
            session = await self.store.transition(
                session_id, CallStatus.ACTIVE, {"started_at": self._clock()}
            )
            self.relay.join(session_id, handle, identity)

            logger.info(f"Call {session_id} accepted by {identity}")
            await self._notify(session, CallAccepted(session_id=session_id))

        self.metrics.record_call("accepted")
        return session

    async def reject(self, session_id: str, identity: str) -> Optional[CallSession]:
        """
        Callee declines a ringing call.

        Raises:
            SessionNotFoundError: Unknown session id
        """
        async with self.locks.hold(session_id):
            session = await self._require(session_id)
            if session.status != CallStatus.RINGING or identity != session.callee_id:
                self._ignored("reject", session, identity)
                return None

            self._cancel_timer(session_id)
            session = await self.store.transition(session_id, CallStatus.REJECTED)
            self.relay.close(session_id)

            logger.info(f"Call {session_id} rejected by {identity}")
            await self._notify(session, CallRejected(session_id=session_id))

        self.metrics.record_call("rejected")
        return session

    async def end(self, session_id: str, identity: str) -> Optional[CallSession]:
        """
        Either participant hangs up an active call.

        Raises:
            SessionNotFoundError: Unknown session id
        """
        async with self.locks.hold(session_id):
            session = await self._require(session_id)
            if session.status != CallStatus.ACTIVE or not session.is_participant(identity):
                self._ignored("end", session, identity)
                return None

            session = await self.store.transition(
                session_id, CallStatus.ENDED, {"ended_at": self._clock()}
            )
            self.relay.close(session_id)

            logger.info(
                f"Call {session_id} ended by {identity} after {session.duration_seconds}s"
            )
            await self._notify(session, CallEnded(
                session_id=session_id,
                duration_seconds=session.duration_seconds
            ))

        self.metrics.record_call("ended", session.duration_seconds)
        return session

    async def cancel(self, session_id: str, identity: str) -> Optional[CallSession]:
        """
        Caller withdraws a call that is still ringing.

        Raises:
            SessionNotFoundError: Unknown session id
        """
        async with self.locks.hold(session_id):
            session = await self._require(session_id)
            if session.status != CallStatus.RINGING or identity != session.caller_id:
                self._ignored("cancel", session, identity)
                return None

            self._cancel_timer(session_id)
            session = await self.store.transition(
                session_id, CallStatus.ENDED, {"ended_at": self._clock()}
            )
            self.relay.close(session_id)

            logger.info(f"Call {session_id} cancelled by {identity}")
            await self._notify(session, CallEnded(session_id=session_id, duration_seconds=0))

        self.metrics.record_call("cancelled")
        return session

    async def expire(self, session_id: str) -> Optional[CallSession]:
        """
        Ring timeout: mark the call missed if it is still ringing.

        The status is re-read under the lock, so a timeout racing an
        accept or reject never overrides it.
        """
        async with self.locks.hold(session_id):
            session = await self.store.get(session_id)
            if session is None:
                logger.warning(f"Ring timeout for unknown call {session_id}")
                return None
            if session.status != CallStatus.RINGING:
                logger.debug(f"Ring timeout for {session_id} ignored (status={session.status.value})")
                return None

            self._cancel_timer(session_id)
            session = await self.store.transition(session_id, CallStatus.MISSED)
            self.relay.close(session_id)

            logger.info(f"Call {session_id} missed")
            await self._notify(session, CallMissed(session_id=session_id))

        self.metrics.record_call("missed")
        return session

    # ===========================
    # Connection events
    # ===========================

    async def handle_disconnect(self, identity: str, handle: str) -> None:
        """
        A connection closed.

        The handle leaves every room. With end-on-disconnect enabled an
        active call it was part of is ended, and a ringing call it placed
        is cancelled.
        """
        rooms = self.relay.leave_all(handle)
        if not rooms or not self.end_on_disconnect:
            return

        for session_id in rooms:
            try:
                session = await self.store.get(session_id)
                if session is None:
                    continue

                if session.status == CallStatus.ACTIVE and session.is_participant(identity):
                    logger.info(f"Ending call {session_id}: {identity} disconnected")
                    await self.end(session_id, identity)
                elif session.status == CallStatus.RINGING and identity == session.caller_id:
                    logger.info(f"Cancelling call {session_id}: caller {identity} disconnected")
                    await self.cancel(session_id, identity)

            except Exception as e:
                logger.error(
                    f"Error closing call {session_id} after disconnect of {identity}: {e}",
                    exc_info=True
                )

    def check_online(self, identity: str) -> bool:
        return self.presence.is_online(identity)

    async def get(self, session_id: str) -> Optional[CallSession]:
        return await self.store.get(session_id)

    # ===========================
    # Process lifecycle
    # ===========================

    async def resume(self) -> Dict[str, int]:
        """
        Restore timers after a restart.

        Ringing sessions get a timer for their remaining ring time. Active
        sessions cannot have a live connection yet, so with end-on-disconnect
        enabled they are ended.

        Returns:
            Counts of re-armed and ended sessions
        """
        now = self._clock()
        rearmed = 0
        ended = 0

        for session in await self.store.list_by_status(CallStatus.RINGING):
            if session.session_id in self._timers:
                continue
            elapsed = (now - session.created_at).total_seconds() if session.created_at else 0.0
            self._start_timer(session.session_id, max(self.ring_timeout_seconds - elapsed, 0.0))
            rearmed += 1

        if self.end_on_disconnect:
            for stale in await self.store.list_by_status(CallStatus.ACTIVE):
                async with self.locks.hold(stale.session_id):
                    session = await self.store.get(stale.session_id)
                    if session is None or session.status != CallStatus.ACTIVE:
                        continue
                    await self.store.transition(
                        session.session_id, CallStatus.ENDED, {"ended_at": self._clock()}
                    )
                    ended += 1

        if rearmed or ended:
            logger.info(f"Resumed calls: {rearmed} ring timers re-armed, {ended} stale calls ended")

        return {"rearmed": rearmed, "ended": ended}

    async def shutdown(self) -> None:
        """Cancel pending ring timers."""
        timers = list(self._timers.values())
        self._timers.clear()

        for task in timers:
            task.cancel()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)
            logger.info(f"Cancelled {len(timers)} ring timers")

    def pending_timers(self) -> int:
        return len(self._timers)

    # ===========================
    # Internals
    # ===========================

    async def _require(self, session_id: str) -> CallSession:
        session = await self.store.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def _notify(self, session: CallSession, event: BaseModel) -> None:
        """Deliver to every handle of both participants."""
        handles = (
            self.presence.handles_for(session.caller_id)
            | self.presence.handles_for(session.callee_id)
        )
        await self.sink.send_many(handles, event)

    async def _caller_profile(self, caller_id: str):
        if self.users is None:
            return None, None
        try:
            user = await self.users.lookup(caller_id)
        except Exception as e:
            logger.warning(f"User directory lookup failed for {caller_id}: {e}")
            return None, None
        if user is None:
            return None, None
        return user.name, user.avatar

    def _ignored(self, action: str, session: CallSession, identity: str) -> None:
        logger.debug(
            f"Ignoring {action} on {session.session_id} from {identity} "
            f"(status={session.status.value})"
        )

    def _start_timer(self, session_id: str, delay: float) -> None:
        self._cancel_timer(session_id)
        self._timers[session_id] = asyncio.create_task(
            self._ring_timeout(session_id, delay),
            name=f"ring-timeout:{session_id}"
        )

    def _cancel_timer(self, session_id: str) -> None:
        task = self._timers.pop(session_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _ring_timeout(self, session_id: str, delay: float) -> None:
        await asyncio.sleep(delay)

        # Past this point the timer is no longer cancellable by accept/reject;
        # expire() decides under the session lock.
        if self._timers.get(session_id) is asyncio.current_task():
            del self._timers[session_id]

        try:
            await self.expire(session_id)
        except Exception as e:
            logger.error(f"Ring timeout for {session_id} failed: {e}", exc_info=True)


__all__ = ['CallCoordinator']
