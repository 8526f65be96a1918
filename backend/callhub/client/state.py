"""
Client-side call state projection.

Folds server events and local actions into the phase a call UI renders:

    idle -> ringing -> connecting -> active -> ended

A client holds at most one call in ringing, connecting or active.
"""
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, List, Optional

from pydantic import BaseModel

from ..models.events import (
    CallAccepted,
    CallEnded,
    CallErrorEvent,
    CallInitiated,
    CallMissed,
    CallRejected,
    IncomingCall,
    PeerToggleAudio,
    PeerToggleVideo,
)

logger = logging.getLogger(__name__)


class CallPhase(str, Enum):
    IDLE = "idle"
    RINGING = "ringing"
    CONNECTING = "connecting"
    ACTIVE = "active"
    ENDED = "ended"


BUSY_PHASES = frozenset({CallPhase.RINGING, CallPhase.CONNECTING, CallPhase.ACTIVE})


class CallBusyError(Exception):
    """Raised when a call is started while another one is in progress."""
    pass


@dataclass
class CallInfo:
    """The call this client is tracking."""
    peer_id: str
    outgoing: bool
    session_id: Optional[str] = None
    context_ref: Optional[str] = None
    caller_name: Optional[str] = None
    caller_avatar: Optional[str] = None
    accepted_locally: bool = False
    accepted_by_server: bool = False
    duration_seconds: int = 0


Listener = Callable[["CallStateProjector"], None]


class CallStateProjector:
    """
    Pure state holder; performs no I/O.

    ``apply`` returns True when an event changed the projection and False
    when it was ignored (unknown session, wrong phase, busy).
    """

    def __init__(self):
        self.phase = CallPhase.IDLE
        self.call: Optional[CallInfo] = None
        self.peer_audio_enabled = True
        self.peer_video_enabled = True
        self.last_error: Optional[str] = None
        self._listeners: List[Listener] = []

    # ===========================
    # Observation
    # ===========================

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a change listener.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _changed(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.error(f"Call state listener failed: {e}", exc_info=True)

    @property
    def is_busy(self) -> bool:
        return self.phase in BUSY_PHASES

    @property
    def session_id(self) -> Optional[str]:
        return self.call.session_id if self.call else None

    def tracks(self, session_id: Optional[str]) -> bool:
        return session_id is not None and self.session_id == session_id

    def signaling_allowed(self, session_id: str) -> bool:
        """True once call:accepted was applied for this session."""
        return (
            self.tracks(session_id)
            and self.call.accepted_by_server
            and self.phase in (CallPhase.CONNECTING, CallPhase.ACTIVE)
        )

    # ===========================
    # Local actions
    # ===========================

    def begin_outgoing(self, callee_id: str, context_ref: Optional[str] = None) -> CallInfo:
        """
        Raises:
            CallBusyError: Another call is ringing, connecting or active
        """
        if self.is_busy:
            raise CallBusyError(f"Already in a call ({self.phase.value})")

        self._reset_fields()
        self.call = CallInfo(peer_id=callee_id, outgoing=True, context_ref=context_ref)
        self.phase = CallPhase.RINGING
        self._changed()
        return self.call

    def accept_incoming(self) -> Optional[str]:
        """Mark the ringing incoming call as answered here."""
        if self.phase != CallPhase.RINGING or not self.call or self.call.outgoing:
            return None

        self.call.accepted_locally = True
        self.phase = CallPhase.CONNECTING
        self._changed()
        return self.call.session_id

    def reject_incoming(self) -> Optional[str]:
        if self.phase != CallPhase.RINGING or not self.call or self.call.outgoing:
            return None

        session_id = self.call.session_id
        self.reset()
        return session_id

    def end_local(self) -> Optional[CallInfo]:
        """
        Local hangup of the tracked call.

        Returns:
            Snapshot of the call as it was, or None when there was nothing to end
        """
        if not self.is_busy or not self.call:
            return None

        snapshot = replace(self.call)
        self.phase = CallPhase.ENDED
        self._changed()
        return snapshot

    def mark_connected(self) -> bool:
        """Peer connection established."""
        if self.phase != CallPhase.CONNECTING:
            return False
        self.phase = CallPhase.ACTIVE
        self._changed()
        return True

    def reset(self) -> None:
        self._reset_fields()
        self._changed()

    def _reset_fields(self) -> None:
        self.phase = CallPhase.IDLE
        self.call = None
        self.peer_audio_enabled = True
        self.peer_video_enabled = True

    # ===========================
    # Server events
    # ===========================

    def apply(self, event: BaseModel) -> bool:
        if isinstance(event, IncomingCall):
            return self._on_incoming(event)

        if isinstance(event, CallInitiated):
            call = self.call
            if (
                self.phase != CallPhase.RINGING or call is None or not call.outgoing
                or call.session_id is not None or call.peer_id != event.callee_id
            ):
                return False
            call.session_id = event.session_id
            self._changed()
            return True

        if isinstance(event, CallErrorEvent):
            return self._on_error(event)

        session_id = getattr(event, "session_id", None)
        if not self.tracks(session_id):
            logger.debug(f"Ignoring {getattr(event, 'type', event)} for untracked call {session_id}")
            return False

        if isinstance(event, CallAccepted):
            if self.phase not in (CallPhase.RINGING, CallPhase.CONNECTING):
                return False
            if not self.call.outgoing and not self.call.accepted_locally:
                # Answered on another device
                self.reset()
                return True
            self.call.accepted_by_server = True
            self.phase = CallPhase.CONNECTING
            self._changed()
            return True

        if isinstance(event, (CallRejected, CallEnded)):
            if isinstance(event, CallEnded):
                self.call.duration_seconds = event.duration_seconds
            self.phase = CallPhase.ENDED
            self._changed()
            return True

        if isinstance(event, CallMissed):
            self.reset()
            return True

        if isinstance(event, PeerToggleAudio):
            self.peer_audio_enabled = event.enabled
            self._changed()
            return True

        if isinstance(event, PeerToggleVideo):
            self.peer_video_enabled = event.enabled
            self._changed()
            return True

        return False

    def _on_incoming(self, event: IncomingCall) -> bool:
        if self.is_busy:
            logger.info(f"Incoming call {event.session_id} while {self.phase.value}; not projected")
            return False

        self._reset_fields()
        self.call = CallInfo(
            peer_id=event.caller_id,
            outgoing=False,
            session_id=event.session_id,
            context_ref=event.context_ref,
            caller_name=event.caller_name,
            caller_avatar=event.caller_avatar
        )
        self.phase = CallPhase.RINGING
        self._changed()
        return True

    def _on_error(self, event: CallErrorEvent) -> bool:
        if event.session_id is not None and not self.tracks(event.session_id):
            # An outgoing call without a session id yet may still be the target
            if not (self.call and self.call.outgoing and self.call.session_id is None):
                return False

        self.last_error = event.message
        if self.phase == CallPhase.ACTIVE:
            self._changed()
            return True

        self.reset()
        return True


__all__ = [
    'CallPhase',
    'CallInfo',
    'CallBusyError',
    'CallStateProjector',
    'BUSY_PHASES',
]
