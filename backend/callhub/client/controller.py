"""
Client call controller.

Drives one device's side of a call: local media, the peer connection and
the signaling messages that set it up. Server events come in through
``handle_event``; outbound messages leave through the ``send`` callable
(normally ``SignalingClient.send``).
"""
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Tuple

from pydantic import BaseModel

from .media import (
    MediaAccessError,
    MediaSource,
    MediaStream,
    PeerConnection,
    PeerFactory,
    PeerNegotiationError,
    signal_kind,
)
from .state import CallBusyError, CallPhase, CallStateProjector
from ..config import get_settings
from ..models.events import (
    AcceptCall,
    CallAccepted,
    CallEnded,
    CallErrorEvent,
    CallInitiated,
    CallMissed,
    CallRejected,
    CancelCall,
    EndCall,
    IncomingCall,
    InitiateCall,
    RejectCall,
    RelayedAnswer,
    RelayedCandidate,
    RelayedOffer,
    SendAnswer,
    SendCandidate,
    SendOffer,
    ToggleAudio,
    ToggleVideo,
)

logger = logging.getLogger(__name__)

Sender = Callable[[BaseModel], Awaitable[Any]]
ErrorListener = Callable[[Exception], None]

_OUTBOUND_SIGNALS = {
    "webrtc:offer": SendOffer,
    "webrtc:answer": SendAnswer,
    "webrtc:ice-candidate": SendCandidate,
}

_RELAYED = (RelayedOffer, RelayedAnswer, RelayedCandidate)


class CallController:
    """
    Orchestrates media, peer and signaling for the current call.

    Every exit path (local hangup, remote end, rejection, miss, error before
    the call became active, ``close()``) goes through ``release()``, which
    stops media, destroys the peer and clears buffered signals.
    """

    def __init__(
        self,
        send: Sender,
        media: MediaSource,
        peer_factory: PeerFactory,
        projector: Optional[CallStateProjector] = None,
        signal_buffer_limit: Optional[int] = None
    ):
        self._send = send
        self.media = media
        self.peer_factory = peer_factory
        self.state = projector or CallStateProjector()
        if signal_buffer_limit is None:
            signal_buffer_limit = get_settings().signal_buffer_limit
        self.signal_buffer_limit = signal_buffer_limit

        self.stream: Optional[MediaStream] = None
        self.peer: Optional[PeerConnection] = None
        self.audio_enabled = True
        self.video_enabled = True

        # Relayed payloads that arrived before call:accepted
        self._pending: Deque[Tuple[str, str, Dict[str, Any]]] = deque()
        self._cancel_when_initiated = False
        self._error_listeners: List[ErrorListener] = []

    # ===========================
    # UI surface
    # ===========================

    def on_error(self, listener: ErrorListener) -> None:
        self._error_listeners.append(listener)

    def _report(self, error: Exception) -> None:
        logger.warning(f"Call error: {error}")
        for listener in list(self._error_listeners):
            try:
                listener(error)
            except Exception as e:
                logger.error(f"Error listener failed: {e}", exc_info=True)

    @property
    def phase(self) -> CallPhase:
        return self.state.phase

    async def start_call(self, callee_id: str, context_ref: Optional[str] = None) -> bool:
        """
        Place a call.

        Media is acquired before anything is sent; if that fails the call
        is not initiated.

        Returns:
            True if call:initiate was sent

        Raises:
            CallBusyError: Another call is in progress
        """
        # Busy from here on, so calls arriving during the permission prompt
        # are auto-rejected
        call = self.state.begin_outgoing(callee_id, context_ref)
        self._cancel_when_initiated = False

        if not await self._acquire_media():
            if self.state.call is call:
                self.state.reset()
            return False

        if self.state.call is not call or self.state.phase != CallPhase.RINGING:
            # Hung up (or failed) while media was being acquired
            logger.info(f"Outgoing call to {callee_id} abandoned before initiate")
            if self.state.call is call:
                self._cancel_when_initiated = False
                self.state.reset()
            await self.release()
            return False

        await self._send(InitiateCall(callee_id=callee_id, context_ref=context_ref))
        return True

    async def accept(self) -> bool:
        """
        Answer the ringing incoming call.

        If media cannot be acquired the call is rejected instead.
        """
        call = self.state.call
        if self.state.phase != CallPhase.RINGING or call is None or call.outgoing:
            return False

        session_id = call.session_id
        if not await self._acquire_media():
            if self.state.tracks(session_id):
                await self.reject()
            return False

        # The call may have been missed, cancelled or answered elsewhere
        # while media was being acquired
        if not self.state.tracks(session_id) or self.state.accept_incoming() is None:
            logger.info(f"Call {session_id} no longer ringing; releasing media")
            await self.release()
            return False

        await self._send(AcceptCall(session_id=session_id))
        return True

    async def reject(self) -> bool:
        session_id = self.state.reject_incoming()
        if session_id is None:
            return False

        await self._send(RejectCall(session_id=session_id))
        await self.release()
        return True

    async def hang_up(self) -> bool:
        """
        End the current call from this side.

        A ringing outgoing call is cancelled; a connecting or active call
        is ended. Hanging up a ringing incoming call rejects it.
        """
        ringing = self.state.call
        if self.state.phase == CallPhase.RINGING and ringing is not None and not ringing.outgoing:
            return await self.reject()

        call = self.state.end_local()
        if call is None:
            return False

        if call.outgoing and not call.accepted_by_server:
            if call.session_id is None:
                # call:initiated not back yet; cancel as soon as it is
                self._cancel_when_initiated = True
            else:
                await self._send(CancelCall(session_id=call.session_id))
        elif call.session_id is not None:
            await self._send(EndCall(session_id=call.session_id))

        await self.release()
        return True

    async def toggle_audio(self, enabled: Optional[bool] = None) -> bool:
        self.audio_enabled = (not self.audio_enabled) if enabled is None else enabled
        if self.stream:
            self.stream.set_enabled("audio", self.audio_enabled)
        await self._send_toggle(ToggleAudio, self.audio_enabled)
        return self.audio_enabled

    async def toggle_video(self, enabled: Optional[bool] = None) -> bool:
        self.video_enabled = (not self.video_enabled) if enabled is None else enabled
        if self.stream:
            self.stream.set_enabled("video", self.video_enabled)
        await self._send_toggle(ToggleVideo, self.video_enabled)
        return self.video_enabled

    async def _send_toggle(self, event_cls, enabled: bool) -> None:
        session_id = self.state.session_id
        if session_id and self.state.phase in (CallPhase.CONNECTING, CallPhase.ACTIVE):
            await self._send(event_cls(session_id=session_id, enabled=enabled))

    # ===========================
    # Server events
    # ===========================

    async def handle_event(self, event: BaseModel) -> None:
        """Entry point for every decoded server event."""
        if isinstance(event, _RELAYED):
            await self._on_relayed(event)

        elif isinstance(event, IncomingCall):
            if not self.state.apply(event) and self.state.is_busy and not self.state.tracks(event.session_id):
                logger.info(f"Busy; auto-rejecting incoming call {event.session_id}")
                await self._send(RejectCall(session_id=event.session_id))

        elif isinstance(event, CallInitiated):
            if self._cancel_when_initiated and self.state.phase == CallPhase.ENDED:
                call = self.state.call
                if call and call.outgoing and call.session_id is None and call.peer_id == event.callee_id:
                    self._cancel_when_initiated = False
                    await self._send(CancelCall(session_id=event.session_id))
                    self.state.reset()
                return
            self.state.apply(event)

        elif isinstance(event, CallAccepted):
            if self.state.apply(event):
                if self.state.signaling_allowed(event.session_id):
                    await self._on_accepted()
                else:
                    # Answered elsewhere
                    await self.release()

        elif isinstance(event, (CallRejected, CallEnded, CallMissed)):
            if self.state.apply(event):
                await self.release()

        elif isinstance(event, CallErrorEvent):
            was_active = self.state.phase == CallPhase.ACTIVE
            if self.state.apply(event):
                self._report(RuntimeError(event.message))
                if not was_active:
                    await self.release()

        else:
            self.state.apply(event)

    async def _on_accepted(self) -> None:
        call = self.state.call
        if call.outgoing and self.peer is None:
            try:
                self.peer = self._create_peer(initiator=True)
            except Exception as e:
                self._report(PeerNegotiationError(f"Failed to create peer: {e}"))
                return

        await self._flush_pending(call.session_id)

    async def _on_relayed(self, event) -> None:
        session_id = event.session_id

        if not self.state.signaling_allowed(session_id):
            if self.state.tracks(session_id) and self.state.is_busy:
                if len(self._pending) >= self.signal_buffer_limit:
                    logger.warning(f"Signal buffer full for {session_id}; dropping oldest")
                    self._pending.popleft()
                self._pending.append((session_id, event.type, event.payload))
            else:
                logger.debug(f"Dropping {event.type} for untracked call {session_id}")
            return

        await self._apply_signal(event.type, event.payload)

    async def _flush_pending(self, session_id: str) -> None:
        # Payloads that still cannot be applied are re-queued by _apply_signal
        pending = list(self._pending)
        self._pending.clear()
        for pending_session, kind, payload in pending:
            if pending_session == session_id:
                await self._apply_signal(kind, payload)

    async def _apply_signal(self, kind: str, payload: Dict[str, Any]) -> None:
        call = self.state.call
        if self.peer is None:
            if kind == "webrtc:offer" and call is not None and not call.outgoing:
                try:
                    self.peer = self._create_peer(initiator=False)
                except Exception as e:
                    self._report(PeerNegotiationError(f"Failed to create peer: {e}"))
                    return
            else:
                # Candidate ahead of the offer; keep it until the peer exists
                self._pending.append((call.session_id, kind, payload))
                return

        try:
            await self.peer.signal(payload)
        except Exception as e:
            self._report(e if isinstance(e, PeerNegotiationError) else PeerNegotiationError(str(e)))
            return

        if kind == "webrtc:offer":
            await self._flush_pending(call.session_id)

    # ===========================
    # Peer wiring
    # ===========================

    def _create_peer(self, initiator: bool) -> PeerConnection:
        peer = self.peer_factory(self.stream, initiator)
        session_id = self.state.session_id

        async def on_signal(data: Dict[str, Any]) -> None:
            kind = signal_kind(data)
            if kind is None:
                logger.debug(f"Ignoring unrecognised local signal: {list(data)}")
                return
            await self._send(_OUTBOUND_SIGNALS[kind](session_id=session_id, payload=data))

        async def on_connect() -> None:
            if self.state.tracks(session_id):
                self.state.mark_connected()

        async def on_close() -> None:
            logger.debug(f"Peer for {session_id} closed")

        async def on_error(error: Exception) -> None:
            self._report(PeerNegotiationError(str(error)))

        peer.on("signal", on_signal)
        peer.on("connect", on_connect)
        peer.on("close", on_close)
        peer.on("error", on_error)

        logger.debug(f"Created {'initiator' if initiator else 'responder'} peer for {session_id}")
        return peer

    # ===========================
    # Resources
    # ===========================

    async def _acquire_media(self) -> bool:
        if self.stream is not None and not self.stream.stopped:
            return True
        try:
            self.stream = await self.media.acquire(audio=True, video=True)
        except MediaAccessError as e:
            self.stream = None
            self._report(e)
            return False

        self.audio_enabled = True
        self.video_enabled = True
        return True

    async def release(self) -> None:
        """Stop media, destroy the peer and clear buffers. Idempotent."""
        peer, self.peer = self.peer, None
        stream, self.stream = self.stream, None
        self._pending.clear()

        if peer is not None:
            try:
                await peer.destroy()
            except Exception as e:
                logger.warning(f"Error destroying peer: {e}")

        if stream is not None:
            stream.stop()

    async def close(self) -> None:
        """Leave the call screen: end whatever is in progress and release."""
        if self.state.is_busy:
            await self.hang_up()
        await self.release()

    async def __aenter__(self) -> "CallController":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False


__all__ = ['CallController']
