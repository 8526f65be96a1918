"""
Inbound WebSocket message dispatcher.

Decodes one client frame, routes it to the coordinator or the relay and
turns failures into ``call:error`` frames for the sending handle only.
"""
import json
import logging
from typing import Optional, Union

from pydantic import ValidationError

from .coordinator import CallCoordinator
from .errors import CallError
from .notifier import EventSink
from .relay import SignalingRelay
from ..models.events import (
    AcceptCall,
    CallErrorEvent,
    CancelCall,
    CheckOnline,
    EndCall,
    InitiateCall,
    OnlineStatus,
    PeerToggleAudio,
    PeerToggleVideo,
    Ping,
    Pong,
    RejectCall,
    SendAnswer,
    SendCandidate,
    SendOffer,
    ToggleAudio,
    ToggleVideo,
    inbound_adapter,
)
from ..utils.telemetry import MetricsCollector, metrics_collector

logger = logging.getLogger(__name__)

# Verb used in "Failed to <action>" for unexpected errors
_ACTIONS = {
    InitiateCall: "initiate call",
    AcceptCall: "accept call",
    RejectCall: "reject call",
    EndCall: "end call",
    CancelCall: "cancel call",
    SendOffer: "send offer",
    SendAnswer: "send answer",
    SendCandidate: "send ICE candidate",
    CheckOnline: "check online status",
    ToggleAudio: "toggle audio",
    ToggleVideo: "toggle video",
    Ping: "handle ping",
}


class CallEventDispatcher:
    """Routes decoded inbound events for one process."""

    def __init__(
        self,
        coordinator: CallCoordinator,
        relay: SignalingRelay,
        sink: EventSink,
        metrics: Optional[MetricsCollector] = None
    ):
        self.coordinator = coordinator
        self.relay = relay
        self.sink = sink
        self.metrics = metrics or metrics_collector

    async def dispatch(self, identity: str, handle: str, raw: Union[str, bytes]) -> None:
        """
        Handle one frame from ``handle`` (authenticated as ``identity``).

        Never raises: every failure becomes a call:error to the sender.
        """
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning(f"Invalid JSON from {identity} ({handle})")
            await self._error(handle, "Invalid JSON", action="decode")
            return

        try:
            event = inbound_adapter.validate_python(data)
        except ValidationError as e:
            logger.warning(f"Invalid message from {identity}: {e.error_count()} validation errors")
            await self._error(handle, "Invalid message", action="validate")
            return

        action = _ACTIONS.get(type(event), "handle message")
        session_id = getattr(event, "session_id", None)

        try:
            await self._route(identity, handle, event)

        except CallError as e:
            logger.info(f"{action} by {identity} refused: {e.message}")
            await self._error(handle, e.message, session_id=e.session_id or session_id, action=action)

        except Exception as e:
            logger.error(f"Error handling {event.type} from {identity}: {e}", exc_info=True)
            await self._error(handle, f"Failed to {action}", session_id=session_id, action=action)

    async def _route(self, identity: str, handle: str, event) -> None:
        coordinator = self.coordinator

        if isinstance(event, InitiateCall):
            await coordinator.initiate(identity, handle, event.callee_id, event.context_ref)

        elif isinstance(event, AcceptCall):
            await coordinator.accept(event.session_id, identity, handle)

        elif isinstance(event, RejectCall):
            await coordinator.reject(event.session_id, identity)

        elif isinstance(event, EndCall):
            await coordinator.end(event.session_id, identity)

        elif isinstance(event, CancelCall):
            await coordinator.cancel(event.session_id, identity)

        elif isinstance(event, (SendOffer, SendAnswer, SendCandidate)):
            delivered = await self.relay.relay(
                event.session_id, event.type, event.payload, identity, handle
            )
            if delivered is None:
                await self._missing_room(event.session_id, event.type, handle)
            else:
                self.metrics.record_signal(event.type)

        elif isinstance(event, (ToggleAudio, ToggleVideo)):
            toggle_cls = PeerToggleAudio if isinstance(event, ToggleAudio) else PeerToggleVideo
            delivered = await self.relay.broadcast(
                event.session_id,
                toggle_cls(session_id=event.session_id, user_id=identity, enabled=event.enabled),
                handle
            )
            if delivered is None:
                await self._missing_room(event.session_id, event.type, handle)

        elif isinstance(event, CheckOnline):
            await self.sink.send(handle, OnlineStatus(
                user_id=event.user_id,
                is_online=coordinator.check_online(event.user_id)
            ))

        elif isinstance(event, Ping):
            await self.sink.send(handle, Pong())

    async def _missing_room(self, session_id: str, kind: str, handle: str) -> None:
        """No room: unknown session is an error, a finished one is a silent drop."""
        session = await self.coordinator.get(session_id)
        if session is None:
            await self._error(handle, "Call not found", session_id=session_id, action=kind)
        else:
            logger.debug(f"Dropping {kind} for {session_id} (status={session.status.value})")

    async def _error(
        self,
        handle: str,
        message: str,
        session_id: Optional[str] = None,
        action: str = "unknown"
    ) -> None:
        self.metrics.record_error(action)
        await self.sink.send(handle, CallErrorEvent(message=message, session_id=session_id))


__all__ = ['CallEventDispatcher']
