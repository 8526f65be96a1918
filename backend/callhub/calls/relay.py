"""
Signaling relay.

Forwards opaque WebRTC negotiation payloads between the members of one
call room. Payloads are never inspected or validated.
"""
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from .notifier import EventSink
from ..models.events import RELAYED_SIGNALS

logger = logging.getLogger(__name__)


class SignalingRelay:
    """
    Rooms keyed by session id, each mapping handle -> identity.

    A room exists from initiate until the session is closed; only joined
    handles may send into it and every payload reaches the other members
    of that room only.
    """

    def __init__(self, sink: EventSink):
        self.sink = sink
        self._rooms: Dict[str, Dict[str, str]] = {}

    def join(self, session_id: str, handle: str, identity: str) -> None:
        self._rooms.setdefault(session_id, {})[handle] = identity
        logger.debug(f"Handle {handle} ({identity}) joined room {session_id}")

    def leave_all(self, handle: str) -> List[str]:
        """
        Remove a handle from every room.

        Returns:
            Session ids of the rooms the handle was a member of
        """
        left = []
        for session_id, room in self._rooms.items():
            if room.pop(handle, None) is not None:
                left.append(session_id)
        return left

    def close(self, session_id: str) -> None:
        if self._rooms.pop(session_id, None) is not None:
            logger.debug(f"Room {session_id} closed")

    def has_room(self, session_id: str) -> bool:
        return session_id in self._rooms

    def members(self, session_id: str) -> Dict[str, str]:
        """Copy of the room's handle -> identity mapping."""
        return dict(self._rooms.get(session_id, {}))

    def room_count(self) -> int:
        return len(self._rooms)

    async def relay(
        self,
        session_id: str,
        kind: str,
        payload: Dict[str, Any],
        sender_identity: str,
        sender_handle: str
    ) -> Optional[int]:
        """
        Forward a negotiation payload to the other room members.

        Args:
            session_id: Room to deliver into
            kind: One of webrtc:offer, webrtc:answer, webrtc:ice-candidate
            payload: Opaque payload, forwarded unchanged
            sender_identity: Tagged on the relayed event as ``from_id``
            sender_handle: Excluded from delivery; must be a room member

        Returns:
            Number of handles delivered to, or None when the room does not exist
        """
        event_cls = RELAYED_SIGNALS.get(kind)
        if event_cls is None:
            raise ValueError(f"Unknown signaling kind: {kind}")

        room = self._rooms.get(session_id)
        if room is None:
            return None

        if sender_handle not in room:
            logger.warning(
                f"Dropping {kind} from {sender_identity}: handle {sender_handle} "
                f"is not in room {session_id}"
            )
            return 0

        event = event_cls(session_id=session_id, payload=payload, from_id=sender_identity)
        targets = [handle for handle in room if handle != sender_handle]
        return await self.sink.send_many(targets, event)

    async def broadcast(
        self,
        session_id: str,
        event: BaseModel,
        sender_handle: str
    ) -> Optional[int]:
        """Deliver ``event`` to every room member except the sender."""
        room = self._rooms.get(session_id)
        if room is None:
            return None
        if sender_handle not in room:
            logger.warning(f"Dropping broadcast from non-member {sender_handle} in {session_id}")
            return 0

        targets = [handle for handle in room if handle != sender_handle]
        return await self.sink.send_many(targets, event)


__all__ = ['SignalingRelay']
