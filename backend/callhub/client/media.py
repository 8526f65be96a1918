"""
Media and peer-connection seams for the call client.

The controller never touches a camera or a WebRTC stack directly. It asks
a MediaSource for a MediaStream and a PeerFactory for a PeerConnection, so
a browser bridge, aiortc or a test fake can sit behind them.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

PeerHandler = Callable[..., Awaitable[None]]

PEER_EVENTS = ("signal", "connect", "stream", "close", "error")


class MediaAccessError(Exception):
    """Camera or microphone could not be acquired."""
    pass


class PeerNegotiationError(Exception):
    """The peer connection failed to negotiate or errored."""
    pass


class MediaTrack:
    """One local audio or video track."""

    def __init__(self, kind: str, enabled: bool = True):
        self.kind = kind
        self.enabled = enabled
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True
        self.enabled = False


class MediaStream:
    """Handle on acquired local media; ``stop()`` releases the devices."""

    def __init__(self, tracks: Optional[List[MediaTrack]] = None):
        self.tracks: List[MediaTrack] = list(tracks or [])

    def tracks_of(self, kind: str) -> List[MediaTrack]:
        return [t for t in self.tracks if t.kind == kind]

    def set_enabled(self, kind: str, enabled: bool) -> None:
        for track in self.tracks_of(kind):
            if not track.stopped:
                track.enabled = enabled

    @property
    def stopped(self) -> bool:
        return all(t.stopped for t in self.tracks)

    def stop(self) -> None:
        for track in self.tracks:
            track.stop()


class MediaSource(ABC):
    """Acquires local media."""

    @abstractmethod
    async def acquire(self, audio: bool = True, video: bool = True) -> MediaStream:
        """
        Raises:
            MediaAccessError: Permission denied or no device
        """
        pass


class PeerConnection(ABC):
    """
    One WebRTC peer, in the style of simple-peer.

    Local negotiation payloads are emitted through ``signal`` handlers;
    remote payloads are fed in with ``signal()``. ``connect`` fires once
    media flows, ``close`` on teardown and ``error`` on failure.
    """

    def __init__(self, stream: MediaStream, initiator: bool):
        self.stream = stream
        self.initiator = initiator
        self.destroyed = False
        self._handlers: Dict[str, List[PeerHandler]] = {name: [] for name in PEER_EVENTS}

    def on(self, event: str, handler: PeerHandler) -> None:
        if event not in self._handlers:
            raise ValueError(f"Unknown peer event: {event}")
        self._handlers[event].append(handler)

    async def emit(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers[event]):
            await handler(*args)

    @abstractmethod
    async def signal(self, data: Dict[str, Any]) -> None:
        """
        Feed a remote negotiation payload.

        Raises:
            PeerNegotiationError: The payload could not be applied
        """
        pass

    @abstractmethod
    async def _teardown(self) -> None:
        pass

    async def destroy(self) -> None:
        """Close the peer. Safe to call more than once."""
        if self.destroyed:
            return
        self.destroyed = True
        try:
            await self._teardown()
        finally:
            await self.emit("close")


PeerFactory = Callable[[MediaStream, bool], PeerConnection]


def signal_kind(data: Dict[str, Any]) -> Optional[str]:
    """
    Wire event type for a locally generated negotiation payload.

    Returns:
        webrtc:offer, webrtc:answer, webrtc:ice-candidate or None
    """
    if data.get("type") == "offer":
        return "webrtc:offer"
    if data.get("type") == "answer":
        return "webrtc:answer"
    if "candidate" in data:
        return "webrtc:ice-candidate"
    return None


__all__ = [
    'MediaAccessError',
    'PeerNegotiationError',
    'MediaTrack',
    'MediaStream',
    'MediaSource',
    'PeerConnection',
    'PeerFactory',
    'signal_kind',
]
