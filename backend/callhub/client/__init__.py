"""
Call client: state projection, media/peer seams, controller and transport.
"""
from .media import (
    MediaAccessError,
    PeerNegotiationError,
    MediaTrack,
    MediaStream,
    MediaSource,
    PeerConnection,
    PeerFactory,
)
from .state import CallPhase, CallInfo, CallBusyError, CallStateProjector
from .controller import CallController
from .transport import SignalingClient, SignalingAuthError

__all__ = [
    'MediaAccessError',
    'PeerNegotiationError',
    'MediaTrack',
    'MediaStream',
    'MediaSource',
    'PeerConnection',
    'PeerFactory',
    'CallPhase',
    'CallInfo',
    'CallBusyError',
    'CallStateProjector',
    'CallController',
    'SignalingClient',
    'SignalingAuthError',
]
