"""
Call lifecycle package.
Presence, per-session locking, the lifecycle coordinator and signaling relay.

Version: 1.0.0
"""
from .errors import CallError, SessionNotFoundError, CalleeOfflineError
from .presence import PresenceRegistry
from .locks import SessionLockManager
from .notifier import EventSink
from .relay import SignalingRelay
from .coordinator import CallCoordinator
from .dispatcher import CallEventDispatcher

__all__ = [
    'CallError',
    'SessionNotFoundError',
    'CalleeOfflineError',
    'PresenceRegistry',
    'SessionLockManager',
    'EventSink',
    'SignalingRelay',
    'CallCoordinator',
    'CallEventDispatcher',
]
