"""
Presence registry.
Tracks which identities currently hold at least one open connection.
"""
import logging
import threading
from typing import Dict, FrozenSet, List, Set

logger = logging.getLogger(__name__)


class PresenceRegistry:
    """
    Mapping of identity -> set of connection handles.

    One identity may hold several handles at once (several tabs or
    devices). An identity is online iff its handle set is non-empty;
    empty sets are never stored.

    The registry is built once per process and handed to its users. It
    is not persisted: after a restart every client must reconnect.
    """

    def __init__(self):
        self._handles: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    def register(self, identity: str, handle: str) -> None:
        """Add a handle for an identity. Registering the same handle twice is a no-op."""
        with self._lock:
            handles = self._handles.setdefault(identity, set())
            if handle in handles:
                return
            handles.add(handle)
            count = len(handles)

        logger.debug(f"Presence: {identity} registered handle {handle} ({count} open)")

    def unregister(self, identity: str, handle: str) -> None:
        """Remove a handle; drop the identity entirely when its last handle goes."""
        with self._lock:
            handles = self._handles.get(identity)
            if not handles or handle not in handles:
                return

            handles.discard(handle)
            if not handles:
                del self._handles[identity]
                went_offline = True
            else:
                went_offline = False

        if went_offline:
            logger.debug(f"Presence: {identity} is now offline")

    def is_online(self, identity: str) -> bool:
        with self._lock:
            return bool(self._handles.get(identity))

    def handles_for(self, identity: str) -> FrozenSet[str]:
        """
        Get a snapshot of an identity's handles.

        Returns:
            Frozen copy; empty when the identity is offline
        """
        with self._lock:
            return frozenset(self._handles.get(identity, ()))

    def online_identities(self) -> List[str]:
        with self._lock:
            return list(self._handles.keys())

    def count(self) -> int:
        """Number of online identities."""
        with self._lock:
            return len(self._handles)

    def connection_count(self) -> int:
        """Number of open handles across all identities."""
        with self._lock:
            return sum(len(handles) for handles in self._handles.values())


__all__ = ['PresenceRegistry']
