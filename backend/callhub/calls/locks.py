"""
Per-session mutual exclusion.

Every read-check-write on a call session runs under the session's lock so
that concurrent accept/reject/end/timeout for the same call serialize.
Different sessions never contend.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from redis.asyncio import Redis

from ..session.distributed_lock import DistributedLock

logger = logging.getLogger(__name__)


class _Entry:
    __slots__ = ("lock", "refs")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.refs = 0


class SessionLockManager:
    """
    Reference-counted asyncio locks keyed by session id.

    With a Redis client the process-local lock is additionally backed by a
    DistributedLock named ``call:<session_id>`` so that several server
    processes sharing one store serialize too.
    """

    def __init__(
        self,
        redis_client: Optional[Redis] = None,
        lock_timeout: int = 30
    ):
        self._entries: Dict[str, _Entry] = {}
        self._redis = redis_client
        self._lock_timeout = lock_timeout

    @asynccontextmanager
    async def hold(self, session_id: str) -> AsyncIterator[None]:
        entry = self._entries.get(session_id)
        if entry is None:
            entry = self._entries[session_id] = _Entry()
        entry.refs += 1

        try:
            async with entry.lock:
                if self._redis is None:
                    yield
                else:
                    async with DistributedLock(
                        self._redis,
                        f"call:{session_id}",
                        timeout=self._lock_timeout
                    ):
                        yield
        finally:
            entry.refs -= 1
            if entry.refs == 0:
                self._entries.pop(session_id, None)

    def active_count(self) -> int:
        """Number of sessions with a holder or waiter."""
        return len(self._entries)


__all__ = ['SessionLockManager']
