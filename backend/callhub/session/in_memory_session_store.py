"""
In-memory call session store implementation.
Suitable for development, tests and single-instance deployments.

Version: 1.0.0
"""
import asyncio
import logging
from typing import Dict, Any, Optional, List, Callable
from datetime import datetime
from collections import OrderedDict
from copy import deepcopy

from .session_store import CallSessionStore, generate_session_id
from .validators import CallSession, CallStatus
from ..calls.errors import SessionNotFoundError

logger = logging.getLogger(__name__)


class InMemoryCallSessionStore(CallSessionStore):
    """
    In-memory implementation of CallSessionStore.

    Features:
    - Serialized writes using an asyncio lock
    - Insertion-ordered records
    - Deep copy returns to prevent external mutations

    Limitations:
    - Records lost on restart
    - Not shared across multiple instances
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize in-memory call store.

        Args:
            clock: Time source for created_at/updated_at (defaults to utcnow)
        """
        self.sessions: "OrderedDict[str, CallSession]" = OrderedDict()
        self.lock = asyncio.Lock()
        self._clock = clock or datetime.utcnow

        logger.info("InMemoryCallSessionStore initialized")

    async def create(
        self,
        caller_id: str,
        callee_id: str,
        context_ref: Optional[str] = None
    ) -> CallSession:
        async with self.lock:
            now = self._clock()
            session_id = generate_session_id()
            while session_id in self.sessions:
                session_id = generate_session_id()

            session = CallSession(
                session_id=session_id,
                caller_id=caller_id,
                callee_id=callee_id,
                context_ref=context_ref,
                status=CallStatus.RINGING,
                created_at=now,
                updated_at=now
            )
            self.sessions[session_id] = session

            logger.debug(f"Created call {session_id} ({caller_id} -> {callee_id})")
            return deepcopy(session)

    async def get(self, session_id: str) -> Optional[CallSession]:
        """
        Get call record by ID.

        Returns a deep copy to prevent external mutations.
        """
        async with self.lock:
            session = self.sessions.get(session_id)
            return deepcopy(session) if session else None

    async def transition(
        self,
        session_id: str,
        new_status: CallStatus,
        fields: Optional[Dict[str, Any]] = None
    ) -> CallSession:
        fields = dict(fields or {})
        self._validate_transition(new_status, fields)

        async with self.lock:
            current = self.sessions.get(session_id)
            if current is None:
                raise SessionNotFoundError(session_id)

            updated = self._apply_transition(current, new_status, fields, self._clock())
            self.sessions[session_id] = updated

            logger.debug(
                f"Call {session_id}: {current.status.value} -> {updated.status.value}"
            )
            return deepcopy(updated)

    async def list_for_participant(
        self,
        identity: str,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[CallSession]:
        async with self.lock:
            matches = [
                s for s in reversed(self.sessions.values())
                if s.is_participant(identity)
            ]

        matches.sort(key=lambda s: s.created_at or datetime.min, reverse=True)
        end = offset + limit if limit is not None else None
        return [deepcopy(s) for s in matches[offset:end]]

    async def count_for_participant(self, identity: str) -> int:
        async with self.lock:
            return sum(1 for s in self.sessions.values() if s.is_participant(identity))

    async def list_by_status(self, status: CallStatus) -> List[CallSession]:
        async with self.lock:
            return [deepcopy(s) for s in self.sessions.values() if s.status == status]

    async def get_stats(self) -> Dict[str, Any]:
        async with self.lock:
            by_status: Dict[str, int] = {status.value: 0 for status in CallStatus}
            for session in self.sessions.values():
                by_status[session.status.value] += 1

            return {
                "store_type": "in_memory",
                "total_sessions": len(self.sessions),
                "by_status": by_status,
            }


__all__ = ['InMemoryCallSessionStore']
