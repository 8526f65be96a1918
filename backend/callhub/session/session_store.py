"""
Abstract call session store interface.
Defines the contract for call record persistence implementations.

Version: 1.0.0
"""
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, List
from datetime import datetime
import uuid

from .validators import (
    CallSession,
    CallStatus,
    REQUIRED_TRANSITION_FIELDS,
    TRANSITION_FIELDS,
    compute_duration,
)


def generate_session_id() -> str:
    """Fresh collision-resistant call identifier."""
    return f"call_{uuid.uuid4().hex}"


class CallSessionStore(ABC):
    """
    Abstract base class for call record storage.

    The store persists whatever the coordinator asks it to; it does not
    decide whether a transition is legal. It does reject writes that would
    leave a record inconsistent (a terminal write without its timestamp).

    Records are never deleted.
    """

    @abstractmethod
    async def create(
        self,
        caller_id: str,
        callee_id: str,
        context_ref: Optional[str] = None
    ) -> CallSession:
        """
        Create a new call record in ``ringing`` status.

        Args:
            caller_id: Identity placing the call
            callee_id: Identity being called
            context_ref: Optional opaque business reference

        Returns:
            The stored CallSession
        """
        pass

    @abstractmethod
    async def get(self, session_id: str) -> Optional[CallSession]:
        """
        Get a call record by ID.

        Returns:
            CallSession or None if not found
        """
        pass

    @abstractmethod
    async def transition(
        self,
        session_id: str,
        new_status: CallStatus,
        fields: Optional[Dict[str, Any]] = None
    ) -> CallSession:
        """
        Persist a status change.

        Args:
            session_id: Call identifier
            new_status: Status to write
            fields: Timestamp fields to write with it (started_at, ended_at)

        Returns:
            The updated CallSession

        Raises:
            SessionNotFoundError: Unknown session id
            ValueError: Missing required timestamp or unknown field
        """
        pass

    @abstractmethod
    async def list_for_participant(
        self,
        identity: str,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[CallSession]:
        """
        List calls where ``identity`` is caller or callee, newest first.
        """
        pass

    @abstractmethod
    async def count_for_participant(self, identity: str) -> int:
        pass

    @abstractmethod
    async def list_by_status(self, status: CallStatus) -> List[CallSession]:
        pass

    @abstractmethod
    async def get_stats(self) -> Dict[str, Any]:
        """
        Get store statistics.

        Returns:
            Dictionary with statistics
        """
        pass

    @staticmethod
    def _validate_transition(new_status: CallStatus, fields: Dict[str, Any]) -> None:
        unknown = set(fields) - TRANSITION_FIELDS
        if unknown:
            raise ValueError(f"Fields not writable by a transition: {sorted(unknown)}")

        required = REQUIRED_TRANSITION_FIELDS.get(CallStatus(new_status))
        if required and not fields.get(required):
            raise ValueError(f"Transition to '{CallStatus(new_status).value}' requires {required}")

    @staticmethod
    def _apply_transition(
        session: CallSession,
        new_status: CallStatus,
        fields: Dict[str, Any],
        now: datetime
    ) -> CallSession:
        """Return a copy of ``session`` with the transition applied."""
        data = session.model_dump()
        data.update(fields)
        data["status"] = CallStatus(new_status)
        data["duration_seconds"] = compute_duration(data.get("started_at"), data.get("ended_at"))
        data["updated_at"] = now
        return CallSession(**data)

    async def health_check(self) -> Dict[str, Any]:
        """
        Perform health check on the store.

        Returns:
            Dictionary with health status
        """
        try:
            stats = await self.get_stats()
            return {
                "healthy": True,
                "stats": stats
            }

        except Exception as e:
            return {
                "healthy": False,
                "error": str(e)
            }


__all__ = ['CallSessionStore', 'generate_session_id']
