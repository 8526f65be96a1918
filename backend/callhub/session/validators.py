"""
Call session data validation using Pydantic.
Ensures call records keep a consistent shape across store implementations.

Version: 1.0.0
"""
import logging
from typing import Dict, Any, Optional
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)


class CallStatus(str, Enum):
    """Authoritative call status."""
    RINGING = "ringing"
    ACTIVE = "active"
    ENDED = "ended"
    MISSED = "missed"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({CallStatus.ENDED, CallStatus.MISSED, CallStatus.REJECTED})

# Timestamp that must accompany a write into the given status
REQUIRED_TRANSITION_FIELDS = {
    CallStatus.ACTIVE: "started_at",
    CallStatus.ENDED: "ended_at",
}

# Fields a transition is allowed to write besides the status itself
TRANSITION_FIELDS = frozenset({"started_at", "ended_at"})


def compute_duration(started_at: Optional[datetime], ended_at: Optional[datetime]) -> int:
    """
    Whole seconds between start and end.

    Returns:
        Rounded duration, or 0 when either timestamp is missing
    """
    if not started_at or not ended_at:
        return 0
    return max(int(round((ended_at - started_at).total_seconds())), 0)


class CallSession(BaseModel):
    """
    One call attempt, from initiation to a terminal outcome.

    Features:
    - Immutable participants after creation (enforced by the stores)
    - Derived duration_seconds
    - Timestamp consistency validation
    """

    model_config = ConfigDict(use_enum_values=False, validate_assignment=True)

    session_id: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Unique call identifier"
    )

    caller_id: str = Field(..., min_length=1, max_length=255)
    callee_id: str = Field(..., min_length=1, max_length=255)

    context_ref: Optional[str] = Field(
        None,
        max_length=255,
        description="Opaque reference to the business entity the call is about"
    )

    status: CallStatus = Field(default=CallStatus.RINGING)

    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_seconds: int = Field(default=0, ge=0)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator('caller_id', 'callee_id')
    @classmethod
    def strip_identifiers(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Identifier cannot be blank")
        return v

    @field_validator('context_ref')
    @classmethod
    def normalize_context_ref(cls, v: Optional[str]) -> Optional[str]:
        """A blank reference means no reference."""
        if v is None:
            return None
        return v.strip() or None

    @model_validator(mode='after')
    def validate_timestamps(self) -> 'CallSession':
        """Ended calls cannot end before they started."""
        if self.started_at and self.ended_at and self.ended_at < self.started_at:
            raise ValueError("ended_at cannot be before started_at")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_participant(self, identity: str) -> bool:
        return identity in (self.caller_id, self.callee_id)

    def other_party(self, identity: str) -> Optional[str]:
        """The participant that is not ``identity``."""
        if identity == self.caller_id:
            return self.callee_id
        if identity == self.callee_id:
            return self.caller_id
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Dictionary with ISO formatted timestamps."""
        return self.model_dump(mode="json")


class CallHistoryFilter(BaseModel):
    """Pagination for call history queries."""

    participant_id: str = Field(..., min_length=1)
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


__all__ = [
    'CallStatus',
    'CallSession',
    'CallHistoryFilter',
    'TERMINAL_STATUSES',
    'REQUIRED_TRANSITION_FIELDS',
    'TRANSITION_FIELDS',
    'compute_duration',
]
