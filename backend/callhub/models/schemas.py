"""
Pydantic schemas for REST request/response validation.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional, Dict
from datetime import datetime

from ..session.validators import CallSession, CallStatus


# Response Schemas

class ParticipantProfile(BaseModel):
    """Public profile of a call participant."""
    id: str
    name: str
    email: Optional[str] = None
    avatar: Optional[str] = None


class CallSessionResponse(BaseModel):
    """Call record as returned by the history API."""
    session_id: str
    caller_id: str
    callee_id: str
    caller: Optional[ParticipantProfile] = Field(None, description="Null when the directory no longer knows the user")
    callee: Optional[ParticipantProfile] = None
    context_ref: Optional[str] = None
    status: CallStatus
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_seconds: int = 0
    created_at: Optional[datetime] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "session_id": "call_3f2a9c0e8d8b4a5e9f1c2d3e4f5a6b7c",
                "caller_id": "42",
                "callee_id": "77",
                "caller": {"id": "42", "name": "Dana Owner", "avatar": "https://cdn.example.com/42.png"},
                "callee": {"id": "77", "name": "Sam Technician", "avatar": None},
                "context_ref": "booking-1009",
                "status": "ended",
                "started_at": "2024-01-15T10:30:05Z",
                "ended_at": "2024-01-15T10:42:11Z",
                "duration_seconds": 726,
                "created_at": "2024-01-15T10:30:00Z"
            }
        }
    )

    @classmethod
    def from_session(
        cls,
        session: CallSession,
        profiles: Optional[Dict[str, ParticipantProfile]] = None
    ) -> "CallSessionResponse":
        profiles = profiles or {}
        return cls(
            **session.model_dump(include=set(cls.model_fields)),
            caller=profiles.get(session.caller_id),
            callee=profiles.get(session.callee_id)
        )


class Pagination(BaseModel):
    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1)
    total: int = Field(..., ge=0)
    pages: int = Field(..., ge=0)


class CallHistoryResponse(BaseModel):
    """Paged call history for the authenticated user."""
    calls: List[CallSessionResponse]
    pagination: Pagination


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: datetime
    version: str
    services: Dict[str, str] = {}

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "version": "1.0.0",
                "services": {
                    "database": "healthy",
                    "redis": "not_configured"
                }
            }
        }
    )


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    message: str
    request_id: Optional[str] = None
