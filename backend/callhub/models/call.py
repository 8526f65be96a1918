"""
Call session model for storing call records.
"""
from sqlalchemy import Column, DateTime, Index, Integer, String
from datetime import datetime

from ..database import Base


class CallRecord(Base):
    """
    Persisted call attempt.
    """
    __tablename__ = "call_sessions"

    id = Column(String(64), primary_key=True)
    caller_id = Column(String(255), nullable=False, index=True)
    callee_id = Column(String(255), nullable=False, index=True)
    context_ref = Column(String(255), nullable=True)

    status = Column(String(20), nullable=False, default="ringing", index=True)  # ringing, active, ended, missed, rejected

    started_at = Column(DateTime, nullable=True)
    ended_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_call_sessions_caller_created", "caller_id", "created_at"),
        Index("ix_call_sessions_callee_created", "callee_id", "created_at"),
    )

    def __repr__(self):
        return f"<CallRecord(id={self.id}, {self.caller_id}->{self.callee_id}, status={self.status})>"
