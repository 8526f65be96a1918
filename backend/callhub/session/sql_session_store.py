"""
SQL-backed call session store.
Durable call records for production deployments (SQLite or PostgreSQL).

Version: 1.0.0
"""
import logging
from typing import Dict, Any, Optional, List, Callable
from datetime import datetime

from sqlalchemy import select, func, or_
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import async_sessionmaker

from .session_store import CallSessionStore, generate_session_id
from .validators import CallSession, CallStatus
from ..calls.errors import SessionNotFoundError
from ..models.call import CallRecord
from ..utils.retry import async_retry, RetryConfig

logger = logging.getLogger(__name__)

# Transient connection errors are retried, everything else propagates
_DB_RETRY = RetryConfig(
    max_attempts=3,
    initial_delay=0.1,
    max_delay=1.0,
    retry_on_exceptions=(OperationalError,)
)


def _to_session(record: CallRecord) -> CallSession:
    return CallSession(
        session_id=record.id,
        caller_id=record.caller_id,
        callee_id=record.callee_id,
        context_ref=record.context_ref,
        status=CallStatus(record.status),
        started_at=record.started_at,
        ended_at=record.ended_at,
        duration_seconds=record.duration_seconds or 0,
        created_at=record.created_at,
        updated_at=record.updated_at
    )


class SqlCallSessionStore(CallSessionStore):
    """
    SQLAlchemy implementation of CallSessionStore.

    Each operation runs in its own short transaction. Transitions lock the
    row (``SELECT ... FOR UPDATE`` where the backend supports it) so the
    read-modify-write is atomic across processes.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize SQL call store.

        Args:
            session_factory: Async session factory bound to an engine
            clock: Time source for created_at/updated_at (defaults to utcnow)
        """
        self.session_factory = session_factory
        self._clock = clock or datetime.utcnow

        logger.info("SqlCallSessionStore initialized")

    @async_retry(_DB_RETRY)
    async def create(
        self,
        caller_id: str,
        callee_id: str,
        context_ref: Optional[str] = None
    ) -> CallSession:
        now = self._clock()
        session = CallSession(
            session_id=generate_session_id(),
            caller_id=caller_id,
            callee_id=callee_id,
            context_ref=context_ref,
            status=CallStatus.RINGING,
            created_at=now,
            updated_at=now
        )

        async with self.session_factory() as db:
            async with db.begin():
                db.add(CallRecord(
                    id=session.session_id,
                    caller_id=session.caller_id,
                    callee_id=session.callee_id,
                    context_ref=session.context_ref,
                    status=session.status.value,
                    duration_seconds=0,
                    created_at=now,
                    updated_at=now
                ))

        logger.debug(f"Created call {session.session_id} ({caller_id} -> {callee_id})")
        return session

    @async_retry(_DB_RETRY)
    async def get(self, session_id: str) -> Optional[CallSession]:
        async with self.session_factory() as db:
            record = await db.get(CallRecord, session_id)
            return _to_session(record) if record else None

    @async_retry(_DB_RETRY)
    async def transition(
        self,
        session_id: str,
        new_status: CallStatus,
        fields: Optional[Dict[str, Any]] = None
    ) -> CallSession:
        fields = dict(fields or {})
        self._validate_transition(new_status, fields)

        async with self.session_factory() as db:
            async with db.begin():
                result = await db.execute(
                    select(CallRecord)
                    .where(CallRecord.id == session_id)
                    .with_for_update()
                )
                record = result.scalar_one_or_none()
                if record is None:
                    raise SessionNotFoundError(session_id)

                previous = record.status
                updated = self._apply_transition(
                    _to_session(record), new_status, fields, self._clock()
                )

                record.status = updated.status.value
                record.started_at = updated.started_at
                record.ended_at = updated.ended_at
                record.duration_seconds = updated.duration_seconds
                record.updated_at = updated.updated_at

        logger.debug(f"Call {session_id}: {previous} -> {updated.status.value}")
        return updated

    @async_retry(_DB_RETRY)
    async def list_for_participant(
        self,
        identity: str,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[CallSession]:
        query = (
            select(CallRecord)
            .where(or_(CallRecord.caller_id == identity, CallRecord.callee_id == identity))
            .order_by(CallRecord.created_at.desc(), CallRecord.id.desc())
            .offset(offset)
        )
        if limit is not None:
            query = query.limit(limit)

        async with self.session_factory() as db:
            result = await db.execute(query)
            return [_to_session(record) for record in result.scalars().all()]

    @async_retry(_DB_RETRY)
    async def count_for_participant(self, identity: str) -> int:
        async with self.session_factory() as db:
            result = await db.execute(
                select(func.count())
                .select_from(CallRecord)
                .where(or_(CallRecord.caller_id == identity, CallRecord.callee_id == identity))
            )
            return int(result.scalar_one())

    @async_retry(_DB_RETRY)
    async def list_by_status(self, status: CallStatus) -> List[CallSession]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(CallRecord).where(CallRecord.status == CallStatus(status).value)
            )
            return [_to_session(record) for record in result.scalars().all()]

    async def get_stats(self) -> Dict[str, Any]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(CallRecord.status, func.count()).group_by(CallRecord.status)
            )
            by_status: Dict[str, int] = {status.value: 0 for status in CallStatus}
            for status, count in result.all():
                by_status[status] = count

        return {
            "store_type": "sql",
            "total_sessions": sum(by_status.values()),
            "by_status": by_status,
        }


__all__ = ['SqlCallSessionStore']
