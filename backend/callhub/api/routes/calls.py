"""
Call history API routes.
"""
from fastapi import APIRouter, Depends, HTTPException, Query, Request
import logging
import math
from typing import Dict, Iterable, Optional

from ...models.schemas import CallHistoryResponse, CallSessionResponse, Pagination, ParticipantProfile
from ...services.auth_service import require_auth
from ...services.user_directory import UserDirectory
from ...session.session_store import CallSessionStore
from ...session.validators import CallHistoryFilter

logger = logging.getLogger(__name__)

router = APIRouter()


def get_store(request: Request) -> CallSessionStore:
    """Get the call store from app state."""
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(status_code=500, detail="Call store not initialized")
    return store


def get_users(request: Request) -> Optional[UserDirectory]:
    return getattr(request.app.state, "users", None)


async def resolve_profiles(
    users: Optional[UserDirectory],
    identities: Iterable[str]
) -> Dict[str, ParticipantProfile]:
    """
    Profiles for the given identities.

    Unknown users and failed lookups are left out; history stays readable
    while the user service is down.
    """
    profiles: Dict[str, ParticipantProfile] = {}
    if users is None:
        return profiles

    for identity in set(identities):
        try:
            user = await users.lookup(identity)
        except Exception as e:
            logger.warning(f"Profile lookup failed for {identity}: {e}")
            continue
        if user is not None:
            profiles[identity] = ParticipantProfile(
                id=user.id, name=user.name, email=user.email, avatar=user.avatar
            )
    return profiles


@router.get("/history", response_model=CallHistoryResponse)
async def get_call_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    identity: str = Depends(require_auth),
    store: CallSessionStore = Depends(get_store),
    users: Optional[UserDirectory] = Depends(get_users)
):
    """
    Calls the authenticated user placed or received, newest first.

    Args:
        page: 1-based page number
        limit: Page size

    Returns:
        Calls and pagination info
    """
    query = CallHistoryFilter(participant_id=identity, page=page, limit=limit)

    sessions = await store.list_for_participant(
        query.participant_id,
        limit=query.limit,
        offset=query.offset
    )
    total = await store.count_for_participant(query.participant_id)

    profiles = await resolve_profiles(
        users, [p for s in sessions for p in (s.caller_id, s.callee_id)]
    )

    logger.debug(f"Call history for {identity}: page {page}, {len(sessions)}/{total}")

    return CallHistoryResponse(
        calls=[CallSessionResponse.from_session(s, profiles) for s in sessions],
        pagination=Pagination(
            page=query.page,
            limit=query.limit,
            total=total,
            pages=math.ceil(total / query.limit) if total else 0
        )
    )


@router.get("/{session_id}", response_model=CallSessionResponse)
async def get_call(
    session_id: str,
    identity: str = Depends(require_auth),
    store: CallSessionStore = Depends(get_store),
    users: Optional[UserDirectory] = Depends(get_users)
):
    """
    Get one call record.

    Raises:
        HTTPException: 404 if unknown, 403 if the caller is not a participant
    """
    session = await store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Call not found")

    if not session.is_participant(identity):
        raise HTTPException(status_code=403, detail="Not authorized to view this call")

    profiles = await resolve_profiles(users, (session.caller_id, session.callee_id))
    return CallSessionResponse.from_session(session, profiles)
