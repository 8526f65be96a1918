"""
WebSocket endpoint for call signaling.
"""
from fastapi import WebSocket, WebSocketDisconnect, Query
from pydantic import BaseModel
from typing import Dict, Optional, Tuple
import logging
import uuid

from ..calls.notifier import EventSink
from ..models.events import Connected
from ..services.auth_service import AuthenticationError
from ..utils.telemetry import update_websocket_connections, update_online_users

logger = logging.getLogger(__name__)

# Close code for a failed handshake authentication
WS_CLOSE_UNAUTHORIZED = 4401


class ConnectionManager(EventSink):
    """Manages WebSocket connections, keyed by connection handle."""

    def __init__(self):
        """Initialize connection manager."""
        self.active_connections: Dict[str, Tuple[str, WebSocket]] = {}

    async def connect(self, websocket: WebSocket, identity: str, handle: str) -> None:
        """
        Accept and register a new connection.

        Args:
            websocket: WebSocket connection
            identity: Authenticated user
            handle: Connection handle
        """
        await websocket.accept()
        self.active_connections[handle] = (identity, websocket)

        logger.info(f"WebSocket connected: user={identity}, handle={handle}")

    def disconnect(self, handle: str) -> None:
        """
        Remove a connection.

        Args:
            handle: Connection handle
        """
        entry = self.active_connections.pop(handle, None)
        if entry:
            logger.info(f"WebSocket handle {handle} ({entry[0]}) disconnected")

    async def send(self, handle: str, event: BaseModel) -> bool:
        """
        Send an event to a specific connection.

        Returns:
            False if the handle is unknown or the write failed
        """
        entry = self.active_connections.get(handle)
        if entry is None:
            logger.debug(f"Dropping {getattr(event, 'type', 'event')} for closed handle {handle}")
            return False

        identity, websocket = entry
        try:
            await websocket.send_text(event.model_dump_json())
            return True
        except Exception as e:
            logger.error(f"Error sending message to {identity} ({handle}): {e}")
            self.disconnect(handle)
            return False

    def count(self) -> int:
        return len(self.active_connections)


def _bearer_token(websocket: WebSocket) -> Optional[str]:
    header = websocket.headers.get("authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


async def websocket_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None)
):
    """
    WebSocket endpoint for call signaling.

    The token comes from the ``token`` query parameter or an
    ``Authorization: Bearer`` header. Authentication failures close the
    socket before it is accepted, with code 4401.

    Args:
        websocket: WebSocket connection
        token: JWT identifying the user
    """
    state = websocket.app.state

    try:
        identity = state.auth.identity_from_token(token or _bearer_token(websocket))
        if state.users is not None and not await state.users.exists(identity):
            raise AuthenticationError("User not found")

    except AuthenticationError as e:
        logger.warning(f"WebSocket authentication failed: {e.reason}")
        await websocket.close(code=WS_CLOSE_UNAUTHORIZED, reason=e.reason)
        return

    except Exception as e:
        logger.error(f"Error authenticating WebSocket: {e}", exc_info=True)
        await websocket.close(code=1011, reason="Internal server error")
        return

    manager: ConnectionManager = state.connections
    presence = state.presence
    handle = str(uuid.uuid4())

    await manager.connect(websocket, identity, handle)
    presence.register(identity, handle)
    update_websocket_connections(manager.count())
    update_online_users(presence.count())

    try:
        await manager.send(handle, Connected(user_id=identity, handle=handle))

        while True:
            data = await websocket.receive_text()
            await state.dispatcher.dispatch(identity, handle, data)

    except WebSocketDisconnect:
        logger.info(f"WebSocket client {handle} ({identity}) disconnected")
    except Exception as e:
        logger.error(f"WebSocket error: {e}", exc_info=True)
    finally:
        presence.unregister(identity, handle)
        manager.disconnect(handle)
        update_websocket_connections(manager.count())
        update_online_users(presence.count())

        await state.coordinator.handle_disconnect(identity, handle)
