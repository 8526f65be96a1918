"""
WebSocket signaling client.

Keeps a connection to the signaling server open, decodes server frames
into outbound event models and reconnects with exponential backoff.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import urlencode

import websockets
from websockets.exceptions import InvalidStatus
from pydantic import BaseModel, ValidationError

from ..models.events import Connected, Ping, parse_outbound
from ..utils.retry import RetryConfig, calculate_retry_delay

logger = logging.getLogger(__name__)

EventHandler = Callable[[BaseModel], Awaitable[Any]]

# Close code the server uses for failed authentication
CLOSE_UNAUTHORIZED = 4401


class SignalingAuthError(Exception):
    """The server refused the token; reconnecting will not help."""
    pass


class SignalingClient:
    """
    Client side of the ``/ws`` endpoint.

    Usage:
        client = SignalingClient("ws://localhost:5000/ws", token, controller.handle_event)
        controller = CallController(client.send, media, peer_factory)
        await client.run()
    """

    def __init__(
        self,
        url: str,
        token: str,
        on_event: EventHandler,
        reconnect: Optional[RetryConfig] = None,
        ping_interval: float = 20.0,
        ping_timeout: float = 20.0
    ):
        self.url = url
        self.token = token
        self.on_event = on_event
        self.reconnect = reconnect or RetryConfig(
            max_attempts=10, initial_delay=1.0, max_delay=30.0, jitter=0.25
        )
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout

        self.websocket = None
        self.identity: Optional[str] = None
        self.handle: Optional[str] = None
        self.connected = asyncio.Event()
        self._closing = False

    @property
    def connect_url(self) -> str:
        separator = "&" if "?" in self.url else "?"
        return f"{self.url}{separator}{urlencode({'token': self.token})}"

    async def send(self, event: BaseModel) -> None:
        """
        Send an inbound event to the server.

        Raises:
            ConnectionError: Not connected
        """
        if self.websocket is None or not self.connected.is_set():
            raise ConnectionError("Signaling connection is not open")
        await self.websocket.send(event.model_dump_json())

    async def ping(self) -> None:
        await self.send(Ping())

    async def run(self) -> None:
        """
        Connect and process events until ``close()`` or retries run out.

        Raises:
            SignalingAuthError: The server rejected the token
            ConnectionError: Reconnect attempts exhausted
        """
        attempt = 0

        while not self._closing:
            try:
                logger.info(f"Connecting to signaling server (attempt {attempt + 1})")

                async with websockets.connect(
                    self.connect_url,
                    ping_interval=self.ping_interval,
                    ping_timeout=self.ping_timeout
                ) as ws:
                    self.websocket = ws
                    attempt = 0
                    await self._listen(ws)

                if ws.close_code == CLOSE_UNAUTHORIZED:
                    raise SignalingAuthError(ws.close_reason or "Authentication failed")

            except InvalidStatus as e:
                # Handshake refused before the socket was accepted
                status = e.response.status_code
                if status in (401, 403):
                    raise SignalingAuthError(f"Signaling handshake rejected ({status})")
                logger.warning(f"Signaling handshake failed with HTTP {status}")

            except websockets.ConnectionClosed as e:
                if e.rcvd is not None and e.rcvd.code == CLOSE_UNAUTHORIZED:
                    raise SignalingAuthError(e.rcvd.reason or "Authentication failed")
                logger.warning("Signaling connection closed, reconnecting...")

            except OSError as e:
                logger.warning(f"Signaling connection error: {e}")

            finally:
                self.websocket = None
                self.connected.clear()

            if self._closing:
                break

            if attempt >= self.reconnect.max_attempts - 1:
                raise ConnectionError(
                    f"Could not reach signaling server after {self.reconnect.max_attempts} attempts"
                )

            delay = calculate_retry_delay(attempt, self.reconnect)
            attempt += 1
            logger.info(f"Reconnecting in {delay:.1f}s...")
            await asyncio.sleep(delay)

    async def _listen(self, ws) -> None:
        async for message in ws:
            try:
                event = parse_outbound(message)
            except ValidationError as e:
                logger.warning(f"Ignoring undecodable server frame: {e.error_count()} errors")
                continue

            if isinstance(event, Connected):
                self.identity = event.user_id
                self.handle = event.handle
                self.connected.set()
                logger.info(f"✓ Signaling connected as {event.user_id} ({event.handle})")

            try:
                await self.on_event(event)
            except Exception as e:
                logger.error(f"Error handling {event.type}: {e}", exc_info=True)

    async def close(self) -> None:
        self._closing = True
        if self.websocket is not None:
            await self.websocket.close()


__all__ = ['SignalingClient', 'SignalingAuthError']
