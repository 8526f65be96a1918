"""
API module for the call signaling server.
"""

from .websocket import websocket_endpoint, ConnectionManager
from .routes import calls, health

__all__ = [
    "websocket_endpoint",
    "ConnectionManager",
    "calls",
    "health",
]
