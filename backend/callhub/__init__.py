"""
CallHub call signaling backend.
"""

__version__ = "1.0.0"
__author__ = "CallHub Team"

# Application metadata
APP_NAME = "CallHub Signaling"
APP_DESCRIPTION = "Presence, call lifecycle and WebRTC signaling relay for one-to-one video calls"

from .config import settings, get_settings

__all__ = [
    "settings",
    "get_settings",
    "APP_NAME",
    "APP_DESCRIPTION",
    "__version__",
]
