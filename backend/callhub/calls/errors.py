"""
Call lifecycle exceptions.
"""


class CallError(Exception):
    """Base class for errors reported to a client as ``call:error``."""

    def __init__(self, message: str, session_id: str = None):
        super().__init__(message)
        self.message = message
        self.session_id = session_id


class SessionNotFoundError(CallError):
    """Raised when an action references an unknown session id."""

    def __init__(self, session_id: str):
        super().__init__("Call not found", session_id=session_id)


class CalleeOfflineError(CallError):
    """Raised on initiate when fail-fast is enabled and the callee has no connection."""

    def __init__(self, callee_id: str):
        super().__init__("User is offline")
        self.callee_id = callee_id


__all__ = ['CallError', 'SessionNotFoundError', 'CalleeOfflineError']
