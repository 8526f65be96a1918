"""
Call session storage package.
Provides the authoritative call record store and its implementations.

Version: 1.0.0
"""
from .session_store import CallSessionStore, generate_session_id
from .validators import CallSession, CallStatus, CallHistoryFilter, TERMINAL_STATUSES
from .in_memory_session_store import InMemoryCallSessionStore
from .sql_session_store import SqlCallSessionStore
from .distributed_lock import DistributedLock, LockAcquisitionError


def create_session_store(
    store_type: str = "in_memory",
    **kwargs
) -> CallSessionStore:
    """
    Factory function to create a call session store.

    Args:
        store_type: Type of store ('in_memory' or 'sql')
        **kwargs: Store-specific configuration

    Returns:
        CallSessionStore instance

    Examples:
        store = create_session_store('in_memory')

        store = create_session_store('sql', session_factory=factory)
    """
    if store_type == "in_memory":
        return InMemoryCallSessionStore(**kwargs)

    elif store_type == "sql":
        return SqlCallSessionStore(**kwargs)

    else:
        raise ValueError(f"Unknown store type: {store_type}")


__all__ = [
    # Core
    'CallSessionStore',
    'CallSession',
    'CallStatus',
    'CallHistoryFilter',
    'TERMINAL_STATUSES',
    'generate_session_id',

    # Implementations
    'InMemoryCallSessionStore',
    'SqlCallSessionStore',

    # Distributed locking
    'DistributedLock',
    'LockAcquisitionError',

    # Factory
    'create_session_store',
]
