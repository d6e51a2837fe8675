"""
Session storage package.
Chat session and admin presence persistence behind one async interface.

Version: 1.0.0
"""
from .session_store import SessionStore, Mutator
from .in_memory_session_store import InMemorySessionStore
from .sql_session_store import SqlSessionStore
from .redis_session_store import RedisSessionStore
from .distributed_lock import DistributedLock, LockAcquisitionError, LockReleaseError


def create_session_store(
    store_type: str = "in_memory",
    **kwargs
) -> SessionStore:
    """
    Factory function to create session store.

    Args:
        store_type: Type of store ('in_memory', 'sql' or 'redis')
        **kwargs: Store-specific configuration

    Returns:
        SessionStore instance

    Examples:
        # In-memory store
        store = create_session_store('in_memory', max_sessions=10000)

        # SQLite store
        store = create_session_store('sql', database_url='sqlite:///./data/livechat.db')

        # Redis store
        store = create_session_store('redis', redis_url='redis://localhost:6379/0')
    """
    if store_type == "in_memory":
        return InMemorySessionStore(**kwargs)

    elif store_type == "sql":
        return SqlSessionStore(**kwargs)

    elif store_type == "redis":
        return RedisSessionStore(**kwargs)

    else:
        raise ValueError(f"Unknown store type: {store_type}")


__all__ = [
    # Core
    'SessionStore',
    'Mutator',

    # Implementations
    'InMemorySessionStore',
    'SqlSessionStore',
    'RedisSessionStore',

    # Distributed locking
    'DistributedLock',
    'LockAcquisitionError',
    'LockReleaseError',

    # Factory
    'create_session_store',
]
