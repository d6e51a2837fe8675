"""
Abstract session store interface.
Defines the contract for chat session and admin presence persistence.

Version: 1.0.0
"""
from abc import ABC, abstractmethod
from typing import Callable, Dict, Any, Iterable, Optional, List
from datetime import datetime

from ..exceptions import SessionNotFound
from ..models.chat import AdminPresence, ChatSession, SessionStatus, utc_now

Mutator = Callable[[Optional[ChatSession]], ChatSession]


class SessionStore(ABC):
    """
    Abstract base class for chat session storage.

    Implementations must provide async-safe operations for:
    - Reading a session document
    - Atomic per-session read-modify-write (``modify``)
    - Listing sessions by recent activity
    - Purging old resolved sessions
    - Admin presence heartbeats

    ``modify`` is the only write path for sessions. Concurrent modifications
    of the same session are serialized so no update is ever lost.
    """

    @abstractmethod
    async def get(self, session_id: str) -> Optional[ChatSession]:
        """
        Get a session by ID.

        Args:
            session_id: Session identifier

        Returns:
            ChatSession or None if not found
        """
        pass

    @abstractmethod
    async def modify(self, session_id: str, mutator: Mutator) -> ChatSession:
        """
        Atomically read, transform and write one session.

        The mutator receives the current session (None if absent) and returns
        the new one. Returning the very same object means "no change" and
        skips the write. Exceptions raised by the mutator abort the write and
        propagate to the caller unchanged.

        Args:
            session_id: Session identifier
            mutator: Pure function from current to next session

        Returns:
            The session as stored after the call
        """
        pass

    @abstractmethod
    async def list_sessions(
        self,
        statuses: Optional[Iterable[SessionStatus]] = None
    ) -> List[ChatSession]:
        """
        List sessions, most recently active first.

        Args:
            statuses: Only sessions in these statuses (all if None)

        Returns:
            List of sessions
        """
        pass

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        """
        Delete a session.

        Args:
            session_id: Session identifier

        Returns:
            True if deleted, False if not found
        """
        pass

    @abstractmethod
    async def cleanup_expired(self, retention_seconds: int) -> int:
        """
        Purge resolved sessions idle for longer than the retention window.

        Args:
            retention_seconds: Retention window for resolved sessions

        Returns:
            Number of sessions removed
        """
        pass

    @abstractmethod
    async def record_heartbeat(
        self,
        admin_id: str,
        at: Optional[datetime] = None
    ) -> AdminPresence:
        """
        Upsert an admin's last heartbeat.

        Args:
            admin_id: Admin identifier
            at: Heartbeat time (now if None)

        Returns:
            Stored presence record
        """
        pass

    @abstractmethod
    async def get_presence(self, admin_id: str) -> Optional[AdminPresence]:
        """Presence record for one admin, or None if never seen."""
        pass

    @abstractmethod
    async def list_presence(self) -> List[AdminPresence]:
        """All known presence records."""
        pass

    @abstractmethod
    async def get_stats(self) -> Dict[str, Any]:
        """
        Get session store statistics.

        Returns:
            Dictionary with statistics
        """
        pass

    async def close(self) -> None:
        """Release backend resources."""
        return None

    async def exists(self, session_id: str) -> bool:
        """Check if a session exists."""
        return await self.get(session_id) is not None

    async def require(self, session_id: str) -> ChatSession:
        """
        Get a session or fail.

        Raises:
            SessionNotFound: If the session does not exist
        """
        session = await self.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    async def get_or_create(
        self,
        session_id: str,
        user_email: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> ChatSession:
        """
        Get a session or lazily create it in ``bot_handled``.

        Contact details are filled in on an existing session only when it
        has none yet.

        Args:
            session_id: Session identifier
            user_email: Contact email for a new session
            user_id: Authenticated identity for a new session

        Returns:
            ChatSession instance
        """
        def mutator(current: Optional[ChatSession]) -> ChatSession:
            if current is None:
                return ChatSession(id=session_id, user_email=user_email, user_id=user_id)
            return current.with_contact(user_email, user_id)

        return await self.modify(session_id, mutator)

    async def health_check(self) -> Dict[str, Any]:
        """
        Perform health check on session store.

        Returns:
            Dictionary with health status
        """
        test_session_id = f"health_check_{int(utc_now().timestamp() * 1_000_000)}"
        try:
            created = await self.modify(
                test_session_id,
                lambda current: current or ChatSession(id=test_session_id)
            )
            write_success = created.id == test_session_id

            retrieved = await self.get(test_session_id)
            get_success = retrieved is not None

            delete_success = await self.delete(test_session_id)

            stats = await self.get_stats()

            return {
                "healthy": write_success and get_success and delete_success,
                "operations": {
                    "modify": write_success,
                    "get": get_success,
                    "delete": delete_success
                },
                "stats": stats
            }

        except Exception as e:
            return {
                "healthy": False,
                "error": str(e)
            }


__all__ = ['SessionStore', 'Mutator']
