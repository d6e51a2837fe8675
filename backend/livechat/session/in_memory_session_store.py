"""
In-memory session store implementation.
Suitable for development, tests and single-process deployments.

Version: 1.0.0
"""
import asyncio
import logging
from typing import Dict, Any, Iterable, Optional, List
from datetime import datetime, timedelta

from .session_store import SessionStore, Mutator
from ..models.chat import AdminPresence, ChatSession, SessionStatus, ensure_utc, utc_now

logger = logging.getLogger(__name__)


class InMemorySessionStore(SessionStore):
    """
    In-memory implementation of SessionStore.

    Features:
    - Per-session asyncio locks so modifications of one session serialize
      while different sessions proceed independently
    - Sessions are immutable models, so callers can never mutate stored state

    Limitations:
    - Sessions lost on restart
    - Not shared across multiple processes
    """

    def __init__(self, max_sessions: int = 10000):
        """
        Initialize in-memory session store.

        Args:
            max_sessions: Resolved sessions are evicted oldest-first past this size
        """
        self.sessions: Dict[str, ChatSession] = {}
        self.presence: Dict[str, AdminPresence] = {}
        self.max_sessions = max_sessions
        self._session_locks: Dict[str, asyncio.Lock] = {}
        self.lock = asyncio.Lock()
        self._writes = 0

        logger.info(f"InMemorySessionStore initialized (max_sessions={max_sessions})")

    async def _lock_for(self, session_id: str) -> asyncio.Lock:
        async with self.lock:
            lock = self._session_locks.get(session_id)
            if lock is None:
                lock = asyncio.Lock()
                self._session_locks[session_id] = lock
            return lock

    async def get(self, session_id: str) -> Optional[ChatSession]:
        """Get session by ID."""
        return self.sessions.get(session_id)

    async def modify(self, session_id: str, mutator: Mutator) -> ChatSession:
        """Serialize read-modify-write on a per-session lock."""
        session_lock = await self._lock_for(session_id)

        async with session_lock:
            current = self.sessions.get(session_id)
            updated = mutator(current)

            if updated is current:
                return current

            if updated.id != session_id:
                raise ValueError(f"Mutator changed session id {session_id} -> {updated.id}")

            self.sessions[session_id] = updated
            self._writes += 1

            if current is None:
                logger.debug(f"Created session {session_id}")
                await self._evict_if_needed()
            else:
                logger.debug(
                    f"Updated session {session_id} "
                    f"({current.status.value} -> {updated.status.value}, "
                    f"{updated.message_count} messages)"
                )
            return updated

    async def _evict_if_needed(self) -> None:
        if len(self.sessions) <= self.max_sessions:
            return

        resolved = [
            s for s in self.sessions.values()
            if s.status == SessionStatus.RESOLVED
        ]
        if not resolved:
            logger.warning(
                f"InMemorySessionStore over capacity ({len(self.sessions)} sessions) "
                f"with no resolved sessions to evict"
            )
            return

        oldest = min(resolved, key=lambda s: s.last_activity_at)
        await self.delete(oldest.id)
        logger.info(f"Evicted resolved session {oldest.id} (last activity: {oldest.last_activity_at})")

    async def list_sessions(
        self,
        statuses: Optional[Iterable[SessionStatus]] = None
    ) -> List[ChatSession]:
        wanted = set(statuses) if statuses is not None else None
        sessions = [
            s for s in self.sessions.values()
            if wanted is None or s.status in wanted
        ]
        sessions.sort(key=lambda s: s.last_activity_at, reverse=True)
        return sessions

    async def delete(self, session_id: str) -> bool:
        """Delete session data."""
        async with self.lock:
            self._session_locks.pop(session_id, None)
            if self.sessions.pop(session_id, None) is not None:
                logger.debug(f"Deleted session {session_id}")
                return True
            return False

    async def cleanup_expired(self, retention_seconds: int) -> int:
        """Purge resolved sessions older than the retention window."""
        cutoff = utc_now() - timedelta(seconds=retention_seconds)
        expired = [
            s.id for s in self.sessions.values()
            if s.status == SessionStatus.RESOLVED and s.last_activity_at < cutoff
        ]

        for session_id in expired:
            await self.delete(session_id)

        if expired:
            logger.info(f"Cleaned up {len(expired)} expired sessions")

        return len(expired)

    async def record_heartbeat(
        self,
        admin_id: str,
        at: Optional[datetime] = None
    ) -> AdminPresence:
        presence = AdminPresence(
            admin_id=admin_id,
            last_heartbeat_at=ensure_utc(at) if at is not None else utc_now()
        )
        async with self.lock:
            self.presence[admin_id] = presence
        return presence

    async def get_presence(self, admin_id: str) -> Optional[AdminPresence]:
        return self.presence.get(admin_id)

    async def list_presence(self) -> List[AdminPresence]:
        return list(self.presence.values())

    async def get_stats(self) -> Dict[str, Any]:
        """Get session store statistics."""
        by_status = {status.value: 0 for status in SessionStatus}
        for session in self.sessions.values():
            by_status[session.status.value] += 1

        return {
            "store_type": "in_memory",
            "total_sessions": len(self.sessions),
            "sessions_by_status": by_status,
            "known_admins": len(self.presence),
            "max_sessions": self.max_sessions,
            "utilization": f"{(len(self.sessions) / self.max_sessions * 100):.1f}%",
            "writes": self._writes
        }


__all__ = ['InMemorySessionStore']
