"""
Admin dashboard session listings.
"""
from typing import Any, Dict, List

from ..models.chat import SessionStatus
from ..models.events import ServerEvent
from ..session.session_store import SessionStore

# Sessions an admin can still act on
OPEN_STATUSES = (SessionStatus.PENDING_ADMIN, SessionStatus.ACTIVE)


async def active_session_summaries(store: SessionStore) -> List[Dict[str, Any]]:
    """Escalated, unresolved sessions, most recent activity first."""
    return [s.summary() for s in await store.list_sessions(OPEN_STATUSES)]


async def active_sessions_event(store: SessionStore) -> ServerEvent:
    return ServerEvent.active_sessions(await active_session_summaries(store))


async def awaiting_reply_summaries(store: SessionStore) -> List[Dict[str, Any]]:
    """Open sessions with user traffic no admin has answered, longest waiting first."""
    waiting = [s for s in await store.list_sessions(OPEN_STATUSES) if s.unread_count]
    waiting.sort(key=lambda s: s.awaiting_admin_since or s.last_activity_at)
    return [s.summary() for s in waiting]
